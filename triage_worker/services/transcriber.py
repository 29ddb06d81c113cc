from __future__ import annotations

import logging
import subprocess
import sys
import threading
import time
import uuid
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout
from pathlib import Path
from typing import Callable, List, Optional, Protocol

import numpy as np

from ..config import Settings
from ..errors import ConversionFailure, TranscriptionFailure
from ..state import State

log = logging.getLogger("app.transcribe")

TARGET_SR = 16000
ARTIFACT_PREFIX = "recording_"

_CONTENT_TYPE_SUFFIX = {
    "audio/webm": ".webm",
    "audio/ogg": ".ogg",
    "audio/wav": ".wav",
    "audio/x-wav": ".wav",
    "audio/wave": ".wav",
    "audio/mpeg": ".mp3",
    "audio/mp3": ".mp3",
    "audio/mp4": ".m4a",
    "audio/m4a": ".m4a",
    "audio/x-m4a": ".m4a",
    "audio/flac": ".flac",
}


class Recognizer(Protocol):
    def recognize(self, wav_path: Path, timeout_s: float) -> str: ...


Converter = Callable[[Path, Path, float], None]


def new_token() -> str:
    return uuid.uuid4().hex


def normalize_format_hint(
    hint: Optional[str] = None,
    filename: Optional[str] = None,
    content_type: Optional[str] = None,
) -> str:
    """Pick a file suffix for the upload. Defaults to ``.webm`` (browser MediaRecorder)."""
    for cand in (hint, Path(filename).suffix if filename else None):
        if cand:
            cand = cand.strip().lower()
            if "/" in cand:
                return _CONTENT_TYPE_SUFFIX.get(cand.split(";")[0], ".webm")
            cand = cand if cand.startswith(".") else f".{cand}"
            if cand[1:].isalnum():
                return cand
    if content_type:
        return _CONTENT_TYPE_SUFFIX.get(content_type.split(";")[0].strip().lower(), ".webm")
    return ".webm"


def _resample_mono_f32(x: np.ndarray, src_hz: int, dst_hz: int) -> np.ndarray:
    if x.size == 0 or src_hz == dst_hz:
        return x.astype(np.float32, copy=False)
    t_src = np.arange(x.shape[0], dtype=np.float32) / float(src_hz)
    n_dst = int(round(x.shape[0] * (dst_hz / float(src_hz))))
    if n_dst <= 1:
        return np.zeros(0, dtype=np.float32)
    t_dst = np.arange(n_dst, dtype=np.float32) / float(dst_hz)
    y = np.interp(t_dst, t_src, x).astype(np.float32)
    return y


def _read_mono_16k(path: Path) -> np.ndarray:
    import soundfile as sf  # lazy import to avoid CI system lib issues

    y, sr = sf.read(str(path), dtype="float32", always_2d=False)
    if isinstance(y, np.ndarray) and y.ndim == 2:
        y = y.mean(axis=1).astype(np.float32, copy=False)
    elif not isinstance(y, np.ndarray):
        y = np.asarray(y, dtype=np.float32)
    if sr != TARGET_SR:
        y = _resample_mono_f32(y, sr, TARGET_SR)
    return y


# ------------------------------- Conversion -------------------------------
def convert_with_ffmpeg(src: Path, dst: Path, timeout_s: float, ffmpeg_bin: str = "ffmpeg") -> None:
    args = [
        ffmpeg_bin,
        "-i", str(src),
        "-ar", str(TARGET_SR),
        "-ac", "1",
        "-c:a", "pcm_s16le",
        "-y",
        str(dst),
    ]
    log.debug(f"running {' '.join(args)}")
    try:
        proc = subprocess.run(args, capture_output=True, text=True, timeout=timeout_s)
    except FileNotFoundError as e:
        raise ConversionFailure(f"Failed to start audio conversion: {e}")
    except subprocess.TimeoutExpired:
        raise ConversionFailure(f"Audio conversion timed out after {timeout_s:.0f}s")
    except OSError as e:
        raise ConversionFailure(f"Failed to start audio conversion: {e}")
    if proc.returncode != 0:
        raise ConversionFailure(f"Audio conversion failed: {proc.stderr.strip()[-2000:]}")


def convert_with_soundfile(src: Path, dst: Path, timeout_s: float) -> None:
    import soundfile as sf  # lazy import

    try:
        y = _read_mono_16k(src)
        if y.size == 0:
            raise ConversionFailure("empty audio")
        sf.write(str(dst), y, TARGET_SR, subtype="PCM_16")
    except ConversionFailure:
        raise
    except Exception as e:
        raise ConversionFailure(f"Audio conversion failed: {e}")


def build_converter(settings: Settings) -> Converter:
    kind = settings.converter.strip().lower()
    if kind == "soundfile":
        return convert_with_soundfile
    if kind != "ffmpeg":
        log.warning(f"unknown converter '{settings.converter}', using ffmpeg")
    ffmpeg_bin = settings.ffmpeg_bin

    def _ffmpeg(src: Path, dst: Path, timeout_s: float) -> None:
        convert_with_ffmpeg(src, dst, timeout_s, ffmpeg_bin=ffmpeg_bin)

    return _ffmpeg


# ------------------------------- Recognizers ------------------------------
class FasterWhisperRecognizer:
    """In-process faster-whisper model, loaded on first use."""

    def __init__(self, model: str = "base", device: str = "cpu", compute_type: str = "int8", language: str = "en"):
        self.model_name = model
        self.device = device
        self.compute_type = compute_type
        self.language = language
        self._model = None
        self._lock = threading.Lock()
        # Single long-lived worker shared by every recognize() call.
        self._pool = ThreadPoolExecutor(max_workers=1, thread_name_prefix="whisper")

    def _get_or_load_model(self):
        with self._lock:
            if self._model is None:
                from faster_whisper import WhisperModel  # lazy import to avoid test env dependency

                log.info(f"loading whisper model '{self.model_name}' on {self.device}")
                self._model = WhisperModel(self.model_name, device=self.device, compute_type=self.compute_type)
            return self._model

    def _run(self, wav_path: Path) -> str:
        model = self._get_or_load_model()
        audio = _read_mono_16k(wav_path)
        if audio.size == 0:
            raise TranscriptionFailure("empty audio")
        segments, info = model.transcribe(
            audio,
            language=self.language or None,
            beam_size=5,
            vad_filter=True,
            vad_parameters=dict(min_silence_duration_ms=300),
            condition_on_previous_text=True,
        )
        texts: List[str] = [seg.text.strip() for seg in segments if seg.text.strip()]
        log.info(f"whisper done language={info.language} duration={float(info.duration):.1f}s segments={len(texts)}")
        return " ".join(texts)

    def recognize(self, wav_path: Path, timeout_s: float) -> str:
        fut = self._pool.submit(self._run, wav_path)
        try:
            return fut.result(timeout=timeout_s)
        except FutureTimeout:
            if not fut.cancel():
                log.warning(f"whisper still busy with {wav_path.name} after timeout; result will be dropped")
            raise TranscriptionFailure(f"Transcription timed out after {timeout_s:.0f}s")


class WhisperCliRecognizer:
    """Shells out to ``python -m whisper`` and reads the ``.txt`` it writes."""

    def __init__(self, model: str = "base", language: str = "en", python_bin: Optional[str] = None):
        self.model_name = model
        self.language = language
        self.python_bin = python_bin or sys.executable

    def recognize(self, wav_path: Path, timeout_s: float) -> str:
        out_dir = wav_path.parent
        args = [
            self.python_bin, "-m", "whisper", str(wav_path),
            "--model", self.model_name,
            "--output_format", "txt",
            "--output_dir", str(out_dir),
            "--verbose", "False",
        ]
        if self.language:
            args += ["--language", self.language]
        try:
            proc = subprocess.run(args, capture_output=True, text=True, timeout=timeout_s)
        except subprocess.TimeoutExpired:
            raise TranscriptionFailure(f"Whisper timed out after {timeout_s:.0f}s")
        except OSError as e:
            raise TranscriptionFailure(f"Failed to start Whisper: {e}")
        if proc.returncode != 0:
            raise TranscriptionFailure(f"Whisper transcription failed with code {proc.returncode}: {proc.stderr.strip()[-2000:]}")

        expected = out_dir / f"{wav_path.stem}.txt"
        candidates = [expected] if expected.exists() else sorted(out_dir.glob(f"*{wav_path.stem}*.txt"))
        for txt in candidates:
            try:
                return txt.read_text(encoding="utf-8").strip()
            finally:
                txt.unlink(missing_ok=True)
        log.warning("whisper transcript file not found, using stdout")
        return proc.stdout.strip()


def build_recognizer(settings: Settings) -> Recognizer:
    kind = settings.recognizer.strip().lower()
    if kind == "whisper-cli":
        return WhisperCliRecognizer(model=settings.whisper_model, language=settings.language)
    if kind != "faster-whisper":
        log.warning(f"unknown recognizer '{settings.recognizer}', using faster-whisper")
    return FasterWhisperRecognizer(
        model=settings.whisper_model,
        device=settings.whisper_device,
        compute_type=settings.whisper_compute_type,
        language=settings.language,
    )


# ------------------------------- Adapter ----------------------------------
def artifact_paths(state: State, token: str, suffix: str) -> tuple[Path, Path]:
    upload = state.tmp_dir / f"{ARTIFACT_PREFIX}{token}{suffix}"
    wav = state.tmp_dir / f"{ARTIFACT_PREFIX}{token}_16k.wav"
    return upload, wav


def cleanup_artifacts(state: State, token: str) -> int:
    """Remove every temp file derived from ``token``. Returns how many were removed."""
    removed = 0
    for p in state.tmp_dir.glob(f"{ARTIFACT_PREFIX}{token}*"):
        try:
            p.unlink(missing_ok=True)
            removed += 1
        except OSError:
            log.exception(f"could not remove temp artifact {p.name}")
    return removed


def transcribe(state: State, audio: bytes, format_hint: Optional[str] = None, token: Optional[str] = None) -> str:
    """Audio bytes in, transcript out. Temp artifacts are gone when this returns or raises."""
    token = token or new_token()
    suffix = normalize_format_hint(format_hint)
    upload, wav = artifact_paths(state, token, suffix)
    timeout_s = state.settings.transcribe_timeout_s
    deadline = time.monotonic() + timeout_s
    extra = {"session": token}

    def _remaining() -> float:
        left = deadline - time.monotonic()
        if left <= 0:
            raise TranscriptionFailure(f"Transcription timed out after {timeout_s:.0f}s")
        return left

    try:
        state.tmp_dir.mkdir(parents=True, exist_ok=True)
        upload.write_bytes(audio)
        log.info(f"converting {upload.name} ({len(audio)} bytes)", extra=extra)
        state.converter(upload, wav, _remaining())
        if not wav.exists():
            raise ConversionFailure("converter produced no output")
        text = (state.recognizer.recognize(wav, _remaining()) or "").strip()
        if not text:
            raise TranscriptionFailure("No text produced")
        log.info(f"transcribed {upload.name}: {len(text)} chars", extra=extra)
        return text
    except TranscriptionFailure:
        raise
    except Exception as e:
        log.exception("transcription failed", extra=extra)
        raise TranscriptionFailure(str(e))
    finally:
        cleanup_artifacts(state, token)
