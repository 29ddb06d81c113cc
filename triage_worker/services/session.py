from __future__ import annotations

import logging
import threading
from collections import OrderedDict
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import BinaryIO, Dict, FrozenSet, List, Mapping, Optional, Tuple

from ..errors import (
    SessionNotFound,
    SessionStateError,
    TranscriptionFailure,
    TriageError,
    UploadRejected,
    UploadTooLarge,
)
from ..models.categorize import CategorizationResult
from ..models.export import FeedbackRecord
from ..state import State
from . import storage
from . import transcriber as asr_svc
from .categorizer import categorize_with_source
from .exporter import ExportDocument, format_document
from .reconcile import DecisionKey, Reconciliation, reconcile, require_approved, utc_iso, utc_now_iso

log = logging.getLogger("app.session")

READ_CHUNK = 1024 * 1024


class SessionPhase(str, Enum):
    IDLE = "idle"
    UPLOADING = "uploading"
    TRANSCRIBING = "transcribing"
    CATEGORIZING = "categorizing"
    AWAITING_DECISIONS = "awaiting_decisions"
    RECONCILED = "reconciled"
    EXPORTED = "exported"
    FAILED = "failed"


P = SessionPhase
_TRANSITIONS: Dict[SessionPhase, FrozenSet[SessionPhase]] = {
    P.IDLE: frozenset({P.UPLOADING}),
    P.UPLOADING: frozenset({P.TRANSCRIBING, P.FAILED}),
    P.TRANSCRIBING: frozenset({P.CATEGORIZING, P.FAILED}),
    P.CATEGORIZING: frozenset({P.AWAITING_DECISIONS, P.FAILED}),
    P.AWAITING_DECISIONS: frozenset({P.RECONCILED}),
    P.RECONCILED: frozenset({P.RECONCILED, P.EXPORTED}),
    P.EXPORTED: frozenset(),
    P.FAILED: frozenset(),
}


@dataclass
class Session:
    token: str = field(default_factory=asr_svc.new_token)
    phase: SessionPhase = SessionPhase.IDLE
    created_at: str = field(default_factory=utc_now_iso)
    transcript: Optional[str] = None
    result: Optional[CategorizationResult] = None
    source: Optional[str] = None
    error: Optional[str] = None
    feedback_path: Optional[Path] = None
    # Held across reconcile/export so one session exports at most once.
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    @property
    def log_extra(self) -> Dict[str, str]:
        return {"session": self.token, "phase": self.phase.value}

    def can_advance(self, to: SessionPhase) -> bool:
        return to in _TRANSITIONS[self.phase]

    def advance(self, to: SessionPhase) -> None:
        if not self.can_advance(to):
            raise SessionStateError(f"cannot go from {self.phase.value} to {to.value}")
        log.debug(f"{self.phase.value} -> {to.value}", extra=self.log_extra)
        self.phase = to


class SessionStore:
    """In-memory sessions, oldest evicted first once ``max_sessions`` is reached."""

    def __init__(self, max_sessions: int = 256):
        self.max_sessions = max_sessions
        self._items: "OrderedDict[str, Session]" = OrderedDict()
        self._lock = threading.Lock()

    def add(self, session: Session) -> Session:
        with self._lock:
            self._items[session.token] = session
            while len(self._items) > self.max_sessions:
                self._items.popitem(last=False)
        return session

    def get(self, token: str) -> Session:
        with self._lock:
            session = self._items.get(token)
        if session is None:
            raise SessionNotFound(f"no session {token}")
        return session

    def discard(self, token: str) -> Optional[Session]:
        with self._lock:
            return self._items.pop(token, None)

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)


@dataclass
class ReconcileOutcome:
    session: Session
    reconciliation: Reconciliation
    feedback_path: Optional[Path] = None
    export_path: Optional[Path] = None
    document: Optional[ExportDocument] = None

    @property
    def exported_at(self) -> Optional[str]:
        return utc_iso(self.document.generated_at) if self.document is not None else None


# ------------------------------- Upload -----------------------------------
def read_limited(source: BinaryIO, limit: int) -> bytes:
    chunks: List[bytes] = []
    total = 0
    while True:
        chunk = source.read(READ_CHUNK)
        if not chunk:
            break
        total += len(chunk)
        if total > limit:
            mb = limit // (1024 * 1024)
            raise UploadTooLarge(message=f"File too large. Maximum size is {mb}MB.")
        chunks.append(chunk)
    return b"".join(chunks)


def _check_content_type(content_type: Optional[str]) -> None:
    if content_type and not content_type.lower().startswith("audio/"):
        raise UploadRejected(content_type, message="Invalid file type. Only audio files are allowed.")


def _fail(state: State, session: Session, exc: BaseException) -> None:
    if session.can_advance(SessionPhase.FAILED):
        session.advance(SessionPhase.FAILED)
    session.error = getattr(exc, "details", None) or str(exc)
    asr_svc.cleanup_artifacts(state, session.token)
    log.warning(f"failed: {session.error}", extra=session.log_extra)


def process_audio(
    state: State,
    source: BinaryIO,
    *,
    filename: Optional[str] = None,
    content_type: Optional[str] = None,
    format_hint: Optional[str] = None,
) -> Session:
    """Upload -> transcribe -> categorize. Returns the session awaiting decisions."""
    session = state.sessions.add(Session())
    session.advance(SessionPhase.UPLOADING)
    try:
        _check_content_type(content_type)
        audio = read_limited(source, state.settings.max_upload_bytes)
        if not audio:
            raise UploadRejected(message="No audio file provided")
        suffix = asr_svc.normalize_format_hint(format_hint, filename, content_type)
        log.info(f"received {len(audio)} bytes ({suffix})", extra=session.log_extra)

        session.advance(SessionPhase.TRANSCRIBING)
        session.transcript = asr_svc.transcribe(state, audio, suffix, token=session.token)

        session.advance(SessionPhase.CATEGORIZING)
        session.result, session.source = categorize_with_source(state, session.transcript)
        session.advance(SessionPhase.AWAITING_DECISIONS)
    except TriageError as e:
        _fail(state, session, e)
        raise
    except Exception as e:
        _fail(state, session, e)
        raise TranscriptionFailure(str(e))
    r = session.result
    log.info(
        f"{len(r.important)} important, {len(r.noise)} noise, {len(r.uncertain)} uncertain via {session.source}",
        extra=session.log_extra,
    )
    return session


def abandon(state: State, token: str) -> Session:
    session = state.sessions.get(token)
    asr_svc.cleanup_artifacts(state, token)
    state.sessions.discard(token)
    log.info("abandoned", extra=session.log_extra)
    return session


# ------------------------------ Persistence -------------------------------
def export_content(state: State, content: List[str], profile: object) -> Tuple[Path, ExportDocument]:
    items = require_approved(content)
    doc = format_document(items, profile)
    return storage.save_export(state.outputs_dir, doc), doc


def save_feedback(state: State, record: FeedbackRecord) -> Optional[Path]:
    """Best-effort: failures are logged, never raised."""
    try:
        return storage.save_feedback(state.feedback_dir, record)
    except Exception:
        log.exception("feedback save failed")
        return None


def reconcile_session(
    state: State,
    token: str,
    decisions: Mapping[DecisionKey, object],
    *,
    profile: object = "default",
    export: bool = True,
) -> ReconcileOutcome:
    """Apply ``decisions``; with ``export`` also write the document and the feedback record.

    Feedback is written once per session, on the call that exports it. Calls
    with ``export=False`` only preview the approved set.
    """
    session = state.sessions.get(token)
    with session.lock:
        if session.phase not in (SessionPhase.AWAITING_DECISIONS, SessionPhase.RECONCILED) or session.result is None:
            raise SessionStateError(f"session is {session.phase.value}")
        rec = reconcile(session.result, decisions)
        session.advance(SessionPhase.RECONCILED)
        outcome = ReconcileOutcome(session=session, reconciliation=rec)
        if not export:
            return outcome

        outcome.export_path, outcome.document = export_content(state, rec.approved, profile)
        session.advance(SessionPhase.EXPORTED)
        session.feedback_path = outcome.feedback_path = save_feedback(state, rec.feedback)
    return outcome
