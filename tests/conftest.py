from __future__ import annotations

from pathlib import Path
from typing import Any, List, Mapping, Optional

import pytest
from fastapi.testclient import TestClient

from triage_worker.app import create_app
from triage_worker.config import Settings
from triage_worker.state import State, build_state

SAMPLE_TRANSCRIPT = "Revenue grew 15%. Um, nice day. Let's meet Friday."


class StubRecognizer:
    def __init__(self, text: str = SAMPLE_TRANSCRIPT, error: Optional[Exception] = None):
        self.text = text
        self.error = error
        self.calls: List[Path] = []

    def recognize(self, wav_path: Path, timeout_s: float) -> str:
        assert wav_path.exists()
        self.calls.append(wav_path)
        if self.error is not None:
            raise self.error
        return self.text


class StubCategorizer:
    def __init__(self, payload: Any = None, error: Optional[Exception] = None):
        self.payload = payload
        self.error = error
        self.calls = 0

    def categorize(self, transcript: str, timeout_s: float) -> Mapping[str, Any]:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.payload


def copy_converter(src: Path, dst: Path, timeout_s: float) -> None:
    dst.write_bytes(src.read_bytes())


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(data_dir=str(tmp_path), categorizer="off", max_upload_mb=1)


@pytest.fixture
def state(settings: Settings) -> State:
    st = build_state(settings)
    st.converter = copy_converter
    st.recognizer = StubRecognizer()
    return st


@pytest.fixture
def app(settings: Settings):
    application = create_app(settings)
    st = application.state.state
    st.converter = copy_converter
    st.recognizer = StubRecognizer()
    return application


@pytest.fixture
def client(app) -> TestClient:
    return TestClient(app)


def files_in(directory: Path) -> List[str]:
    return sorted(p.name for p in directory.iterdir()) if directory.exists() else []
