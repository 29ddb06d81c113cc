import io
import json
import logging

import pytest

from triage_worker.app import create_app
from triage_worker.config import Settings
from triage_worker.logging import (
    REQUEST_ID_HEADER,
    JsonFormatter,
    RequestIdFilter,
    request_id_var,
    resolve_level,
)
from triage_worker.services import session as svc


class ListHandler(logging.Handler):
    def __init__(self):
        super().__init__()
        self.records = []

    def emit(self, record):
        self.records.append(record)


@pytest.mark.parametrize(
    "value, expected",
    [
        ("debug", logging.DEBUG),
        ("WARNING", logging.WARNING),
        ("15", 15),
        (logging.ERROR, logging.ERROR),
        ("nonsense", logging.INFO),
        ("", logging.INFO),
        (None, logging.INFO),
    ],
)
def test_resolve_level(value, expected):
    assert resolve_level(value) == expected


def test_settings_log_level_drives_root_logger(tmp_path, monkeypatch):
    monkeypatch.delenv("WORKER_LOG_LEVEL", raising=False)
    create_app(Settings(data_dir=str(tmp_path), categorizer="off", log_level="DEBUG"))
    assert logging.getLogger().level == logging.DEBUG
    assert logging.getLogger("app.session").level == logging.DEBUG
    create_app(Settings(data_dir=str(tmp_path), categorizer="off"))
    assert logging.getLogger().level == logging.INFO


def test_formatter_promotes_structured_fields():
    record = logging.makeLogRecord(
        {"name": "app.session", "levelname": "INFO", "msg": "received", "session": "abc123", "phase": "uploading"}
    )
    data = json.loads(JsonFormatter().format(record))
    assert data["message"] == "received"
    assert data["session"] == "abc123"
    assert data["phase"] == "uploading"
    assert "request_id" not in data


def test_request_id_filter_reads_context():
    reset = request_id_var.set("rid-1")
    try:
        record = logging.makeLogRecord({"msg": "x"})
        RequestIdFilter().filter(record)
    finally:
        request_id_var.reset(reset)
    assert json.loads(JsonFormatter().format(record))["request_id"] == "rid-1"


def test_response_carries_request_id(client):
    r = client.get("/health")
    assert r.headers[REQUEST_ID_HEADER]
    r = client.get("/health", headers={REQUEST_ID_HEADER: "from-client"})
    assert r.headers[REQUEST_ID_HEADER] == "from-client"


def test_session_logs_carry_token(state):
    handler = ListHandler()
    logger = logging.getLogger("app.session")
    previous = logger.level
    logger.setLevel(logging.INFO)
    logger.addHandler(handler)
    try:
        s = svc.process_audio(state, io.BytesIO(b"audio"))
    finally:
        logger.removeHandler(handler)
        logger.setLevel(previous)
    info = [r for r in handler.records if r.levelno >= logging.INFO]
    assert info
    assert all(getattr(r, "session", None) == s.token for r in info)
