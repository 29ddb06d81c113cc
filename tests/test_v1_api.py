from conftest import SAMPLE_TRANSCRIPT, StubCategorizer, StubRecognizer, files_in


def _upload(client, data=b"webm-bytes", name="recording.webm", ctype="audio/webm"):
    return client.post("/v1/transcribe", files={"audio": (name, data, ctype)})


def test_health(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json()["status"] == "ok"


def test_unknown_endpoint(client):
    r = client.get("/v1/nope")
    assert r.status_code == 404
    assert r.json()["error"] == "Endpoint not found"


def test_transcribe_returns_fallback_categorization(client, app):
    r = _upload(client)
    assert r.status_code == 200
    body = r.json()
    assert body["transcript"] == SAMPLE_TRANSCRIPT
    assert body["important"] == ["Revenue grew 15%"]
    assert body["noise"] == ["Um, nice day"]
    assert body["uncertain"] == ["Let's meet Friday"]
    assert body["source"] == "fallback"
    assert body["session_id"]
    assert body["timestamp"].endswith("Z")
    assert files_in(app.state.state.tmp_dir) == []


def test_transcribe_uses_model_result(client, app):
    app.state.state.categorizer = StubCategorizer(
        {"important": ["Let's meet Friday"], "noise": [], "uncertain": ["Revenue grew 15%"]}
    )
    body = _upload(client).json()
    assert body["source"] == "model"
    assert body["important"] == ["Let's meet Friday"]


def test_transcribe_failure_payload(client, app):
    app.state.state.recognizer = StubRecognizer(error=RuntimeError("whisper exited 1"))
    r = _upload(client)
    assert r.status_code == 500
    assert r.json()["error"] == "Failed to process audio"
    assert "whisper exited 1" in r.json()["details"]
    assert files_in(app.state.state.tmp_dir) == []


def test_transcribe_rejects_missing_file(client):
    r = client.post("/v1/transcribe")
    assert r.status_code == 400
    assert r.json()["error"] == "No audio file provided"


def test_transcribe_rejects_non_audio(client):
    r = _upload(client, name="notes.txt", ctype="text/plain")
    assert r.status_code == 400
    assert "Only audio files" in r.json()["error"]


def test_transcribe_rejects_oversize(client, app):
    limit = app.state.state.settings.max_upload_bytes
    r = _upload(client, data=b"x" * (limit + 1))
    assert r.status_code == 413
    assert r.json()["error"] == "File too large. Maximum size is 1MB."


def test_full_review_flow(client, app):
    sid = _upload(client).json()["session_id"]
    r = client.post(
        f"/v1/sessions/{sid}/reconcile",
        json={"decisions": {"Let's meet Friday": "important"}, "agentType": "action-items"},
    )
    assert r.status_code == 200
    body = r.json()
    assert body["approved"] == ["Revenue grew 15%", "Let's meet Friday"]
    assert body["feedback_saved"] is True
    assert body["export"]["filename"].startswith("action-items_")
    text = (app.state.state.outputs_dir / body["export"]["filename"]).read_text(encoding="utf-8")
    lines = text.split("\n")
    assert lines[0].startswith("ACTION ITEMS - ")
    assert lines[5:7] == ["[ ] Revenue grew 15%", "[ ] Let's meet Friday"]
    assert lines[-1] == "--- Check off when completed ---"
    assert files_in(app.state.state.feedback_dir) == [body["feedback_filename"]]

    assert client.get(f"/v1/sessions/{sid}").json()["phase"] == "exported"
    again = client.post(f"/v1/sessions/{sid}/reconcile", json={"decisions": {}})
    assert again.status_code == 409


def test_session_lookup_and_abandon(client):
    sid = _upload(client).json()["session_id"]
    got = client.get(f"/v1/sessions/{sid}").json()
    assert got["phase"] == "awaiting_decisions"
    assert got["result"]["uncertain"] == ["Let's meet Friday"]
    assert client.delete(f"/v1/sessions/{sid}").json()["ok"] is True
    assert client.get(f"/v1/sessions/{sid}").status_code == 404


def test_save_writes_document(client, app):
    r = client.post(
        "/v1/save",
        json={"content": ["First", "Second"], "agentType": "meeting-notes", "timestamp": "2026-01-01T00:00:00Z"},
    )
    assert r.status_code == 200
    body = r.json()
    assert body["success"] is True
    assert body["filename"].startswith("meeting-notes_") and body["filename"].endswith(".txt")
    assert files_in(app.state.state.outputs_dir) == [body["filename"]]
    assert body["filename"].split("_")[1] == body["timestamp"][:10]


def test_save_unknown_profile_uses_default(client):
    body = client.post("/v1/save", json={"content": ["x"], "agentType": "../../etc"}).json()
    assert body["filename"].startswith("default_")


def test_save_rejects_empty_content(client, app):
    r = client.post("/v1/save", json={"content": [], "agentType": "summary"})
    assert r.status_code == 400
    assert r.json()["error"] == "No content provided"
    assert files_in(app.state.state.outputs_dir) == []


def test_save_write_failure_is_reported(client, app, tmp_path):
    blocker = tmp_path / "ro"
    blocker.write_text("x")
    app.state.state.outputs_dir = blocker
    r = client.post("/v1/save", json={"content": ["x"], "agentType": "summary"})
    assert r.status_code == 500
    assert r.json()["error"] == "Failed to save content"


FEEDBACK = {
    "timestamp": "2026-01-01T00:00:00Z",
    "original": {"important": ["a"], "noise": ["b"], "uncertain": ["c"]},
    "userChoices": {"c": "important"},
}


def test_feedback_saved(client, app):
    r = client.post("/v1/feedback", json=FEEDBACK)
    assert r.status_code == 200
    body = r.json()
    assert body["success"] is True and body["saved"] is True
    assert files_in(app.state.state.feedback_dir) == [body["filename"]]


def test_feedback_write_failure_still_succeeds(client, app, tmp_path):
    blocker = tmp_path / "fb"
    blocker.write_text("x")
    app.state.state.feedback_dir = blocker
    r = client.post("/v1/feedback", json=FEEDBACK)
    assert r.status_code == 200
    body = r.json()
    assert body["success"] is True
    assert body["saved"] is False
    assert body["filename"] is None


def test_feedback_rejects_unknown_label(client):
    bad = dict(FEEDBACK, userChoices={"c": "maybe"})
    assert client.post("/v1/feedback", json=bad).status_code == 400
