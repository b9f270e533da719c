import io
import logging

from braindump.errors import CollaboratorError
from braindump.transcription import TranscriptionProxy

from conftest import FakeEngine

BLOB_URL = "https://storage.googleapis.com/audio-bucket/uploads/abc-opptak.webm"


def put_blob(storage_client, name="uploads/abc-opptak.webm", data=b"RIFFdata"):
    storage_client.bucket("audio-bucket").blob(name).data = data


def test_multipart_upload_is_transcribed(client, engine):
    rv = client.post(
        "/api/transcribe",
        data={"audio": (io.BytesIO(b"RIFFdata"), "opptak.wav")},
        content_type="multipart/form-data",
    )
    assert rv.status_code == 200
    body = rv.get_json()
    assert body == {"transcription": engine.text, "success": True}
    assert engine.calls == [(b"RIFFdata", "opptak.wav")]


def test_missing_audio_returns_400(client):
    rv = client.post("/api/transcribe", data={}, content_type="multipart/form-data")
    assert rv.status_code == 400
    assert rv.get_json()["error"] == "No audio file provided"

    rv = client.post("/api/transcribe", json={})
    assert rv.status_code == 400


def test_collaborator_failure_returns_500_with_details(client, engine):
    engine.error = CollaboratorError("Speech-to-Text request failed", details="503 backend unavailable")
    rv = client.post(
        "/api/transcribe",
        data={"audio": (io.BytesIO(b"RIFFdata"), "opptak.wav")},
        content_type="multipart/form-data",
    )
    assert rv.status_code == 500
    body = rv.get_json()
    assert body["error"] == "Failed to transcribe audio"
    assert body["details"] == "503 backend unavailable"


def test_unexpected_engine_error_is_contained(blob_store):
    proxy = TranscriptionProxy(FakeEngine(error=RuntimeError("boom")), blob_store)
    payload, status = proxy.handle(data=b"x", filename="a.wav")
    assert status == 500
    assert payload["details"] == "boom"


def test_empty_transcript_is_a_failure(blob_store):
    proxy = TranscriptionProxy(FakeEngine(text="   "), blob_store)
    payload, status = proxy.handle(data=b"x", filename="a.wav")
    assert status == 500
    assert payload["details"] == "Transcript was empty"


def test_blob_url_is_fetched_and_deleted(client, engine, storage_client):
    put_blob(storage_client)
    rv = client.post("/api/transcribe", json={"audioUrl": BLOB_URL})

    assert rv.status_code == 200
    assert rv.get_json()["success"] is True
    assert engine.calls == [(b"RIFFdata", "abc-opptak.webm")]
    assert "uploads/abc-opptak.webm" not in storage_client.bucket("audio-bucket").blobs


def test_missing_blob_is_a_fetch_failure(client, engine):
    rv = client.post("/api/transcribe", json={"audioUrl": BLOB_URL})
    assert rv.status_code == 500
    assert rv.get_json()["error"] == "Failed to transcribe audio"
    assert "does not exist" in rv.get_json()["details"]
    assert engine.calls == []


def test_cleanup_failure_does_not_fail_request(blob_store, storage_client, monkeypatch, caplog):
    put_blob(storage_client)

    def broken_delete(url):
        from braindump.errors import CleanupError

        raise CleanupError("Failed to delete blob", details="403 forbidden")

    monkeypatch.setattr(blob_store, "delete", broken_delete)
    proxy = TranscriptionProxy(FakeEngine(), blob_store)
    with caplog.at_level(logging.WARNING):
        payload, status = proxy.handle(audio_url=BLOB_URL)

    assert status == 200
    assert payload["success"] is True
    assert "cleanup_failed" in caplog.text


def test_blob_is_kept_when_transcription_fails(blob_store, storage_client):
    put_blob(storage_client)
    proxy = TranscriptionProxy(FakeEngine(error=CollaboratorError("down")), blob_store)
    _, status = proxy.handle(audio_url=BLOB_URL)
    assert status == 500
    assert storage_client.bucket("audio-bucket").blobs["uploads/abc-opptak.webm"].data == b"RIFFdata"
