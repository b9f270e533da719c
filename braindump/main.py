"""
HTTP entrypoints.

Routes:

* ``POST /api/transcribe`` – JSON ``{audioUrl}`` or multipart ``audio``.
* ``POST /api/upload-audio`` – signed upload URL for a browser upload.
* ``POST /api/structure`` – ``{transcription, sessionData}``.
* ``GET|POST /api/sessions`` and ``DELETE /api/sessions/<id>`` – saved
  sessions of the authenticated caller.
* ``GET /healthz``.

Configuration comes from the environment, see :mod:`braindump.config`.
Run locally with ``braindump serve`` or ``python -m braindump.main``.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Optional

from flask import Blueprint, Flask, current_app, jsonify, request

from .blob_store import GcsBlobStore
from .config import Settings, load_settings
from .errors import BraindumpError, NotFoundError, ValidationError
from .identity import FirebaseIdentity
from .models import parse_session_context, parse_structured_result
from .session_store import SessionStore, build_store
from .stt_service import build_engine
from .structuring import StructuringProxy
from .transcription import TranscriptionProxy

logger = logging.getLogger(__name__)

api = Blueprint("api", __name__, url_prefix="/api")


@dataclass
class Services:
    transcription: TranscriptionProxy
    structuring: StructuringProxy
    blob_store: GcsBlobStore
    sessions: SessionStore
    identity: FirebaseIdentity


def build_services(settings: Settings) -> Services:
    blob_store = GcsBlobStore(settings.audio_bucket, prefix=settings.upload_prefix)
    return Services(
        transcription=TranscriptionProxy(build_engine(settings, blob_store), blob_store),
        structuring=StructuringProxy(api_key=settings.genai_api_key, model_name=settings.genai_model),
        blob_store=blob_store,
        sessions=build_store(settings.session_backend, settings.session_collection),
        identity=FirebaseIdentity(settings.firebase_project_id),
    )


def _services() -> Services:
    return current_app.extensions["braindump"]


def _current_user() -> str:
    return _services().identity.user_id(request.headers.get("Authorization"))


@api.route("/transcribe", methods=["POST"])
def transcribe():
    proxy = _services().transcription
    if request.is_json:
        data = request.get_json(silent=True) or {}
        audio_url = data.get("audioUrl") if isinstance(data, dict) else None
        logger.info(json.dumps({"event": "request", "route": "transcribe", "audioUrl": audio_url}))
        payload, status = proxy.handle(audio_url=audio_url)
    else:
        upload = request.files.get("audio")
        audio = upload.read() if upload else None
        filename = upload.filename if upload else None
        logger.info(json.dumps({"event": "request", "route": "transcribe", "file": filename}))
        payload, status = proxy.handle(data=audio, filename=filename)
    return jsonify(payload), status


@api.route("/upload-audio", methods=["POST"])
def upload_audio():
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError("filename and contentType are required")
    size = data.get("size")
    if size is not None and (isinstance(size, bool) or not isinstance(size, int)):
        raise ValidationError("size must be an integer number of bytes")
    grant = _services().blob_store.create_upload(data.get("filename", ""), data.get("contentType", ""), size)
    return jsonify(grant.to_payload()), 200


@api.route("/structure", methods=["POST"])
def structure():
    body = request.get_json(silent=True)
    payload, status, headers = _services().structuring.handle(body)
    return jsonify(payload), status, headers


@api.route("/sessions", methods=["GET"])
def list_sessions():
    user_id = _current_user()
    sessions = _services().sessions.load(user_id)
    return jsonify({"sessions": [s.model_dump(mode="json", by_alias=True) for s in sessions]}), 200


@api.route("/sessions", methods=["POST"])
def save_session():
    user_id = _current_user()
    body = request.get_json(silent=True)
    if not isinstance(body, dict):
        raise ValidationError("Session data, structured output and transcription are required")
    context = parse_session_context(body.get("sessionData"))
    result = parse_structured_result(body.get("structuredOutput"))
    transcript = body.get("transcription")
    if not isinstance(transcript, str) or not transcript.strip():
        raise ValidationError("Transcription is required")
    session_id = _services().sessions.save(user_id, context, result, transcript)
    logger.info(json.dumps({"event": "session_saved", "id": session_id}))
    return jsonify({"id": session_id}), 201


@api.route("/sessions/<session_id>", methods=["DELETE"])
def delete_session(session_id: str):
    user_id = _current_user()
    store = _services().sessions
    existing = store.get(session_id)
    if existing is None or existing.user_id != user_id:
        raise NotFoundError("Session not found")
    store.delete(session_id)
    logger.info(json.dumps({"event": "session_deleted", "id": session_id}))
    return "", 204


def _handle_error(exc: BraindumpError):
    if exc.status_code >= 500:
        logger.error(json.dumps({"event": "error", "error": exc.message, "details": exc.details}))
    return jsonify(exc.to_payload()), exc.status_code


def create_app(settings: Optional[Settings] = None, services: Optional[Services] = None) -> Flask:
    settings = settings or load_settings()
    app = Flask(__name__)
    app.config["SETTINGS"] = settings
    app.extensions["braindump"] = services or build_services(settings)
    app.register_blueprint(api)
    app.register_error_handler(BraindumpError, _handle_error)

    @app.route("/healthz", methods=["GET"])
    def healthz():
        return jsonify({"status": "ok"}), 200

    return app


def serve(settings: Optional[Settings] = None) -> None:
    logging.basicConfig(level=logging.INFO, format="%(message)s")
    settings = settings or load_settings()
    app = create_app(settings)
    app.run(host="0.0.0.0", port=settings.port)


if __name__ == "__main__":
    serve()
