"""
Environment configuration.

Every knob is read from an environment variable once, when the app or the
client is built:

* ``GENAI_API_KEY`` / ``GENAI_MODEL`` – Gemini credentials and model used
  for structuring.
* ``TRANSCRIPTION_ENGINE`` – ``google`` (Speech-to-Text, default) or
  ``whisper`` (OpenAI, needs ``OPENAI_API_KEY``).
* ``AUDIO_BUCKET`` / ``UPLOAD_PREFIX`` – where browser uploads land.
* ``SESSION_BACKEND`` – ``firestore`` (default) or ``memory``.
* ``FIREBASE_PROJECT_ID`` – audience for ID token verification.
* ``TRANSCRIBE_TIMEOUT_SECONDS`` – budget for a single transcription.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping, Optional


@dataclass
class Settings:
    genai_api_key: Optional[str] = None
    genai_model: str = "models/gemini-1.5-flash"
    openai_api_key: Optional[str] = None
    transcription_engine: str = "google"
    whisper_model: str = "whisper-1"
    audio_bucket: str = "braindump-audio"
    upload_prefix: str = "uploads/"
    session_backend: str = "firestore"
    session_collection: str = "sessions"
    firebase_project_id: Optional[str] = None
    transcribe_timeout_seconds: int = 300
    port: int = 8080


@dataclass
class ClientSettings:
    api_url: str = "http://localhost:8080"
    token: Optional[str] = None
    transcribe_timeout_seconds: int = 300
    # Bodies above this size go through a signed upload instead of multipart.
    direct_upload_limit: int = 4 * 1024 * 1024


def load_settings(environ: Optional[Mapping[str, str]] = None) -> Settings:
    env = os.environ if environ is None else environ
    return Settings(
        genai_api_key=env.get("GENAI_API_KEY"),
        genai_model=env.get("GENAI_MODEL", "models/gemini-1.5-flash"),
        openai_api_key=env.get("OPENAI_API_KEY"),
        transcription_engine=env.get("TRANSCRIPTION_ENGINE", "google").lower(),
        whisper_model=env.get("WHISPER_MODEL", "whisper-1"),
        audio_bucket=env.get("AUDIO_BUCKET", "braindump-audio"),
        upload_prefix=env.get("UPLOAD_PREFIX", "uploads/"),
        session_backend=env.get("SESSION_BACKEND", "firestore").lower(),
        session_collection=env.get("SESSION_COLLECTION", "sessions"),
        firebase_project_id=env.get("FIREBASE_PROJECT_ID"),
        transcribe_timeout_seconds=int(env.get("TRANSCRIBE_TIMEOUT_SECONDS", 300)),
        port=int(env.get("PORT", 8080)),
    )


def load_client_settings(environ: Optional[Mapping[str, str]] = None) -> ClientSettings:
    env = os.environ if environ is None else environ
    return ClientSettings(
        api_url=env.get("BRAINDUMP_API_URL", "http://localhost:8080").rstrip("/"),
        token=env.get("BRAINDUMP_TOKEN"),
        transcribe_timeout_seconds=int(env.get("TRANSCRIBE_TIMEOUT_SECONDS", 300)),
    )
