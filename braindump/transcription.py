"""
Transcription proxy.

Accepts either raw audio bytes with a filename or the URL of a previously
uploaded blob, forwards the audio to the configured speech engine and
returns the transcript.  Blob uploads are temporary: once a transcript
exists the object is deleted on a best-effort basis.

:meth:`TranscriptionProxy.handle` is the HTTP boundary: it never raises and
always answers with a ``(payload, status)`` pair.
"""

from __future__ import annotations

import json
import logging
from typing import Optional, Tuple
from urllib.parse import urlparse

from .errors import BraindumpError, CleanupError, CollaboratorError, ValidationError
from .stt_service import SpeechEngine

logger = logging.getLogger(__name__)


def _filename_from_url(url: str) -> str:
    name = urlparse(url).path.rsplit("/", 1)[-1]
    return name or "audio.webm"


class TranscriptionProxy:
    def __init__(self, engine: SpeechEngine, blob_store) -> None:
        self.engine = engine
        self.blob_store = blob_store

    def transcribe(
        self,
        *,
        data: Optional[bytes] = None,
        filename: Optional[str] = None,
        audio_url: Optional[str] = None,
    ) -> str:
        """Transcribe one audio reference and return the text.

        Raises:
            ValidationError: If neither bytes nor a URL were supplied.
            FetchError: If the blob cannot be fetched.
            CollaboratorError: If the speech engine fails or hears nothing.
        """
        if audio_url:
            logger.info(json.dumps({"event": "fetch_audio", "url": audio_url}))
            data = self.blob_store.fetch(audio_url)
            filename = filename or _filename_from_url(audio_url)
        if not data:
            raise ValidationError("No audio file provided")

        text = self.engine.transcribe(data, filename or "audio.webm").strip()
        if not text:
            logger.info(json.dumps({"event": "empty_transcript", "file": filename}))
            raise CollaboratorError("Failed to transcribe audio", details="Transcript was empty")

        if audio_url:
            self._cleanup(audio_url)
        return text

    def _cleanup(self, audio_url: str) -> None:
        try:
            self.blob_store.delete(audio_url)
        except CleanupError as exc:
            logger.warning(
                json.dumps({"event": "cleanup_failed", "url": audio_url, "error": str(exc), "details": exc.details})
            )

    def handle(
        self,
        *,
        data: Optional[bytes] = None,
        filename: Optional[str] = None,
        audio_url: Optional[str] = None,
    ) -> Tuple[dict, int]:
        if not data and not audio_url:
            return {"error": "No audio file provided"}, 400
        try:
            text = self.transcribe(data=data, filename=filename, audio_url=audio_url)
        except ValidationError as exc:
            return exc.to_payload(), exc.status_code
        except BraindumpError as exc:
            logger.error(json.dumps({"event": "transcription_failed", "error": exc.message, "details": exc.details}))
            return {"error": "Failed to transcribe audio", "details": exc.details or exc.message}, 500
        except Exception as exc:
            logger.exception("Transcription error")
            return {"error": "Failed to transcribe audio", "details": str(exc) or "Unknown error"}, 500
        logger.info(json.dumps({"event": "transcription_complete", "chars": len(text)}))
        return {"transcription": text, "success": True}, 200
