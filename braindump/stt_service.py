"""
Speech-to-text engines.

Both engines take raw audio bytes plus the original filename and return
plain transcript text.  Output is pinned to Norwegian and decoded
deterministically; each engine also gets a short priming hint that biases
recognition toward the target language.

* :class:`GoogleSpeechEngine` – Google Cloud Speech-to-Text (default).
  Audio is converted to 16 kHz mono LINEAR16 and staged in the audio
  bucket, so recordings longer than the inline limit still work.
* :class:`WhisperEngine` – OpenAI Whisper, selected with
  ``TRANSCRIPTION_ENGINE=whisper``.

Usage::

    from braindump.stt_service import build_engine

    engine = build_engine(settings, blob_store)
    text = engine.transcribe(data, "opptak.webm")
"""

from __future__ import annotations

import concurrent.futures
import json
import logging
import uuid
from typing import Any, Dict, Optional, Protocol

from google.api_core import exceptions as gcloud_exceptions
from google.cloud import speech_v1p1beta1 as speech
from google.protobuf.json_format import MessageToDict
from openai import OpenAI, OpenAIError

from . import audio_processor
from .blob_store import GcsBlobStore
from .config import Settings
from .errors import CleanupError, CollaboratorError

logger = logging.getLogger(__name__)

WHISPER_LANGUAGE = "no"
GOOGLE_LANGUAGE = "nb-NO"
PRIMING_PROMPT = "This is a Norwegian language audio recording. Please transcribe it in Norwegian."
# Google has no free-text prompt; phrase hints play the same role.
PRIMING_PHRASES = ["idé", "ideer", "mål", "kunder", "produkt", "marked", "strategi"]
# Converted WAVs are staged here, under the upload prefix, while Google reads them.
STAGING_FOLDER = "stt/"


class SpeechEngine(Protocol):
    def transcribe(self, data: bytes, filename: str) -> str:  # pragma: no cover - interface only
        ...


def extract_transcript(response: Dict[str, Any]) -> str:
    """Join the best alternative of every result into one transcript."""
    lines = []
    for chunk in response.get("results", []):
        alternatives = chunk.get("alternatives", [])
        if alternatives:
            text = alternatives[0].get("transcript", "").strip()
            if text:
                lines.append(text)
    return "\n".join(lines)


class GoogleSpeechEngine:
    """Google Speech-to-Text over ``long_running_recognize``.

    With a ``staging`` blob store the converted WAV is uploaded to the audio
    bucket and recognised by ``gs://`` URI, then deleted.  Without one the
    audio is sent inline, which the API caps at about five minutes of
    16 kHz LINEAR16.
    """

    def __init__(
        self,
        *,
        language_code: str = GOOGLE_LANGUAGE,
        timeout_seconds: int = 300,
        staging: Optional[GcsBlobStore] = None,
        client=None,
    ) -> None:
        self.language_code = language_code
        self.timeout_seconds = timeout_seconds
        self.staging = staging
        self._client = client

    @property
    def client(self):
        if self._client is None:
            self._client = speech.SpeechClient()
        return self._client

    def recognition_config(self) -> speech.RecognitionConfig:
        return speech.RecognitionConfig(
            encoding=speech.RecognitionConfig.AudioEncoding.LINEAR16,
            sample_rate_hertz=audio_processor.TARGET_SAMPLE_RATE,
            language_code=self.language_code,
            enable_automatic_punctuation=True,
            max_alternatives=1,
            speech_contexts=[speech.SpeechContext(phrases=PRIMING_PHRASES)],
        )

    def _stage(self, wav: bytes) -> str:
        object_name = f"{self.staging.prefix}{STAGING_FOLDER}{uuid.uuid4().hex}.wav"
        try:
            return self.staging.put(object_name, wav, content_type="audio/wav")
        except gcloud_exceptions.GoogleAPICallError as exc:
            raise CollaboratorError("Could not stage audio for Speech-to-Text", details=str(exc)) from exc

    def _unstage(self, gcs_uri: str) -> None:
        try:
            self.staging.delete(gcs_uri)
        except CleanupError as exc:
            logger.warning(
                json.dumps({"event": "cleanup_failed", "url": gcs_uri, "error": str(exc), "details": exc.details})
            )

    def transcribe(self, data: bytes, filename: str) -> str:
        try:
            wav = audio_processor.to_linear16(data, filename)
        except Exception as exc:
            raise CollaboratorError("Could not decode audio", details=str(exc)) from exc

        gcs_uri = self._stage(wav) if self.staging is not None else None
        audio = speech.RecognitionAudio(uri=gcs_uri) if gcs_uri else speech.RecognitionAudio(content=wav)
        logger.info("Starting STT job for %s (%d bytes)", gcs_uri or filename, len(wav))
        try:
            operation = self.client.long_running_recognize(config=self.recognition_config(), audio=audio)
            response = operation.result(timeout=self.timeout_seconds)
        except gcloud_exceptions.GoogleAPIError as exc:
            raise CollaboratorError("Speech-to-Text request failed", details=str(exc)) from exc
        except concurrent.futures.TimeoutError as exc:
            raise CollaboratorError(
                "Speech-to-Text timed out",
                details=f"No result after {self.timeout_seconds} seconds",
            ) from exc
        finally:
            if gcs_uri:
                self._unstage(gcs_uri)
        logger.info("STT job complete for %s", filename)
        return extract_transcript(MessageToDict(response._pb))


class WhisperEngine:
    def __init__(
        self,
        *,
        api_key: str | None = None,
        model: str = "whisper-1",
        language: str = WHISPER_LANGUAGE,
        timeout_seconds: int = 300,
        client=None,
    ) -> None:
        self.model = model
        self.language = language
        self._client = client or OpenAI(api_key=api_key, timeout=timeout_seconds)

    def transcribe(self, data: bytes, filename: str) -> str:
        logger.info("Calling %s for %s (%d bytes)", self.model, filename, len(data))
        try:
            transcription = self._client.audio.transcriptions.create(
                file=(filename, data),
                model=self.model,
                language=self.language,
                temperature=0.0,
                prompt=PRIMING_PROMPT,
            )
        except OpenAIError as exc:
            raise CollaboratorError("Whisper request failed", details=str(exc)) from exc
        return transcription.text.strip()


def build_engine(settings: Settings, blob_store: Optional[GcsBlobStore] = None) -> SpeechEngine:
    if settings.transcription_engine == "whisper":
        return WhisperEngine(
            api_key=settings.openai_api_key,
            model=settings.whisper_model,
            timeout_seconds=settings.transcribe_timeout_seconds,
        )
    if settings.transcription_engine != "google":
        raise ValueError(f"Unknown transcription engine: {settings.transcription_engine}")
    return GoogleSpeechEngine(timeout_seconds=settings.transcribe_timeout_seconds, staging=blob_store)
