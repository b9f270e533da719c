"""
HTTP client for the braindump API.

Used by the workflow runner and the command line.  Small recordings are
posted as multipart form data; anything above
``ClientSettings.direct_upload_limit`` is first uploaded straight to Cloud
Storage through a signed URL and then transcribed by URL.
"""

from __future__ import annotations

import logging
from typing import List, Optional

import requests
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from .config import ClientSettings
from .errors import AuthenticationError, CollaboratorError, NotFoundError, ValidationError
from .models import SavedSession, SessionContext, StructuredResult, TranscriptionResult
from .workflow import AudioReference

logger = logging.getLogger(__name__)

_ERRORS_BY_STATUS = {400: ValidationError, 401: AuthenticationError, 404: NotFoundError}


def _error_from(response: requests.Response, default: str):
    try:
        body = response.json()
    except ValueError:
        body = {}
    message = body.get("error") if isinstance(body, dict) else None
    details = body.get("details") if isinstance(body, dict) else None
    error_cls = _ERRORS_BY_STATUS.get(response.status_code, CollaboratorError)
    return error_cls(message or default, details=details or f"HTTP {response.status_code}")


class ApiClient:
    def __init__(self, settings: ClientSettings, *, session: Optional[requests.Session] = None) -> None:
        self.settings = settings
        self.http = session or requests.Session()

    def _url(self, path: str) -> str:
        return f"{self.settings.api_url}{path}"

    def _auth_headers(self) -> dict:
        if not self.settings.token:
            raise AuthenticationError("BRAINDUMP_TOKEN is not set")
        return {"Authorization": f"Bearer {self.settings.token}"}

    @retry(
        retry=retry_if_exception_type(requests.ConnectionError),
        wait=wait_exponential(multiplier=1),
        stop=stop_after_attempt(3),
        reraise=True,
    )
    def _send(self, method: str, url: str, **kwargs) -> requests.Response:
        kwargs.setdefault("timeout", 60)
        return self.http.request(method, url, **kwargs)

    # ------------------------------------------------------------ audio

    def upload(self, audio: AudioReference) -> str:
        """Upload in-memory audio to the blob store and return its URL."""
        response = self._send(
            "POST",
            self._url("/api/upload-audio"),
            json={"filename": audio.filename, "contentType": audio.content_type, "size": len(audio.data)},
        )
        if response.status_code != 200:
            raise _error_from(response, "Failed to upload audio file")
        grant = response.json()
        headers = dict(grant.get("headers") or {})
        headers["Content-Type"] = audio.content_type
        put = self._send("PUT", grant["uploadUrl"], data=audio.data, headers=headers, timeout=300)
        if not put.ok:
            raise CollaboratorError("Failed to upload audio file", details=f"HTTP {put.status_code}")
        logger.info("Uploaded %s to %s", audio.filename, grant["blobUrl"])
        return grant["blobUrl"]

    def transcribe(self, audio: AudioReference) -> TranscriptionResult:
        """Transcribe ``audio``; failures come back as a failed result."""
        timeout = self.settings.transcribe_timeout_seconds
        try:
            if audio.is_remote or len(audio.data) > self.settings.direct_upload_limit:
                url = audio.url if audio.is_remote else self.upload(audio)
                response = self._send("POST", self._url("/api/transcribe"), json={"audioUrl": url}, timeout=timeout)
            else:
                files = {"audio": (audio.filename, audio.data, audio.content_type)}
                response = self._send("POST", self._url("/api/transcribe"), files=files, timeout=timeout)
        except (requests.RequestException, CollaboratorError, ValidationError) as exc:
            logger.warning("Transcription request failed: %s", exc)
            return TranscriptionResult.failure(str(exc))

        try:
            body = response.json()
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            body = {}
        if response.status_code == 200 and body.get("success"):
            return TranscriptionResult.success(body.get("transcription", ""))
        message = body.get("details") or body.get("error") or f"HTTP {response.status_code}"
        return TranscriptionResult.failure(message)

    # ------------------------------------------------------- structuring

    def structure(self, transcript: str, context: SessionContext) -> StructuredResult:
        response = self._send(
            "POST",
            self._url("/api/structure"),
            json={"transcription": transcript, "sessionData": context.model_dump()},
        )
        if response.status_code != 200:
            raise _error_from(response, "Failed to generate structured output")
        if response.headers.get("X-Structuring-Fallback") == "true":
            logger.warning("Structured output is the fallback payload")
        return StructuredResult.model_validate(response.json())

    # ---------------------------------------------------------- sessions

    def save_session(self, context: SessionContext, result: StructuredResult, transcript: str) -> str:
        response = self._send(
            "POST",
            self._url("/api/sessions"),
            headers=self._auth_headers(),
            json={
                "sessionData": context.model_dump(),
                "structuredOutput": result.model_dump(),
                "transcription": transcript,
            },
        )
        if response.status_code != 201:
            raise _error_from(response, "Failed to save session")
        return response.json()["id"]

    def list_sessions(self) -> List[SavedSession]:
        response = self._send("GET", self._url("/api/sessions"), headers=self._auth_headers())
        if response.status_code != 200:
            raise _error_from(response, "Failed to load sessions")
        return [SavedSession.model_validate(item) for item in response.json().get("sessions", [])]

    def delete_session(self, session_id: str) -> None:
        response = self._send("DELETE", self._url(f"/api/sessions/{session_id}"), headers=self._auth_headers())
        if response.status_code != 204:
            raise _error_from(response, "Failed to delete session")
