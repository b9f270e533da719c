"""
Cloud Storage access for uploaded audio.

Browsers upload recordings straight to the bucket with a short-lived V4
signed URL, then hand the resulting blob URL to ``/api/transcribe``.  The
transcription proxy fetches the bytes back through :meth:`GcsBlobStore.fetch`
and removes the object with :meth:`GcsBlobStore.delete` once it has a
transcript.

Accepted URL forms for objects in the configured bucket::

    gs://<bucket>/<name>
    https://storage.googleapis.com/<bucket>/<name>

Any other ``http(s)`` URL is fetched with a plain GET.
"""

from __future__ import annotations

import json
import logging
import re
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional, Tuple
from urllib.parse import unquote, urlparse

import requests
from google.api_core import exceptions as gcloud_exceptions
from google.cloud import storage
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from . import audio_processor
from .errors import CleanupError, FetchError, ValidationError

logger = logging.getLogger(__name__)

UPLOAD_TOKEN_TTL = timedelta(minutes=10)
PUBLIC_HOST = "storage.googleapis.com"


@dataclass
class UploadGrant:
    upload_url: str
    blob_url: str
    object_name: str
    content_type: str
    expires_at: datetime
    headers: dict

    def to_payload(self) -> dict:
        return {
            "uploadUrl": self.upload_url,
            "blobUrl": self.blob_url,
            "pathname": self.object_name,
            "contentType": self.content_type,
            "expiresAt": self.expires_at.isoformat(),
            "headers": self.headers,
        }


def _sanitise_filename(filename: str) -> str:
    base = filename.rsplit("/", 1)[-1].strip() or "audio"
    return re.sub(r"[^A-Za-z0-9._-]+", "-", base)


@retry(
    retry=retry_if_exception_type(requests.ConnectionError),
    wait=wait_exponential(multiplier=1),
    stop=stop_after_attempt(3),
    reraise=True,
)
def _http_get(url: str) -> requests.Response:
    return requests.get(url, timeout=60)


class GcsBlobStore:
    """Blob store backed by a single Cloud Storage bucket."""

    def __init__(self, bucket_name: str, *, prefix: str = "uploads/", client=None) -> None:
        self.bucket_name = bucket_name
        self.prefix = prefix
        self._client = client or storage.Client()

    @property
    def bucket(self):
        return self._client.bucket(self.bucket_name)

    def blob_url(self, object_name: str) -> str:
        return f"https://{PUBLIC_HOST}/{self.bucket_name}/{object_name}"

    def gs_uri(self, object_name: str) -> str:
        return f"gs://{self.bucket_name}/{object_name}"

    def put(self, object_name: str, data: bytes, *, content_type: str) -> str:
        """Upload ``data`` as ``object_name`` and return its ``gs://`` URI."""
        blob = self.bucket.blob(object_name)
        blob.upload_from_string(data, content_type=content_type)
        logger.info(json.dumps({"event": "blob_uploaded", "bucket": self.bucket_name, "path": object_name}))
        return self.gs_uri(object_name)

    def parse_url(self, url: str) -> Optional[Tuple[str, str]]:
        """Return ``(bucket, object_name)`` for Cloud Storage URLs, else ``None``."""
        parsed = urlparse(url)
        if parsed.scheme == "gs":
            return parsed.netloc, unquote(parsed.path.lstrip("/"))
        if parsed.scheme in ("http", "https") and parsed.netloc == PUBLIC_HOST:
            bucket, _, name = parsed.path.lstrip("/").partition("/")
            if bucket and name:
                return bucket, unquote(name)
        return None

    def _own_object(self, url: str) -> Optional[str]:
        location = self.parse_url(url)
        if location and location[0] == self.bucket_name:
            return location[1]
        return None

    def create_upload(self, filename: str, content_type: str, size: Optional[int] = None) -> UploadGrant:
        """Issue a signed PUT URL for one audio object.

        Raises:
            ValidationError: If the content type is not an allowed audio type
                or the declared size exceeds the cap.
        """
        if not filename:
            raise ValidationError("A filename is required")
        if not audio_processor.is_allowed_content_type(content_type):
            raise ValidationError(
                "Unsupported content type",
                details=f"{content_type!r} is not one of {', '.join(audio_processor.ALLOWED_CONTENT_TYPES)}",
            )
        if size is not None and (size < 0 or size > audio_processor.MAX_UPLOAD_BYTES):
            raise ValidationError(
                "File is too large",
                details=f"Maximum upload size is {audio_processor.MAX_UPLOAD_BYTES} bytes",
            )

        object_name = f"{self.prefix}{uuid.uuid4().hex}-{_sanitise_filename(filename)}"
        headers = {"x-goog-content-length-range": f"0,{audio_processor.MAX_UPLOAD_BYTES}"}
        blob = self.bucket.blob(object_name)
        upload_url = blob.generate_signed_url(
            version="v4",
            expiration=UPLOAD_TOKEN_TTL,
            method="PUT",
            content_type=content_type,
            headers=headers,
        )
        expires_at = datetime.now(timezone.utc) + UPLOAD_TOKEN_TTL
        logger.info(
            json.dumps({"event": "upload_granted", "bucket": self.bucket_name, "path": object_name})
        )
        return UploadGrant(
            upload_url=upload_url,
            blob_url=self.blob_url(object_name),
            object_name=object_name,
            content_type=content_type,
            expires_at=expires_at,
            headers=headers,
        )

    def fetch(self, url: str) -> bytes:
        """Download the bytes behind ``url``.

        Raises:
            FetchError: If the store answers with a non-success status or the
                URL is not something we can fetch.
        """
        object_name = self._own_object(url)
        if object_name is not None:
            try:
                return self.bucket.blob(object_name).download_as_bytes()
            except gcloud_exceptions.GoogleAPICallError as exc:
                raise FetchError("Failed to fetch audio file", details=str(exc)) from exc

        if urlparse(url).scheme not in ("http", "https"):
            raise FetchError("Failed to fetch audio file", details=f"Unsupported URL: {url}")
        try:
            response = _http_get(url)
        except requests.RequestException as exc:
            raise FetchError("Failed to fetch audio file", details=str(exc)) from exc
        if not response.ok:
            raise FetchError(
                "Failed to fetch audio file",
                details=f"{response.status_code} {response.reason}",
            )
        return response.content

    def delete(self, url: str) -> None:
        """Delete the object behind ``url``.

        Raises:
            CleanupError: If the URL is outside the bucket or deletion fails.
        """
        object_name = self._own_object(url)
        if object_name is None:
            raise CleanupError("Refusing to delete blob outside the audio bucket", details=url)
        try:
            self.bucket.blob(object_name).delete()
        except gcloud_exceptions.GoogleAPICallError as exc:
            raise CleanupError("Failed to delete blob", details=str(exc)) from exc
        logger.info(json.dumps({"event": "blob_deleted", "bucket": self.bucket_name, "path": object_name}))
