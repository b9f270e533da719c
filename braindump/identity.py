"""Caller identity from Firebase ID tokens."""

from __future__ import annotations

import logging
from typing import Optional

from google.auth import exceptions as auth_exceptions
from google.auth.transport import requests as google_requests
from google.oauth2 import id_token

from .errors import AuthenticationError

logger = logging.getLogger(__name__)


class FirebaseIdentity:
    def __init__(self, project_id: Optional[str] = None) -> None:
        self.project_id = project_id
        self._request = google_requests.Request()

    def user_id(self, authorization: Optional[str]) -> str:
        """Return the Firebase uid behind an ``Authorization`` header value.

        Raises:
            AuthenticationError: If the header is missing or the token does
                not verify.
        """
        scheme, _, token = (authorization or "").partition(" ")
        if scheme.lower() != "bearer" or not token.strip():
            raise AuthenticationError("Authentication required")
        try:
            claims = id_token.verify_firebase_token(token.strip(), self._request, audience=self.project_id)
        except (ValueError, auth_exceptions.GoogleAuthError) as exc:
            logger.info("Rejected ID token: %s", exc)
            raise AuthenticationError("Invalid authentication token") from exc
        uid = (claims or {}).get("user_id") or (claims or {}).get("sub")
        if not uid:
            raise AuthenticationError("Invalid authentication token")
        return uid
