"""
Per-user persistence of structured sessions.

Records live in a flat Firestore collection (``sessions`` by default), one
document per saved session::

    {userId, sessionData, structuredOutput, transcription, createdAt, updatedAt}

There is no update operation: a record is created once and can only be
deleted as a whole.  :class:`InMemorySessionStore` implements the same
interface for local runs (``SESSION_BACKEND=memory``) and tests.
"""

from __future__ import annotations

import itertools
import logging
import uuid
from datetime import datetime, timezone
from typing import Dict, List, Optional, Protocol, Tuple

from google.api_core import exceptions as gcloud_exceptions
from google.cloud import firestore
from google.cloud.firestore_v1.base_query import FieldFilter

from .errors import CollaboratorError
from .models import SavedSession, SessionContext, StructuredResult

logger = logging.getLogger(__name__)


class SessionStore(Protocol):
    def save(
        self,
        user_id: str,
        context: SessionContext,
        result: StructuredResult,
        transcript: str,
    ) -> str:  # pragma: no cover - interface only
        ...

    def load(self, user_id: str) -> List[SavedSession]:  # pragma: no cover - interface only
        ...

    def get(self, session_id: str) -> Optional[SavedSession]:  # pragma: no cover - interface only
        ...

    def delete(self, session_id: str) -> None:  # pragma: no cover - interface only
        ...


def _document(user_id: str, context: SessionContext, result: StructuredResult, transcript: str) -> dict:
    now = datetime.now(timezone.utc)
    return {
        "userId": user_id,
        "sessionData": context.model_dump(),
        "structuredOutput": result.model_dump(),
        "transcription": transcript,
        "createdAt": now,
        "updatedAt": now,
    }


class FirestoreSessionStore:
    def __init__(self, collection: str = "sessions", *, client=None) -> None:
        self.collection_name = collection
        self._client = client or firestore.Client()

    @property
    def collection(self):
        return self._client.collection(self.collection_name)

    def save(self, user_id: str, context: SessionContext, result: StructuredResult, transcript: str) -> str:
        try:
            _, ref = self.collection.add(_document(user_id, context, result, transcript))
        except gcloud_exceptions.GoogleAPICallError as exc:
            logger.exception("Error saving session")
            raise CollaboratorError("Failed to save session", details=str(exc)) from exc
        logger.info("Saved session %s for user %s", ref.id, user_id)
        return ref.id

    def load(self, user_id: str) -> List[SavedSession]:
        query = self.collection.where(filter=FieldFilter("userId", "==", user_id)).order_by(
            "createdAt", direction=firestore.Query.DESCENDING
        )
        try:
            return [SavedSession.model_validate({"id": snap.id, **snap.to_dict()}) for snap in query.stream()]
        except gcloud_exceptions.GoogleAPICallError as exc:
            logger.exception("Error getting user sessions")
            raise CollaboratorError("Failed to load sessions", details=str(exc)) from exc

    def get(self, session_id: str) -> Optional[SavedSession]:
        try:
            snap = self.collection.document(session_id).get()
        except gcloud_exceptions.GoogleAPICallError as exc:
            raise CollaboratorError("Failed to load session", details=str(exc)) from exc
        if not snap.exists:
            return None
        return SavedSession.model_validate({"id": snap.id, **snap.to_dict()})

    def delete(self, session_id: str) -> None:
        try:
            self.collection.document(session_id).delete()
        except gcloud_exceptions.GoogleAPICallError as exc:
            logger.exception("Error deleting session")
            raise CollaboratorError("Failed to delete session", details=str(exc)) from exc
        logger.info("Deleted session %s", session_id)


class InMemorySessionStore:
    def __init__(self) -> None:
        self._records: Dict[str, Tuple[int, dict]] = {}
        self._counter = itertools.count()

    def save(self, user_id: str, context: SessionContext, result: StructuredResult, transcript: str) -> str:
        session_id = uuid.uuid4().hex
        self._records[session_id] = (next(self._counter), _document(user_id, context, result, transcript))
        return session_id

    def _build(self, session_id: str) -> SavedSession:
        _, doc = self._records[session_id]
        return SavedSession.model_validate({"id": session_id, **doc})

    def load(self, user_id: str) -> List[SavedSession]:
        owned = [
            (doc["createdAt"], order, session_id)
            for session_id, (order, doc) in self._records.items()
            if doc["userId"] == user_id
        ]
        owned.sort(reverse=True)
        return [self._build(session_id) for _, _, session_id in owned]

    def get(self, session_id: str) -> Optional[SavedSession]:
        if session_id not in self._records:
            return None
        return self._build(session_id)

    def delete(self, session_id: str) -> None:
        self._records.pop(session_id, None)


def build_store(backend: str, collection: str = "sessions") -> SessionStore:
    if backend == "memory":
        return InMemorySessionStore()
    if backend == "firestore":
        return FirestoreSessionStore(collection)
    raise ValueError(f"Unknown session backend: {backend}")
