import json
from unittest.mock import Mock

import pytest
from google.api_core.exceptions import NotFound

from braindump.errors import AuthenticationError
from braindump.main import Services, create_app
from braindump.config import Settings
from braindump.blob_store import GcsBlobStore
from braindump.models import StructuredResult, TranscriptionResult
from braindump.session_store import InMemorySessionStore
from braindump.structuring import StructuringProxy
from braindump.transcription import TranscriptionProxy


class FakeBlob:
    def __init__(self, bucket, name):
        self.bucket = bucket
        self.name = name
        self.data = None
        self.signed_kwargs = None

    def generate_signed_url(self, **kwargs):
        self.signed_kwargs = kwargs
        return f"https://signed.example/{self.name}?X-Goog-Signature=abc"

    def upload_from_string(self, data, content_type=None):
        self.data = data
        self.content_type = content_type

    def download_as_bytes(self):
        if self.data is None:
            raise NotFound(f"{self.name} does not exist")
        return self.data

    def delete(self):
        if self.data is None:
            raise NotFound(f"{self.name} does not exist")
        self.bucket.blobs.pop(self.name, None)


class FakeBucket:
    def __init__(self):
        self.blobs = {}

    def blob(self, name):
        return self.blobs.setdefault(name, FakeBlob(self, name))


class FakeStorageClient:
    def __init__(self):
        self.buckets = {}

    def bucket(self, name):
        return self.buckets.setdefault(name, FakeBucket())


class FakeEngine:
    def __init__(self, text="Vi bør satse på mobilapp og bedre support.", error=None):
        self.text = text
        self.error = error
        self.calls = []

    def transcribe(self, data, filename):
        self.calls.append((data, filename))
        if self.error:
            raise self.error
        return self.text


class FakeModel:
    def __init__(self, text=None, error=None):
        self.text = text
        self.error = error
        self.prompts = []

    def generate_content(self, prompt, generation_config=None):
        self.prompts.append((prompt, generation_config))
        if self.error:
            raise self.error
        return Mock(text=self.text)


class FakeIdentity:
    def user_id(self, authorization):
        if not authorization or not authorization.startswith("Bearer "):
            raise AuthenticationError("Authentication required")
        return authorization[len("Bearer "):]


class FakeApi:
    """Stands in for braindump.client.ApiClient."""

    def __init__(self, transcription=None, structure_error=None, save_error=None):
        self.transcription = transcription or TranscriptionResult.success(
            "Vi bør satse på mobilapp og bedre support."
        )
        self.structure_error = structure_error
        self.save_error = save_error
        self.saved = []

    def transcribe(self, audio):
        return self.transcription

    def structure(self, transcript, context):
        if self.structure_error:
            raise self.structure_error
        return StructuredResult.model_validate(structured_payload())

    def save_session(self, context, result, transcript):
        if self.save_error:
            raise self.save_error
        self.saved.append((context, result, transcript))
        return f"session-{len(self.saved)}"


def structured_payload(categories=3, insights=3):
    return {
        "summary": "Teamet vil satse på mobil og support.",
        "categories": [
            {
                "title": f"Tema {i}",
                "description": f"Beskrivelse {i}",
                "insights": [f"Innsikt {i}.{j}" for j in range(insights)],
            }
            for i in range(categories)
        ],
    }


@pytest.fixture
def storage_client():
    return FakeStorageClient()


@pytest.fixture
def blob_store(storage_client):
    return GcsBlobStore("audio-bucket", prefix="uploads/", client=storage_client)


@pytest.fixture
def engine():
    return FakeEngine()


@pytest.fixture
def model():
    return FakeModel(text=json.dumps(structured_payload()))


@pytest.fixture
def store():
    return InMemorySessionStore()


@pytest.fixture
def services(engine, model, blob_store, store):
    return Services(
        transcription=TranscriptionProxy(engine, blob_store),
        structuring=StructuringProxy(model=model),
        blob_store=blob_store,
        sessions=store,
        identity=FakeIdentity(),
    )


@pytest.fixture
def app(services):
    return create_app(Settings(session_backend="memory"), services=services)


@pytest.fixture
def client(app):
    return app.test_client()
