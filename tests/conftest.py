# tests/conftest.py
import os
import sys
from dataclasses import replace
from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient
from qdrant_client import AsyncQdrantClient

# Add project root to Python path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from ragchat.api.dependencies import build_services
from ragchat.config import Settings
from ragchat.main import create_app


FAKE_DIMENSION = 8


def fake_vector(text: str):
    """
    Deterministic character-bucket embedding.

    Texts containing "ZEROVEC" embed to all zeros, which the embedder
    treats as an unusable vector.
    """
    if "ZEROVEC" in text:
        return [0.0] * FAKE_DIMENSION

    vector = [1.0] + [0.0] * (FAKE_DIMENSION - 1)
    for ch in text.lower():
        if ch.isalpha():
            vector[ord(ch) % FAKE_DIMENSION] += 1.0
    return vector


class FakeEmbeddings:

    def __init__(self):
        self.calls = []
        self.drop_last = False
        self.error = None

    async def create(self, model, input):
        self.calls.append(list(input))

        if self.error is not None:
            raise self.error

        data = [
            SimpleNamespace(index=i, embedding=fake_vector(text))
            for i, text in enumerate(input)
        ]

        if self.drop_last:
            data = data[:-1]

        return SimpleNamespace(data=data)


class FakeCompletions:

    def __init__(self):
        self.calls = []
        self.fragments = ["Hello", " there", "!"]
        self.stream_error = None
        self.create_error = None
        self.vision_text = "Invoice total: 42 EUR"

    async def create(self, **kwargs):
        self.calls.append(kwargs)

        if self.create_error is not None:
            raise self.create_error

        if kwargs.get("stream"):
            return self._stream()

        return SimpleNamespace(
            choices=[SimpleNamespace(message=SimpleNamespace(content=self.vision_text))]
        )

    async def _stream(self):
        for fragment in self.fragments:
            yield SimpleNamespace(
                choices=[SimpleNamespace(delta=SimpleNamespace(content=fragment))]
            )

        if self.stream_error is not None:
            raise self.stream_error


class FakeOpenAI:
    """Stands in for AsyncOpenAI: embeddings and chat completions only."""

    def __init__(self):
        self.embeddings = FakeEmbeddings()
        self.chat = SimpleNamespace(completions=FakeCompletions())


@pytest.fixture
def settings(tmp_path):
    """
    Settings sized for the fake embedder, with sessions under tmp_path.
    """
    return Settings(
        embedding_dimension=FAKE_DIMENSION,
        session_dir=str(tmp_path / "sessions"),
        qdrant_collection="test_documents",
        log_file=None,
    )


@pytest.fixture
def fake_openai():
    return FakeOpenAI()


@pytest.fixture
def make_services(settings, fake_openai):
    """
    Build a service graph with fake model clients and in-memory Qdrant.

    Usage:
        services = make_services(max_history=5)
    """
    def _make(**overrides):
        return build_services(
            replace(settings, **overrides) if overrides else settings,
            openai_client=fake_openai,
            qdrant_client=AsyncQdrantClient(location=":memory:"),
        )

    return _make


@pytest.fixture
def services(make_services):
    return make_services()


@pytest.fixture
def app(settings, services):
    return create_app(settings=settings, services=services)


@pytest.fixture
def client(app):
    """
    FastAPI test client.

    Used to make requests to the API in tests.
    """
    with TestClient(app) as test_client:
        yield test_client

