# ragchat/api/dependencies.py
"""
Service wiring.

Every component receives the Settings it needs at construction. The app
holds one Services bundle on app.state; routes fetch it with get_services.
"""

from dataclasses import dataclass
from typing import Optional

from fastapi import Request
from openai import AsyncOpenAI
from qdrant_client import AsyncQdrantClient

from ragchat.config import Settings
from ragchat.llm.client import LLMClient
from ragchat.memory.embedder import Embedder
from ragchat.memory.loader import DocumentExtractor
from ragchat.memory.qdrant_client import QdrantVectorDB
from ragchat.memory.retriever import ContextRetriever
from ragchat.memory.sessions import SessionStore
from ragchat.memory.store import VectorStore
from ragchat.observability.posthog_client import PostHogClient
from ragchat.workflow.chat import ChatOrchestrator
from ragchat.workflow.ingestion import DocumentIngestor


@dataclass
class Services:
    settings: Settings
    vector_db: QdrantVectorDB
    sessions: SessionStore
    chat: ChatOrchestrator
    ingestor: DocumentIngestor
    analytics: PostHogClient

    async def aclose(self):

        await self.chat.wait_for_background()

        self.analytics.shutdown()

        await self.vector_db.close()


def build_services(
    settings: Settings,
    openai_client: Optional[AsyncOpenAI] = None,
    qdrant_client: Optional[AsyncQdrantClient] = None,
    analytics: Optional[PostHogClient] = None,
) -> Services:
    """
    Construct the full component graph.

    openai_client is shared by the embedder, the LLM client and the
    image-to-text capability; tests inject fakes for both clients.
    """

    openai_client = openai_client if openai_client is not None else AsyncOpenAI()

    vector_db = QdrantVectorDB(settings, client=qdrant_client)
    store = VectorStore(vector_db)
    embedder = Embedder(settings, client=openai_client)
    sessions = SessionStore(settings)

    retriever = ContextRetriever(settings, embedder, store)
    llm = LLMClient(settings, client=openai_client)
    extractor = DocumentExtractor.from_settings(settings, client=openai_client)

    return Services(
        settings=settings,
        vector_db=vector_db,
        sessions=sessions,
        chat=ChatOrchestrator(settings, sessions, retriever, llm),
        ingestor=DocumentIngestor(settings, extractor, embedder, store),
        analytics=analytics if analytics is not None else PostHogClient(
            settings.posthog_api_key, settings.posthog_host
        ),
    )


def get_services(request: Request) -> Services:

    return request.app.state.services
