import asyncio
import logging
from typing import Optional

from qdrant_client import AsyncQdrantClient

from qdrant_client.http.models import (
    Distance,
    VectorParams,
    PayloadSchemaType,
)

from ragchat.config import Settings

logger = logging.getLogger(__name__)


class QdrantVectorDB:
    """
    Async Qdrant client wrapper.

    Only provides the storage backend; record shape lives in VectorStore.
    Without a URL it runs Qdrant's in-process ":memory:" mode.
    """

    def __init__(
        self,
        settings: Settings,
        client: Optional[AsyncQdrantClient] = None,
    ):

        self._dim = settings.embedding_dimension
        self._collection = settings.qdrant_collection

        if client is not None:
            self._client = client
        elif settings.qdrant_url:
            self._client = AsyncQdrantClient(
                url=settings.qdrant_url,
                api_key=settings.qdrant_api_key,
                timeout=60,
            )
        else:
            self._client = AsyncQdrantClient(location=":memory:")

        self._ready = False
        self._ready_lock = asyncio.Lock()

        logger.info(
            "Qdrant client initialized",
            extra={
                "collection": self._collection,
                "dimension": self._dim,
                "remote": bool(settings.qdrant_url),
            },
        )

    @property
    def client(self) -> AsyncQdrantClient:
        return self._client

    @property
    def collection(self) -> str:
        return self._collection

    async def ensure_collection(self):
        """
        Ensures collection exists AND the docId payload index exists.

        Runs once per process; later calls return immediately.
        """

        if self._ready:
            return

        async with self._ready_lock:

            if self._ready:
                return

            exists = await self._client.collection_exists(self._collection)

            # ============================================================
            # Create collection if missing
            # ============================================================

            if not exists:

                await self._client.create_collection(
                    collection_name=self._collection,
                    vectors_config=VectorParams(
                        size=self._dim,
                        distance=Distance.COSINE,
                    ),
                )

                logger.info(
                    "Qdrant collection created",
                    extra={"collection": self._collection},
                )

            try:

                await self._client.create_payload_index(
                    collection_name=self._collection,
                    field_name="docId",
                    field_schema=PayloadSchemaType.KEYWORD,
                )

            except Exception as e:
                # Already exists, or unsupported in local mode
                logger.debug(
                    "Payload index already exists or skipped",
                    extra={"error": str(e)},
                )

            self._ready = True

    async def close(self):

        await self._client.close()
