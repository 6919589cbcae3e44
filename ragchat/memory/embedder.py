# ragchat/memory/embedder.py

"""
Embedding client with batching.

Pipeline position:
chunker → embedder → vector_store

Guarantees:
• Every text is truncated to the configured character cap first
• Batch output is aligned 1:1 with batch input, or the call fails hard
• Vectors are L2-normalized (cosine-ready)
• Missing vectors come back as None so callers can skip them
"""

import logging
from typing import List, Optional, Sequence

import numpy as np
from openai import AsyncOpenAI

from ragchat.config import Settings
from ragchat.errors import EmbeddingCountMismatchError, EmbeddingFailure

logger = logging.getLogger(__name__)


class Embedder:
    """
    Async embedding generator.

    Responsibilities:
    • Call the OpenAI embedding API
    • Enforce the per-text character cap
    • Batch requests and keep output order
    • Normalize vectors
    """

    # ============================================================
    # INITIALIZATION
    # ============================================================

    def __init__(self, settings: Settings, client: Optional[AsyncOpenAI] = None):

        self._settings = settings
        self._model = settings.embedding_model
        self._dimension = settings.embedding_dimension
        self._client = client if client is not None else AsyncOpenAI()

        logger.info(
            "Embedding client initialized",
            extra={
                "model": self._model,
                "dimension": self._dimension,
            }
        )

    # ============================================================
    # PUBLIC API
    # ============================================================

    def truncate(self, text: str) -> str:

        cap = self._settings.embedding_max_chars

        return text[:cap] if len(text) > cap else text

    async def embed(self, text: str) -> Optional[List[float]]:
        """
        Embed a single text.

        Returns None on inference error or empty result; the caller decides
        whether that is fatal.
        """

        try:
            vectors = await self.embed_batch([text])
        except Exception as e:
            logger.error(
                "Failed to generate embedding",
                extra={"model": self._model, "error": str(e)},
            )
            return None

        return vectors[0] if vectors else None

    async def embed_batch(self, texts: Sequence[str]) -> List[Optional[List[float]]]:
        """
        Embed many texts with one vector (or None) per input, in input order.

        Raises:
            EmbeddingCountMismatchError: provider returned a different
                number of vectors than texts submitted
            EmbeddingFailure: the provider call itself failed
        """

        if not texts:
            logger.warning("Empty embedding request")
            return []

        truncated = [self.truncate(text) for text in texts]

        total = len(truncated)

        batch_size = max(1, self._settings.embed_batch_size)

        logger.info(
            "Embedding started",
            extra={
                "texts": total,
                "batch_size": batch_size,
            }
        )

        vectors: List[Optional[List[float]]] = []

        # ====================================================
        # BATCH PROCESSING LOOP
        # ====================================================

        for start in range(0, total, batch_size):

            batch = truncated[start:start + batch_size]

            try:

                response = await self._client.embeddings.create(
                    model=self._model,
                    input=batch,
                )

            except Exception as e:

                logger.error(
                    "Embedding generation failed",
                    extra={"model": self._model, "error": str(e)},
                )

                raise EmbeddingFailure(
                    f"Embedding generation failed: {e}"
                ) from e

            data = list(response.data or [])

            if len(data) != len(batch):
                raise EmbeddingCountMismatchError(
                    expected=total,
                    received=len(vectors) + len(data),
                )

            data.sort(key=lambda item: item.index)

            vectors.extend(self._normalize(item.embedding) for item in data)

        logger.info(
            "Embedding completed",
            extra={
                "texts": total,
                "usable": sum(1 for v in vectors if v is not None),
                "dimension": self._dimension,
            }
        )

        return vectors

    # ============================================================
    # HELPERS
    # ============================================================

    @staticmethod
    def _normalize(embedding) -> Optional[List[float]]:

        if not embedding:
            return None

        vector = np.asarray(embedding, dtype="float32")

        if not np.all(np.isfinite(vector)):
            return None

        norm = float(np.linalg.norm(vector))

        if norm == 0.0:
            return None

        return (vector / norm).tolist()
