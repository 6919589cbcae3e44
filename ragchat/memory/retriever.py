# ragchat/memory/retriever.py
import logging
from dataclasses import dataclass, field
from typing import List, Optional

from ragchat.config import Settings
from ragchat.memory.embedder import Embedder
from ragchat.memory.store import VectorStore
from ragchat.models import ContextSnippet, Message
from ragchat.prompts.prompt_builder import build_context_message

logger = logging.getLogger(__name__)


@dataclass
class RetrievalContext:
    """Prompt fragment plus the snippets it was built from."""

    prompt_messages: List[Message] = field(default_factory=list)
    snippets: List[ContextSnippet] = field(default_factory=list)

    @classmethod
    def empty(cls) -> "RetrievalContext":
        return cls()


def snippet_from_match(match) -> Optional[ContextSnippet]:
    """Return a snippet for a match, or None when its text is missing/empty."""

    metadata = match.metadata or {}

    text = metadata.get("text")
    text = text.strip() if isinstance(text, str) else ""

    if not text:
        return None

    title = metadata.get("title")
    title = title.strip() if isinstance(title, str) and title.strip() else None

    index = metadata.get("chunkIndex")
    index = index if isinstance(index, int) and not isinstance(index, bool) else None

    return ContextSnippet(
        title=title,
        text=text,
        index=index,
        score=match.score,
    )


class ContextRetriever:
    """
    Builds the retrieval context for one chat turn.

    Never raises: any failure degrades to an empty context.
    """

    def __init__(self, settings: Settings, embedder: Embedder, store: VectorStore):

        self._top_k = settings.max_context_chunks
        self._embedder = embedder
        self._store = store

    async def build_context(self, question: str) -> RetrievalContext:

        question = question.strip()

        if not question:
            return RetrievalContext.empty()

        try:

            embedding = await self._embedder.embed(question)

            if not embedding:
                logger.warning("Retrieval skipped: no query embedding")
                return RetrievalContext.empty()

            matches = await self._store.query(
                vector=embedding,
                top_k=self._top_k,
                with_metadata=True,
            )

            snippets: List[ContextSnippet] = []

            for match in matches:

                snippet = snippet_from_match(match)

                if snippet is None:
                    continue

                snippets.append(snippet)

                if len(snippets) >= self._top_k:
                    break

            logger.info(
                "Retrieval completed",
                extra={
                    "matches": len(matches),
                    "snippets": len(snippets),
                    "top_score": snippets[0].score if snippets else None,
                },
            )

            if not snippets:
                return RetrievalContext.empty()

            return RetrievalContext(
                prompt_messages=[build_context_message(snippets)],
                snippets=snippets,
            )

        except Exception as e:

            logger.error(
                "Failed to build retrieval context",
                extra={"error": str(e), "error_type": type(e).__name__},
                exc_info=True,
            )

            return RetrievalContext.empty()
