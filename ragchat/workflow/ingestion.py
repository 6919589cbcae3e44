# ragchat/workflow/ingestion.py

import logging
import time
import uuid
from dataclasses import dataclass
from typing import List, Optional

from ragchat.config import Settings
from ragchat.errors import (
    EmptyDocumentError,
    NoIndexableContentError,
    NoVectorsProducedError,
)
from ragchat.memory.chunker import chunk_text
from ragchat.memory.embedder import Embedder
from ragchat.memory.loader import DocumentExtractor, UploadedFile
from ragchat.memory.sessions import utc_now_iso
from ragchat.memory.store import VectorStore
from ragchat.models import ChunkMetadata, SourceType, VectorRecord

logger = logging.getLogger(__name__)

DEFAULT_TITLE = "Untitled document"


@dataclass
class DocumentSubmission:
    """Normalized POST /api/docs input (multipart or JSON)."""

    title: Optional[str] = None
    text: Optional[str] = None
    upload: Optional[UploadedFile] = None
    source_type_override: Optional[SourceType] = None


@dataclass
class IngestionResult:
    doc_id: str
    title: str
    chunks: int
    source_type: SourceType


def generate_document_id() -> str:
    return str(uuid.uuid4())


class DocumentIngestor:
    """
    Upload → extract → chunk → embed → upsert.

    Per-chunk embedding gaps are skipped with a warning; losing every
    chunk is fatal.
    """

    def __init__(
        self,
        settings: Settings,
        extractor: DocumentExtractor,
        embedder: Embedder,
        store: VectorStore,
    ):

        self._settings = settings
        self._extractor = extractor
        self._embedder = embedder
        self._store = store

    async def ingest(self, submission: DocumentSubmission) -> IngestionResult:

        start_time = time.time()

        title = submission.title.strip() if submission.title and submission.title.strip() else DEFAULT_TITLE
        raw_text = submission.text if submission.text and submission.text.strip() else ""
        source_type = SourceType.MANUAL
        original_file_name = None

        # ============================================================
        # EXTRACTION
        # ============================================================

        if submission.upload is not None:

            extracted = await self._extractor.extract(submission.upload)

            original_file_name = extracted.original_name or submission.upload.filename
            title = original_file_name or title
            source_type = extracted.source_type

            raw_text = "\n\n".join(
                part for part in (extracted.text, raw_text)
                if part and part.strip()
            )

        if submission.source_type_override is not None:
            source_type = submission.source_type_override

        cleaned = raw_text.replace("\r\n", "\n").strip()

        if not cleaned:
            raise EmptyDocumentError()

        cap = self._settings.document_max_chars

        if len(cleaned) > cap:
            logger.warning(
                "Document exceeds max character limit, truncating",
                extra={"original_length": len(cleaned), "max_allowed": cap},
            )
            cleaned = cleaned[:cap]

        # ============================================================
        # CHUNKING
        # ============================================================

        chunks = [
            chunk.strip()
            for chunk in chunk_text(
                cleaned,
                size=self._settings.chunk_size,
                overlap=self._settings.chunk_overlap,
                max_chunks=self._settings.max_doc_chunks,
            )
            if chunk.strip()
        ]

        if not chunks:
            raise NoIndexableContentError()

        doc_id = generate_document_id()

        # ============================================================
        # EMBEDDING
        # ============================================================

        truncated = [self._embedder.truncate(chunk) for chunk in chunks]

        vectors = await self._embedder.embed_batch(truncated)

        uploaded_at = utc_now_iso()

        records: List[VectorRecord] = []

        for index, (chunk, vector) in enumerate(zip(truncated, vectors)):

            if not vector:
                logger.warning(
                    "Skipping chunk without embedding",
                    extra={
                        "doc_id": doc_id,
                        "chunk_index": index,
                        "model": self._settings.embedding_model,
                    },
                )
                continue

            records.append(
                VectorRecord(
                    id=f"{doc_id}#{index}",
                    vector=vector,
                    metadata=ChunkMetadata(
                        text=chunk,
                        title=title,
                        doc_id=doc_id,
                        chunk_index=index,
                        uploaded_at=uploaded_at,
                        source_type=source_type,
                        original_file_name=original_file_name,
                    ),
                )
            )

        if not records:
            raise NoVectorsProducedError(self._settings.embedding_model)

        # ============================================================
        # STORAGE
        # ============================================================

        await self._store.upsert(records)

        logger.info(
            "Document ingestion complete",
            extra={
                "doc_id": doc_id,
                "source_type": source_type.value,
                "chunks": len(chunks),
                "records": len(records),
                "latency_seconds": round(time.time() - start_time, 3),
            },
        )

        return IngestionResult(
            doc_id=doc_id,
            title=title,
            chunks=len(records),
            source_type=source_type,
        )
