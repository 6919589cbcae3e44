# ragchat/config.py
"""
Configuration for the retrieval-augmented chat backend.

This file centralizes all tunable parameters for the chat and ingestion
pipelines. The module-level constants are the defaults; components never
read them directly, they receive a Settings instance at construction so
tests can vary them per case.
"""

import os
from dataclasses import dataclass, field
from typing import Optional


# ========== DOCUMENT PROCESSING ==========

# Character windows, not words
CHUNK_SIZE = 800
CHUNK_OVERLAP = 150

# Hard cap on chunks per document (bounds embedding cost of huge uploads)
MAX_DOC_CHUNKS = 60

# Documents are truncated to this many characters before chunking
DOCUMENT_MAX_CHARS = 50000

# File upload limits
MAX_UPLOAD_MB = 10


# ========== EMBEDDING CONFIGURATION ==========

EMBEDDING_MODEL = "text-embedding-3-small"

EMBEDDING_DIMENSIONS = {
    "text-embedding-3-small": 1536,
    "text-embedding-3-large": 3072,
    "text-embedding-ada-002": 1536,
}

# Per-text cap applied before every embedding call
EMBEDDING_MAX_CHARS = 2048

EMBED_BATCH_SIZE = 32


# ========== RETRIEVAL CONFIGURATION ==========

# Snippets injected into one chat turn
MAX_CONTEXT_CHUNKS = 4

QDRANT_COLLECTION = "ragchat_documents"


# ========== LLM CONFIGURATION ==========

DEFAULT_MODEL_ID = "gpt-4o-mini"

# Leave empty to disable image uploads
IMAGE_MODEL = "gpt-4o-mini"

LLM_MAX_TOKENS = 1024
LLM_TEMPERATURE = 0.2

SYSTEM_PROMPT = (
    "You are a helpful, friendly assistant. "
    "Provide concise and accurate responses."
)


# ========== SESSIONS ==========

# Messages kept per session (oldest dropped first)
MAX_HISTORY = 20

SESSION_DIR = "storage/sessions"


def _env(name: str, default: Optional[str] = None) -> Optional[str]:
    value = os.getenv(f"RAGCHAT_{name}")
    if value is None or not value.strip():
        return default
    return value.strip()


def _env_bool(name: str, default: bool) -> bool:
    value = _env(name)
    if value is None:
        return default
    return value.lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class Settings:
    """
    Explicit configuration passed into every component.

    Build one with Settings.from_env() in production or construct it
    directly (or via dataclasses.replace) in tests.
    """

    default_model_id: str = DEFAULT_MODEL_ID
    system_prompt: str = SYSTEM_PROMPT
    llm_max_tokens: int = LLM_MAX_TOKENS
    llm_temperature: float = LLM_TEMPERATURE

    embedding_model: str = EMBEDDING_MODEL
    embedding_dimension: int = EMBEDDING_DIMENSIONS[EMBEDDING_MODEL]
    embedding_max_chars: int = EMBEDDING_MAX_CHARS
    embed_batch_size: int = EMBED_BATCH_SIZE

    image_model: str = IMAGE_MODEL
    pdf_extraction_enabled: bool = True

    chunk_size: int = CHUNK_SIZE
    chunk_overlap: int = CHUNK_OVERLAP
    max_doc_chunks: int = MAX_DOC_CHUNKS
    document_max_chars: int = DOCUMENT_MAX_CHARS
    max_upload_mb: int = MAX_UPLOAD_MB

    max_context_chunks: int = MAX_CONTEXT_CHUNKS
    max_history: int = MAX_HISTORY

    qdrant_url: Optional[str] = None
    qdrant_api_key: Optional[str] = None
    qdrant_collection: str = QDRANT_COLLECTION

    session_dir: str = SESSION_DIR
    static_dir: Optional[str] = None

    log_level: str = "INFO"
    log_file: Optional[str] = "logs/app.log"

    posthog_api_key: Optional[str] = field(default=None, repr=False)
    posthog_host: str = "https://app.posthog.com"

    def __post_init__(self):

        # ============================================================
        # SAFETY CHECKS
        # ============================================================

        for name in (
            "max_history",
            "max_context_chunks",
            "chunk_size",
            "max_doc_chunks",
            "embedding_max_chars",
            "embed_batch_size",
            "llm_max_tokens",
        ):
            value = getattr(self, name)
            if value < 1:
                raise ValueError(f"Invalid {name}: {value} (must be >= 1)")

        if self.chunk_overlap < 0:
            raise ValueError(f"Invalid chunk_overlap: {self.chunk_overlap}")

    @classmethod
    def from_env(cls) -> "Settings":

        embedding_model = _env("EMBEDDING_MODEL", EMBEDDING_MODEL)

        # An explicitly empty value disables image uploads
        image_model = os.getenv("RAGCHAT_IMAGE_MODEL")
        image_model = IMAGE_MODEL if image_model is None else image_model.strip()

        dimension = _env("EMBEDDING_DIMENSION")
        if dimension is not None:
            embedding_dimension = int(dimension)
        elif embedding_model in EMBEDDING_DIMENSIONS:
            embedding_dimension = EMBEDDING_DIMENSIONS[embedding_model]
        else:
            raise ValueError(
                f"Unknown embedding model {embedding_model!r}: "
                f"set RAGCHAT_EMBEDDING_DIMENSION"
            )

        return cls(
            default_model_id=_env("DEFAULT_MODEL_ID", DEFAULT_MODEL_ID),
            system_prompt=_env("SYSTEM_PROMPT", SYSTEM_PROMPT),
            llm_max_tokens=int(_env("LLM_MAX_TOKENS", str(LLM_MAX_TOKENS))),
            llm_temperature=float(_env("LLM_TEMPERATURE", str(LLM_TEMPERATURE))),
            embedding_max_chars=int(_env("EMBEDDING_MAX_CHARS", str(EMBEDDING_MAX_CHARS))),
            embed_batch_size=int(_env("EMBED_BATCH_SIZE", str(EMBED_BATCH_SIZE))),
            chunk_size=int(_env("CHUNK_SIZE", str(CHUNK_SIZE))),
            chunk_overlap=int(_env("CHUNK_OVERLAP", str(CHUNK_OVERLAP))),
            max_doc_chunks=int(_env("MAX_DOC_CHUNKS", str(MAX_DOC_CHUNKS))),
            document_max_chars=int(_env("DOCUMENT_MAX_CHARS", str(DOCUMENT_MAX_CHARS))),
            max_upload_mb=int(_env("MAX_UPLOAD_MB", str(MAX_UPLOAD_MB))),
            max_context_chunks=int(_env("MAX_CONTEXT_CHUNKS", str(MAX_CONTEXT_CHUNKS))),
            embedding_model=embedding_model,
            embedding_dimension=embedding_dimension,
            image_model=image_model,
            pdf_extraction_enabled=_env_bool("PDF_EXTRACTION_ENABLED", True),
            max_history=int(_env("MAX_HISTORY", str(MAX_HISTORY))),
            qdrant_url=_env("QDRANT_URL") or os.getenv("QDRANT_URL"),
            qdrant_api_key=_env("QDRANT_API_KEY") or os.getenv("QDRANT_API_KEY"),
            qdrant_collection=_env("QDRANT_COLLECTION", QDRANT_COLLECTION),
            session_dir=_env("SESSION_DIR", SESSION_DIR),
            static_dir=_env("STATIC_DIR"),
            log_level=_env("LOG_LEVEL", "INFO"),
            log_file=_env("LOG_FILE", "logs/app.log"),
            posthog_api_key=os.getenv("POSTHOG_API_KEY"),
            posthog_host=os.getenv("POSTHOG_HOST", "https://app.posthog.com"),
        )


# ========== DESIGN TRADE-OFFS (DOCUMENTED) ==========

"""
TRADE-OFF DECISIONS:

1. CHUNK_SIZE = 800 chars, CHUNK_OVERLAP = 150:
   - Character windows keep chunking independent of tokenizer choice
   - Overlap duplicates boundary text so no sentence is lost between windows

2. MAX_CONTEXT_CHUNKS = 4:
   - Enough grounding for short answers without crowding the history window

3. MAX_HISTORY = 20:
   - Stored history and prompt history share the same cap
   - Older turns are evicted first

4. Shared knowledge base:
   - Every session retrieves from the whole index; uploads are not partitioned
"""
