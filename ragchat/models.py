from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class _WireModel(BaseModel):
    """Snake-case in Python, camelCase on the wire and in storage."""

    model_config = ConfigDict(populate_by_name=True)


# ============================================================
# SESSIONS
# ============================================================

class Message(BaseModel):
    """One chat message. Immutable once appended."""

    model_config = ConfigDict(frozen=True)

    role: Literal["system", "user", "assistant"]
    content: str


class SessionRecord(_WireModel):
    """Persisted session shape: one record per session key."""

    messages: List[Message] = Field(default_factory=list)
    model_id: Optional[str] = Field(default=None, alias="modelId")
    created_at: Optional[str] = Field(default=None, alias="createdAt")
    updated_at: Optional[str] = Field(default=None, alias="updatedAt")


# ============================================================
# DOCUMENTS & VECTORS
# ============================================================

class SourceType(str, Enum):
    MANUAL = "manual"
    TEXT_FILE = "text-file"
    PDF = "pdf"
    IMAGE = "image"


class ChunkMetadata(_WireModel):
    text: str
    title: str
    doc_id: str = Field(alias="docId")
    chunk_index: int = Field(alias="chunkIndex")
    uploaded_at: str = Field(alias="uploadedAt")
    source_type: SourceType = Field(alias="sourceType")
    original_file_name: Optional[str] = Field(default=None, alias="originalFileName")


class VectorRecord(BaseModel):
    """id is "{docId}#{chunkIndex}"."""

    id: str
    vector: List[float]
    metadata: ChunkMetadata


class VectorMatch(BaseModel):
    id: str
    score: float
    metadata: Optional[Dict[str, Any]] = None


class ContextSnippet(BaseModel):
    """Ephemeral snippet surfaced to ground one chat turn."""

    title: Optional[str] = None
    text: str
    index: Optional[int] = None
    score: Optional[float] = None


# ============================================================
# API PAYLOADS
# ============================================================

class ChatRequest(_WireModel):
    """Body of POST /api/chat. Emptiness is checked by the orchestrator."""

    session_id: Optional[str] = Field(default=None, alias="sessionId")
    message: Optional[str] = None
    model_id: Optional[str] = Field(default=None, alias="modelId")


class DocumentRequest(BaseModel):
    """JSON body of POST /api/docs."""

    title: Optional[str] = None
    text: Optional[str] = None


class HistoryResponse(_WireModel):
    messages: List[Message]
    model_id: Optional[str] = Field(default=None, alias="modelId")
    created_at: Optional[str] = Field(default=None, alias="createdAt")
    updated_at: Optional[str] = Field(default=None, alias="updatedAt")


class UploadResponse(_WireModel):
    """Response after indexing a document."""

    doc_id: str = Field(alias="docId")
    title: str
    chunks: int
    source_type: SourceType = Field(alias="sourceType")
