import logging
import time
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import StreamingResponse
from pydantic import ValidationError
from starlette.datastructures import UploadFile

from ragchat.api.dependencies import Services, get_services
from ragchat.errors import InvalidInput, RagChatError, StorageFailure
from ragchat.memory.loader import UploadedFile
from ragchat.models import (
    ChatRequest,
    DocumentRequest,
    HistoryResponse,
    SourceType,
    UploadResponse,
)
from ragchat.workflow.ingestion import DocumentSubmission


# ============================================================
# LOGGER
# ============================================================

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api")

# Known endpoints; any other method on these is 405, any other path 404
API_ENDPOINTS = {"history", "chat", "docs"}

NDJSON_MEDIA_TYPE = "application/x-ndjson"


# ============================================================
# HELPERS
# ============================================================

def _request_id(request: Request) -> str:
    return getattr(request.state, "request_id", "unknown")


def _source_type_override(request: Request) -> Optional[SourceType]:

    value = request.headers.get("x-source-type")

    if value is None or not value.strip():
        return None

    try:
        return SourceType(value.strip())
    except ValueError:
        raise InvalidInput(
            f'Unknown source type "{value.strip()}"',
            {"allowed": [s.value for s in SourceType]},
        )


async def read_submission(request: Request) -> DocumentSubmission:
    """Form body (file, title, text) or JSON body (title, text)."""

    content_type = request.headers.get("content-type", "")

    submission = DocumentSubmission(
        source_type_override=_source_type_override(request),
    )

    if "multipart/form-data" in content_type or "application/x-www-form-urlencoded" in content_type:

        form = await request.form()

        title = form.get("title")
        if isinstance(title, str):
            submission.title = title

        text = form.get("text")
        if isinstance(text, str):
            submission.text = text

        upload = form.get("file")

        if isinstance(upload, UploadFile):

            data = await upload.read()

            if upload.filename or data:
                submission.upload = UploadedFile(
                    filename=upload.filename or "document",
                    content_type=upload.content_type or "",
                    data=data,
                )

        return submission

    try:
        body = DocumentRequest.model_validate(await request.json())
    except (ValueError, ValidationError):
        raise InvalidInput("Invalid document payload")

    submission.title = body.title
    submission.text = body.text

    return submission


# ============================================================
# HISTORY
# ============================================================

@router.get(
    "/history",
    response_model=HistoryResponse,
    response_model_exclude_none=True,
)
async def get_history(
    session_id: Optional[str] = Query(default=None, alias="sessionId"),
    services: Services = Depends(get_services),
):

    session_id = (session_id or "").strip()

    if not session_id:
        raise InvalidInput("Missing sessionId")

    try:

        record = await services.sessions.load(session_id)

    except StorageFailure as e:

        logger.error(
            "Failed to load session history",
            extra={"error": str(e)},
        )

        raise StorageFailure("Unable to load history") from e

    return HistoryResponse(
        messages=record.messages[-services.settings.max_history:],
        model_id=record.model_id,
        created_at=record.created_at,
        updated_at=record.updated_at,
    )


# ============================================================
# CHAT
# ============================================================

@router.post("/chat")
async def chat(
    payload: ChatRequest,
    request: Request,
    services: Services = Depends(get_services),
):

    start_time = time.time()

    try:

        turn = await services.chat.start_turn(payload)

    except RagChatError as e:

        services.analytics.track_error(
            distinct_id=_request_id(request),
            error_type=type(e).__name__,
            error_message=str(e),
            endpoint="/api/chat",
        )

        raise

    except Exception as e:

        logger.error(
            "Error processing chat request",
            extra={"error": str(e), "error_type": type(e).__name__},
            exc_info=True,
        )

        services.analytics.track_error(
            distinct_id=_request_id(request),
            error_type=type(e).__name__,
            error_message=str(e),
            endpoint="/api/chat",
        )

        raise RagChatError("Failed to process request") from e

    services.analytics.track_retrieval(
        distinct_id=_request_id(request),
        snippets=len(turn.snippets),
        top_score=turn.snippets[0].score if turn.snippets else None,
    )

    services.analytics.track_chat_turn(
        distinct_id=_request_id(request),
        model_id=turn.model_id,
        message_length=len(payload.message or ""),
        snippets=len(turn.snippets),
        latency=time.time() - start_time,
    )

    return StreamingResponse(turn.body, media_type=NDJSON_MEDIA_TYPE)


# ============================================================
# UPLOAD DOCUMENT
# ============================================================

@router.post("/docs", response_model=UploadResponse)
async def upload_document(
    request: Request,
    services: Services = Depends(get_services),
):

    start_time = time.time()

    try:

        submission = await read_submission(request)

        result = await services.ingestor.ingest(submission)

    except RagChatError as e:

        logger.warning(
            "Document indexing rejected",
            extra={"error": str(e), "error_type": type(e).__name__},
        )

        services.analytics.track_error(
            distinct_id=_request_id(request),
            error_type=type(e).__name__,
            error_message=str(e),
            endpoint="/api/docs",
        )

        raise

    except Exception as e:

        logger.error(
            "Error indexing document",
            extra={"error": str(e), "error_type": type(e).__name__},
            exc_info=True,
        )

        services.analytics.track_error(
            distinct_id=_request_id(request),
            error_type=type(e).__name__,
            error_message=str(e),
            endpoint="/api/docs",
        )

        raise RagChatError("Failed to index document") from e

    services.analytics.track_document_indexed(
        distinct_id=_request_id(request),
        document_id=result.doc_id,
        source_type=result.source_type.value,
        chunks=result.chunks,
        latency=time.time() - start_time,
    )

    return UploadResponse(
        doc_id=result.doc_id,
        title=result.title,
        chunks=result.chunks,
        source_type=result.source_type,
    )


# ============================================================
# FALLBACK (must stay last)
# ============================================================

@router.api_route(
    "/{path:path}",
    methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS", "HEAD"],
    include_in_schema=False,
)
async def api_fallback(path: str):

    if path in API_ENDPOINTS:
        raise HTTPException(status_code=405, detail="Method not allowed")

    raise HTTPException(status_code=404, detail="Not found")
