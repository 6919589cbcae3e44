# ragchat/memory/loader.py

"""
Upload extraction: uploaded file → plain text.

Pipeline position:
loader → chunker → embedder → vector_store

Supports:
- Plain-text-like files (read as-is)
- PDF files (pypdf, run off the event loop)
- Images (OpenAI vision model as image-to-text)

Classification is one pure function (classify_upload); extraction is a
strategy table keyed by the resulting SourceType.
"""

import asyncio
import base64
import io
import logging
from dataclasses import dataclass
from pathlib import PurePath
from typing import Any, Awaitable, Callable, Dict, List, Optional

import openai
from openai import AsyncOpenAI
from pypdf import PdfReader

from ragchat.config import Settings
from ragchat.errors import (
    CapabilityUnavailableError,
    ExtractionEmptyError,
    ExtractionFailure,
    PayloadTooLargeError,
    RagChatError,
    UnsupportedMediaError,
)
from ragchat.models import SourceType
from ragchat.prompts.system_prompts import IMAGE_EXTRACTION_PROMPT

logger = logging.getLogger(__name__)


TEXT_EXTENSIONS = (".txt", ".md", ".json", ".csv")
PDF_EXTENSIONS = (".pdf",)
IMAGE_EXTENSIONS = (".png", ".jpg", ".jpeg", ".gif", ".webp", ".bmp")


@dataclass
class UploadedFile:
    filename: str
    content_type: str
    data: bytes


@dataclass
class ExtractedDocument:
    text: str
    source_type: SourceType
    original_name: Optional[str] = None


# ============================================================
# CLASSIFICATION
# ============================================================

def classify_upload(filename: Optional[str], content_type: Optional[str]) -> SourceType:
    """
    Map declared MIME type / extension to a source kind.

    Priority: text-like → PDF → image.
    """

    mime = (content_type or "").split(";")[0].strip().lower()
    suffix = PurePath((filename or "").lower()).suffix

    if mime.startswith("text/") or suffix in TEXT_EXTENSIONS:
        return SourceType.TEXT_FILE

    if mime == "application/pdf" or suffix in PDF_EXTENSIONS:
        return SourceType.PDF

    if mime.startswith("image/") or suffix in IMAGE_EXTENSIONS:
        return SourceType.IMAGE

    raise UnsupportedMediaError(mime or (filename or "").lower() or "unknown")


# ============================================================
# RESULT NORMALIZATION
# ============================================================

def combine_pdf_segments(result: Any) -> str:
    """Whole-document text plus per-page text, trimmed, blank-line separated."""

    segments: List[str] = []

    if isinstance(result, dict):

        if isinstance(result.get("text"), str):
            segments.append(result["text"])

        pages = result.get("pages")

        if isinstance(pages, list):
            for page in pages:
                if isinstance(page, dict) and isinstance(page.get("text"), str):
                    segments.append(page["text"])

    return "\n\n".join(s.strip() for s in segments if s and s.strip()).strip()


def collect_text_candidates(result: Any) -> str:
    """
    Image-to-text results come as a flat string or an object holding any of
    text, description/caption, output, data.text. All present candidates
    are kept, newline separated.
    """

    candidates: List[str] = []

    if isinstance(result, str):
        candidates.append(result)

    elif isinstance(result, dict):

        if isinstance(result.get("text"), str):
            candidates.append(result["text"])

        description = result.get("description") or result.get("caption")
        if isinstance(description, str):
            candidates.append(description)

        if isinstance(result.get("output"), str):
            candidates.append(result["output"])

        data = result.get("data")
        if isinstance(data, dict) and isinstance(data.get("text"), str):
            candidates.append(data["text"])

    return "\n".join(c.strip() for c in candidates if c and c.strip())


# ============================================================
# CAPABILITIES
# ============================================================

def _read_pdf_sync(data: bytes) -> Dict[str, Any]:

    reader = PdfReader(io.BytesIO(data))

    pages = []

    for page in reader.pages:
        pages.append({"text": page.extract_text() or ""})

    return {"pages": pages}


class PdfTextCapability:
    """PDF text extraction with pypdf."""

    name = "pdf-text-extraction"

    async def __call__(self, data: bytes) -> Dict[str, Any]:

        return await asyncio.to_thread(_read_pdf_sync, data)


class ImageTextCapability:
    """Image-to-text through an OpenAI vision-capable chat model."""

    def __init__(self, model: str, client: Optional[AsyncOpenAI] = None):

        self.name = model
        self._client = client if client is not None else AsyncOpenAI()

    async def __call__(self, data: bytes, content_type: str) -> Any:

        mime = content_type if content_type.startswith("image/") else "image/png"
        encoded = base64.b64encode(data).decode("ascii")

        response = await self._client.chat.completions.create(
            model=self.name,
            messages=[
                {
                    "role": "user",
                    "content": [
                        {"type": "text", "text": IMAGE_EXTRACTION_PROMPT},
                        {
                            "type": "image_url",
                            "image_url": {"url": f"data:{mime};base64,{encoded}"},
                        },
                    ],
                }
            ],
            max_tokens=1024,
        )

        if not response.choices:
            return ""

        return response.choices[0].message.content or ""


# ============================================================
# EXTRACTOR
# ============================================================

class DocumentExtractor:
    """
    Polymorphic over source kind.

    A capability set to None means it is not provisioned; uploads of that
    kind fail with CapabilityUnavailableError naming what is missing.
    """

    def __init__(
        self,
        settings: Settings,
        pdf_capability: Optional[Callable[[bytes], Awaitable[Any]]] = None,
        image_capability: Optional[Callable[[bytes, str], Awaitable[Any]]] = None,
    ):

        self._max_bytes = settings.max_upload_mb * 1024 * 1024
        self._pdf = pdf_capability
        self._image = image_capability

        self._strategies: Dict[SourceType, Callable[[UploadedFile], Awaitable[str]]] = {
            SourceType.TEXT_FILE: self._extract_text_file,
            SourceType.PDF: self._extract_pdf,
            SourceType.IMAGE: self._extract_image,
        }

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        client: Optional[AsyncOpenAI] = None,
    ) -> "DocumentExtractor":

        pdf = PdfTextCapability() if settings.pdf_extraction_enabled else None

        image = (
            ImageTextCapability(settings.image_model, client)
            if settings.image_model
            else None
        )

        return cls(settings, pdf_capability=pdf, image_capability=image)

    async def extract(self, upload: UploadedFile) -> ExtractedDocument:

        size_mb = len(upload.data) / (1024 * 1024)

        if len(upload.data) > self._max_bytes:
            raise PayloadTooLargeError(f"File too large: {size_mb:.2f}MB")

        source_type = classify_upload(upload.filename, upload.content_type)

        logger.info(
            "Extraction started",
            extra={
                "upload_name": upload.filename,
                "source_type": source_type.value,
                "bytes": len(upload.data),
            },
        )

        text = await self._strategies[source_type](upload)

        return ExtractedDocument(
            text=text,
            source_type=source_type,
            original_name=upload.filename or None,
        )

    # ============================================================
    # STRATEGIES
    # ============================================================

    async def _extract_text_file(self, upload: UploadedFile) -> str:

        return upload.data.decode("utf-8", errors="replace")

    async def _extract_pdf(self, upload: UploadedFile) -> str:

        if self._pdf is None:
            raise CapabilityUnavailableError(
                "pdf-text-extraction",
                "PDF extraction is not enabled. "
                "Set RAGCHAT_PDF_EXTRACTION_ENABLED=true to provision it.",
            )

        try:
            result = await self._pdf(upload.data)
        except RagChatError:
            raise
        except Exception as e:
            logger.error(
                "PDF extraction failed",
                extra={"upload_name": upload.filename, "error": str(e)},
            )
            raise ExtractionFailure("Unable to extract text from the PDF file.") from e

        text = combine_pdf_segments(result)

        if not text:
            raise ExtractionEmptyError("PDF extraction returned empty content")

        return text

    async def _extract_image(self, upload: UploadedFile) -> str:

        if self._image is None:
            raise CapabilityUnavailableError(
                "image-to-text",
                "Image-to-text capability is not enabled. "
                "Set RAGCHAT_IMAGE_MODEL to a vision-capable model.",
            )

        model = getattr(self._image, "name", "image-to-text")

        try:
            result = await self._image(upload.data, upload.content_type or "")
        except RagChatError:
            raise
        except openai.NotFoundError as e:
            raise CapabilityUnavailableError(
                model,
                f"Image-to-text model {model} is not available on this account. "
                f"Choose another model or adjust RAGCHAT_IMAGE_MODEL.",
            ) from e
        except Exception as e:
            logger.error(
                "Image OCR failed",
                extra={"upload_name": upload.filename, "model": model, "error": str(e)},
            )
            raise ExtractionFailure(
                "Unable to extract text from the image with the selected model."
            ) from e

        text = collect_text_candidates(result)

        if not text:
            raise ExtractionEmptyError("Image model returned empty content")

        return text
