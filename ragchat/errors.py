# ragchat/errors.py
"""
Error taxonomy for the chat and ingestion pipelines.

Every error carries the HTTP status it maps to. The exception handlers in
ragchat.main render them as {"error": <message>}.
"""

from typing import Any, Dict, Optional


class RagChatError(Exception):
    """Base error. Unexpected failures are wrapped in this with status 500."""

    status_code = 500

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(message)


# ============================================================
# CLIENT ERRORS (4xx)
# ============================================================

class InvalidInput(RagChatError):
    status_code = 400


class UnsupportedMediaError(RagChatError):
    status_code = 400

    def __init__(self, media: str) -> None:
        super().__init__(
            f'Unsupported file type "{media}"',
            {"media": media},
        )


class EmptyDocumentError(RagChatError):
    status_code = 400

    def __init__(self) -> None:
        super().__init__("Document content is required")


class NoIndexableContentError(RagChatError):
    status_code = 400

    def __init__(self) -> None:
        super().__init__("No textual content found to index")


class ExtractionEmptyError(RagChatError):
    status_code = 400


class PayloadTooLargeError(RagChatError):
    status_code = 413


# ============================================================
# SERVER ERRORS (5xx)
# ============================================================

class EmbeddingCountMismatchError(RagChatError):

    def __init__(self, expected: int, received: int) -> None:
        super().__init__(
            f"Embedding response length {received} did not match "
            f"chunk count {expected}",
            {"expected": expected, "received": received},
        )


class NoVectorsProducedError(RagChatError):

    def __init__(self, model: str) -> None:
        super().__init__(
            f"Embedding model {model} returned no vectors for provided content.",
            {"model": model},
        )


class EmbeddingFailure(RagChatError):
    pass


class CapabilityUnavailableError(RagChatError):
    """The extraction capability is not provisioned; message names it."""

    def __init__(self, capability: str, message: str) -> None:
        super().__init__(message, {"capability": capability})


class ExtractionFailure(RagChatError):
    pass


class StorageFailure(RagChatError):
    pass
