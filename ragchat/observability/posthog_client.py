# ragchat/observability/posthog_client.py

"""
PostHog Observability Client

- Does NOT replace logging
- Uses request_id as distinct_id
- Never blocks or fails a request
"""

import logging
from typing import Optional, Dict, Any

from posthog import Posthog


logger = logging.getLogger(__name__)


class PostHogClient:
    """
    Safe PostHog wrapper.

    Disabled (all calls no-ops) when no API key is configured.
    """

    def __init__(self, api_key: Optional[str] = None, host: str = "https://app.posthog.com"):

        self._enabled = False
        self._client: Optional[Posthog] = None

        if not api_key:
            logger.info(
                "PostHog disabled: POSTHOG_API_KEY not set"
            )
            return

        try:

            self._client = Posthog(
                project_api_key=api_key,
                host=host,
                timeout=5,
                flush_interval=1,
            )

            self._enabled = True

            logger.info(
                "PostHog client initialized",
                extra={"host": host}
            )

        except Exception as e:

            logger.error(
                "PostHog initialization failed",
                extra={"error": str(e)}
            )

            self._enabled = False

    @property
    def enabled(self) -> bool:
        return self._enabled

    # ==========================================================
    # INTERNAL SAFE TRACK
    # ==========================================================

    def _track(
        self,
        distinct_id: str,
        event: str,
        properties: Optional[Dict[str, Any]] = None,
    ):
        """
        Safe internal tracking method.
        Never throws exceptions.
        """

        if not self._enabled or not self._client:
            return

        try:

            self._client.capture(
                distinct_id=distinct_id,
                event=event,
                properties=properties or {},
            )

        except Exception as e:

            logger.warning(
                "PostHog tracking failed",
                extra={
                    "event": event,
                    "error": str(e),
                }
            )

    # ==========================================================
    # EVENTS
    # ==========================================================

    def track_chat_turn(
        self,
        distinct_id: str,
        model_id: str,
        message_length: int,
        snippets: int,
        latency: float,
    ):

        self._track(
            distinct_id,
            "chat_turn_started",
            {
                "model_id": model_id,
                "message_length": message_length,
                "snippets": snippets,
                "latency_seconds": latency,
            },
        )

    def track_retrieval(
        self,
        distinct_id: str,
        snippets: int,
        top_score: Optional[float],
    ):

        self._track(
            distinct_id,
            "retrieval_completed",
            {
                "snippets": snippets,
                "top_score": top_score,
            },
        )

    def track_document_indexed(
        self,
        distinct_id: str,
        document_id: str,
        source_type: str,
        chunks: int,
        latency: float,
    ):

        self._track(
            distinct_id,
            "document_indexed",
            {
                "document_id": document_id,
                "source_type": source_type,
                "chunks": chunks,
                "latency_seconds": latency,
            },
        )

    def track_error(
        self,
        distinct_id: str,
        error_type: str,
        error_message: str,
        endpoint: str,
    ):

        self._track(
            distinct_id,
            "system_error",
            {
                "error_type": error_type,
                "error_message": error_message,
                "endpoint": endpoint,
            },
        )

    def shutdown(self):

        if self._client is None:
            return

        try:
            self._client.shutdown()
        except Exception as e:
            logger.warning(
                "PostHog shutdown failed",
                extra={"error": str(e)}
            )
