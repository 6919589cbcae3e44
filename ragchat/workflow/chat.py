# ragchat/workflow/chat.py

"""
Chat turn orchestration.

Per request:

    VALIDATING → LOADING_HISTORY → RETRIEVING → INVOKING → STREAMING
        → PERSISTING → DONE          (ERRORED reachable from any step)

The user message is persisted before generation. The assistant reply is
persisted by a background task reading its own copy of the model stream,
so the client never waits on that write and a client disconnect does not
stop it.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import AsyncIterator, List, Optional, Set

from ragchat.config import Settings
from ragchat.errors import InvalidInput, StorageFailure
from ragchat.llm.client import LLMClient
from ragchat.memory.retriever import ContextRetriever
from ragchat.memory.sessions import SessionStore, select_model_id
from ragchat.models import ChatRequest, ContextSnippet, Message
from ragchat.prompts.prompt_builder import build_chat_messages
from ragchat.workflow.streaming import (
    AssistantReplyCollector,
    StreamTee,
    prepend_context,
)

logger = logging.getLogger(__name__)


class TurnState(str, Enum):
    VALIDATING = "validating"
    LOADING_HISTORY = "loading_history"
    RETRIEVING = "retrieving"
    INVOKING = "invoking"
    STREAMING = "streaming"
    PERSISTING = "persisting"
    DONE = "done"
    ERRORED = "errored"


@dataclass
class ChatTurn:
    """State of one chat request; body is the client-facing byte stream."""

    session_id: str = ""
    model_id: str = ""
    state: TurnState = TurnState.VALIDATING
    snippets: List[ContextSnippet] = field(default_factory=list)
    body: Optional[AsyncIterator[bytes]] = None
    reply: str = ""

    def advance(self, state: TurnState):

        logger.debug(
            "Chat turn state change",
            extra={"from_state": self.state.value, "to_state": state.value},
        )

        self.state = state


class ChatOrchestrator:

    def __init__(
        self,
        settings: Settings,
        sessions: SessionStore,
        retriever: ContextRetriever,
        llm: LLMClient,
    ):

        self._settings = settings
        self._sessions = sessions
        self._retriever = retriever
        self._llm = llm
        self._background: Set[asyncio.Task] = set()

    # ============================================================
    # PUBLIC API
    # ============================================================

    async def start_turn(self, request: ChatRequest) -> ChatTurn:
        """
        Run the turn up to the point where the response can be streamed.

        Raises InvalidInput before any side effect; any later failure
        leaves already-committed writes (the user message) in place.
        """

        turn = ChatTurn()

        try:

            turn.session_id, message = self._validate(request)

            turn.advance(TurnState.LOADING_HISTORY)

            session = await self._sessions.load(turn.session_id)

            turn.model_id = select_model_id(
                request.model_id,
                session.model_id,
                self._settings.default_model_id,
            )

            user_message = Message(role="user", content=message)

            await self._sessions.append_message(
                turn.session_id, user_message, turn.model_id
            )

            turn.advance(TurnState.RETRIEVING)

            context = await self._retriever.build_context(message)

            turn.snippets = context.snippets

            turn.advance(TurnState.INVOKING)

            messages = build_chat_messages(
                system_prompt=self._settings.system_prompt,
                context_messages=context.prompt_messages,
                history=session.messages,
                user_message=user_message,
                max_history=self._settings.max_history,
            )

            upstream = await self._llm.open_stream(messages, turn.model_id)

        except Exception:

            turn.advance(TurnState.ERRORED)
            raise

        turn.advance(TurnState.STREAMING)

        tee = StreamTee(upstream, readers=2)
        client_stream, storage_stream = tee.readers

        self._spawn(self._capture_reply(turn, storage_stream))

        turn.body = prepend_context(client_stream, turn.snippets)

        logger.info(
            "Chat turn streaming",
            extra={
                "model": turn.model_id,
                "snippets": len(turn.snippets),
                "history_length": len(session.messages),
            },
        )

        return turn

    async def wait_for_background(self):
        """Wait until every pending reply-capture task has finished."""

        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    # ============================================================
    # STEPS
    # ============================================================

    @staticmethod
    def _validate(request: ChatRequest):

        session_id = request.session_id.strip() if isinstance(request.session_id, str) else ""
        message = request.message.strip() if isinstance(request.message, str) else ""

        if not session_id:
            raise InvalidInput("Missing sessionId")

        if not message:
            raise InvalidInput("Message content is required")

        return session_id, message

    async def _capture_reply(self, turn: ChatTurn, stream: AsyncIterator[bytes]):

        collector = AssistantReplyCollector()

        try:

            async for chunk in stream:
                collector.feed(chunk)

        except Exception as e:

            logger.error(
                "Error reading assistant stream",
                extra={"error": str(e), "error_type": type(e).__name__},
            )

        turn.advance(TurnState.PERSISTING)

        turn.reply = collector.finish()

        if not turn.reply:
            turn.advance(TurnState.DONE)
            return

        try:

            await self._sessions.append_message(
                turn.session_id,
                Message(role="assistant", content=turn.reply),
                turn.model_id,
            )

        except StorageFailure as e:

            turn.advance(TurnState.ERRORED)

            logger.error(
                "Failed to persist assistant reply",
                extra={"error": str(e), "reply_length": len(turn.reply)},
            )

            return

        turn.advance(TurnState.DONE)

    def _spawn(self, coro):

        task = asyncio.create_task(coro)

        self._background.add(task)

        task.add_done_callback(self._background.discard)
