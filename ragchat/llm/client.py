# ragchat/llm/client.py
import json
import logging
from typing import AsyncIterator, Optional, Sequence

from openai import AsyncOpenAI

from ragchat.config import Settings
from ragchat.models import Message

logger = logging.getLogger(__name__)


def encode_fragment(fragment: str) -> bytes:
    """One line of the token stream: {"response": "<fragment>"}\\n"""

    return (json.dumps({"response": fragment}) + "\n").encode("utf-8")


class LLMClient:
    """
    Client for the chat-inference capability.

    open_stream() starts a streaming completion and returns the raw token
    stream as newline-delimited JSON bytes, one {"response": ...} object per
    fragment. Errors starting the call propagate; errors mid-stream surface
    to whoever is reading the stream.
    """

    def __init__(self, settings: Settings, client: Optional[AsyncOpenAI] = None):
        """
        Args:
            settings: token budget and temperature come from here
            client: injected AsyncOpenAI-compatible client (tests pass a fake)
        """
        self._client = client if client is not None else AsyncOpenAI()
        self._max_tokens = settings.llm_max_tokens
        self._temperature = settings.llm_temperature

    async def open_stream(
        self,
        messages: Sequence[Message],
        model_id: str,
    ) -> AsyncIterator[bytes]:

        logger.info(
            "LLM request started",
            extra={
                "model": model_id,
                "prompt_messages": len(messages),
            },
        )

        stream = await self._client.chat.completions.create(
            model=model_id,
            messages=[m.model_dump() for m in messages],
            max_tokens=self._max_tokens,
            temperature=self._temperature,
            stream=True,
        )

        return self._ndjson(stream)

    async def _ndjson(self, stream) -> AsyncIterator[bytes]:

        async for event in stream:

            if not event.choices:
                continue

            fragment = event.choices[0].delta.content

            if fragment:
                yield encode_fragment(fragment)
