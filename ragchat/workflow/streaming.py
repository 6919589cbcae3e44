# ragchat/workflow/streaming.py

"""
Stream plumbing for chat responses.

The model's raw token stream is read once and fanned out to two
independent readers:

    upstream ──pump──┬── queue ── client reader ── prepend_context ── HTTP body
                     └── queue ── storage reader ── AssistantReplyCollector

Each reader has its own unbounded queue, so a slow or vanished client
never stalls the storage reader and vice versa.
"""

import asyncio
import codecs
import json
import logging
from typing import AsyncIterator, List, Sequence

from ragchat.models import ContextSnippet

logger = logging.getLogger(__name__)


class _StreamEnd:
    pass


class _StreamFailure:

    def __init__(self, error: BaseException):
        self.error = error


_END = _StreamEnd()


class StreamTee:
    """
    Duplicate one async byte stream into N independently consumed readers.

    The pump task starts immediately and runs to the end of the upstream
    regardless of how far any reader has got. A failure upstream is
    re-raised in every reader after the chunks that preceded it.
    """

    def __init__(self, source: AsyncIterator[bytes], readers: int = 2):

        if readers < 1:
            raise ValueError(f"Invalid reader count: {readers}")

        self._queues: List[asyncio.Queue] = [asyncio.Queue() for _ in range(readers)]
        self._readers = [self._read(queue) for queue in self._queues]
        self._pump_task = asyncio.create_task(self._pump(source))

    @property
    def readers(self) -> List[AsyncIterator[bytes]]:
        return list(self._readers)

    @property
    def pump_task(self) -> asyncio.Task:
        return self._pump_task

    async def _pump(self, source: AsyncIterator[bytes]):

        terminal = _END

        try:

            async for chunk in source:
                for queue in self._queues:
                    queue.put_nowait(chunk)

        except Exception as e:

            logger.error(
                "Upstream stream failed",
                extra={"error": str(e), "error_type": type(e).__name__},
            )

            terminal = _StreamFailure(e)

        finally:

            for queue in self._queues:
                queue.put_nowait(terminal)

    @staticmethod
    async def _read(queue: asyncio.Queue) -> AsyncIterator[bytes]:

        while True:

            item = await queue.get()

            if item is _END:
                return

            if isinstance(item, _StreamFailure):
                raise item.error

            yield item


def encode_context_line(snippets: Sequence[ContextSnippet]) -> bytes:
    """{"context": [{title, text, index, score}, ...]}\\n"""

    payload = {
        "context": [
            snippet.model_dump(exclude_none=True)
            for snippet in snippets
        ]
    }

    return (json.dumps(payload) + "\n").encode("utf-8")


async def prepend_context(
    stream: AsyncIterator[bytes],
    snippets: Sequence[ContextSnippet],
) -> AsyncIterator[bytes]:
    """
    Client-facing body: one context framing line (only when snippets exist)
    followed by the model stream byte-for-byte. A mid-stream failure ends
    the body early instead of raising into the server.
    """

    if snippets:
        yield encode_context_line(snippets)

    try:

        async for chunk in stream:
            if chunk:
                yield chunk

    except Exception as e:

        logger.error(
            "Error streaming AI response",
            extra={"error": str(e), "error_type": type(e).__name__},
        )


class AssistantReplyCollector:
    """
    Incremental parser for the newline-delimited {"response": ...} stream.

    Chunk boundaries may fall anywhere, including inside a multi-byte
    character. Malformed lines are logged and skipped.
    """

    def __init__(self):

        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""
        self._fragments: List[str] = []
        self.malformed_lines = 0

    def feed(self, chunk: bytes):

        self._buffer += self._decoder.decode(chunk)

        *lines, self._buffer = self._buffer.split("\n")

        for line in lines:
            self._consume(line, strict=True)

    def finish(self) -> str:

        self._buffer += self._decoder.decode(b"", final=True)

        if self._buffer.strip():
            # Trailing partial JSON is ignored
            self._consume(self._buffer, strict=False)

        self._buffer = ""

        return "".join(self._fragments)

    def _consume(self, line: str, strict: bool):

        line = line.strip()

        if not line:
            return

        try:
            parsed = json.loads(line)
        except ValueError as e:
            if strict:
                self.malformed_lines += 1
                logger.warning(
                    "Failed to parse assistant stream chunk",
                    extra={"error": str(e)},
                )
            return

        if isinstance(parsed, dict) and isinstance(parsed.get("response"), str):
            self._fragments.append(parsed["response"])
