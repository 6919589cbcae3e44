# ragchat/memory/sessions.py

"""
Durable per-session conversation store.

One JSON file per session key holds {messages, modelId, createdAt, updatedAt}.

Guarantees:
• Sessions are created lazily on first read or write
• Message list never exceeds max_history (oldest evicted first)
• Legacy records (a bare array of messages) are migrated on first read
  and written back in the current shape
• Read-modify-write cycles for one key are serialized in-process
"""

import asyncio
import hashlib
import json
import logging
import os
import weakref
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, List, Optional, Tuple

from pydantic import ValidationError

from ragchat.config import Settings
from ragchat.errors import StorageFailure
from ragchat.models import Message, SessionRecord

logger = logging.getLogger(__name__)


def utc_now_iso() -> str:

    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def select_model_id(
    requested: Optional[str],
    stored: Optional[str],
    fallback: str,
) -> str:
    """Request-supplied model > session's stored model > system default."""

    for candidate in (requested, stored):
        if isinstance(candidate, str) and candidate.strip():
            return candidate.strip()

    return fallback


def _coerce_messages(raw: Any, session_key: str) -> List[Message]:

    if not isinstance(raw, list):
        return []

    messages = []

    for item in raw:
        try:
            messages.append(Message.model_validate(item))
        except ValidationError:
            logger.warning(
                "Dropping malformed stored message",
                extra={"session_key": session_key},
            )

    return messages


class SessionStore:

    def __init__(self, settings: Settings):

        self._dir = Path(settings.session_dir)
        self._max_history = settings.max_history
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = (
            weakref.WeakValueDictionary()
        )

    # ============================================================
    # PUBLIC API
    # ============================================================

    async def load(self, session_id: str) -> SessionRecord:
        """Read a session, creating (and persisting) an empty one if absent."""

        async with self._lock_for(session_id):

            record, needs_write = await self._read(session_id)

            if needs_write:
                await self._write(session_id, record)

        return record

    async def append_message(
        self,
        session_id: str,
        message: Message,
        model_id: Optional[str] = None,
    ) -> SessionRecord:
        """Append one message, evict beyond max_history, optionally update the model."""

        async with self._lock_for(session_id):

            record, _ = await self._read(session_id)

            messages = [*record.messages, message][-self._max_history:]

            now = utc_now_iso()

            record = record.model_copy(
                update={
                    "messages": messages,
                    "model_id": model_id.strip() if model_id and model_id.strip() else record.model_id,
                    "created_at": record.created_at or now,
                    "updated_at": now,
                }
            )

            await self._write(session_id, record)

        logger.debug(
            "Session message appended",
            extra={
                "role": message.role,
                "history_length": len(record.messages),
            },
        )

        return record

    # ============================================================
    # VERSIONED READ PATH
    # ============================================================

    def parse_record(self, raw: Any, session_key: str = "") -> Tuple[SessionRecord, bool]:
        """
        Returns (record, needs_write).

        Current schema is tried first, then the legacy bare array.
        """

        if raw is None:
            now = utc_now_iso()
            return SessionRecord(created_at=now, updated_at=now), True

        if isinstance(raw, dict):

            model_id = raw.get("modelId")
            model_id = model_id.strip() if isinstance(model_id, str) and model_id.strip() else None

            record = SessionRecord(
                messages=_coerce_messages(raw.get("messages"), session_key),
                model_id=model_id,
                created_at=raw.get("createdAt") if isinstance(raw.get("createdAt"), str) else None,
                updated_at=raw.get("updatedAt") if isinstance(raw.get("updatedAt"), str) else None,
            )

            return self._capped(record), False

        if isinstance(raw, list):

            logger.info(
                "Migrating legacy session record",
                extra={"session_key": session_key, "messages": len(raw)},
            )

            now = utc_now_iso()

            record = SessionRecord(
                messages=_coerce_messages(raw, session_key),
                created_at=now,
                updated_at=now,
            )

            return self._capped(record), True

        raise StorageFailure(
            "Unrecognized session record",
            {"session_key": session_key, "type": type(raw).__name__},
        )

    # ============================================================
    # FILE I/O
    # ============================================================

    def _lock_for(self, session_id: str) -> asyncio.Lock:

        lock = self._locks.get(session_id)

        if lock is None:
            lock = asyncio.Lock()
            self._locks[session_id] = lock

        return lock

    def _path_for(self, session_id: str) -> Path:

        key = hashlib.sha256(session_id.encode("utf-8")).hexdigest()

        return self._dir / f"{key}.json"

    def _capped(self, record: SessionRecord) -> SessionRecord:

        if len(record.messages) <= self._max_history:
            return record

        return record.model_copy(
            update={"messages": record.messages[-self._max_history:]}
        )

    async def _read(self, session_id: str) -> Tuple[SessionRecord, bool]:

        path = self._path_for(session_id)

        try:
            raw = await asyncio.to_thread(self._read_sync, path)
        except (OSError, ValueError) as e:
            logger.error(
                "Session read failed",
                extra={"session_key": path.stem, "error": str(e)},
            )
            raise StorageFailure("Failed to read session history") from e

        return self.parse_record(raw, path.stem)

    async def _write(self, session_id: str, record: SessionRecord):

        path = self._path_for(session_id)

        payload = record.model_dump(by_alias=True, exclude_none=True)

        try:
            await asyncio.to_thread(self._write_sync, path, payload)
        except (OSError, TypeError, ValueError) as e:
            logger.error(
                "Session write failed",
                extra={"session_key": path.stem, "error": str(e)},
            )
            raise StorageFailure("Failed to store message") from e

    @staticmethod
    def _read_sync(path: Path) -> Any:

        if not path.exists():
            return None

        with path.open("r", encoding="utf-8") as f:
            return json.load(f)

    @staticmethod
    def _write_sync(path: Path, payload: dict):

        path.parent.mkdir(parents=True, exist_ok=True)

        tmp_path = path.with_suffix(".json.tmp")

        with tmp_path.open("w", encoding="utf-8") as f:
            json.dump(payload, f)

        os.replace(tmp_path, path)
