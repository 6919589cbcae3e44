# tests/test_sessions.py
import asyncio
import json
from dataclasses import replace

import pytest

from ragchat.errors import StorageFailure
from ragchat.memory.sessions import SessionStore, select_model_id
from ragchat.models import Message


def _messages(count):
    return [
        Message(role="user" if i % 2 == 0 else "assistant", content=f"message {i}")
        for i in range(count)
    ]


class TestSelectModelId:

    def test_request_wins(self):
        assert select_model_id("requested", "stored", "default") == "requested"

    def test_stored_when_request_blank(self):
        assert select_model_id("   ", "stored", "default") == "stored"

    def test_fallback(self):
        assert select_model_id(None, None, "default") == "default"


class TestSessionStore:

    @pytest.mark.asyncio
    async def test_load_creates_empty_session(self, settings):
        store = SessionStore(settings)

        record = await store.load("new-session")

        assert record.messages == []
        assert record.created_at
        assert record.updated_at

        # Persisted on first read, so a second read is identical
        again = await store.load("new-session")
        assert again == record

    @pytest.mark.asyncio
    async def test_append_round_trip(self, settings):
        store = SessionStore(settings)

        await store.append_message("s1", Message(role="user", content="hi"), "model-a")
        await store.append_message("s1", Message(role="assistant", content="hello"))

        record = await SessionStore(settings).load("s1")

        assert [m.content for m in record.messages] == ["hi", "hello"]
        assert record.model_id == "model-a"

    @pytest.mark.asyncio
    async def test_history_capped_to_most_recent(self, settings):
        store = SessionStore(replace(settings, max_history=5))

        for message in _messages(8):
            await store.append_message("s1", message)

        record = await store.load("s1")

        assert [m.content for m in record.messages] == [
            f"message {i}" for i in range(3, 8)
        ]

    @pytest.mark.asyncio
    async def test_model_id_kept_when_not_given(self, settings):
        store = SessionStore(settings)

        await store.append_message("s1", Message(role="user", content="a"), "model-a")
        record = await store.append_message("s1", Message(role="assistant", content="b"))

        assert record.model_id == "model-a"

    @pytest.mark.asyncio
    async def test_concurrent_appends_not_lost(self, settings):
        store = SessionStore(settings)

        await asyncio.gather(*[
            store.append_message("s1", Message(role="user", content=f"m{i}"))
            for i in range(10)
        ])

        record = await store.load("s1")

        assert sorted(m.content for m in record.messages) == sorted(f"m{i}" for i in range(10))

    @pytest.mark.asyncio
    async def test_legacy_array_migrated_and_written_back(self, settings):
        store = SessionStore(settings)
        path = store._path_for("legacy")
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps([
            {"role": "user", "content": "old question"},
            {"role": "assistant", "content": "old answer"},
        ]))

        record = await store.load("legacy")

        assert [m.content for m in record.messages] == ["old question", "old answer"]

        stored = json.loads(path.read_text())
        assert isinstance(stored, dict)
        assert stored["messages"][0]["content"] == "old question"
        assert "createdAt" in stored

    @pytest.mark.asyncio
    async def test_corrupt_file_raises_storage_failure(self, settings):
        store = SessionStore(settings)
        path = store._path_for("broken")
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text("{not json")

        with pytest.raises(StorageFailure):
            await store.load("broken")


class TestParseRecord:

    def test_malformed_messages_dropped(self, settings):
        store = SessionStore(settings)

        record, needs_write = store.parse_record({
            "messages": [
                {"role": "user", "content": "ok"},
                {"role": "robot", "content": "bad role"},
                "not a message",
            ],
            "modelId": "m",
        })

        assert needs_write is False
        assert [m.content for m in record.messages] == ["ok"]
        assert record.model_id == "m"

    def test_unknown_shape_rejected(self, settings):
        store = SessionStore(settings)

        with pytest.raises(StorageFailure):
            store.parse_record("just a string")


class TestHistoryCapBounds:

    @pytest.mark.parametrize("max_history", [0, -3])
    def test_non_positive_cap_rejected(self, settings, max_history):
        with pytest.raises(ValueError):
            replace(settings, max_history=max_history)

    @pytest.mark.asyncio
    async def test_cap_of_one_keeps_latest_only(self, settings):
        store = SessionStore(replace(settings, max_history=1))

        for message in _messages(3):
            await store.append_message("s1", message)

        record = await store.load("s1")

        assert [m.content for m in record.messages] == ["message 2"]
