# tests/test_api.py
import json
from dataclasses import replace

import httpx
import pytest
from fastapi.testclient import TestClient

from ragchat.main import create_app
from ragchat.models import Message


def _lines(text):
    return [json.loads(line) for line in text.splitlines() if line]


async def _record_count(services):
    return await services.ingestor._store.count()


@pytest.fixture
def async_client(app):
    """
    Async client for the streaming endpoint.

    Runs in the test's own event loop so background reply capture can be
    awaited with services.chat.wait_for_background().
    """
    return httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test")


class TestHistoryEndpoint:

    def test_missing_session_id(self, client):
        response = client.get("/api/history")

        assert response.status_code == 400
        assert response.json() == {"error": "Missing sessionId"}

    def test_new_session_is_empty(self, client):
        response = client.get("/api/history", params={"sessionId": "fresh"})

        assert response.status_code == 200
        data = response.json()
        assert data["messages"] == []
        assert "createdAt" in data
        assert "modelId" not in data

    def test_repeated_reads_identical(self, client):
        first = client.get("/api/history", params={"sessionId": "s1"}).json()
        second = client.get("/api/history", params={"sessionId": "s1"}).json()

        assert first == second

    def test_corrupt_session_is_500(self, client, services):
        path = services.sessions._path_for("broken")
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text("{oops")

        response = client.get("/api/history", params={"sessionId": "broken"})

        assert response.status_code == 500
        assert response.json() == {"error": "Unable to load history"}


class TestDocsEndpoint:

    def test_upload_text_file(self, client):
        response = client.post(
            "/api/docs",
            files={"file": ("hello.txt", b"hello world", "text/plain")},
        )

        assert response.status_code == 200
        data = response.json()
        assert data["chunks"] == 1
        assert data["title"] == "hello.txt"
        assert data["sourceType"] == "text-file"
        assert data["docId"]

    def test_upload_json_text(self, client):
        response = client.post("/api/docs", json={"title": "Policy", "text": "Refunds within 30 days."})

        assert response.status_code == 200
        assert response.json()["title"] == "Policy"
        assert response.json()["sourceType"] == "manual"

    def test_form_text_without_file(self, client):
        response = client.post("/api/docs", data={"title": "Notes", "text": "form typed text"})

        assert response.status_code == 200
        assert response.json()["title"] == "Notes"
        assert response.json()["sourceType"] == "manual"

    def test_source_type_header(self, client):
        response = client.post(
            "/api/docs",
            json={"title": "Scan", "text": "text typed from a photo"},
            headers={"x-source-type": "image"},
        )

        assert response.status_code == 200
        assert response.json()["sourceType"] == "image"

    def test_unknown_source_type_header(self, client):
        response = client.post(
            "/api/docs",
            json={"text": "x"},
            headers={"x-source-type": "hologram"},
        )

        assert response.status_code == 400

    def test_unsupported_file_type(self, client, services):
        response = client.post(
            "/api/docs",
            files={"file": ("setup.exe", b"MZ\x90\x00", "application/x-msdownload")},
        )

        assert response.status_code == 400
        assert "application/x-msdownload" in response.json()["error"]
        assert client.portal.call(_record_count, services) == 0

    def test_empty_document(self, client):
        response = client.post("/api/docs", json={"title": "Nothing", "text": "   "})

        assert response.status_code == 400
        assert response.json() == {"error": "Document content is required"}

    def test_invalid_json(self, client):
        response = client.post(
            "/api/docs",
            content=b"{not json",
            headers={"content-type": "application/json"},
        )

        assert response.status_code == 400
        assert response.json() == {"error": "Invalid document payload"}

    def test_file_too_large(self, client):
        large = b"x" * (11 * 1024 * 1024)

        response = client.post("/api/docs", files={"file": ("huge.txt", large, "text/plain")})

        assert response.status_code == 413
        assert "too large" in response.json()["error"].lower()

    def test_corrupt_pdf(self, client):
        response = client.post(
            "/api/docs",
            files={"file": ("broken.pdf", b"not really a pdf", "application/pdf")},
        )

        assert response.status_code == 500
        assert "PDF" in response.json()["error"]

    def test_image_upload(self, client):
        response = client.post(
            "/api/docs",
            files={"file": ("receipt.png", b"\x89PNG\r\n", "image/png")},
        )

        assert response.status_code == 200
        assert response.json()["sourceType"] == "image"

    def test_embedding_count_mismatch(self, client, services, fake_openai):
        fake_openai.embeddings.drop_last = True

        response = client.post("/api/docs", json={"text": "some text to index"})

        assert response.status_code == 500
        assert "did not match" in response.json()["error"]
        assert client.portal.call(_record_count, services) == 0


class TestChatEndpoint:

    @pytest.mark.asyncio
    async def test_chat_without_documents(self, async_client, services):
        async with async_client:
            response = await async_client.post("/api/chat", json={"sessionId": "s1", "message": "hi"})

        await services.chat.wait_for_background()

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("application/x-ndjson")

        lines = _lines(response.text)
        assert all("context" not in line for line in lines)
        assert "".join(line["response"] for line in lines) == "Hello there!"

        record = await services.sessions.load("s1")
        assert [m.role for m in record.messages] == ["user", "assistant"]


    @pytest.mark.asyncio
    async def test_chat_with_documents_streams_context_first(self, async_client, services):
        async with async_client:
            upload = await async_client.post("/api/docs", json={"title": "Menu", "text": "Soup of the day is tomato"})
            response = await async_client.post("/api/chat", json={"sessionId": "s2", "message": "What soup is there?"})

        await services.chat.wait_for_background()

        assert upload.status_code == 200
        assert response.status_code == 200

        lines = _lines(response.text)
        assert lines[0]["context"][0]["title"] == "Menu"
        assert lines[0]["context"][0]["text"] == "Soup of the day is tomato"
        assert lines[0]["context"][0]["index"] == 0
        assert all("response" in line for line in lines[1:])

        # The context line is not part of the stored reply
        record = await services.sessions.load("s2")
        assert record.messages[-1] == Message(role="assistant", content="Hello there!")

    @pytest.mark.asyncio
    async def test_history_capped_after_turn(self, async_client, services):
        path = services.sessions._path_for("long")
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps({
            "messages": [
                {"role": "user" if i % 2 == 0 else "assistant", "content": f"old {i}"}
                for i in range(25)
            ],
            "modelId": "gpt-4o-mini",
        }))

        async with async_client:
            response = await async_client.post("/api/chat", json={"sessionId": "long", "message": "hi"})
            await response.aread()
            await services.chat.wait_for_background()
            history = await async_client.get("/api/history", params={"sessionId": "long"})

        messages = history.json()["messages"]
        assert len(messages) == 20
        assert [m["content"] for m in messages[:18]] == [f"old {i}" for i in range(7, 25)]
        assert messages[-2] == {"role": "user", "content": "hi"}
        assert messages[-1] == {"role": "assistant", "content": "Hello there!"}

    @pytest.mark.asyncio
    async def test_model_id_returned_in_history(self, async_client, services):
        async with async_client:
            await async_client.post("/api/chat", json={"sessionId": "s3", "message": "hi", "modelId": "gpt-4o"})
            await services.chat.wait_for_background()
            history = await async_client.get("/api/history", params={"sessionId": "s3"})

        assert history.json()["modelId"] == "gpt-4o"

    @pytest.mark.asyncio
    async def test_missing_session_id(self, async_client):
        async with async_client:
            response = await async_client.post("/api/chat", json={"message": "hi"})

        assert response.status_code == 400
        assert response.json() == {"error": "Missing sessionId"}

    @pytest.mark.asyncio
    async def test_blank_message(self, async_client):
        async with async_client:
            response = await async_client.post("/api/chat", json={"sessionId": "s1", "message": "  "})

        assert response.status_code == 400
        assert response.json() == {"error": "Message content is required"}

    @pytest.mark.asyncio
    async def test_invalid_json(self, async_client):
        async with async_client:
            response = await async_client.post(
                "/api/chat",
                content=b"{broken",
                headers={"content-type": "application/json"},
            )

        assert response.status_code == 400
        assert response.json() == {"error": "Invalid JSON payload"}

    @pytest.mark.asyncio
    async def test_model_failure_is_500(self, async_client, services, fake_openai):
        fake_openai.chat.completions.create_error = RuntimeError("upstream down")

        async with async_client:
            response = await async_client.post("/api/chat", json={"sessionId": "s1", "message": "hi"})

        assert response.status_code == 500
        assert response.json() == {"error": "Failed to process request"}

        record = await services.sessions.load("s1")
        assert [m.role for m in record.messages] == ["user"]


class TestRouting:

    @pytest.mark.parametrize(
        "method,path",
        [
            ("GET", "/api/chat"),
            ("PUT", "/api/chat"),
            ("POST", "/api/history"),
            ("GET", "/api/docs"),
            ("DELETE", "/api/docs"),
        ],
    )
    def test_wrong_method_is_405(self, client, method, path):
        response = client.request(method, path)

        assert response.status_code == 405
        assert response.json() == {"error": "Method not allowed"}

    def test_unknown_api_path_is_404(self, client):
        response = client.get("/api/nothing-here")

        assert response.status_code == 404
        assert response.json() == {"error": "Not found"}

    def test_static_files_served_outside_api(self, tmp_path, settings, services):
        static_dir = tmp_path / "public"
        static_dir.mkdir()
        (static_dir / "index.html").write_text("<h1>chat</h1>")

        app = create_app(
            settings=replace(settings, static_dir=str(static_dir)),
            services=services,
        )

        with TestClient(app) as static_client:
            page = static_client.get("/")
            api = static_client.get("/api/chat")

        assert page.status_code == 200
        assert "<h1>chat</h1>" in page.text
        assert api.status_code == 405

    @pytest.mark.parametrize("path", ["/api/history/", "/api/chat/", "/api/docs/"])
    def test_trailing_slash_is_404(self, client, path):
        response = client.get(path, params={"sessionId": "x"})

        assert response.status_code == 404
        assert response.json() == {"error": "Not found"}
