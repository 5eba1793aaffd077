import os
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from coach_api.errors import CleanupFailed, StatusQueryError, UpstreamError
from coach_api.providers.base import media_parts
from coach_api.providers.google import GoogleFilesClient, GoogleGenerationClient


def _resp(status: int, payload=None, text: str = "") -> httpx.Response:
    if payload is not None:
        return httpx.Response(status, json=payload)
    return httpx.Response(status, text=text)


class TestGoogleFilesClient:
    @pytest.fixture
    def files(self):
        with patch.dict(os.environ, {"GEMINI_API_KEY": "test_key"}):
            return GoogleFilesClient()

    @pytest.mark.asyncio
    async def test_get_file_parses_metadata(self, files):
        payload = {
            "name": "files/abc123",
            "displayName": "lesson.mp4",
            "mimeType": "video/mp4",
            "sizeBytes": "1048576",
            "state": "PROCESSING",
            "uri": "https://generativelanguage.googleapis.com/v1beta/files/abc123",
        }
        with patch("httpx.AsyncClient.get", new_callable=AsyncMock) as mock_get:
            mock_get.return_value = _resp(200, payload)
            meta = await files.get_file("files/abc123", request_id="req-9")

        assert meta.state == "PROCESSING"
        assert meta.size_bytes == 1048576
        assert meta.mime_type == "video/mp4"
        args, kwargs = mock_get.call_args
        assert args[0].endswith("/v1beta/files/abc123")
        assert kwargs["params"] == {"key": "test_key"}
        assert kwargs["headers"]["X-Request-Id"] == "req-9"

    @pytest.mark.asyncio
    async def test_get_file_without_state_is_unspecified(self, files):
        with patch("httpx.AsyncClient.get", new_callable=AsyncMock) as mock_get:
            mock_get.return_value = _resp(200, {"name": "files/x"})
            meta = await files.get_file("files/x")
        assert meta.state == "STATE_UNSPECIFIED"

    @pytest.mark.asyncio
    async def test_get_file_http_error_is_status_query_error(self, files):
        with patch("httpx.AsyncClient.get", new_callable=AsyncMock) as mock_get:
            mock_get.return_value = _resp(403, text="PERMISSION_DENIED")
            with pytest.raises(StatusQueryError) as exc:
                await files.get_file("files/abc123")
        assert exc.value.status == 403
        assert exc.value.body == "PERMISSION_DENIED"

    @pytest.mark.asyncio
    async def test_get_file_transport_error_is_status_query_error(self, files):
        with patch("httpx.AsyncClient.get", new_callable=AsyncMock) as mock_get:
            mock_get.side_effect = httpx.ConnectError("Temporary failure in name resolution")
            with pytest.raises(StatusQueryError) as exc:
                await files.get_file("files/abc123")
        assert exc.value.status is None

    @pytest.mark.asyncio
    async def test_get_file_non_object_json_is_status_query_error(self, files):
        with patch("httpx.AsyncClient.get", new_callable=AsyncMock) as mock_get:
            mock_get.return_value = _resp(200, ["files/abc123"])
            with pytest.raises(StatusQueryError):
                await files.get_file("files/abc123")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status, expected", [(200, True), (204, True), (404, False)])
    async def test_delete_file(self, files, status, expected):
        with patch("httpx.AsyncClient.delete", new_callable=AsyncMock) as mock_delete:
            mock_delete.return_value = _resp(status, text="")
            assert await files.delete_file("files/abc123") is expected

    @pytest.mark.asyncio
    async def test_delete_file_server_error_raises_cleanup_failed(self, files):
        with patch("httpx.AsyncClient.delete", new_callable=AsyncMock) as mock_delete:
            mock_delete.return_value = _resp(500, text="oops")
            with pytest.raises(CleanupFailed) as exc:
                await files.delete_file("files/abc123")
        assert exc.value.status == 500


class TestGoogleGenerationClient:
    @pytest.fixture
    def gen(self):
        with patch.dict(os.environ, {"GEMINI_API_KEY": "test_key"}):
            return GoogleGenerationClient(model="gemini-test")

    @pytest.mark.asyncio
    async def test_generate_returns_texts_and_usage(self, gen):
        payload = {
            "candidates": [{"content": {"parts": [{"text": "```json\n{"}, {"text": "}\n```"}]}}],
            "usageMetadata": {"promptTokenCount": 5000, "candidatesTokenCount": 700},
        }
        with patch("httpx.AsyncClient.post", new_callable=AsyncMock) as mock_post:
            mock_post.return_value = _resp(200, payload)
            out = await gen.generate(media_parts("https://f/abc", "video/mp4", "Analyze"), request_id="r-1")

        assert out.texts == ["```json\n{}\n```"]
        assert out.input_tokens == 5000
        assert out.output_tokens == 700
        assert out.model == "gemini-test"
        args, kwargs = mock_post.call_args
        assert args[0].endswith("/v1beta/models/gemini-test:generateContent")
        sent = kwargs["json"]
        assert sent["contents"][0]["parts"][0] == {"fileData": {"mimeType": "video/mp4", "fileUri": "https://f/abc"}}
        assert sent["contents"][0]["parts"][1] == {"text": "Analyze"}
        assert sent["generationConfig"] == {"temperature": 0.4, "maxOutputTokens": 8192}

    @pytest.mark.asyncio
    async def test_generate_block_reason_without_candidates(self, gen):
        with patch("httpx.AsyncClient.post", new_callable=AsyncMock) as mock_post:
            mock_post.return_value = _resp(200, {"promptFeedback": {"blockReason": "SAFETY"}})
            out = await gen.generate(media_parts("u", "video/mp4", "p"))
        assert out.texts == []
        assert out.block_reason == "SAFETY"
        assert out.first_text == ""

    @pytest.mark.asyncio
    async def test_generate_http_error_is_upstream_error(self, gen):
        with patch("httpx.AsyncClient.post", new_callable=AsyncMock) as mock_post:
            mock_post.return_value = _resp(429, text="RESOURCE_EXHAUSTED " + "x" * 5000)
            with pytest.raises(UpstreamError) as exc:
                await gen.generate(media_parts("u", "video/mp4", "p"))
        assert exc.value.status == 429
        assert len(exc.value.body) == 1024

    @pytest.mark.asyncio
    async def test_generate_timeout_is_upstream_error(self, gen):
        with patch("httpx.AsyncClient.post", new_callable=AsyncMock) as mock_post:
            mock_post.side_effect = httpx.ReadTimeout("timed out")
            with pytest.raises(UpstreamError) as exc:
                await gen.generate(media_parts("u", "video/mp4", "p"))
        assert exc.value.status is None
        assert mock_post.call_count == 1

    @pytest.mark.asyncio
    async def test_generate_non_object_json_is_upstream_error(self, gen):
        with patch("httpx.AsyncClient.post", new_callable=AsyncMock) as mock_post:
            mock_post.return_value = _resp(200, [{"candidates": []}])
            with pytest.raises(UpstreamError) as exc:
                await gen.generate(media_parts("u", "video/mp4", "p"))
        assert exc.value.status == 200

    @pytest.mark.asyncio
    async def test_generate_skips_malformed_candidates_and_parts(self, gen):
        payload = {
            "candidates": ["junk", {"content": {"parts": [{"text": 7}, "x", {"text": "ok"}]}}],
            "usageMetadata": "n/a",
        }
        with patch("httpx.AsyncClient.post", new_callable=AsyncMock) as mock_post:
            mock_post.return_value = _resp(200, payload)
            out = await gen.generate(media_parts("u", "video/mp4", "p"))
        assert out.texts == ["ok"]
        assert out.input_tokens is None


def test_clients_require_api_key(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.delenv("GEMINI_API_KEY", raising=False)
    monkeypatch.delenv("GOOGLE_API_KEY", raising=False)
    with pytest.raises(RuntimeError):
        GoogleFilesClient()
    with pytest.raises(RuntimeError):
        GoogleGenerationClient()
