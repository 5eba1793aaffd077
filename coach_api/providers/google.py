import json
import logging
from typing import Any, Dict, List, Optional

import httpx

from coach_api import config
from coach_api.errors import CleanupFailed, StatusQueryError, UpstreamError

from .base import ArtifactMetadata, FilesClient, GenerationClient, RawCompletion

logger = logging.getLogger("teacher_coach.ai.google")


def _require_api_key() -> str:
    api_key = config.gemini_api_key()
    if not api_key:
        raise RuntimeError("GEMINI_API_KEY is required for Google provider")
    return api_key


def _headers(request_id: Optional[str]) -> Dict[str, str]:
    headers = {
        "Content-Type": "application/json",
        "Accept": "application/json",
        "User-Agent": "teacher-coach-api/1.0.0",
    }
    if request_id:
        headers["X-Request-Id"] = request_id
    return headers


class GoogleGenerationClient(GenerationClient):
    provider_name: str = "google"

    def __init__(self, model: Optional[str] = None):
        super().__init__(model=model or config.gemini_video_model())
        self._api_key = _require_api_key()
        self._timeout = httpx.Timeout(config.http_timeout_seconds(), connect=config.http_connect_timeout_seconds())

    async def generate(self, parts: List[Dict[str, Any]], request_id: Optional[str] = None) -> RawCompletion:
        """Call generateContent once and return every candidate's text.

        Endpoint: POST {base}/v1beta/models/{model}:generateContent
        """
        url = f"{config.GEMINI_API_BASE}/v1beta/models/{self.model}:generateContent"
        payload = {
            "contents": [{"parts": parts}],
            "generationConfig": {
                "temperature": 0.4,
                "maxOutputTokens": 8192,
            },
        }
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                resp = await client.post(url, headers=_headers(request_id), json=payload, params={"key": self._api_key})
        except httpx.HTTPError as e:
            logger.error(json.dumps({
                "event": "google_generate_transport_error",
                "error": type(e).__name__,
                "model": self.model,
                "requestId": request_id,
            }))
            raise UpstreamError(None, type(e).__name__) from e

        if resp.status_code >= 400:
            logger.error(json.dumps({
                "event": "google_generate_http_error",
                "status": resp.status_code,
                "body": (resp.text or "")[:1024],
                "model": self.model,
                "requestId": request_id,
            }))
            raise UpstreamError(resp.status_code, resp.text or "")

        try:
            data = resp.json()
        except ValueError as e:
            raise UpstreamError(resp.status_code, "non-JSON body") from e
        if not isinstance(data, dict):
            raise UpstreamError(resp.status_code, "response JSON is not an object")
        return _completion_from_response(data, self.model)


def _completion_from_response(data: Dict[str, Any], model: Optional[str]) -> RawCompletion:
    texts: List[str] = []
    for cand in data.get("candidates") or []:
        if not isinstance(cand, dict):
            continue
        content = cand.get("content") if isinstance(cand.get("content"), dict) else {}
        text = "".join(p["text"] for p in (content.get("parts") or []) if isinstance(p, dict) and isinstance(p.get("text"), str))
        texts.append(text)
    usage = data.get("usageMetadata") if isinstance(data.get("usageMetadata"), dict) else {}
    feedback = data.get("promptFeedback") if isinstance(data.get("promptFeedback"), dict) else {}
    return RawCompletion(
        texts=texts,
        input_tokens=usage.get("promptTokenCount"),
        output_tokens=usage.get("candidatesTokenCount"),
        block_reason=feedback.get("blockReason"),
        model=model,
    )


class GoogleFilesClient(FilesClient):
    """Gemini File API: GET/DELETE {base}/v1beta/files/<id>."""

    provider_name: str = "google"

    def __init__(self):
        self._api_key = _require_api_key()
        self._timeout = httpx.Timeout(config.files_timeout_seconds(), connect=config.http_connect_timeout_seconds())

    async def get_file(self, name: str, request_id: Optional[str] = None) -> ArtifactMetadata:
        url = f"{config.GEMINI_API_BASE}/v1beta/{name}"
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                resp = await client.get(url, headers=_headers(request_id), params={"key": self._api_key})
        except httpx.HTTPError as e:
            logger.error(json.dumps({
                "event": "google_file_status_transport_error",
                "error": type(e).__name__,
                "file": name,
                "requestId": request_id,
            }))
            raise StatusQueryError(None, type(e).__name__) from e

        if resp.status_code >= 400:
            logger.error(json.dumps({
                "event": "google_file_status_http_error",
                "status": resp.status_code,
                "body": (resp.text or "")[:1024],
                "file": name,
                "requestId": request_id,
            }))
            raise StatusQueryError(resp.status_code, resp.text or "")
        try:
            data = resp.json()
        except ValueError as e:
            raise StatusQueryError(resp.status_code, "non-JSON body") from e
        if not isinstance(data, dict):
            raise StatusQueryError(resp.status_code, "response JSON is not an object")
        return ArtifactMetadata.from_api(data)

    async def delete_file(self, name: str, request_id: Optional[str] = None) -> bool:
        url = f"{config.GEMINI_API_BASE}/v1beta/{name}"
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                resp = await client.delete(url, headers=_headers(request_id), params={"key": self._api_key})
        except httpx.HTTPError as e:
            raise CleanupFailed(name, None) from e
        if resp.status_code == 404:
            return False
        if resp.status_code >= 400:
            raise CleanupFailed(name, resp.status_code)
        return True
