import json
import logging
import time
import uuid

from starlette.datastructures import Headers, MutableHeaders
from starlette.types import ASGIApp, Message, Receive, Scope, Send

logger = logging.getLogger("teacher_coach.access")

REQUEST_ID_HEADER = "X-Request-Id"


class RequestIdMiddleware:
    """Accepts or generates X-Request-Id, stores it in the request state and echoes it on the response.

    Also writes one JSON access log line per request (method, path, status, latency_ms).
    Headers and bodies are never logged because they carry bearer tokens and lesson content.

    `receive` is passed to the route untouched; handlers must be able to observe
    `http.disconnect` from the client.
    """

    def __init__(self, app: ASGIApp):
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        start = time.perf_counter()
        req_id = Headers(scope=scope).get(REQUEST_ID_HEADER) or str(uuid.uuid4())
        scope.setdefault("state", {})["request_id"] = req_id
        status_code = 500

        async def send_with_request_id(message: Message) -> None:
            nonlocal status_code
            if message["type"] == "http.response.start":
                status_code = message["status"]
                MutableHeaders(scope=message)[REQUEST_ID_HEADER] = req_id
            await send(message)

        try:
            await self.app(scope, receive, send_with_request_id)
        finally:
            logger.info(json.dumps({
                "ts": int(time.time() * 1000),
                "event": "http_request",
                "requestId": req_id,
                "method": scope.get("method"),
                "path": scope.get("path"),
                "status": status_code,
                "latency_ms": int((time.perf_counter() - start) * 1000),
            }))
