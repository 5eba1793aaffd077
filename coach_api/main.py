from fastapi import FastAPI, Request
from fastapi.openapi.utils import get_openapi
from fastapi.responses import JSONResponse, Response
from starlette.middleware.cors import CORSMiddleware
import asyncio
import contextlib
import json
import logging
from contextlib import asynccontextmanager
from typing import Any, Awaitable, Dict, Optional

from prometheus_client import generate_latest, CONTENT_TYPE_LATEST

from coach_api import config
from coach_api.auth import issue_session, refresh_session, verify_google_id_token, verify_session
from coach_api.errors import CoachApiError
from coach_api.middleware.metrics import HttpMetricsMiddleware
from coach_api.middleware.request_id import RequestIdMiddleware
from coach_api.orchestrator import VideoAnalysisOrchestrator
from coach_api.providers.factory import get_files_client, get_generation_client
from coach_api.rate_limit import (
    CounterStore,
    InMemoryCounterStore,
    RateAccountant,
    RedisCounterStore,
    ResourceClass,
)

logger = logging.getLogger("teacher_coach")
# Ensure our application logger emits under Uvicorn:
# - honor LOG_LEVEL env (default INFO)
# - attach a StreamHandler if none present
# - disable propagate to avoid duplicate logs with Uvicorn root handlers
_lvl = getattr(logging, config.log_level(), logging.INFO)
logger.setLevel(_lvl)
if not logger.handlers:
    _h = logging.StreamHandler()
    _h.setLevel(_lvl)
    _h.setFormatter(logging.Formatter('%(message)s'))
    logger.addHandler(_h)
logger.propagate = False

analysis_logger = logging.getLogger("teacher_coach.api")


def _build_counter_store() -> CounterStore:
    backend = config.rate_limit_backend()
    if backend == "redis":
        return RedisCounterStore(config.redis_url())
    if backend != "memory":
        logger.warning(json.dumps({"event": "rate_limit_backend_unknown", "backend": backend}))
    return InMemoryCounterStore()


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    store = _build_counter_store()
    app.state.rate_accountant = RateAccountant(store)  # type: ignore[attr-defined]
    logger.info(json.dumps({
        "event": "service_config",
        "rateLimitBackend": type(store).__name__,
        "videoRateLimitPerHour": config.video_rate_limit_per_hour(),
        "rateLimitPerHour": config.rate_limit_per_hour(),
        "videoModel": config.gemini_video_model(),
    }))
    try:
        yield
    finally:
        # Shutdown
        client = getattr(store, "client", None)
        if client is not None:
            try:
                await client.aclose()
            except Exception as e:
                logger.warning(json.dumps({"event": "counter_store_close_failed", "error": type(e).__name__}))


app = FastAPI(
    title="Teacher Coach API",
    description="Gated lesson analysis against Gemini: session auth, hourly quotas, file readiness and normalized feedback.",
    version="1.0.0",
    lifespan=lifespan,
)
app.add_middleware(
    CORSMiddleware,
    allow_origins=config.cors_allow_origins(),
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "X-Request-Id"],
    expose_headers=["X-Request-Id"],
    allow_credentials=False,
)
app.add_middleware(RequestIdMiddleware)
app.add_middleware(HttpMetricsMiddleware)


@app.exception_handler(CoachApiError)
async def _coach_api_error_handler(request: Request, exc: CoachApiError):
    return JSONResponse(exc.to_body(), status_code=exc.status_code)


def _request_id(request: Request) -> Optional[str]:
    return getattr(getattr(request, "state", object()), "request_id", None) or request.headers.get("x-request-id")


def _rate_accountant(request: Request) -> RateAccountant:
    accountant = getattr(request.app.state, "rate_accountant", None)
    if accountant is None:
        # Lifespan not run (e.g. TestClient used without a context manager)
        accountant = RateAccountant(_build_counter_store())
        request.app.state.rate_accountant = accountant
    return accountant


async def _run_until_disconnect(request: Request, coro: Awaitable[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """Run `coro` as a task and cancel it if the client goes away.

    Returns None when the client disconnected before completion.
    """
    task = asyncio.ensure_future(coro)
    try:
        while True:
            done, _ = await asyncio.wait({task}, timeout=config.disconnect_poll_seconds())
            if done:
                return task.result()
            if await request.is_disconnected():
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task
                analysis_logger.info(json.dumps({
                    "event": "client_disconnected",
                    "requestId": _request_id(request),
                    "path": request.url.path,
                }))
                return None
    finally:
        if not task.done():
            task.cancel()


@app.get("/", tags=["meta"], description="Service info.")
async def root():
    return {"name": "Teacher Coach API", "version": app.version, "status": "healthy"}


@app.get("/health", tags=["meta"], description="Liveness endpoint for health checks.")
async def health():
    return {"status": "ok"}


@app.get("/metrics", tags=["meta"], include_in_schema=False)
async def metrics():
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


async def _json_body(request: Request) -> Dict[str, Any]:
    try:
        body = await request.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


@app.post("/auth/validate", tags=["auth"], description="Exchange a Google ID token for a session.")
async def auth_validate(request: Request):
    body = await _json_body(request)
    id_token = body.get("id_token")
    if not id_token or not isinstance(id_token, str):
        return JSONResponse({"error": "Missing id_token"}, status_code=400)
    user = await verify_google_id_token(id_token)
    try:
        session = issue_session(user)
    except RuntimeError as e:
        analysis_logger.error(json.dumps({"event": "auth_issue_failed", "error": str(e)}))
        return JSONResponse({"error": "Authentication failed"}, status_code=500)
    analysis_logger.info(json.dumps({"event": "auth_session_issued", "userId": user["id"], "requestId": _request_id(request)}))
    return JSONResponse(session)


@app.post("/auth/refresh", tags=["auth"], description="Refresh a session using a refresh token.")
async def auth_refresh(request: Request):
    body = await _json_body(request)
    refresh_token = body.get("refresh_token")
    if not refresh_token or not isinstance(refresh_token, str):
        return JSONResponse({"error": "Missing refresh_token"}, status_code=400)
    return JSONResponse(refresh_session(refresh_token))


@app.post(
    "/analyze/video",
    tags=["analysis"],
    description="Analyze a video previously uploaded to the Gemini File API against a set of techniques.",
)
async def analyze_video(request: Request):
    request_id = _request_id(request)
    raw = await request.body()
    orchestrator = VideoAnalysisOrchestrator(
        _rate_accountant(request),
        get_files_client(),
        get_generation_client(),
    )
    try:
        result = await _run_until_disconnect(
            request,
            orchestrator.run(request.headers.get("authorization"), raw, request_id=request_id),
        )
    except CoachApiError as e:
        return JSONResponse(e.to_body(), status_code=e.status_code)
    except Exception:
        # Already logged with stage detail by the orchestrator; callers only get a generic message
        return JSONResponse({"error": "Video analysis failed"}, status_code=500)
    if result is None:
        return JSONResponse({"error": "Client closed request"}, status_code=499)
    return JSONResponse(result)


@app.get(
    "/analyze/video/rate-limit",
    tags=["analysis"],
    description="Current hourly video analysis quota for the caller.",
)
async def analyze_video_rate_limit(request: Request):
    principal = verify_session(request.headers.get("authorization"))
    status = await _rate_accountant(request).status(principal, ResourceClass.VIDEO, config.video_rate_limit_per_hour())
    return JSONResponse(status.to_dict())


def custom_openapi():
    if app.openapi_schema:
        return app.openapi_schema
    openapi_schema = get_openapi(
        title=app.title,
        version=app.version,
        description=app.description,
        routes=app.routes,
    )
    openapi_schema["tags"] = [
        {"name": "meta", "description": "Service metadata and liveness"},
        {"name": "auth", "description": "Session issuing and refresh"},
        {"name": "analysis", "description": "Video analysis and quota status"},
    ]
    openapi_schema["servers"] = [
        {"url": "http://localhost:8080", "description": "Local dev"}
    ]
    app.openapi_schema = openapi_schema
    return app.openapi_schema


app.openapi = custom_openapi  # type: ignore[assignment]
