"""End-to-end handling of one video analysis call.

Stages run in order: authenticate, reserve quota, validate the body, wait for
the uploaded file to become ACTIVE, generate, normalize, commit the quota,
clean up the file. Any error (or cancellation) past validation still releases
the quota reservation and deletes the uploaded file on a best-effort basis.
"""
from __future__ import annotations

import asyncio
import json
import logging
import re
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from coach_api import config
from coach_api.auth import Principal, verify_session
from coach_api.errors import (
    CleanupFailed,
    CoachApiError,
    EmptyCompletion,
    InvalidRequest,
    UpstreamError,
)
from coach_api.metrics import ANALYSIS_SECONDS, ANALYSIS_TOKENS_TOTAL, ANALYSIS_TOTAL, CLEANUP_TOTAL
from coach_api.normalizer import normalize
from coach_api.prompts import TechniqueDefinition, build_video_analysis_prompt
from coach_api.providers.base import FilesClient, GenerationClient, media_parts
from coach_api.rate_limit import RateAccountant, Reservation, ResourceClass
from coach_api.readiness import ReadinessPoller

# Gemini file names follow pattern: files/<alphanumeric-id>
FILE_NAME_PATTERN = re.compile(r"^files/[A-Za-z0-9_-]+$")
DEFAULT_MIME_TYPE = "video/mp4"

logger = logging.getLogger("teacher_coach.analysis")


class Stage(str, Enum):
    UNAUTHENTICATED = "unauthenticated"
    RATE_CHECKING = "rate_checking"
    VALIDATING = "validating"
    AWAITING_READINESS = "awaiting_readiness"
    GENERATING = "generating"
    NORMALIZING = "normalizing"
    COMMITTING = "committing"
    CLEANUP = "cleanup"
    DONE = "done"
    ERRORED = "errored"


@dataclass
class VideoAnalysisRequest:
    file_name: str
    techniques: List[TechniqueDefinition]
    include_ratings: bool = True

    @classmethod
    def parse(cls, raw: bytes) -> "VideoAnalysisRequest":
        """Validate the request body without touching the network."""
        try:
            body = json.loads(raw.decode("utf-8")) if raw else None
        except (UnicodeDecodeError, ValueError):
            raise InvalidRequest("Invalid JSON body")
        if not isinstance(body, dict):
            raise InvalidRequest("Invalid JSON body")

        file_name = body.get("geminiFileName")
        techniques_raw = body.get("techniques")
        if not file_name or not techniques_raw:
            raise InvalidRequest("Missing geminiFileName or techniques")
        if not isinstance(file_name, str) or not FILE_NAME_PATTERN.match(file_name):
            raise InvalidRequest("Invalid geminiFileName format")
        if not isinstance(techniques_raw, list):
            raise InvalidRequest("techniques must be a list")
        if len(techniques_raw) > config.MAX_TECHNIQUES:
            raise InvalidRequest("Too many techniques", maxTechniques=config.MAX_TECHNIQUES)
        try:
            techniques = [TechniqueDefinition.from_dict(t) for t in techniques_raw]
        except ValueError as e:
            raise InvalidRequest("Invalid technique definition", message=str(e))

        include_ratings = body.get("includeRatings", True)
        if include_ratings is None:
            include_ratings = True
        if not isinstance(include_ratings, bool):
            raise InvalidRequest("includeRatings must be a boolean")
        return cls(file_name=file_name, techniques=techniques, include_ratings=include_ratings)


class VideoAnalysisOrchestrator:
    def __init__(
        self,
        accountant: RateAccountant,
        files: FilesClient,
        generator: GenerationClient,
        *,
        limit: Optional[int] = None,
        poller_factory: Optional[Callable[[FilesClient], ReadinessPoller]] = None,
        verifier: Callable[[Optional[str]], Principal] = verify_session,
    ):
        self.accountant = accountant
        self.files = files
        self.generator = generator
        self.limit = config.video_rate_limit_per_hour() if limit is None else limit
        self.poller_factory = poller_factory or ReadinessPoller
        self.verifier = verifier
        self.stage = Stage.UNAUTHENTICATED
        self.history: List[Stage] = [Stage.UNAUTHENTICATED]

    def _enter(self, stage: Stage) -> None:
        self.stage = stage
        self.history.append(stage)

    async def run(self, authorization: Optional[str], raw_body: bytes, request_id: Optional[str] = None) -> Dict[str, Any]:
        principal = self.verifier(authorization)

        self._enter(Stage.RATE_CHECKING)
        reservation = await self.accountant.check_and_reserve(principal, ResourceClass.VIDEO, self.limit)

        t0 = time.perf_counter()
        file_name: Optional[str] = None
        try:
            self._enter(Stage.VALIDATING)
            req = VideoAnalysisRequest.parse(raw_body)
            file_name = req.file_name

            self._enter(Stage.AWAITING_READINESS)
            poller = self.poller_factory(self.files)
            meta = await poller.await_ready(req.file_name, request_id=request_id)

            self._enter(Stage.GENERATING)
            prompt = build_video_analysis_prompt(req.techniques, req.include_ratings)
            completion = await self.generator.generate(
                media_parts(meta.uri, meta.mime_type or DEFAULT_MIME_TYPE, prompt),
                request_id=request_id,
            )
            if not completion.texts:
                raise EmptyCompletion(completion.block_reason)
            if not completion.first_text.strip():
                raise EmptyCompletion()

            self._enter(Stage.NORMALIZING)
            result = normalize(completion.first_text)

            self._enter(Stage.COMMITTING)
            used = await self.accountant.commit(reservation)

            response = result.to_dict()
            response["model_used"] = completion.model or self.generator.model
            response["usage"] = {
                "input_tokens": completion.input_tokens,
                "output_tokens": completion.output_tokens,
            }
            if completion.input_tokens:
                ANALYSIS_TOKENS_TOTAL.labels(direction="input").inc(completion.input_tokens)
            if completion.output_tokens:
                ANALYSIS_TOKENS_TOTAL.labels(direction="output").inc(completion.output_tokens)
            ANALYSIS_TOTAL.labels(outcome="success").inc()
            logger.info(json.dumps({
                "event": "video_analysis_completed",
                "requestId": request_id,
                "userId": principal.user_id,
                "file": file_name,
                "techniques": len(req.techniques),
                "evaluations": len(result.technique_evaluations),
                "quotaUsed": used,
                "polls": poller.polls,
                "latency_ms": int((time.perf_counter() - t0) * 1000),
            }))
            return response
        except asyncio.CancelledError:
            failed_stage = self.stage
            self._enter(Stage.ERRORED)
            ANALYSIS_TOTAL.labels(outcome="cancelled").inc()
            logger.info(json.dumps({
                "event": "video_analysis_cancelled",
                "requestId": request_id,
                "stage": failed_stage.value,
                "file": file_name,
            }))
            raise
        except Exception as e:
            failed_stage = self.stage
            self._enter(Stage.ERRORED)
            self._log_failure(e, failed_stage, principal, file_name, request_id)
            raise
        finally:
            ANALYSIS_SECONDS.observe(time.perf_counter() - t0)
            # One shielded unit: a second cancellation cannot skip the delete after the release
            await asyncio.shield(self._finish(reservation, file_name, request_id))

    async def _finish(self, reservation: Reservation, file_name: Optional[str], request_id: Optional[str]) -> None:
        await self._release(reservation, request_id)
        if file_name is not None:
            errored = self.stage is Stage.ERRORED
            self._enter(Stage.CLEANUP)
            await self._cleanup(file_name, request_id)
            self._enter(Stage.ERRORED if errored else Stage.DONE)

    def _log_failure(
        self,
        e: Exception,
        stage: Stage,
        principal: Principal,
        file_name: Optional[str],
        request_id: Optional[str],
    ) -> None:
        outcome = type(e).__name__ if isinstance(e, CoachApiError) else "unexpected"
        ANALYSIS_TOTAL.labels(outcome=outcome).inc()
        entry: Dict[str, Any] = {
            "event": "video_analysis_failed",
            "requestId": request_id,
            "userId": principal.user_id,
            "stage": stage.value,
            "file": file_name,
            "error": type(e).__name__,
            "detail": str(e),
        }
        if isinstance(e, UpstreamError):
            entry["upstreamStatus"] = e.status
            entry["upstreamBody"] = e.body
        if isinstance(e, CoachApiError) and e.status_code < 500:
            logger.info(json.dumps(entry))
        elif isinstance(e, CoachApiError):
            logger.error(json.dumps(entry))
        else:
            logger.exception(json.dumps(entry))

    async def _release(self, reservation: Reservation, request_id: Optional[str]) -> None:
        try:
            await self.accountant.release(reservation)
        except Exception as e:
            # Losing a release only over-counts until the hour bucket rolls over
            logger.error(json.dumps({
                "event": "rate_release_failed",
                "requestId": request_id,
                "key": reservation.key,
                "error": type(e).__name__,
            }))

    async def _cleanup(self, file_name: str, request_id: Optional[str]) -> None:
        """Best-effort delete; failures are logged and never raised."""
        try:
            deleted = await self.files.delete_file(file_name, request_id=request_id)
            CLEANUP_TOTAL.labels(status="deleted" if deleted else "already_gone").inc()
        except CleanupFailed as e:
            CLEANUP_TOTAL.labels(status="failed").inc()
            logger.warning(json.dumps({
                "event": "file_cleanup_failed",
                "requestId": request_id,
                "file": file_name,
                "status": e.status,
            }))
        except Exception as e:
            CLEANUP_TOTAL.labels(status="failed").inc()
            logger.warning(json.dumps({
                "event": "file_cleanup_failed",
                "requestId": request_id,
                "file": file_name,
                "error": type(e).__name__,
            }))
