"""Readiness polling for artifacts processed by the media backend.

An uploaded file starts PROCESSING and ends ACTIVE or FAILED. The poller
re-queries on a fixed interval and gives up with TIMED_OUT once the deadline
(measured from the first query) is reached. It never queries after the
deadline. Cancelling the awaiting task stops the loop at its next await.
"""
from __future__ import annotations

import asyncio
import json
import logging
import time
from enum import Enum
from typing import Awaitable, Callable, Optional

from coach_api import config
from coach_api.errors import ProcessingFailed, ProcessingTimedOut
from coach_api.metrics import READINESS_POLLS_TOTAL
from coach_api.providers.base import ArtifactMetadata, FilesClient

logger = logging.getLogger("teacher_coach.readiness")


class ArtifactState(str, Enum):
    PROCESSING = "PROCESSING"
    ACTIVE = "ACTIVE"
    FAILED = "FAILED"
    TIMED_OUT = "TIMED_OUT"


TERMINAL_STATES = frozenset({ArtifactState.ACTIVE, ArtifactState.FAILED, ArtifactState.TIMED_OUT})


def state_from_status(status: Optional[str]) -> ArtifactState:
    """Map a backend state string; anything unknown counts as still processing."""
    value = (status or "").upper()
    if value == ArtifactState.ACTIVE.value:
        return ArtifactState.ACTIVE
    if value == ArtifactState.FAILED.value:
        return ArtifactState.FAILED
    return ArtifactState.PROCESSING


def next_state(observed: ArtifactState, elapsed: float, deadline: float) -> ArtifactState:
    if observed is ArtifactState.PROCESSING and elapsed >= deadline:
        return ArtifactState.TIMED_OUT
    return observed


class ReadinessPoller:
    def __init__(
        self,
        files: FilesClient,
        *,
        interval: Optional[float] = None,
        deadline: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.files = files
        self.interval = config.file_poll_interval_seconds() if interval is None else interval
        self.deadline = config.file_processing_timeout_seconds() if deadline is None else deadline
        self._clock = clock
        self._sleep = sleep
        self.polls = 0

    async def await_ready(self, name: str, request_id: Optional[str] = None) -> ArtifactMetadata:
        """Poll until `name` is ACTIVE.

        Raises ProcessingFailed, ProcessingTimedOut, or StatusQueryError (from
        the files client; any failed status query ends the wait).
        """
        started = self._clock()
        self.polls = 0
        while True:
            meta = await self.files.get_file(name, request_id=request_id)
            self.polls += 1
            elapsed = self._clock() - started
            state = next_state(state_from_status(meta.state), elapsed, self.deadline)

            if state in TERMINAL_STATES:
                READINESS_POLLS_TOTAL.labels(outcome=state.value.lower()).inc()
                logger.info(json.dumps({
                    "event": "file_readiness_terminal",
                    "file": name,
                    "state": state.value,
                    "polls": self.polls,
                    "elapsedSeconds": round(elapsed, 3),
                    "requestId": request_id,
                }))
            if state is ArtifactState.ACTIVE:
                return meta
            if state is ArtifactState.FAILED:
                raise ProcessingFailed(f"file {name} processing failed")
            if state is ArtifactState.TIMED_OUT:
                raise ProcessingTimedOut(f"file {name} still processing after {elapsed:.0f}s")

            # Last wait is shortened so the final query lands on the deadline, not past it
            await self._sleep(min(self.interval, self.deadline - elapsed))
