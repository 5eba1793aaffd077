import asyncio
import sys
import os
import time
from pathlib import Path
from typing import List, Optional

import jwt
import pytest

# Ensure project root is on sys.path for `import coach_api.*`
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

# Deterministic defaults: local signing secret, mock providers, in-memory quotas
os.environ.setdefault("JWT_SECRET", "test-secret")
os.environ.setdefault("ALLOWED_DOMAIN", "example.org")
os.environ.setdefault("AI_PROVIDER", "mock")
os.environ.setdefault("RATE_LIMIT_BACKEND", "memory")

from coach_api.errors import CleanupFailed, StatusQueryError  # noqa: E402
from coach_api.providers.base import ArtifactMetadata, FilesClient, GenerationClient, RawCompletion  # noqa: E402


def make_token(
    sub: str = "user-1",
    email: Optional[str] = "teacher@example.org",
    secret: str = "test-secret",
    ttl: int = 3600,
    **claims,
) -> str:
    now = int(time.time())
    body = {"sub": sub, "iat": now, "exp": now + ttl, "typ": "access"}
    if email is not None:
        body["user"] = {"id": sub, "email": email}
    body.update(claims)
    return jwt.encode(body, secret, algorithm="HS256")


@pytest.fixture()
def auth_header():
    return f"Bearer {make_token()}"


class ScriptedFilesClient(FilesClient):
    """Returns the given states in order, repeating the last one."""

    provider_name = "scripted"

    def __init__(self, states: List[str], fail_status: Optional[int] = None, delete_status: int = 200):
        self.states = list(states)
        self.fail_status = fail_status
        self.delete_status = delete_status
        self.status_calls: List[str] = []
        self.delete_calls: List[str] = []

    async def get_file(self, name, request_id=None):
        self.status_calls.append(name)
        if self.fail_status is not None:
            raise StatusQueryError(self.fail_status, "boom")
        idx = min(len(self.status_calls) - 1, len(self.states) - 1)
        return ArtifactMetadata(name=name, state=self.states[idx], uri=f"https://files.example/{name}", mime_type="video/mp4")

    async def delete_file(self, name, request_id=None):
        self.delete_calls.append(name)
        if self.delete_status == 404:
            return False
        if self.delete_status >= 400:
            raise CleanupFailed(name, self.delete_status)
        return True


class ScriptedGenerationClient(GenerationClient):
    provider_name = "scripted"

    def __init__(self, completion: Optional[RawCompletion] = None, error: Optional[Exception] = None):
        super().__init__(model="gemini-test")
        self.completion = completion
        self.error = error
        self.calls: List[list] = []

    async def generate(self, parts, request_id=None):
        self.calls.append(parts)
        if self.error is not None:
            raise self.error
        return self.completion


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start
        self.sleeps: List[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


class HangingGenerationClient(GenerationClient):
    """Never returns; `started` is set once generation has been entered."""

    def __init__(self):
        super().__init__(model="hang")
        self.started = asyncio.Event()

    async def generate(self, parts, request_id=None):
        self.started.set()
        await asyncio.Event().wait()
