import json
import logging
from typing import Optional

from coach_api.config import _env_str

from .base import FilesClient, GenerationClient
from .mock import MockFilesClient, MockGenerationClient

logger = logging.getLogger("teacher_coach.ai.factory")


def _video_provider(provider: Optional[str]) -> str:
    return (provider or _env_str("AI_PROVIDER_VIDEO") or _env_str("AI_PROVIDER") or "mock").lower()


def get_generation_client(provider: Optional[str] = None, model: Optional[str] = None) -> GenerationClient:
    """Return a generation client based on env or explicit overrides.

    Env precedence:
      - AI_PROVIDER_VIDEO
      - AI_PROVIDER
      - defaults to 'mock'
    Model from GEMINI_VIDEO_MODEL if not given.
    """
    prov = _video_provider(provider)
    mdl = model or _env_str("GEMINI_VIDEO_MODEL") or None

    if prov in ("google", "gemini"):
        try:
            from .google import GoogleGenerationClient
            return GoogleGenerationClient(model=mdl)
        except RuntimeError as e:
            # Missing API key: fall back to mock so local runs still work
            logger.warning(json.dumps({"event": "provider_fallback_mock", "kind": "generation", "reason": str(e)}))
            return MockGenerationClient(model=mdl)

    return MockGenerationClient(model=mdl)


def get_files_client(provider: Optional[str] = None) -> FilesClient:
    prov = _video_provider(provider)

    if prov in ("google", "gemini"):
        try:
            from .google import GoogleFilesClient
            return GoogleFilesClient()
        except RuntimeError as e:
            logger.warning(json.dumps({"event": "provider_fallback_mock", "kind": "files", "reason": str(e)}))
            return MockFilesClient()

    return MockFilesClient()
