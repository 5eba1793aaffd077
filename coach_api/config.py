import os

from dotenv import load_dotenv

# Load environment variables from .env if available, but avoid during pytest to keep tests deterministic
if "PYTEST_CURRENT_TEST" not in os.environ:
    load_dotenv()


def _env_str(name: str, default: str = "") -> str:
    return os.getenv(name, default).strip()


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, str(default)))
    except Exception:
        return default


def _env_float(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, str(default)))
    except Exception:
        return default


# Input bounds for analysis requests
MAX_TECHNIQUES = 20
MAX_TRANSCRIPT_LENGTH = 100000
MAX_PAUSES = 100

GEMINI_API_BASE = "https://generativelanguage.googleapis.com"

# Session tokens
ACCESS_TOKEN_TTL_SECONDS = 7 * 24 * 60 * 60
REFRESH_TOKEN_TTL_SECONDS = 30 * 24 * 60 * 60


# Settings below are read on each call so tests can override them with monkeypatch.

def jwt_secret() -> str:
    return _env_str("JWT_SECRET")


def google_client_id() -> str:
    return _env_str("GOOGLE_CLIENT_ID")


def allowed_domain() -> str:
    return _env_str("ALLOWED_DOMAIN", "psd401.net")


def rate_limit_per_hour() -> int:
    return _env_int("RATE_LIMIT_PER_HOUR", 20)


def video_rate_limit_per_hour() -> int:
    return _env_int("VIDEO_RATE_LIMIT_PER_HOUR", 5)


def rate_limit_backend() -> str:
    return _env_str("RATE_LIMIT_BACKEND", "memory").lower()


def redis_url() -> str:
    return _env_str("REDIS_URL", "redis://localhost:6379/0")


def gemini_api_key() -> str:
    return _env_str("GEMINI_API_KEY") or _env_str("GOOGLE_API_KEY")


def gemini_video_model() -> str:
    return _env_str("GEMINI_VIDEO_MODEL") or _env_str("GEMINI_MODEL") or "gemini-2.5-flash"


def file_poll_interval_seconds() -> float:
    return _env_float("FILE_POLL_INTERVAL_SECONDS", 5.0)


def file_processing_timeout_seconds() -> float:
    return _env_float("FILE_PROCESSING_TIMEOUT_SECONDS", 300.0)


def http_timeout_seconds() -> float:
    return _env_float("AI_HTTP_TIMEOUT_SECONDS", 120.0)


def http_connect_timeout_seconds() -> float:
    return _env_float("AI_HTTP_CONNECT_TIMEOUT_SECONDS", 10.0)


def files_timeout_seconds() -> float:
    return _env_float("GEMINI_FILES_TIMEOUT_SECONDS", 15.0)


def disconnect_poll_seconds() -> float:
    return _env_float("DISCONNECT_POLL_SECONDS", 1.0)


def cors_allow_origins() -> list:
    raw = _env_str("CORS_ALLOW_ORIGINS", "*")
    return [o.strip() for o in raw.split(",") if o.strip()]


def log_level() -> str:
    return _env_str("LOG_LEVEL", "INFO").upper()
