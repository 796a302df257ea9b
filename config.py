"""Application configuration."""

import os
from pathlib import Path
from typing import Dict, Tuple

from dotenv import load_dotenv


def _load_dotenv_safe(dotenv_path: str | None = None, *, override: bool = False) -> None:
    """Load dotenv using UTF-8-SIG so BOM-prefixed files don't break first key parsing."""
    try:
        load_dotenv(dotenv_path=dotenv_path, override=override, encoding="utf-8-sig")
    except TypeError:
        # Older python-dotenv versions may not expose the `encoding` argument.
        load_dotenv(dotenv_path=dotenv_path, override=override)


# Load base environment first, then optional per-run override env file.
_load_dotenv_safe()
_RONIN_ENV_FILE = os.getenv("RONIN_ENV_FILE", "").strip()
if _RONIN_ENV_FILE:
    _ronin_env_path = Path(_RONIN_ENV_FILE).expanduser()
    if not _ronin_env_path.is_absolute():
        _ronin_env_path = (Path.cwd() / _ronin_env_path).resolve()
    if not _ronin_env_path.exists():
        raise FileNotFoundError(f"RONIN_ENV_FILE does not exist: {_ronin_env_path}")
    if not _ronin_env_path.is_file():
        raise IsADirectoryError(f"RONIN_ENV_FILE is not a file: {_ronin_env_path}")
    try:
        _load_dotenv_safe(str(_ronin_env_path), override=True)
    except (OSError, UnicodeError, ValueError) as exc:
        raise RuntimeError(f"Failed to load RONIN_ENV_FILE '{_ronin_env_path}': {exc}") from exc


def _parse_source_rate_limits(raw: str) -> Dict[str, Tuple[int, float]]:
    out: Dict[str, Tuple[int, float]] = {}
    for chunk in str(raw or "").split(","):
        item = chunk.strip()
        if not item or ":" not in item:
            continue
        source_part, rate_part = item.split(":", 1)
        source = source_part.strip().lower()
        if not source or "/" not in rate_part:
            continue
        count_part, window_part = rate_part.split("/", 1)
        try:
            count = max(1, int(float(count_part.strip())))
            window_seconds = max(1.0, float(window_part.strip()))
        except ValueError:
            continue
        out[source] = (count, window_seconds)
    return out


def _env_flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "y", "on")


RONIN_REST_URL = os.getenv("RONIN_REST_URL", "https://ronin.rest").strip().rstrip("/")
RONIN_REST_LOCALHOST_URL = os.getenv("RONIN_REST_LOCALHOST_URL", "http://localhost:3000").strip().rstrip("/")

HTTP_TIMEOUT_SECONDS = max(1.0, float(os.getenv("HTTP_TIMEOUT_SECONDS", "30")))
HTTP_CONNECTOR_LIMIT = max(1, int(os.getenv("HTTP_CONNECTOR_LIMIT", "10")))
# Retries after the first attempt.
HTTP_MAX_RETRIES = min(25, max(0, int(os.getenv("HTTP_MAX_RETRIES", "15"))))
HTTP_BACKOFF_MIN_SECONDS = max(0.01, float(os.getenv("HTTP_BACKOFF_MIN_SECONDS", "1.0")))
HTTP_BACKOFF_MAX_SECONDS = max(HTTP_BACKOFF_MIN_SECONDS, float(os.getenv("HTTP_BACKOFF_MAX_SECONDS", "1800")))
HTTP_BACKOFF_BASE = max(1.0, float(os.getenv("HTTP_BACKOFF_BASE", "2")))
HTTP_JITTER_SECONDS = max(0.0, float(os.getenv("HTTP_JITTER_SECONDS", "0.25")))
HTTP_RATE_LIMIT_DELAY_SECONDS = max(0.0, float(os.getenv("HTTP_RATE_LIMIT_DELAY_SECONDS", "2.00")))
HTTP_429_COOLDOWN_SECONDS = max(0.0, float(os.getenv("HTTP_429_COOLDOWN_SECONDS", "10")))
HTTP_SOURCE_RATE_LIMITS = _parse_source_rate_limits(os.getenv("HTTP_SOURCE_RATE_LIMITS", ""))

COLLECTOR_CONCURRENCY = min(16, max(1, int(os.getenv("COLLECTOR_CONCURRENCY", "1"))))
COLLECTOR_OUTPUT_DIR = os.getenv("COLLECTOR_OUTPUT_DIR", ".").strip() or "."
COLLECTOR_CHECKPOINT_ENABLED = _env_flag("COLLECTOR_CHECKPOINT_ENABLED")
COLLECTOR_CHECKPOINT_EVERY = max(1, int(os.getenv("COLLECTOR_CHECKPOINT_EVERY", "25")))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_DIR = os.getenv("LOG_DIR", "logs")
APP_LOG_FILE = os.path.join(LOG_DIR, "ronin_archive.log")
