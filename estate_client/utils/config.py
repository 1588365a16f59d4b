from __future__ import annotations

import logging
import os

from dotenv import load_dotenv


def _load_dotenv_if_present() -> None:
    """
    Load environment variables from a local `.env` file (dev convenience).

    Real environment variables always win over the file.
    """
    load_dotenv(override=False)


# Load .env as early as possible (dev only).
_load_dotenv_if_present()


def _env(name: str) -> str:
    return (os.environ.get(name) or "").strip()


def _bounded_int(raw: str, *, default: int, low: int, high: int) -> int:
    try:
        v = int(raw or str(default))
    except ValueError:
        v = default
    return max(low, min(high, v))


def _bounded_float(raw: str, *, default: float, low: float, high: float) -> float:
    try:
        v = float(raw or str(default))
    except ValueError:
        v = default
    return max(low, min(high, v))


def normalize_base_url(value: str) -> str:
    url = (value or "").strip().rstrip("/")
    if not url:
        return ""
    if url.startswith(("http://", "https://")):
        return url
    return f"https://{url}"


def api_base_url() -> str:
    """
    Backend API root, e.g. https://api.example.com/api.
    Set via env `ESTATE_API_BASE_URL`; falls back to the local dev server.
    """
    return normalize_base_url(_env("ESTATE_API_BASE_URL") or "http://localhost:3001/api")


def request_timeout() -> float:
    """
    Default timeout (seconds) for regular API calls.

    Generous by default: slow mobile links can take minutes on large payloads.
    """
    return _bounded_float(_env("ESTATE_API_TIMEOUT"), default=300.0, low=1.0, high=600.0)


def upload_timeout() -> float:
    """Per-file upload timeout in seconds (`ESTATE_UPLOAD_TIMEOUT`)."""
    return _bounded_float(_env("ESTATE_UPLOAD_TIMEOUT"), default=15.0, low=1.0, high=600.0)


def upload_max_concurrent() -> int:
    return _bounded_int(_env("ESTATE_UPLOAD_MAX_CONCURRENT"), default=3, low=1, high=10)


def session_path() -> str:
    """
    Writable path for the small JSON session store.

    Override with `ESTATE_SESSION_PATH` (tests, sandboxed apps); else CWD.
    """
    override = _env("ESTATE_SESSION_PATH")
    if override:
        return override
    return os.path.join(os.getcwd(), ".session.json")


def log_level() -> str:
    return (_env("ESTATE_LOG_LEVEL") or "INFO").upper()


def configure_logging(level: str | None = None) -> None:
    """Console logging for scripts and dev runs; libraries should not call this."""
    logging.basicConfig(
        level=getattr(logging, (level or log_level()).upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
