from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from threading import RLock
from typing import Any

from estate_client.utils.config import session_path

logger = logging.getLogger(__name__)

# Keys mirror the web client's localStorage so sessions stay interchangeable.
AUTH_TOKEN_KEY = "auth_token"
LEGACY_TOKEN_KEY = "token"
USER_DATA_KEY = "user_data"
USER_LOCATION_KEY = "userLocation"
LOCATION_PROMPT_KEY = "locationPromptShown"

_LOCK = RLock()


def _store_path() -> str:
    return session_path()


def _read() -> dict[str, Any]:
    path = _store_path()
    if not os.path.exists(path):
        return {}
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, ValueError):
        logger.warning("Session store unreadable, starting empty: %s", path)
        return {}
    return data if isinstance(data, dict) else {}


def _write(data: dict[str, Any]) -> None:
    path = _store_path()
    try:
        with open(path, "w", encoding="utf-8") as f:
            json.dump(data, f, ensure_ascii=False, indent=2)
    except OSError:
        # Best-effort; the client keeps working for this process.
        logger.warning("Could not persist session store: %s", path)


def get_item(key: str) -> Any:
    with _LOCK:
        return _read().get(key)


def set_item(key: str, value: Any) -> None:
    with _LOCK:
        d = _read()
        d[key] = value
        _write(d)


def remove_item(*keys: str) -> None:
    with _LOCK:
        d = _read()
        for key in keys:
            d.pop(key, None)
        _write(d)


# -----------------------
# Auth session
# -----------------------
@dataclass
class AuthState:
    token: str = ""
    user: dict[str, Any] = field(default_factory=dict)

    @property
    def is_authenticated(self) -> bool:
        return bool(self.token)


def get_token() -> str:
    with _LOCK:
        d = _read()
    return str(d.get(AUTH_TOKEN_KEY) or d.get(LEGACY_TOKEN_KEY) or "")


def get_user() -> dict[str, Any]:
    raw = get_item(USER_DATA_KEY)
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except ValueError:
            return {}
    return dict(raw) if isinstance(raw, dict) else {}


def set_credentials(*, token: str, user: dict[str, Any]) -> None:
    with _LOCK:
        d = _read()
        d[AUTH_TOKEN_KEY] = token or ""
        d[USER_DATA_KEY] = dict(user or {})
        _write(d)


def set_user(user: dict[str, Any]) -> None:
    set_item(USER_DATA_KEY, dict(user or {}))


def clear_session() -> None:
    remove_item(AUTH_TOKEN_KEY, LEGACY_TOKEN_KEY, USER_DATA_KEY)


def hydrate_auth() -> AuthState:
    """
    Restore the auth state saved by a previous run.

    A token without readable user data is treated as corrupted and cleared.
    """
    with _LOCK:
        d = _read()
        token = str(d.get(AUTH_TOKEN_KEY) or "")
        raw_user = d.get(USER_DATA_KEY)
        if not token or raw_user is None:
            return AuthState()
        if isinstance(raw_user, str):
            try:
                raw_user = json.loads(raw_user)
            except ValueError:
                raw_user = None
        if not isinstance(raw_user, dict):
            logger.warning("Clearing corrupted session data")
            d.pop(AUTH_TOKEN_KEY, None)
            d.pop(USER_DATA_KEY, None)
            _write(d)
            return AuthState()
    return AuthState(token=token, user=raw_user)


# -----------------------
# Location consent
# -----------------------
def get_user_location() -> dict[str, Any] | None:
    loc = get_item(USER_LOCATION_KEY)
    return dict(loc) if isinstance(loc, dict) else None


def set_user_location(location: dict[str, Any]) -> None:
    set_item(USER_LOCATION_KEY, dict(location or {}))


def location_prompt_shown() -> bool:
    return bool(get_item(LOCATION_PROMPT_KEY))


def mark_location_prompt_shown() -> None:
    set_item(LOCATION_PROMPT_KEY, True)
