from __future__ import annotations

import io
import logging
import mimetypes
import os
from threading import Event
from typing import Any, Callable, Iterable, Protocol

import certifi
import requests

from estate_client.utils import storage
from estate_client.utils.config import api_base_url, normalize_base_url, request_timeout
from estate_client.utils.schemas import error_message
from estate_client.utils.signals import Listeners

logger = logging.getLogger(__name__)

CONNECT_TIMEOUT = 10
UPLOAD_CHUNK_SIZE = 64 * 1024

ProgressCallback = Callable[[int, int], None]


class ApiError(Exception):
    """Failed backend call: HTTP status (None for transport failures) and parsed body."""

    def __init__(self, message: str, *, status: int | None = None, data: Any = None) -> None:
        super().__init__(message)
        self.message = message
        self.status = status
        self.data = data


class UploadAborted(Exception):
    pass


class FilePart(Protocol):
    name: str
    content: bytes
    content_type: str


def _verify_ca_bundle() -> str:
    """
    Verify HTTPS with a packaged CA bundle (Android builds have no system store).
    """
    return certifi.where()


def guess_content_type(filename: str) -> str:
    """
    Mobile uploads often include modern formats (AVIF/HEIC) that Python's
    `mimetypes` may not know by default. Send a correct part content-type so
    the backend does not reject the image.
    """
    name = (filename or "").strip()
    ct = mimetypes.guess_type(name)[0]
    if ct:
        return ct.strip()
    ext = os.path.splitext(name.lower())[1]
    return {
        ".heic": "image/heic",
        ".heif": "image/heif",
        ".avif": "image/avif",
        ".jpg": "image/jpeg",
        ".jpeg": "image/jpeg",
        ".png": "image/png",
        ".webp": "image/webp",
        ".gif": "image/gif",
    }.get(ext, "application/octet-stream")


class _ProgressBody:
    """
    Request body that reports bytes handed to the socket.

    Raises UploadAborted on the next read once `abort_event` is set, which
    tears down the in-flight request.
    """

    def __init__(self, raw: bytes, on_progress: ProgressCallback | None, abort_event: Event | None) -> None:
        self._buf = io.BytesIO(raw)
        self._total = len(raw)
        self._sent = 0
        self._on_progress = on_progress
        self._abort = abort_event

    def __len__(self) -> int:
        return self._total

    def read(self, size: int = -1) -> bytes:
        if self._abort is not None and self._abort.is_set():
            raise UploadAborted("Upload cancelled")
        if size is None or size < 0:
            chunk = self._buf.read()
        else:
            chunk = self._buf.read(min(size, UPLOAD_CHUNK_SIZE))
        if chunk:
            self._sent += len(chunk)
            if self._on_progress is not None:
                self._on_progress(self._sent, self._total)
        return chunk


class ApiClient:
    """
    The single HTTP entry point for every backend call.

    Cross-cutting behavior lives here so callers never repeat it: bearer
    token injection, base URL resolution, JSON vs multipart content type,
    and session teardown on 401.
    """

    def __init__(
        self,
        base_url: str | None = None,
        *,
        session: requests.Session | None = None,
        timeout: float | None = None,
    ) -> None:
        self.base_url = normalize_base_url(base_url) if base_url else api_base_url()
        self._session = session or requests.Session()
        self._timeout = timeout or request_timeout()
        self.unauthorized = Listeners("unauthorized")

    def to_api_url(self, url: str) -> str:
        u = str(url or "").strip()
        if not u:
            return self.base_url
        if u.startswith("http://") or u.startswith("https://") or u.startswith("//"):
            return u
        if u.startswith("/"):
            return f"{self.base_url}{u}"
        return f"{self.base_url}/{u}"

    def _headers(self, *, multipart: bool = False, extra: dict[str, str] | None = None) -> dict[str, str]:
        h = {"Accept": "application/json", "Content-Type": "application/json"}
        if extra:
            h.update(extra)
        if multipart:
            # Let requests write the boundary.
            h.pop("Content-Type", None)
        token = storage.get_token()
        if token:
            h["Authorization"] = f"Bearer {token}"
        return h

    def _on_unauthorized(self, url: str) -> None:
        logger.warning("401 from %s; clearing stored session", url)
        storage.clear_session()
        self.unauthorized.emit()

    def _handle(self, resp: requests.Response, *, fallback: str = "Request failed") -> Any:
        try:
            data = resp.json()
            message = error_message(data, fallback)
        except ValueError:
            # Gateway pages and plain-text bodies are kept for debugging only.
            data = {"detail": resp.text}
            message = fallback
        if resp.status_code == 401:
            self._on_unauthorized(resp.url)
        if resp.status_code >= 400:
            raise ApiError(message, status=resp.status_code, data=data)
        return data

    def request(
        self,
        method: str,
        url: str,
        *,
        params: dict[str, Any] | None = None,
        json: Any = None,
        data: Any = None,
        files: Any = None,
        headers: dict[str, str] | None = None,
        timeout: float | None = None,
    ) -> Any:
        full_url = self.to_api_url(url)
        clean_params = {k: v for k, v in (params or {}).items() if v is not None} or None
        try:
            resp = self._session.request(
                method.upper(),
                full_url,
                params=clean_params,
                json=json,
                data=data,
                files=files,
                headers=self._headers(multipart=bool(files), extra=headers),
                timeout=(CONNECT_TIMEOUT, timeout or self._timeout),
                verify=_verify_ca_bundle(),
            )
        except requests.exceptions.Timeout as exc:
            logger.warning("%s %s timed out", method.upper(), full_url)
            raise ApiError("Request timeout") from exc
        except requests.exceptions.RequestException as exc:
            logger.warning("%s %s failed: %s", method.upper(), full_url, exc)
            raise ApiError("Network error") from exc
        logger.debug("%s %s -> %s", method.upper(), full_url, resp.status_code)
        return self._handle(resp)

    def get(self, url: str, params: dict[str, Any] | None = None) -> Any:
        return self.request("GET", url, params=params)

    def post(self, url: str, json: Any = None, **kwargs: Any) -> Any:
        return self.request("POST", url, json=json, **kwargs)

    def put(self, url: str, json: Any = None) -> Any:
        return self.request("PUT", url, json=json)

    def patch(self, url: str, json: Any = None) -> Any:
        return self.request("PATCH", url, json=json)

    def delete(self, url: str) -> Any:
        return self.request("DELETE", url)

    def upload(
        self,
        url: str,
        *,
        fields: dict[str, str],
        files: Iterable[tuple[str, FilePart]],
        on_progress: ProgressCallback | None = None,
        abort_event: Event | None = None,
        timeout: float | None = None,
    ) -> Any:
        """
        Multipart POST with upload progress.

        `on_progress(sent, total)` fires as body bytes are written. Setting
        `abort_event` stops the transfer and raises UploadAborted.
        """
        full_url = self.to_api_url(url)
        parts = [(field, (f.name, f.content, f.content_type or guess_content_type(f.name))) for field, f in files]
        req = requests.Request("POST", full_url, data=fields, files=parts, headers=self._headers(multipart=True))
        prepared = self._session.prepare_request(req)
        body = prepared.body or b""
        if isinstance(body, str):
            # No file parts: requests form-encodes the fields as text.
            body = body.encode("utf-8")
        prepared.body = _ProgressBody(body, on_progress, abort_event)
        try:
            resp = self._session.send(
                prepared,
                timeout=(CONNECT_TIMEOUT, timeout or self._timeout),
                verify=_verify_ca_bundle(),
            )
        except requests.exceptions.Timeout as exc:
            raise ApiError("Upload timeout - please try again") from exc
        except requests.exceptions.RequestException as exc:
            if abort_event is not None and abort_event.is_set():
                raise UploadAborted("Upload cancelled") from exc
            logger.warning("Upload to %s failed: %s", full_url, exc)
            raise ApiError("Network error") from exc
        if abort_event is not None and abort_event.is_set():
            raise UploadAborted("Upload cancelled")
        return self._handle(resp, fallback=f"Upload failed: {resp.status_code}")
