"""
Background upload queue for listing images.

Files are attached to an owning entity (normally the property being
created), uploaded with bounded parallelism and observed through progress
and completion listeners. Failures never raise out of the queue: they are
recorded on the item and broadcast like any other state change.
"""

from __future__ import annotations

import enum
import logging
import os
import uuid
from dataclasses import dataclass, field, replace
from threading import Event, RLock, Thread, Timer
from typing import Callable, Protocol

from estate_client.utils.api import ApiClient, ApiError, UploadAborted, guess_content_type
from estate_client.utils.config import upload_max_concurrent, upload_timeout
from estate_client.utils.schemas import parse_uploaded_images
from estate_client.utils.signals import Listeners

logger = logging.getLogger(__name__)

MAX_CONCURRENT = 3
UPLOAD_TIMEOUT_SECONDS = 15.0
UPLOAD_ENDPOINT = "/properties/upload"
TIMEOUT_MESSAGE = "Upload timeout - please try again"


class UploadStatus(str, enum.Enum):
    PENDING = "pending"
    UPLOADING = "uploading"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(frozen=True)
class UploadFile:
    name: str
    content: bytes = field(repr=False)
    content_type: str = ""

    @property
    def size(self) -> int:
        return len(self.content)

    @classmethod
    def from_bytes(cls, raw: bytes, name: str, content_type: str = "") -> "UploadFile":
        return cls(name=name, content=bytes(raw), content_type=content_type or guess_content_type(name))

    @classmethod
    def from_path(cls, path: str) -> "UploadFile":
        with open(path, "rb") as f:
            raw = f.read()
        return cls.from_bytes(raw, os.path.basename(path))


@dataclass
class UploadItem:
    id: str
    owner_id: str
    file: UploadFile
    progress: int = 0
    status: UploadStatus = UploadStatus.PENDING
    error: str | None = None


class UploadTransport(Protocol):
    def upload(
        self,
        owner_id: str,
        file: UploadFile,
        *,
        on_progress: Callable[[int, int], None],
        abort_event: Event,
        timeout: float,
    ) -> list[str] | None: ...


class PropertyImageTransport:
    """Posts one file as `images` plus `propertyId` to the listing upload endpoint."""

    def __init__(self, api: ApiClient, endpoint: str = UPLOAD_ENDPOINT) -> None:
        self._api = api
        self._endpoint = endpoint

    def upload(self, owner_id, file, *, on_progress, abort_event, timeout):
        payload = self._api.upload(
            self._endpoint,
            fields={"propertyId": str(owner_id)},
            files=[("images", file)],
            on_progress=on_progress,
            abort_event=abort_event,
            timeout=timeout,
        )
        return parse_uploaded_images(payload)


@dataclass
class _Attempt:
    abort: Event = field(default_factory=Event)
    timer: Timer | None = None


def _spawn_thread(target: Callable[[], None]) -> None:
    Thread(target=target, daemon=True).start()


ProgressListener = Callable[[list[UploadItem]], None]
CompletionListener = Callable[[str, list[str]], None]


class UploadQueue:
    def __init__(
        self,
        transport: UploadTransport,
        *,
        max_concurrent: int | None = None,
        timeout: float | None = None,
        spawn: Callable[[Callable[[], None]], None] | None = None,
    ) -> None:
        self._transport = transport
        self.max_concurrent = max(1, int(max_concurrent or upload_max_concurrent() or MAX_CONCURRENT))
        self.timeout = float(timeout or upload_timeout() or UPLOAD_TIMEOUT_SECONDS)
        self._spawn = spawn or _spawn_thread
        self._lock = RLock()
        # Serializes broadcasts so listeners see snapshots in the order taken.
        self._broadcast_lock = RLock()
        self._items: dict[str, UploadItem] = {}
        self._active: dict[str, _Attempt] = {}
        self._progress = Listeners("upload-progress")
        self._completion = Listeners("upload-completion")

    # -----------------------
    # Public API
    # -----------------------
    def enqueue(self, owner_id: str, files: list[UploadFile]) -> None:
        files = list(files or [])
        if not files:
            logger.warning("enqueue called without files for owner=%s", owner_id)
            return
        with self._lock:
            for f in files:
                item_id = f"{owner_id}-{uuid.uuid4().hex}"
                self._items[item_id] = UploadItem(id=item_id, owner_id=str(owner_id), file=f)
                logger.debug("Queued %s (%s, %d bytes)", item_id, f.name, f.size)
            logger.info("Queued %d file(s) for owner=%s; %d tracked", len(files), owner_id, len(self._items))
        self._broadcast()
        self._pump()

    def get_snapshot(self) -> list[UploadItem]:
        with self._lock:
            return [replace(item) for item in self._items.values()]

    def subscribe_to_progress(self, callback: ProgressListener) -> Callable[[], None]:
        return self._progress.add(callback)

    def subscribe_to_completion(self, callback: CompletionListener) -> Callable[[], None]:
        return self._completion.add(callback)

    def retry(self, item_id: str) -> None:
        with self._lock:
            item = self._items.get(item_id)
            if item is None or item.status is not UploadStatus.FAILED:
                return
            item.status = UploadStatus.PENDING
            item.progress = 0
            item.error = None
            logger.info("Retrying %s", item_id)
        self._broadcast()
        self._pump()

    def cancel(self, item_id: str) -> None:
        with self._lock:
            item = self._items.pop(item_id, None)
            if item is None:
                return
            attempt = self._active.pop(item_id, None)
            if attempt is not None:
                attempt.abort.set()
                if attempt.timer is not None:
                    attempt.timer.cancel()
            logger.info("Cancelled %s (%s)", item_id, item.status.value)
        self._broadcast()
        self._pump()

    def active_count(self) -> int:
        with self._lock:
            return len(self._active)

    # -----------------------
    # Scheduling
    # -----------------------
    def _pump(self) -> None:
        started: list[tuple[UploadItem, _Attempt]] = []
        with self._lock:
            for item in self._items.values():
                if len(self._active) >= self.max_concurrent:
                    break
                if item.status is not UploadStatus.PENDING:
                    continue
                attempt = _Attempt()
                attempt.timer = Timer(self.timeout, self._on_timeout, args=(item.id, attempt))
                attempt.timer.daemon = True
                self._active[item.id] = attempt
                item.status = UploadStatus.UPLOADING
                item.progress = 0
                started.append((replace(item), attempt))
        if not started:
            return
        self._broadcast()
        for item, attempt in started:
            logger.debug("Starting upload %s for owner=%s", item.id, item.owner_id)
            attempt.timer.start()
            self._spawn(lambda item=item, attempt=attempt: self._run(item, attempt))

    def _is_current(self, item_id: str, attempt: _Attempt) -> bool:
        return self._active.get(item_id) is attempt

    def _run(self, item: UploadItem, attempt: _Attempt) -> None:
        def on_progress(sent: int, total: int) -> None:
            self._on_progress(item.id, attempt, sent, total)

        try:
            urls = self._transport.upload(
                item.owner_id,
                item.file,
                on_progress=on_progress,
                abort_event=attempt.abort,
                timeout=self.timeout,
            )
        except UploadAborted:
            logger.debug("Upload %s aborted", item.id)
            return
        except ApiError as exc:
            self._fail(item.id, attempt, exc.message)
            return
        except Exception:
            logger.exception("Unexpected upload failure for %s", item.id)
            self._fail(item.id, attempt, "Upload failed")
            return
        self._complete(item, attempt, urls)

    def _on_progress(self, item_id: str, attempt: _Attempt, sent: int, total: int) -> None:
        pct = int(round(sent * 100 / total)) if total > 0 else 0
        pct = max(0, min(100, pct))
        with self._lock:
            if not self._is_current(item_id, attempt):
                return
            item = self._items[item_id]
            if pct <= item.progress:
                return
            item.progress = pct
        self._broadcast()

    def _complete(self, item: UploadItem, attempt: _Attempt, urls: list[str] | None) -> None:
        with self._lock:
            if not self._is_current(item.id, attempt):
                return
        if urls is not None:
            logger.info("Upload %s stored %d image(s) for owner=%s", item.id, len(urls), item.owner_id)
            self._completion.emit(item.owner_id, list(urls))
        with self._lock:
            if not self._is_current(item.id, attempt):
                return
            self._settle(item.id, attempt)
            tracked = self._items[item.id]
            tracked.status = UploadStatus.COMPLETED
            tracked.progress = 100
        self._broadcast()
        self._pump()

    def _fail(self, item_id: str, attempt: _Attempt, message: str) -> None:
        with self._lock:
            if not self._is_current(item_id, attempt):
                return
            self._settle(item_id, attempt)
            tracked = self._items[item_id]
            tracked.status = UploadStatus.FAILED
            tracked.error = message or "Upload failed"
            logger.warning("Upload %s failed: %s", item_id, tracked.error)
        self._broadcast()
        self._pump()

    def _on_timeout(self, item_id: str, attempt: _Attempt) -> None:
        attempt.abort.set()
        self._fail(item_id, attempt, TIMEOUT_MESSAGE)

    def _settle(self, item_id: str, attempt: _Attempt) -> None:
        self._active.pop(item_id, None)
        if attempt.timer is not None:
            attempt.timer.cancel()

    def _broadcast(self) -> None:
        with self._broadcast_lock:
            self._progress.emit(self.get_snapshot())
