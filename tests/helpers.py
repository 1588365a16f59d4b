from __future__ import annotations

import json
import threading
import time
from concurrent.futures import Future
from typing import Any, Callable

import requests

from estate_client.upload_queue import UploadFile
from estate_client.utils.api import ApiError, UploadAborted

BASE_URL = "http://api.test/api"


def wait_for(predicate: Callable[[], bool], timeout: float = 3.0) -> None:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return
        time.sleep(0.005)
    raise AssertionError("condition not met in time")


def make_response(status: int, payload: Any = None, *, text: str | None = None, url: str = BASE_URL) -> requests.Response:
    resp = requests.Response()
    resp.status_code = status
    resp.url = url
    resp.encoding = "utf-8"
    if text is not None:
        resp._content = text.encode("utf-8")
    else:
        resp._content = json.dumps(payload).encode("utf-8")
        resp.headers["Content-Type"] = "application/json"
    return resp


class FakeSession(requests.Session):
    """Answers every request from `handler(prepared_request)`; drains streamed bodies like a socket would."""

    def __init__(self, handler: Callable[[requests.PreparedRequest], requests.Response]) -> None:
        super().__init__()
        self.handler = handler
        self.sent: list[requests.PreparedRequest] = []
        self.send_kwargs: list[dict[str, Any]] = []

    def send(self, request, **kwargs):
        body = request.body
        if hasattr(body, "read"):
            chunks = []
            while True:
                chunk = body.read(8192)
                if not chunk:
                    break
                chunks.append(chunk)
            request.body_bytes = b"".join(chunks)
        elif isinstance(body, str):
            request.body_bytes = body.encode("utf-8")
        else:
            request.body_bytes = body or b""
        self.sent.append(request)
        self.send_kwargs.append(kwargs)
        resp = self.handler(request)
        resp.request = request
        return resp


class InlineExecutor:
    """Runs submitted work immediately on the calling thread."""

    def submit(self, fn, *args, **kwargs) -> Future:
        future: Future = Future()
        try:
            future.set_result(fn(*args, **kwargs))
        except Exception as exc:  # pragma: no cover - surfaced through the future
            future.set_exception(exc)
        return future

    def shutdown(self, wait: bool = True) -> None:
        pass


class FakeApi:
    """Stand-in for ApiClient.request keyed by (method, url)."""

    def __init__(self, routes: dict[tuple[str, str], Any]) -> None:
        self.routes = routes
        self.calls: list[tuple[str, str, dict[str, Any]]] = []
        self._lock = threading.Lock()

    def request(self, method: str, url: str, **kwargs: Any) -> Any:
        with self._lock:
            self.calls.append((method, url, kwargs))
        handler = self.routes[(method, url)]
        out = handler(kwargs) if callable(handler) else handler
        if isinstance(out, Exception):
            raise out
        return out

    def count(self, method: str, url: str) -> int:
        with self._lock:
            return sum(1 for m, u, _ in self.calls if (m, u) == (method, url))


class GatedTransport:
    """
    Upload transport that holds each file until `release(name)` is called.

    Outcomes default to one CDN URL per file; set `outcomes[name]` to a list,
    None or an exception to change the result.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._gates: dict[str, threading.Event] = {}
        self.started: list[str] = []
        self.aborted: list[str] = []
        self.outcomes: dict[str, Any] = {}

    def gate(self, name: str) -> threading.Event:
        with self._lock:
            return self._gates.setdefault(name, threading.Event())

    def release(self, *names: str) -> None:
        for name in names:
            self.gate(name).set()

    def upload(self, owner_id, file, *, on_progress, abort_event, timeout):
        with self._lock:
            self.started.append(file.name)
        on_progress(file.size // 4, file.size)
        on_progress(file.size // 2, file.size)
        gate = self.gate(file.name)
        while not gate.wait(0.005):
            if abort_event.is_set():
                with self._lock:
                    self.aborted.append(file.name)
                raise UploadAborted("Upload cancelled")
        on_progress(file.size, file.size)
        outcome = self.outcomes.get(file.name, [f"https://cdn.test/{owner_id}/{file.name}"])
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


class ThreadSpawner:
    """`spawn` hook for UploadQueue that keeps worker threads joinable."""

    def __init__(self) -> None:
        self.threads: list[threading.Thread] = []

    def __call__(self, target: Callable[[], None]) -> None:
        t = threading.Thread(target=target, daemon=True)
        self.threads.append(t)
        t.start()

    def join(self, timeout: float = 3.0) -> None:
        for t in list(self.threads):
            t.join(timeout)


def image(name: str, size: int = 4096) -> UploadFile:
    return UploadFile.from_bytes(b"\xff\xd8\xff" + b"x" * (size - 3), name)


def upload_error(message: str, status: int = 500) -> ApiError:
    return ApiError(message, status=status, data={"message": message})
