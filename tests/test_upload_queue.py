from __future__ import annotations

import time

from estate_client.upload_queue import TIMEOUT_MESSAGE, PropertyImageTransport, UploadFile, UploadQueue, UploadStatus
from estate_client.utils.api import ApiClient

from tests.helpers import (
    BASE_URL,
    FakeSession,
    GatedTransport,
    ThreadSpawner,
    image,
    make_response,
    upload_error,
    wait_for,
)


def _queue(transport, *, max_concurrent=3, timeout=5.0):
    spawner = ThreadSpawner()
    q = UploadQueue(transport, max_concurrent=max_concurrent, timeout=timeout, spawn=spawner)
    return q, spawner


def _statuses(q):
    return [item.status for item in q.get_snapshot()]


def _by_name(q, name):
    return next(item for item in q.get_snapshot() if item.file.name == name)


def test_five_files_respect_the_concurrency_cap():
    transport = GatedTransport()
    q, spawner = _queue(transport)
    snapshots = []
    q.subscribe_to_progress(snapshots.append)
    names = [f"img{i}.jpg" for i in range(5)]

    q.enqueue("p1", [image(n) for n in names])

    statuses = _statuses(q)
    assert statuses.count(UploadStatus.UPLOADING) == 3
    assert statuses.count(UploadStatus.PENDING) == 2
    wait_for(lambda: len(transport.started) == 3)
    assert set(transport.started) == set(names[:3])

    transport.release("img0.jpg")
    wait_for(lambda: _by_name(q, "img3.jpg").status is UploadStatus.UPLOADING)
    assert _by_name(q, "img4.jpg").status is UploadStatus.PENDING
    wait_for(lambda: len(transport.started) == 4)

    transport.release(*names)
    wait_for(lambda: all(s is UploadStatus.COMPLETED for s in _statuses(q)))
    spawner.join()

    assert transport.started[3:] == ["img3.jpg", "img4.jpg"]
    for snap in snapshots:
        assert sum(1 for item in snap if item.status is UploadStatus.UPLOADING) <= 3
    assert all(item.progress == 100 for item in q.get_snapshot())


def test_cap_is_shared_across_owners():
    transport = GatedTransport()
    q, spawner = _queue(transport, max_concurrent=2)

    q.enqueue("p1", [image("a.jpg"), image("b.jpg")])
    q.enqueue("p2", [image("c.jpg")])

    assert _by_name(q, "c.jpg").status is UploadStatus.PENDING
    transport.release("a.jpg")
    wait_for(lambda: _by_name(q, "c.jpg").status is UploadStatus.UPLOADING)
    assert _by_name(q, "c.jpg").owner_id == "p2"

    transport.release("b.jpg", "c.jpg")
    wait_for(lambda: all(s is UploadStatus.COMPLETED for s in _statuses(q)))
    spawner.join()


def test_progress_never_goes_backwards():
    transport = GatedTransport()
    q, spawner = _queue(transport)
    seen: dict[str, list[int]] = {}

    def record(snapshot):
        for item in snapshot:
            if item.status is UploadStatus.UPLOADING:
                seen.setdefault(item.id, []).append(item.progress)

    q.subscribe_to_progress(record)
    q.enqueue("p1", [image(f"f{i}.jpg", size=1000 + i) for i in range(4)])
    transport.release(*[f"f{i}.jpg" for i in range(4)])
    wait_for(lambda: all(s is UploadStatus.COMPLETED for s in _statuses(q)))
    spawner.join()

    assert seen
    for values in seen.values():
        assert values == sorted(values)


def test_completion_listeners_receive_owner_and_urls():
    transport = GatedTransport()
    transport.outcomes["skip.jpg"] = None
    q, spawner = _queue(transport)
    uploaded = []
    q.subscribe_to_completion(lambda owner, urls: uploaded.append((owner, urls)))

    q.enqueue("p9", [image("front.jpg"), image("skip.jpg")])
    transport.release("front.jpg", "skip.jpg")
    wait_for(lambda: all(s is UploadStatus.COMPLETED for s in _statuses(q)))
    spawner.join()

    assert uploaded == [("p9", ["https://cdn.test/p9/front.jpg"])]


def test_failure_is_recorded_and_does_not_block_the_batch():
    transport = GatedTransport()
    transport.outcomes["bad.jpg"] = upload_error("File too large", status=413)
    q, spawner = _queue(transport, max_concurrent=1)

    q.enqueue("p1", [image("bad.jpg"), image("good.jpg")])
    transport.release("bad.jpg", "good.jpg")
    wait_for(lambda: _by_name(q, "good.jpg").status is UploadStatus.COMPLETED)
    spawner.join()

    bad = _by_name(q, "bad.jpg")
    assert bad.status is UploadStatus.FAILED
    assert bad.error == "File too large"
    # Never retried on its own.
    assert transport.started.count("bad.jpg") == 1


def test_retry_resets_before_the_next_broadcast():
    transport = GatedTransport()
    transport.outcomes["a.jpg"] = upload_error("Upload failed: 500")
    transport.release("a.jpg")
    q, spawner = _queue(transport)
    snapshots = []
    q.subscribe_to_progress(snapshots.append)

    q.enqueue("p1", [image("a.jpg")])
    wait_for(lambda: _statuses(q) == [UploadStatus.FAILED])
    spawner.join()
    item_id = q.get_snapshot()[0].id

    transport.outcomes["a.jpg"] = ["https://cdn.test/a.jpg"]
    mark = len(snapshots)
    q.retry(item_id)

    first = snapshots[mark][0]
    assert first.status is UploadStatus.PENDING
    assert first.progress == 0
    assert first.error is None
    wait_for(lambda: _statuses(q) == [UploadStatus.COMPLETED])
    spawner.join()


def test_retry_of_unknown_or_healthy_item_is_ignored():
    transport = GatedTransport()
    q, spawner = _queue(transport)
    calls = []
    q.subscribe_to_progress(calls.append)

    q.retry("does-not-exist")
    assert calls == []

    q.enqueue("p1", [image("a.jpg")])
    wait_for(lambda: calls and calls[-1][0].progress == 50)
    before = len(calls)
    q.retry(q.get_snapshot()[0].id)
    assert len(calls) == before
    transport.release("a.jpg")
    wait_for(lambda: _statuses(q) == [UploadStatus.COMPLETED])
    spawner.join()


def test_snapshot_is_a_copy():
    transport = GatedTransport()
    q, spawner = _queue(transport)
    q.enqueue("p1", [image("a.jpg"), image("b.jpg")])
    transport.release("a.jpg", "b.jpg")
    wait_for(lambda: all(s is UploadStatus.COMPLETED for s in _statuses(q)))
    spawner.join()

    first = q.get_snapshot()
    second = q.get_snapshot()
    assert first == second
    assert first is not second

    first[0].status = UploadStatus.FAILED
    assert q.get_snapshot() == second


def test_upload_times_out_without_a_response():
    transport = GatedTransport()
    q, spawner = _queue(transport, timeout=0.2)
    started = time.monotonic()

    q.enqueue("p1", [image("slow.jpg")])
    wait_for(lambda: _statuses(q) == [UploadStatus.FAILED])
    elapsed = time.monotonic() - started

    item = q.get_snapshot()[0]
    assert item.error == TIMEOUT_MESSAGE
    assert elapsed >= 0.15
    wait_for(lambda: transport.aborted == ["slow.jpg"])
    spawner.join()
    assert q.get_snapshot()[0].status is UploadStatus.FAILED
    assert q.active_count() == 0


def test_cancel_removes_item_and_aborts_transfer():
    transport = GatedTransport()
    q, spawner = _queue(transport)
    snapshots = []
    q.subscribe_to_progress(snapshots.append)

    q.enqueue("p1", [image("a.jpg")])
    wait_for(lambda: transport.started == ["a.jpg"])
    q.cancel(q.get_snapshot()[0].id)

    assert q.get_snapshot() == []
    assert snapshots[-1] == []
    wait_for(lambda: transport.aborted == ["a.jpg"])
    spawner.join()
    assert q.get_snapshot() == []


def test_cancel_frees_a_slot_for_the_next_pending_item():
    transport = GatedTransport()
    q, spawner = _queue(transport, max_concurrent=1)
    q.enqueue("p1", [image("a.jpg"), image("b.jpg")])

    q.cancel(_by_name(q, "a.jpg").id)

    assert _by_name(q, "b.jpg").status is UploadStatus.UPLOADING
    transport.release("b.jpg")
    wait_for(lambda: _statuses(q) == [UploadStatus.COMPLETED])
    spawner.join()


def test_empty_enqueue_and_unsubscribe():
    transport = GatedTransport()
    q, _ = _queue(transport)
    calls = []
    unsubscribe = q.subscribe_to_progress(calls.append)

    q.enqueue("p1", [])
    assert calls == []
    assert q.get_snapshot() == []

    unsubscribe()
    q.enqueue("p1", [image("a.jpg")])
    assert calls == []
    transport.release("a.jpg")


def test_item_ids_are_unique_and_keep_their_owner():
    transport = GatedTransport()
    q, _ = _queue(transport, max_concurrent=1)
    q.enqueue("p1", [image("a.jpg"), image("a.jpg")])
    q.enqueue("p1-extra", [image("b.jpg")])

    items = q.get_snapshot()
    assert len({item.id for item in items}) == 3
    assert [item.owner_id for item in items] == ["p1", "p1", "p1-extra"]
    transport.release("a.jpg", "b.jpg")


def test_gateway_error_page_is_not_shown_as_the_error():
    client = ApiClient(
        BASE_URL,
        session=FakeSession(lambda req: make_response(502, text="<html><body>Bad Gateway</body></html>")),
    )
    q, spawner = _queue(PropertyImageTransport(client))

    q.enqueue("p1", [image("a.jpg")])
    wait_for(lambda: _statuses(q) == [UploadStatus.FAILED])
    spawner.join()

    assert q.get_snapshot()[0].error == "Upload failed: 502"


def test_file_loaded_from_disk_keeps_name_and_type(tmp_path):
    path = tmp_path / "living-room.webp"
    path.write_bytes(b"RIFF0000WEBP")

    upload = UploadFile.from_path(str(path))

    assert upload.name == "living-room.webp"
    assert upload.content == b"RIFF0000WEBP"
    assert upload.size == 12
    assert upload.content_type == "image/webp"
