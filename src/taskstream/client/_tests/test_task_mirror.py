import asyncio

import pytest

pytest.importorskip("websockets")

from taskstream.client.channel import TaskChannel
from taskstream.client.task_mirror import (
    STATUS_COMPLETED,
    STATUS_FAILED,
    STATUS_PENDING,
    STATUS_RUNNING,
    TaskMirror,
    TaskSnapshot,
    apply_frame,
)
from taskstream.protocol import InboundFrame


def _frame(frame_type, task_id="T1", **data):
    return InboundFrame.from_dict({"type": frame_type, "taskId": task_id, "data": data})


def test_update_moves_pending_to_running():
    snapshot = apply_frame(TaskSnapshot("T1"), _frame("task_update", progress=25), now=1.0)
    assert snapshot.status == STATUS_RUNNING
    assert snapshot.progress == 25.0
    assert snapshot.updated_at == 1.0


def test_update_status_field_and_progress_clamp():
    snapshot = apply_frame(TaskSnapshot("T1"), _frame("task_update", status="queued", progress=140), now=1.0)
    assert snapshot.status == "queued"
    assert snapshot.progress == 100.0


def test_update_without_progress_keeps_previous_value():
    start = TaskSnapshot("T1", status=STATUS_RUNNING, progress=30.0)
    snapshot = apply_frame(start, _frame("task_update", progress="n/a"), now=2.0)
    assert snapshot.progress == 30.0


def test_complete_and_error_are_terminal():
    done = apply_frame(TaskSnapshot("T1"), _frame("task_complete", result={"rows": 3}), now=1.0)
    assert done.status == STATUS_COMPLETED
    assert done.progress == 100.0
    assert done.result == {"rows": 3}
    assert done.finished

    late = apply_frame(done, _frame("task_update", progress=5), now=2.0)
    assert late is done

    failed = apply_frame(TaskSnapshot("T2"), _frame("task_error", "T2", error="disk full"), now=1.0)
    assert failed.status == STATUS_FAILED
    assert failed.error == "disk full"
    assert failed.finished


def test_unknown_frame_type_leaves_snapshot():
    start = TaskSnapshot("T1")
    assert apply_frame(start, _frame("task_log", line="x"), now=1.0) is start


def test_mirror_tracks_channel_frames(quiet_config, connector, eventually):
    updates = []

    async def scenario():
        channel = TaskChannel(quiet_config, connector=connector)
        mirror = TaskMirror(channel, clock=lambda: 42.0)
        mirror.add_listener(updates.append)
        assert mirror.track("T1").status == STATUS_PENDING
        mirror.track("T1")
        mirror.track("T2")

        channel.connect()
        assert await channel.wait_connected(timeout=1.0)
        transport = connector.latest
        transport.push({"type": "task_update", "taskId": "T1", "data": {"progress": 50}})
        transport.push({"type": "task_complete", "taskId": "T1", "data": {"result": "ok"}})
        transport.push({"type": "task_error", "taskId": "T2", "data": {"error": "boom"}})
        await eventually(mirror.all_finished)

        assert mirror.snapshot("T1").result == "ok"
        assert mirror.snapshot("T2").status == STATUS_FAILED
        assert mirror.snapshot("T1").updated_at == 42.0

        mirror.close()
        assert len(channel.subscriptions) == 0
        await eventually(
            lambda: sorted(f["taskId"] for f in transport.frames() if f["type"] == "unsubscribe") == ["T1", "T2"]
        )
        await channel.shutdown()

    asyncio.run(scenario())

    assert [(s.task_id, s.status) for s in updates] == [
        ("T1", STATUS_RUNNING),
        ("T1", STATUS_COMPLETED),
        ("T2", STATUS_FAILED),
    ]


def test_untrack_drops_subscription(quiet_config, connector):
    channel = TaskChannel(quiet_config, connector=connector)
    mirror = TaskMirror(channel)
    mirror.track("T1")
    assert "T1" in channel.subscriptions
    mirror.untrack("T1")
    assert mirror.snapshot("T1") is None
    assert "T1" not in channel.subscriptions
    assert mirror.all_finished() is False
