"""
Command-line watcher for task progress.

Connects a task channel, tracks the given task ids and prints one JSON line
per snapshot change until every task has finished.
"""

import argparse
import asyncio
import json
import logging
import os
import sys
from typing import Optional, Sequence

from taskstream.client.channel import ConnectionState, TaskChannel
from taskstream.client.config import load_channel_config
from taskstream.client.errors import ReconnectExhausted
from taskstream.client.task_mirror import STATUS_FAILED, TaskMirror, TaskSnapshot

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_TASK_FAILED = 1
EXIT_CHANNEL_EXHAUSTED = 2


def _snapshot_line(snapshot: TaskSnapshot) -> str:
    return json.dumps(
        {
            "taskId": snapshot.task_id,
            "status": snapshot.status,
            "progress": snapshot.progress,
            "result": snapshot.result,
            "error": snapshot.error,
        },
        default=str,
    )


async def watch_tasks(channel: TaskChannel, task_ids: Sequence[str], out=None) -> int:
    """Track *task_ids* on *channel* until all finish; return an exit code."""

    out = out or sys.stdout
    mirror = TaskMirror(channel)
    done = asyncio.Event()

    def _on_snapshot(snapshot: TaskSnapshot) -> None:
        print(_snapshot_line(snapshot), file=out, flush=True)
        if mirror.all_finished():
            done.set()

    def _on_status(status) -> None:
        if status.state is ConnectionState.CLOSED:
            done.set()

    mirror.add_listener(_on_snapshot)
    remove_status = channel.add_listener(_on_status)
    for task_id in task_ids:
        mirror.track(task_id)

    channel.connect()
    try:
        await done.wait()
    finally:
        remove_status()

    snapshots = mirror.snapshots()
    mirror.close()
    if isinstance(channel.last_error, ReconnectExhausted):
        logger.error("Giving up: %s", channel.last_error)
        return EXIT_CHANNEL_EXHAUSTED
    if any(s.status == STATUS_FAILED for s in snapshots.values()):
        return EXIT_TASK_FAILED
    return EXIT_OK


async def _amain(args: argparse.Namespace) -> int:
    config = load_channel_config(
        base_url=args.url,
        credential=args.api_key,
        debug=True if args.debug else None,
    )
    channel = TaskChannel(config)
    try:
        return await watch_tasks(channel, args.task_ids)
    finally:
        await channel.shutdown()


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Watch task progress over the push-update channel")
    parser.add_argument("task_ids", nargs="+", metavar="TASK_ID", help="Task id(s) to follow")
    parser.add_argument("--url", default=None, help="WebSocket URL (default: $TASKSTREAM_WS_URL)")
    parser.add_argument("--api-key", default=None, help="Credential appended to the URL")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    args = parser.parse_args(argv)

    if os.getenv("TASKSTREAM_DEBUG", "").lower() in ("1", "true", "yes"):
        args.debug = True
    level = logging.DEBUG if args.debug else logging.INFO
    logging.basicConfig(
        level=level,
        format="[%(asctime)s] %(name)s - %(levelname)s - %(message)s",
    )

    try:
        return asyncio.run(_amain(args))
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    sys.exit(main())
