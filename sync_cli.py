"""Console utility to inspect and drive the offline sync queue."""
from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from typing import List, Optional, Sequence

from models.sync_operation import OperationType
from services.sync_context import SyncContext


def _dump(data) -> None:
    print(json.dumps(data, ensure_ascii=False, indent=2, default=str))


def _parse_payload(raw: str) -> dict:
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise argparse.ArgumentTypeError(f"payload is not valid JSON: {exc}") from exc
    if not isinstance(payload, dict):
        raise argparse.ArgumentTypeError("payload must be a JSON object")
    return payload


async def _process(context: SyncContext) -> dict:
    queue = context.coordinator
    queue.start()
    await context.monitor.check()
    await queue.process_queue()
    await queue.join()
    return queue.status()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description=__doc__ or "")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log to stderr")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("status", help="Show queue counters")

    list_cmd = sub.add_parser("list", help="List queued operations")
    list_cmd.add_argument("--collection", help="Only operations for this collection")

    enqueue_cmd = sub.add_parser("enqueue", help="Queue an operation")
    enqueue_cmd.add_argument("type", choices=[t.value for t in OperationType], type=str.upper)
    enqueue_cmd.add_argument("collection")
    enqueue_cmd.add_argument("payload", type=_parse_payload, help="JSON object")

    sub.add_parser("process", help="Run one processing pass now")
    sub.add_parser("clear-failed", help="Remove operations that used up their retries")

    remove_cmd = sub.add_parser("remove", help="Remove one operation by id")
    remove_cmd.add_argument("id")
    return parser


def main(argv: Optional[Sequence[str]] = None, context: Optional[SyncContext] = None) -> int:
    args = build_parser().parse_args(argv)
    if args.verbose:
        logging.basicConfig(
            stream=sys.stderr,
            level=logging.DEBUG,
            format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        )

    context = context or SyncContext()
    queue = context.coordinator
    try:
        if args.command == "status":
            _dump(queue.status())
        elif args.command == "list":
            ops: List = queue.operations_for(args.collection) if args.collection else queue.snapshot()
            _dump([op.to_dict() for op in ops])
        elif args.command == "enqueue":
            _dump({"id": queue.enqueue(args.type, args.collection, args.payload)})
        elif args.command == "process":
            _dump(asyncio.run(_process(context)))
        elif args.command == "clear-failed":
            _dump({"removed": queue.clear_failed()})
        elif args.command == "remove":
            removed = queue.remove(args.id)
            _dump({"removed": removed})
            if not removed:
                return 1
    finally:
        context.close()
    return 0


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    sys.exit(main())
