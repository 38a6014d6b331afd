"""Entry point: python -m memokit <command>

- list [limit]                                  List memos, newest first
- search <query>                                Search title, content and tags
- stats                                         Counts per category
- add <title> [content] [category] [priority]   Create a memo
- delete <id>                                   Delete a memo
- migrate                                       Replay legacy memos
"""

from __future__ import annotations

import asyncio
import json
import logging
import sys

from memokit.config import load_config
from memokit.errors import StorageError
from memokit.storage import MemoStorage, build_storage

USAGE = """\
Usage: python -m memokit <command>
  list [limit]                                 List memos, newest first
  search <query>                               Search title, content and tags
  stats                                        Counts per category
  add <title> [content] [category] [priority]  Create a memo
  delete <id>                                  Delete a memo
  migrate                                      Replay legacy memos"""


def _setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
        stream=sys.stderr,
    )


def _print(data: object) -> None:
    print(json.dumps(data, ensure_ascii=False, indent=2))


def _parse_id(raw: str) -> int | str:
    return int(raw) if raw.isdigit() else raw


async def _run(storage: MemoStorage, cmd: str, args: list[str]) -> None:
    try:
        if cmd == "list":
            limit = int(args[0]) if args else None
            _print([m.as_dict() for m in await storage.list_all(limit)])
        elif cmd == "search":
            _print([m.as_dict() for m in await storage.search(" ".join(args))])
        elif cmd == "stats":
            _print((await storage.stats()).as_dict())
        elif cmd == "add":
            fields = dict(zip(("title", "content", "category", "priority"), args))
            _print({"id": await storage.create(fields)})
        elif cmd == "delete":
            await storage.delete(_parse_id(args[0]))
        elif cmd == "migrate":
            report = await storage.migrate_legacy_data()
            _print(vars(report) if report else {})
    finally:
        await storage.close()


def main(argv: list[str] | None = None) -> None:
    argv = sys.argv[1:] if argv is None else argv
    cmd, args = (argv[0], argv[1:]) if argv else ("list", [])

    required = {"list": 0, "search": 0, "stats": 0, "add": 1, "delete": 1, "migrate": 0}
    bad_limit = cmd == "list" and bool(args) and not args[0].isdecimal()
    if cmd not in required or len(args) < required[cmd] or bad_limit:
        print(USAGE)
        sys.exit(1)

    config = load_config()
    _setup_logging(config.log_level)
    storage = build_storage(config)

    try:
        asyncio.run(_run(storage, cmd, args))
    except StorageError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(2)


if __name__ == "__main__":
    main()
