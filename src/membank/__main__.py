"""Entry point: python -m membank <command>

- reindex [scope]             Rebuild the index of a scope (default: global)
- search <scope> <tag>... [--all]
                              Tag search; --all requires every tag
- init <branch>               Create a branch and its core files
"""

from __future__ import annotations

import asyncio
import logging
import sys

from membank.bank import MemoryBank
from membank.config import load_config
from membank.errors import MemoryBankError

logger = logging.getLogger(__name__)


def _setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


async def _reindex(bank: MemoryBank, args: list[str]) -> None:
    scope = args[0] if args else "global"
    count = await bank.rebuild_index(scope)
    print(f"Indexed {count} documents in {scope}")


async def _search(bank: MemoryBank, args: list[str]) -> None:
    match_all = "--all" in args
    args = [a for a in args if a != "--all"]
    if len(args) < 2:
        _usage()
    result = await bank.find_by_tags(args[0], args[1:], match_all=match_all)
    for doc in result.documents:
        print(f"{doc.path}\t{', '.join(doc.tags)}")
    print(f"{result.count} documents matched {result.searched_tags} in {result.location}")


async def _init(bank: MemoryBank, args: list[str]) -> None:
    if not args:
        _usage()
    created = await bank.initialize_branch(args[0])
    for name in created:
        print(f"Created {name}")


_COMMANDS = {"reindex": _reindex, "search": _search, "init": _init}


def _usage() -> None:
    print("Usage: python -m membank [reindex|search|init] ...")
    print("  reindex [scope]                  Rebuild a scope's index (default: global)")
    print("  search <scope> <tag>... [--all]  Find documents by tag")
    print("  init <branch>                    Create a branch and its core files")
    sys.exit(1)


def main() -> None:
    cmd = sys.argv[1] if len(sys.argv) > 1 else ""
    handler = _COMMANDS.get(cmd)
    if handler is None:
        _usage()

    config = load_config()
    _setup_logging(config.log_level)
    bank = MemoryBank.from_config(config)
    try:
        asyncio.run(handler(bank, sys.argv[2:]))
    except MemoryBankError as e:
        logger.error("%s failed: %s", cmd, e.message)
        sys.exit(2)
    finally:
        bank.close()


if __name__ == "__main__":
    main()
