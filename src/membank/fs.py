"""Async file-system access rooted at a base directory.

Blocking pathlib calls run in a worker thread via ``asyncio.to_thread`` so
callers can await them from the event loop. Paths passed in are relative to
``base``; callers are expected to have validated them already.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path

logger = logging.getLogger(__name__)


class FileSystem:
    """Read/write files under a single base directory."""

    def __init__(self, base: Path) -> None:
        self.base = Path(base)

    def resolve(self, relative: str | Path) -> Path:
        return self.base / relative

    async def read_file(self, relative: str | Path) -> str:
        return await asyncio.to_thread(self.resolve(relative).read_text, encoding="utf-8")

    async def write_file(self, relative: str | Path, content: str) -> None:
        path = self.resolve(relative)

        def _write() -> None:
            path.parent.mkdir(parents=True, exist_ok=True)
            # newline="" keeps "\n" as-is on every platform
            with path.open("w", encoding="utf-8", newline="") as f:
                f.write(content)

        await asyncio.to_thread(_write)

    async def file_exists(self, relative: str | Path) -> bool:
        return await asyncio.to_thread(self.resolve(relative).is_file)

    async def dir_exists(self, relative: str | Path = "") -> bool:
        return await asyncio.to_thread(self.resolve(relative).is_dir)

    async def create_directory(self, relative: str | Path = "") -> None:
        await asyncio.to_thread(self.resolve(relative).mkdir, parents=True, exist_ok=True)

    async def delete_file(self, relative: str | Path) -> None:
        await asyncio.to_thread(self.resolve(relative).unlink)

    async def stat_mtime(self, relative: str | Path) -> float:
        stat = await asyncio.to_thread(self.resolve(relative).stat)
        return stat.st_mtime

    async def list_files(self, relative: str | Path = "") -> list[str]:
        """Recursively list files, as sorted POSIX paths relative to ``relative``."""
        root = self.resolve(relative)

        def _walk() -> list[str]:
            if not root.is_dir():
                return []
            return sorted(p.relative_to(root).as_posix() for p in root.rglob("*") if p.is_file())

        return await asyncio.to_thread(_walk)

    async def list_dirs(self, relative: str | Path = "") -> list[str]:
        root = self.resolve(relative)

        def _dirs() -> list[str]:
            if not root.is_dir():
                return []
            return sorted(p.name for p in root.iterdir() if p.is_dir())

        return await asyncio.to_thread(_dirs)
