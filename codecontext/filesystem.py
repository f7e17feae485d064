"""File-system provider consumed by the indexer.

The core never touches the disk directly: it awaits a
:class:`FileSystemProvider`. :class:`LocalFileSystem` is the default,
pushing blocking ``pathlib`` calls to worker threads so the event loop
stays responsive while files are read.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from pathlib import Path
from typing import List, Protocol, Union

from .errors import FileReadError

PathLike = Union[str, Path]


@dataclass
class DirEntry:
    name: str
    path: Path
    is_dir: bool
    is_file: bool


@dataclass
class FileStat:
    size: int
    mtime: float


class FileSystemProvider(Protocol):
    async def list_dir(self, path: PathLike) -> List[DirEntry]:
        ...

    async def stat(self, path: PathLike) -> FileStat:
        ...

    async def read_text(self, path: PathLike) -> str:
        ...


class LocalFileSystem:
    """Read-only access to the local disk."""

    def __init__(self, encoding: str = "utf-8") -> None:
        self.encoding = encoding

    async def list_dir(self, path: PathLike) -> List[DirEntry]:
        return await asyncio.to_thread(self._list_dir_sync, Path(path))

    def _list_dir_sync(self, path: Path) -> List[DirEntry]:
        entries: List[DirEntry] = []
        for item in sorted(path.iterdir()):
            try:
                entries.append(DirEntry(
                    name=item.name,
                    path=item,
                    is_dir=item.is_dir(),
                    is_file=item.is_file(),
                ))
            except OSError:
                # Skip entries we can't access
                continue
        return entries

    async def stat(self, path: PathLike) -> FileStat:
        try:
            st = await asyncio.to_thread(Path(path).stat)
        except OSError as exc:
            raise FileReadError(f"Cannot stat {path}: {exc}") from exc
        return FileStat(size=st.st_size, mtime=st.st_mtime)

    async def read_text(self, path: PathLike) -> str:
        try:
            return await asyncio.to_thread(Path(path).read_text, encoding=self.encoding)
        except UnicodeDecodeError as exc:
            raise FileReadError(f"{path} is not valid {self.encoding}") from exc
        except OSError as exc:
            raise FileReadError(f"Cannot read {path}: {exc}") from exc
