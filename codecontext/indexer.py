"""Walk a repository and populate a :class:`RepositoryIndex`."""

from __future__ import annotations

import logging
import time
from hashlib import blake2b
from pathlib import Path, PurePosixPath
from typing import Any, List, Optional, Tuple, Union

from .config import IndexConfig
from .embeddings import HashEmbeddingModel, embed
from .errors import ComputationError, FileReadError
from .events import EventBus, EventType
from .filesystem import FileSystemProvider, LocalFileSystem
from .index import RepositoryIndex
from .models import FileEntry, IndexReport
from .parser import detect_language, extract_exports, extract_imports, extract_symbols
from .patterns import matches_any
from .pool import run_bounded

logger = logging.getLogger(__name__)

# Per-file results of a single indexing attempt
INDEXED = "indexed"
SKIPPED = "skipped"
FAILED = "failed"


def file_id_for(path: str) -> str:
    return "file_" + blake2b(path.encode("utf-8"), digest_size=8).hexdigest()


class Indexer:
    """Fill a :class:`RepositoryIndex` from files on a :class:`FileSystemProvider`.

    One file failing to read or embed is logged and counted; the pass
    always runs to the end.
    """

    def __init__(
        self,
        index: Optional[RepositoryIndex] = None,
        config: Optional[IndexConfig] = None,
        embedder: Any = None,
        fs: Optional[FileSystemProvider] = None,
        events: Optional[EventBus] = None,
    ) -> None:
        self.index = index if index is not None else RepositoryIndex()
        self.config = config or IndexConfig()
        self.embedder = embedder or HashEmbeddingModel()
        self.fs = fs or LocalFileSystem()
        self.events = events or EventBus()
        self.root: Optional[Path] = Path(self.index.root) if self.index.root else None

    # ------------------------------------------------------------------
    # Path helpers
    # ------------------------------------------------------------------

    def relative_path(self, path: Union[str, Path]) -> str:
        """POSIX path of *path* relative to the indexed root."""
        p = Path(path)
        if self.root is not None and p.is_absolute():
            try:
                p = p.relative_to(self.root)
            except ValueError:
                pass
        return PurePosixPath(p.as_posix()).as_posix()

    def _absolute(self, rel_path: str) -> Path:
        p = Path(rel_path)
        if p.is_absolute() or self.root is None:
            return p
        return self.root / p

    def is_excluded(self, rel_path: str) -> bool:
        return matches_any(rel_path, self.config.exclude_patterns)

    def should_index(self, rel_path: str) -> bool:
        return (
            matches_any(rel_path, self.config.include_patterns)
            and not self.is_excluded(rel_path)
        )

    # ------------------------------------------------------------------
    # Whole repository
    # ------------------------------------------------------------------

    async def index_repository(self, root: Union[str, Path]) -> IndexReport:
        """Index every matching file below *root*.

        Returns:
            :class:`IndexReport` with per-outcome counts and the wall time.
        """
        started = time.perf_counter()
        self.root = Path(root).resolve()
        self.index.root = str(self.root)
        report = IndexReport(root=self.index.root)

        paths = await self._collect(self.root)
        logger.info("Indexing %d files under %s", len(paths), self.root)

        outcomes = await run_bounded(paths, self._index_path, limit=self.config.worker_count)
        for outcome in outcomes:
            if not outcome.ok:
                logger.warning("Failed to index %s: %s", outcome.item, outcome.error)
                self._emit_failure(outcome.item, outcome.error)
                status, entry = FAILED, None
            else:
                status, entry = outcome.value

            if status == INDEXED and entry is not None:
                report.files_indexed += 1
                report.symbols += len(entry.symbols)
            elif status == SKIPPED:
                report.files_skipped += 1
            else:
                report.files_failed += 1
                report.failed_paths.append(outcome.item)

        self.index.indexed_at = time.time()
        report.duration = time.perf_counter() - started
        self.events.emit(
            EventType.INDEX_UPDATED, "indexer",
            files=report.files_indexed, failed=report.files_failed,
            symbols=report.symbols, duration=report.duration,
        )
        logger.info(
            "Indexed %d files (%d skipped, %d failed, %d symbols) in %.2fs",
            report.files_indexed, report.files_skipped, report.files_failed,
            report.symbols, report.duration,
        )
        return report

    async def _collect(self, root: Path) -> List[str]:
        """Relative paths of indexable files, pruning excluded directories."""
        found: List[str] = []
        pending = [root]
        while pending:
            directory = pending.pop()
            try:
                entries = await self.fs.list_dir(directory)
            except OSError as exc:
                logger.warning("Cannot list %s: %s", directory, exc)
                continue
            for entry in entries:
                rel = self.relative_path(entry.path)
                if entry.is_dir:
                    if not self.is_excluded(rel + "/"):
                        pending.append(Path(entry.path))
                elif entry.is_file and self.should_index(rel):
                    found.append(rel)
        return sorted(found)

    # ------------------------------------------------------------------
    # Single file
    # ------------------------------------------------------------------

    async def index_file(self, path: Union[str, Path]) -> Optional[FileEntry]:
        """(Re-)index one file. Returns ``None`` when skipped or failed."""
        rel = self.relative_path(path)
        _, entry = await self._index_path(rel)
        return entry

    async def _index_path(self, rel_path: str) -> Tuple[str, Optional[FileEntry]]:
        abs_path = self._absolute(rel_path)
        try:
            stat = await self.fs.stat(abs_path)
            if stat.size > self.config.max_file_size:
                logger.debug("Skipping %s (%d bytes > %d)", rel_path, stat.size, self.config.max_file_size)
                return SKIPPED, None
            content = await self.fs.read_text(abs_path)
            entry = await self._build_entry(rel_path, content, stat.size, stat.mtime)
        except (FileReadError, ComputationError) as exc:
            logger.warning("Failed to index %s: %s", rel_path, exc)
            self._emit_failure(rel_path, exc)
            return FAILED, None

        self.index.add_file(entry)
        self.events.emit(
            EventType.FILE_INDEXED, "indexer",
            file_id=entry.id, path=entry.path, symbols=len(entry.symbols),
        )
        return INDEXED, entry

    async def _build_entry(self, rel_path: str, content: str, size: int, mtime: float) -> FileEntry:
        fid = file_id_for(rel_path)
        language = detect_language(rel_path)
        entry = FileEntry(
            id=fid,
            path=rel_path,
            content=content,
            language=language,
            size=size,
            line_count=content.count("\n") + 1 if content else 0,
            last_modified=mtime,
        )
        if self.config.extract_symbols:
            entry.symbols = extract_symbols(fid, rel_path, content, language)
        if self.config.extract_imports:
            entry.imports, entry.imported_names = extract_imports(content, language)
        if self.config.extract_exports:
            entry.exports = extract_exports(content, language)
        if self.config.generate_embeddings:
            entry.embedding = await embed(self.embedder, content)
        return entry

    async def remove_file(self, path: Union[str, Path]) -> bool:
        rel = self.relative_path(path)
        entry = self.index.remove_file(rel)
        if entry is None:
            return False
        self.events.emit(EventType.FILE_REMOVED, "indexer", file_id=entry.id, path=rel)
        return True

    def _emit_failure(self, path: str, error: Optional[BaseException]) -> None:
        self.events.emit(EventType.FILE_FAILED, "indexer", path=path, error=str(error))
