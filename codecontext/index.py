"""In-memory repository snapshot and its lookup tables.

:class:`RepositoryIndex` is a passive structure: the :class:`~codecontext.indexer.Indexer`
is its only writer, the search engine reads it. Every mutation bumps
``generation`` so readers can key caches on the snapshot they saw.
"""

from __future__ import annotations

import logging
import time
from typing import Dict, Iterator, List, Optional

from .errors import NotFoundError
from .models import FileEntry, SymbolEntry

logger = logging.getLogger(__name__)


class RepositoryIndex:
    """Files, symbols and the derived lookup tables.

    Tables:
        files:               file id -> FileEntry
        symbols:             symbol id -> SymbolEntry
        name_index:          symbol name -> symbol ids
        path_index:          relative path -> file id (1:1)
        import_index:        imported module -> ids of importing files
        imported_name_index: imported name -> ids of importing files
        embeddings:          file id -> vector
    """

    def __init__(self, root: str = "") -> None:
        self.root = root
        self.files: Dict[str, FileEntry] = {}
        self.symbols: Dict[str, SymbolEntry] = {}
        self.name_index: Dict[str, List[str]] = {}
        self.path_index: Dict[str, str] = {}
        self.import_index: Dict[str, List[str]] = {}
        self.imported_name_index: Dict[str, List[str]] = {}
        self.embeddings: Dict[str, List[float]] = {}
        self.total_size = 0
        self.indexed_at: Optional[float] = None
        self.last_updated: Optional[float] = None
        self.generation = 0

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def add_file(self, entry: FileEntry) -> None:
        """Insert *entry*, replacing whatever was indexed at the same path."""
        if entry.path in self.path_index:
            self.remove_file(entry.path)

        self.files[entry.id] = entry
        self.path_index[entry.path] = entry.id
        self.total_size += entry.size

        for symbol in entry.symbols:
            self.symbols[symbol.id] = symbol
            self.name_index.setdefault(symbol.name, []).append(symbol.id)
            # Files indexed earlier that import this name
            symbol.references = [
                fid for fid in self.imported_name_index.get(symbol.name, [])
                if fid != entry.id
            ]

        for module in entry.imports:
            _append_unique(self.import_index.setdefault(module, []), entry.id)
        for name in entry.imported_names:
            _append_unique(self.imported_name_index.setdefault(name, []), entry.id)
            for sid in self.name_index.get(name, []):
                symbol = self.symbols[sid]
                if symbol.location.file_id != entry.id:
                    _append_unique(symbol.references, entry.id)

        if entry.embedding is not None:
            self.embeddings[entry.id] = entry.embedding
        self._touch()

    def remove_file(self, path: str) -> Optional[FileEntry]:
        """Drop the file at *path* with its symbols, links and embedding."""
        file_id = self.path_index.pop(path, None)
        if file_id is None:
            return None
        entry = self.files.pop(file_id)

        for symbol in entry.symbols:
            self.symbols.pop(symbol.id, None)
            ids = self.name_index.get(symbol.name)
            if ids is None:
                continue
            if symbol.id in ids:
                ids.remove(symbol.id)
            if not ids:
                del self.name_index[symbol.name]

        _discard_from(self.import_index, entry.imports, file_id)
        _discard_from(self.imported_name_index, entry.imported_names, file_id)
        for name in entry.imported_names:
            for sid in self.name_index.get(name, []):
                refs = self.symbols[sid].references
                if file_id in refs:
                    refs.remove(file_id)

        self.embeddings.pop(file_id, None)
        self.total_size -= entry.size
        self._touch()
        return entry

    def clear(self) -> None:
        self.files.clear()
        self.symbols.clear()
        self.name_index.clear()
        self.path_index.clear()
        self.import_index.clear()
        self.imported_name_index.clear()
        self.embeddings.clear()
        self.total_size = 0
        self.indexed_at = None
        self._touch()

    def _touch(self) -> None:
        self.generation += 1
        self.last_updated = time.time()

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def get_file(self, file_id: str) -> FileEntry:
        try:
            return self.files[file_id]
        except KeyError:
            raise NotFoundError(f"Unknown file id: {file_id}") from None

    def find_file(self, path: str) -> Optional[FileEntry]:
        file_id = self.path_index.get(path)
        return self.files.get(file_id) if file_id else None

    def get_symbol(self, symbol_id: str) -> SymbolEntry:
        try:
            return self.symbols[symbol_id]
        except KeyError:
            raise NotFoundError(f"Unknown symbol id: {symbol_id}") from None

    def symbols_named(self, name: str) -> List[SymbolEntry]:
        return [self.symbols[sid] for sid in self.name_index.get(name, [])]

    def files_importing(self, module: str) -> List[FileEntry]:
        return [self.files[fid] for fid in self.import_index.get(module, [])]

    def references_to(self, symbol_id: str) -> List[FileEntry]:
        """Files that import the name declared by *symbol_id*."""
        symbol = self.get_symbol(symbol_id)
        return [self.files[fid] for fid in symbol.references if fid in self.files]

    def iter_files(self) -> Iterator[FileEntry]:
        return iter(list(self.files.values()))

    def stats(self) -> Dict[str, object]:
        return {
            "root": self.root,
            "files": len(self.files),
            "symbols": len(self.symbols),
            "names": len(self.name_index),
            "modules": len(self.import_index),
            "embeddings": len(self.embeddings),
            "total_size": self.total_size,
            "indexed_at": self.indexed_at,
            "last_updated": self.last_updated,
            "generation": self.generation,
        }

    def __len__(self) -> int:
        return len(self.files)

    def __contains__(self, path: object) -> bool:
        return path in self.path_index


def _append_unique(items: List[str], value: str) -> None:
    if value not in items:
        items.append(value)


def _discard_from(table: Dict[str, List[str]], keys: List[str], file_id: str) -> None:
    for key in keys:
        ids = table.get(key)
        if not ids:
            continue
        if file_id in ids:
            ids.remove(file_id)
        if not ids:
            del table[key]
