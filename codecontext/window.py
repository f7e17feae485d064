"""Token-budgeted working set of files, symbols and snippets.

The window holds what will be handed to a downstream prompt. Every add is
planned before anything changes: either the artifact fits (possibly after
evicting lower-priority entries) and the whole plan is applied, or the call
returns ``False`` and the window is untouched.
"""

from __future__ import annotations

import itertools
import logging
import math
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Set

from .config import WindowConfig
from .events import EventBus, EventType
from .models import FileEntry, SymbolEntry

logger = logging.getLogger(__name__)


def estimate_tokens(text: str) -> int:
    """Approximate token count.

    Rough approximation: 1 token is about 4 characters.
    """
    return math.ceil(len(text) / 4)


@dataclass
class ContextWindowEntry:
    artifact_id: str
    kind: str  # "file", "symbol" or "snippet"
    content: str
    tokens: int
    priority: int
    last_accessed: float
    path: str = ""
    language: str = ""
    sequence: int = 0

    @property
    def eviction_key(self):
        return (self.priority, self.last_accessed, self.sequence)


class ContextWindow:
    """Priority-ordered artifacts under a fixed token budget.

    ``total_tokens`` always equals the sum of the entries' estimates and
    never exceeds ``available_tokens`` after a successful call.
    """

    def __init__(
        self,
        config: Optional[WindowConfig] = None,
        events: Optional[EventBus] = None,
        clock: Optional[Callable[[], float]] = None,
    ) -> None:
        self.config = config or WindowConfig()
        self.events = events or EventBus()
        self._clock = clock or time.monotonic
        self._entries: Dict[str, ContextWindowEntry] = {}
        self._by_path: Dict[str, Set[str]] = {}
        self._sequence = itertools.count()
        self.total_tokens = 0

    # ------------------------------------------------------------------
    # Budget
    # ------------------------------------------------------------------

    @property
    def available_tokens(self) -> int:
        return max(0, self.config.max_tokens - self.config.reserved_tokens)

    @property
    def utilization(self) -> float:
        available = self.available_tokens
        return self.total_tokens / available if available else 0.0

    @property
    def entries(self) -> List[ContextWindowEntry]:
        return list(self._entries.values())

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, artifact_id: object) -> bool:
        return artifact_id in self._entries

    # ------------------------------------------------------------------
    # Adding
    # ------------------------------------------------------------------

    def add_file(self, file: FileEntry, priority: int = 0) -> bool:
        added = self._add(file.id, "file", file.content, priority, file.path, file.language)
        if added:
            file.touch()
        return added

    def add_symbol(self, symbol: SymbolEntry, content: Optional[str] = None, priority: int = 0) -> bool:
        text = content if content is not None else symbol.signature
        return self._add(symbol.id, "symbol", text, priority, symbol.location.path)

    def add_snippet(
        self,
        snippet_id: str,
        content: str,
        priority: int = 0,
        path: str = "",
        language: str = "",
    ) -> bool:
        return self._add(snippet_id, "snippet", content, priority, path, language)

    def _add(
        self,
        artifact_id: str,
        kind: str,
        content: str,
        priority: int,
        path: str = "",
        language: str = "",
    ) -> bool:
        tokens = estimate_tokens(content)
        budget = self.available_tokens
        existing = self._entries.get(artifact_id)
        base = self.total_tokens - (existing.tokens if existing else 0)

        if tokens > budget:
            logger.debug("%s needs %d tokens, budget is %d", artifact_id, tokens, budget)
            return False

        evicted: List[ContextWindowEntry] = []
        if base + tokens > budget:
            if not (self.config.auto_compress and self.config.compression_enabled):
                return False
            candidates = sorted(
                (e for e in self._entries.values() if e.artifact_id != artifact_id),
                key=lambda e: e.eviction_key,
            )
            limit = self.config.compression_threshold * budget
            remaining = base
            for candidate in candidates:
                if remaining <= limit and remaining + tokens <= budget:
                    break
                evicted.append(candidate)
                remaining -= candidate.tokens
            if remaining + tokens > budget:
                return False

        # Plan accepted; apply it
        for entry in evicted:
            self._drop(entry)
        if evicted:
            self.events.emit(
                EventType.CONTEXT_COMPRESSED, "window",
                evicted=[e.artifact_id for e in evicted], utilization=self.utilization,
            )
        if existing is not None:
            self._unlink_path(existing)
            self.total_tokens -= existing.tokens

        self._entries[artifact_id] = ContextWindowEntry(
            artifact_id=artifact_id,
            kind=kind,
            content=content,
            tokens=tokens,
            priority=priority,
            last_accessed=self._clock(),
            path=path,
            language=language,
            sequence=next(self._sequence),
        )
        if path:
            self._by_path.setdefault(path, set()).add(artifact_id)
        self.total_tokens += tokens
        self.events.emit(
            EventType.CONTEXT_ADDED, "window",
            artifact_id=artifact_id, kind=kind, tokens=tokens, utilization=self.utilization,
        )
        return True

    # ------------------------------------------------------------------
    # Removing
    # ------------------------------------------------------------------

    def remove(self, artifact_id: str) -> bool:
        entry = self._entries.get(artifact_id)
        if entry is None:
            return False
        self._drop(entry)
        self.events.emit(EventType.CONTEXT_REMOVED, "window", artifact_id=artifact_id)
        return True

    def remove_file(self, path: str) -> bool:
        """Remove every entry drawn from *path*: the file, its symbols and snippets."""
        ids = sorted(self._by_path.get(path, ()))
        for artifact_id in ids:
            self.remove(artifact_id)
        return bool(ids)

    def _drop(self, entry: ContextWindowEntry) -> None:
        del self._entries[entry.artifact_id]
        self.total_tokens -= entry.tokens
        self._unlink_path(entry)

    def _unlink_path(self, entry: ContextWindowEntry) -> None:
        ids = self._by_path.get(entry.path)
        if ids is not None:
            ids.discard(entry.artifact_id)
            if not ids:
                del self._by_path[entry.path]

    def compress(self) -> List[str]:
        """Evict lowest-priority entries until utilization is at most the threshold.

        Returns:
            Ids of the evicted entries, in eviction order.
        """
        evicted: List[str] = []
        for entry in sorted(self._entries.values(), key=lambda e: e.eviction_key):
            if self.utilization <= self.config.compression_threshold:
                break
            self._drop(entry)
            evicted.append(entry.artifact_id)
        if evicted:
            self.events.emit(
                EventType.CONTEXT_COMPRESSED, "window",
                evicted=evicted, utilization=self.utilization,
            )
            logger.debug("Compressed window: evicted %d entries", len(evicted))
        return evicted

    def clear(self) -> None:
        self._entries.clear()
        self._by_path.clear()
        self.total_tokens = 0

    # ------------------------------------------------------------------
    # Output
    # ------------------------------------------------------------------

    def touch(self, artifact_id: str) -> None:
        entry = self._entries.get(artifact_id)
        if entry is not None:
            entry.last_accessed = self._clock()
            entry.sequence = next(self._sequence)

    def render(self) -> str:
        """Format entries, highest priority first, as markdown sections."""
        parts: List[str] = []
        ordered = sorted(self._entries.values(), key=lambda e: (-e.priority, e.sequence))
        for entry in ordered:
            header = f"### {entry.path or entry.artifact_id} ({entry.kind})"
            parts.append(f"{header}\n```{entry.language}\n{entry.content}\n```")
        return "\n\n".join(parts)

    def snapshot(self) -> Dict[str, Any]:
        return {
            "total_tokens": self.total_tokens,
            "available_tokens": self.available_tokens,
            "utilization": self.utilization,
            "entries": [
                {
                    "id": e.artifact_id,
                    "kind": e.kind,
                    "path": e.path,
                    "tokens": e.tokens,
                    "priority": e.priority,
                }
                for e in self._entries.values()
            ],
        }
