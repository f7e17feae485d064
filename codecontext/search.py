"""Multi-strategy search over a :class:`RepositoryIndex`.

Five modes share one pipeline: validate -> cache lookup -> score ->
filter -> sort -> truncate. Scores are mode-specific and not bounded to
``[0, 1]`` for keyword and regex modes; callers that need a relevance in
``[0, 1]`` normalise against the best result.

- **semantic** -- cosine similarity of hashed-token embeddings.
- **keyword** -- literal, case-insensitive token occurrences per query token.
- **symbol** -- exact name-index hit (1.0) or substring hit (0.7).
- **regex** -- match count, with a highlight per match.
- **hybrid** -- ``0.6 * semantic + 0.4 * keyword``, merged by result id.
"""

from __future__ import annotations

import logging
import re
import time
from typing import Any, Dict, List, Mapping, Optional, Union

from .cache import TTLCache
from .config import SearchConfig
from .embeddings import HashEmbeddingModel, cosine_similarity, embed
from .errors import ValidationError
from .events import EventBus, EventType
from .index import RepositoryIndex
from .models import (
    FileEntry,
    SearchFilter,
    SearchHighlight,
    SearchMode,
    SearchQuery,
    SearchResult,
    parse_query,
)
from .parser import line_starts, offset_to_position
from .patterns import matches_any, path_matches

logger = logging.getLogger(__name__)

SEMANTIC_WEIGHT = 0.6
KEYWORD_WEIGHT = 0.4
EXACT_SYMBOL_SCORE = 1.0
PARTIAL_SYMBOL_SCORE = 0.7

# Max characters of matched text kept per regex highlight
_MAX_HIGHLIGHT_CHARS = 200


class SearchEngine:
    """Execute :class:`SearchQuery` objects against an index.

    Results are cached per index generation, so any re-index invalidates
    earlier entries without an explicit flush.
    """

    def __init__(
        self,
        index: RepositoryIndex,
        embedder: Any = None,
        config: Optional[SearchConfig] = None,
        events: Optional[EventBus] = None,
        clock=None,
    ) -> None:
        self.index = index
        self.embedder = embedder or HashEmbeddingModel()
        self.config = config or SearchConfig()
        self.events = events or EventBus()
        self._cache: TTLCache[List[SearchResult]] = TTLCache(
            max_size=self.config.cache_size, ttl=self.config.cache_ttl, clock=clock,
        )
        self.total_searches = 0
        self.total_time = 0.0

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def search(self, query: Union[SearchQuery, Mapping[str, Any]]) -> List[SearchResult]:
        """Run *query* and return at most ``top_k`` results, best first.

        Raises:
            ValidationError: malformed query, or an invalid regex pattern.
            ComputationError: the embedder failed (semantic / hybrid modes).
        """
        q = parse_query(query)
        started = time.perf_counter()
        key = self._cache_key(q)

        if self.config.cache_results:
            cached = self._cache.get(key)
            if cached is not None:
                self.events.emit(EventType.CACHE_HIT, "search", query=q.query, mode=q.mode.value)
                self._record(started)
                return list(cached)
            self.events.emit(EventType.CACHE_MISS, "search", query=q.query, mode=q.mode.value)

        results = await self._score(q)
        if q.filters is not None:
            results = [r for r in results if self._passes(r, q.filters)]
        results.sort(key=lambda r: (-r.score, r.id))
        results = results[: q.top_k or self.config.default_top_k]
        if not q.include_content:
            for result in results:
                result.content = None

        if self.config.cache_results:
            self._cache.put(key, results)
        elapsed = self._record(started)
        self.events.emit(
            EventType.SEARCH_COMPLETED, "search",
            query=q.query, mode=q.mode.value, results=len(results), duration=elapsed,
        )
        logger.debug("%s search %r -> %d results in %.3fs", q.mode.value, q.query, len(results), elapsed)
        return list(results)

    def stats(self) -> Dict[str, Any]:
        return {
            "total_searches": self.total_searches,
            "average_search_time": self.total_time / self.total_searches if self.total_searches else 0.0,
            "cache_size": len(self._cache),
            "cache_hits": self._cache.hits,
            "cache_misses": self._cache.misses,
            "cache_hit_rate": self._cache.hit_rate,
        }

    def clear_cache(self) -> None:
        """Flush the query result cache."""
        self._cache.clear()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _cache_key(self, q: SearchQuery) -> str:
        return f"{self.index.generation}||{q.model_dump_json()}"

    def _record(self, started: float) -> float:
        elapsed = time.perf_counter() - started
        self.total_searches += 1
        self.total_time += elapsed
        return elapsed

    async def _score(self, q: SearchQuery) -> List[SearchResult]:
        if q.mode == SearchMode.SEMANTIC:
            return await self._semantic(q.query, q.min_score)
        if q.mode == SearchMode.KEYWORD:
            return self._keyword(q.query)
        if q.mode == SearchMode.SYMBOL:
            return self._symbol(q.query)
        if q.mode == SearchMode.REGEX:
            return self._regex(q.query)
        return await self._hybrid(q.query, q.min_score)

    async def _semantic(self, text: str, min_score: float) -> List[SearchResult]:
        query_emb = await embed(self.embedder, text)
        results: List[SearchResult] = []
        for file_id, vec in list(self.index.embeddings.items()):
            entry = self.index.files.get(file_id)
            if entry is None:
                continue
            score = cosine_similarity(query_emb, vec)
            if score >= min_score:
                results.append(_file_result(entry, score))
        return results

    def _keyword(self, text: str) -> List[SearchResult]:
        tokens = text.lower().split()
        if not tokens:
            return []
        results: List[SearchResult] = []
        for entry in self.index.iter_files():
            haystack = entry.content.lower()
            occurrences = sum(haystack.count(token) for token in tokens)
            if occurrences:
                results.append(_file_result(entry, occurrences / len(tokens)))
        return results

    def _symbol(self, text: str) -> List[SearchResult]:
        name = text.strip()
        needle = name.lower()
        results: List[SearchResult] = []
        for sym_name, ids in list(self.index.name_index.items()):
            if sym_name == name:
                score = EXACT_SYMBOL_SCORE
            elif needle in sym_name.lower():
                score = PARTIAL_SYMBOL_SCORE
            else:
                continue
            for sid in ids:
                symbol = self.index.symbols[sid]
                entry = self.index.files.get(symbol.location.file_id)
                results.append(SearchResult(
                    id=symbol.id,
                    type="symbol",
                    score=score,
                    path=symbol.location.path,
                    content=symbol.signature,
                    location=symbol.location,
                    symbol=symbol,
                    file=entry,
                ))
        return results

    def _regex(self, pattern: str) -> List[SearchResult]:
        try:
            regex = re.compile(pattern, re.MULTILINE)
        except re.error as exc:
            raise ValidationError(f"Invalid regex pattern {pattern!r}: {exc}") from exc

        results: List[SearchResult] = []
        for entry in self.index.iter_files():
            highlights: List[SearchHighlight] = []
            starts: Optional[List[int]] = None
            for match in regex.finditer(entry.content):
                if match.end() == match.start():
                    continue
                if starts is None:
                    starts = line_starts(entry.content)
                start_line, start_col = offset_to_position(starts, match.start())
                end_line, end_col = offset_to_position(starts, match.end())
                highlights.append(SearchHighlight(
                    start_line=start_line,
                    start_column=start_col,
                    end_line=end_line,
                    end_column=end_col,
                    text=match.group(0)[:_MAX_HIGHLIGHT_CHARS],
                ))
            if highlights:
                result = _file_result(entry, float(len(highlights)))
                result.highlights = highlights
                results.append(result)
        return results

    async def _hybrid(self, text: str, min_score: float) -> List[SearchResult]:
        semantic = {r.id: r for r in await self._semantic(text, min_score)}
        keyword = {r.id: r for r in self._keyword(text)}
        merged: List[SearchResult] = []
        for rid in semantic.keys() | keyword.keys():
            base = semantic.get(rid) or keyword[rid]
            sem = semantic[rid].score if rid in semantic else 0.0
            kw = keyword[rid].score if rid in keyword else 0.0
            base.score = SEMANTIC_WEIGHT * sem + KEYWORD_WEIGHT * kw
            merged.append(base)
        return merged

    def _passes(self, result: SearchResult, filters: SearchFilter) -> bool:
        path = result.path
        entry: Optional[FileEntry] = result.file
        if filters.file_patterns and not matches_any(path, filters.file_patterns):
            return False
        if filters.paths and not any(path_matches(path, p) for p in filters.paths):
            return False
        if filters.exclude_paths and any(path_matches(path, p) for p in filters.exclude_paths):
            return False
        if filters.symbol_kinds and result.symbol is not None:
            if result.symbol.kind not in filters.symbol_kinds:
                return False
        if entry is None:
            return True
        if filters.languages and entry.language not in filters.languages:
            return False
        if filters.modified_after is not None and entry.last_modified < filters.modified_after:
            return False
        if filters.modified_before is not None and entry.last_modified > filters.modified_before:
            return False
        if filters.max_file_size is not None and entry.size > filters.max_file_size:
            return False
        return True


def _file_result(entry: FileEntry, score: float) -> SearchResult:
    return SearchResult(
        id=entry.id,
        type="file",
        score=score,
        path=entry.path,
        content=entry.content,
        file=entry,
    )
