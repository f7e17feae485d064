"""Research sources: where a :class:`~codecontext.research.ResearchTask` looks for findings."""

from __future__ import annotations

import logging
import re
import time
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Tuple

from .config import ResearchConfig
from .embeddings import HashEmbeddingModel, cosine_similarity, embed
from .models import SearchFilter, SearchMode, SearchQuery, SearchResult
from .research import Finding, ResearchSource, ResearchSourceKind, ResearchTask
from .search import SearchEngine

logger = logging.getLogger(__name__)

DOC_PATTERNS: List[str] = ["**/*.md", "**/*.rst", "**/*.txt", "**/docs/**"]

_WORD_RE = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")

STOPWORDS = frozenset({
    "a", "an", "and", "are", "as", "at", "be", "by", "can", "could", "do",
    "does", "for", "from", "how", "i", "in", "is", "it", "of", "on", "or",
    "should", "that", "the", "these", "this", "to", "what", "when", "where",
    "which", "who", "why", "will", "with", "would", "common", "related",
    "addressed",
})

# Lines of context kept on either side of the first keyword hit
_EXCERPT_RADIUS = 3
_SUMMARY_CHARS = 200


def keywords(text: str) -> List[str]:
    """Lower-cased identifier-like words of *text*, stopwords removed, order kept."""
    seen: List[str] = []
    for word in _WORD_RE.findall(text.lower()):
        if word not in STOPWORDS and len(word) > 1 and word not in seen:
            seen.append(word)
    return seen


def excerpt(content: str, terms: List[str], radius: int = _EXCERPT_RADIUS) -> Tuple[str, int]:
    """A few lines around the first line mentioning any of *terms*.

    Returns the excerpt and its 1-based starting line.
    """
    lines = content.splitlines()
    hit = 0
    for idx, line in enumerate(lines):
        lowered = line.lower()
        if any(term in lowered for term in terms):
            hit = idx
            break
    start = max(0, hit - radius)
    return "\n".join(lines[start: hit + radius + 1]), start + 1


def _summarize(text: str) -> str:
    flat = " ".join(part.strip() for part in text.splitlines() if part.strip())
    if len(flat) <= _SUMMARY_CHARS:
        return flat
    return flat[: _SUMMARY_CHARS - 3] + "..."


def _finding_id(task: ResearchTask, kind: ResearchSourceKind) -> str:
    return f"finding_{task.id}_{kind.value}_{uuid.uuid4().hex[:8]}"


class SearchBackedSource(ABC):
    """Turn hybrid search hits into findings.

    One query per research question (plus the topic), built from the
    question's keywords. Relevance is each hit's score over the best score
    of its query, so the strongest hit of every query is 1.0.
    """

    kind: ResearchSourceKind
    base_confidence: float

    def __init__(self, search_engine: SearchEngine, min_score: float = 0.0) -> None:
        self.search_engine = search_engine
        self.min_score = min_score

    @abstractmethod
    def search_filter(self) -> SearchFilter:
        ...

    async def gather(self, task: ResearchTask, limit: int) -> List[Finding]:
        best: Dict[str, Tuple[float, SearchResult, List[str]]] = {}
        for question in [task.topic] + task.questions:
            terms = keywords(question)
            if not terms:
                continue
            results = await self.search_engine.search(SearchQuery(
                query=" ".join(terms),
                mode=SearchMode.HYBRID,
                filters=self.search_filter(),
                top_k=min(100, max(1, limit)),
                min_score=self.min_score,
            ))
            if not results:
                continue
            top = results[0].score or 1.0
            for result in results:
                if result.score <= 0.0:
                    continue
                relevance = min(1.0, result.score / top)
                if result.id not in best or relevance > best[result.id][0]:
                    best[result.id] = (relevance, result, terms)

        ranked = sorted(best.values(), key=lambda item: (-item[0], item[1].id))[:limit]
        return [self._to_finding(task, relevance, result, terms) for relevance, result, terms in ranked]

    def _to_finding(self, task: ResearchTask, relevance: float, result: SearchResult, terms: List[str]) -> Finding:
        content = result.file.content if result.file is not None else (result.content or "")
        text, line = excerpt(content, terms)
        tags = [self.kind.value]
        if result.file is not None:
            tags.append(result.file.language)
        return Finding(
            id=_finding_id(task, self.kind),
            task_id=task.id,
            title=f"{result.path}:{line}",
            summary=_summarize(text),
            content=text,
            source=self.kind,
            relevance=relevance,
            confidence=self.base_confidence,
            tags=tags,
            path=result.path,
        )


class CodeSource(SearchBackedSource):
    kind = ResearchSourceKind.CODE
    base_confidence = 0.7

    def search_filter(self) -> SearchFilter:
        return SearchFilter(exclude_paths=list(DOC_PATTERNS))


class DocumentationSource(SearchBackedSource):
    kind = ResearchSourceKind.DOCUMENTATION
    base_confidence = 0.8

    def search_filter(self) -> SearchFilter:
        return SearchFilter(paths=list(DOC_PATTERNS))


# ---------------------------------------------------------------------------
# Memory
# ---------------------------------------------------------------------------

@dataclass
class MemoryRecord:
    id: str
    title: str
    content: str
    tags: List[str] = field(default_factory=list)
    embedding: List[float] = field(default_factory=list)
    created_at: float = field(default_factory=time.time)


class MemoryStore(ABC):
    """Previously learned notes that research can recall."""

    @abstractmethod
    async def recall(self, query: str, limit: int) -> List[Tuple[MemoryRecord, float]]:
        """Return up to *limit* ``(record, similarity)`` pairs, best first."""


class InMemoryStore(MemoryStore):
    """Notes kept in process, recalled by embedding similarity."""

    def __init__(self, embedder: Any = None) -> None:
        self.embedder = embedder or HashEmbeddingModel()
        self.records: Dict[str, MemoryRecord] = {}

    async def remember(self, title: str, content: str, tags: Optional[List[str]] = None) -> MemoryRecord:
        record = MemoryRecord(
            id=f"memory_{uuid.uuid4().hex[:12]}",
            title=title,
            content=content,
            tags=list(tags or []),
            embedding=await embed(self.embedder, f"{title}\n{content}"),
        )
        self.records[record.id] = record
        return record

    def forget(self, record_id: str) -> bool:
        return self.records.pop(record_id, None) is not None

    async def recall(self, query: str, limit: int) -> List[Tuple[MemoryRecord, float]]:
        if not self.records:
            return []
        query_emb = await embed(self.embedder, query)
        scored = [
            (record, cosine_similarity(query_emb, record.embedding))
            for record in self.records.values()
        ]
        scored = [(r, s) for r, s in scored if s > 0.0]
        scored.sort(key=lambda pair: (-pair[1], pair[0].created_at))
        return scored[:limit]

    def __len__(self) -> int:
        return len(self.records)


class MemorySource:
    kind = ResearchSourceKind.MEMORY
    base_confidence = 0.6

    def __init__(self, store: MemoryStore) -> None:
        self.store = store

    async def gather(self, task: ResearchTask, limit: int) -> List[Finding]:
        query = " ".join([task.topic] + task.questions)
        findings: List[Finding] = []
        for record, similarity in await self.store.recall(query, limit):
            findings.append(Finding(
                id=_finding_id(task, self.kind),
                task_id=task.id,
                title=record.title,
                summary=_summarize(record.content),
                content=record.content,
                source=self.kind,
                relevance=max(0.0, min(1.0, similarity)),
                confidence=self.base_confidence,
                tags=[self.kind.value] + record.tags,
            ))
        return findings


# ---------------------------------------------------------------------------
# Web
# ---------------------------------------------------------------------------

# (query, limit) -> list of {"title", "url", "snippet", "score"?} mappings
WebFetcher = Callable[[str, int], Awaitable[List[Mapping[str, Any]]]]


class WebSource:
    """Findings from an injected web search callable. Yields nothing without one."""

    kind = ResearchSourceKind.WEB
    base_confidence = 0.5

    def __init__(self, fetcher: Optional[WebFetcher] = None) -> None:
        self.fetcher = fetcher

    async def gather(self, task: ResearchTask, limit: int) -> List[Finding]:
        if self.fetcher is None:
            return []
        query = " ".join([task.topic] + task.questions)
        findings: List[Finding] = []
        for hit in (await self.fetcher(query, limit))[:limit]:
            snippet = str(hit.get("snippet", ""))
            findings.append(Finding(
                id=_finding_id(task, self.kind),
                task_id=task.id,
                title=str(hit.get("title") or hit.get("url") or "web result"),
                summary=_summarize(snippet),
                content=snippet,
                source=self.kind,
                relevance=float(hit.get("score", 0.5)),
                confidence=self.base_confidence,
                tags=[self.kind.value],
                path=hit.get("url"),
            ))
        return findings


def build_sources(
    search_engine: SearchEngine,
    config: Optional[ResearchConfig] = None,
    memory: Optional[MemoryStore] = None,
    web_fetcher: Optional[WebFetcher] = None,
) -> List[ResearchSource]:
    """The default source set for *config*."""
    config = config or ResearchConfig()
    sources: List[ResearchSource] = [
        CodeSource(search_engine),
        DocumentationSource(search_engine),
        MemorySource(memory or InMemoryStore(search_engine.embedder)),
    ]
    if config.web_enabled:
        sources.append(WebSource(web_fetcher))
    return sources
