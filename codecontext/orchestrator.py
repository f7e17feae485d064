"""Top-level entry point: one context request in, one ranked bundle out.

A request's declared needs are split into search tasks and research tasks.
Both sets run concurrently, each under its own cap, and are joined before
anything is ranked. The ranked bundle is cached by normalized query text.
"""

from __future__ import annotations

import asyncio
import logging
import math
import re
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional, Union

import pydantic
from pydantic import BaseModel, ConfigDict, Field, field_validator

from .cache import TTLCache
from .config import EngineSettings, OrchestratorConfig
from .embeddings import get_embedder
from .errors import ValidationError
from .events import EventBus, EventType
from .filesystem import FileSystemProvider
from .index import RepositoryIndex
from .indexer import Indexer
from .models import SearchFilter, SearchMode, SearchQuery, SearchResult
from .pool import Outcome, run_bounded
from .research import Finding, ResearchEngine, ResearchTask
from .search import SearchEngine
from .sources import DOC_PATTERNS, MemoryStore, WebFetcher, build_sources, excerpt, keywords
from .window import ContextWindow

logger = logging.getLogger(__name__)

SUMMARY_LIMIT = 200
# Lines of a search hit kept as details
_DETAIL_RADIUS = 10


class OrchestratorState(str, Enum):
    IDLE = "idle"
    INITIALIZING = "initializing"
    SEARCHING = "searching"
    SYNTHESIZING = "synthesizing"
    REPORTING = "reporting"
    ERROR = "error"


class ContextNeed(str, Enum):
    CODE_CONTEXT = "code_context"
    DEPENDENCIES = "dependencies"
    PATTERNS = "patterns"
    ERRORS = "errors"
    SOLUTIONS = "solutions"
    DOCUMENTATION = "documentation"
    API_INFO = "api_info"


SEARCH_NEEDS = (ContextNeed.CODE_CONTEXT, ContextNeed.DEPENDENCIES, ContextNeed.PATTERNS)
DOC_NEEDS = (ContextNeed.DOCUMENTATION, ContextNeed.API_INFO)
RESEARCH_NEEDS = (ContextNeed.ERRORS, ContextNeed.SOLUTIONS)


class Importance(str, Enum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def rank(self) -> int:
        """Sort position; CRITICAL first."""
        return ["critical", "high", "medium", "low"].index(self.value)

    @property
    def priority(self) -> int:
        """Context-window priority; higher survives compression longer."""
        return 3 - self.rank


def importance_for(relevance: float) -> Importance:
    if relevance > 0.8:
        return Importance.HIGH
    if relevance >= 0.3:
        return Importance.MEDIUM
    return Importance.LOW


# ---------------------------------------------------------------------------
# Request / response
# ---------------------------------------------------------------------------

class ContextConstraints(BaseModel):
    model_config = ConfigDict(extra="forbid")

    max_results: Optional[int] = Field(default=None, ge=1, le=100)
    file_patterns: List[str] = Field(default_factory=list)
    exclude_patterns: List[str] = Field(default_factory=list)
    languages: List[str] = Field(default_factory=list)


class ContextRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: str = Field(default_factory=lambda: f"req_{uuid.uuid4().hex[:12]}")
    query: str
    needs: List[ContextNeed] = Field(default_factory=lambda: [ContextNeed.CODE_CONTEXT])
    constraints: ContextConstraints = Field(default_factory=ContextConstraints)
    timeout: Optional[float] = Field(default=None, gt=0)

    @field_validator("query")
    @classmethod
    def _non_empty(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("query must not be empty")
        return value

    @field_validator("needs")
    @classmethod
    def _some_need(cls, value: List[ContextNeed]) -> List[ContextNeed]:
        if not value:
            raise ValueError("at least one need is required")
        return list(dict.fromkeys(value))


@dataclass
class SearchMetadata:
    mode: str
    score: float
    path: str
    line: Optional[int] = None
    kind: str = field(default="search", init=False)


@dataclass
class ResearchMetadata:
    task_id: str
    finding_id: str
    source: str
    path: Optional[str] = None
    kind: str = field(default="research", init=False)


@dataclass
class SynthesisMetadata:
    task_id: str
    key_points: List[str]
    recommendations: List[str]
    insight_count: int
    sources: List[str]
    kind: str = field(default="synthesis", init=False)


Metadata = Union[SearchMetadata, ResearchMetadata, SynthesisMetadata]


@dataclass
class ContextInfo:
    id: str
    type: ContextNeed
    title: str
    summary: str
    details: str
    source: str
    confidence: float
    relevance: float
    importance: Importance
    metadata: Metadata
    timestamp: float = field(default_factory=time.time)
    tags: List[str] = field(default_factory=list)
    # id of the underlying search result / finding, for de-duplication
    origin: str = ""

    @property
    def tokens(self) -> int:
        return math.ceil(len(self.summary + self.details) / 4)


@dataclass
class ResponseStats:
    total_results: int = 0
    search_results: int = 0
    research_results: int = 0
    cache_hits: int = 0
    tokens_used: int = 0


@dataclass
class ContextResponse:
    request_id: str
    info: List[ContextInfo]
    stats: ResponseStats
    duration: float
    success: bool = True
    error: Optional[str] = None


@dataclass
class _SearchTask:
    need: ContextNeed
    query: SearchQuery


@dataclass
class _ResearchPlan:
    need: ContextNeed
    topic: str
    questions: List[str]


def normalize_query(text: str) -> str:
    return re.sub(r"\s+", " ", text.strip().lower())


def _truncate(text: str, limit: int = SUMMARY_LIMIT) -> str:
    flat = " ".join(text.split())
    return flat if len(flat) <= limit else flat[: limit - 3] + "..."


def sort_info(info: List[ContextInfo]) -> List[ContextInfo]:
    """Importance tier first, then relevance, confidence and recency."""
    return sorted(info, key=lambda i: (i.importance.rank, -i.relevance, -i.confidence, -i.timestamp))


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------

class ContextOrchestrator:
    """Fan a :class:`ContextRequest` out to search and research, merge, rank, cache."""

    def __init__(
        self,
        search_engine: SearchEngine,
        research_engine: ResearchEngine,
        config: Optional[OrchestratorConfig] = None,
        events: Optional[EventBus] = None,
        clock: Optional[Callable[[], float]] = None,
    ) -> None:
        self.search_engine = search_engine
        self.research_engine = research_engine
        self.config = config or OrchestratorConfig()
        self.events = events or EventBus()
        self.indexer: Optional[Indexer] = None
        self.state = OrchestratorState.IDLE
        self._cache: TTLCache[List[ContextInfo]] = TTLCache(
            max_size=self.config.cache_size, ttl=self.config.cache_ttl, policy="lru", clock=clock,
        )
        self._stats: Dict[str, Any] = {
            "total_requests": 0,
            "successful_requests": 0,
            "failed_requests": 0,
            "search_tasks_executed": 0,
            "research_tasks_executed": 0,
            "cache_hits": 0,
            "cache_misses": 0,
            "average_response_time": 0.0,
            "total_tokens_used": 0,
        }

    @classmethod
    async def create(
        cls,
        root: Union[str, Path],
        settings: Optional[EngineSettings] = None,
        fs: Optional[FileSystemProvider] = None,
        embedder: Any = None,
        memory: Optional[MemoryStore] = None,
        web_fetcher: Optional[WebFetcher] = None,
        events: Optional[EventBus] = None,
    ) -> "ContextOrchestrator":
        """Build the whole stack over *root* and index it."""
        settings = settings or EngineSettings()
        events = events or EventBus()
        embedder = embedder or get_embedder(settings.embedding_model)

        index = RepositoryIndex()
        indexer = Indexer(index, settings.indexing, embedder=embedder, fs=fs, events=events)
        search = SearchEngine(index, embedder=embedder, config=settings.search, events=events)
        research = ResearchEngine(
            build_sources(search, settings.research, memory=memory, web_fetcher=web_fetcher),
            config=settings.research,
            events=events,
        )
        orchestrator = cls(search, research, config=settings.orchestrator, events=events)
        orchestrator.indexer = indexer
        await orchestrator.initialize()
        await indexer.index_repository(root)
        return orchestrator

    async def initialize(self) -> None:
        self._set_state(OrchestratorState.INITIALIZING)
        await self.research_engine.initialize()
        self._set_state(OrchestratorState.IDLE)

    async def shutdown(self) -> None:
        """Cancel running research and drop every cache."""
        await self.research_engine.shutdown()
        self.search_engine.clear_cache()
        self._cache.clear()
        self._set_state(OrchestratorState.IDLE)

    def _set_state(self, state: OrchestratorState) -> None:
        if state != self.state:
            self.state = state
            self.events.emit(EventType.STATE_CHANGED, "orchestrator", state=state.value)

    # ------------------------------------------------------------------
    # Request handling
    # ------------------------------------------------------------------

    async def handle_request(self, request: Union[ContextRequest, Mapping[str, Any]]) -> ContextResponse:
        """Answer *request*.

        Task failures and timeouts produce an unsuccessful response rather
        than an exception; only a malformed request raises.

        Raises:
            ValidationError: the request itself is malformed.
        """
        req = self._parse_request(request)
        started = time.perf_counter()
        self._stats["total_requests"] += 1
        key = normalize_query(req.query)

        if self.config.cache_enabled:
            cached = self._cache.get(key)
            if cached is not None:
                self._stats["cache_hits"] += 1
                self.events.emit(EventType.CACHE_HIT, "orchestrator", request_id=req.id)
                info = list(cached)[: self._max_results(req)]
                stats = ResponseStats(
                    total_results=len(info),
                    search_results=sum(1 for i in info if i.metadata.kind == "search"),
                    research_results=sum(1 for i in info if i.metadata.kind != "search"),
                    cache_hits=1,
                    tokens_used=sum(i.tokens for i in info),
                )
                return self._succeed(req, info, stats, started)
            self._stats["cache_misses"] += 1
            self.events.emit(EventType.CACHE_MISS, "orchestrator", request_id=req.id)

        timeout = min(req.timeout or self.config.default_timeout, self.config.max_timeout)
        search_tasks = self._search_tasks(req)
        research_plans = self._research_plans(req)
        started_research: List[str] = []

        async def _research(plan: _ResearchPlan) -> ResearchTask:
            task = self.research_engine.create_task(plan.topic, plan.questions)
            started_research.append(task.id)
            return await self.research_engine.execute_research(task.id)

        self._set_state(OrchestratorState.SEARCHING)
        try:
            search_outcomes, research_outcomes = await asyncio.wait_for(
                asyncio.gather(
                    run_bounded(search_tasks, self._run_search, limit=self.config.max_concurrent_searches),
                    run_bounded(research_plans, _research, limit=self.config.max_concurrent_research),
                ),
                timeout=timeout,
            )
        except asyncio.TimeoutError:
            for task_id in started_research:
                self.research_engine.cancel(task_id)
            return self._fail(req, f"Request timed out after {timeout:.2f}s", started)

        self._stats["search_tasks_executed"] += len(search_outcomes)
        self._stats["research_tasks_executed"] += len(research_outcomes)
        failures = [o for o in list(search_outcomes) + list(research_outcomes) if not o.ok]
        if failures:
            return self._fail(req, str(failures[0].error), started)

        self._set_state(OrchestratorState.SYNTHESIZING)
        search_info = [i for o in search_outcomes for i in self._search_info(o)]
        research_info = [i for o in research_outcomes for i in self._research_info(o)]
        info = self._dedupe(sort_info(search_info + research_info))[: self._max_results(req)]

        self._set_state(OrchestratorState.REPORTING)
        stats = ResponseStats(
            total_results=len(info),
            search_results=sum(1 for i in info if i.metadata.kind == "search"),
            research_results=sum(1 for i in info if i.metadata.kind != "search"),
            cache_hits=0,
            tokens_used=sum(i.tokens for i in info),
        )
        if self.config.cache_enabled:
            self._cache.put(key, list(info))
        return self._succeed(req, info, stats, started)

    def _parse_request(self, request: Union[ContextRequest, Mapping[str, Any]]) -> ContextRequest:
        if isinstance(request, ContextRequest):
            return request
        try:
            return ContextRequest.model_validate(request)
        except pydantic.ValidationError as exc:
            raise ValidationError(f"Invalid context request: {exc}") from exc

    def _succeed(
        self,
        req: ContextRequest,
        info: List[ContextInfo],
        stats: ResponseStats,
        started: float,
    ) -> ContextResponse:
        duration = time.perf_counter() - started
        self._stats["successful_requests"] += 1
        self._stats["total_tokens_used"] += stats.tokens_used
        self._record_time(duration)
        self._set_state(OrchestratorState.IDLE)
        self.events.emit(
            EventType.REQUEST_COMPLETED, "orchestrator",
            request_id=req.id, results=stats.total_results, duration=duration,
            cached=bool(stats.cache_hits),
        )
        return ContextResponse(request_id=req.id, info=info, stats=stats, duration=duration)

    def _fail(self, req: ContextRequest, error: str, started: float) -> ContextResponse:
        duration = time.perf_counter() - started
        self._stats["failed_requests"] += 1
        self._record_time(duration)
        self._set_state(OrchestratorState.ERROR)
        self.events.emit(EventType.REQUEST_FAILED, "orchestrator", request_id=req.id, error=error)
        logger.warning("Context request %s failed: %s", req.id, error)
        return ContextResponse(
            request_id=req.id,
            info=[],
            stats=ResponseStats(),
            duration=duration,
            success=False,
            error=error,
        )

    def _record_time(self, duration: float) -> None:
        n = self._stats["successful_requests"] + self._stats["failed_requests"]
        avg = self._stats["average_response_time"]
        self._stats["average_response_time"] = avg + (duration - avg) / n

    # ------------------------------------------------------------------
    # Task planning
    # ------------------------------------------------------------------

    def _max_results(self, req: ContextRequest) -> int:
        return req.constraints.max_results or self.config.default_max_results

    def _search_tasks(self, req: ContextRequest) -> List[_SearchTask]:
        tasks: List[_SearchTask] = []
        c = req.constraints
        for need in req.needs:
            if need in RESEARCH_NEEDS:
                continue
            paths = list(DOC_PATTERNS) if need in DOC_NEEDS else []
            tasks.append(_SearchTask(need=need, query=SearchQuery(
                query=req.query,
                mode=SearchMode.HYBRID,
                filters=SearchFilter(
                    file_patterns=list(c.file_patterns),
                    exclude_paths=list(c.exclude_patterns),
                    languages=list(c.languages),
                    paths=paths,
                ),
                top_k=self._max_results(req),
                min_score=self.config.search_min_score,
                include_content=True,
            )))
        return tasks

    def _research_plans(self, req: ContextRequest) -> List[_ResearchPlan]:
        plans: List[_ResearchPlan] = []
        for need in req.needs:
            if need not in RESEARCH_NEEDS:
                continue
            plans.append(_ResearchPlan(
                need=need,
                topic=f"{need.value}: {req.query}",
                questions=[
                    f"What are common {need.value} related to {req.query}?",
                    f"How can these {need.value} be addressed?",
                ],
            ))
        return plans

    async def _run_search(self, task: _SearchTask) -> List[SearchResult]:
        return await self.search_engine.search(task.query)

    # ------------------------------------------------------------------
    # Conversion
    # ------------------------------------------------------------------

    def _search_info(self, outcome: Outcome) -> List[ContextInfo]:
        task: _SearchTask = outcome.item
        results: List[SearchResult] = outcome.value or []
        if not results:
            return []
        top = max(1.0, results[0].score)
        terms = keywords(task.query.query)
        info: List[ContextInfo] = []
        for result in results:
            relevance = min(1.0, result.score / top)
            content = result.content or (result.file.content if result.file else "")
            details, line = excerpt(content, terms, radius=_DETAIL_RADIUS)
            language = result.file.language if result.file else ""
            info.append(ContextInfo(
                id=f"{task.need.value}_{result.id}",
                type=task.need,
                title=result.path,
                summary=_truncate(details),
                details=details,
                source="search",
                confidence=relevance,
                relevance=relevance,
                importance=importance_for(relevance),
                metadata=SearchMetadata(
                    mode=task.query.mode.value, score=result.score, path=result.path, line=line,
                ),
                tags=[t for t in (task.need.value, language) if t],
                origin=result.path,
            ))
        return info

    def _research_info(self, outcome: Outcome) -> List[ContextInfo]:
        plan: _ResearchPlan = outcome.item
        task: ResearchTask = outcome.value
        info = [self._finding_info(plan, task, f) for f in task.findings]
        synthesis = task.synthesis
        if synthesis is not None and task.findings:
            details = "\n".join(
                [synthesis.summary]
                + [f"- {p}" for p in synthesis.key_points]
                + [f"* {r}" for r in synthesis.recommendations]
            )
            info.append(ContextInfo(
                id=f"synthesis_{task.id}",
                type=plan.need,
                title=f"Research synthesis: {task.topic}",
                summary=_truncate(synthesis.summary),
                details=details,
                source="research",
                confidence=synthesis.overall_confidence,
                relevance=sum(f.relevance for f in task.findings) / len(task.findings),
                importance=Importance.CRITICAL if plan.need == ContextNeed.ERRORS else Importance.HIGH,
                metadata=SynthesisMetadata(
                    task_id=task.id,
                    key_points=list(synthesis.key_points),
                    recommendations=list(synthesis.recommendations),
                    insight_count=len(synthesis.insights),
                    sources=[s.value for s in synthesis.sources],
                ),
                timestamp=synthesis.synthesized_at,
                tags=[plan.need.value, "synthesis"],
                origin=f"synthesis_{task.id}",
            ))
        return info

    def _finding_info(self, plan: _ResearchPlan, task: ResearchTask, finding: Finding) -> ContextInfo:
        return ContextInfo(
            id=f"{plan.need.value}_{finding.id}",
            type=plan.need,
            title=finding.title,
            summary=_truncate(finding.summary),
            details=finding.content,
            source=finding.source.value,
            confidence=finding.confidence,
            relevance=finding.relevance,
            importance=importance_for(finding.relevance),
            metadata=ResearchMetadata(
                task_id=task.id, finding_id=finding.id, source=finding.source.value, path=finding.path,
            ),
            timestamp=finding.discovered_at,
            tags=list(finding.tags),
            origin=finding.path or finding.id,
        )

    @staticmethod
    def _dedupe(info: List[ContextInfo]) -> List[ContextInfo]:
        """Keep the best-ranked record per underlying artifact."""
        seen = set()
        out: List[ContextInfo] = []
        for item in info:
            if item.origin in seen:
                continue
            seen.add(item.origin)
            out.append(item)
        return out

    # ------------------------------------------------------------------
    # Window / stats
    # ------------------------------------------------------------------

    def populate_window(self, response: ContextResponse, window: ContextWindow) -> List[str]:
        """Add each record of *response* to *window*; returns the ids that fit."""
        added: List[str] = []
        for item in response.info:
            path = getattr(item.metadata, "path", None) or ""
            language = item.tags[1] if item.metadata.kind == "search" and len(item.tags) > 1 else ""
            if window.add_snippet(item.id, item.details or item.summary, item.importance.priority, path, language):
                added.append(item.id)
        return added

    def stats(self) -> Dict[str, Any]:
        s = dict(self._stats)
        lookups = s["cache_hits"] + s["cache_misses"]
        s["cache_hit_rate"] = s["cache_hits"] / lookups if lookups else 0.0
        s["cache_size"] = len(self._cache)
        s["state"] = self.state.value
        return s

    def clear_cache(self) -> None:
        self._cache.clear()
