"""Three-stage research over pluggable sources: gather -> analyze -> synthesize.

Sources are queried concurrently and independently. A source that raises
or times out contributes nothing and the task carries on with the rest;
a failure in analysis or synthesis fails the whole task.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, field, fields, replace
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Protocol, Tuple, Union

from .cache import TTLCache
from .config import ResearchConfig
from .errors import ComputationError, NotFoundError, ValidationError
from .events import EventBus, EventType
from .pool import NotDispatchedError, run_bounded

logger = logging.getLogger(__name__)

RELEVANCE_WEIGHT = 0.6
CONFIDENCE_WEIGHT = 0.4


class ResearchEngineState(str, Enum):
    IDLE = "idle"
    INITIALIZING = "initializing"
    GATHERING = "gathering"
    ANALYZING = "analyzing"
    SYNTHESIZING = "synthesizing"
    ERROR = "error"


class ResearchTaskStatus(str, Enum):
    PENDING = "pending"
    GATHERING = "gathering"
    ANALYZING = "analyzing"
    SYNTHESIZING = "synthesizing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def terminal(self) -> bool:
        return self in (
            ResearchTaskStatus.COMPLETED,
            ResearchTaskStatus.FAILED,
            ResearchTaskStatus.CANCELLED,
        )


class ResearchDepth(str, Enum):
    SHALLOW = "shallow"
    MEDIUM = "medium"
    DEEP = "deep"

    @property
    def multiplier(self) -> int:
        return {"shallow": 1, "medium": 2, "deep": 3}[self.value]


class ResearchSourceKind(str, Enum):
    CODE = "code"
    DOCUMENTATION = "documentation"
    MEMORY = "memory"
    WEB = "web"


class InsightType(str, Enum):
    PATTERN = "pattern"
    RELATIONSHIP = "relationship"
    ANOMALY = "anomaly"
    RECOMMENDATION = "recommendation"


@dataclass
class ResearchFilters:
    min_relevance: float = 0.5
    min_confidence: float = 0.5
    tags: List[str] = field(default_factory=list)


@dataclass
class ResearchTaskConfig:
    depth: ResearchDepth = ResearchDepth.MEDIUM
    breadth: int = 5
    timeout: float = 60.0
    sources: List[ResearchSourceKind] = field(default_factory=list)
    filters: ResearchFilters = field(default_factory=ResearchFilters)

    @property
    def results_per_source(self) -> int:
        return max(1, self.breadth * self.depth.multiplier)


@dataclass
class Finding:
    id: str
    task_id: str
    title: str
    summary: str
    content: str
    source: ResearchSourceKind
    relevance: float
    confidence: float
    tags: List[str] = field(default_factory=list)
    path: Optional[str] = None
    discovered_at: float = field(default_factory=time.time)

    @property
    def rank_score(self) -> float:
        return RELEVANCE_WEIGHT * self.relevance + CONFIDENCE_WEIGHT * self.confidence


@dataclass
class Insight:
    id: str
    type: InsightType
    title: str
    description: str
    supporting_evidence: List[str]
    confidence: float


@dataclass
class Synthesis:
    task_id: str
    summary: str
    key_points: List[str]
    insights: List[Insight]
    recommendations: List[str]
    overall_confidence: float
    sources: List[ResearchSourceKind]
    synthesized_at: float = field(default_factory=time.time)


@dataclass
class ResearchTask:
    id: str
    topic: str
    questions: List[str]
    config: ResearchTaskConfig
    status: ResearchTaskStatus = ResearchTaskStatus.PENDING
    progress: float = 0.0
    findings: List[Finding] = field(default_factory=list)
    synthesis: Optional[Synthesis] = None
    error: Optional[str] = None
    from_cache: bool = False
    created_at: float = field(default_factory=time.time)
    started_at: Optional[float] = None
    completed_at: Optional[float] = None


class ResearchSource(Protocol):
    kind: ResearchSourceKind

    async def gather(self, task: ResearchTask, limit: int) -> List[Finding]:
        ...


CacheValue = Tuple[List[Finding], Synthesis]


class ResearchEngine:
    """Run :class:`ResearchTask` objects against registered sources.

    At most ``max_concurrent_tasks`` executions are in flight per engine and
    each fans out to at most ``max_concurrent_sources`` sources at a time.
    """

    def __init__(
        self,
        sources: Optional[Iterable[ResearchSource]] = None,
        config: Optional[ResearchConfig] = None,
        events: Optional[EventBus] = None,
        clock: Optional[Callable[[], float]] = None,
    ) -> None:
        self.config = config or ResearchConfig()
        self.events = events or EventBus()
        self.sources: Dict[ResearchSourceKind, ResearchSource] = {}
        for source in sources or ():
            self.register_source(source)
        self.state = ResearchEngineState.IDLE
        self._tasks: Dict[str, ResearchTask] = {}
        self._active: Dict[str, asyncio.Event] = {}
        self._slots: Optional[asyncio.Semaphore] = None
        self._cache: TTLCache[CacheValue] = TTLCache(
            max_size=self.config.cache_size, ttl=self.config.cache_ttl, clock=clock,
        )
        self._stats: Dict[str, Any] = {
            "tasks_created": 0,
            "tasks_executed": 0,
            "tasks_completed": 0,
            "tasks_failed": 0,
            "tasks_cancelled": 0,
            "total_task_time": 0.0,
            "total_findings": 0,
            "sources_queried": 0,
            "source_failures": 0,
        }

    def register_source(self, source: ResearchSource) -> None:
        self.sources[ResearchSourceKind(source.kind)] = source

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def initialize(self) -> None:
        self._set_state(ResearchEngineState.INITIALIZING)
        logger.debug("Research sources: %s", ", ".join(k.value for k in self.sources) or "none")
        self._set_state(ResearchEngineState.IDLE)

    async def shutdown(self) -> None:
        for task_id in list(self._active):
            self.cancel(task_id)
        self._cache.clear()
        self._set_state(ResearchEngineState.IDLE)

    def _set_state(self, state: ResearchEngineState) -> None:
        if state != self.state:
            self.state = state
            self.events.emit(EventType.STATE_CHANGED, "research", state=state.value)

    # ------------------------------------------------------------------
    # Tasks
    # ------------------------------------------------------------------

    def create_task(
        self,
        topic: str,
        questions: Optional[List[str]] = None,
        config: Union[ResearchTaskConfig, Mapping[str, Any], None] = None,
    ) -> ResearchTask:
        """Register a new task; *config* overrides the engine defaults field by field."""
        if not topic or not topic.strip():
            raise ValidationError("Research topic must not be empty")
        task = ResearchTask(
            id=f"research_{uuid.uuid4().hex[:12]}",
            topic=topic.strip(),
            questions=[q for q in (questions or []) if q and q.strip()],
            config=self._merge_config(config),
        )
        self._tasks[task.id] = task
        self._stats["tasks_created"] += 1
        return task

    def _default_task_config(self) -> ResearchTaskConfig:
        try:
            depth = ResearchDepth(self.config.default_depth)
        except ValueError:
            raise ValidationError(f"Unknown research depth: {self.config.default_depth}") from None
        return ResearchTaskConfig(
            depth=depth,
            breadth=self.config.default_breadth,
            timeout=self.config.default_timeout,
            sources=[ResearchSourceKind(s) for s in self.config.enabled_sources],
            filters=ResearchFilters(
                min_relevance=self.config.min_relevance,
                min_confidence=self.config.min_confidence,
            ),
        )

    def _merge_config(self, overrides: Union[ResearchTaskConfig, Mapping[str, Any], None]) -> ResearchTaskConfig:
        base = self._default_task_config()
        if overrides is None:
            return base
        if isinstance(overrides, ResearchTaskConfig):
            return overrides
        known = {f.name for f in fields(ResearchTaskConfig)}
        unknown = set(overrides) - known
        if unknown:
            raise ValidationError(f"Unknown research config keys: {', '.join(sorted(unknown))}")
        values = dict(overrides)
        try:
            if "depth" in values:
                values["depth"] = ResearchDepth(values["depth"])
            if "sources" in values:
                values["sources"] = [ResearchSourceKind(s) for s in values["sources"]]
            if "filters" in values and isinstance(values["filters"], Mapping):
                values["filters"] = replace(base.filters, **values["filters"])
        except (ValueError, TypeError) as exc:
            raise ValidationError(f"Invalid research config: {exc}") from exc
        merged = replace(base, **values)
        if merged.breadth < 1 or merged.timeout <= 0:
            raise ValidationError("breadth must be >= 1 and timeout > 0")
        return merged

    def get_task(self, task_id: str) -> ResearchTask:
        try:
            return self._tasks[task_id]
        except KeyError:
            raise NotFoundError(f"Research task {task_id} not found") from None

    @property
    def active_task_count(self) -> int:
        return len(self._active)

    def cancel(self, task_id: str) -> bool:
        """Mark *task_id* cancelled; sources not yet dispatched are skipped.

        Returns ``False`` when the task already finished.
        """
        task = self.get_task(task_id)
        if task.status.terminal:
            return False
        task.status = ResearchTaskStatus.CANCELLED
        task.completed_at = time.time()
        flag = self._active.get(task_id)
        if flag is not None:
            flag.set()
        self._stats["tasks_cancelled"] += 1
        self.events.emit(EventType.TASK_CANCELLED, "research", task_id=task_id)
        return True

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def execute_research(self, task_id: str) -> ResearchTask:
        """Run *task_id* to a terminal state and return it.

        Raises:
            NotFoundError: unknown task id.
            ComputationError: analysis or synthesis failed; the task is FAILED.
        """
        task = self.get_task(task_id)
        if task.status.terminal:
            return task

        key = self._cache_key(task)
        if self.config.cache_enabled:
            cached = self._cache.get(key)
            if cached is not None:
                task.findings, task.synthesis = list(cached[0]), cached[1]
                task.status = ResearchTaskStatus.COMPLETED
                task.progress = 1.0
                task.from_cache = True
                task.completed_at = time.time()
                self.events.emit(EventType.CACHE_HIT, "research", task_id=task_id)
                self.events.emit(EventType.TASK_COMPLETED, "research", task_id=task_id, cached=True)
                return task
            self.events.emit(EventType.CACHE_MISS, "research", task_id=task_id)

        if self._slots is None:
            self._slots = asyncio.Semaphore(max(1, self.config.max_concurrent_tasks))
        cancelled = asyncio.Event()
        self._active[task_id] = cancelled
        try:
            async with self._slots:
                if cancelled.is_set():
                    return task
                return await self._run(task, key, cancelled)
        finally:
            self._active.pop(task_id, None)
            if not self._active:
                self._set_state(ResearchEngineState.IDLE)

    async def _run(self, task: ResearchTask, key: str, cancelled: asyncio.Event) -> ResearchTask:
        started = time.perf_counter()
        task.started_at = time.time()
        self._stats["tasks_executed"] += 1
        self.events.emit(EventType.TASK_STARTED, "research", task_id=task.id, topic=task.topic)

        self._advance(task, ResearchTaskStatus.GATHERING, ResearchEngineState.GATHERING, 0.1)
        findings = await self._gather(task, cancelled)
        if cancelled.is_set():
            return task
        task.findings = findings

        try:
            self._advance(task, ResearchTaskStatus.ANALYZING, ResearchEngineState.ANALYZING, 0.5)
            task.findings = self._analyze(task, findings)
            if cancelled.is_set():
                return task
            self._advance(task, ResearchTaskStatus.SYNTHESIZING, ResearchEngineState.SYNTHESIZING, 0.8)
            task.synthesis = self._synthesize(task, task.findings)
        except Exception as exc:
            task.status = ResearchTaskStatus.FAILED
            task.error = str(exc)
            task.completed_at = time.time()
            self._stats["tasks_failed"] += 1
            self._set_state(ResearchEngineState.ERROR)
            self.events.emit(EventType.TASK_FAILED, "research", task_id=task.id, error=str(exc))
            logger.error("Research task %s failed: %s", task.id, exc)
            raise ComputationError(f"Research task {task.id} failed: {exc}") from exc

        task.status = ResearchTaskStatus.COMPLETED
        task.progress = 1.0
        task.completed_at = time.time()
        if self.config.cache_enabled:
            self._cache.put(key, (list(task.findings), task.synthesis))

        elapsed = time.perf_counter() - started
        self._stats["tasks_completed"] += 1
        self._stats["total_task_time"] += elapsed
        self._stats["total_findings"] += len(task.findings)
        self.events.emit(
            EventType.TASK_COMPLETED, "research",
            task_id=task.id, findings=len(task.findings), duration=elapsed,
        )
        return task

    def _advance(
        self,
        task: ResearchTask,
        status: ResearchTaskStatus,
        state: ResearchEngineState,
        progress: float,
    ) -> None:
        task.status = status
        task.progress = progress
        self._set_state(state)

    async def _gather(self, task: ResearchTask, cancelled: asyncio.Event) -> List[Finding]:
        selected: List[ResearchSource] = []
        for kind in task.config.sources:
            if kind == ResearchSourceKind.WEB and not self.config.web_enabled:
                continue
            source = self.sources.get(kind)
            if source is None:
                logger.debug("No %s source registered; skipping", kind.value)
                continue
            selected.append(source)

        limit = task.config.results_per_source

        async def _query(source: ResearchSource) -> List[Finding]:
            return await source.gather(task, limit)

        outcomes = await run_bounded(
            selected, _query,
            limit=self.config.max_concurrent_sources,
            timeout=task.config.timeout,
            cancelled=cancelled,
        )
        findings: List[Finding] = []
        for outcome in outcomes:
            kind = ResearchSourceKind(outcome.item.kind).value
            if isinstance(outcome.error, NotDispatchedError):
                continue
            self._stats["sources_queried"] += 1
            if not outcome.ok:
                self._stats["source_failures"] += 1
                logger.warning("Research source %s failed for %s: %s", kind, task.id, outcome.error)
                continue
            findings.extend(outcome.value or [])
        return findings

    def _analyze(self, task: ResearchTask, findings: List[Finding]) -> List[Finding]:
        filters = task.config.filters
        kept = [
            f for f in findings
            if f.relevance >= filters.min_relevance and f.confidence >= filters.min_confidence
        ]
        if filters.tags:
            wanted = set(filters.tags)
            kept = [f for f in kept if wanted.intersection(f.tags)]
        kept.sort(key=lambda f: f.rank_score, reverse=True)
        return kept[: self.config.max_findings]

    def _synthesize(self, task: ResearchTask, findings: List[Finding]) -> Synthesis:
        sources: List[ResearchSourceKind] = []
        for finding in findings:
            if finding.source not in sources:
                sources.append(finding.source)
        overall = sum(f.confidence for f in findings) / len(findings) if findings else 0.0
        return Synthesis(
            task_id=task.id,
            summary=_summary(task, findings),
            key_points=[f"{f.title}: {f.summary}" for f in findings[:5]],
            insights=_pattern_insights(task, findings),
            recommendations=_recommendations(task, findings),
            overall_confidence=overall,
            sources=sources,
        )

    def _cache_key(self, task: ResearchTask) -> str:
        return task.topic + "\x1f" + "\x1f".join(task.questions)

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def stats(self) -> Dict[str, Any]:
        s = dict(self._stats)
        completed = s["tasks_completed"]
        s["average_task_time"] = s["total_task_time"] / completed if completed else 0.0
        s["average_findings_per_task"] = s["total_findings"] / completed if completed else 0.0
        queried = s["sources_queried"]
        s["source_success_rate"] = (queried - s["source_failures"]) / queried if queried else 0.0
        s["cache_hits"] = self._cache.hits
        s["cache_misses"] = self._cache.misses
        s["cache_hit_rate"] = self._cache.hit_rate
        s["active_tasks"] = self.active_task_count
        s["state"] = self.state.value
        return s

    def clear_cache(self) -> None:
        self._cache.clear()


def _summary(task: ResearchTask, findings: List[Finding]) -> str:
    if not findings:
        return f"No significant findings for topic: {task.topic}"
    top = "; ".join(f.summary for f in findings[:3])
    return f'Research on "{task.topic}" yielded {len(findings)} findings. Key findings: {top}'


def _pattern_insights(task: ResearchTask, findings: List[Finding]) -> List[Insight]:
    groups: Dict[ResearchSourceKind, List[Finding]] = {}
    for finding in findings:
        groups.setdefault(finding.source, []).append(finding)

    insights: List[Insight] = []
    for source, group in groups.items():
        if len(group) < 2:
            continue
        insights.append(Insight(
            id=f"insight_{task.id}_{source.value}",
            type=InsightType.PATTERN,
            title=f"Pattern in {source.value}",
            description=f"Found {len(group)} related findings from {source.value}",
            supporting_evidence=[f.id for f in group],
            confidence=sum(f.confidence for f in group) / len(group),
        ))
    return insights


def _recommendations(task: ResearchTask, findings: List[Finding]) -> List[str]:
    out: List[str] = []
    if findings:
        out.append(f"Consider the {len(findings)} findings when addressing: {task.topic}")
    confident = [f.title for f in findings if f.confidence > 0.8]
    if confident:
        out.append(f"High confidence findings available for: {', '.join(confident)}")
    return out
