"""Pytest configuration and fixtures for codecontext tests."""

import shutil
import tempfile
from pathlib import Path
from typing import Dict, Generator, Iterable, List

import pytest
import pytest_asyncio

from codecontext.config import EngineSettings, IndexConfig
from codecontext.errors import FileReadError
from codecontext.filesystem import DirEntry, FileStat
from codecontext.index import RepositoryIndex
from codecontext.indexer import Indexer
from codecontext.orchestrator import ContextOrchestrator
from codecontext.search import SearchEngine


@pytest.fixture(autouse=True)
def _isolated_config(tmp_path: Path, monkeypatch):
    """Point the config manager at a throwaway config.toml."""
    monkeypatch.setattr("codecontext.config_manager.CONFIG_FILE", tmp_path / "config.toml")
    monkeypatch.delenv("CODECONTEXT_LOG_LEVEL", raising=False)


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for tests."""
    tmp = Path(tempfile.mkdtemp())
    yield tmp
    shutil.rmtree(tmp, ignore_errors=True)


@pytest.fixture
def sample_project_path() -> Path:
    """Get path to sample test project."""
    return Path(__file__).parent / "fixtures" / "sample_project"


class FakeClock:
    """Manually advanced clock for TTL and access-order tests."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


class MemoryFileSystem:
    """File-system provider over a dict of relative path -> content."""

    def __init__(self, files: Dict[str, str], root: str = "/repo", failing: Iterable[str] = ()) -> None:
        self.root = Path(root)
        self.files = {self.root / rel: content for rel, content in files.items()}
        self.failing = {self.root / rel for rel in failing}
        self.listed: List[Path] = []
        self.reads: List[Path] = []

    async def list_dir(self, path):
        path = Path(path)
        self.listed.append(path)
        children: Dict[str, bool] = {}
        for file_path in self.files:
            try:
                rel = file_path.relative_to(path)
            except ValueError:
                continue
            is_dir = len(rel.parts) > 1
            children[rel.parts[0]] = children.get(rel.parts[0], False) or is_dir
        return [
            DirEntry(name=name, path=path / name, is_dir=is_dir, is_file=not is_dir)
            for name, is_dir in sorted(children.items())
        ]

    async def stat(self, path):
        path = Path(path)
        if path not in self.files:
            raise FileReadError(f"No such file: {path}")
        return FileStat(size=len(self.files[path].encode("utf-8")), mtime=1_700_000_000.0)

    async def read_text(self, path):
        path = Path(path)
        self.reads.append(path)
        if path in self.failing:
            raise FileReadError(f"Cannot read {path}")
        return self.files[path]


@pytest.fixture
def memory_fs_factory():
    return MemoryFileSystem


@pytest_asyncio.fixture
async def indexed_sample(sample_project_path: Path) -> Indexer:
    """Indexer whose index holds the sample project."""
    indexer = Indexer(RepositoryIndex(), IndexConfig())
    await indexer.index_repository(sample_project_path)
    return indexer


@pytest_asyncio.fixture
async def search_engine(indexed_sample: Indexer) -> SearchEngine:
    return SearchEngine(indexed_sample.index, embedder=indexed_sample.embedder)


@pytest_asyncio.fixture
async def orchestrator(sample_project_path: Path) -> ContextOrchestrator:
    return await ContextOrchestrator.create(sample_project_path, EngineSettings())
