"""Configuration paths and default settings for the context engine."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import List

BASE_DIR = Path(os.environ.get("CODECONTEXT_HOME", str(Path.home() / ".codecontext"))).expanduser()
CONFIG_FILE = BASE_DIR / "config.toml"
DEFAULT_EMBEDDING_DIM = 256

DEFAULT_INCLUDE_PATTERNS: List[str] = [
    "**/*.ts", "**/*.tsx", "**/*.js", "**/*.jsx", "**/*.py", "**/*.java",
    "**/*.md",
]

# Directories never worth indexing
DEFAULT_EXCLUDE_PATTERNS: List[str] = [
    "**/node_modules/**", "**/dist/**", "**/build/**", "**/.git/**",
    "**/.venv/**", "**/venv/**", "**/__pycache__/**", "**/.tox/**",
    "**/.pytest_cache/**", "**/.mypy_cache/**", "**/.codecontext/**",
]


@dataclass
class IndexConfig:
    include_patterns: List[str] = field(default_factory=lambda: list(DEFAULT_INCLUDE_PATTERNS))
    exclude_patterns: List[str] = field(default_factory=lambda: list(DEFAULT_EXCLUDE_PATTERNS))
    max_file_size: int = 1024 * 1024
    extract_symbols: bool = True
    extract_imports: bool = True
    extract_exports: bool = True
    generate_embeddings: bool = True
    worker_count: int = 4


@dataclass
class SearchConfig:
    default_top_k: int = 10
    cache_results: bool = True
    cache_size: int = 1000
    cache_ttl: float = 300.0


@dataclass
class WindowConfig:
    max_tokens: int = 128000
    reserved_tokens: int = 16000
    auto_compress: bool = True
    compression_enabled: bool = True
    compression_threshold: float = 0.8


@dataclass
class ResearchConfig:
    default_depth: str = "medium"
    default_breadth: int = 5
    default_timeout: float = 60.0
    max_findings: int = 20
    enabled_sources: List[str] = field(default_factory=lambda: ["code", "documentation", "memory"])
    web_enabled: bool = False
    max_concurrent_tasks: int = 5
    max_concurrent_sources: int = 3
    min_relevance: float = 0.5
    min_confidence: float = 0.5
    cache_enabled: bool = True
    cache_size: int = 500
    cache_ttl: float = 600.0


@dataclass
class OrchestratorConfig:
    max_concurrent_searches: int = 5
    max_concurrent_research: int = 3
    cache_enabled: bool = True
    cache_size: int = 100
    cache_ttl: float = 300.0
    default_timeout: float = 30.0
    max_timeout: float = 120.0
    default_max_results: int = 20
    search_min_score: float = 0.1


@dataclass
class EngineSettings:
    """All configuration sections, as loaded from ``config.toml``."""

    indexing: IndexConfig = field(default_factory=IndexConfig)
    search: SearchConfig = field(default_factory=SearchConfig)
    window: WindowConfig = field(default_factory=WindowConfig)
    research: ResearchConfig = field(default_factory=ResearchConfig)
    orchestrator: OrchestratorConfig = field(default_factory=OrchestratorConfig)
    embedding_model: str = "hash"
