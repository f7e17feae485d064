"""Core data models used by the indexing and search layers."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, List, Mapping, Optional, Union

import pydantic
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .errors import ValidationError


class SymbolKind(str, Enum):
    CLASS = "class"
    INTERFACE = "interface"
    FUNCTION = "function"
    METHOD = "method"
    VARIABLE = "variable"
    CONSTANT = "constant"
    PROPERTY = "property"
    TYPE = "type"
    ENUM = "enum"
    MODULE = "module"
    NAMESPACE = "namespace"
    FILE = "file"


@dataclass
class Location:
    """Span inside one file. Lines are 1-based, columns 0-based."""
    file_id: str
    path: str
    start_line: int
    start_column: int
    end_line: int
    end_column: int

    def __str__(self) -> str:
        return f"{self.path}:{self.start_line}:{self.start_column}"


@dataclass
class SymbolEntry:
    id: str
    name: str
    kind: SymbolKind
    location: Location
    signature: str = ""
    # ids of other files importing this symbol's name
    references: List[str] = field(default_factory=list)


@dataclass
class FileEntry:
    id: str
    path: str
    content: str
    language: str
    size: int
    line_count: int
    last_modified: float
    embedding: Optional[List[float]] = None
    symbols: List[SymbolEntry] = field(default_factory=list)
    imports: List[str] = field(default_factory=list)
    imported_names: List[str] = field(default_factory=list)
    exports: List[str] = field(default_factory=list)
    access_count: int = 0
    last_accessed: float = field(default_factory=time.time)

    def touch(self) -> None:
        self.access_count += 1
        self.last_accessed = time.time()


@dataclass
class IndexReport:
    root: str
    files_indexed: int = 0
    files_skipped: int = 0
    files_failed: int = 0
    symbols: int = 0
    duration: float = 0.0
    failed_paths: List[str] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Search query / result
# ---------------------------------------------------------------------------

class SearchMode(str, Enum):
    SEMANTIC = "semantic"
    KEYWORD = "keyword"
    SYMBOL = "symbol"
    REGEX = "regex"
    HYBRID = "hybrid"


class SearchFilter(BaseModel):
    """Post-scoring filters. Empty lists mean "no restriction"."""

    model_config = ConfigDict(extra="forbid")

    file_patterns: List[str] = Field(default_factory=list)
    languages: List[str] = Field(default_factory=list)
    symbol_kinds: List[SymbolKind] = Field(default_factory=list)
    paths: List[str] = Field(default_factory=list)
    exclude_paths: List[str] = Field(default_factory=list)
    modified_after: Optional[float] = None
    modified_before: Optional[float] = None
    max_file_size: Optional[int] = Field(default=None, ge=0)

    @model_validator(mode="after")
    def _check_time_range(self) -> "SearchFilter":
        if (
            self.modified_after is not None
            and self.modified_before is not None
            and self.modified_after > self.modified_before
        ):
            raise ValueError("modified_after must not be later than modified_before")
        return self


class SearchQuery(BaseModel):
    model_config = ConfigDict(extra="forbid")

    query: str
    mode: SearchMode = SearchMode.HYBRID
    filters: Optional[SearchFilter] = None
    top_k: Optional[int] = Field(default=None, ge=1, le=100)
    min_score: float = Field(default=0.0, ge=0.0, le=1.0)
    include_content: bool = False

    @field_validator("query")
    @classmethod
    def _non_empty(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("query must not be empty")
        return value


def parse_query(query: Union[SearchQuery, Mapping[str, Any]]) -> SearchQuery:
    """Validate *query*, raising our :class:`ValidationError` on bad input."""
    if isinstance(query, SearchQuery):
        return query
    try:
        return SearchQuery.model_validate(query)
    except pydantic.ValidationError as exc:
        raise ValidationError(f"Invalid search query: {exc}") from exc


@dataclass
class SearchHighlight:
    start_line: int
    start_column: int
    end_line: int
    end_column: int
    text: str


@dataclass
class SearchResult:
    id: str
    type: str  # "file" or "symbol"
    score: float
    path: str
    content: Optional[str] = None
    location: Optional[Location] = None
    symbol: Optional[SymbolEntry] = None
    file: Optional[FileEntry] = None
    highlights: List[SearchHighlight] = field(default_factory=list)
