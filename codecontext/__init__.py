"""codecontext: retrieval and synthesis of repository context for code assistants."""

from .errors import (
    CodeContextError,
    ComputationError,
    FileReadError,
    NotFoundError,
    TaskTimeoutError,
    ValidationError,
)
from .index import RepositoryIndex
from .indexer import Indexer
from .models import SearchFilter, SearchMode, SearchQuery, SearchResult
from .orchestrator import ContextNeed, ContextOrchestrator, ContextRequest, ContextResponse, Importance
from .research import ResearchEngine
from .search import SearchEngine
from .window import ContextWindow

__version__ = "0.1.0"

__all__ = [
    "CodeContextError",
    "ComputationError",
    "ContextNeed",
    "ContextOrchestrator",
    "ContextRequest",
    "ContextResponse",
    "ContextWindow",
    "FileReadError",
    "Importance",
    "Indexer",
    "NotFoundError",
    "RepositoryIndex",
    "ResearchEngine",
    "SearchEngine",
    "SearchFilter",
    "SearchMode",
    "SearchQuery",
    "SearchResult",
    "TaskTimeoutError",
    "ValidationError",
    "__version__",
]
