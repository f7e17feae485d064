"""Exception taxonomy shared by the indexing, search and orchestration layers.

Each error also derives from the closest builtin so callers that only know
about ``ValueError`` / ``KeyError`` / ``OSError`` keep working.
"""

from __future__ import annotations


class CodeContextError(Exception):
    """Base class for all codecontext errors."""


class ValidationError(CodeContextError, ValueError):
    """Malformed query parameters, request fields or search patterns."""


class NotFoundError(CodeContextError, KeyError):
    """Unknown task, file or symbol id."""

    def __str__(self) -> str:
        # KeyError wraps its message in quotes
        return str(self.args[0]) if self.args else ""


class FileReadError(CodeContextError, OSError):
    """A single file could not be read or decoded."""


class ComputationError(CodeContextError, RuntimeError):
    """Embedding, scoring, analysis or synthesis failed."""


class TaskTimeoutError(CodeContextError, TimeoutError):
    """A task or request exceeded its deadline."""
