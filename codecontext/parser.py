"""Pattern-based extraction of symbols, imports and exports.

Extraction is deliberately lightweight: declarations are found with
word-bounded regular expressions instead of a full AST, so it works on any
language and tolerates broken or partial source. The results are good
enough to feed the name index and the symbol search mode.
"""

from __future__ import annotations

import logging
import re
from pathlib import PurePosixPath
from typing import Dict, List, Pattern, Set, Tuple

from .models import Location, SymbolEntry, SymbolKind

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Language <-> file-extension mapping
# ---------------------------------------------------------------------------
LANGUAGE_MAP: Dict[str, str] = {
    ".py": "python",
    ".js": "javascript",
    ".jsx": "javascript",
    ".mjs": "javascript",
    ".ts": "typescript",
    ".tsx": "typescript",
    ".java": "java",
    ".go": "go",
    ".rs": "rust",
    ".cpp": "cpp",
    ".c": "c",
    ".h": "c",
    ".hpp": "cpp",
    ".cs": "csharp",
    ".rb": "ruby",
    ".php": "php",
    ".swift": "swift",
    ".kt": "kotlin",
    ".scala": "scala",
    ".md": "markdown",
    ".rst": "restructuredtext",
    ".txt": "text",
}

# Prose, not code: no declarations are extracted from these
DOC_LANGUAGES: Set[str] = {"markdown", "restructuredtext", "text"}

_JVM_LANGUAGES: Set[str] = {"java", "kotlin", "scala"}

SYMBOL_PATTERNS: List[Tuple[Pattern[str], SymbolKind]] = [
    (re.compile(r"\bclass\s+([A-Za-z_$][\w$]*)"), SymbolKind.CLASS),
    (re.compile(r"\binterface\s+([A-Za-z_$][\w$]*)"), SymbolKind.INTERFACE),
    (re.compile(r"\bfunction\s+([A-Za-z_$][\w$]*)"), SymbolKind.FUNCTION),
    (re.compile(r"\bconst\s+([A-Za-z_$][\w$]*)"), SymbolKind.CONSTANT),
    (re.compile(r"\blet\s+([A-Za-z_$][\w$]*)"), SymbolKind.VARIABLE),
    (re.compile(r"\bvar\s+([A-Za-z_$][\w$]*)"), SymbolKind.VARIABLE),
]

PYTHON_SYMBOL_PATTERNS: List[Tuple[Pattern[str], SymbolKind]] = [
    (re.compile(r"\bdef\s+([A-Za-z_]\w*)"), SymbolKind.FUNCTION),
]

_ES_IMPORT_FROM_RE = re.compile(
    r"\bimport\s+(?:type\s+)?([\w$*\s{},]+?)\s+from\s+['\"]([^'\"]+)['\"]"
)
_ES_IMPORT_BARE_RE = re.compile(r"\bimport\s+['\"]([^'\"]+)['\"]")
_REQUIRE_RE = re.compile(r"\brequire\(\s*['\"]([^'\"]+)['\"]\s*\)")
_PY_IMPORT_RE = re.compile(r"^[ \t]*import\s+([\w.]+(?:\s+as\s+\w+)?(?:\s*,\s*[\w.]+(?:\s+as\s+\w+)?)*)", re.MULTILINE)
_PY_FROM_RE = re.compile(
    r"^[ \t]*from\s+([\w.]+)\s+import\s+(?:\(([^)]*)\)|([\w \t,*]+))", re.MULTILINE
)
_JVM_IMPORT_RE = re.compile(r"^[ \t]*import\s+(?:static\s+)?([\w.]*\w(?:\.\*)?)\s*;?", re.MULTILINE)

_EXPORT_DECL_RE = re.compile(
    r"\bexport\s+(?:default\s+)?(?:declare\s+)?(?:abstract\s+)?(?:async\s+)?"
    r"(?:class|function\*?|const|let|var|interface|type|enum)\s+([A-Za-z_$][\w$]*)"
)
_EXPORT_LIST_RE = re.compile(r"\bexport\s*\{([^}]*)\}")
_PY_ALL_RE = re.compile(r"^__all__\s*(?::[^=]*)?=\s*[\[(]([^\])]*)[\])]", re.MULTILINE)
_QUOTED_RE = re.compile(r"['\"]([^'\"]+)['\"]")


def detect_language(path: str) -> str:
    """Language name for *path* by extension; unknown extensions are ``"text"``."""
    return LANGUAGE_MAP.get(PurePosixPath(path).suffix.lower(), "text")


def line_starts(content: str) -> List[int]:
    starts = [0]
    for idx, ch in enumerate(content):
        if ch == "\n":
            starts.append(idx + 1)
    return starts


def offset_to_position(line_starts: List[int], offset: int) -> Tuple[int, int]:
    """Map a character offset to a (1-based line, 0-based column) pair."""
    lo, hi = 0, len(line_starts) - 1
    while lo < hi:
        mid = (lo + hi + 1) // 2
        if line_starts[mid] <= offset:
            lo = mid
        else:
            hi = mid - 1
    return lo + 1, offset - line_starts[lo]


def symbol_id(file_id: str, name: str, line: int, column: int) -> str:
    return f"sym_{file_id}_{name}_{line}_{column}"


def extract_symbols(file_id: str, path: str, content: str, language: str) -> List[SymbolEntry]:
    """Find declarations in *content*, ordered by position."""
    if language in DOC_LANGUAGES:
        return []
    patterns = list(SYMBOL_PATTERNS)
    if language == "python":
        patterns.extend(PYTHON_SYMBOL_PATTERNS)

    starts = line_starts(content)
    lines = content.split("\n")
    symbols: List[SymbolEntry] = []
    seen: Set[str] = set()
    for regex, kind in patterns:
        for match in regex.finditer(content):
            name = match.group(1)
            line, column = offset_to_position(starts, match.start())
            end_line, end_column = offset_to_position(starts, match.end())
            sid = symbol_id(file_id, name, line, column)
            if sid in seen:
                continue
            seen.add(sid)
            symbols.append(SymbolEntry(
                id=sid,
                name=name,
                kind=kind,
                location=Location(
                    file_id=file_id,
                    path=path,
                    start_line=line,
                    start_column=column,
                    end_line=end_line,
                    end_column=end_column,
                ),
                signature=lines[line - 1].strip()[:200],
            ))
    symbols.sort(key=lambda s: (s.location.start_line, s.location.start_column))
    return symbols


def _es_clause_names(clause: str) -> List[str]:
    """Names bound by an ES import clause such as ``Def, { a, b as c }``.

    Named imports are recorded under their exported name, so they line up
    with the exporting file's symbols. Namespace imports bind nothing.
    """
    names: List[str] = []
    clause = clause.strip()
    braced = ""
    if "{" in clause:
        head, _, rest = clause.partition("{")
        braced = rest.split("}", 1)[0]
        clause = head
    for part in clause.split(","):
        part = part.strip()
        if part and not part.startswith("*") and part != "type":
            names.append(part)
    for part in braced.split(","):
        part = part.strip()
        if part.startswith("type "):
            part = part[5:].strip()
        if part:
            names.append(part.split(" as ")[0].strip())
    return names


def extract_imports(content: str, language: str) -> Tuple[List[str], List[str]]:
    """Return ``(modules, imported_names)``, each de-duplicated in source order."""
    modules: List[str] = []
    names: List[str] = []

    if language == "python":
        for match in _PY_IMPORT_RE.finditer(content):
            for part in match.group(1).split(","):
                modules.append(part.strip().split(" as ")[0].strip())
        for match in _PY_FROM_RE.finditer(content):
            modules.append(match.group(1))
            for part in (match.group(2) or match.group(3)).split(","):
                name = part.strip().split(" as ")[0].strip()
                if name and name != "*":
                    names.append(name)
    elif language in _JVM_LANGUAGES:
        for match in _JVM_IMPORT_RE.finditer(content):
            module = match.group(1)
            modules.append(module)
            tail = module.rsplit(".", 1)[-1]
            if tail != "*":
                names.append(tail)
    elif language not in DOC_LANGUAGES:
        for match in _ES_IMPORT_FROM_RE.finditer(content):
            modules.append(match.group(2))
            names.extend(_es_clause_names(match.group(1)))
        for match in _ES_IMPORT_BARE_RE.finditer(content):
            modules.append(match.group(1))
        for match in _REQUIRE_RE.finditer(content):
            modules.append(match.group(1))

    return _dedupe(modules), _dedupe(names)


def extract_exports(content: str, language: str) -> List[str]:
    exports: List[str] = []
    if language == "python":
        for match in _PY_ALL_RE.finditer(content):
            exports.extend(_QUOTED_RE.findall(match.group(1)))
    elif language not in DOC_LANGUAGES:
        exports.extend(m.group(1) for m in _EXPORT_DECL_RE.finditer(content))
        for match in _EXPORT_LIST_RE.finditer(content):
            for part in match.group(1).split(","):
                part = part.strip()
                if part:
                    # "a as b" exports the public name b
                    exports.append(part.split(" as ")[-1].strip())
    return _dedupe(exports)


def _dedupe(items: List[str]) -> List[str]:
    seen: Set[str] = set()
    out: List[str] = []
    for item in items:
        if item and item not in seen:
            seen.add(item)
            out.append(item)
    return out
