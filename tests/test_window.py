"""Tests for the token-budgeted context window."""

import pytest

from codecontext.config import WindowConfig
from codecontext.events import EventType
from codecontext.models import FileEntry, Location, SymbolEntry, SymbolKind
from codecontext.window import ContextWindow, estimate_tokens


def text(tokens: int) -> str:
    return "x" * (tokens * 4)


@pytest.fixture
def window(clock) -> ContextWindow:
    config = WindowConfig(max_tokens=100, reserved_tokens=0, compression_threshold=0.5)
    return ContextWindow(config, clock=clock)


def fill(window: ContextWindow, clock) -> None:
    for priority, name in enumerate(["a", "b", "c"]):
        clock.advance(1)
        assert window.add_snippet(name, text(30), priority=priority)


def test_estimate_tokens():
    assert estimate_tokens("") == 0
    assert estimate_tokens("abcd") == 1
    assert estimate_tokens("abcde") == 2


class TestAdd:
    """Tests for adding artifacts."""

    def test_totals_track_entries(self, window: ContextWindow, clock):
        fill(window, clock)

        assert len(window) == 3
        assert window.total_tokens == 90
        assert window.utilization == pytest.approx(0.9)
        assert "b" in window

    def test_reserved_tokens_shrink_budget(self):
        window = ContextWindow(WindowConfig(max_tokens=100, reserved_tokens=40))

        assert window.available_tokens == 60
        assert not window.add_snippet("big", text(61))
        assert window.add_snippet("ok", text(60))

    def test_oversized_artifact_is_rejected(self, window: ContextWindow, clock):
        fill(window, clock)

        assert window.add_snippet("huge", text(101)) is False
        assert window.total_tokens == 90
        assert len(window) == 3

    def test_overflow_evicts_lowest_priority_first(self, window: ContextWindow, clock):
        fill(window, clock)
        clock.advance(1)

        assert window.add_snippet("d", text(30), priority=1)

        assert sorted(e.artifact_id for e in window.entries) == ["c", "d"]
        assert window.total_tokens == 60
        compressed = window.events.events_of(EventType.CONTEXT_COMPRESSED)
        assert compressed[0].data["evicted"] == ["a", "b"]

    def test_overflow_without_auto_compress_changes_nothing(self, clock):
        window = ContextWindow(
            WindowConfig(max_tokens=100, reserved_tokens=0, auto_compress=False), clock=clock,
        )
        fill(window, clock)

        assert window.add_snippet("d", text(30)) is False
        assert sorted(e.artifact_id for e in window.entries) == ["a", "b", "c"]
        assert window.total_tokens == 90

    def test_replacing_an_entry_reuses_its_tokens(self, window: ContextWindow, clock):
        fill(window, clock)

        assert window.add_snippet("a", text(40), priority=0)

        assert len(window) == 3
        assert window.total_tokens == 100

    def test_add_file_touches_entry(self, window: ContextWindow):
        entry = FileEntry(
            id="file_1", path="src/a.ts", content=text(10), language="typescript",
            size=40, line_count=1, last_modified=0.0,
        )

        assert window.add_file(entry, priority=2)
        assert entry.access_count == 1
        assert window.remove_file("src/a.ts")
        assert window.remove_file("src/a.ts") is False
        assert len(window) == 0

    def test_remove_file_drops_snippets_from_that_path(self, window: ContextWindow):
        assert window.add_snippet("s1", text(5), path="src/a.ts")
        assert window.add_snippet("s2", text(5), path="src/a.ts")
        assert window.add_snippet("s3", text(5), path="src/b.ts")

        assert window.remove_file("src/a.ts")

        assert [e.artifact_id for e in window.entries] == ["s3"]
        assert window.total_tokens == 5

    def test_replacing_entry_moves_its_path(self, window: ContextWindow):
        assert window.add_snippet("s1", text(5), path="src/a.ts")
        assert window.add_snippet("s1", text(5), path="src/b.ts")

        assert window.remove_file("src/a.ts") is False
        assert window.remove_file("src/b.ts")
        assert len(window) == 0

    def test_add_symbol_defaults_to_signature(self, window: ContextWindow):
        symbol = SymbolEntry(
            id="sym_1",
            name="foo",
            kind=SymbolKind.FUNCTION,
            location=Location("file_1", "src/a.ts", 1, 7, 1, 19),
            signature="export function foo(x)",
        )

        assert window.add_symbol(symbol)
        assert window.entries[0].content == "export function foo(x)"
        assert window.entries[0].path == "src/a.ts"

    def test_added_event(self, window: ContextWindow):
        window.add_snippet("a", text(5))

        events = window.events.events_of(EventType.CONTEXT_ADDED)
        assert events[0].data["artifact_id"] == "a"
        assert events[0].data["tokens"] == 5


class TestCompress:
    """Tests for explicit compression and removal."""

    def test_compress_to_threshold(self, window: ContextWindow, clock):
        fill(window, clock)

        assert window.compress() == ["a", "b"]
        assert window.total_tokens == 30
        assert window.utilization <= 0.5

    def test_compress_ignores_config_flags(self, clock):
        window = ContextWindow(
            WindowConfig(
                max_tokens=100, reserved_tokens=0, compression_threshold=0.5,
                auto_compress=False, compression_enabled=False,
            ),
            clock=clock,
        )
        fill(window, clock)

        assert window.compress() == ["a", "b"]

    def test_compress_below_threshold_is_noop(self, window: ContextWindow):
        window.add_snippet("a", text(10))
        assert window.compress() == []

    def test_recently_touched_survives_ties(self, window: ContextWindow, clock):
        for name in ["a", "b", "c"]:
            clock.advance(1)
            window.add_snippet(name, text(30))
        clock.advance(1)
        window.touch("a")

        assert window.compress() == ["b", "c"]

    def test_remove_and_clear(self, window: ContextWindow, clock):
        fill(window, clock)

        assert window.remove("b")
        assert window.remove("b") is False
        assert window.total_tokens == 60
        window.clear()
        assert window.total_tokens == 0
        assert window.entries == []


class TestOutput:
    """Tests for render and snapshot."""

    def test_render_orders_by_priority(self, window: ContextWindow):
        window.add_snippet("low", "low body", priority=0, path="low.py", language="python")
        window.add_snippet("high", "high body", priority=5)

        rendered = window.render()

        assert rendered == (
            "### high (snippet)\n```\nhigh body\n```\n\n"
            "### low.py (snippet)\n```python\nlow body\n```"
        )

    def test_snapshot(self, window: ContextWindow):
        window.add_snippet("a", text(10), priority=3, path="a.py")

        snap = window.snapshot()
        assert snap["total_tokens"] == 10
        assert snap["available_tokens"] == 100
        assert snap["entries"] == [{"id": "a", "kind": "snippet", "path": "a.py", "tokens": 10, "priority": 3}]
