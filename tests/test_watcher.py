"""Tests for the file watcher that keeps the index fresh."""

import asyncio
from pathlib import Path

import pytest

from codecontext.indexer import Indexer
from codecontext.watcher import INDEX, REMOVE, IndexWatcher


@pytest.fixture
def repo(temp_dir: Path) -> Path:
    (temp_dir / "src").mkdir()
    (temp_dir / "src" / "a.ts").write_text("export function foo() {}\n")
    (temp_dir / "src" / "b.ts").write_text("export function bar() {}\n")
    return temp_dir.resolve()


async def indexed(repo: Path) -> Indexer:
    indexer = Indexer()
    await indexer.index_repository(repo)
    return indexer


class TestQueueAndFlush:
    """Tests for change intake and replay."""

    @pytest.mark.asyncio
    async def test_flush_applies_pending_changes(self, repo: Path):
        indexer = await indexed(repo)
        watcher = IndexWatcher(indexer, repo)
        (repo / "src" / "a.ts").write_text("export function renamed() {}\n")
        (repo / "src" / "b.ts").unlink()

        watcher.queue(str(repo / "src" / "a.ts"), INDEX)
        watcher.queue(str(repo / "src" / "b.ts"), REMOVE)
        applied = await watcher.flush()

        assert applied == 2
        assert watcher.reindexed == 1
        assert watcher.removed == 1
        assert "src/b.ts" not in indexer.index
        assert indexer.index.symbols_named("foo") == []
        assert len(indexer.index.symbols_named("renamed")) == 1

    @pytest.mark.asyncio
    async def test_latest_action_per_path_wins(self, repo: Path):
        indexer = await indexed(repo)
        watcher = IndexWatcher(indexer, repo)

        watcher.queue(str(repo / "src" / "a.ts"), REMOVE)
        watcher.queue(str(repo / "src" / "a.ts"), INDEX)

        assert await watcher.flush() == 1
        assert "src/a.ts" in indexer.index
        assert watcher.removed == 0

    @pytest.mark.asyncio
    async def test_non_indexable_files_are_ignored(self, repo: Path):
        indexer = await indexed(repo)
        watcher = IndexWatcher(indexer, repo)

        watcher.queue(str(repo / "image.png"), INDEX)
        watcher.queue(str(repo / "node_modules" / "x" / "index.js"), INDEX)

        assert await watcher.flush() == 0

    @pytest.mark.asyncio
    async def test_debounced_flush_runs_on_the_loop(self, repo: Path):
        indexer = await indexed(repo)
        watcher = IndexWatcher(indexer, repo, loop=asyncio.get_running_loop(), debounce=0.01)
        (repo / "src" / "c.ts").write_text("export const added = 1;\n")

        watcher.queue(str(repo / "src" / "c.ts"), INDEX)
        for _ in range(100):
            await asyncio.sleep(0.01)
            if "src/c.ts" in indexer.index:
                break

        assert "src/c.ts" in indexer.index
        assert watcher.reindexed == 1


@pytest.mark.asyncio
async def test_start_and_stop(repo: Path):
    indexer = await indexed(repo)
    watcher = IndexWatcher(indexer, repo)

    watcher.start()
    try:
        assert watcher.running
    finally:
        watcher.stop()

    assert not watcher.running
    watcher.stop()
