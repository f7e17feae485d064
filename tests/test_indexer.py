"""Tests for the Indexer over in-memory and on-disk repositories."""

from pathlib import Path

import pytest

from codecontext.config import IndexConfig
from codecontext.events import EventBus, EventType
from codecontext.index import RepositoryIndex
from codecontext.indexer import Indexer, file_id_for

FILES = {
    "src/a.ts": "export function foo(x) { return x; }\n",
    "src/b.ts": "import { foo } from './a';\nexport const bar = foo(1);\n",
    "docs/guide.md": "# Guide\n\nCall foo.\n",
    "node_modules/lib/index.js": "function vendored() {}\n",
    "assets/logo.bin": "binary",
}


def make_indexer(fs, config=None, embedder=None):
    events = EventBus()
    indexer = Indexer(RepositoryIndex(), config or IndexConfig(), embedder=embedder, fs=fs, events=events)
    return indexer, events


class TestIndexRepository:
    """Tests for a full indexing pass."""

    @pytest.mark.asyncio
    async def test_indexes_matching_files(self, memory_fs_factory):
        fs = memory_fs_factory(FILES)
        indexer, events = make_indexer(fs)

        report = await indexer.index_repository("/repo")

        assert report.files_indexed == 3
        assert report.files_failed == 0
        assert report.symbols == 2
        assert sorted(e.path for e in indexer.index.iter_files()) == [
            "docs/guide.md", "src/a.ts", "src/b.ts",
        ]
        assert indexer.index.root == str(Path("/repo").resolve())
        assert indexer.index.indexed_at is not None
        assert len(events.events_of(EventType.FILE_INDEXED)) == 3
        assert len(events.events_of(EventType.INDEX_UPDATED)) == 1

    @pytest.mark.asyncio
    async def test_excluded_directories_are_not_walked(self, memory_fs_factory):
        fs = memory_fs_factory(FILES)
        indexer, _ = make_indexer(fs)

        await indexer.index_repository("/repo")

        assert Path("/repo/node_modules") not in fs.listed
        assert Path("/repo/src") in fs.listed

    @pytest.mark.asyncio
    async def test_entry_fields(self, memory_fs_factory):
        indexer, _ = make_indexer(memory_fs_factory(FILES))
        await indexer.index_repository("/repo")

        entry = indexer.index.find_file("src/b.ts")
        assert entry.id == file_id_for("src/b.ts")
        assert entry.language == "typescript"
        assert entry.line_count == 3
        assert entry.size == len(FILES["src/b.ts"])
        assert entry.last_modified == 1_700_000_000.0
        assert entry.imports == ["./a"]
        assert entry.imported_names == ["foo"]
        assert entry.exports == ["bar"]
        assert len(entry.embedding) == 256

    @pytest.mark.asyncio
    async def test_unreadable_file_is_counted_not_raised(self, memory_fs_factory):
        fs = memory_fs_factory(FILES, failing=["src/b.ts"])
        indexer, events = make_indexer(fs)

        report = await indexer.index_repository("/repo")

        assert report.files_indexed == 2
        assert report.files_failed == 1
        assert report.failed_paths == ["src/b.ts"]
        assert "src/b.ts" not in indexer.index
        failed = events.events_of(EventType.FILE_FAILED)
        assert [e.data["path"] for e in failed] == ["src/b.ts"]

    @pytest.mark.asyncio
    async def test_oversized_file_is_skipped(self, memory_fs_factory):
        files = dict(FILES)
        files["src/big.ts"] = "x" * 200
        indexer, _ = make_indexer(memory_fs_factory(files), IndexConfig(max_file_size=100))

        report = await indexer.index_repository("/repo")

        assert report.files_skipped == 1
        assert "src/big.ts" not in indexer.index

    @pytest.mark.asyncio
    async def test_embedding_failure_marks_file_failed(self, memory_fs_factory):
        class FlakyEmbedder:
            dim = 2

            def embed_text(self, text):
                if "bar" in text:
                    raise RuntimeError("model crashed")
                return [1.0, 0.0]

        indexer, _ = make_indexer(memory_fs_factory(FILES), embedder=FlakyEmbedder())

        report = await indexer.index_repository("/repo")

        assert report.files_failed == 1
        assert report.failed_paths == ["src/b.ts"]

    @pytest.mark.asyncio
    async def test_extraction_can_be_disabled(self, memory_fs_factory):
        config = IndexConfig(extract_symbols=False, generate_embeddings=False)
        indexer, _ = make_indexer(memory_fs_factory(FILES), config)

        await indexer.index_repository("/repo")

        entry = indexer.index.find_file("src/a.ts")
        assert entry.symbols == []
        assert entry.embedding is None
        assert indexer.index.embeddings == {}


class TestSingleFile:
    """Tests for index_file and remove_file."""

    @pytest.mark.asyncio
    async def test_reindex_after_change(self, memory_fs_factory):
        fs = memory_fs_factory(FILES)
        indexer, _ = make_indexer(fs)
        await indexer.index_repository("/repo")

        fs.files[Path("/repo/src/a.ts")] = "export function renamed() {}\n"
        entry = await indexer.index_file("/repo/src/a.ts")

        assert entry.path == "src/a.ts"
        assert indexer.index.symbols_named("foo") == []
        assert len(indexer.index.symbols_named("renamed")) == 1
        assert len(indexer.index) == 3

    @pytest.mark.asyncio
    async def test_index_file_returns_none_on_failure(self, memory_fs_factory):
        fs = memory_fs_factory(FILES, failing=["src/a.ts"])
        indexer, _ = make_indexer(fs)
        indexer.root = Path("/repo")

        assert await indexer.index_file("src/a.ts") is None

    @pytest.mark.asyncio
    async def test_remove_file(self, memory_fs_factory):
        indexer, events = make_indexer(memory_fs_factory(FILES))
        await indexer.index_repository("/repo")

        assert await indexer.remove_file("src/a.ts") is True
        assert await indexer.remove_file("src/a.ts") is False
        assert "src/a.ts" not in indexer.index
        assert len(events.events_of(EventType.FILE_REMOVED)) == 1


class TestPathHelpers:
    """Tests for include/exclude decisions."""

    def test_should_index(self):
        indexer = Indexer()

        assert indexer.should_index("src/app.py")
        assert indexer.should_index("README.md")
        assert not indexer.should_index("node_modules/pkg/index.js")
        assert not indexer.should_index("image.png")

    def test_relative_path(self):
        indexer = Indexer(RepositoryIndex(root="/repo"))

        assert indexer.relative_path("/repo/src/a.ts") == "src/a.ts"
        assert indexer.relative_path("src/a.ts") == "src/a.ts"
        assert indexer.relative_path("/elsewhere/x.ts") == "/elsewhere/x.ts"


@pytest.mark.asyncio
async def test_sample_project_on_disk(indexed_sample: Indexer):
    index = indexed_sample.index

    assert len(index) == 5
    service = index.find_file("app/service.py")
    assert service.imports == ["logging", "app.errors"]
    assert service.imported_names == ["ValidationFailure"]
    assert service.exports == ["process_order", "OrderService"]
    assert [s.name for s in service.symbols] == ["OrderService", "__init__", "process", "process_order"]

    failure = index.symbols_named("ValidationFailure")[0]
    assert [f.path for f in index.references_to(failure.id)] == ["app/service.py"]
    foo = index.symbols_named("foo")[0]
    assert [f.path for f in index.references_to(foo.id)] == ["src/b.ts"]
