"""Tests for the memory backend facade."""

import asyncio
from datetime import datetime, timedelta
from pathlib import Path

import pytest

from cairn.core.config import Settings
from cairn.memory.backend import MemoryBackend, extract_snippet, slice_lines
from cairn.memory.base import MemoryType, NewMemory

MEMORY_MD = """# Memory

## Storage decision
We decided to keep SQLite for local storage because it needs zero administration.

## Travel preferences
Prefers window seats and morning flights, avoids layovers longer than two hours.
"""


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    workspace = tmp_path / "workspace"
    (workspace / "memory").mkdir(parents=True)
    (workspace / "MEMORY.md").write_text(MEMORY_MD, encoding="utf-8")
    return Settings(
        workspace_dir=workspace,
        data_dir=tmp_path / "data",
        sync={"debounce_ms": 20, "poll_interval": 0.02},
        _env_file=None,
    )


@pytest.fixture
async def backend(settings: Settings):
    """Opened backend without file watching."""
    memory_backend = MemoryBackend(settings)
    await memory_backend.open(watch=False)
    yield memory_backend
    await memory_backend.close()


# Snippets and line slicing


def test_snippet_short_content_is_whole():
    assert extract_snippet("short text", "text") == "short text"


def test_snippet_centers_on_match():
    content = "a" * 1000 + "NEEDLE" + "b" * 1000
    snippet = extract_snippet(content, "needle")
    assert snippet.startswith("...")
    assert snippet.endswith("...")
    assert "NEEDLE" in snippet
    # 200 characters before the match, the rest of the 700 after it
    assert snippet[3:].index("NEEDLE") == 200
    assert len(snippet) == 3 + 200 + len("NEEDLE") + 500 + 3


def test_snippet_without_match_takes_leading_window():
    content = "x" * 2000
    snippet = extract_snippet(content, "absent")
    assert snippet == "x" * 700 + "..."


def test_snippet_match_near_start():
    content = "NEEDLE" + "c" * 2000
    snippet = extract_snippet(content, "needle")
    assert snippet.startswith("NEEDLE")
    assert snippet.endswith("...")


def test_slice_lines():
    text = "one\ntwo\nthree\nfour"
    assert slice_lines(text) == text
    assert slice_lines(text, from_line=2) == "two\nthree\nfour"
    assert slice_lines(text, from_line=2, lines=2) == "two\nthree"
    assert slice_lines(text, lines=1) == "one"
    assert slice_lines(text, from_line=10) == ""


# Search


@pytest.mark.asyncio
async def test_open_runs_initial_sync(backend: MemoryBackend):
    assert await backend.store.count() == 2


@pytest.mark.asyncio
async def test_search(backend: MemoryBackend):
    results = await backend.search("SQLite storage")

    assert len(results) >= 1
    top = results[0]
    assert top.path == "MEMORY.md"
    assert "SQLite" in top.snippet
    assert top.memory_type == MemoryType.DECISION
    assert top.start_line == 1
    assert top.end_line >= top.start_line
    assert 0.0 <= top.score <= 1.0

    stored = await backend.store.get(top.memory_id)
    assert stored.access_count == 1
    log = await backend.store.access_log(top.memory_id)
    assert log[0].query == "SQLite storage"


@pytest.mark.asyncio
async def test_search_ranking_and_limits(backend: MemoryBackend):
    results = await backend.search("window seats flights")
    assert results[0].snippet.startswith("## Travel preferences")
    assert [r.score for r in results] == sorted((r.score for r in results), reverse=True)

    assert len(await backend.search("e", max_results=1)) == 1
    assert await backend.search("SQLite", min_score=1.01) == []


@pytest.mark.asyncio
async def test_search_no_match(backend: MemoryBackend):
    assert await backend.search("kubernetes") == []


@pytest.mark.asyncio
async def test_search_prefers_important(backend: MemoryBackend):
    """Equal text match: the more important record ranks first."""
    now = datetime.now()
    low = await backend.store.create(
        NewMemory(content="Reminder about the dentist", source_path="session/a", importance_score=0.1, created_at=now)
    )
    high = await backend.store.create(
        NewMemory(content="Reminder about the visa", source_path="session/b", importance_score=0.9, created_at=now)
    )
    results = await backend.search("reminder")
    assert [r.memory_id for r in results[:2]] == [high.id, low.id]


# Read


@pytest.mark.asyncio
async def test_read_path_joins_records(backend: MemoryBackend):
    result = await backend.read_path("MEMORY.md")

    assert result.path == "MEMORY.md"
    assert "\n\n---\n\n" in result.text
    assert result.text.startswith("## Storage decision")
    assert "## Travel preferences" in result.text

    for memory in await backend.store.list_by_source_path("MEMORY.md"):
        assert memory.access_count == 1


@pytest.mark.asyncio
async def test_read_path_line_range(backend: MemoryBackend):
    result = await backend.read_path("MEMORY.md", from_line=2, lines=1)
    assert result.text == "We decided to keep SQLite for local storage because it needs zero administration."


@pytest.mark.asyncio
async def test_read_path_falls_back_to_file(backend: MemoryBackend, settings: Settings):
    """Paths with no records are read from the workspace."""
    (settings.workspace_dir / "notes.txt").write_text("line one\nline two\n", encoding="utf-8")
    result = await backend.read_path("notes.txt", from_line=2, lines=1)
    assert result.text == "line two"


@pytest.mark.asyncio
async def test_read_path_missing(backend: MemoryBackend):
    result = await backend.read_path("memory/nope.md")
    assert result.text == ""
    assert result.path == "memory/nope.md"


@pytest.mark.asyncio
async def test_read_path_stays_in_workspace(backend: MemoryBackend, settings: Settings):
    secret = settings.workspace_dir.parent / "secret.txt"
    secret.write_text("do not leak", encoding="utf-8")
    result = await backend.read_path("../secret.txt")
    assert result.text == ""


# Sync, compaction, status


@pytest.mark.asyncio
async def test_sync_report(backend: MemoryBackend, settings: Settings):
    (settings.workspace_dir / "memory" / "2026-01-05.md").write_text(
        "## Standup\nDiscussed the release checklist and assigned owners for each open item.\n",
        encoding="utf-8",
    )

    report = await backend.sync(reason="test")

    assert report.added == 1
    assert report.unchanged == 2
    assert report.errors == 0
    assert report.rescored == 3
    assert report.compaction.created == 0


@pytest.mark.asyncio
async def test_sync_reports_corrupt_record_as_error(backend: MemoryBackend, settings: Settings):
    """One bad row fails its own file and the rescoring step, not the whole sync."""
    await backend.store.conn.execute(
        "UPDATE memories SET related_memories = ? WHERE source_path = ?", ("{not json", "MEMORY.md")
    )
    await backend.store.conn.commit()
    (settings.workspace_dir / "memory" / "2026-01-05.md").write_text(
        "## Standup\nDiscussed the release checklist and assigned owners for each open item.\n",
        encoding="utf-8",
    )

    report = await backend.sync(reason="test")

    assert report.added == 1
    assert report.errors == 2
    assert report.rescored == 0
    assert len(await backend.store.list_by_source_path("memory/2026-01-05.md")) == 1


@pytest.mark.asyncio
async def test_writers_require_open(settings: Settings):
    """Jobs submitted before open() fail fast instead of waiting forever."""
    memory_backend = MemoryBackend(settings)
    with pytest.raises(RuntimeError, match="not started"):
        await asyncio.wait_for(memory_backend.sync(), timeout=2)
    with pytest.raises(RuntimeError, match="not started"):
        await asyncio.wait_for(memory_backend.compact(), timeout=2)
    with pytest.raises(RuntimeError, match="not started"):
        await asyncio.wait_for(memory_backend.recalculate(), timeout=2)


@pytest.mark.asyncio
async def test_compact_through_backend(backend: MemoryBackend):
    monday = datetime(2026, 1, 5, 9, 0)
    for i in range(5):
        await backend.store.create(
            NewMemory(
                content=f"Session log {i}",
                source_path="session/log",
                created_at=monday + timedelta(days=i),
            )
        )

    result = await backend.compact(now=monday + timedelta(days=20))

    assert result.created == 1
    summaries = await backend.store.list_by_source_path("memory/summaries/week-2026-W02.md")
    assert len(summaries) == 1


@pytest.mark.asyncio
async def test_status(backend: MemoryBackend, settings: Settings):
    status = await backend.status()

    assert status.total_memories == 2
    assert status.by_type["decision"] == 1
    assert status.by_type["preference"] == 1
    assert status.workspace_dir == settings.workspace_dir
    assert status.watching is False
    assert status.avg_importance == pytest.approx(0.5)
    assert status.oldest is not None


@pytest.mark.asyncio
async def test_close_is_idempotent(settings: Settings):
    memory_backend = MemoryBackend(settings)
    await memory_backend.open(watch=False)
    await memory_backend.close()
    await memory_backend.close()

    assert memory_backend.closed
    assert await memory_backend.search("SQLite") == []
    assert (await memory_backend.read_path("MEMORY.md")).text == ""
    assert (await memory_backend.sync()).added == 0
    status = await memory_backend.status()
    assert status.total_memories == 0
    assert status.top_tags == []
    assert status.watching is False


@pytest.mark.asyncio
async def test_context_manager(settings: Settings):
    async with MemoryBackend(settings) as memory_backend:
        assert await memory_backend.store.count() == 2
    assert memory_backend.closed


@pytest.mark.asyncio
async def test_watch_picks_up_new_file(settings: Settings):
    """A file written while watching is reconciled without an explicit sync."""
    memory_backend = MemoryBackend(settings)
    await memory_backend.open(watch=True)
    try:
        assert memory_backend.watcher.watching
        (settings.workspace_dir / "memory" / "2026-02-01.md").write_text(
            "## TODO\nRenew the TLS certificates before the end of the month on both hosts.\n",
            encoding="utf-8",
        )

        async def wait_for_record():
            while not await memory_backend.store.list_by_source_path("memory/2026-02-01.md"):
                await asyncio.sleep(0.02)

        await asyncio.wait_for(wait_for_record(), timeout=3)
    finally:
        await memory_backend.close()
