"""Memory backend - search/read/sync/status facade over the structured store.

Reconciliation, compaction and importance recalculation all run as jobs on
one TaskQueue, so a debounced file-watch pass can never interleave with a
manual sync.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path

from cairn.core.config import Settings
from cairn.core.logging import get_logger
from cairn.core.queue import TaskQueue
from cairn.memory.base import AccessAction, MemoryType, OrderBy, SearchFilters
from cairn.memory.compaction import CompactionPipeline, CompactionResult
from cairn.memory.markdown import MarkdownReconciler, SyncResult
from cairn.memory.scoring import RelevanceScorer
from cairn.memory.store import SQLiteMemoryStore
from cairn.memory.summarizer import Summarizer, generate_summary
from cairn.memory.watcher import MarkdownWatcher

logger = get_logger("memory.backend")

ELLIPSIS = "..."
RECORD_SEPARATOR = "\n\n---\n\n"
CANDIDATE_FACTOR = 4  # store candidates fetched per requested result
TOP_TAGS = 5


@dataclass
class SearchResult:
    """One ranked hit."""

    path: str
    start_line: int
    end_line: int
    score: float
    snippet: str
    memory_id: str
    memory_type: MemoryType


@dataclass
class ReadResult:
    text: str
    path: str


@dataclass
class SyncReport:
    """Outcome of reconcile → compact → recalculate."""

    added: int = 0
    updated: int = 0
    removed: int = 0
    unchanged: int = 0
    errors: int = 0
    compaction: CompactionResult = field(default_factory=CompactionResult)
    rescored: int = 0

    @classmethod
    def from_results(
        cls, sync: SyncResult, compaction: CompactionResult, rescored: int
    ) -> "SyncReport":
        return cls(
            added=sync.added,
            updated=sync.updated,
            removed=sync.removed,
            unchanged=sync.unchanged,
            errors=sync.errors + compaction.errors,
            compaction=compaction,
            rescored=rescored,
        )


@dataclass
class BackendStatus:
    total_memories: int
    by_type: dict[str, int]
    tag_count: int
    top_tags: list[str]
    avg_importance: float
    workspace_dir: Path
    fts_enabled: bool
    watching: bool
    oldest: datetime | None = None
    newest: datetime | None = None


def snippet_window(content: str, query: str, max_chars: int = 700, before: int = 200) -> tuple[int, int]:
    """[start, end) offsets of the snippet around the first case-insensitive match."""
    if len(content) <= max_chars:
        return 0, len(content)
    index = content.lower().find(query.lower()) if query else -1
    if index == -1:
        return 0, max_chars
    start = max(0, index - before)
    end = min(len(content), index + len(query) + (max_chars - before))
    return start, end


def extract_snippet(content: str, query: str, max_chars: int = 700, before: int = 200) -> str:
    """Fixed-width window around the query, with ellipsis at truncated edges."""
    start, end = snippet_window(content, query, max_chars, before)
    snippet = content[start:end]
    if start > 0:
        snippet = ELLIPSIS + snippet
    if end < len(content):
        snippet = snippet + ELLIPSIS
    return snippet


def slice_lines(text: str, from_line: int | None = None, lines: int | None = None) -> str:
    """1-based line range; either bound may be omitted."""
    if from_line is None and lines is None:
        return text
    all_lines = text.split("\n")
    start = max(0, (from_line or 1) - 1)
    end = start + lines if lines is not None else len(all_lines)
    return "\n".join(all_lines[start:end])


class MemoryBackend:
    """Structured memory backend consumed by the agent runtime."""

    def __init__(
        self,
        settings: Settings,
        store: SQLiteMemoryStore | None = None,
        summarizer: Summarizer = generate_summary,
    ):
        self.settings = settings
        self.workspace_dir = settings.workspace_dir
        self.store = store or SQLiteMemoryStore(settings.db_path)
        self.scorer = RelevanceScorer(settings.query, settings.importance)
        self.compaction = CompactionPipeline(self.store, settings.compression, summarizer)
        self.reconciler = MarkdownReconciler(self.store, self.workspace_dir, settings.sync)
        self.watcher = MarkdownWatcher(self.workspace_dir, settings.sync, self._on_files_changed)
        self.queue = TaskQueue()
        self._closed = False

    async def __aenter__(self) -> "MemoryBackend":
        await self.open()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def open(self, initial_sync: bool = True, watch: bool | None = None) -> None:
        """Connect, start the job queue, reconcile once and optionally start watching."""
        await self.store.connect()
        await self.queue.start()
        if initial_sync:
            try:
                await self.queue.submit("initial-sync", self.reconciler.reconcile)
            except Exception as e:
                logger.error(f"Initial sync failed: {e}")
        if watch is None:
            watch = self.settings.sync.enabled and self.settings.sync.watch_files
        if watch:
            await self.watcher.start()
        logger.info(f"Memory backend ready for {self.workspace_dir}")

    async def close(self) -> None:
        """Stop watching, drain queued jobs, then release the connection."""
        if self._closed:
            return
        self._closed = True
        await self.watcher.stop()
        await self.queue.stop()
        await self.store.close()
        logger.debug("Memory backend closed")

    @property
    def closed(self) -> bool:
        return self._closed

    # Search and read

    async def search(
        self,
        query: str,
        max_results: int | None = None,
        min_score: float | None = None,
    ) -> list[SearchResult]:
        """Ranked, snippet-extracted, access-logged search."""
        if self._closed:
            return []

        limit = max_results or self.settings.query.default_limit
        query = query.strip()
        candidates = await self.store.search(
            SearchFilters(
                query=query or None,
                order_by=OrderBy.RELEVANCE,
                limit=limit * CANDIDATE_FACTOR,
            )
        )

        now = datetime.now()
        scored = [(self.scorer.score(m, query, now), m) for m in candidates]
        if min_score is not None:
            scored = [(score, m) for score, m in scored if score >= min_score]
        scored.sort(key=lambda pair: pair[0], reverse=True)

        results = []
        for score, memory in scored[:limit]:
            start, end = snippet_window(
                memory.content,
                query,
                self.settings.query.snippet_chars,
                self.settings.query.snippet_before,
            )
            start_line = memory.content.count("\n", 0, start) + 1
            results.append(
                SearchResult(
                    path=memory.source_path,
                    start_line=start_line,
                    end_line=start_line + memory.content.count("\n", start, end),
                    score=score,
                    snippet=extract_snippet(
                        memory.content,
                        query,
                        self.settings.query.snippet_chars,
                        self.settings.query.snippet_before,
                    ),
                    memory_id=memory.id,
                    memory_type=memory.memory_type,
                )
            )
            await self.store.record_access(memory.id, AccessAction.SEARCH, query=query or None)

        logger.debug(f"Search {query!r}: {len(results)} of {len(candidates)} candidates")
        return results

    async def read_path(
        self,
        rel_path: str,
        from_line: int | None = None,
        lines: int | None = None,
    ) -> ReadResult:
        """All records of a logical path, joined; falls back to the file on disk."""
        if self._closed:
            return ReadResult(text="", path=rel_path)

        memories = await self.store.list_by_source_path(rel_path)
        if not memories:
            return await self._read_from_filesystem(rel_path, from_line, lines)

        for memory in memories:
            await self.store.record_access(memory.id, AccessAction.READ)
        text = RECORD_SEPARATOR.join(m.content for m in memories)
        return ReadResult(text=slice_lines(text, from_line, lines), path=rel_path)

    async def _read_from_filesystem(
        self, rel_path: str, from_line: int | None, lines: int | None
    ) -> ReadResult:
        root = self.workspace_dir.resolve()
        abs_path = (root / rel_path).resolve()
        if not abs_path.is_relative_to(root):
            logger.warning(f"Refusing to read outside workspace: {rel_path}")
            return ReadResult(text="", path=rel_path)
        try:
            text = await asyncio.to_thread(abs_path.read_text, encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            logger.debug(f"Fallback read failed for {rel_path}: {e}")
            return ReadResult(text="", path=rel_path)
        return ReadResult(text=slice_lines(text, from_line, lines), path=rel_path)

    # Writers - always through the queue

    async def sync(self, reason: str | None = None) -> SyncReport:
        """Reconcile Markdown, compact, recalculate importance."""
        if self._closed:
            return SyncReport()
        logger.debug(f"Starting sync (reason: {reason})")
        return await self.queue.submit("sync", self._sync_job)

    async def _sync_job(self) -> SyncReport:
        reconciled = await self.reconciler.reconcile()
        compacted = await self.compaction.compact()
        rescore_errors = 0
        try:
            rescored = await self.scorer.recalculate(self.store)
        except Exception as e:
            logger.error(f"Importance recalculation failed: {e}")
            rescored, rescore_errors = 0, 1
        report = SyncReport.from_results(reconciled, compacted, rescored)
        report.errors += rescore_errors
        logger.info(
            f"Sync complete: {report.added} added, {report.updated} updated, "
            f"{report.removed} removed, {report.unchanged} unchanged, {report.errors} errors"
        )
        return report

    async def compact(self, now: datetime | None = None) -> CompactionResult:
        if self._closed:
            return CompactionResult()
        return await self.queue.submit("compact", lambda: self.compaction.compact(now))

    async def recalculate(self, now: datetime | None = None) -> int:
        if self._closed:
            return 0
        return await self.queue.submit("recalculate", lambda: self.scorer.recalculate(self.store, now))

    def _on_files_changed(self) -> None:
        """Debounce expiry: queue a reconciliation pass."""
        if self._closed:
            return
        future = self.queue.submit_nowait("watch-reconcile", self.reconciler.reconcile)
        future.add_done_callback(_log_job_failure)

    # Status

    async def status(self) -> BackendStatus:
        """Aggregate counts and top tags."""
        if self._closed:
            return BackendStatus(
                total_memories=0,
                by_type={t.value: 0 for t in MemoryType},
                tag_count=0,
                top_tags=[],
                avg_importance=0.0,
                workspace_dir=self.workspace_dir,
                fts_enabled=False,
                watching=False,
            )
        stats = await self.store.stats()
        tags = await self.store.all_tags()
        return BackendStatus(
            total_memories=stats.total_memories,
            by_type={t.value: n for t, n in stats.by_type.items()},
            tag_count=stats.total_tags,
            top_tags=[t.name for t in tags[:TOP_TAGS]],
            avg_importance=stats.avg_importance,
            workspace_dir=self.workspace_dir,
            fts_enabled=self.store.fts_enabled,
            watching=self.watcher.watching,
            oldest=stats.oldest,
            newest=stats.newest,
        )


def _log_job_failure(future: asyncio.Future) -> None:
    if future.cancelled():
        return
    error = future.exception()
    if error is not None:
        logger.error(f"Scheduled sync failed: {error}")
