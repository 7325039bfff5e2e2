"""Compaction pipeline - folds aging memories into coarser summaries and archives cold ones.

Each record moves one way through the stages:

    level 0 (original) --weekly--> level 1 --monthly--> level 2 --archive--> type archive

Weekly compaction keeps its sources (marked level 1). Monthly compaction
deletes its sources: the monthly summary becomes the canonical record.
Groups are processed independently and nothing is rolled back.
"""

import asyncio
import inspect
from collections import defaultdict
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime

from cairn.core.config import CompressionConfig
from cairn.core.errors import TransientIOError
from cairn.core.logging import get_logger
from cairn.memory.base import CompressionLevel, Memory, MemoryType, NewMemory
from cairn.memory.store import SQLiteMemoryStore
from cairn.memory.summarizer import Granularity, Summarizer, generate_summary

logger = get_logger("memory.compaction")

SUMMARY_DIR = "memory/summaries"


@dataclass
class CompactionResult:
    """Aggregate counts of one compaction pass."""

    created: int = 0
    archived: int = 0
    deleted: int = 0
    errors: int = 0

    def __add__(self, other: "CompactionResult") -> "CompactionResult":
        return CompactionResult(
            created=self.created + other.created,
            archived=self.archived + other.archived,
            deleted=self.deleted + other.deleted,
            errors=self.errors + other.errors,
        )


def week_key(created_at: datetime) -> str:
    """ISO-8601 week bucket, e.g. "2026-W03" (Monday start, Thursday rule for week 1)."""
    iso_year, iso_week, _ = created_at.isocalendar()
    return f"{iso_year}-W{iso_week:02d}"


def month_key(created_at: datetime) -> str:
    """Calendar month bucket, e.g. "2026-01"."""
    return f"{created_at.year}-{created_at.month:02d}"


def group_by(memories: Sequence[Memory], key) -> dict[str, list[Memory]]:
    """Bucket memories by a key of their creation time, preserving order."""
    groups: dict[str, list[Memory]] = defaultdict(list)
    for memory in memories:
        groups[key(memory.created_at)].append(memory)
    return dict(groups)


class CompactionPipeline:
    """Runs the weekly, monthly and archive stages against a store."""

    def __init__(
        self,
        store: SQLiteMemoryStore,
        config: CompressionConfig,
        summarizer: Summarizer = generate_summary,
    ):
        self.store = store
        self.config = config
        self.summarizer = summarizer

    async def compact(self, now: datetime | None = None) -> CompactionResult:
        """Run all three stages. Never raises for per-group failures."""
        if not self.config.enabled:
            return CompactionResult()

        now = now or datetime.now()
        result = CompactionResult()
        for stage in (self.compact_weekly, self.compact_monthly, self.archive):
            try:
                result += await stage(now)
            except Exception as e:
                logger.error(f"Compaction stage {stage.__name__} failed: {e}")
                result.errors += 1

        logger.info(
            f"Compaction complete: {result.created} created, {result.archived} archived, "
            f"{result.deleted} deleted, {result.errors} errors"
        )
        return result

    async def compact_weekly(self, now: datetime) -> CompactionResult:
        """Summarize level-0 records per ISO week; sources are kept and marked level 1."""
        result = CompactionResult()
        candidates = await self.store.list_for_compaction(
            older_than=now - self.config.weekly_age,
            max_level=CompressionLevel.ORIGINAL,
            min_level=CompressionLevel.ORIGINAL,
            limit=self.config.batch_limit,
        )

        for key, group in group_by(candidates, week_key).items():
            if len(group) < self.config.min_memories_for_summary:
                logger.debug(f"Week {key}: {len(group)} memories, below minimum")
                continue
            try:
                summary = await self._summarize(group, Granularity.WEEKLY)
                if not summary:
                    logger.debug(f"Week {key}: summarizer returned nothing, skipping")
                    continue
                await self.store.create(
                    NewMemory(
                        content=summary,
                        source_path=f"{SUMMARY_DIR}/week-{key}.md",
                        memory_type=MemoryType.SUMMARY,
                        importance_score=max(m.importance_score for m in group),
                        tags=["weekly-summary", "auto-generated"],
                        compressed_from=[m.id for m in group],
                        compression_level=CompressionLevel.WEEKLY,
                    )
                )
                result.created += 1
                for memory in group:
                    await self.store.update(memory.id, compression_level=CompressionLevel.WEEKLY)
            except Exception as e:
                logger.error(f"Failed to create weekly summary for {key}: {e}")
                result.errors += 1

        return result

    async def compact_monthly(self, now: datetime) -> CompactionResult:
        """Summarize level-1 records per calendar month; sources are deleted."""
        result = CompactionResult()
        candidates = await self.store.list_for_compaction(
            older_than=now - self.config.monthly_age,
            max_level=CompressionLevel.WEEKLY,
            min_level=CompressionLevel.WEEKLY,
            include_summaries=True,
            limit=self.config.batch_limit,
        )

        for key, group in group_by(candidates, month_key).items():
            if len(group) < self.config.min_memories_for_monthly:
                logger.debug(f"Month {key}: {len(group)} memories, below minimum")
                continue
            try:
                summary = await self._summarize(group, Granularity.MONTHLY)
                if not summary:
                    logger.debug(f"Month {key}: summarizer returned nothing, skipping")
                    continue
                await self.store.create(
                    NewMemory(
                        content=summary,
                        source_path=f"{SUMMARY_DIR}/month-{key}.md",
                        memory_type=MemoryType.SUMMARY,
                        importance_score=max(m.importance_score for m in group),
                        tags=["monthly-summary", "auto-generated"],
                        compressed_from=[m.id for m in group],
                        compression_level=CompressionLevel.MONTHLY,
                    )
                )
                result.created += 1
                for memory in group:
                    if await self.store.delete(memory.id):
                        result.deleted += 1
            except Exception as e:
                logger.error(f"Failed to create monthly summary for {key}: {e}")
                result.errors += 1

        return result

    async def archive(self, now: datetime) -> CompactionResult:
        """Retype cold level-2 records as archive, in place."""
        result = CompactionResult()
        cutoff = now - self.config.archive_age
        candidates = await self.store.list_for_compaction(
            older_than=cutoff,
            max_level=CompressionLevel.MONTHLY,
            min_level=CompressionLevel.MONTHLY,
            include_summaries=True,
            limit=self.config.batch_limit,
        )

        for memory in candidates:
            if memory.memory_type == MemoryType.ARCHIVE:
                continue
            if memory.accessed_at and memory.accessed_at > cutoff:
                continue  # still in use
            try:
                await self.store.update(memory.id, memory_type=MemoryType.ARCHIVE)
                result.archived += 1
            except Exception as e:
                logger.error(f"Failed to archive memory {memory.id}: {e}")
                result.errors += 1

        return result

    async def _summarize(self, group: list[Memory], granularity: Granularity) -> str | None:
        """Call the summarizer, bounded by the configured timeout."""
        if inspect.iscoroutinefunction(self.summarizer):
            outcome = self.summarizer(group, granularity)
        else:
            # Blocking summarizers run off the loop so the timeout still applies
            outcome = asyncio.to_thread(self.summarizer, group, granularity)
        try:
            summary = await asyncio.wait_for(outcome, timeout=self.config.summary_timeout)
            if inspect.isawaitable(summary):
                summary = await asyncio.wait_for(summary, timeout=self.config.summary_timeout)
            return summary
        except asyncio.TimeoutError as e:
            raise TransientIOError(
                f"{granularity.value} summary timed out after {self.config.summary_timeout}s"
            ) from e
