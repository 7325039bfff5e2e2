"""Tests for relevance and importance scoring."""

from datetime import datetime, timedelta
from pathlib import Path

import pytest

from cairn.core.config import ImportanceConfig, QueryConfig
from cairn.memory.base import ImportanceLevel, Memory, MemoryType, NewMemory
from cairn.memory.scoring import (
    RelevanceScorer,
    age_in_days,
    decayed_score,
    query_score,
    recency,
    text_match,
)
from cairn.memory.store import SQLiteMemoryStore

NOW = datetime(2026, 3, 1, 12, 0)


def make_memory(
    content: str = "notes about the garden",
    score: float = 0.5,
    age_days: float = 0,
    access_count: int = 0,
) -> Memory:
    created = NOW - timedelta(days=age_days)
    return Memory(
        id="m-1",
        content=content,
        source_path="MEMORY.md",
        memory_type=MemoryType.NOTE,
        importance_level=ImportanceLevel.from_score(score),
        importance_score=score,
        created_at=created,
        updated_at=created,
        access_count=access_count,
    )


@pytest.fixture
def scorer() -> RelevanceScorer:
    return RelevanceScorer(QueryConfig(), ImportanceConfig())


@pytest.fixture
async def memory_store(tmp_path: Path):
    """Create a temporary memory store."""
    store = SQLiteMemoryStore(tmp_path / "test.db")
    await store.connect()
    yield store
    await store.close()


def test_recency_curve():
    assert recency(0) == 1.0
    assert recency(15) == pytest.approx(0.5)
    assert recency(30) == 0.0
    assert recency(400) == 0.0


def test_age_never_negative():
    """Records stamped in the future count as brand new."""
    assert age_in_days(NOW + timedelta(days=2), NOW) == 0.0
    assert age_in_days(NOW - timedelta(hours=36), NOW) == pytest.approx(1.5)


def test_text_match_token_coverage():
    assert text_match("Deploy the API to staging", "api staging") == 1.0
    assert text_match("Deploy the API to staging", "api production") == 0.5
    assert text_match("anything", "") == 0.0
    assert text_match("anything", "   ") == 0.0


def test_query_score_blend():
    """Fresh record, full match: every term at its maximum."""
    score = query_score(importance=1.0, age_days=0, match=1.0, importance_weight=0.3, recency_weight=0.2)
    assert score == pytest.approx(1.0)

    score = query_score(importance=0.5, age_days=15, match=0.0, importance_weight=0.3, recency_weight=0.2)
    assert score == pytest.approx(0.5 * 0.3 + 0.5 * 0.2)


@pytest.mark.parametrize("importance_weight,recency_weight", [(0.0, 0.0), (0.3, 0.2), (1.0, 0.0), (0.5, 0.5)])
@pytest.mark.parametrize("importance,age,match", [(0.0, 100, 0.0), (1.0, 0, 1.0), (0.7, 12, 0.5)])
def test_query_score_within_unit_interval(importance_weight, recency_weight, importance, age, match):
    score = query_score(importance, age, match, importance_weight, recency_weight)
    assert 0.0 <= score <= 1.0


def test_decay_example():
    """A 0.9 note, 40 days old and never accessed, falls below 0.9."""
    score = decayed_score(
        score=0.9, age_days=40, access_count=0, decay_factor=0.95, access_boost=0.05, recency_boost=0.1
    )
    assert score < 0.9
    assert score == pytest.approx(0.9 * 0.95**40)


def test_decay_is_clamped():
    """Heavy access cannot push a score past 1."""
    score = decayed_score(
        score=0.9, age_days=0, access_count=100, decay_factor=0.95, access_boost=0.05, recency_boost=0.1
    )
    assert score == 1.0


def test_scorer_prefers_matching_text(scorer: RelevanceScorer):
    matching = make_memory(content="Quarterly budget review with finance")
    other = make_memory(content="Dentist appointment on Friday")
    assert scorer.score(matching, "budget review", NOW) > scorer.score(other, "budget review", NOW)


def test_scorer_includes_summary(scorer: RelevanceScorer):
    memory = make_memory(content="Long meeting transcript")
    memory.summary = "Agreed on the migration plan"
    assert scorer.score(memory, "migration", NOW) > scorer.score(make_memory(content="Long meeting transcript"), "migration", NOW)


def test_recalculated_decreases_day_over_day(scorer: RelevanceScorer):
    """Past the recency window, an unaccessed memory loses importance every day."""
    memory = make_memory(score=0.8, age_days=31)
    previous = memory.importance_score
    for day in range(10):
        current = scorer.recalculated(memory, NOW + timedelta(days=day))
        assert current < previous
        previous = current


@pytest.mark.asyncio
async def test_recalculate_store(memory_store: SQLiteMemoryStore, scorer: RelevanceScorer):
    """Recalculation rewrites scores and levels for every record."""
    created = await memory_store.create(
        NewMemory(
            content="Old important note",
            source_path="MEMORY.md",
            importance_score=0.9,
            created_at=NOW - timedelta(days=40),
        )
    )

    assert await scorer.recalculate(memory_store, NOW) == 1

    retrieved = await memory_store.get(created.id)
    assert retrieved.importance_score < 0.9
    assert retrieved.importance_level == ImportanceLevel.from_score(retrieved.importance_score)
    assert retrieved.updated_at == created.updated_at


@pytest.mark.asyncio
async def test_recalculate_disabled(memory_store: SQLiteMemoryStore):
    scorer = RelevanceScorer(QueryConfig(), ImportanceConfig(enabled=False))
    await memory_store.create(NewMemory(content="untouched", source_path="MEMORY.md"))
    assert await scorer.recalculate(memory_store, NOW) == 0


def test_manual_boost_for_pinned_memories(scorer: RelevanceScorer):
    """Memories tagged important are multiplied by manual_boost, still capped at 1."""
    plain = make_memory(score=0.4, age_days=40)
    pinned = make_memory(score=0.4, age_days=40)
    pinned.tags = ["important"]

    assert scorer.recalculated(pinned, NOW) == pytest.approx(scorer.recalculated(plain, NOW) * 1.5)

    pinned.importance_score = 1.0
    pinned.created_at = NOW
    assert scorer.recalculated(pinned, NOW) == 1.0
