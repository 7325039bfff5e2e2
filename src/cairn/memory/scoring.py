"""Relevance and importance scoring.

Two independent computations share the same recency curve:

- query time: blend of stored importance, recency and query-token coverage
- background: forgetting-curve decay plus access and recency boosts
"""

from datetime import datetime
from typing import TYPE_CHECKING

from cairn.core.config import ImportanceConfig, QueryConfig
from cairn.core.logging import get_logger

if TYPE_CHECKING:
    from cairn.memory.base import Memory
    from cairn.memory.store import SQLiteMemoryStore

logger = get_logger("memory.scoring")

DAY_SECONDS = 24 * 60 * 60
RECENCY_WINDOW_DAYS = 30
MANUAL_TAG = "important"  # user-pinned memories get manual_boost


def clamp01(value: float) -> float:
    """Clamp to [0, 1]."""
    return min(1.0, max(0.0, value))


def age_in_days(created_at: datetime, now: datetime) -> float:
    """Fractional age, never negative."""
    return max(0.0, (now - created_at).total_seconds() / DAY_SECONDS)


def recency(age_days: float) -> float:
    """Linear falloff from 1 (brand new) to 0 at thirty days."""
    return max(0.0, 1.0 - age_days / RECENCY_WINDOW_DAYS)


def text_match(text: str, query: str) -> float:
    """Fraction of whitespace-delimited query tokens found as substrings of text."""
    tokens = query.lower().split()
    if not tokens:
        return 0.0
    haystack = text.lower()
    return sum(1 for token in tokens if token in haystack) / len(tokens)


def query_score(
    importance: float,
    age_days: float,
    match: float,
    importance_weight: float,
    recency_weight: float,
) -> float:
    """importance·Wi + recency·Wr + match·(1 - Wi - Wr), clamped to [0, 1]."""
    score = (
        importance * importance_weight
        + recency(age_days) * recency_weight
        + match * (1.0 - importance_weight - recency_weight)
    )
    return clamp01(score)


def decayed_score(
    score: float,
    age_days: float,
    access_count: int,
    decay_factor: float,
    access_boost: float,
    recency_boost: float,
) -> float:
    """score·decay^age + accesses·access_boost + recency·recency_boost, clamped to [0, 1]."""
    return clamp01(
        score * decay_factor**age_days
        + access_count * access_boost
        + recency(age_days) * recency_boost
    )


class RelevanceScorer:
    """Applies the configured weights to memories."""

    def __init__(self, query: QueryConfig, importance: ImportanceConfig):
        self.query = query
        self.importance = importance

    def score(self, memory: "Memory", query: str, now: datetime | None = None) -> float:
        """Query-time score for one candidate."""
        now = now or datetime.now()
        text = memory.content if not memory.summary else f"{memory.content}\n{memory.summary}"
        return query_score(
            importance=memory.importance_score,
            age_days=age_in_days(memory.created_at, now),
            match=text_match(text, query),
            importance_weight=self.query.importance_weight,
            recency_weight=self.query.recency_weight,
        )

    def recalculated(self, memory: "Memory", now: datetime | None = None) -> float:
        """Background score for one memory at ``now``."""
        now = now or datetime.now()
        score = decayed_score(
            score=memory.importance_score,
            age_days=age_in_days(memory.created_at, now),
            access_count=memory.access_count,
            decay_factor=self.importance.decay_factor,
            access_boost=self.importance.access_boost,
            recency_boost=self.importance.recency_boost,
        )
        if MANUAL_TAG in memory.tags:
            score = clamp01(score * self.importance.manual_boost)
        return score

    async def recalculate(self, store: "SQLiteMemoryStore", now: datetime | None = None) -> int:
        """Rescore every memory in the store. Returns how many were rescored."""
        if not self.importance.enabled:
            return 0
        now = now or datetime.now()
        memories = await store.list_all()
        count = await store.apply_scores((m.id, self.recalculated(m, now)) for m in memories)
        logger.debug(f"Recalculated importance scores for {count} memories")
        return count
