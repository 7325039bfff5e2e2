"""
Memory data model and store interface.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class MemoryType(Enum):
    NOTE = "note"
    SUMMARY = "summary"
    ARCHIVE = "archive"
    DECISION = "decision"
    PREFERENCE = "preference"
    TODO = "todo"


class ImportanceLevel(Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @classmethod
    def from_score(cls, score: float) -> "ImportanceLevel":
        """Coarse bucket for a score in [0, 1]."""
        if score > 0.8:
            return cls.CRITICAL
        if score > 0.6:
            return cls.HIGH
        if score > 0.4:
            return cls.MEDIUM
        return cls.LOW


class AccessAction(Enum):
    SEARCH = "search"
    READ = "read"
    WRITE = "write"
    UPDATE = "update"


class OrderBy(Enum):
    IMPORTANCE = "importance"
    RECENCY = "recency"
    RELEVANCE = "relevance"  # importance, then recency as tie-break


class CompressionLevel:
    ORIGINAL = 0
    WEEKLY = 1
    MONTHLY = 2


@dataclass
class Memory:
    """Single memory record."""

    id: str
    content: str
    source_path: str
    memory_type: MemoryType
    importance_level: ImportanceLevel
    importance_score: float  # 0-1, decays over time
    created_at: datetime
    updated_at: datetime
    summary: str | None = None
    tags: list[str] = field(default_factory=list)
    accessed_at: datetime | None = None
    access_count: int = 0
    compression_level: int = CompressionLevel.ORIGINAL
    compressed_from: list[str] | None = None  # set only on compaction output
    related_memories: list[str] | None = None
    source_session_id: str | None = None
    source_channel: str | None = None

    @property
    def is_generated(self) -> bool:
        """True for records produced by compaction rather than ingestion."""
        return self.compressed_from is not None


@dataclass
class NewMemory:
    """Fields accepted when creating a memory. Id and bookkeeping are assigned by the store."""

    content: str
    source_path: str
    memory_type: MemoryType = MemoryType.NOTE
    importance_score: float = 0.5
    importance_level: ImportanceLevel | None = None  # derived from score when omitted
    summary: str | None = None
    tags: list[str] = field(default_factory=list)
    compression_level: int = CompressionLevel.ORIGINAL
    compressed_from: list[str] | None = None
    related_memories: list[str] | None = None
    source_session_id: str | None = None
    source_channel: str | None = None
    created_at: datetime | None = None  # defaults to now


@dataclass
class Tag:
    """Tag catalogue entry with denormalized membership count."""

    id: int
    name: str
    created_at: datetime
    memory_count: int = 0
    color: str | None = None
    description: str | None = None


@dataclass
class AccessLogEntry:
    """Append-only access record, feeds importance scoring."""

    id: int
    memory_id: str
    accessed_at: datetime
    action: AccessAction
    query: str | None = None


@dataclass
class Relation:
    """Directed edge between two memories."""

    source_id: str
    target_id: str
    relation_type: str
    created_at: datetime


@dataclass
class SearchFilters:
    """Filters for store search. Empty filters return the most important/recent records."""

    query: str | None = None
    tags: list[str] | None = None  # any-of
    memory_type: MemoryType | None = None
    min_importance: float | None = None
    created_after: datetime | None = None
    created_before: datetime | None = None
    order_by: OrderBy = OrderBy.RELEVANCE
    limit: int | None = None  # None = store default page size
    offset: int = 0


@dataclass
class StoreStats:
    """Aggregate counts for observability."""

    total_memories: int
    by_type: dict[MemoryType, int]
    total_tags: int
    avg_importance: float
    oldest: datetime | None = None
    newest: datetime | None = None


class MemoryStore(ABC):
    """Abstract memory storage interface.

    Every write is individually atomic. No transaction spans several calls.
    """

    @abstractmethod
    async def create(self, memory: NewMemory) -> Memory:
        """Store a new memory, return it with id and timestamps assigned."""
        ...

    @abstractmethod
    async def get(self, memory_id: str) -> Memory | None:
        """Get specific memory by ID."""
        ...

    @abstractmethod
    async def update(self, memory_id: str, **fields: Any) -> Memory | None:
        """Partially update a memory. Returns None if it does not exist."""
        ...

    @abstractmethod
    async def delete(self, memory_id: str) -> bool:
        """Delete memory with its tag links, access log and relations."""
        ...

    @abstractmethod
    async def record_access(
        self,
        memory_id: str,
        action: AccessAction,
        query: str | None = None,
        now: datetime | None = None,
    ) -> bool:
        """Log an access and bump access stats. Returns False for unknown ids."""
        ...

    @abstractmethod
    async def search(self, filters: SearchFilters | None = None) -> list[Memory]:
        """Filtered, ordered page of memories."""
        ...

    @abstractmethod
    async def list_for_compaction(
        self,
        older_than: datetime,
        max_level: int,
        min_level: int = 0,
        include_summaries: bool = False,
        limit: int = 1000,
    ) -> list[Memory]:
        """Compaction candidates, oldest first."""
        ...
