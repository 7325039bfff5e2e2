"""SQLite entity store with tag catalogue, access log, relations and FTS5 search."""

import asyncio
import contextlib
import json
import re
import sqlite3
from collections.abc import AsyncIterator, Iterable
from datetime import datetime
from pathlib import Path
from typing import Any
from uuid import uuid4

import aiosqlite

from cairn.core.errors import IntegrityError
from cairn.core.logging import get_logger
from cairn.memory.base import (
    AccessAction,
    AccessLogEntry,
    ImportanceLevel,
    Memory,
    MemoryStore,
    MemoryType,
    NewMemory,
    OrderBy,
    Relation,
    SearchFilters,
    StoreStats,
    Tag,
)
from cairn.memory.scoring import clamp01

logger = get_logger("memory.store")

DEFAULT_PAGE_SIZE = 10


def _adapt_datetime(dt: datetime) -> str:
    """Fixed-width ISO format so stored values compare correctly as text."""
    return dt.isoformat(timespec="microseconds")


def _convert_datetime(val: bytes) -> datetime:
    """Convert ISO format string from SQLite to datetime."""
    return datetime.fromisoformat(val.decode())


# Python 3.12+ no longer ships default datetime adapters
sqlite3.register_adapter(datetime, _adapt_datetime)
sqlite3.register_converter("DATETIME", _convert_datetime)

SCHEMA = """
CREATE TABLE IF NOT EXISTS memories (
    id TEXT PRIMARY KEY,
    content TEXT NOT NULL,
    summary TEXT,
    source_path TEXT NOT NULL,
    memory_type TEXT NOT NULL DEFAULT 'note',
    importance_level TEXT NOT NULL DEFAULT 'medium',
    importance_score REAL NOT NULL DEFAULT 0.5
        CHECK (importance_score >= 0 AND importance_score <= 1),
    created_at DATETIME NOT NULL,
    updated_at DATETIME NOT NULL,
    accessed_at DATETIME,
    access_count INTEGER NOT NULL DEFAULT 0,
    compressed_from TEXT,  -- JSON array of memory ids
    compression_level INTEGER NOT NULL DEFAULT 0,
    related_memories TEXT,  -- JSON array of memory ids
    source_session_id TEXT,
    source_channel TEXT
);

CREATE INDEX IF NOT EXISTS idx_memories_type ON memories(memory_type);
CREATE INDEX IF NOT EXISTS idx_memories_importance ON memories(importance_score DESC);
CREATE INDEX IF NOT EXISTS idx_memories_created ON memories(created_at DESC);
CREATE INDEX IF NOT EXISTS idx_memories_accessed ON memories(accessed_at DESC);
CREATE INDEX IF NOT EXISTS idx_memories_source ON memories(source_path);
CREATE INDEX IF NOT EXISTS idx_memories_compaction
    ON memories(compression_level, created_at);

-- Tag catalogue with denormalized membership count
CREATE TABLE IF NOT EXISTS tags (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT UNIQUE NOT NULL,
    color TEXT,
    description TEXT,
    created_at DATETIME NOT NULL,
    memory_count INTEGER NOT NULL DEFAULT 0
);

CREATE TABLE IF NOT EXISTS memory_tags (
    memory_id TEXT NOT NULL REFERENCES memories(id) ON DELETE CASCADE,
    tag_id INTEGER NOT NULL REFERENCES tags(id) ON DELETE CASCADE,
    PRIMARY KEY (memory_id, tag_id)
);

CREATE INDEX IF NOT EXISTS idx_memory_tags_tag ON memory_tags(tag_id);

-- Append-only access log for importance scoring
CREATE TABLE IF NOT EXISTS access_log (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    memory_id TEXT NOT NULL REFERENCES memories(id) ON DELETE CASCADE,
    accessed_at DATETIME NOT NULL,
    action TEXT NOT NULL DEFAULT 'read',
    query TEXT
);

CREATE INDEX IF NOT EXISTS idx_access_log_memory ON access_log(memory_id);
CREATE INDEX IF NOT EXISTS idx_access_log_time ON access_log(accessed_at DESC);

CREATE TABLE IF NOT EXISTS memory_relations (
    source_id TEXT NOT NULL REFERENCES memories(id) ON DELETE CASCADE,
    target_id TEXT NOT NULL REFERENCES memories(id) ON DELETE CASCADE,
    relation_type TEXT NOT NULL DEFAULT 'related',
    created_at DATETIME NOT NULL,
    PRIMARY KEY (source_id, target_id)
);

CREATE INDEX IF NOT EXISTS idx_relations_target ON memory_relations(target_id);
"""

FTS_SCHEMA = """
CREATE VIRTUAL TABLE IF NOT EXISTS memory_fts USING fts5(
    id UNINDEXED,
    content,
    summary,
    tokenize='porter'
);

-- Triggers to keep FTS in sync
CREATE TRIGGER IF NOT EXISTS memories_fts_ai AFTER INSERT ON memories BEGIN
    INSERT INTO memory_fts(id, content, summary) VALUES (new.id, new.content, new.summary);
END;

CREATE TRIGGER IF NOT EXISTS memories_fts_au AFTER UPDATE OF content, summary ON memories BEGIN
    UPDATE memory_fts SET content = new.content, summary = new.summary WHERE id = old.id;
END;

CREATE TRIGGER IF NOT EXISTS memories_fts_ad AFTER DELETE ON memories BEGIN
    DELETE FROM memory_fts WHERE id = old.id;
END;
"""

_ORDER_SQL = {
    OrderBy.IMPORTANCE: "m.importance_score DESC",
    OrderBy.RECENCY: "m.created_at DESC",
    OrderBy.RELEVANCE: "m.importance_score DESC, m.created_at DESC",
}

# Simple column updates: field name -> column
_UPDATABLE = {
    "content": "content",
    "summary": "summary",
    "source_path": "source_path",
    "memory_type": "memory_type",
    "importance_level": "importance_level",
    "importance_score": "importance_score",
    "compression_level": "compression_level",
    "compressed_from": "compressed_from",
    "related_memories": "related_memories",
}


def _fts_expression(query: str) -> str | None:
    """Quoted prefix terms, implicitly AND-ed. None when the query has no word tokens."""
    tokens = re.findall(r"\w+", query)
    if not tokens:
        return None
    return " ".join(f'"{token}"*' for token in tokens)


def _like_pattern(query: str) -> str:
    escaped = query.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


def _dump_ids(ids: list[str] | None) -> str | None:
    return json.dumps(list(ids)) if ids is not None else None


def _load_ids(memory_id: str, column: str, blob: str | None) -> list[str] | None:
    if blob is None:
        return None
    try:
        value = json.loads(blob)
    except json.JSONDecodeError as e:
        raise IntegrityError(f"Corrupt {column} for memory {memory_id}: {e}") from e
    if not isinstance(value, list):
        raise IntegrityError(f"Corrupt {column} for memory {memory_id}: expected a JSON array")
    return [str(v) for v in value]


class SQLiteMemoryStore(MemoryStore):
    """SQLite-backed entity store.

    Writes are serialized by an internal lock and each runs in its own
    transaction, so a failing call leaves no partial rows behind.
    """

    def __init__(self, db_path: Path):
        self.db_path = db_path
        self._conn: aiosqlite.Connection | None = None
        self._write_lock = asyncio.Lock()
        self.fts_enabled = False

    async def connect(self) -> None:
        """Initialize database connection and schema."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        # detect_types enables the DATETIME converter
        self._conn = await aiosqlite.connect(
            self.db_path,
            detect_types=sqlite3.PARSE_DECLTYPES | sqlite3.PARSE_COLNAMES,
        )
        self._conn.row_factory = aiosqlite.Row
        await self._conn.execute("PRAGMA foreign_keys = ON")
        await self._conn.executescript(SCHEMA)
        try:
            await self._conn.executescript(FTS_SCHEMA)
            self.fts_enabled = True
        except sqlite3.OperationalError as e:
            logger.warning(f"FTS5 unavailable, using substring search only: {e}")
            self.fts_enabled = False
        await self._conn.commit()
        logger.info(f"Connected to memory store: {self.db_path}")

    async def close(self) -> None:
        """Close database connection."""
        if self._conn:
            await self._conn.close()
            self._conn = None
            logger.info("Memory store closed")

    @property
    def conn(self) -> aiosqlite.Connection:
        if self._conn is None:
            raise RuntimeError("Memory store not connected. Call connect() first.")
        return self._conn

    @contextlib.asynccontextmanager
    async def _transaction(self) -> AsyncIterator[aiosqlite.Connection]:
        """Serialized write transaction: commit on success, roll back on any error."""
        async with self._write_lock:
            conn = self.conn
            try:
                yield conn
            except BaseException:
                await conn.rollback()
                raise
            await conn.commit()

    # CRUD

    async def create(self, memory: NewMemory) -> Memory:
        """Store a new memory entry."""
        if not memory.content or not memory.content.strip():
            raise ValueError("Memory content must not be empty")

        now = datetime.now()
        created_at = memory.created_at or now
        score = clamp01(memory.importance_score)
        entry = Memory(
            id=str(uuid4()),
            content=memory.content,
            summary=memory.summary,
            source_path=memory.source_path,
            memory_type=memory.memory_type,
            importance_level=memory.importance_level or ImportanceLevel.from_score(score),
            importance_score=score,
            created_at=created_at,
            updated_at=created_at,
            access_count=0,
            compression_level=memory.compression_level,
            compressed_from=list(memory.compressed_from) if memory.compressed_from else None,
            related_memories=list(memory.related_memories) if memory.related_memories else None,
            source_session_id=memory.source_session_id,
            source_channel=memory.source_channel,
        )

        async with self._transaction() as conn:
            await conn.execute(
                """INSERT INTO memories (
                       id, content, summary, source_path, memory_type, importance_level,
                       importance_score, created_at, updated_at, access_count,
                       compressed_from, compression_level, related_memories,
                       source_session_id, source_channel
                   ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, 0, ?, ?, ?, ?, ?)""",
                (
                    entry.id,
                    entry.content,
                    entry.summary,
                    entry.source_path,
                    entry.memory_type.value,
                    entry.importance_level.value,
                    entry.importance_score,
                    entry.created_at,
                    entry.updated_at,
                    _dump_ids(entry.compressed_from),
                    entry.compression_level,
                    _dump_ids(entry.related_memories),
                    entry.source_session_id,
                    entry.source_channel,
                ),
            )
            entry.tags = await self._set_tags(conn, entry.id, memory.tags)

        logger.debug(
            f"Created memory {entry.id} ({entry.memory_type.value}) from {entry.source_path}"
        )
        return entry

    async def get(self, memory_id: str) -> Memory | None:
        """Get specific memory by ID."""
        async with self.conn.execute("SELECT * FROM memories WHERE id = ?", (memory_id,)) as cursor:
            row = await cursor.fetchone()
        if row is None:
            return None
        return (await self._rows_to_memories([row]))[0]

    async def update(self, memory_id: str, **fields: Any) -> Memory | None:
        """Update memory fields.

        Only supplied fields change. ``tags`` replaces the whole set.
        ``importance_score`` is clamped and re-derives ``importance_level``
        unless a level is supplied too. ``compression_level`` never decreases.
        """
        existing = await self.get(memory_id)
        if existing is None:
            return None

        sets: list[str] = []
        values: list[Any] = []
        for name, value in fields.items():
            column = _UPDATABLE.get(name)
            if column is None:
                if name != "tags":
                    logger.debug(f"Ignoring unknown memory field: {name}")
                continue
            if name == "content" and (not value or not str(value).strip()):
                raise ValueError("Memory content must not be empty")
            if name == "memory_type":
                value = MemoryType(value).value
            elif name == "importance_level":
                value = ImportanceLevel(value).value
            elif name == "importance_score":
                value = clamp01(value)
                if "importance_level" not in fields:
                    sets.append("importance_level = ?")
                    values.append(ImportanceLevel.from_score(value).value)
            elif name == "compression_level":
                value = max(existing.compression_level, int(value))
            elif name in ("compressed_from", "related_memories"):
                value = _dump_ids(value)
            sets.append(f"{column} = ?")
            values.append(value)

        sets.append("updated_at = ?")
        values.append(datetime.now())
        values.append(memory_id)

        async with self._transaction() as conn:
            await conn.execute(f"UPDATE memories SET {', '.join(sets)} WHERE id = ?", values)
            if "tags" in fields and fields["tags"] is not None:
                await self._set_tags(conn, memory_id, fields["tags"])

        logger.debug(f"Updated memory {memory_id}: {sorted(fields)}")
        return await self.get(memory_id)

    async def delete(self, memory_id: str) -> bool:
        """Delete memory. Tag links, access log rows and relations cascade."""
        async with self._transaction() as conn:
            deleted = await self._delete_ids(conn, [memory_id])
        if deleted:
            logger.debug(f"Deleted memory {memory_id}")
        return deleted > 0

    async def delete_by_source_path(self, source_path: str) -> int:
        """Delete every memory originating from a path. Returns the number removed."""
        async with self._transaction() as conn:
            async with conn.execute(
                "SELECT id FROM memories WHERE source_path = ?", (source_path,)
            ) as cursor:
                ids = [row[0] async for row in cursor]
            deleted = await self._delete_ids(conn, ids)
        logger.debug(f"Removed {deleted} memories for {source_path}")
        return deleted

    async def _delete_ids(self, conn: aiosqlite.Connection, ids: list[str]) -> int:
        if not ids:
            return 0
        placeholders = ",".join("?" for _ in ids)
        async with conn.execute(
            f"SELECT DISTINCT tag_id FROM memory_tags WHERE memory_id IN ({placeholders})", ids
        ) as cursor:
            tag_ids = [row[0] async for row in cursor]

        cursor = await conn.execute(f"DELETE FROM memories WHERE id IN ({placeholders})", ids)
        deleted = cursor.rowcount

        for table, column in (
            ("memory_tags", "memory_id"),
            ("access_log", "memory_id"),
            ("memory_relations", "source_id"),
            ("memory_relations", "target_id"),
        ):
            async with conn.execute(
                f"SELECT COUNT(*) FROM {table} WHERE {column} IN ({placeholders})", ids
            ) as check:
                orphans = (await check.fetchone())[0]
            if orphans:
                raise IntegrityError(f"Delete left {orphans} orphaned rows in {table}")

        await self._refresh_tag_counts(conn, tag_ids)
        return deleted

    # Access tracking

    async def record_access(
        self,
        memory_id: str,
        action: AccessAction,
        query: str | None = None,
        now: datetime | None = None,
    ) -> bool:
        """Append to the access log and bump access stats."""
        now = now or datetime.now()
        async with self._transaction() as conn:
            cursor = await conn.execute(
                """UPDATE memories
                   SET access_count = access_count + 1, accessed_at = ?
                   WHERE id = ?""",
                (now, memory_id),
            )
            if cursor.rowcount == 0:
                return False
            await conn.execute(
                "INSERT INTO access_log (memory_id, accessed_at, action, query) VALUES (?, ?, ?, ?)",
                (memory_id, now, AccessAction(action).value, query),
            )
        logger.debug(f"Recorded {AccessAction(action).value} access for {memory_id}")
        return True

    async def access_log(self, memory_id: str) -> list[AccessLogEntry]:
        """Access history for a memory, oldest first."""
        async with self.conn.execute(
            """SELECT id, memory_id, accessed_at, action, query FROM access_log
               WHERE memory_id = ? ORDER BY accessed_at, id""",
            (memory_id,),
        ) as cursor:
            return [
                AccessLogEntry(
                    id=row["id"],
                    memory_id=row["memory_id"],
                    accessed_at=row["accessed_at"],
                    action=AccessAction(row["action"]),
                    query=row["query"],
                )
                async for row in cursor
            ]

    # Queries

    async def search(self, filters: SearchFilters | None = None) -> list[Memory]:
        """Filtered search with importance/recency ordering."""
        filters = filters or SearchFilters()
        try:
            return await self._search(filters, use_fts=self.fts_enabled)
        except sqlite3.OperationalError as e:
            if not self.fts_enabled or not filters.query:
                raise
            logger.warning(f"FTS search failed, falling back to LIKE: {e}")
            return await self._search(filters, use_fts=False)

    async def _search(self, filters: SearchFilters, use_fts: bool) -> list[Memory]:
        sql = "SELECT DISTINCT m.* FROM memories m"
        where: list[str] = []
        values: list[Any] = []

        if filters.tags:
            sql += """ JOIN memory_tags mt ON m.id = mt.memory_id
                       JOIN tags t ON mt.tag_id = t.id"""
            where.append(f"t.name IN ({','.join('?' for _ in filters.tags)})")
            values.extend(filters.tags)

        if filters.memory_type is not None:
            where.append("m.memory_type = ?")
            values.append(MemoryType(filters.memory_type).value)
        if filters.min_importance is not None:
            where.append("m.importance_score >= ?")
            values.append(filters.min_importance)
        if filters.created_after is not None:
            where.append("m.created_at >= ?")
            values.append(filters.created_after)
        if filters.created_before is not None:
            where.append("m.created_at <= ?")
            values.append(filters.created_before)

        if filters.query:
            pattern = _like_pattern(filters.query)
            text_match = ["m.content LIKE ? ESCAPE '\\'", "m.summary LIKE ? ESCAPE '\\'"]
            values.extend([pattern, pattern])
            expression = _fts_expression(filters.query) if use_fts else None
            if expression:
                text_match.append("m.id IN (SELECT id FROM memory_fts WHERE memory_fts MATCH ?)")
                values.append(expression)
            where.append(f"({' OR '.join(text_match)})")

        if where:
            sql += f" WHERE {' AND '.join(where)}"
        sql += f" ORDER BY {_ORDER_SQL[OrderBy(filters.order_by)]} LIMIT ? OFFSET ?"
        values.extend([filters.limit or DEFAULT_PAGE_SIZE, filters.offset])

        async with self.conn.execute(sql, values) as cursor:
            rows = await cursor.fetchall()
        results = await self._rows_to_memories(rows)
        logger.debug(f"Search returned {len(results)} results for query: {filters.query}")
        return results

    async def list_for_compaction(
        self,
        older_than: datetime,
        max_level: int,
        min_level: int = 0,
        include_summaries: bool = False,
        limit: int = 1000,
    ) -> list[Memory]:
        """Memories created before the cutoff within a compression level range, oldest first."""
        sql = """SELECT * FROM memories
                 WHERE created_at < ?
                 AND compression_level <= ?
                 AND compression_level >= ?"""
        if not include_summaries:
            sql += f" AND memory_type != '{MemoryType.SUMMARY.value}'"
        sql += " ORDER BY created_at ASC LIMIT ?"

        async with self.conn.execute(sql, (older_than, max_level, min_level, limit)) as cursor:
            rows = await cursor.fetchall()
        return await self._rows_to_memories(rows)

    async def list_by_source_path(self, source_path: str) -> list[Memory]:
        """All memories for one logical path, in creation order."""
        async with self.conn.execute(
            "SELECT * FROM memories WHERE source_path = ? ORDER BY created_at, rowid",
            (source_path,),
        ) as cursor:
            rows = await cursor.fetchall()
        return await self._rows_to_memories(rows)

    async def list_all(self) -> list[Memory]:
        """Every memory, oldest first."""
        async with self.conn.execute("SELECT * FROM memories ORDER BY created_at") as cursor:
            rows = await cursor.fetchall()
        return await self._rows_to_memories(rows)

    async def source_paths(self, include_generated: bool = False) -> set[str]:
        """Distinct source paths. Compaction output is excluded unless requested."""
        sql = "SELECT DISTINCT source_path FROM memories"
        if not include_generated:
            sql += " WHERE compressed_from IS NULL"
        async with self.conn.execute(sql) as cursor:
            return {row[0] async for row in cursor}

    async def apply_scores(self, scores: Iterable[tuple[str, float]]) -> int:
        """Batch-write recalculated scores.

        Score maintenance is not a content mutation, so updated_at is left alone.
        """
        params = [
            (clamp01(score), ImportanceLevel.from_score(clamp01(score)).value, memory_id)
            for memory_id, score in scores
        ]
        if not params:
            return 0
        async with self._transaction() as conn:
            await conn.executemany(
                "UPDATE memories SET importance_score = ?, importance_level = ? WHERE id = ?",
                params,
            )
        return len(params)

    # Tags

    async def get_tags(self, memory_id: str) -> list[str]:
        """Tag names for a memory."""
        return (await self._tags_for([memory_id])).get(memory_id, [])

    async def all_tags(self) -> list[Tag]:
        """Tag catalogue, most used first."""
        async with self.conn.execute(
            "SELECT * FROM tags ORDER BY memory_count DESC, name"
        ) as cursor:
            return [
                Tag(
                    id=row["id"],
                    name=row["name"],
                    color=row["color"],
                    description=row["description"],
                    created_at=row["created_at"],
                    memory_count=row["memory_count"],
                )
                async for row in cursor
            ]

    async def _set_tags(
        self, conn: aiosqlite.Connection, memory_id: str, tag_names: Iterable[str]
    ) -> list[str]:
        """Replace a memory's tag set and keep membership counts consistent."""
        names: list[str] = []
        for name in tag_names:
            name = name.strip()
            if name and name not in names:
                names.append(name)

        async with conn.execute(
            "SELECT tag_id FROM memory_tags WHERE memory_id = ?", (memory_id,)
        ) as cursor:
            affected = {row[0] async for row in cursor}
        await conn.execute("DELETE FROM memory_tags WHERE memory_id = ?", (memory_id,))

        for name in names:
            async with conn.execute("SELECT id FROM tags WHERE name = ?", (name,)) as cursor:
                row = await cursor.fetchone()
            if row is None:
                cursor = await conn.execute(
                    "INSERT INTO tags (name, created_at, memory_count) VALUES (?, ?, 0)",
                    (name, datetime.now()),
                )
                tag_id = cursor.lastrowid
            else:
                tag_id = row[0]
            await conn.execute(
                "INSERT OR IGNORE INTO memory_tags (memory_id, tag_id) VALUES (?, ?)",
                (memory_id, tag_id),
            )
            affected.add(tag_id)

        await self._refresh_tag_counts(conn, affected)
        return names

    async def _refresh_tag_counts(self, conn: aiosqlite.Connection, tag_ids: Iterable[int]) -> None:
        for tag_id in set(tag_ids):
            await conn.execute(
                """UPDATE tags SET memory_count = (
                       SELECT COUNT(*) FROM memory_tags WHERE tag_id = ?
                   ) WHERE id = ?""",
                (tag_id, tag_id),
            )

    async def _tags_for(self, memory_ids: list[str]) -> dict[str, list[str]]:
        if not memory_ids:
            return {}
        placeholders = ",".join("?" for _ in memory_ids)
        tags: dict[str, list[str]] = {}
        async with self.conn.execute(
            f"""SELECT mt.memory_id, t.name FROM memory_tags mt
                JOIN tags t ON t.id = mt.tag_id
                WHERE mt.memory_id IN ({placeholders})
                ORDER BY t.name""",
            memory_ids,
        ) as cursor:
            async for row in cursor:
                tags.setdefault(row[0], []).append(row[1])
        return tags

    # Relations

    async def add_relation(
        self, source_id: str, target_id: str, relation_type: str = "related"
    ) -> bool:
        """Link two memories. Returns False if either does not exist."""
        if await self.get(source_id) is None or await self.get(target_id) is None:
            return False
        async with self._transaction() as conn:
            await conn.execute(
                """INSERT INTO memory_relations (source_id, target_id, relation_type, created_at)
                   VALUES (?, ?, ?, ?)
                   ON CONFLICT(source_id, target_id) DO UPDATE SET relation_type = ?""",
                (source_id, target_id, relation_type, datetime.now(), relation_type),
            )
        return True

    async def relations(self, memory_id: str) -> list[Relation]:
        """Edges touching a memory in either direction."""
        async with self.conn.execute(
            """SELECT source_id, target_id, relation_type, created_at FROM memory_relations
               WHERE source_id = ? OR target_id = ? ORDER BY created_at""",
            (memory_id, memory_id),
        ) as cursor:
            return [
                Relation(
                    source_id=row["source_id"],
                    target_id=row["target_id"],
                    relation_type=row["relation_type"],
                    created_at=row["created_at"],
                )
                async for row in cursor
            ]

    # Stats

    async def count(self) -> int:
        async with self.conn.execute("SELECT COUNT(*) FROM memories") as cursor:
            return (await cursor.fetchone())[0]

    async def stats(self) -> StoreStats:
        """Aggregate counts for status reporting."""
        by_type = {memory_type: 0 for memory_type in MemoryType}
        async with self.conn.execute(
            "SELECT memory_type, COUNT(*) FROM memories GROUP BY memory_type"
        ) as cursor:
            async for row in cursor:
                by_type[MemoryType(row[0])] = row[1]

        async with self.conn.execute("SELECT COUNT(*) FROM tags") as cursor:
            total_tags = (await cursor.fetchone())[0]

        async with self.conn.execute(
            """SELECT COUNT(*), AVG(importance_score),
                      MIN(created_at) AS "oldest [DATETIME]",
                      MAX(created_at) AS "newest [DATETIME]"
               FROM memories"""
        ) as cursor:
            row = await cursor.fetchone()

        return StoreStats(
            total_memories=row[0],
            by_type=by_type,
            total_tags=total_tags,
            avg_importance=row[1] or 0.0,
            oldest=row[2],
            newest=row[3],
        )

    # Row mapping

    async def _rows_to_memories(self, rows: Iterable[aiosqlite.Row]) -> list[Memory]:
        rows = list(rows)
        tags = await self._tags_for([row["id"] for row in rows])
        return [
            Memory(
                id=row["id"],
                content=row["content"],
                summary=row["summary"],
                source_path=row["source_path"],
                memory_type=MemoryType(row["memory_type"]),
                importance_level=ImportanceLevel(row["importance_level"]),
                importance_score=row["importance_score"],
                tags=tags.get(row["id"], []),
                created_at=row["created_at"],
                updated_at=row["updated_at"],
                accessed_at=row["accessed_at"],
                access_count=row["access_count"],
                compression_level=row["compression_level"],
                compressed_from=_load_ids(row["id"], "compressed_from", row["compressed_from"]),
                related_memories=_load_ids(row["id"], "related_memories", row["related_memories"]),
                source_session_id=row["source_session_id"],
                source_channel=row["source_channel"],
            )
            for row in rows
        ]
