"""
Memory module - structured long-term memory.

Components:
- store: SQLite entity store (tags, access log, relations, FTS5)
- scoring: Query-time relevance and background importance decay
- compaction: Weekly/monthly summaries and archiving
- markdown: Reconciliation of MEMORY.md and memory/*.md into the store
- watcher: Debounced change detection for the Markdown tree
- backend: Search/read/sync facade consumed by the agent runtime

Storage: SQLite + filesystem
"""

from cairn.memory.backend import MemoryBackend, ReadResult, SearchResult, SyncReport
from cairn.memory.base import Memory, MemoryType, NewMemory, SearchFilters
from cairn.memory.store import SQLiteMemoryStore

__all__ = [
    "MemoryBackend",
    "ReadResult",
    "SearchResult",
    "SyncReport",
    "Memory",
    "MemoryType",
    "NewMemory",
    "SearchFilters",
    "SQLiteMemoryStore",
]
