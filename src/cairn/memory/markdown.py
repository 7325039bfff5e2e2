"""Markdown reconciliation - keeps the store aligned with an editable Markdown tree.

Layout:
    <workspace>/
    ├── MEMORY.md            # Long-term notes
    └── memory/
        ├── 2026-02-18.md    # Daily notes
        └── archive/...      # Anything under a path containing "archive" is typed archive

Each file is split at level-2/3 headings. Sections are matched to existing
records of the same file by word-set Jaccard similarity, so an edited
section updates its record in place instead of duplicating it.
"""

import asyncio
import re
import stat
from dataclasses import dataclass, field
from datetime import datetime
from fnmatch import fnmatch
from pathlib import Path

from cairn.core.config import SyncConfig
from cairn.core.errors import TransientIOError
from cairn.core.logging import get_logger
from cairn.memory.base import CompressionLevel, Memory, MemoryType, NewMemory
from cairn.memory.store import SQLiteMemoryStore

logger = get_logger("memory.markdown")

MEMORY_FILE = "MEMORY.md"
MEMORY_DIR = "memory"

HEADING = re.compile(r"^#{2,3} ")
HASHTAG = re.compile(r"#(\w+)")

# Heading keyword -> type, first match wins
TYPE_KEYWORDS: list[tuple[tuple[str, ...], MemoryType]] = [
    (("decision", "decided"), MemoryType.DECISION),
    (("todo", "task"), MemoryType.TODO),
    (("preference", "like"), MemoryType.PREFERENCE),
    (("summary", "overview"), MemoryType.SUMMARY),
]


@dataclass
class MemoryFile:
    """A tracked file with its workspace-relative POSIX path."""

    path: str
    abs_path: Path
    mtime: datetime | None  # None when the file could not be stat()ed


@dataclass
class ParsedSection:
    """Candidate memory parsed from a file."""

    content: str
    memory_type: MemoryType
    tags: list[str] = field(default_factory=list)


@dataclass
class SyncResult:
    """Per-record counts of a reconciliation pass."""

    added: int = 0
    updated: int = 0
    removed: int = 0
    unchanged: int = 0
    errors: int = 0

    def __add__(self, other: "SyncResult") -> "SyncResult":
        return SyncResult(
            added=self.added + other.added,
            updated=self.updated + other.updated,
            removed=self.removed + other.removed,
            unchanged=self.unchanged + other.unchanged,
            errors=self.errors + other.errors,
        )

    @property
    def changed(self) -> bool:
        return bool(self.added or self.updated or self.removed)


def is_tracked_path(path: str, pattern: str = "*.md") -> bool:
    """Whether a store source path belongs to the Markdown tree."""
    if path == MEMORY_FILE:
        return True
    return path.startswith(f"{MEMORY_DIR}/") and fnmatch(path.rsplit("/", 1)[-1], pattern)


def list_memory_files(workspace_dir: Path, pattern: str = "*.md") -> list[MemoryFile]:
    """MEMORY.md plus every matching file under memory/, sorted by path."""
    candidates = [workspace_dir / MEMORY_FILE]
    memory_dir = workspace_dir / MEMORY_DIR
    if memory_dir.is_dir():
        candidates.extend(memory_dir.rglob(pattern))

    files = []
    for abs_path in candidates:
        rel_path = abs_path.relative_to(workspace_dir).as_posix()
        try:
            info = abs_path.stat()
        except FileNotFoundError:
            continue
        except OSError as e:
            # Still listed so its records are not taken for deleted
            logger.warning(f"Cannot stat {rel_path}: {e}")
            files.append(MemoryFile(path=rel_path, abs_path=abs_path, mtime=None))
            continue
        if not stat.S_ISREG(info.st_mode):
            continue
        files.append(
            MemoryFile(
                path=rel_path,
                abs_path=abs_path,
                mtime=datetime.fromtimestamp(info.st_mtime),
            )
        )
    return sorted(files, key=lambda f: f.path)


def extract_tags(heading: str) -> list[str]:
    """Inline #hashtags of a heading line."""
    return HASHTAG.findall(heading)


def infer_memory_type(heading: str, source_path: str) -> MemoryType:
    """Map heading keywords (or an archive path) to a memory type."""
    lower = heading.lower()
    for keywords, memory_type in TYPE_KEYWORDS:
        if any(keyword in lower for keyword in keywords):
            return memory_type
    if "archive" in source_path:
        return MemoryType.ARCHIVE
    return MemoryType.NOTE


def parse_sections(text: str, source_path: str, min_chars: int = 50) -> list[ParsedSection]:
    """Split Markdown at ## / ### headings. Short sections are dropped.

    A file without any such heading becomes a single section.
    """
    sections: list[ParsedSection] = []
    current: list[str] = []
    tags: list[str] = []
    memory_type = infer_memory_type("", source_path)
    saw_heading = False

    def flush() -> None:
        content = "\n".join(current).strip()
        if current and len(content) >= min_chars:
            sections.append(ParsedSection(content=content, memory_type=memory_type, tags=tags))

    for line in text.split("\n"):
        if HEADING.match(line):
            flush()
            saw_heading = True
            current = []
            tags = extract_tags(line)
            memory_type = infer_memory_type(line, source_path)
        current.append(line)
    flush()

    if not saw_heading:
        content = text.strip()
        if len(content) >= min_chars:
            return [ParsedSection(content=content, memory_type=infer_memory_type("", source_path))]
        return []
    return sections


def jaccard_similarity(a: str, b: str) -> float:
    """Intersection over union of lowercase whitespace-separated word sets."""
    a_words = set(a.lower().split())
    b_words = set(b.lower().split())
    union = a_words | b_words
    if not union:
        return 1.0
    return len(a_words & b_words) / len(union)


def match_sections(
    sections: list[ParsedSection], existing: list[Memory], threshold: float
) -> dict[int, Memory]:
    """One-to-one section→record assignment, most similar pairs first."""
    pairs = []
    for index, section in enumerate(sections):
        for memory in existing:
            similarity = jaccard_similarity(section.content, memory.content)
            if similarity >= threshold:
                pairs.append((similarity, index, memory))
    pairs.sort(key=lambda pair: pair[0], reverse=True)

    matched: dict[int, Memory] = {}
    claimed: set[str] = set()
    for _, index, memory in pairs:
        if index in matched or memory.id in claimed:
            continue
        matched[index] = memory
        claimed.add(memory.id)
    return matched


class MarkdownReconciler:
    """Applies the Markdown tree's current state to the store."""

    def __init__(self, store: SQLiteMemoryStore, workspace_dir: Path, config: SyncConfig):
        self.store = store
        self.workspace_dir = workspace_dir
        self.config = config

    async def reconcile(self) -> SyncResult:
        """Sync every tracked file, then drop records of files that disappeared."""
        if not self.config.enabled:
            return SyncResult()

        result = SyncResult()
        files = await asyncio.to_thread(
            list_memory_files, self.workspace_dir, self.config.file_pattern
        )
        current = {f.path for f in files}

        for entry in files:
            try:
                result += await self.reconcile_file(entry)
            except TransientIOError as e:
                logger.warning(f"Skipping {entry.path}: {e}")
                result.errors += 1
            except Exception as e:
                logger.error(f"Failed to sync {entry.path}: {e}")
                result.errors += 1

        known = await self.store.source_paths()
        for path in sorted(known - current):
            if not is_tracked_path(path, self.config.file_pattern):
                continue
            try:
                result.removed += await self.store.delete_by_source_path(path)
            except Exception as e:
                logger.error(f"Failed to remove memories for {path}: {e}")
                result.errors += 1
                continue
            logger.debug(f"Removed memories for deleted file {path}")

        logger.info(
            f"Sync from markdown: {result.added} added, {result.updated} updated, "
            f"{result.removed} removed, {result.unchanged} unchanged, {result.errors} errors"
        )
        return result

    async def reconcile_file(self, entry: MemoryFile) -> SyncResult:
        """Sync a single file against the records sharing its path."""
        result = SyncResult()
        if entry.mtime is None:
            raise TransientIOError(f"Cannot stat {entry.path}")
        existing = [m for m in await self.store.list_by_source_path(entry.path) if not m.is_generated]

        if existing and max(m.updated_at for m in existing) >= entry.mtime:
            result.unchanged += len(existing)
            return result

        text = await self._read(entry)
        sections = parse_sections(text, entry.path, self.config.min_section_chars)

        if not existing:
            for section in sections:
                await self._create(entry.path, section)
                result.added += 1
            return result

        matched = match_sections(sections, existing, self.config.similarity_threshold)
        for index, section in enumerate(sections):
            memory = matched.get(index)
            if memory is None:
                await self._create(entry.path, section)
                result.added += 1
            elif (
                memory.content == section.content
                and memory.memory_type == section.memory_type
                and sorted(memory.tags) == sorted(section.tags)
            ):
                result.unchanged += 1
            else:
                await self.store.update(
                    memory.id,
                    content=section.content,
                    memory_type=section.memory_type,
                    tags=section.tags,
                )
                result.updated += 1

        # Sections removed from the file; compacted records are left to the pipeline
        claimed = {m.id for m in matched.values()}
        for memory in existing:
            if memory.id in claimed:
                continue
            if memory.compression_level == CompressionLevel.ORIGINAL:
                if await self.store.delete(memory.id):
                    result.removed += 1
            else:
                result.unchanged += 1

        return result

    async def _create(self, source_path: str, section: ParsedSection) -> Memory:
        return await self.store.create(
            NewMemory(
                content=section.content,
                source_path=source_path,
                memory_type=section.memory_type,
                importance_score=0.5,
                tags=section.tags,
            )
        )

    async def _read(self, entry: MemoryFile) -> str:
        try:
            return await asyncio.to_thread(entry.abs_path.read_text, encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            raise TransientIOError(f"Failed to read {entry.path}: {e}") from e
