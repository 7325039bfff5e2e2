"""Summary generation for compaction.

The default summarizer is a deterministic heuristic. A language-model backed
callable with the same signature can be passed to the compaction pipeline.
"""

from collections.abc import Awaitable, Callable, Sequence
from enum import Enum

from cairn.memory.base import Memory


class Granularity(Enum):
    WEEKLY = "weekly"
    MONTHLY = "monthly"


SummaryResult = str | None
Summarizer = Callable[[Sequence[Memory], Granularity], SummaryResult | Awaitable[SummaryResult]]

IMPORTANT_MARKERS = ("important", "decision", "conclusion", "action item")
MAX_TOPICS = 10
MAX_IMPORTANT_ITEMS = 5


def generate_summary(memories: Sequence[Memory], granularity: Granularity) -> str | None:
    """Summarize a group of memories into one Markdown body.

    Collects section headers as key topics and lines carrying importance
    markers as important items. Returns None for an empty group.
    """
    if not memories:
        return None

    lines = "\n\n---\n\n".join(m.content for m in memories).split("\n")
    title = "Weekly" if granularity == Granularity.WEEKLY else "Monthly"

    parts = [f"# {title} Summary", "", f"Generated from {len(memories)} memories.", ""]

    headers = [line for line in lines if line.startswith("##")]
    if headers:
        parts.extend(["## Key Topics", ""])
        parts.extend(f"- {header.lstrip('#').strip()}" for header in headers[:MAX_TOPICS])
        parts.append("")

    important = [
        line.strip()
        for line in lines
        if line.strip() and any(marker in line.lower() for marker in IMPORTANT_MARKERS)
    ]
    if important:
        parts.extend(["## Important Items", ""])
        parts.extend(f"- {line}" for line in important[:MAX_IMPORTANT_ITEMS])
        parts.append("")

    return "\n".join(parts)
