"""Debounced watcher for the Markdown tree.

Polls file modification times; any change (add, edit, delete) arms a
debounce timer, and only the last change in a burst fires the callback.
"""

import asyncio
import contextlib
from collections.abc import Callable
from pathlib import Path

from cairn.core.config import SyncConfig
from cairn.core.logging import get_logger
from cairn.memory.markdown import list_memory_files

logger = get_logger("memory.watcher")

Snapshot = dict[str, float]


class MarkdownWatcher:
    """Watch MEMORY.md and memory/ for changes."""

    def __init__(
        self,
        workspace_dir: Path,
        config: SyncConfig,
        on_change: Callable[[], None],
    ) -> None:
        self.workspace_dir = workspace_dir
        self.config = config
        self.on_change = on_change
        self._poll_task: asyncio.Task | None = None
        self._debounce: asyncio.TimerHandle | None = None
        self._snapshot: Snapshot = {}

    @property
    def watching(self) -> bool:
        return self._poll_task is not None and not self._poll_task.done()

    @property
    def pending(self) -> bool:
        """True while a debounced callback is armed."""
        return self._debounce is not None

    async def start(self) -> None:
        """Take a baseline snapshot and start polling."""
        if self.watching:
            return
        self._snapshot = await asyncio.to_thread(self._take_snapshot)
        self._poll_task = asyncio.create_task(self._poll_loop(), name="cairn-markdown-watcher")
        logger.debug(f"Started watching markdown files under {self.workspace_dir}")

    async def stop(self) -> None:
        """Stop polling and cancel any armed debounce timer."""
        self.cancel_pending()
        if self._poll_task:
            self._poll_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._poll_task
            self._poll_task = None
            logger.debug("Stopped watching markdown files")

    def schedule(self) -> None:
        """(Re)arm the debounce timer."""
        self.cancel_pending()
        loop = asyncio.get_running_loop()
        self._debounce = loop.call_later(self.config.debounce_ms / 1000, self._fire)

    def cancel_pending(self) -> None:
        if self._debounce is not None:
            self._debounce.cancel()
            self._debounce = None

    def _fire(self) -> None:
        self._debounce = None
        try:
            self.on_change()
        except Exception as e:
            logger.error(f"Scheduled sync failed: {e}")

    async def _poll_loop(self) -> None:
        while True:
            await asyncio.sleep(self.config.poll_interval)
            try:
                snapshot = await asyncio.to_thread(self._take_snapshot)
            except OSError as e:
                logger.warning(f"Watcher poll failed: {e}")
                continue
            if snapshot != self._snapshot:
                self._snapshot = snapshot
                self.schedule()

    def _take_snapshot(self) -> Snapshot:
        return {
            f.path: f.mtime.timestamp()
            for f in list_memory_files(self.workspace_dir, self.config.file_pattern)
            if f.mtime is not None
        }
