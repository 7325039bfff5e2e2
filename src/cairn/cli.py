"""
CLI entry point.

Commands:
- init: Initialize data directory and memory layout
- sync: Reconcile Markdown, compact, recalculate importance
- compact: Run the compaction pipeline only
- status: Show store statistics
- search <query>: Ranked search over memories
- read <path> [from_line] [lines]: Read a logical path
- watch: Keep the store in sync with the Markdown tree until interrupted

Flags:
- --debug: Enable debug logging to file
"""

import asyncio
import logging
import signal
import sys

from cairn.core.config import Settings, get_settings
from cairn.core.errors import ConfigurationError
from cairn.core.logging import get_logger, setup_logging
from cairn.memory.backend import MemoryBackend
from cairn.memory.markdown import MEMORY_DIR, MEMORY_FILE

USAGE = """Usage: cairn [--debug] <command> [args]
Commands: init, sync, compact, status, search <query>, read <path> [from_line] [lines], watch
Flags: --debug (enable debug logging to <data_dir>/cairn.log)"""


def main() -> int:
    """Main entry point."""
    try:
        settings = get_settings()
    except ConfigurationError as e:
        print(f"Configuration error: {e}")
        return 2

    # Parse --debug flag (enables verbose DEBUG traces)
    debug_mode = "--debug" in sys.argv
    if debug_mode:
        sys.argv.remove("--debug")

    if len(sys.argv) < 2:
        print(USAGE)
        return 1

    command, args = sys.argv[1], sys.argv[2:]

    # Always log to file; the console only shows warnings unless watching or debugging
    log_level = logging.DEBUG if debug_mode else logging.INFO
    console_level = log_level if debug_mode or command == "watch" else logging.WARNING
    log_file = settings.data_dir / "cairn.log"
    setup_logging(level=log_level, log_file=log_file, console_level=console_level)
    logger = get_logger("cli")

    logger.info(f"Logging to {log_file}" + (" (debug mode)" if debug_mode else ""))

    if command == "init":
        return _init(settings)

    if command == "sync":
        return asyncio.run(_sync(settings))

    if command == "compact":
        return asyncio.run(_compact(settings))

    if command == "status":
        return asyncio.run(_status(settings))

    if command == "search":
        if not args:
            print("Usage: cairn search <query>")
            return 1
        return asyncio.run(_search(settings, " ".join(args)))

    if command == "read":
        if not args:
            print("Usage: cairn read <path> [from_line] [lines]")
            return 1
        try:
            from_line = int(args[1]) if len(args) > 1 else None
            lines = int(args[2]) if len(args) > 2 else None
        except ValueError:
            print("from_line and lines must be integers")
            return 1
        return asyncio.run(_read(settings, args[0], from_line, lines))

    if command == "watch":
        logger.info("Starting watch mode")
        return asyncio.run(_watch(settings))

    print(f"Unknown command: {command}")
    return 1


def _init(settings: Settings) -> int:
    """Create the data directory and the Markdown layout if missing."""
    logger = get_logger("cli.init")
    settings.data_dir.mkdir(parents=True, exist_ok=True)
    (settings.workspace_dir / MEMORY_DIR).mkdir(parents=True, exist_ok=True)
    memory_file = settings.workspace_dir / MEMORY_FILE
    if not memory_file.exists():
        memory_file.write_text("# Memory\n", encoding="utf-8")
    logger.info(f"Initialized data directory: {settings.data_dir}")
    print(f"Created: {settings.data_dir}")
    print(f"Workspace: {settings.workspace_dir}")
    return 0


async def _sync(settings: Settings) -> int:
    backend = MemoryBackend(settings)
    await backend.open(initial_sync=False, watch=False)
    try:
        report = await backend.sync(reason="cli")
    finally:
        await backend.close()

    print(
        f"Added: {report.added}  Updated: {report.updated}  "
        f"Removed: {report.removed}  Unchanged: {report.unchanged}"
    )
    print(
        f"Summaries created: {report.compaction.created}  "
        f"Archived: {report.compaction.archived}  Deleted: {report.compaction.deleted}"
    )
    if report.errors:
        print(f"Errors: {report.errors} (see log)")
        return 1
    return 0


async def _compact(settings: Settings) -> int:
    backend = MemoryBackend(settings)
    await backend.open(initial_sync=False, watch=False)
    try:
        result = await backend.compact()
    finally:
        await backend.close()

    print(f"Created: {result.created}  Archived: {result.archived}  Deleted: {result.deleted}")
    return 1 if result.errors else 0


async def _status(settings: Settings) -> int:
    backend = MemoryBackend(settings)
    await backend.open(initial_sync=False, watch=False)
    try:
        status = await backend.status()
    finally:
        await backend.close()

    print(f"Workspace: {status.workspace_dir}")
    print(f"Memories: {status.total_memories}")
    for memory_type, count in status.by_type.items():
        if count:
            print(f"  {memory_type}: {count}")
    print(f"Tags: {status.tag_count}" + (f" (top: {', '.join(status.top_tags)})" if status.top_tags else ""))
    print(f"Average importance: {status.avg_importance:.2f}")
    if status.oldest and status.newest:
        print(f"Range: {status.oldest:%Y-%m-%d} .. {status.newest:%Y-%m-%d}")
    print(f"Full-text search: {'on' if status.fts_enabled else 'off'}")
    return 0


async def _search(settings: Settings, query: str) -> int:
    backend = MemoryBackend(settings)
    await backend.open(watch=False)
    try:
        results = await backend.search(query)
    finally:
        await backend.close()

    if not results:
        print("No results.")
        return 0
    for result in results:
        print(f"[{result.score:.2f}] {result.path}:{result.start_line}-{result.end_line}")
        print(result.snippet)
        print()
    return 0


async def _read(settings: Settings, path: str, from_line: int | None, lines: int | None) -> int:
    backend = MemoryBackend(settings)
    await backend.open(watch=False)
    try:
        result = await backend.read_path(path, from_line, lines)
    finally:
        await backend.close()

    if not result.text:
        print(f"Nothing stored for {path}")
        return 1
    print(result.text)
    return 0


async def _watch(settings: Settings) -> int:
    """Keep the store in sync until SIGINT/SIGTERM."""
    logger = get_logger("cli.watch")
    shutdown = asyncio.Event()
    loop = asyncio.get_running_loop()

    def handle_shutdown_signal(signum: int) -> None:
        logger.info(f"Received {signal.Signals(signum).name}, initiating graceful shutdown")
        shutdown.set()

    for signum in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(signum, handle_shutdown_signal, signum)

    backend = MemoryBackend(settings)
    try:
        await backend.open(watch=True)
        print(f"Watching {settings.workspace_dir}. Press Ctrl+C to stop.")
        await shutdown.wait()
        print("\nShutting down gracefully...")
    except Exception as e:
        logger.error(f"Error in watch mode: {e}", exc_info=True)
        print(f"Error: {e}")
        return 1
    finally:
        await backend.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
