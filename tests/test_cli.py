"""Tests for the CLI adapter and logging setup."""

import logging
import sys
from pathlib import Path

import pytest

from cairn.cli import main
from cairn.core.logging import get_logger, setup_logging

NOTE = """## Deployment decision
We decided to deploy every Tuesday morning after the integration suite passes.
"""


@pytest.fixture
def cli_env(tmp_path: Path, monkeypatch):
    """Point settings at a temporary workspace and data directory."""
    workspace = tmp_path / "workspace"
    workspace.mkdir()
    monkeypatch.setenv("CAIRN_WORKSPACE_DIR", str(workspace))
    monkeypatch.setenv("CAIRN_DATA_DIR", str(tmp_path / "data"))
    monkeypatch.chdir(tmp_path)  # no stray .env
    yield workspace
    logging.getLogger("cairn").handlers.clear()


def run(monkeypatch, *args: str) -> int:
    monkeypatch.setattr(sys, "argv", ["cairn", *args])
    return main()


def test_setup_logging_replaces_handlers(tmp_path: Path):
    log_file = tmp_path / "logs" / "cairn.log"
    setup_logging(log_file=log_file)
    logger = setup_logging(log_file=log_file, console_level=logging.WARNING)
    try:
        assert len(logger.handlers) == 2
        get_logger("memory.store").info("connected")
        for handler in logger.handlers:
            handler.flush()
        assert "cairn.memory.store | connected" in log_file.read_text(encoding="utf-8")
    finally:
        logger.handlers.clear()


def test_usage_without_command(cli_env, monkeypatch, capsys):
    assert run(monkeypatch) == 1
    assert "Usage" in capsys.readouterr().out


def test_unknown_command(cli_env, monkeypatch, capsys):
    assert run(monkeypatch, "frobnicate") == 1
    assert "Unknown command" in capsys.readouterr().out


def test_init_creates_layout(cli_env: Path, monkeypatch, tmp_path: Path):
    assert run(monkeypatch, "init") == 0
    assert (cli_env / "MEMORY.md").exists()
    assert (cli_env / "memory").is_dir()
    assert (tmp_path / "data").is_dir()


def test_sync_search_read(cli_env: Path, monkeypatch, capsys):
    run(monkeypatch, "init")
    (cli_env / "memory" / "2026-01-05.md").write_text(NOTE, encoding="utf-8")
    capsys.readouterr()

    assert run(monkeypatch, "sync") == 0
    assert "Added: 1" in capsys.readouterr().out

    assert run(monkeypatch, "search", "Tuesday") == 0
    out = capsys.readouterr().out
    assert "memory/2026-01-05.md" in out
    assert "Tuesday" in out

    assert run(monkeypatch, "read", "memory/2026-01-05.md", "2", "1") == 0
    assert capsys.readouterr().out.startswith("We decided to deploy")

    assert run(monkeypatch, "status") == 0
    assert "Memories: 1" in capsys.readouterr().out


def test_read_requires_integer_range(cli_env, monkeypatch, capsys):
    assert run(monkeypatch, "read", "MEMORY.md", "two") == 1


def test_bad_configuration_exits(cli_env, monkeypatch, capsys):
    monkeypatch.setenv("CAIRN_COMPRESSION__DAILY_TO_WEEKLY", "weekly")
    assert run(monkeypatch, "status") == 2
    assert "Configuration error" in capsys.readouterr().out
