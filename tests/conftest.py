"""Shared fixtures for patchloop tests.

Tests use real dependencies where they are cheap (git repositories in
tmp_path, httpx.MockTransport for provider traffic). Git-backed tests are
skipped when git is not installed.
"""

from __future__ import annotations

import os
import shutil
from pathlib import Path

import pytest

from patchloop.core.config import AppConfig, LLMConfig, load_config
from patchloop.tools.shell import run_command

requires_git = pytest.mark.skipif(shutil.which("git") is None, reason="git not installed")


def init_git_repo(path: Path) -> None:
    """Initialize a fresh git repo with an initial commit."""
    run_command(["git", "init", "-q"], cwd=str(path))
    run_command(["git", "config", "user.email", "test@test.com"], cwd=str(path))
    run_command(["git", "config", "user.name", "Test"], cwd=str(path))
    run_command(["git", "config", "commit.gpgsign", "false"], cwd=str(path))
    (path / "initial.txt").write_text("initial content\n")
    run_command(["git", "add", "-A"], cwd=str(path))
    run_command(["git", "commit", "-q", "-m", "initial commit"], cwd=str(path))


def commit_count(path: Path) -> int:
    result = run_command(["git", "rev-list", "--count", "HEAD"], cwd=str(path))
    return int(result.stdout.strip())


class FakeClock:
    """Monotonic clock that only moves when told to."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def config_dir() -> Path:
    return Path(__file__).parent.parent / "config"


@pytest.fixture
def app_config(config_dir: Path) -> AppConfig:
    return load_config(config_dir=config_dir, environ={})


@pytest.fixture
def fast_llm_config() -> LLMConfig:
    return LLMConfig(
        retries=2,
        backoff_base_seconds=0.01,
        backoff_jitter_seconds=0.0,
        timeout_seconds=5,
        key_cooldown_seconds=30,
    )


@pytest.fixture
def git_repo(tmp_path: Path) -> Path:
    if shutil.which("git") is None:
        pytest.skip("git not installed")
    repo = tmp_path / "repo"
    repo.mkdir()
    init_git_repo(repo)
    return repo


_ENV_PREFIXES = ("PATCHLOOP_", "OPENROUTER_API_KEY", "GROQ_API_KEY", "GEMINI_API_KEY")


@pytest.fixture
def clean_env(monkeypatch):
    """Drop credentials and PATCHLOOP_* overrides inherited from the shell."""
    for name in list(os.environ):
        if name.startswith(_ENV_PREFIXES):
            monkeypatch.delenv(name, raising=False)
    return monkeypatch
