"""Shared fixtures: throwaway git repositories and isolated settings."""

import os
import subprocess
from pathlib import Path

import pytest

from cesto.config import Settings, load_settings


class UpstreamRepo:
    """A local git repository standing in for a plugin's remote."""

    def __init__(self, path: Path):
        self.path = path
        self.path.mkdir(parents=True)
        self._git("-c", "init.defaultBranch=main", "init", "--quiet")

    @property
    def url(self) -> str:
        return self.path.as_uri()

    def _git(self, *args: str) -> str:
        result = subprocess.run(
            ["git", "-c", "user.name=Test", "-c", "user.email=test@example.com", *args],
            cwd=self.path,
            capture_output=True,
            text=True,
            check=True,
        )
        return result.stdout.strip()

    def commit(self, message: str, filename: str = "plugin.kak") -> str:
        """Append a line to a file and commit it; returns the new revision."""
        target = self.path / filename
        with open(target, "a", encoding="utf-8") as f:
            f.write(f"# {message}\n")
        self._git("add", filename)
        self._git("commit", "--quiet", "-m", message)
        return self.head()

    def head(self) -> str:
        return self._git("rev-parse", "HEAD")

    def rewrite_last_commit(self, message: str) -> str:
        """Replace the last commit, so existing clones can no longer fast-forward."""
        self._git("reset", "--quiet", "--hard", "HEAD~1")
        return self.commit(message, filename="rewritten.kak")


@pytest.fixture
def upstream(tmp_path):
    """Factory creating named upstream repositories with one commit each."""

    def _make(name: str) -> UpstreamRepo:
        repo = UpstreamRepo(tmp_path / "remotes" / name)
        repo.commit(f"Initial {name}")
        return repo

    return _make


@pytest.fixture
def test_env(tmp_path) -> dict[str, str]:
    """Process environment pointing HOME and the XDG directories into tmp_path."""
    env = {key: value for key, value in os.environ.items() if not key.startswith("CESTO_")}
    env.update(
        {
            "HOME": str(tmp_path / "home"),
            "XDG_CONFIG_HOME": str(tmp_path / "config"),
            "XDG_DATA_HOME": str(tmp_path / "data"),
        }
    )
    return env


@pytest.fixture
def settings(test_env) -> Settings:
    """Settings rooted in tmp_path with directories prepared."""
    resolved = load_settings(env=test_env)
    resolved.create_dirs()
    return resolved
