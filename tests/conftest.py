"""Shared fixtures for faultline tests."""

import textwrap
import threading
from pathlib import Path
from typing import Dict, List, Optional

import pytest

from faultline.analyzers import usage_indexer
from faultline.config import AnalysisConfiguration


def build_diff(path: str, removed: List[str] = (), added: List[str] = (),
               context_before: List[str] = (), context_after: List[str] = (),
               old_start: int = 1, new_start: Optional[int] = None, status: str = "modified") -> str:
    """Build a single-hunk git diff for one file."""
    new_start = old_start if new_start is None else new_start
    old_count = len(context_before) + len(removed) + len(context_after)
    new_count = len(context_before) + len(added) + len(context_after)
    old_name = "/dev/null" if status == "added" else f"a/{path}"
    new_name = "/dev/null" if status == "deleted" else f"b/{path}"
    lines = [f"diff --git a/{path} b/{path}"]
    if status == "added":
        lines.append("new file mode 100644")
        old_start, old_count = 0, 0
    elif status == "deleted":
        lines.append("deleted file mode 100644")
        new_start, new_count = 0, 0
    lines += [
        "index 1111111..2222222 100644",
        f"--- {old_name}",
        f"+++ {new_name}",
        f"@@ -{old_start},{old_count} +{new_start},{new_count} @@",
    ]
    lines += [f" {l}" for l in context_before]
    lines += [f"-{l}" for l in removed]
    lines += [f"+{l}" for l in added]
    lines += [f" {l}" for l in context_after]
    return "\n".join(lines) + "\n"


@pytest.fixture
def make_codebase(tmp_path):
    """Write a dict of relative path -> content under a fresh root and return the root."""
    def _make(files: Dict[str, str]) -> Path:
        for relative, content in files.items():
            target = tmp_path / relative
            target.parent.mkdir(parents=True, exist_ok=True)
            if isinstance(content, bytes):
                target.write_bytes(content)
            else:
                target.write_text(textwrap.dedent(content).lstrip("\n"), encoding="utf-8")
        return tmp_path
    return _make


@pytest.fixture
def config():
    """Small, deterministic configuration."""
    return AnalysisConfiguration(max_workers=2, max_open_files=4)


class ReadClock:
    """A fake monotonic clock that advances one tick per source file read."""

    def __init__(self):
        self.now = 0
        self._lock = threading.Lock()

    def __call__(self):
        with self._lock:
            return self.now

    def tick(self):
        with self._lock:
            self.now += 1


@pytest.fixture
def read_clock(monkeypatch):
    """Make every usage-scan file read cost one clock tick."""
    clock = ReadClock()
    real_read = usage_indexer.read_source

    def timed_read(path, max_bytes):
        clock.tick()
        return real_read(path, max_bytes)

    monkeypatch.setattr(usage_indexer, "read_source", timed_read)
    return clock
