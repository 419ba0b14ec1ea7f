"""Optional analysis inputs supplied by collaborators: test-run signal and public surface."""

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import FrozenSet, Iterable, Tuple, Union

from ..exceptions import ConfigurationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TestSignal:
    """Outcome of a test run executed outside the engine."""
    __test__ = False  # not a pytest test class

    ran: bool
    passed: bool = False
    timed_out: bool = False

    def describe(self) -> str:
        if not self.ran:
            return "test suite was not run"
        if self.timed_out:
            return "test suite timed out"
        return "test suite passed" if self.passed else "test suite failed"


@dataclass(frozen=True)
class PublicSurface:
    """Explicit list of published symbols; overrides heuristic visibility."""
    names: FrozenSet[str]
    qualified: FrozenSet[Tuple[str, str]]  # (file path, symbol)
    source: str = ""

    @classmethod
    def from_entries(cls, entries: Iterable[str], source: str = "") -> "PublicSurface":
        names = set()
        qualified = set()
        for entry in entries:
            entry = entry.strip()
            if not entry:
                continue
            if ':' in entry:
                path, name = entry.rsplit(':', 1)
                qualified.add((path.strip().removeprefix('./'), name.strip()))
            else:
                names.add(entry)
        return cls(frozenset(names), frozenset(qualified), source)

    def lists(self, symbol: str, file_path: str) -> bool:
        """Whether ``symbol`` (or the type that contains it) is listed."""
        candidates = {symbol, symbol.split('.', 1)[0]}
        for name in candidates:
            if name in self.names or (file_path, name) in self.qualified:
                return True
        return False


def load_test_signal(path: Union[str, Path]) -> TestSignal:
    """Load a test signal from JSON: ``{"ran": true, "passed": false, "timed_out": false}``.

    Raises:
        ConfigurationError: If the file cannot be read or has the wrong shape.
    """
    data = _load_json(path)
    if not isinstance(data, dict) or 'ran' not in data:
        raise ConfigurationError("Test signal must be an object with a 'ran' key",
                                 details={"path": str(path)})
    timed_out = data.get('timed_out', data.get('timedOut', False))
    return TestSignal(ran=bool(data['ran']), passed=bool(data.get('passed', False)),
                      timed_out=bool(timed_out))


def load_public_surface(path: Union[str, Path]) -> PublicSurface:
    """Load a published-interface manifest.

    JSON files hold a list of entries or an object with a ``symbols`` list;
    anything else is read as text with one entry per line and ``#`` comments.
    Entries are ``name`` or ``path:name``.
    """
    path = Path(path)
    if path.suffix.lower() == '.json':
        data = _load_json(path)
        if isinstance(data, dict):
            data = data.get('symbols')
        if not isinstance(data, list) or not all(isinstance(entry, str) for entry in data):
            raise ConfigurationError("Public surface JSON must be a list of strings",
                                     details={"path": str(path)})
        entries = data
    else:
        try:
            text = path.read_text(encoding='utf-8')
        except OSError as e:
            raise ConfigurationError(f"Cannot read public surface file: {e}") from e
        entries = [line.split('#', 1)[0] for line in text.splitlines()]

    surface = PublicSurface.from_entries(entries, source=str(path))
    logger.debug("Loaded %d public surface entries from %s",
                 len(surface.names) + len(surface.qualified), path)
    return surface


def _load_json(path: Union[str, Path]):
    try:
        with open(path, 'r', encoding='utf-8') as f:
            return json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigurationError(f"Cannot read {path}: {e}") from e
