"""Visibility Resolver - Decides whether a changed symbol is reachable from outside its file."""

import logging
import re
from dataclasses import dataclass
from enum import Enum
from pathlib import Path, PurePosixPath
from typing import Dict, List, Optional, Sequence, Tuple

from ..config import AnalysisConfiguration
from ..core.diff_parser import Hunk
from ..core.files import discover_files, match_globs, read_source
from ..core.inputs import PublicSurface
from ..exceptions import UnreadableFileError
from .candidate_extractor import Candidate
from .declarations import (
    CONFIG_KEY, ENV_VAR, FIELD, REFERENCE_FAMILIES, ROUTE, Declaration, find_container, language_for,
    match_declarations,
)
from .usage_indexer import UsageRecord

logger = logging.getLogger(__name__)

PY_ALL = re.compile(r'^__all__\s*(?::[^=]*)?=\s*[\[(](?P<body>[^\])]*)', re.MULTILINE)
JS_EXPORT = re.compile(r'^\s*export\b|\bmodule\.exports\b|\bexports\.\w+\s*=', re.MULTILINE)
RE_EXPORT_LINE = re.compile(r'\b(?:export|import|from|require|pub\s+use|use|__all__|mod)\b')
INTERNAL_MODIFIERS = ('private', 'protected', 'internal', 'fileprivate')


class Visibility(Enum):
    PUBLIC = "public"
    INTERNAL = "internal"
    AMBIGUOUS = "ambiguous"


@dataclass(frozen=True)
class VisibilityVerdict:
    """Visibility of one candidate and the signals behind it."""
    candidate: Candidate
    visibility: Visibility
    evidence: Tuple[str, ...]

    @property
    def treated_as_public(self) -> bool:
        """Ambiguous visibility is scored as public."""
        return self.visibility is not Visibility.INTERNAL


@dataclass
class _Signals:
    public: List[str]
    internal: List[str]


class VisibilityResolver:
    """Classifies candidates as public, internal or ambiguous from export surface signals."""

    def __init__(self, root: Path, config: Optional[AnalysisConfiguration] = None,
                 hunks: Sequence[Hunk] = (), public_surface: Optional[PublicSurface] = None):
        self.root = Path(root)
        self.config = config or AnalysisConfiguration()
        self.public_surface = public_surface
        self._removed_text: Dict[str, List[str]] = {}
        for hunk in hunks:
            self._removed_text.setdefault(hunk.path, []).extend(l.text for l in hunk.removed_lines)
        self._file_cache: Dict[str, str] = {}
        self._entry_points: Optional[List[str]] = None

    def resolve(self, candidate: Candidate) -> VisibilityVerdict:
        """Produce exactly one verdict for the candidate."""
        if self.public_surface is not None:
            listed = self.public_surface.lists(candidate.symbol, candidate.file_path)
            source = self.public_surface.source or "public surface manifest"
            if listed:
                return VisibilityVerdict(candidate, Visibility.PUBLIC, (f"listed in {source}",))
            return VisibilityVerdict(candidate, Visibility.INTERNAL, (f"not listed in {source}",))

        declaration = candidate.declaration
        if declaration.family == ROUTE:
            return VisibilityVerdict(candidate, Visibility.PUBLIC,
                                     (f"route registration {declaration.name}",))
        if declaration.family in (CONFIG_KEY, ENV_VAR):
            return VisibilityVerdict(candidate, Visibility.AMBIGUOUS,
                                     (f"{declaration.family.replace('_', ' ')} has no export marker",))

        signals = _Signals([], [])
        name = declaration.term
        if candidate.container is not None and candidate.container.is_container:
            self._member_signals(candidate, declaration, signals)
        else:
            self._declaration_signals(candidate.file_path, name, declaration, signals)
            self._entry_point_signals(candidate.file_path, name, signals)

        if signals.public and not signals.internal:
            visibility = Visibility.PUBLIC
        elif signals.internal and not signals.public:
            visibility = Visibility.INTERNAL
        else:
            visibility = Visibility.AMBIGUOUS
        evidence = signals.public + signals.internal
        if not evidence:
            evidence = ["no export or access signal found"]
        elif visibility is Visibility.AMBIGUOUS:
            evidence.append("conflicting visibility signals")
        return VisibilityVerdict(candidate, visibility, tuple(evidence))

    def find_collision(self, candidate: Candidate,
                       declarations: Sequence[UsageRecord]) -> Optional[Tuple[UsageRecord, str]]:
        """The first existing declaration an added name actually clashes with, and why."""
        for record in declarations:
            reason = self._collides(candidate, record)
            if reason is not None:
                return record, reason
        return None

    def _collides(self, candidate: Candidate, record: UsageRecord) -> Optional[str]:
        lines = self._read(record.file_path).splitlines()
        if not 0 < record.line_number <= len(lines):
            return None
        line = lines[record.line_number - 1]
        name = candidate.declaration.term
        existing = next((d for d in match_declarations(line, record.file_path)
                         if d.name == name and d.family not in REFERENCE_FAMILIES), None)
        if existing is None:
            return None

        container = find_container(lines[:record.line_number - 1], line, record.file_path)
        if candidate.container is not None:
            if (record.file_path == candidate.file_path and container is not None
                    and container.name == candidate.container.name):
                return f"{candidate.container.name} already declares {name}"
            return None
        if container is not None or existing.indent > 0:
            # A member or local of something else
            return None

        if record.file_path == candidate.file_path:
            return "declared twice in the same file"
        same_dir = PurePosixPath(record.file_path).parent == PurePosixPath(candidate.file_path).parent
        if same_dir and language_for(record.file_path) == language_for(candidate.file_path) == 'go':
            return "declared twice in the same Go package"

        if self._existing_is_internal(record.file_path, existing):
            return None
        entry = self._shared_entry_point(candidate.file_path, record.file_path, name)
        if entry is not None:
            return f"{entry} exports the existing {name}"
        return None

    def _existing_is_internal(self, file_path: str, declaration: Declaration) -> bool:
        if self.public_surface is not None:
            return not self.public_surface.lists(declaration.name, file_path)
        signals = _Signals([], [])
        self._declaration_signals(file_path, declaration.term, declaration, signals)
        self._entry_point_signals(file_path, declaration.term, signals)
        return bool(signals.internal) and not signals.public

    def _shared_entry_point(self, first: str, second: str, name: str) -> Optional[str]:
        """An entry point enclosing both files that re-exports ``name``."""
        dirs = [PurePosixPath(first).parent, PurePosixPath(second).parent]
        pattern = re.compile(r'(?<!\w)' + re.escape(name) + r'(?!\w)')
        for entry in self._entry_point_files():
            if entry == second:
                continue
            entry_dir = PurePosixPath(entry).parent
            if not all(d == entry_dir or entry_dir in d.parents for d in dirs):
                continue
            if any(pattern.search(line) and RE_EXPORT_LINE.search(line)
                   for line in self._read(entry).splitlines()):
                return entry
        return None

    def _declaration_signals(self, file_path: str, name: str, declaration: Declaration,
                             signals: _Signals):
        language = language_for(file_path)
        modifiers = set(declaration.modifiers)

        if language == 'python':
            if name.startswith('_') and not name.startswith('__'):
                signals.internal.append(f"{name} has a leading underscore")
                return
            exported = self._python_all(file_path)
            if exported is not None:
                if name in exported:
                    signals.public.append(f"{name} is listed in __all__")
                else:
                    signals.internal.append(f"__all__ in {file_path} omits {name}")
            elif match_globs(file_path, self.config.entry_point_globs):
                signals.public.append(f"declared in entry point {file_path}")
        elif language in ('javascript', 'typescript'):
            if 'export' in modifiers:
                signals.public.append(f"{name} is exported")
            elif modifiers & set(INTERNAL_MODIFIERS):
                signals.internal.append(f"{name} is {sorted(modifiers & set(INTERNAL_MODIFIERS))[0]}")
            elif 'public' in modifiers:
                signals.public.append(f"{name} is public")
            elif self._js_exports_name(file_path, name):
                signals.public.append(f"{name} appears in an export list of {file_path}")
            elif self._js_has_exports(file_path):
                signals.internal.append(f"{file_path} exports other symbols but not {name}")
        elif language == 'go':
            if name[:1].isupper():
                signals.public.append(f"{name} is capitalised (exported)")
            else:
                signals.internal.append(f"{name} is lower-case (package-private)")
        elif language == 'rust':
            if 'pub' in modifiers:
                signals.public.append(f"{name} is pub")
            elif any(m.startswith('pub(') for m in modifiers):
                signals.internal.append(f"{name} is restricted ({sorted(modifiers)[0]})")
            else:
                signals.internal.append(f"{name} has no pub modifier")
        elif language == 'jvm':
            if 'public' in modifiers:
                signals.public.append(f"{name} is public")
            elif modifiers & set(INTERNAL_MODIFIERS):
                signals.internal.append(f"{name} is {sorted(modifiers & set(INTERNAL_MODIFIERS))[0]}")
            elif PurePosixPath(file_path).suffix in ('.java', '.cs'):
                signals.internal.append(f"{name} has no access modifier (package default)")
        else:
            if 'export' in modifiers or 'public' in modifiers or 'pub' in modifiers:
                signals.public.append(f"{name} carries an export modifier")
            elif modifiers & set(INTERNAL_MODIFIERS):
                signals.internal.append(f"{name} carries an access restriction")

    def _member_signals(self, candidate: Candidate, declaration: Declaration, signals: _Signals):
        """Members follow their own access restriction, else the containing type."""
        language = language_for(candidate.file_path)
        modifiers = set(declaration.modifiers)
        member = declaration.term
        restricted = modifiers & set(INTERNAL_MODIFIERS)
        if restricted:
            signals.internal.append(f"{member} is {sorted(restricted)[0]}")
            return
        if member.startswith('#') or (language == 'python'
                                      and member.startswith('_') and not member.startswith('__')):
            signals.internal.append(f"{member} is a private member")
            return
        if language == 'go' and not member[:1].isupper():
            signals.internal.append(f"{member} is lower-case (unexported member)")
            return
        if language == 'rust' and declaration.family == FIELD and 'pub' not in modifiers:
            signals.internal.append(f"{member} has no pub modifier")
            return

        container = candidate.container
        container_signals = _Signals([], [])
        self._declaration_signals(candidate.file_path, container.name, container, container_signals)
        self._entry_point_signals(candidate.file_path, container.name, container_signals)
        signals.public.extend(f"member of {container.name}: {s}" for s in container_signals.public)
        signals.internal.extend(f"member of {container.name}: {s}" for s in container_signals.internal)

    def _entry_point_signals(self, file_path: str, name: str, signals: _Signals):
        """A name re-exported from an entry-point file in an enclosing directory is public."""
        declaring_dir = PurePosixPath(file_path).parent
        pattern = re.compile(r'(?<!\w)' + re.escape(name) + r'(?!\w)')
        for entry in self._entry_point_files():
            if entry == file_path:
                continue
            entry_dir = PurePosixPath(entry).parent
            if entry_dir != declaring_dir and entry_dir not in declaring_dir.parents:
                continue
            for line in self._read(entry).splitlines():
                if pattern.search(line) and RE_EXPORT_LINE.search(line):
                    signals.public.append(f"re-exported from entry point {entry}")
                    return

    def _entry_point_files(self) -> List[str]:
        if self._entry_points is None:
            files = discover_files(self.root, self.config.exclude_dirs)
            self._entry_points = [
                f for f in files
                if match_globs(f, self.config.entry_point_globs)
                and not match_globs(f, self.config.test_globs)
            ]
        return self._entry_points

    def _python_all(self, file_path: str) -> Optional[List[str]]:
        match = PY_ALL.search(self._surface_text(file_path))
        if not match:
            return None
        return re.findall(r'[\'"](\w+)[\'"]', match.group('body'))

    def _js_has_exports(self, file_path: str) -> bool:
        return bool(JS_EXPORT.search(self._surface_text(file_path)))

    def _js_exports_name(self, file_path: str, name: str) -> bool:
        pattern = re.compile(r'(?<!\w)' + re.escape(name) + r'(?!\w)')
        for line in self._surface_text(file_path).splitlines():
            if JS_EXPORT.search(line) and pattern.search(line):
                return True
        return False

    def _surface_text(self, file_path: str) -> str:
        """Current file contents plus the lines the diff removed from it."""
        removed = self._removed_text.get(file_path, [])
        return self._read(file_path) + '\n' + '\n'.join(removed)

    def _read(self, file_path: str) -> str:
        if file_path not in self._file_cache:
            try:
                self._file_cache[file_path] = read_source(self.root / file_path,
                                                          self.config.max_file_size_bytes)
            except UnreadableFileError as e:
                logger.debug("Visibility lookup cannot read %s: %s", file_path, e.reason)
                self._file_cache[file_path] = ""
        return self._file_cache[file_path]
