"""Unified diff parsing into per-file hunks."""

import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterator, List, Optional, Tuple

from ..exceptions import MalformedDiffError

logger = logging.getLogger(__name__)

HUNK_HEADER = re.compile(r'^@@ -(\d+)(?:,(\d+))? \+(\d+)(?:,(\d+))? @@ ?(.*)$')
GIT_HEADER = re.compile(r'^diff --git (\S+) (\S+)')


class LineKind(Enum):
    """Kind of a line inside a hunk."""
    ADDED = "added"
    REMOVED = "removed"
    CONTEXT = "context"


@dataclass(frozen=True)
class DiffLine:
    """A single line of hunk content with its old/new line numbers."""
    kind: LineKind
    text: str
    old_line: Optional[int]
    new_line: Optional[int]
    range_index: int = 0


@dataclass(frozen=True)
class HunkRange:
    """Line ranges from one ``@@`` header."""
    old_start: int
    old_count: int
    new_start: int
    new_count: int
    heading: str = ""


@dataclass(frozen=True)
class ChangeBlock:
    """A maximal run of removed/added lines between context lines."""
    index: int
    removed: Tuple[DiffLine, ...]
    added: Tuple[DiffLine, ...]
    preceding: Tuple[DiffLine, ...]  # lines before the block, nearest last
    heading: str = ""


@dataclass(frozen=True)
class Hunk:
    """All changes to one file, in diff order."""
    path: str
    old_path: Optional[str]
    status: str  # added, deleted, modified, renamed
    lines: Tuple[DiffLine, ...]
    ranges: Tuple[HunkRange, ...]

    @property
    def added_lines(self) -> List[DiffLine]:
        return [line for line in self.lines if line.kind is LineKind.ADDED]

    @property
    def removed_lines(self) -> List[DiffLine]:
        return [line for line in self.lines if line.kind is LineKind.REMOVED]

    def change_blocks(self) -> Iterator[ChangeBlock]:
        """Yield paired removed/added blocks with the lines that precede them.

        ``preceding`` only holds lines from the same ``@@`` range, so scope
        lookups never cross into an unrelated part of the file.
        """
        lines = self.lines
        index = 0
        pos = 0
        range_begin = 0
        while pos < len(lines):
            if pos == 0 or lines[pos].range_index != lines[pos - 1].range_index:
                range_begin = pos
            if lines[pos].kind is LineKind.CONTEXT:
                pos += 1
                continue
            start = pos
            range_index = lines[pos].range_index
            while (pos < len(lines) and lines[pos].kind is not LineKind.CONTEXT
                   and lines[pos].range_index == range_index):
                pos += 1
            run = lines[start:pos]
            heading = self.ranges[range_index].heading if range_index < len(self.ranges) else ""
            yield ChangeBlock(
                index=index,
                removed=tuple(l for l in run if l.kind is LineKind.REMOVED),
                added=tuple(l for l in run if l.kind is LineKind.ADDED),
                preceding=tuple(lines[range_begin:start]),
                heading=heading,
            )
            index += 1


@dataclass
class _FileSection:
    old_path: Optional[str] = None
    new_path: Optional[str] = None
    status: str = "modified"
    binary: bool = False
    lines: List[DiffLine] = field(default_factory=list)
    ranges: List[HunkRange] = field(default_factory=list)

    @property
    def path(self) -> Optional[str]:
        if self.new_path and self.new_path != '/dev/null':
            return self.new_path
        if self.old_path and self.old_path != '/dev/null':
            return self.old_path
        return None


class DiffParser:
    """Parses unified diff text into one Hunk per touched file."""

    def __init__(self):
        self.warnings: List[str] = []

    def parse_file(self, diff_path: str) -> List[Hunk]:
        """Read a diff from disk and parse it."""
        return self.parse(read_diff_text(diff_path))

    def parse(self, diff_text: str) -> List[Hunk]:
        """Parse unified diff text.

        Raises:
            MalformedDiffError: If file or hunk framing cannot be parsed.
        """
        self.warnings = []
        sections: List[_FileSection] = []
        section: Optional[_FileSection] = None
        lines = diff_text.splitlines()
        i = 0

        while i < len(lines):
            line = lines[i]
            line_no = i + 1

            git_match = GIT_HEADER.match(line)
            if git_match:
                section = _FileSection(
                    old_path=self._normalize_path(git_match.group(1)),
                    new_path=self._normalize_path(git_match.group(2)),
                )
                sections.append(section)
                i += 1
                continue

            if line.startswith('--- '):
                if i + 1 >= len(lines) or not lines[i + 1].startswith('+++ '):
                    raise MalformedDiffError(line_no, "'---' header without a following '+++' header")
                old_path = self._header_path(line[4:])
                new_path = self._header_path(lines[i + 1][4:])
                if section is None or section.lines or section.ranges:
                    section = _FileSection()
                    sections.append(section)
                section.old_path = old_path
                section.new_path = new_path
                if old_path == '/dev/null':
                    section.status = "added"
                elif new_path == '/dev/null':
                    section.status = "deleted"
                elif old_path != new_path and section.status == "modified":
                    section.status = "renamed"
                i += 2
                continue

            if line.startswith('+++ '):
                raise MalformedDiffError(line_no, "'+++' header without a preceding '---' header")

            if line.startswith('@@'):
                if section is None or section.path is None:
                    raise MalformedDiffError(line_no, "hunk header before any file header")
                i = self._parse_hunk(lines, i, section)
                continue

            if section is not None and not section.ranges:
                self._parse_extended_header(line, section)
            i += 1

        return self._build_hunks(sections)

    def _parse_extended_header(self, line: str, section: _FileSection):
        """Handle git extended header lines for the current file."""
        if line.startswith('new file mode'):
            section.status = "added"
        elif line.startswith('deleted file mode'):
            section.status = "deleted"
        elif line.startswith('rename from ') or line.startswith('copy from '):
            section.old_path = line.split(' from ', 1)[1].strip()
            section.status = "renamed"
        elif line.startswith('rename to ') or line.startswith('copy to '):
            section.new_path = line.split(' to ', 1)[1].strip()
            section.status = "renamed"
        elif line.startswith('Binary files ') or line.startswith('GIT binary patch'):
            section.binary = True

    def _parse_hunk(self, lines: List[str], start: int, section: _FileSection) -> int:
        """Parse one hunk starting at its header; return the index after it."""
        match = HUNK_HEADER.match(lines[start])
        if not match:
            raise MalformedDiffError(start + 1, f"unparseable hunk header: {lines[start]!r}")

        old_start = int(match.group(1))
        old_count = int(match.group(2)) if match.group(2) else 1
        new_start = int(match.group(3))
        new_count = int(match.group(4)) if match.group(4) else 1
        hunk_range = HunkRange(old_start, old_count, new_start, new_count, match.group(5).strip())
        section.ranges.append(hunk_range)
        range_index = len(section.ranges) - 1

        old_line, new_line = old_start, new_start
        old_left, new_left = old_count, new_count
        i = start + 1

        while old_left > 0 or new_left > 0:
            if i >= len(lines):
                raise MalformedDiffError(i, "hunk truncated before its line counts were satisfied")
            line = lines[i]
            if line.startswith('\\'):
                i += 1
                continue
            prefix, text = (line[:1], line[1:]) if line else (' ', '')

            if prefix == ' ':
                if old_left <= 0 or new_left <= 0:
                    raise MalformedDiffError(i + 1, "context line exceeds hunk line counts")
                section.lines.append(DiffLine(LineKind.CONTEXT, text, old_line, new_line, range_index))
                old_line += 1
                new_line += 1
                old_left -= 1
                new_left -= 1
            elif prefix == '-':
                if old_left <= 0:
                    raise MalformedDiffError(i + 1, "removed line exceeds hunk line counts")
                section.lines.append(DiffLine(LineKind.REMOVED, text, old_line, None, range_index))
                old_line += 1
                old_left -= 1
            elif prefix == '+':
                if new_left <= 0:
                    raise MalformedDiffError(i + 1, "added line exceeds hunk line counts")
                section.lines.append(DiffLine(LineKind.ADDED, text, None, new_line, range_index))
                new_line += 1
                new_left -= 1
            else:
                raise MalformedDiffError(i + 1, f"unexpected line inside hunk: {line!r}")
            i += 1

        # Trailing "\ No newline at end of file" belongs to this hunk
        while i < len(lines) and lines[i].startswith('\\'):
            i += 1
        return i

    def _build_hunks(self, sections: List[_FileSection]) -> List[Hunk]:
        """Merge sections per path, preserving first-appearance order."""
        merged = {}
        order = []
        for section in sections:
            path = section.path
            if path is None:
                continue
            if section.binary:
                message = f"Skipping binary file {path}"
                logger.warning(message)
                self.warnings.append(message)
                continue
            if not section.ranges:
                # Pure rename or mode change: nothing to analyze
                continue
            if path not in merged:
                merged[path] = _FileSection(
                    old_path=section.old_path, new_path=section.new_path, status=section.status
                )
                order.append(path)
            target = merged[path]
            offset = len(target.ranges)
            target.ranges.extend(section.ranges)
            target.lines.extend(
                DiffLine(l.kind, l.text, l.old_line, l.new_line, l.range_index + offset)
                for l in section.lines
            )

        hunks = []
        for path in order:
            section = merged[path]
            old_path = section.old_path if section.old_path != '/dev/null' else None
            hunks.append(Hunk(
                path=path,
                old_path=old_path,
                status=section.status,
                lines=tuple(section.lines),
                ranges=tuple(section.ranges),
            ))
        return hunks

    def _header_path(self, raw: str) -> str:
        """Extract the path from a ---/+++ header, dropping any timestamp."""
        path = raw.split('\t', 1)[0].strip()
        if path.startswith('"') and path.endswith('"') and len(path) > 1:
            path = path[1:-1]
        return self._normalize_path(path)

    def _normalize_path(self, file_path: str) -> str:
        """Normalize file path by removing a/ or b/ prefixes."""
        if file_path == '/dev/null':
            return file_path
        if file_path.startswith('a/') or file_path.startswith('b/'):
            return file_path[2:]
        if file_path.startswith('./'):
            return file_path[2:]
        return file_path


def read_diff_text(diff_path: str) -> str:
    """Read a diff file, trying utf-8, latin1 and cp1252 in turn."""
    encodings = ['utf-8', 'latin1', 'cp1252']
    for encoding in encodings:
        try:
            with open(diff_path, 'r', encoding=encoding) as f:
                return f.read()
        except UnicodeDecodeError:
            continue
    raise MalformedDiffError(0, f"could not decode {diff_path} with any supported encoding")
