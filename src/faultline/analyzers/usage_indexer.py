"""Usage Indexer - Finds textual references to changed symbols across the codebase."""

import logging
import re
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence, Set, Tuple

from ..config import AnalysisConfiguration
from ..core.diff_parser import Hunk
from ..core.files import discover_files, match_globs, read_source
from ..exceptions import UnreadableFileError
from .candidate_extractor import Candidate, ChangeKind
from .declarations import COMMENT_LEADER, declares

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UsageRecord:
    """A single located reference to a candidate's symbol."""
    symbol: str
    file_path: str
    line_number: int
    is_test: bool
    line_text: str = ""
    is_declaration: bool = False  # the line declares the same name
    in_comment: bool = False


@dataclass
class UsageEvidence:
    """Usage records for one candidate plus how complete the scan was."""
    candidate: Candidate
    records: List[UsageRecord] = field(default_factory=list)
    files_total: int = 0
    files_scanned: int = 0
    files_skipped: int = 0
    incomplete: bool = False
    collision: Optional[UsageRecord] = None
    collision_reason: str = ""

    @property
    def usages(self) -> List[UsageRecord]:
        """References only; same-name declarations elsewhere are not callers."""
        return [r for r in self.records if not r.is_declaration]

    @property
    def non_test_usages(self) -> List[UsageRecord]:
        return [r for r in self.usages if not r.is_test]

    @property
    def test_usages(self) -> List[UsageRecord]:
        return [r for r in self.usages if r.is_test]

    @property
    def comment_matches(self) -> int:
        return sum(1 for r in self.usages if r.in_comment)

    @property
    def declarations(self) -> List[UsageRecord]:
        """Existing non-test declarations of the same name."""
        return [r for r in self.records if r.is_declaration and not r.is_test]

    def settle_collision(self, found: Optional[Tuple[UsageRecord, str]]):
        """Record the clashing declaration for an added name, or drop unrelated matches.

        Without a clash, matches outside the declaring file belong to some
        other symbol that happens to share the name.
        """
        if found is not None:
            self.collision, self.collision_reason = found
            return
        own_file = self.candidate.file_path
        self.records = [r for r in self.records if r.file_path == own_file and not r.is_declaration]


def excluded_lines(hunks: Sequence[Hunk]) -> Set[Tuple[str, int]]:
    """(path, line) pairs of the diff's own added lines, which must not self-match."""
    return {(hunk.path, line.new_line) for hunk in hunks for line in hunk.added_lines}


class UsageIndexer:
    """Scans codebase files concurrently for word-bounded occurrences of candidate symbols.

    Candidates are handled one after another; each one fans its files out to a
    thread pool. A bounded semaphore shared by all workers caps the number of
    files open at once.
    """

    def __init__(self, root: Path, config: Optional[AnalysisConfiguration] = None,
                 clock: Callable[[], float] = time.monotonic, deadline: Optional[float] = None):
        self.root = Path(root)
        self.config = config or AnalysisConfiguration()
        self.clock = clock
        self.deadline = deadline
        self.warnings: List[str] = []
        self._open_files = threading.BoundedSemaphore(self.config.max_open_files)
        self._warned: Set[str] = set()

    def index(self, candidates: Sequence[Candidate], excluded: Set[Tuple[str, int]],
              file_paths: Optional[Sequence[str]] = None) -> Dict[Tuple[str, str], UsageEvidence]:
        """Collect usage evidence for every candidate, keyed by candidate identity."""
        files = discover_files(self.root, self.config.exclude_dirs, file_paths)
        logger.debug("Usage scan over %d files for %d candidates", len(files), len(candidates))

        results = {}
        for candidate in candidates:
            results[candidate.key] = self._index_candidate(candidate, files, excluded)
        return results

    def _index_candidate(self, candidate: Candidate, files: List[str],
                         excluded: Set[Tuple[str, int]]) -> UsageEvidence:
        term = candidate.search_term
        pattern = re.compile(r'(?<!\w)' + re.escape(term) + r'(?!\w)')
        evidence = UsageEvidence(candidate=candidate, files_total=len(files))

        futures = []
        with ThreadPoolExecutor(max_workers=self.config.worker_count) as executor:
            for relative in files:
                if self._past_deadline():
                    break
                futures.append(executor.submit(
                    self._scan_file, candidate, relative, pattern, term, excluded))

        # Results are merged only after every submitted scan has finished
        records = []
        for future in futures:
            try:
                found = future.result()
            except UnreadableFileError as e:
                evidence.files_skipped += 1
                self._warn(e.message)
                continue
            if found is None:
                continue
            records.extend(found)
            evidence.files_scanned += 1

        evidence.records = sorted(records, key=lambda r: (r.file_path, r.line_number))
        attempted = evidence.files_scanned + evidence.files_skipped
        evidence.incomplete = attempted < len(files)
        if evidence.incomplete:
            message = (f"Usage scan for {candidate.symbol} stopped at the deadline after "
                       f"{attempted} of {len(files)} files")
            logger.warning(message)
            self.warnings.append(message)
        return evidence

    def _scan_file(self, candidate: Candidate, relative: str, pattern: re.Pattern, term: str,
                   excluded: Set[Tuple[str, int]]) -> Optional[List[UsageRecord]]:
        """Scan one file; runs in a worker thread and touches no shared results.

        Returns None when the deadline passed before the file was read.
        """
        if self._past_deadline():
            return None
        try:
            with self._open_files:
                if self._past_deadline():
                    return None
                content = read_source(self.root / relative, self.config.max_file_size_bytes)
        except UnreadableFileError as e:
            raise UnreadableFileError(relative, e.reason) from e

        if term not in content:
            return []

        is_test = match_globs(relative, self.config.test_globs)
        own_file = relative == candidate.file_path
        records = []
        for line_number, line in enumerate(content.splitlines(), 1):
            if (relative, line_number) in excluded or not pattern.search(line):
                continue
            is_declaration = declares(line, term, relative)
            if is_declaration and own_file and candidate.change_kind is not ChangeKind.ADDED:
                # The candidate's own declaration is not a usage of itself
                continue
            records.append(UsageRecord(
                symbol=candidate.symbol,
                file_path=relative,
                line_number=line_number,
                is_test=is_test,
                line_text=line.strip(),
                is_declaration=is_declaration,
                in_comment=bool(COMMENT_LEADER.match(line)),
            ))
        return records

    def _past_deadline(self) -> bool:
        return self.deadline is not None and self.clock() >= self.deadline

    def _warn(self, message: str):
        if message not in self._warned:
            self._warned.add(message)
            logger.warning(message)
            self.warnings.append(message)
