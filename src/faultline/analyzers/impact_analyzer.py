"""Impact Analyzer - Orchestrates the change impact analysis pipeline."""

import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, List, Optional, Sequence

from ..config import AnalysisConfiguration
from ..core.diff_parser import DiffParser
from ..core.inputs import PublicSurface, TestSignal
from .candidate_extractor import CandidateExtractor, ChangeKind
from .project_profiler import ProjectProfiler
from .report_assembler import AnalysisReport, ReportAssembler
from .severity_classifier import SeverityClassifier
from .usage_indexer import UsageIndexer, excluded_lines
from .visibility_resolver import VisibilityResolver

logger = logging.getLogger(__name__)

PHASES = (
    "diff_parsing",
    "candidate_extraction",
    "project_profiling",
    "visibility_resolution",
    "usage_indexing",
    "severity_classification",
    "report_assembly",
)


@dataclass
class AnalysisProgress:
    """Tracks progress through analysis phases."""
    current_phase: str
    start_time: float
    phase_start_time: float
    completed_phases: List[str] = field(default_factory=list)
    total_phases: int = len(PHASES)
    clock: Callable[[], float] = time.monotonic

    @property
    def elapsed_time(self) -> float:
        return self.clock() - self.start_time

    @property
    def phase_elapsed_time(self) -> float:
        return self.clock() - self.phase_start_time


class ImpactAnalyzer:
    """Runs DiffParser -> CandidateExtractor -> {visibility, usage, profile} -> classifier -> report."""

    def __init__(self, configuration: Optional[AnalysisConfiguration] = None,
                 clock: Callable[[], float] = time.monotonic,
                 on_phase: Optional[Callable[[str], None]] = None):
        self.config = configuration or AnalysisConfiguration()
        self.clock = clock
        self.on_phase = on_phase
        self.progress: Optional[AnalysisProgress] = None

    def analyze(self, diff_text: str, root: Path, file_paths: Optional[Sequence[str]] = None,
                test_signal: Optional[TestSignal] = None,
                public_surface: Optional[PublicSurface] = None) -> AnalysisReport:
        """Analyze ``diff_text`` against the codebase snapshot at ``root``.

        Raises:
            MalformedDiffError: If the diff framing cannot be parsed.
        """
        root = Path(root)
        start = self.clock()
        deadline = None
        if self.config.time_budget_seconds is not None:
            deadline = start + self.config.time_budget_seconds
        self.progress = AnalysisProgress(current_phase="initialization", start_time=start,
                                         phase_start_time=start, clock=self.clock)
        warnings: List[str] = []

        self._update_progress("diff_parsing")
        parser = DiffParser()
        hunks = parser.parse(diff_text)
        warnings.extend(parser.warnings)

        self._update_progress("candidate_extraction")
        extractor = CandidateExtractor(self.config.rename_similarity_threshold)
        candidates = extractor.extract(hunks)
        logger.info("%d candidates from %d changed files", len(candidates), len(hunks))

        self._update_progress("project_profiling")
        profiler = ProjectProfiler(self.config)
        profile = profiler.profile(root)
        warnings.extend(profiler.warnings)

        self._update_progress("visibility_resolution")
        resolver = VisibilityResolver(root, self.config, hunks, public_surface)
        verdicts = {candidate.key: resolver.resolve(candidate) for candidate in candidates}

        self._update_progress("usage_indexing")
        indexer = UsageIndexer(root, self.config, clock=self.clock, deadline=deadline)
        usage = indexer.index(candidates, excluded_lines(hunks), file_paths)
        warnings.extend(indexer.warnings)
        for candidate in candidates:
            if candidate.change_kind is ChangeKind.ADDED:
                evidence = usage[candidate.key]
                evidence.settle_collision(resolver.find_collision(candidate, evidence.declarations))

        self._update_progress("severity_classification")
        classifier = SeverityClassifier(profile, test_signal)
        findings = [
            classifier.classify(candidate, verdicts[candidate.key], usage[candidate.key])
            for candidate in candidates
        ]

        self._update_progress("report_assembly")
        report = ReportAssembler().assemble(findings, usage, profile, warnings)
        self._update_progress("complete")
        return report

    def _update_progress(self, phase: str):
        """Update analysis progress."""
        progress = self.progress
        if progress.current_phase != "initialization":
            progress.completed_phases.append(progress.current_phase)
        progress.current_phase = phase
        progress.phase_start_time = self.clock()
        logger.debug("Phase: %s", phase)
        if self.on_phase is not None:
            self.on_phase(phase)
