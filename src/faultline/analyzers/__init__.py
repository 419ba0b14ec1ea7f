"""Change impact analysis pipeline."""

from .candidate_extractor import CandidateExtractor, Candidate, ChangeKind
from .visibility_resolver import VisibilityResolver, VisibilityVerdict, Visibility
from .usage_indexer import UsageIndexer, UsageRecord, UsageEvidence
from .project_profiler import ProjectProfiler, ProjectProfile, Posture
from .severity_classifier import SeverityClassifier, Finding, Severity, Evidence
from .report_assembler import ReportAssembler, AnalysisReport
from .impact_analyzer import ImpactAnalyzer, AnalysisProgress

__all__ = [
    "CandidateExtractor", "Candidate", "ChangeKind",
    "VisibilityResolver", "VisibilityVerdict", "Visibility",
    "UsageIndexer", "UsageRecord", "UsageEvidence",
    "ProjectProfiler", "ProjectProfile", "Posture",
    "SeverityClassifier", "Finding", "Severity", "Evidence",
    "ReportAssembler", "AnalysisReport",
    "ImpactAnalyzer", "AnalysisProgress",
]
