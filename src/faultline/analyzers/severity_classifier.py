"""Severity Classifier - Turns change kind, visibility, usage evidence and posture into a verdict."""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Tuple

from ..core.inputs import TestSignal
from .candidate_extractor import Candidate, ChangeKind
from .project_profiler import Posture, ProjectProfile
from .usage_indexer import UsageEvidence
from .visibility_resolver import Visibility, VisibilityVerdict

logger = logging.getLogger(__name__)

# Change kinds that alter a declaration callers depend on
STRUCTURAL_KINDS = frozenset({
    ChangeKind.REMOVED,
    ChangeKind.RENAMED,
    ChangeKind.SIGNATURE_CHANGED,
    ChangeKind.TYPE_CHANGED,
})

# Usage records listed individually in evidence before the rest are summarised
MAX_USAGE_EVIDENCE = 50

NO_CALLERS_NOTE = "no callers found in scanned codebase"
EXTERNAL_CONSUMERS_NOTE = "external consumers possible"


class Severity(Enum):
    """Severity levels, ordered Safe < Risky < Breaking."""
    BREAKING = "breaking"
    RISKY = "risky"
    SAFE = "safe"

    @property
    def rank(self) -> int:
        return {"safe": 0, "risky": 1, "breaking": 2}[self.value]


@dataclass(frozen=True)
class Evidence:
    """One (kind, detail) entry of a finding's evidence chain."""
    kind: str
    detail: str

    def as_pair(self) -> Tuple[str, str]:
        return (self.kind, self.detail)


@dataclass
class Finding:
    """Final verdict for one candidate."""
    candidate: Candidate
    severity: Severity
    visibility: Visibility
    evidence: List[Evidence]
    impact: str
    remediation: str
    tags: List[str] = field(default_factory=list)
    affected_files: List[str] = field(default_factory=list)

    @property
    def key(self) -> Tuple[str, str]:
        return self.candidate.key

    @property
    def usage_evidence(self) -> List[Evidence]:
        return [e for e in self.evidence if e.kind == "usage"]


def escalate(current: Severity, proposed: Severity) -> Severity:
    """Ties break toward the higher severity."""
    return proposed if proposed.rank > current.rank else current


class SeverityClassifier:
    """Deterministic decision table over (change kind, visibility, usage evidence, posture)."""

    def __init__(self, profile: ProjectProfile, test_signal: Optional[TestSignal] = None):
        self.profile = profile
        self.test_signal = test_signal

    def classify(self, candidate: Candidate, verdict: VisibilityVerdict,
                 usage: UsageEvidence) -> Finding:
        """Classify one candidate. Exactly one Finding per call."""
        kind = candidate.change_kind
        kind_name = kind.value if isinstance(kind, ChangeKind) else str(kind)
        evidence = [Evidence("change", f"{kind_name}: {candidate.detail}" if candidate.detail else kind_name)]
        evidence.extend(Evidence("visibility", f"{verdict.visibility.value}: {signal}")
                        for signal in verdict.evidence)
        tags: List[str] = []
        if candidate.low_confidence:
            tags.append("renamed-low-confidence")
            evidence.append(Evidence("note", f"rename to {candidate.renamed_to} is a low-confidence match"))

        non_test = usage.non_test_usages
        test_only = usage.test_usages
        evidence.append(Evidence(
            "usage-summary", f"{len(non_test)} non-test, {len(test_only)} test usages"))

        effective = kind
        if kind is ChangeKind.ADDED:
            collision = usage.collision
            if collision is not None:
                effective = ChangeKind.SIGNATURE_CHANGED
                tags.append("name-collision")
                evidence.append(Evidence(
                    "collision",
                    f"existing declaration at {collision.file_path}:{collision.line_number}"
                    + (f" ({usage.collision_reason})" if usage.collision_reason else "")))

        severity = Severity.SAFE
        if kind is ChangeKind.ADDED and effective is ChangeKind.ADDED:
            severity = Severity.SAFE
        elif effective is ChangeKind.BEHAVIOR_CHANGED:
            severity = Severity.RISKY
            evidence.append(Evidence("note", "behavior changed; static evidence cannot confirm safety"))
        elif effective in STRUCTURAL_KINDS:
            severity = self._structural(verdict, usage, evidence)
        else:
            severity = Severity.RISKY
            evidence.append(Evidence("note", "unclassified change kind"))

        if usage.incomplete:
            severity = escalate(severity, Severity.RISKY)
            tags.append("evidence-incomplete")
            evidence.append(Evidence(
                "note",
                f"usage scan stopped at the deadline after {usage.files_scanned + usage.files_skipped}"
                f" of {usage.files_total} files"))
        if usage.files_skipped:
            evidence.append(Evidence("note", f"{usage.files_skipped} files skipped"))
        if usage.comment_matches:
            evidence.append(Evidence("noise", f"{usage.comment_matches} matches are in comments"))
        if self.test_signal is not None and severity is not Severity.SAFE:
            evidence.append(Evidence("test-signal", self.test_signal.describe()))

        finding = Finding(
            candidate=candidate,
            severity=severity,
            visibility=verdict.visibility,
            evidence=evidence,
            impact=self._impact(candidate, severity, usage),
            remediation=self._remediation(candidate, effective, severity),
            tags=tags,
        )
        logger.debug("%s in %s: %s", candidate.symbol, candidate.file_path, severity.value)
        return finding

    def _structural(self, verdict: VisibilityVerdict, usage: UsageEvidence,
                    evidence: List[Evidence]) -> Severity:
        """Removed/Renamed/SignatureChanged/TypeChanged rows of the decision table."""
        if verdict.visibility is Visibility.INTERNAL:
            return Severity.SAFE

        non_test = usage.non_test_usages
        severity = Severity.SAFE
        if non_test:
            severity = escalate(severity, Severity.BREAKING)
            for record in non_test[:MAX_USAGE_EVIDENCE]:
                evidence.append(Evidence("usage", f"{record.file_path}:{record.line_number}: {record.line_text}"))
            if len(non_test) > MAX_USAGE_EVIDENCE:
                evidence.append(Evidence("note", f"{len(non_test) - MAX_USAGE_EVIDENCE} more usages not listed"))
        elif usage.test_usages:
            severity = escalate(severity, Severity.RISKY)
            evidence.append(Evidence("note", f"only test code references this symbol "
                                             f"({len(usage.test_usages)} usages)"))
        else:
            severity = escalate(severity, Severity.RISKY)
            evidence.append(Evidence("note", NO_CALLERS_NOTE))

        if not non_test and self.profile.posture is Posture.PUBLISHED_LIBRARY:
            severity = escalate(severity, Severity.RISKY)
            evidence.append(Evidence("posture", f"{self.profile.posture.value}: {EXTERNAL_CONSUMERS_NOTE}"))
        return severity

    def _impact(self, candidate: Candidate, severity: Severity, usage: UsageEvidence) -> str:
        symbol = candidate.symbol
        if severity is Severity.BREAKING:
            files = sorted({r.file_path for r in usage.non_test_usages})
            return (f"{len(usage.non_test_usages)} references to {symbol} in {len(files)} files "
                    f"will break")
        if severity is Severity.RISKY:
            return f"Cannot confirm that changing {symbol} is safe from static evidence"
        return f"No impact expected outside {candidate.file_path}"

    def _remediation(self, candidate: Candidate, kind: ChangeKind, severity: Severity) -> str:
        if severity is Severity.SAFE:
            return "None required"
        symbol = candidate.symbol
        if kind is ChangeKind.REMOVED:
            return f"Keep a deprecated {symbol} or migrate its callers before removing it"
        if kind is ChangeKind.RENAMED:
            return f"Keep {symbol} as an alias of {candidate.renamed_to} or update its callers"
        if kind is ChangeKind.SIGNATURE_CHANGED:
            if candidate.change_kind is ChangeKind.ADDED:
                return f"Choose a name that does not collide with the existing {symbol}"
            return f"Make the new {symbol} signature backward compatible or update its callers"
        if kind is ChangeKind.TYPE_CHANGED:
            return f"Keep {symbol} compatible with the previous type or update its callers"
        return f"Review the callers of {symbol} and run the test suite"
