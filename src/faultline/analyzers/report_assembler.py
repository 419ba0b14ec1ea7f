"""Report Assembler - Orders findings, derives the verdict and builds the impact graph."""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

import networkx as nx

from .project_profiler import ProjectProfile
from .severity_classifier import Finding, Severity
from .usage_indexer import UsageEvidence

logger = logging.getLogger(__name__)

SEVERITY_ORDER = (Severity.BREAKING, Severity.RISKY, Severity.SAFE)


@dataclass
class AnalysisReport:
    """The engine's output contract: ordered findings plus an aggregate verdict."""
    findings: List[Finding]
    verdict: str
    profile: ProjectProfile
    graph: nx.DiGraph
    warnings: List[str] = field(default_factory=list)

    @property
    def breaking(self) -> List[Finding]:
        return [f for f in self.findings if f.severity is Severity.BREAKING]

    @property
    def risky(self) -> List[Finding]:
        return [f for f in self.findings if f.severity is Severity.RISKY]

    @property
    def safe(self) -> List[Finding]:
        return [f for f in self.findings if f.severity is Severity.SAFE]

    @property
    def counts(self) -> Dict[str, int]:
        return {severity.value: len([f for f in self.findings if f.severity is severity])
                for severity in SEVERITY_ORDER}

    def finding_for(self, symbol: str, file_path: Optional[str] = None) -> Optional[Finding]:
        for finding in self.findings:
            if finding.candidate.symbol == symbol and file_path in (None, finding.candidate.file_path):
                return finding
        return None

    def most_affected_files(self, limit: int = 10) -> List[Tuple[str, int]]:
        """Files ranked by how many findings reach them."""
        ranked = [
            (node, self.graph.in_degree(node))
            for node, data in self.graph.nodes(data=True)
            if data.get("kind") == "file"
        ]
        ranked.sort(key=lambda item: (-item[1], item[0]))
        return ranked[:limit]

    def to_dict(self) -> Dict[str, Any]:
        """JSON-ready representation; identical inputs serialize identically."""
        return {
            "verdict": self.verdict,
            "counts": self.counts,
            "posture": {
                "posture": self.profile.posture.value,
                "evidence": list(self.profile.evidence),
            },
            "findings": [_finding_to_dict(f) for f in self.findings],
            "safe_summary": {
                "count": len(self.safe),
                "symbols": [f"{f.candidate.symbol} ({f.candidate.file_path})" for f in self.safe],
            },
            "most_affected_files": [
                {"file": path, "findings": count} for path, count in self.most_affected_files()
            ],
            "warnings": list(self.warnings),
        }


def _finding_to_dict(finding: Finding) -> Dict[str, Any]:
    candidate = finding.candidate
    return {
        "symbol": candidate.symbol,
        "file": candidate.file_path,
        "line": candidate.line_number,
        "family": candidate.family,
        "change_kind": candidate.change_kind.value,
        "renamed_to": candidate.renamed_to,
        "severity": finding.severity.value,
        "visibility": finding.visibility.value,
        "tags": list(finding.tags),
        "impact": finding.impact,
        "remediation": finding.remediation,
        "evidence": [[e.kind, e.detail] for e in finding.evidence],
        "affected_files": list(finding.affected_files),
    }


def aggregate_verdict(findings: Sequence[Finding]) -> str:
    breaking = sum(1 for f in findings if f.severity is Severity.BREAKING)
    risky = sum(1 for f in findings if f.severity is Severity.RISKY)
    if breaking == 0 and risky == 0:
        return "No breaking changes detected"
    return f"{breaking} breaking, {risky} risky"


class ReportAssembler:
    """Groups findings by severity while keeping diff order within each group."""

    def assemble(self, findings: Sequence[Finding], usage: Dict[Tuple[str, str], UsageEvidence],
                 profile: ProjectProfile, warnings: Sequence[str] = ()) -> AnalysisReport:
        graph = self._build_impact_graph(findings, usage)
        for finding in findings:
            node = _finding_node(finding)
            finding.affected_files = sorted(graph.successors(node))

        # Findings arrive in candidate (diff) order; sorted() is stable
        ordered = sorted(findings, key=lambda f: SEVERITY_ORDER.index(f.severity))
        report = AnalysisReport(
            findings=list(ordered),
            verdict=aggregate_verdict(ordered),
            profile=profile,
            graph=graph,
            warnings=list(warnings),
        )
        logger.debug("Report: %s", report.verdict)
        return report

    def _build_impact_graph(self, findings: Sequence[Finding],
                            usage: Dict[Tuple[str, str], UsageEvidence]) -> nx.DiGraph:
        """Directed graph from each finding to the files that reference its symbol."""
        graph = nx.DiGraph()
        for finding in findings:
            node = _finding_node(finding)
            graph.add_node(node, kind="finding", severity=finding.severity.value)
            evidence = usage.get(finding.key)
            if evidence is None:
                continue
            for record in evidence.usages:
                if not graph.has_node(record.file_path):
                    graph.add_node(record.file_path, kind="file")
                if graph.has_edge(node, record.file_path):
                    graph[node][record.file_path]["references"] += 1
                else:
                    graph.add_edge(node, record.file_path, references=1, is_test=record.is_test)
        return graph


def _finding_node(finding: Finding) -> str:
    return f"{finding.candidate.file_path}::{finding.candidate.symbol}"
