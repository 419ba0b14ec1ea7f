"""Tests for report assembly."""

import json

from faultline.analyzers import (
    Candidate, ChangeKind, Posture, ProjectProfile, ReportAssembler, Severity, SeverityClassifier,
    UsageEvidence, UsageRecord, Visibility, VisibilityVerdict,
)
from faultline.analyzers.declarations import FUNCTION, Declaration
from faultline.analyzers.report_assembler import aggregate_verdict

PROFILE = ProjectProfile(Posture.STANDALONE_APP)


def build(specs):
    """specs: (symbol, kind, visibility, caller files) in diff order."""
    classifier = SeverityClassifier(PROFILE)
    findings, usage = [], {}
    for position, (symbol, kind, visibility, callers) in enumerate(specs):
        declaration = Declaration(symbol, FUNCTION, f"function {symbol}() {{", 0)
        candidate = Candidate(symbol, "src/lib.js", kind, FUNCTION, 0, position + 1,
                              old_declaration=declaration, position=(0, position))
        records = [UsageRecord(symbol, path, 1, path.startswith("tests/")) for path in callers]
        evidence = UsageEvidence(candidate, records, files_total=10, files_scanned=10)
        usage[candidate.key] = evidence
        verdict = VisibilityVerdict(candidate, visibility, ("signal",))
        findings.append(classifier.classify(candidate, verdict, evidence))
    return findings, usage


SPECS = [
    ("addThing", ChangeKind.ADDED, Visibility.PUBLIC, []),
    ("tweak", ChangeKind.BEHAVIOR_CHANGED, Visibility.PUBLIC, ["src/a.js"]),
    ("dropA", ChangeKind.REMOVED, Visibility.PUBLIC, ["src/a.js", "src/b.js"]),
    ("hidden", ChangeKind.REMOVED, Visibility.INTERNAL, []),
    ("dropB", ChangeKind.REMOVED, Visibility.PUBLIC, ["src/a.js", "tests/a.test.js"]),
]


class TestOrdering:
    def test_grouped_by_severity_in_diff_order(self):
        findings, usage = build(SPECS)
        report = ReportAssembler().assemble(findings, usage, PROFILE)
        assert [f.candidate.symbol for f in report.findings] == ["dropA", "dropB", "tweak", "addThing", "hidden"]
        assert [f.severity for f in report.findings] == [
            Severity.BREAKING, Severity.BREAKING, Severity.RISKY, Severity.SAFE, Severity.SAFE]

    def test_one_finding_per_candidate(self):
        findings, usage = build(SPECS)
        report = ReportAssembler().assemble(findings, usage, PROFILE)
        assert len(report.findings) == len(SPECS)
        assert report.counts == {"breaking": 2, "risky": 1, "safe": 2}


class TestVerdict:
    def test_breaking_and_risky_counts(self):
        findings, _ = build(SPECS)
        assert aggregate_verdict(findings) == "2 breaking, 1 risky"

    def test_all_safe(self):
        findings, _ = build([("addThing", ChangeKind.ADDED, Visibility.PUBLIC, [])])
        assert aggregate_verdict(findings) == "No breaking changes detected"

    def test_empty_report(self):
        report = ReportAssembler().assemble([], {}, PROFILE)
        assert report.verdict == "No breaking changes detected"
        assert report.findings == []


class TestImpactGraph:
    def test_affected_files_come_from_usages(self):
        findings, usage = build(SPECS)
        report = ReportAssembler().assemble(findings, usage, PROFILE)
        assert report.finding_for("dropB").affected_files == ["src/a.js", "tests/a.test.js"]
        assert report.finding_for("hidden").affected_files == []

    def test_most_affected_files(self):
        findings, usage = build(SPECS)
        report = ReportAssembler().assemble(findings, usage, PROFILE)
        assert report.most_affected_files(2) == [("src/a.js", 3), ("src/b.js", 1)]

    def test_edges_count_references(self):
        findings, usage = build([("dropA", ChangeKind.REMOVED, Visibility.PUBLIC, ["src/a.js", "src/a.js"])])
        report = ReportAssembler().assemble(findings, usage, PROFILE)
        assert report.graph["src/lib.js::dropA"]["src/a.js"]["references"] == 2


class TestSerialization:
    def test_to_dict_is_json_ready(self):
        findings, usage = build(SPECS)
        report = ReportAssembler().assemble(findings, usage, PROFILE, warnings=["Skipping x.png: binary file"])
        data = json.loads(json.dumps(report.to_dict()))
        assert data["verdict"] == "2 breaking, 1 risky"
        assert data["posture"] == {"posture": "standalone_app", "evidence": []}
        assert data["safe_summary"]["count"] == 2
        assert data["warnings"] == ["Skipping x.png: binary file"]
        first = data["findings"][0]
        assert first["symbol"] == "dropA"
        assert first["severity"] == "breaking"
        assert first["change_kind"] == "removed"
        assert first["evidence"][0][0] == "change"
        assert first["affected_files"] == ["src/a.js", "src/b.js"]

    def test_identical_inputs_serialize_identically(self):
        first = ReportAssembler().assemble(*build(SPECS), PROFILE).to_dict()
        second = ReportAssembler().assemble(*build(SPECS), PROFILE).to_dict()
        assert json.dumps(first) == json.dumps(second)
