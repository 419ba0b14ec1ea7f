"""End-to-end tests for the impact analysis pipeline."""

import json

import pytest

from faultline.analyzers import CandidateExtractor, ImpactAnalyzer, Severity, Visibility
from faultline.analyzers.impact_analyzer import PHASES
from faultline.config import AnalysisConfiguration
from faultline.core import DiffParser, PublicSurface, TestSignal
from faultline.exceptions import MalformedDiffError

from conftest import build_diff

USERS_JS = """
import db from './db';

export function listUsers() {
  return db.all();
}
"""

HANDLERS_JS = """
import * as users from '../users';

export function show(req) {
  return users.getUser(req.id);
}

export function edit(req) {
  const user = users.getUser(req.id);
  return user;
}

export function remove(req) {
  return users.getUser(req.id).delete();
}
"""

GET_USER_REMOVED = build_diff(
    "src/users.js",
    context_before=["import db from './db';", ""],
    removed=["export function getUser(id) {", "  return db.find(id);", "}", ""],
    context_after=["export function listUsers() {"],
)


@pytest.fixture
def users_codebase(make_codebase):
    return make_codebase({
        "src/users.js": USERS_JS,
        "src/api/handlers.js": HANDLERS_JS,
        "tests/users.test.js": "test('getUser', () => expect(getUser(1)).toBeTruthy());\n",
    })


def analyze(root, diff, config=None, **kwargs):
    config = config or AnalysisConfiguration(max_workers=2, max_open_files=4)
    return ImpactAnalyzer(config).analyze(diff, root, **kwargs)


class TestScenarios:
    def test_removed_export_with_callers_is_breaking(self, users_codebase):
        report = analyze(users_codebase, GET_USER_REMOVED)
        assert len(report.findings) == 1
        finding = report.findings[0]
        assert finding.candidate.symbol == "getUser"
        assert finding.severity is Severity.BREAKING
        assert finding.visibility is Visibility.PUBLIC
        usages = finding.usage_evidence
        assert len(usages) == 3
        assert all(e.detail.startswith("src/api/handlers.js:") for e in usages)
        assert finding.affected_files == ["src/api/handlers.js", "tests/users.test.js"]
        assert report.verdict == "1 breaking, 0 risky"

    def test_removed_internal_helper_is_safe(self, make_codebase):
        root = make_codebase({"src/format.js": "export function formatUser(user) {\n  return user.name;\n}\n"})
        diff = build_diff(
            "src/format.js",
            removed=["function formatInternal(value) {", "  return String(value);", "}", ""],
            context_after=["export function formatUser(user) {"],
        )
        report = analyze(root, diff)
        finding = report.finding_for("formatInternal")
        assert finding.visibility is Visibility.INTERNAL
        assert finding.severity is Severity.SAFE
        assert report.verdict == "No breaking changes detected"

    def test_rename_without_callers_is_risky(self, make_codebase):
        root = make_codebase({
            "src/client.js": "export async function fetchDataAsync(url) {\n  return fetch(url);\n}\n",
        })
        diff = build_diff(
            "src/client.js",
            removed=["export function fetchData(url) {"],
            added=["export async function fetchDataAsync(url) {"],
            context_after=["  return fetch(url);", "}"],
        )
        report = analyze(root, diff)
        finding = report.finding_for("fetchData")
        assert finding.candidate.renamed_to == "fetchDataAsync"
        assert finding.severity is Severity.RISKY
        assert ("note", "no callers found in scanned codebase") in [e.as_pair() for e in finding.evidence]

    def test_field_added_to_exported_interface_is_safe(self, make_codebase):
        root = make_codebase({
            "src/config.ts": "export interface Config {\n  host: string;\n  timeout: number;\n}\n",
            "src/main.ts": "import { Config } from './config';\nconst c: Config = { host: 'x', timeout: 1 };\n",
        })
        diff = build_diff(
            "src/config.ts",
            context_before=["export interface Config {", "  host: string;"],
            added=["  timeout: number;"],
            context_after=["}"],
        )
        report = analyze(root, diff)
        assert len(report.findings) == 1
        finding = report.findings[0]
        assert finding.candidate.symbol == "Config.timeout"
        assert finding.severity is Severity.SAFE
        assert report.verdict == "No breaking changes detected"

    def test_zero_time_budget_marks_evidence_incomplete(self, users_codebase):
        config = AnalysisConfiguration(max_workers=2, time_budget_seconds=0)
        report = analyze(users_codebase, GET_USER_REMOVED, config)
        finding = report.finding_for("getUser")
        assert "evidence-incomplete" in finding.tags
        assert finding.severity.rank >= Severity.RISKY.rank
        assert any("stopped at the deadline" in w for w in report.warnings)

    def test_budget_running_out_during_the_scan_marks_evidence_incomplete(self, users_codebase, read_clock):
        config = AnalysisConfiguration(max_workers=1, time_budget_seconds=1)
        report = ImpactAnalyzer(config, clock=read_clock).analyze(GET_USER_REMOVED, users_codebase)
        finding = report.finding_for("getUser")
        assert "evidence-incomplete" in finding.tags
        assert finding.severity.rank >= Severity.RISKY.rank
        assert "Usage scan for getUser stopped at the deadline after 1 of 3 files" in report.warnings

    def test_new_function_sharing_a_name_with_an_unrelated_module_is_safe(self, make_codebase):
        root = make_codebase({
            "pkg/a.py": "def load(path):\n    return open(path).read()\n",
            "pkg/b.py": "def load(x):\n    return x * 2\n\n\nprint(load(2))\n",
        })
        diff = build_diff("pkg/a.py", added=["def load(path):", "    return open(path).read()"], status="added")
        finding = analyze(root, diff).finding_for("load")
        assert finding.severity is Severity.SAFE
        assert finding.tags == []
        assert finding.usage_evidence == []
        assert finding.affected_files == []

    def test_new_function_clashing_with_a_package_export(self, make_codebase):
        root = make_codebase({
            "pkg/__init__.py": "from .b import load\n",
            "pkg/a.py": "def load(path):\n    return open(path).read()\n",
            "pkg/b.py": "def load(x):\n    return x * 2\n\n\nprint(load(2))\n",
        })
        diff = build_diff("pkg/a.py", added=["def load(path):", "    return open(path).read()"], status="added")
        finding = analyze(root, diff).finding_for("load")
        assert finding.severity is Severity.BREAKING
        assert finding.tags == ["name-collision"]
        assert ("collision", "existing declaration at pkg/b.py:1 (pkg/__init__.py exports the existing load)") \
            in [e.as_pair() for e in finding.evidence]


class TestProperties:
    DIFF = GET_USER_REMOVED + build_diff(
        "src/api/handlers.js",
        context_before=["export function show(req) {"],
        removed=["  return users.getUser(req.id);"],
        added=["  return users.getUser(req.id) || null;"],
    ) + build_diff("src/util.py", added=["def _private():", "    pass"], status="added")

    def test_every_candidate_gets_exactly_one_finding(self, users_codebase):
        hunks = DiffParser().parse(self.DIFF)
        candidates = CandidateExtractor().extract(hunks)
        report = analyze(users_codebase, self.DIFF)
        assert sorted(c.key for c in candidates) == sorted(f.key for f in report.findings)
        assert len(report.findings) == len(candidates) == 3

    def test_identical_inputs_give_identical_reports(self, users_codebase):
        first = analyze(users_codebase, self.DIFF).to_dict()
        second = analyze(users_codebase, self.DIFF,
                         config=AnalysisConfiguration(max_workers=7, max_open_files=1)).to_dict()
        assert json.dumps(first, sort_keys=True) == json.dumps(second, sort_keys=True)

    def test_breaking_findings_cite_usages(self, users_codebase):
        report = analyze(users_codebase, self.DIFF)
        assert report.breaking
        for finding in report.breaking:
            assert finding.usage_evidence

    def test_more_callers_never_lower_severity(self, make_codebase):
        root = make_codebase({"src/users.js": USERS_JS})
        before = analyze(root, GET_USER_REMOVED).finding_for("getUser").severity
        (root / "src/api").mkdir()
        (root / "src/api/handlers.js").write_text(HANDLERS_JS, encoding="utf-8")
        after = analyze(root, GET_USER_REMOVED).finding_for("getUser").severity
        assert before is Severity.RISKY
        assert after is Severity.BREAKING

    def test_public_surface_overrides_heuristics(self, users_codebase):
        surface = PublicSurface.from_entries(["listUsers"])
        report = analyze(users_codebase, GET_USER_REMOVED, public_surface=surface)
        assert report.finding_for("getUser").severity is Severity.SAFE

    def test_file_paths_restrict_the_scan(self, users_codebase):
        report = analyze(users_codebase, GET_USER_REMOVED, file_paths=["tests/users.test.js"])
        assert report.finding_for("getUser").severity is Severity.RISKY

    def test_test_signal_is_attached(self, users_codebase):
        signal = TestSignal(ran=True, passed=False)
        report = analyze(users_codebase, GET_USER_REMOVED, test_signal=signal)
        pairs = [e.as_pair() for e in report.finding_for("getUser").evidence]
        assert ("test-signal", "test suite failed") in pairs


class TestPipeline:
    def test_malformed_diff_propagates(self, users_codebase):
        with pytest.raises(MalformedDiffError):
            analyze(users_codebase, "--- a/x.js\n+++ b/x.js\n@@ broken @@\n")

    def test_empty_diff_gives_empty_report(self, users_codebase):
        report = analyze(users_codebase, "")
        assert report.findings == []
        assert report.verdict == "No breaking changes detected"

    def test_phases_are_reported_in_order(self, users_codebase):
        seen = []
        analyzer = ImpactAnalyzer(AnalysisConfiguration(max_workers=1), on_phase=seen.append)
        analyzer.analyze(GET_USER_REMOVED, users_codebase)
        assert tuple(seen) == PHASES + ("complete",)
        assert analyzer.progress.completed_phases == list(PHASES)

    def test_parser_warnings_reach_the_report(self, users_codebase):
        diff = "diff --git a/logo.png b/logo.png\nBinary files a/logo.png and b/logo.png differ\n"
        report = analyze(users_codebase, diff)
        assert report.warnings == ["Skipping binary file logo.png"]
