"""Tests for changed-symbol candidate extraction."""

from faultline.analyzers import CandidateExtractor, ChangeKind
from faultline.analyzers.declarations import CONFIG_KEY, ENV_VAR, FIELD, FUNCTION, ROUTE
from faultline.core import DiffParser

from conftest import build_diff


def extract(*diffs, threshold=0.5):
    hunks = DiffParser().parse("".join(diffs))
    return CandidateExtractor(threshold).extract(hunks)


def by_symbol(candidates):
    return {c.symbol: c for c in candidates}


class TestRemovalsAndAdditions:
    def test_removed_exported_function(self):
        candidates = extract(build_diff(
            "src/users.js",
            context_before=["import db from './db';", ""],
            removed=["export function getUser(id) {", "  return db.find(id);", "}"],
            context_after=[""],
        ))
        assert len(candidates) == 1
        candidate = candidates[0]
        assert candidate.symbol == "getUser"
        assert candidate.change_kind is ChangeKind.REMOVED
        assert candidate.family == FUNCTION
        assert candidate.old_declaration.modifiers == ("export",)
        assert candidate.line_number == 3

    def test_added_function(self):
        candidates = extract(build_diff("pkg/tools.py", added=["def slugify(text):", "    return text.lower()"]))
        assert [(c.symbol, c.change_kind) for c in candidates] == [("slugify", ChangeKind.ADDED)]
        assert candidates[0].new_declaration is not None
        assert candidates[0].old_declaration is None

    def test_unrelated_removal_and_addition_are_not_paired(self):
        candidates = by_symbol(extract(build_diff(
            "pkg/views.py",
            removed=["def load_user(id):"],
            added=["def render_page(template, ctx):"],
        )))
        assert candidates["load_user"].change_kind is ChangeKind.REMOVED
        assert candidates["render_page"].change_kind is ChangeKind.ADDED


class TestRenames:
    def test_rename_with_shared_tokens(self):
        candidates = extract(build_diff(
            "src/client.js",
            removed=["export function fetchData(url) {"],
            added=["export async function fetchDataAsync(url) {"],
            context_after=["  return fetch(url);", "}"],
        ))
        assert len(candidates) == 1
        candidate = candidates[0]
        assert candidate.symbol == "fetchData"
        assert candidate.change_kind is ChangeKind.RENAMED
        assert candidate.renamed_to == "fetchDataAsync"
        assert not candidate.low_confidence

    def test_rename_with_same_shape_is_low_confidence(self):
        candidates = extract(build_diff(
            "pkg/accounts.py",
            removed=["def load_user(id):"],
            added=["def fetch_account(id):"],
        ))
        assert len(candidates) == 1
        assert candidates[0].change_kind is ChangeKind.RENAMED
        assert candidates[0].low_confidence

    def test_threshold_controls_confidence(self):
        diff = build_diff(
            "pkg/accounts.py",
            removed=["def get_user_by_id(id):"],
            added=["def get_account(id):"],
        )
        assert extract(diff, threshold=0.5)[0].low_confidence
        assert not extract(diff, threshold=0.2)[0].low_confidence

    def test_env_vars_are_never_paired_as_renames(self):
        candidates = by_symbol(extract(build_diff(
            "pkg/settings.py",
            removed=['url = os.environ["API_URL"]'],
            added=['url = os.environ["SERVICE_URL"]'],
        )))
        assert candidates["API_URL"].change_kind is ChangeKind.REMOVED
        assert candidates["SERVICE_URL"].change_kind is ChangeKind.ADDED
        assert candidates["API_URL"].family == ENV_VAR


class TestDeclarationChanges:
    def test_signature_change(self):
        candidates = extract(build_diff(
            "pkg/io.py",
            removed=["def load(path):"],
            added=["def load(path, strict=False):"],
            context_after=["    return open(path).read()"],
        ))
        assert len(candidates) == 1
        assert candidates[0].change_kind is ChangeKind.SIGNATURE_CHANGED
        assert "strict=False" in candidates[0].detail

    def test_return_type_change(self):
        candidates = extract(build_diff(
            "src/cart.ts",
            removed=["export function total(items: Item[]): number {"],
            added=["export function total(items: Item[]): string {"],
        ))
        assert candidates[0].change_kind is ChangeKind.TYPE_CHANGED
        assert candidates[0].detail == "type changed: number -> string"

    def test_dropping_export_is_a_signature_change(self):
        candidates = extract(build_diff(
            "src/util.js",
            removed=["export function pad(s) {"],
            added=["function pad(s) {"],
        ))
        assert candidates[0].change_kind is ChangeKind.SIGNATURE_CHANGED
        assert candidates[0].detail.startswith("modifiers changed")

    def test_constant_value_change_is_behavior(self):
        candidates = extract(build_diff("pkg/net.py", removed=["MAX_RETRIES = 3"], added=["MAX_RETRIES = 5"]))
        assert candidates[0].change_kind is ChangeKind.BEHAVIOR_CHANGED
        assert candidates[0].symbol == "MAX_RETRIES"

    def test_whitespace_only_change_is_not_a_candidate(self):
        candidates = extract(build_diff(
            "pkg/io.py",
            removed=["def load(path ,mode):"],
            added=["def load(path, mode):"],
        ))
        assert candidates == []

    def test_moved_declaration_is_not_a_candidate(self):
        diff = (
            "--- a/pkg/helpers.py\n"
            "+++ b/pkg/helpers.py\n"
            "@@ -1,3 +1,1 @@\n"
            "-def helper():\n"
            "-    return 1\n"
            " \n"
            "@@ -20,1 +18,3 @@\n"
            " X = 0\n"
            "+def helper():\n"
            "+    return 1\n"
        )
        assert extract(diff) == []

    def test_method_is_qualified_by_its_class(self):
        candidates = extract(build_diff(
            "pkg/service.py",
            context_before=["class UserService:", "    def __init__(self):", "        self.db = None", ""],
            removed=["    def fetch(self, id):"],
            added=["    def fetch(self, id, cache=True):"],
            context_after=["        return self.db.get(id)"],
        ))
        assert len(candidates) == 1
        candidate = candidates[0]
        assert candidate.symbol == "UserService.fetch"
        assert candidate.search_term == "fetch"
        assert candidate.container.name == "UserService"
        assert candidate.change_kind is ChangeKind.SIGNATURE_CHANGED

    def test_field_added_to_interface(self):
        candidates = extract(build_diff(
            "src/config.ts",
            context_before=["export interface Config {", "  host: string;"],
            added=["  timeout: number;"],
            context_after=["}"],
        ))
        assert len(candidates) == 1
        candidate = candidates[0]
        assert candidate.symbol == "Config.timeout"
        assert candidate.family == FIELD
        assert candidate.change_kind is ChangeKind.ADDED
        assert candidate.search_term == "timeout"

    def test_field_type_change(self):
        candidates = extract(build_diff(
            "src/config.ts",
            context_before=["export interface Config {"],
            removed=["  port: number;"],
            added=["  port: string;"],
            context_after=["}"],
        ))
        assert candidates[0].symbol == "Config.port"
        assert candidates[0].change_kind is ChangeKind.TYPE_CHANGED


class TestBehaviorChanges:
    def test_body_edit_names_enclosing_function(self):
        candidates = extract(build_diff(
            "pkg/math.py",
            context_before=["def compute(x):", "    y = x * 2"],
            removed=["    return y"],
            added=["    return y + 1"],
        ))
        assert len(candidates) == 1
        assert candidates[0].symbol == "compute"
        assert candidates[0].change_kind is ChangeKind.BEHAVIOR_CHANGED

    def test_body_edit_uses_range_heading(self):
        diff = (
            "--- a/pkg/math.py\n"
            "+++ b/pkg/math.py\n"
            "@@ -40,3 +40,3 @@ def scale(value, factor):\n"
            "     result = value * factor\n"
            "-    return result\n"
            "+    return round(result, 2)\n"
            "     # done\n"
        )
        candidates = extract(diff)
        assert [(c.symbol, c.change_kind) for c in candidates] == [("scale", ChangeKind.BEHAVIOR_CHANGED)]

    def test_body_edit_in_method_is_qualified(self):
        candidates = extract(build_diff(
            "src/cache.js",
            context_before=["export class Cache {", "  get(key) {"],
            removed=["    return this.map[key];"],
            added=["    return this.map.get(key);"],
            context_after=["  }", "}"],
        ))
        assert candidates[0].symbol == "Cache.get"
        assert candidates[0].search_term == "get"

    def test_comment_only_edit_is_ignored(self):
        candidates = extract(build_diff(
            "pkg/math.py",
            context_before=["def compute(x):"],
            removed=["    # doubles x"],
            added=["    # doubles the input"],
            context_after=["    return x * 2"],
        ))
        assert candidates == []

    def test_edit_outside_any_declaration_is_ignored(self):
        candidates = extract(build_diff("notes.md", removed=["old text"], added=["new text"]))
        assert candidates == []

    def test_structural_kind_wins_over_behavior(self):
        candidates = extract(build_diff(
            "pkg/io.py",
            removed=["def load(path):", "    return open(path).read()"],
            added=["def load(path, encoding):", "    return open(path, encoding=encoding).read()"],
        ))
        assert len(candidates) == 1
        assert candidates[0].change_kind is ChangeKind.SIGNATURE_CHANGED


class TestOtherFamilies:
    def test_route_removal(self):
        candidates = by_symbol(extract(build_diff(
            "app/api.py",
            removed=['@app.get("/users/{id}")', "def get_user(id):", "    return db.get(id)"],
        )))
        route = candidates["GET /users/{id}"]
        assert route.family == ROUTE
        assert route.change_kind is ChangeKind.REMOVED
        assert route.search_term == "/users/{id}"
        assert candidates["get_user"].change_kind is ChangeKind.REMOVED

    def test_config_key_removal(self):
        candidates = extract(build_diff(
            "config/app.yaml",
            context_before=["server:"],
            removed=["  timeout: 30"],
            context_after=["  port: 8080"],
        ))
        assert [(c.symbol, c.family, c.change_kind) for c in candidates] == [
            ("timeout", CONFIG_KEY, ChangeKind.REMOVED)]

    def test_go_and_rust_declarations(self):
        candidates = by_symbol(extract(
            build_diff("store/store.go", removed=["func (s *Store) Get(key string) string {"]),
            build_diff("src/lib.rs", added=["pub fn parse(input: &str) -> Ast {"]),
        ))
        assert candidates["Get"].change_kind is ChangeKind.REMOVED
        assert candidates["parse"].change_kind is ChangeKind.ADDED


class TestOrderingAndIdentity:
    def test_candidates_follow_diff_order(self):
        candidates = extract(
            build_diff("b.py", removed=["def second():"]),
            build_diff("a.py", removed=["def first():"]),
        )
        assert [c.symbol for c in candidates] == ["second", "first"]

    def test_identity_keys_are_unique(self):
        candidates = extract(build_diff(
            "pkg/io.py",
            removed=["def load(path):", "    pass", "def load(path, mode):"],
            added=["def load(path, mode, strict):"],
        ))
        keys = [c.key for c in candidates]
        assert len(keys) == len(set(keys))

    def test_unrecognised_syntax_yields_no_candidates(self):
        candidates = extract(build_diff(
            "data/blob.xyz",
            removed=["\x01\x02 %%% ]]] {{{"],
            added=["@@@ ??? <<<"],
        ))
        assert candidates == []

    def test_extraction_is_deterministic(self):
        diff = build_diff(
            "src/client.js",
            removed=["export function fetchData(url) {", "export const LIMIT = 10;"],
            added=["export function fetchDataAsync(url) {", "export const LIMIT = 20;"],
        )
        assert extract(diff) == extract(diff)
