"""Project Profiler - Classifies how the analyzed project is distributed."""

import configparser
import json
import logging
import re
import tomllib
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path, PurePosixPath
from typing import Any, Dict, List, Optional, Tuple

from ..config import AnalysisConfiguration
from ..core.files import discover_files, match_globs, read_source
from ..exceptions import UnreadableFileError
from .declarations import language_for, match_route

logger = logging.getLogger(__name__)

PACKAGE_MANIFESTS = {
    "package.json": "node",
    "pyproject.toml": "python",
    "setup.py": "python",
    "setup.cfg": "python",
    "Cargo.toml": "rust",
    "go.mod": "go",
    "pom.xml": "jvm",
    "build.gradle": "jvm",
    "build.gradle.kts": "jvm",
}

MONOREPO_MARKERS = {
    "pnpm-workspace.yaml": "pnpm",
    "lerna.json": "lerna",
    "nx.json": "nx",
    "turbo.json": "turborepo",
    "rush.json": "rush",
    "go.work": "go workspace",
}

SETUP_PY_NAME = re.compile(r'\bname\s*=\s*[\'"]([^\'"]+)[\'"]')
SETUP_PY_VERSION = re.compile(r'\bversion\s*=\s*[\'"]([^\'"]+)[\'"]')
GO_MODULE = re.compile(r'^module\s+(\S+)', re.MULTILINE)

# Manifests under these directories are samples, not sub-packages
NON_PACKAGE_DIRS = frozenset({
    "example", "examples", "sample", "samples", "demo", "demos", "doc", "docs", "fixtures",
})

# Route scanning stops after this many source files
MAX_ROUTE_SCAN_FILES = 2000


class Posture(Enum):
    PUBLISHED_LIBRARY = "published_library"
    INTERNAL_SERVICE = "internal_service"
    STANDALONE_APP = "standalone_app"
    MONOREPO = "monorepo"


@dataclass(frozen=True)
class ProjectProfile:
    """Project posture and the manifest evidence it was derived from."""
    posture: Posture
    evidence: Tuple[str, ...] = ()


@dataclass
class _ManifestFacts:
    private: List[str] = field(default_factory=list)
    published: List[str] = field(default_factory=list)
    workspaces: List[str] = field(default_factory=list)


class ProjectProfiler:
    """Inspects manifests and route registrations under a codebase root."""

    def __init__(self, config: Optional[AnalysisConfiguration] = None):
        self.config = config or AnalysisConfiguration()
        self.warnings: List[str] = []

    def profile(self, root: Path) -> ProjectProfile:
        """Derive the project posture. Never raises."""
        root = Path(root)
        self.warnings = []
        try:
            files = discover_files(root, self.config.exclude_dirs)
        except OSError as e:
            self._warn(f"Cannot list {root}: {e}")
            return ProjectProfile(Posture.STANDALONE_APP)

        facts = _ManifestFacts()
        for name in PACKAGE_MANIFESTS:
            if name in files:
                self._inspect_manifest(root, name, facts)

        monorepo = self._detect_monorepo(files, facts)
        if monorepo:
            return ProjectProfile(Posture.MONOREPO, tuple(monorepo))

        routes = self._find_routes(root, files)
        if facts.private:
            posture = Posture.INTERNAL_SERVICE if routes else Posture.STANDALONE_APP
            return ProjectProfile(posture, tuple(facts.private + routes))
        if facts.published:
            # Route registrations do not outweigh a published manifest
            return ProjectProfile(Posture.PUBLISHED_LIBRARY, tuple(facts.published + routes))
        if routes:
            return ProjectProfile(Posture.INTERNAL_SERVICE, tuple(routes))
        return ProjectProfile(Posture.STANDALONE_APP)

    def _inspect_manifest(self, root: Path, name: str, facts: _ManifestFacts):
        """Collect private/published/workspace facts from one root manifest."""
        path = root / name
        try:
            text = read_source(path, self.config.max_file_size_bytes)
            if name == "package.json":
                self._package_json(json.loads(text), facts)
            elif name == "pyproject.toml":
                self._pyproject(tomllib.loads(text), facts)
            elif name == "Cargo.toml":
                self._cargo(tomllib.loads(text), facts)
            elif name == "setup.cfg":
                parser = configparser.ConfigParser()
                parser.read_string(text)
                if parser.has_option("metadata", "name") and parser.has_option("metadata", "version"):
                    facts.published.append(
                        f"setup.cfg: {parser.get('metadata', 'name')} {parser.get('metadata', 'version')}")
            elif name == "setup.py":
                name_match, version_match = SETUP_PY_NAME.search(text), SETUP_PY_VERSION.search(text)
                if name_match and version_match:
                    facts.published.append(f"setup.py: {name_match.group(1)} {version_match.group(1)}")
            elif name == "go.mod":
                module = GO_MODULE.search(text)
                if module and '.' in module.group(1).split('/')[0]:
                    facts.published.append(f"go.mod: module {module.group(1)}")
        except (UnreadableFileError, ValueError, TypeError, AttributeError,
                configparser.Error) as e:
            # JSON and TOML decode errors are ValueErrors; odd shapes raise Type/AttributeError
            self._warn(f"Cannot parse manifest {name}: {e}")

    def _package_json(self, data: Dict[str, Any], facts: _ManifestFacts):
        if not isinstance(data, dict):
            raise ValueError("top level is not an object")
        if data.get("private") is True:
            facts.private.append("package.json: private")
        elif data.get("name") and data.get("version"):
            facts.published.append(f"package.json: {data['name']} {data['version']}")
        if data.get("workspaces"):
            facts.workspaces.append("package.json: workspaces")

    def _pyproject(self, data: Dict[str, Any], facts: _ManifestFacts):
        project = data.get("project", {})
        classifiers = project.get("classifiers", [])
        if any(c.startswith("Private ::") for c in classifiers):
            facts.private.append("pyproject.toml: Private classifier")
        elif project.get("name") and (project.get("version") or "version" in project.get("dynamic", [])):
            facts.published.append(f"pyproject.toml: {project['name']} {project.get('version', '(dynamic)')}")
        poetry = data.get("tool", {}).get("poetry", {})
        if poetry.get("name") and poetry.get("version") and not facts.published:
            facts.published.append(f"pyproject.toml: {poetry['name']} {poetry['version']}")
        if data.get("tool", {}).get("uv", {}).get("workspace"):
            facts.workspaces.append("pyproject.toml: uv workspace")

    def _cargo(self, data: Dict[str, Any], facts: _ManifestFacts):
        package = data.get("package", {})
        if package.get("publish") is False:
            facts.private.append("Cargo.toml: publish = false")
        elif package.get("name") and package.get("version"):
            facts.published.append(f"Cargo.toml: {package['name']} {package['version']}")
        if "workspace" in data and data["workspace"].get("members"):
            facts.workspaces.append("Cargo.toml: workspace members")

    def _detect_monorepo(self, files: List[str], facts: _ManifestFacts) -> List[str]:
        """Workspace markers, or two or more independent sub-manifests under an unpublished root."""
        file_set = set(files)
        evidence = [f"{marker} ({kind})" for marker, kind in MONOREPO_MARKERS.items() if marker in file_set]
        evidence.extend(facts.workspaces)

        package_roots = set()
        for path in files:
            posix = PurePosixPath(path)
            if (posix.name in PACKAGE_MANIFESTS and str(posix.parent) not in ("", ".")
                    and not match_globs(path, self.config.test_globs)
                    and not NON_PACKAGE_DIRS.intersection(posix.parent.parts)):
                package_roots.add(str(posix.parent))
        if evidence and package_roots:
            return evidence + [f"{len(package_roots)} sub-packages"]
        if len(package_roots) >= 2 and not facts.published:
            return [f"{len(package_roots)} independent manifests: {', '.join(sorted(package_roots)[:5])}"]
        return []

    def _find_routes(self, root: Path, files: List[str]) -> List[str]:
        """Route registrations in source files, as evidence strings."""
        scanned = 0
        for path in files:
            if language_for(path) in ('unknown', 'config') or match_globs(path, self.config.test_globs):
                continue
            scanned += 1
            if scanned > MAX_ROUTE_SCAN_FILES:
                break
            try:
                text = read_source(root / path, self.config.max_file_size_bytes)
            except UnreadableFileError:
                continue
            for line_number, line in enumerate(text.splitlines(), 1):
                route = match_route(line)
                if route is not None:
                    return [f"route {route.name} in {path}:{line_number}"]
        return []

    def _warn(self, message: str):
        logger.warning(message)
        self.warnings.append(message)
