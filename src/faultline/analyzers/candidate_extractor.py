"""Candidate extraction - derives changed-symbol candidates from diff hunks."""

import dataclasses
import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional, Sequence, Tuple

from ..core.diff_parser import ChangeBlock, DiffLine, Hunk, LineKind
from .declarations import (
    COMMENT_LEADER, CONFIG_KEY, CONSTANT, ENV_VAR, FIELD, FUNCTION, REFERENCE_FAMILIES, TYPE, Declaration,
    find_container, indent_of, match_declarations, match_field, token_overlap,
)

logger = logging.getLogger(__name__)


class ChangeKind(Enum):
    """What happened to a changed symbol."""
    REMOVED = "removed"
    RENAMED = "renamed"
    SIGNATURE_CHANGED = "signature_changed"
    TYPE_CHANGED = "type_changed"
    BEHAVIOR_CHANGED = "behavior_changed"
    ADDED = "added"


# When two observations share an identity key, the lower rank wins
KIND_RANK = {
    ChangeKind.REMOVED: 0,
    ChangeKind.RENAMED: 1,
    ChangeKind.SIGNATURE_CHANGED: 2,
    ChangeKind.TYPE_CHANGED: 3,
    ChangeKind.BEHAVIOR_CHANGED: 4,
    ChangeKind.ADDED: 5,
}


@dataclass(frozen=True)
class Candidate:
    """A changed declaration eligible for severity classification."""
    symbol: str
    file_path: str
    change_kind: ChangeKind
    family: str
    hunk_index: int
    line_number: int
    old_declaration: Optional[Declaration] = None
    new_declaration: Optional[Declaration] = None
    container: Optional[Declaration] = None
    renamed_to: Optional[str] = None
    low_confidence: bool = False
    detail: str = ""
    position: Tuple[int, int] = (0, 0)

    @property
    def key(self) -> Tuple[str, str]:
        """Identity key: no two candidates share it."""
        return (self.symbol, self.file_path)

    @property
    def declaration(self) -> Declaration:
        """The declaration consumers saw before the change (or the new one for additions)."""
        return self.old_declaration or self.new_declaration

    @property
    def search_term(self) -> str:
        return self.declaration.term


@dataclass
class _Observed:
    """A declaration seen on a changed line."""
    declaration: Declaration
    line: DiffLine
    block_index: int
    container: Optional[Declaration]


class CandidateExtractor:
    """Extracts changed-symbol candidates from hunks using lexical heuristics."""

    def __init__(self, rename_similarity_threshold: float = 0.5):
        self.rename_similarity_threshold = rename_similarity_threshold

    def extract(self, hunks: Sequence[Hunk]) -> List[Candidate]:
        """Extract candidates from all hunks, in diff order."""
        candidates: Dict[Tuple[str, str], Candidate] = {}

        for hunk_index, hunk in enumerate(hunks):
            try:
                found = self._extract_from_hunk(hunk_index, hunk)
            except (ValueError, IndexError, re.error) as e:
                # Unrecognised syntax must never stop the run
                logger.warning("Skipping candidates in %s: %s", hunk.path, e)
                continue
            for candidate in found:
                existing = candidates.get(candidate.key)
                if existing is None or KIND_RANK[candidate.change_kind] < KIND_RANK[existing.change_kind]:
                    if existing is not None:
                        candidate = dataclasses.replace(
                            candidate, position=min(existing.position, candidate.position))
                    candidates[candidate.key] = candidate

        ordered = sorted(candidates.values(), key=lambda c: (c.position, c.symbol))
        logger.debug("Extracted %d candidates from %d hunks", len(ordered), len(hunks))
        return ordered

    def _extract_from_hunk(self, hunk_index: int, hunk: Hunk) -> List[Candidate]:
        positions = {line: pos for pos, line in enumerate(hunk.lines)}
        blocks = list(hunk.change_blocks())
        removed: List[_Observed] = []
        added: List[_Observed] = []
        results: List[Candidate] = []

        for block in blocks:
            removed.extend(self._observe(block, block.removed, LineKind.REMOVED, hunk.path))
            added.extend(self._observe(block, block.added, LineKind.ADDED, hunk.path))

        removed_by_key = {(o.declaration.family, o.declaration.name): o for o in reversed(removed)}
        added_by_key = {(o.declaration.family, o.declaration.name): o for o in reversed(added)}

        def make(kind: ChangeKind, old: Optional[_Observed], new: Optional[_Observed], **extra) -> Candidate:
            anchor = old or new
            line = anchor.line
            return Candidate(
                symbol=anchor.declaration.name,
                file_path=hunk.path,
                change_kind=kind,
                family=anchor.declaration.family,
                hunk_index=hunk_index,
                line_number=line.new_line or line.old_line or 0,
                old_declaration=old.declaration if old else None,
                new_declaration=new.declaration if new else None,
                container=anchor.container,
                position=(hunk_index, positions.get(line, 0)),
                **extra,
            )

        # Present on both sides under the same name
        for key, old in removed_by_key.items():
            new = added_by_key.get(key)
            if new is None:
                continue
            comparison = self._compare(old.declaration, new.declaration)
            if comparison is not None:
                kind, detail = comparison
                results.append(make(kind, old, new, detail=detail))

        # Positional rename pairing inside a block, then plain removals/additions
        removed_only = [o for o in removed if (o.declaration.family, o.declaration.name) not in added_by_key]
        added_only = [o for o in added if (o.declaration.family, o.declaration.name) not in removed_by_key]
        pairs = self._pair_renames(removed_only, added_only)

        for old, new, low_confidence in pairs:
            results.append(make(
                ChangeKind.RENAMED, old, new,
                renamed_to=new.declaration.name,
                low_confidence=low_confidence,
                detail=f"renamed to {new.declaration.name}",
            ))

        paired_old_ids = {id(old) for old, _, _ in pairs}
        paired_new_ids = {id(new) for _, new, _ in pairs}
        for old in removed_only:
            if id(old) not in paired_old_ids:
                results.append(make(ChangeKind.REMOVED, old, None, detail="declaration removed"))
        for new in added_only:
            if id(new) not in paired_new_ids:
                results.append(make(ChangeKind.ADDED, None, new, detail="declaration added"))

        results.extend(self._behavior_changes(hunk_index, hunk, blocks, positions))
        return results

    def _observe(self, block: ChangeBlock, lines: Tuple[DiffLine, ...], kind: LineKind,
                 path: str) -> List[_Observed]:
        """Find declarations on the changed lines of one side of a block."""
        observed = []
        side = [l.text for l in block.preceding if l.kind in (LineKind.CONTEXT, kind)]
        for line in lines:
            container = None
            declarations = match_declarations(line.text, path)
            code = [d for d in declarations if d.family not in REFERENCE_FAMILIES]
            if code and code[0].family in (FUNCTION, TYPE) and code[0].indent > 0:
                container = find_container(side, line.text, path)
                if container is not None and container.family == TYPE:
                    code[0] = dataclasses.replace(
                        code[0], name=f"{container.name}.{code[0].name}", search_term=code[0].name)
                    declarations = code + [d for d in declarations if d.family in REFERENCE_FAMILIES]
            elif not code:
                container = find_container(side, line.text, path)
                if container is not None:
                    field = match_field(line.text, path, container)
                    if field is not None:
                        field = dataclasses.replace(
                            field, name=f"{container.name}.{field.name}", search_term=field.name)
                        declarations = [field] + declarations
            for declaration in declarations:
                observed.append(_Observed(declaration, line, block.index, container))
            side.append(line.text)
        return observed

    def _compare(self, old: Declaration, new: Declaration) -> Optional[Tuple[ChangeKind, str]]:
        """Classify a declaration present on both sides under the same name."""
        if old.family in REFERENCE_FAMILIES:
            return None
        if (old.signature or '') != (new.signature or ''):
            return (ChangeKind.SIGNATURE_CHANGED,
                    f"signature changed: ({old.signature or ''}) -> ({new.signature or ''})")
        if (old.type_annotation or '') != (new.type_annotation or ''):
            return (ChangeKind.TYPE_CHANGED,
                    f"type changed: {old.type_annotation or 'none'} -> {new.type_annotation or 'none'}")
        if set(old.modifiers) != set(new.modifiers):
            lost = sorted(set(old.modifiers) - set(new.modifiers))
            gained = sorted(set(new.modifiers) - set(old.modifiers))
            return (ChangeKind.SIGNATURE_CHANGED,
                    f"modifiers changed: -{','.join(lost) or 'none'} +{','.join(gained) or 'none'}")
        if (old.value or '') != (new.value or ''):
            return (ChangeKind.BEHAVIOR_CHANGED, f"value changed: {old.value} -> {new.value}")
        if re.sub(r'\s+', '', old.text) != re.sub(r'\s+', '', new.text):
            return (ChangeKind.BEHAVIOR_CHANGED, "declaration line changed")
        # Identical declaration on both sides: moved, not changed
        return None

    def _pair_renames(self, removed_only: List[_Observed],
                      added_only: List[_Observed]) -> List[Tuple[_Observed, _Observed, bool]]:
        """Pair removed and added declarations of one family by position within a block.

        Returns (old, new, low_confidence) triples.
        """
        pairs = []
        groups: Dict[Tuple[int, str], Tuple[List[_Observed], List[_Observed]]] = {}
        for old in removed_only:
            groups.setdefault((old.block_index, old.declaration.family), ([], []))[0].append(old)
        for new in added_only:
            groups.setdefault((new.block_index, new.declaration.family), ([], []))[1].append(new)

        for (_, family), (olds, news) in sorted(groups.items(), key=lambda item: item[0]):
            if family == ENV_VAR:
                continue
            for old, new in zip(olds, news):
                verdict = self._rename_confidence(old.declaration, new.declaration)
                if verdict is not None:
                    pairs.append((old, new, verdict == "low"))
        return pairs

    def _rename_confidence(self, old: Declaration, new: Declaration) -> Optional[str]:
        """'high', 'low' or None when the pair does not look like a rename."""
        old_name = old.term if old.family != FIELD else old.name.rsplit('.', 1)[-1]
        new_name = new.term if new.family != FIELD else new.name.rsplit('.', 1)[-1]
        overlap = token_overlap(old_name, new_name)
        if overlap >= self.rename_similarity_threshold:
            return "high"
        same_shape = (old.signature == new.signature and old.type_annotation == new.type_annotation)
        if overlap > 0 or (same_shape and old.family in (FUNCTION, TYPE, FIELD, CONSTANT, CONFIG_KEY)):
            return "low"
        return None

    def _behavior_changes(self, hunk_index: int, hunk: Hunk, blocks: List[ChangeBlock],
                          positions: Dict[DiffLine, int]) -> List[Candidate]:
        """Body-only edits become BehaviorChanged candidates for the enclosing declaration."""
        results = []
        for block in blocks:
            changed = [l for l in block.removed + block.added
                       if l.text.strip() and not COMMENT_LEADER.match(l.text)]
            if not changed:
                continue
            side_lines = [l.text for l in block.preceding]
            if any(self._declares_something(line, side_lines, hunk.path) for line in changed):
                continue

            enclosing, container = self._enclosing_declaration(block, changed, hunk.path)
            if enclosing is None:
                continue
            first = min(changed, key=lambda l: positions.get(l, 0))
            results.append(Candidate(
                symbol=enclosing.name,
                file_path=hunk.path,
                change_kind=ChangeKind.BEHAVIOR_CHANGED,
                family=enclosing.family,
                hunk_index=hunk_index,
                line_number=first.new_line or first.old_line or 0,
                old_declaration=enclosing,
                new_declaration=enclosing,
                container=container,
                position=(hunk_index, positions.get(first, 0)),
                detail="body changed without a declaration change",
            ))
        return results

    def _declares_something(self, line: DiffLine, preceding: List[str], path: str) -> bool:
        declarations = match_declarations(line.text, path)
        if any(d.family not in REFERENCE_FAMILIES for d in declarations):
            return True
        container = find_container(preceding, line.text, path)
        return container is not None and match_field(line.text, path, container) is not None

    def _enclosing_declaration(self, block: ChangeBlock, changed: List[DiffLine],
                               path: str) -> Tuple[Optional[Declaration], Optional[Declaration]]:
        """Nearest preceding function/type declaration enclosing the block, and its container."""
        indent = min(indent_of(l.text) for l in changed)
        preceding = [l.text for l in block.preceding if l.kind is not LineKind.ADDED]
        for pos in range(len(preceding) - 1, -1, -1):
            text = preceding[pos]
            if not text.strip():
                continue
            text_indent = indent_of(text)
            if text_indent >= indent:
                continue
            for declaration in match_declarations(text, path):
                if declaration.family in (FUNCTION, TYPE):
                    container = find_container(preceding[:pos], text, path) if declaration.indent else None
                    if container is not None and container.family == TYPE:
                        return dataclasses.replace(
                            declaration, name=f"{container.name}.{declaration.name}",
                            search_term=declaration.name), container
                    return declaration, None
            indent = text_indent

        if block.heading:
            for declaration in match_declarations(block.heading, path):
                if declaration.family in (FUNCTION, TYPE):
                    return dataclasses.replace(declaration, indent=0), None
        return None, None
