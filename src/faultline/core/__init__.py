"""Diff parsing and collaborator inputs."""

from .diff_parser import DiffParser, DiffLine, Hunk, HunkRange, ChangeBlock, LineKind, read_diff_text
from .inputs import TestSignal, PublicSurface, load_test_signal, load_public_surface

__all__ = [
    "DiffParser", "DiffLine", "Hunk", "HunkRange", "ChangeBlock", "LineKind", "read_diff_text",
    "TestSignal", "PublicSurface", "load_test_signal", "load_public_surface",
]
