"""faultline - change impact analysis for diffs."""

__version__ = "0.1.0"
