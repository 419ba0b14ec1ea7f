"""Exception hierarchy for faultline."""

from typing import Dict, Optional


class FaultlineError(Exception):
    """Base exception for all faultline errors."""

    def __init__(self, message: str, details: Optional[Dict[str, str]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            details_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            return f"{self.message} ({details_str})"
        return self.message


class MalformedDiffError(FaultlineError):
    """Raised when the file/hunk framing of a unified diff cannot be parsed."""

    def __init__(self, line_number: int, reason: str):
        super().__init__(
            f"Malformed diff at line {line_number}: {reason}",
            details={"line": str(line_number)},
        )
        self.line_number = line_number
        self.reason = reason


class ConfigurationError(FaultlineError):
    """Raised for invalid configuration values or unreadable input files."""
    pass


class SourceError(FaultlineError):
    """Raised when a diff cannot be obtained from version control."""

    def __init__(self, root: str, reason: str):
        super().__init__(
            f"Cannot read diff from repository: {root}",
            details={"reason": reason},
        )
        self.root = root
        self.reason = reason


class UnreadableFileError(FaultlineError):
    """Raised when a codebase file cannot be scanned (binary, oversize, I/O error)."""

    def __init__(self, path: str, reason: str):
        super().__init__(f"Skipping {path}: {reason}", details={"path": path})
        self.path = path
        self.reason = reason
