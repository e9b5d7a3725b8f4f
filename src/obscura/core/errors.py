"""
Exception Hierarchy
Errors raised by the deobfuscation and crypto analysis engines

Recoverable conditions (a pass that cannot parse its input) are reported
through JSParseError and turned into failed transformation records by the
pipeline. Anything else escaping a stage is wrapped in PipelineError.
"""

from typing import Optional

__all__ = [
    "ObscuraError",
    "JSParseError",
    "PipelineError",
    "CompletionError",
    "RuleError",
]


class ObscuraError(Exception):
    """Base exception for all engine errors."""


class JSParseError(ObscuraError):
    """Raised when JavaScript source cannot be parsed."""

    def __init__(self, message: str, line: Optional[int] = None, column: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.line = line
        self.column = column

    def __str__(self) -> str:
        if self.line is not None:
            return f"{self.message} (line {self.line}, column {self.column})"
        return self.message


class PipelineError(ObscuraError):
    """Raised when a pipeline stage fails for a reason other than malformed input."""

    def __init__(self, stage: str, cause: Exception):
        super().__init__(f"{stage} failed: {cause}")
        self.stage = stage
        self.cause = cause


class CompletionError(ObscuraError):
    """Raised by completion providers when a chat request fails."""


class RuleError(ObscuraError):
    """Raised when a crypto rules file cannot be loaded."""
