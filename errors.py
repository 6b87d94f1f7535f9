# errors.py
"""
Exception types for keyboard layout evolution.

All errors derive from ValueError so callers that only care about
"bad input" can keep catching that.
"""

from typing import Optional


class EvolveLayoutError(ValueError):
    """Base class for all layout evolution errors."""


class ConfigError(EvolveLayoutError):
    """Missing, unreadable or invalid configuration, layout or ngram config."""


class EmptyCorpusError(EvolveLayoutError):
    """An ngram source whose total frequency is zero."""


class ParseError(EvolveLayoutError):
    """A malformed line in an ngram config or frequency file."""

    def __init__(self, source: str, line_number: int, line: str, reason: Optional[str] = None):
        self.source = source
        self.line_number = line_number
        self.line = line
        self.reason = reason
        message = f"{source}:{line_number}: malformed line {line!r}"
        if reason:
            message += f" ({reason})"
        super().__init__(message)

    def __reduce__(self):
        # Rebuild from fields when raised inside a worker process
        return (self.__class__, (self.source, self.line_number, self.line, self.reason))
