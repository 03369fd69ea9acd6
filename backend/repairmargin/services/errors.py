"""Error taxonomy for the valuation pipeline.

``ValidationError`` and ``ParsingError`` abort the current operation and carry a
message meant for the operator. ``ModelError`` signals that the text-generation
collaborator could not be reached; callers may retry it. Reconciliation
mismatches are never raised: they travel as warning strings on the record.
"""

from __future__ import annotations


class AnalysisError(Exception):
    """Base class for every error raised by the valuation pipeline."""

    def __init__(self, message: str, *, details: dict | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ValidationError(AnalysisError):
    """Caller-supplied input violates a precondition."""


class ConflictError(ValidationError):
    """The operation would overwrite a write-once or frozen record."""


class NotFoundError(AnalysisError):
    pass


class ModelError(AnalysisError):
    """The text-generation collaborator was unreachable or failed at transport level."""


class ParsingError(AnalysisError):
    """The collaborator answered, but its output is not a usable JSON record."""
