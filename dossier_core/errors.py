"""
Errors - Failure taxonomy for the documentation pipeline

Each class marks how far a failure is allowed to travel:

- ExtractionError: contained to one file (downgraded to a partial/failed insight)
- AggregationError: fatal, aborts the run
- UnitError: contained to one stage and the stages that require its output
- CollaboratorError: retried with backoff, then surfaced as a UnitError
"""

from typing import Optional


class DossierError(Exception):
    """Base class for all pipeline errors."""


class ExtractionError(DossierError):
    """A single file could not be (fully) parsed."""

    def __init__(self, file_path: str, message: str, line: Optional[int] = None):
        self.file_path = file_path
        self.line = line
        location = f"{file_path}:{line}" if line else file_path
        super().__init__(f"{location}: {message}")


class FatalPipelineError(DossierError):
    """Errors that must abort the whole run."""


class AggregationError(FatalPipelineError):
    """The knowledge base could not be built (e.g. conflicting file identities)."""


class UnitError(DossierError):
    """A research or composition unit failed."""

    def __init__(self, unit: str, message: str):
        self.unit = unit
        super().__init__(f"[{unit}] {message}")


class CollaboratorError(DossierError):
    """The text-generation collaborator failed or returned malformed output."""

    def __init__(self, message: str, retryable: bool = True):
        self.retryable = retryable
        super().__init__(message)
