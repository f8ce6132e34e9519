"""
Error taxonomy for the scheduling core.

Validation problems are caught by local guards and never reach the
network. Lookup failures only degrade enrichment panels. Submission
failures are always surfaced to the operator.
"""

from enum import Enum
from typing import List, Optional


class SchedulingError(Exception):
    """Base class for every error raised by the scheduling core."""


class ValidationError(SchedulingError):
    """A required selection is missing or a local input is invalid."""

    def __init__(self, message: str, missing: Optional[List[str]] = None):
        super().__init__(message)
        self.missing = missing or []


class LookupFailure(SchedulingError):
    """An enrichment lookup (history, procedure catalog, directory) failed."""

    def __init__(self, operation: str, detail: str):
        super().__init__(f"{operation} failed: {detail}")
        self.operation = operation
        self.detail = detail


class FailureCategory(str, Enum):
    """Why the collaborator rejected a mutation."""

    VALIDATION = "validation"
    CONFLICT = "conflict"
    NOT_FOUND = "not_found"
    SERVER = "server"
    NETWORK = "network"


class SubmissionFailure(SchedulingError):
    """The create/update/cancel operation was rejected or could not be sent."""

    def __init__(
        self,
        category: FailureCategory,
        detail: str,
        status_code: Optional[int] = None,
    ):
        super().__init__(f"{category.value}: {detail}")
        self.category = category
        self.detail = detail
        self.status_code = status_code

    @classmethod
    def from_status(cls, status_code: int, detail: str) -> "SubmissionFailure":
        """Categorize an HTTP error status returned by the collaborator."""
        if status_code in (400, 422):
            category = FailureCategory.VALIDATION
        elif status_code == 404:
            category = FailureCategory.NOT_FOUND
        elif status_code == 409:
            category = FailureCategory.CONFLICT
        else:
            category = FailureCategory.SERVER
        return cls(category, detail, status_code=status_code)


class SubmissionInProgressError(SchedulingError):
    """Confirm was triggered while a submission is still in flight."""
