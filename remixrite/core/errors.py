"""
Error taxonomy for the remix pipeline.

Every error carries the pipeline stage it came from and the HTTP status the
API layer answers with. Lower layers raise these; the orchestrator decides
whether to abort or degrade.
"""

from typing import Any, Dict, List, Optional

__all__ = [
    "RemixError",
    "ValidationError",
    "InvalidFeeError",
    "ResolutionError",
    "RemixNotFoundError",
    "ExternalServiceError",
    "UploadError",
    "LedgerRegistrationError",
    "LedgerOutcomeUnknownError",
    "PersistenceError",
    "PersistenceOutcomeUnknownError",
    "PartialSettlementError",
]


class RemixError(Exception):
    """Base class for all pipeline errors."""

    status_code = 500
    stage = "pipeline"

    def __init__(self, message: str, stage: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        if stage:
            self.stage = stage
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        body = {"error": self.message, "stage": self.stage}
        if self.details:
            body["details"] = self.details
        return body


class ValidationError(RemixError):
    """Caller input is malformed. Raised before any external call."""

    status_code = 400
    stage = "validation"


class InvalidFeeError(ValidationError):
    stage = "royalty"


class ResolutionError(RemixError):
    """None of the supplied clip ids resolved."""

    status_code = 400
    stage = "resolution"


class RemixNotFoundError(RemixError):
    status_code = 404
    stage = "query"


class ExternalServiceError(RemixError):
    """An external collaborator (storage, ledger, AI) failed."""

    status_code = 500


class UploadError(ExternalServiceError):
    stage = "upload"


class LedgerRegistrationError(ExternalServiceError):
    """Ledger registration stopped at ``step``; ``last_completed`` is the last step that succeeded."""

    stage = "ledger"

    def __init__(self, message: str, step: Optional[str] = None, last_completed: Optional[str] = None,
                 details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details=details)
        self.step = step
        self.last_completed = last_completed

    def to_dict(self) -> Dict[str, Any]:
        body = super().to_dict()
        body["failed_step"] = self.step
        body["last_completed_step"] = self.last_completed
        return body


class LedgerOutcomeUnknownError(LedgerRegistrationError):
    """The caller went away while a ledger call was in flight; its outcome cannot be confirmed."""

    status_code = 504


class PersistenceError(RemixError):
    """The relational store is unreachable or rejected a write."""

    stage = "persistence"


class PersistenceOutcomeUnknownError(PersistenceError):
    """A write timed out but its thread may still commit. ``details["remix_id"]`` names the row to reconcile."""

    status_code = 504


class PartialSettlementError(RemixError):
    """
    The remix row is committed but some distribution rows failed.

    ``remix`` keeps its identifier so a reconciliation run can write only the
    missing distributions.
    """

    status_code = 207
    stage = "settlement"

    def __init__(self, message: str, remix: Any, distributions: List[Any], failed: List[Dict[str, Any]]):
        super().__init__(message)
        self.remix = remix
        self.distributions = distributions
        self.failed = failed

    def to_dict(self) -> Dict[str, Any]:
        body = super().to_dict()
        body["failed_distributions"] = self.failed
        return body
