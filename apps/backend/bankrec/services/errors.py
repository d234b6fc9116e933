"""Domain exceptions raised by the service layer.

Routers translate these into HTTP responses (see ``bankrec.utils.exceptions``).
"""


class ReconciliationError(Exception):
    """Base exception for bank reconciliation errors."""


class NotFoundError(ReconciliationError):
    """Requested entity does not exist or is not owned by the caller."""


class ValidationError(ReconciliationError):
    """Input violates a business rule (e.g. split amounts do not add up)."""


class ConflictError(ReconciliationError):
    """Operation conflicts with existing state."""


class InvalidStateError(ConflictError):
    """Transition not allowed from the current status."""


class LockedError(ConflictError):
    """Transaction is locked by a completed reconciliation."""


class DownstreamError(ReconciliationError):
    """A collaborator service call failed."""


class RecordUnavailableError(DownstreamError):
    """The referenced accounting record no longer exists."""
