"""Caller-visible errors raised by the service layer.

Routes translate these into HTTP responses; everything else in the engine
degrades to empty results instead of raising.
"""


class SiteLedgerError(Exception):
    """Base exception for SiteLedger service errors."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class ResourceNotFoundError(SiteLedgerError):
    """Raised when a project, phase or record does not exist."""

    def __init__(self, resource: str, identifier: object) -> None:
        self.resource = resource
        self.identifier = identifier
        super().__init__(f"{resource} not found: {identifier}")


class InvalidStateError(SiteLedgerError):
    """Raised when an operation does not apply to the entity's current state."""
