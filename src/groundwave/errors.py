"""Custom exceptions for Groundwave."""


class GroundwaveError(Exception):
    """Base exception for all Groundwave errors."""

    def __init__(self, message: str, *, details: dict[str, object] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ConfigurationError(GroundwaveError):
    """Raised when required configuration is missing or invalid. Fatal at startup."""


class ValidationError(GroundwaveError):
    """Raised when user input fails validation."""


class NotFoundError(GroundwaveError):
    """Raised when a requested record does not exist."""

    def __init__(self, entity_type: str, identifier: str) -> None:
        super().__init__(
            f"{entity_type} not found: {identifier}",
            details={"entity_type": entity_type, "identifier": identifier},
        )


class AuthenticationError(GroundwaveError):
    """Raised when a request has no authenticated user or a ceremony fails."""


class AuthorizationError(GroundwaveError):
    """Raised when an authenticated user lacks the required privilege."""


class StateError(GroundwaveError):
    """Raised when an operation is invalid for the current connection state."""


class OrgParseError(GroundwaveError):
    """Raised when an org document cannot be interpreted."""


class ADIFError(GroundwaveError):
    """Raised when ADIF input cannot be read or a record is malformed."""


class MapError(GroundwaveError):
    """Raised when a grid map cannot be produced."""
