"""Exception hierarchy for the DAM webhook service.

All exceptions inherit from DamError so callers can catch every
service error with a single except clause.
"""

from __future__ import annotations


class DamError(Exception):
    """Base exception for all service errors.

    Attributes:
        message: Human-readable error description.
        code: Machine-readable error code for API responses.
    """

    code: str = "dam_error"

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)

    def to_dict(self) -> dict[str, object]:
        """Convert exception to API-friendly dictionary."""
        return {
            "error": {
                "code": self.code,
                "message": self.message,
            }
        }


class ValidationError(DamError):
    """Invalid input provided.

    Raised at subscribe time for bad destination URLs or unsupported
    event types, and for invalid store arguments.

    Attributes:
        field: The field that failed validation.
    """

    code: str = "validation_error"

    def __init__(self, field: str, message: str) -> None:
        self.field = field
        super().__init__(f"{field}: {message}")

    def to_dict(self) -> dict[str, object]:
        """Convert exception to API-friendly dictionary."""
        return {
            "error": {
                "code": self.code,
                "field": self.field,
                "message": self.message,
            }
        }


class NotFoundError(DamError):
    """Resource not found.

    Attributes:
        resource_type: Type of resource (e.g., "webhook_event", "subscription").
        resource_id: ID of the missing resource.
    """

    code: str = "not_found"

    def __init__(self, resource_type: str, resource_id: str) -> None:
        self.resource_type = resource_type
        self.resource_id = resource_id
        super().__init__(f"{resource_type} not found: {resource_id}")

    def to_dict(self) -> dict[str, object]:
        """Convert exception to API-friendly dictionary."""
        return {
            "error": {
                "code": self.code,
                "resource_type": self.resource_type,
                "resource_id": self.resource_id,
                "message": self.message,
            }
        }


class StorageError(DamError):
    """Event store operation failed."""

    code: str = "storage_error"


class DeliveryError(DamError):
    """A delivery attempt could not be carried out.

    Never escapes the delivery worker; it exists so transport failures can
    be classified in one place.

    Attributes:
        error_code: Classification recorded on the event (TIMEOUT, HTTP_ERROR, ...).
        status_code: HTTP status of the response, when one was received.
    """

    code: str = "delivery_error"

    def __init__(self, message: str, error_code: str, status_code: int | None = None) -> None:
        self.error_code = error_code
        self.status_code = status_code
        super().__init__(message)


class ConfigurationError(DamError):
    """Required configuration is missing or invalid."""

    code: str = "configuration_error"


class AuthenticationError(DamError):
    """Authentication failed."""

    code: str = "authentication_error"


class SignatureError(AuthenticationError):
    """Webhook signature is missing or does not match the payload."""

    code: str = "invalid_signature"
