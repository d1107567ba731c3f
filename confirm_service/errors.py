"""Exception types raised by the confirmation workflows."""

from __future__ import annotations


class ConfirmError(Exception):
    """Base class for confirm-service errors."""


class MissingAccountError(ConfirmError):
    """Raised when a hook runs without an account loaded into the context."""

    def __init__(self, message: str = "confirm: after registration the account must be loaded") -> None:
        super().__init__(message)


class MissingFieldError(ConfirmError):
    """Raised when a required account field is absent."""

    def __init__(self, field: str) -> None:
        self.field = field
        super().__init__(f"account field {field!r} is missing")


class FieldTypeError(ConfirmError):
    """Raised when an account field holds a value of the wrong type."""

    def __init__(self, field: str, expected: type, value: object) -> None:
        self.field = field
        super().__init__(
            f"account field {field!r} should be {expected.__name__}, got {type(value).__name__}"
        )


class ClientDataError(ConfirmError):
    """Raised when a request is missing or carries malformed client data."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"failed to retrieve client attribute: {name}")


class AccountNotFoundError(ConfirmError):
    """Raised by storage when no account matches the lookup."""

    def __init__(self, message: str = "account not found") -> None:
        super().__init__(message)


class TokenCollisionError(ConfirmError):
    """Raised when a new confirm token is already held by another pending account."""


class AccountExistsError(ConfirmError):
    """Raised when registering an e-mail address that is already taken."""


class InvalidTokenError(ConfirmError):
    """Raised when a refresh token is unknown, revoked, or expired."""


class RedirectError(ConfirmError):
    """An error the user should see after being redirected to ``location``."""

    def __init__(self, location: str, message: str) -> None:
        self.location = location
        self.message = message
        super().__init__(message)


class AccountNotConfirmedInterrupt(RedirectError):
    """Halts a login or account-load flow for an account that is not confirmed."""

    def __init__(self, location: str, message: str = "Your account has not been confirmed.") -> None:
        super().__init__(location, message)
