from __future__ import annotations

from typing import Optional


class ServiceError(Exception):
    """Base class for service-layer exceptions.

    Each exception class defines both an HTTP status_code and a stable
    error_code so the transport layer can collapse any failure into a
    generic denial without inspecting the message:
    - unauthorized (401)
    - forbidden (403)
    - not_found (404)
    - validation_error (400)
    - conflict (409)
    - server_error (500)
    """

    status_code: int = 400
    error_code: str = "validation_error"
    default_message: str = "request could not be processed"

    def __init__(
        self,
        message: Optional[str] = None,
        *,
        status_code: Optional[int] = None,
        detail: Optional[dict] = None,
        error_code: Optional[str] = None,
    ) -> None:
        message = message or self.default_message
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        if error_code is not None:
            self.error_code = error_code
        self.detail = detail or {}


class ValidationError(ServiceError):
    """Request validation failed (400)."""
    status_code = 400
    error_code = "validation_error"


class AuthenticationError(ServiceError):
    """Authentication failed or missing (401)."""
    status_code = 401
    error_code = "unauthorized"


class ForbiddenError(ServiceError):
    """Access denied - insufficient permissions (403)."""
    status_code = 403
    error_code = "forbidden"


class NotFoundError(ServiceError):
    """Requested resource not found (404)."""
    status_code = 404
    error_code = "not_found"


class ConflictError(ServiceError):
    """Resource conflict, e.g., duplicate creation (409)."""
    status_code = 409
    error_code = "conflict"


class ServerError(ServiceError):
    """Internal server error (500)."""
    status_code = 500
    error_code = "server_error"


# session
class InvalidSessionError(AuthenticationError):
    """The presented session token is empty or malformed."""
    default_message = "invalid session"


class SessionNotFoundError(AuthenticationError):
    """No account carries the presented session token."""
    default_message = "session not found"


class InvalidCredentialsError(AuthenticationError):
    """Unknown login or wrong password; the two are deliberately indistinguishable."""
    default_message = "invalid credentials"


class NoDeviceFoundError(AuthenticationError):
    """The account requires a trusted device and none was presented or found."""
    default_message = "no device found"


class DeviceNotActiveError(AuthenticationError):
    """The presented device exists but has not been activated yet."""
    default_message = "device not active"


class InsufficientPrivilegeError(ForbiddenError):
    default_message = "insufficient privilege"


class TwoFactorRequiredError(ForbiddenError):
    """Administrative accounts cannot opt out of device trust."""
    default_message = "two-factor authentication is required for this account"


# devices
class DeviceNotFoundError(NotFoundError):
    default_message = "device not found"


class DeviceAlreadyActiveError(ConflictError):
    default_message = "device already active"


class DeviceAccountMismatchError(ForbiddenError):
    default_message = "device does not belong to this account"


class InvalidCodeError(ValidationError):
    default_message = "invalid device code"


# accounts and recovery
class AccountNotFoundError(NotFoundError):
    default_message = "account not found"


class RecoveryNotFoundError(NotFoundError):
    default_message = "recovery not found"


class EmailChangeNotFoundError(NotFoundError):
    default_message = "email change not found"


__all__ = [
    "ServiceError",
    "ValidationError",
    "AuthenticationError",
    "ForbiddenError",
    "NotFoundError",
    "ConflictError",
    "ServerError",
    "InvalidSessionError",
    "SessionNotFoundError",
    "InvalidCredentialsError",
    "NoDeviceFoundError",
    "DeviceNotActiveError",
    "InsufficientPrivilegeError",
    "TwoFactorRequiredError",
    "DeviceNotFoundError",
    "DeviceAlreadyActiveError",
    "DeviceAccountMismatchError",
    "InvalidCodeError",
    "AccountNotFoundError",
    "RecoveryNotFoundError",
    "EmailChangeNotFoundError",
]
