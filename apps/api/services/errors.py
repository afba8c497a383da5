"""
API error types shared by services and routers.

Every error is an ``HTTPException`` so FastAPI can surface it directly; the
handlers in ``routers.envelope`` wrap the detail into the response envelope.
"""

from typing import Any, Dict, Optional

from fastapi import HTTPException, status


class APIError(HTTPException):
    """Base API error with a machine-readable code."""

    def __init__(
        self,
        status_code: int,
        detail: str,
        error_code: Optional[str] = None,
        headers: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(status_code=status_code, detail=detail, headers=headers)
        self.error_code = error_code


class NotFoundError(APIError):
    def __init__(self, detail: str = "Resource not found", error_code: str = "NOT_FOUND"):
        super().__init__(status_code=status.HTTP_404_NOT_FOUND, detail=detail, error_code=error_code)


class ValidationError(APIError):
    def __init__(self, detail: str = "Validation failed", error_code: str = "VALIDATION_ERROR"):
        super().__init__(status_code=status.HTTP_400_BAD_REQUEST, detail=detail, error_code=error_code)


class AuthenticationError(APIError):
    def __init__(self, detail: str = "Authentication failed", error_code: str = "AUTH_FAILED"):
        super().__init__(status_code=status.HTTP_401_UNAUTHORIZED, detail=detail, error_code=error_code)


class PermissionDeniedError(APIError):
    def __init__(self, detail: str = "Forbidden", error_code: str = "PERMISSION_DENIED"):
        super().__init__(status_code=status.HTTP_403_FORBIDDEN, detail=detail, error_code=error_code)


class ConflictError(APIError):
    def __init__(self, detail: str = "Resource conflict", error_code: str = "CONFLICT"):
        super().__init__(status_code=status.HTTP_409_CONFLICT, detail=detail, error_code=error_code)


class InvalidCodeError(ValidationError):
    """Scanned QR code does not belong to any restaurant."""

    def __init__(self, detail: str = "Invalid QR code"):
        super().__init__(detail=detail, error_code="INVALID_CODE")


class InvalidLocationError(PermissionDeniedError):
    """Scan position is outside the restaurant geofence."""

    def __init__(self, detail: str = "You must be at the restaurant location to scan this QR"):
        super().__init__(detail=detail, error_code="INVALID_LOCATION")


class InsufficientFundsError(ValidationError):
    def __init__(self, detail: str = "Insufficient balance"):
        super().__init__(detail=detail, error_code="INSUFFICIENT_FUNDS")
