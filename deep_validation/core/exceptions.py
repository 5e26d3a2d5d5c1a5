"""Exception hierarchy for the validation engine."""

from __future__ import annotations

from typing import Any


NOT_FOUND_CODE = 20404


class DeepValidationError(Exception):
    """Base exception with a structured representation."""

    error_code: str = "DEEP_VALIDATION_ERROR"
    message: str = "Validation engine error"

    def __init__(
        self,
        message: str | None = None,
        error_code: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        self.message = message or self.message
        self.error_code = error_code or self.error_code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": self.error_code,
            "message": self.message,
            **({"details": self.details} if self.details else {}),
        }


class VendorClientError(DeepValidationError):
    """Vendor client failure."""

    error_code = "VENDOR_CLIENT_ERROR"
    message = "Vendor client request failed"


class VendorApiError(VendorClientError):
    """The vendor API answered with an error response.

    Checks convert this into a failed (or, for a not-found analytics
    resource, a not-yet-available) check instead of propagating it.
    """

    error_code = "VENDOR_API_ERROR"
    message = "Vendor API returned an error"

    def __init__(
        self,
        message: str | None = None,
        status: int | None = None,
        code: int | None = None,
        more_info: str | None = None,
    ):
        self.status = status
        self.code = code
        self.more_info = more_info
        details: dict[str, Any] = {}
        if status is not None:
            details["status"] = status
        if code is not None:
            details["code"] = code
        if more_info:
            details["more_info"] = more_info
        super().__init__(message, details=details)

    @property
    def is_not_found(self) -> bool:
        """True for a 404 or the vendor's resource-not-found code."""
        return self.status == 404 or self.code == NOT_FOUND_CODE


class VendorTransportError(VendorClientError):
    """The vendor API could not be reached. Never absorbed by checks."""

    error_code = "VENDOR_TRANSPORT_ERROR"
    message = "Vendor API unreachable"


class ValidationAssertionError(DeepValidationError, AssertionError):
    """Raised by the test-harness helpers when a validation fails."""

    error_code = "VALIDATION_FAILED"
    message = "Deep validation failed"
