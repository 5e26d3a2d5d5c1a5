"""Core infrastructure: settings, logging, exceptions."""

from .config import Settings, get_settings
from .exceptions import (
    DeepValidationError,
    ValidationAssertionError,
    VendorApiError,
    VendorClientError,
    VendorTransportError,
)
from .logging import get_logger, session_id_var, setup_logging


__all__ = [
    "DeepValidationError",
    "Settings",
    "ValidationAssertionError",
    "VendorApiError",
    "VendorClientError",
    "VendorTransportError",
    "get_logger",
    "get_settings",
    "session_id_var",
    "setup_logging",
]
