"""Deep validation for asynchronous telephony and messaging operations."""

__version__ = "0.1.0"
