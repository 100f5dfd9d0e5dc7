"""Custom exceptions for the S3 step definitions."""
from enum import Enum
from typing import Optional, Any, Dict


class AutomationFrameworkError(Exception):
    """Base exception for all framework errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self):
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


class ConfigurationError(AutomationFrameworkError):
    """Raised when configuration is invalid or missing."""

    def __init__(self, message: str, config_key: Optional[str] = None,
                 config_file: Optional[str] = None, **kwargs):
        details = {"config_key": config_key, "config_file": config_file}
        details.update(kwargs)
        super().__init__(message, details)


class StorageErrorKind(Enum):
    """Category of a failed storage operation."""
    NOT_FOUND = "not_found"
    ALREADY_EXISTS = "already_exists"
    TRANSPORT = "transport"
    DECODE = "decode"


class StorageError(AutomationFrameworkError):
    """Raised when an S3 operation fails."""

    def __init__(self, message: str, kind: StorageErrorKind = StorageErrorKind.TRANSPORT,
                 bucket: Optional[str] = None, key: Optional[str] = None, **kwargs):
        details = {"kind": kind.value, "bucket": bucket, "key": key}
        details.update(kwargs)
        super().__init__(message, details)
        self.kind = kind
        self.bucket = bucket
        self.key = key
