# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Ourochronos Contributors

"""Custom exception hierarchy for agentoverflow.

Expected business denials (rate limited, duplicate, self-verification,
repeat verification) are returned as ``GateResult`` values, not raised.
The exceptions here cover malformed input, missing entities and
infrastructure failures.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Any


class ErrorKind(StrEnum):
    """Error categories shared by exceptions and gate denials."""

    VALIDATION = "validation"  # malformed input, never retried
    RATE_LIMITED = "rate_limited"  # transient, retry after the supplied delay
    CONFLICT = "conflict"  # do not retry with the same payload
    NOT_FOUND = "not_found"
    STORAGE_UNAVAILABLE = "storage_unavailable"  # transient, retry with backoff


class AgentOverflowException(Exception):  # noqa: N818
    """Base exception for all agentoverflow errors."""

    kind: ErrorKind = ErrorKind.VALIDATION

    def __init__(self, message: str, details: dict | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    @property
    def retryable(self) -> bool:
        return self.kind in (ErrorKind.RATE_LIMITED, ErrorKind.STORAGE_UNAVAILABLE)

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "error": self.__class__.__name__,
            "kind": str(self.kind),
            "message": self.message,
            "details": self.details,
        }


class ValidationException(AgentOverflowException):
    """Exception for validation errors.

    Raised when:
    - An outcome or trust tier is not one of the known values
    - Counters or identifiers are malformed
    """

    kind = ErrorKind.VALIDATION

    def __init__(self, message: str, field: str | None = None, value: Any = None):
        details = {}
        if field:
            details["field"] = field
        if value is not None:
            details["value"] = str(value)
        super().__init__(message, details)
        self.field = field
        self.value = value


class ConfigException(AgentOverflowException):
    """Exception for configuration errors.

    Raised when AGENTOVERFLOW_* settings are missing or fail validation, or
    name an unknown log level.
    """

    kind = ErrorKind.VALIDATION

    def __init__(self, message: str, variables: list[str] | None = None):
        details = {}
        if variables:
            details["variables"] = variables
        super().__init__(message, details)
        self.variables = variables or []


class NotFoundError(AgentOverflowException):
    """Exception for resource not found errors.

    Raised when:
    - Requested issue doesn't exist
    - Requested solution doesn't exist
    - Requested contributor doesn't exist
    """

    kind = ErrorKind.NOT_FOUND

    def __init__(self, resource_type: str, resource_id: str):
        message = f"{resource_type} not found: {resource_id}"
        details = {
            "resource_type": resource_type,
            "resource_id": resource_id,
        }
        super().__init__(message, details)
        self.resource_type = resource_type
        self.resource_id = resource_id


class ConflictError(AgentOverflowException):
    """Exception for conflict errors.

    Raised when a uniqueness constraint is hit at the storage layer, e.g.
    two concurrent first verifications racing past the repeat guard.
    """

    kind = ErrorKind.CONFLICT

    def __init__(self, message: str, existing_id: str | None = None):
        details = {}
        if existing_id:
            details["existing_id"] = existing_id
        super().__init__(message, details)
        self.existing_id = existing_id


class RateLimitedError(AgentOverflowException):
    """Raised by ``GateResult.raise_for_denial`` for quota and cooldown denials."""

    kind = ErrorKind.RATE_LIMITED

    def __init__(self, message: str, retry_after: int | None = None):
        details = {}
        if retry_after is not None:
            details["retry_after"] = retry_after
        super().__init__(message, details)
        self.retry_after = retry_after


class StorageUnavailableError(AgentOverflowException):
    """Exception for transient storage failures.

    Raised when:
    - No pooled connection becomes available within the timeout
    - The database is unreachable
    - A statement exceeds the server-side timeout
    """

    kind = ErrorKind.STORAGE_UNAVAILABLE
