"""
Trust Radar — Query errors

Transport-agnostic error types raised by QueryService. The HTTP layer maps
each code to a status (404, 403, 400).
"""

from __future__ import annotations

from enum import Enum


class ErrorCode(str, Enum):
    NOT_FOUND = "NOT_FOUND"
    PERMISSION_DENIED = "PERMISSION_DENIED"
    INVALID_ARGUMENT = "INVALID_ARGUMENT"


class QueryError(Exception):
    """Base class for query failures. Carries a machine-readable code."""

    code: ErrorCode = ErrorCode.INVALID_ARGUMENT

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)

    def to_dict(self) -> dict[str, str]:
        return {"code": self.code.value, "message": self.message}


class NotFoundError(QueryError):
    code = ErrorCode.NOT_FOUND


class PermissionDeniedError(QueryError):
    code = ErrorCode.PERMISSION_DENIED


class InvalidArgumentError(QueryError):
    code = ErrorCode.INVALID_ARGUMENT
