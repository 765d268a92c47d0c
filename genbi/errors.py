"""
Error taxonomy shared by every component.

Each error carries a stable ``kind`` (its class name), the HTTP status the API
maps it to, and whether the caller may retry. ``ConnectionError`` and
``TimeoutError`` intentionally shadow the builtins inside this module; import
the module (``from genbi import errors``) rather than the names when the
builtins are also needed.
"""

from typing import Any, Dict, Optional


class GenBIError(Exception):
    """Base class for all typed failures."""

    status_code = 500
    retryable = False

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    @property
    def kind(self) -> str:
        return type(self).__name__

    def to_dict(self) -> Dict[str, Any]:
        error = {
            "kind": self.kind,
            "message": self.message,
            "retryable": self.retryable,
        }
        if self.details:
            error["details"] = self.details
        return error


class ValidationError(GenBIError):
    """Malformed request; never retried automatically."""

    status_code = 400


class NotFoundError(GenBIError):
    status_code = 404


class ConnectionError(GenBIError):
    """Backend unreachable."""

    status_code = 503
    retryable = True


class PoolTimeoutError(GenBIError):
    """Every pooled connection stayed busy for the whole acquisition window."""

    status_code = 503
    retryable = True


class IntrospectionError(GenBIError):
    """Catalog query failed; translation may proceed without schema context."""

    status_code = 502
    retryable = True


class UnsafeQueryError(GenBIError):
    """The translation guard rejected the generated statement."""

    status_code = 422


class SchemaMismatchError(GenBIError):
    """The generated statement references relations or columns outside the schema."""

    status_code = 422


class ExecutionError(GenBIError):
    status_code = 500


class TimeoutError(GenBIError):
    status_code = 504
    retryable = True


class ReferentialError(GenBIError):
    """Dangling or in-use references."""

    status_code = 409


class ConflictError(GenBIError):
    """Another refresh of the same saved query is in flight."""

    status_code = 409
    retryable = True
