"""
Gateway error taxonomy.

Every failure that reaches a caller is one of these kinds. Identifier and
address problems are raised by the resolver before any upstream traffic;
adapter failures are translated into this taxonomy by the orchestrator.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Optional


class ErrorCode(str, Enum):
    """Wire codes carried in the envelope ``error.code`` field."""

    MALFORMED_IDENTIFIER = "MALFORMED_IDENTIFIER"
    UNSUPPORTED_NETWORK = "UNSUPPORTED_NETWORK"
    UNSUPPORTED_ASSET_TYPE = "UNSUPPORTED_ASSET_TYPE"
    INVALID_ADDRESS = "INVALID_ADDRESS"
    INVALID_REQUEST = "INVALID_REQUEST"
    MISSING_CREDENTIAL = "MISSING_CREDENTIAL"
    UPSTREAM_UNAVAILABLE = "UPSTREAM_UNAVAILABLE"
    UPSTREAM_DATA_ERROR = "UPSTREAM_DATA_ERROR"
    INTERNAL_ERROR = "INTERNAL_ERROR"


class GatewayError(Exception):
    """Base class for every error the gateway reports."""

    code: ErrorCode = ErrorCode.INTERNAL_ERROR
    status_code: int = 500
    default_message: str = "Internal server error"

    def __init__(
        self,
        message: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message or self.default_message
        self.details = details
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code.value,
            "message": self.message,
            "details": self.details,
        }

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.message!r})"


class MalformedIdentifier(GatewayError):
    """Identifier matches neither the simple nor the compound grammar."""

    code = ErrorCode.MALFORMED_IDENTIFIER
    status_code = 400
    default_message = "Malformed asset identifier"


class UnsupportedNetwork(GatewayError):
    """Network segment is not in the registry, or the operation needs another family."""

    code = ErrorCode.UNSUPPORTED_NETWORK
    status_code = 400
    default_message = "Unsupported network"


class UnsupportedAssetType(GatewayError):
    """Network is known but the asset type or operation is not offered on it."""

    code = ErrorCode.UNSUPPORTED_ASSET_TYPE
    status_code = 400
    default_message = "Unsupported asset type"


class InvalidAddress(GatewayError):
    code = ErrorCode.INVALID_ADDRESS
    status_code = 400
    default_message = "Invalid address format"


class InvalidRequest(GatewayError):
    """Request parameters or body failed validation."""

    code = ErrorCode.INVALID_REQUEST
    status_code = 400
    default_message = "Invalid request"


class MissingCredential(GatewayError):
    code = ErrorCode.MISSING_CREDENTIAL
    status_code = 503
    default_message = "Upstream provider credential is not configured"


class UpstreamUnavailable(GatewayError):
    """Timeout, rate limit or transport failure talking to a provider."""

    code = ErrorCode.UPSTREAM_UNAVAILABLE
    status_code = 503
    default_message = "Upstream provider unavailable"


class UpstreamDataError(GatewayError):
    """Provider answered but the answer could not be used."""

    code = ErrorCode.UPSTREAM_DATA_ERROR
    status_code = 502
    default_message = "Upstream provider returned unusable data"


class InternalError(GatewayError):
    code = ErrorCode.INTERNAL_ERROR
    status_code = 500
    default_message = "Internal server error"


ERRORS_BY_CODE: Dict[ErrorCode, type] = {
    cls.code: cls
    for cls in (
        MalformedIdentifier,
        UnsupportedNetwork,
        UnsupportedAssetType,
        InvalidAddress,
        InvalidRequest,
        MissingCredential,
        UpstreamUnavailable,
        UpstreamDataError,
        InternalError,
    )
}


def error_for_code(
    code: ErrorCode,
    message: Optional[str] = None,
    details: Optional[Dict[str, Any]] = None,
) -> GatewayError:
    """Build the ``GatewayError`` subclass that carries ``code``."""
    return ERRORS_BY_CODE[code](message, details)


__all__ = [
    "ErrorCode",
    "GatewayError",
    "MalformedIdentifier",
    "UnsupportedNetwork",
    "UnsupportedAssetType",
    "InvalidAddress",
    "InvalidRequest",
    "MissingCredential",
    "UpstreamUnavailable",
    "UpstreamDataError",
    "InternalError",
    "error_for_code",
]
