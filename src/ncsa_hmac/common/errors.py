"""Shared error types, helpers and codes."""

from __future__ import annotations

from typing import Any

from starlette.responses import JSONResponse


class HmacError(Exception):
    """Base class for request authentication errors."""


class InvalidRequestFields(HmacError):
    """Request attributes cannot be canonicalized."""


class UnsupportedHashAlgorithm(HmacError):
    """Requested signing hash is not one of the supported algorithms."""


class EmptyKey(HmacError):
    """Private key is missing or empty."""


class MalformedAuthHeader(HmacError):
    """Authorization header does not follow the NCSA.HMAC grammar."""


class ResolverUnavailable(HmacError):
    """Key resolver failed to answer (as opposed to not knowing the identity)."""


class ErrorCode:
    MISSING_AUTHORIZATION = "missing_authorization"
    MALFORMED_AUTH_HEADER = "malformed_auth_header"
    INVALID_DATE = "invalid_date"
    EXPIRED_DATE = "expired_date"
    DIGEST_MISMATCH = "digest_mismatch"
    INVALID_REQUEST = "invalid_request"
    RESOLVER_UNAVAILABLE = "resolver_unavailable"
    UNAUTHORIZED = "unauthorized"


def error_response(
    code: str,
    message: str,
    status_code: int,
    details: dict[str, Any] | None = None,
) -> JSONResponse:
    payload: dict[str, Any] = {
        "error": {
            "code": code,
            "message": message,
        }
    }
    if details:
        payload["error"]["details"] = details
    return JSONResponse(payload, status_code=status_code)
