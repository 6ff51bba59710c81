"""Key resolvers and HMAC authentication middleware."""

from __future__ import annotations

import time
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import timezone
from email.utils import parsedate_to_datetime

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response
from starlette.types import ASGIApp

from ncsa_hmac.common.errors import (
    ErrorCode,
    InvalidRequestFields,
    MalformedAuthHeader,
    ResolverUnavailable,
    error_response,
)
from ncsa_hmac.common.hmac import (
    AsyncKeyResolver,
    CanonicalFormat,
    KeyPair,
    KeyResolver,
    SignableRequest,
    aauthenticate,
    content_digest,
)
from ncsa_hmac.common.http import set_subject
from ncsa_hmac.common.logging import get_logger
from ncsa_hmac.common.metrics import record_auth_decision
from ncsa_hmac.common.settings import Settings

logger = get_logger(__name__)


@dataclass(frozen=True)
class AuthContext:
    """Authenticated request context."""

    public_id: str
    signing_hash: str | None
    method: str = "hmac"


class AuthError(Exception):
    """Authentication error with HTTP status."""

    def __init__(
        self,
        status_code: int,
        code: str,
        message: str,
        reason: str | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.code = code
        self.message = message
        self.reason = reason or code


class StaticKeyResolver:
    """Resolve keys from an in-memory mapping of public id to secret."""

    def __init__(self, keys: Mapping[str, str]) -> None:
        self._keys = dict(keys)

    @classmethod
    def from_key_pairs(cls, *key_pairs: KeyPair) -> StaticKeyResolver:
        return cls({pair.public_id: pair.private_key for pair in key_pairs})

    def resolve(self, public_id: str) -> str | None:
        return self._keys.get(public_id)


class SettingsKeyResolver(StaticKeyResolver):
    """Resolve keys configured through NCSA_HMAC_HMAC_KEYS."""

    def __init__(self, settings: Settings) -> None:
        super().__init__(settings.hmac_keys)


def check_date(value: str | None, ttl_seconds: int, now: float | None = None) -> None:
    """
    Reject a Date header that is missing, unparsable or outside the window.

    Raises:
        AuthError: With code invalid_date or expired_date
    """
    if not value:
        raise AuthError(401, ErrorCode.INVALID_DATE, "Missing Date header")

    try:
        sent = parsedate_to_datetime(value)
    except (TypeError, ValueError) as e:
        raise AuthError(401, ErrorCode.INVALID_DATE, "Invalid Date header") from e

    if sent.tzinfo is None:
        sent = sent.replace(tzinfo=timezone.utc)

    current = time.time() if now is None else now
    if abs(current - sent.timestamp()) > ttl_seconds:
        raise AuthError(401, ErrorCode.EXPIRED_DATE, "Date header outside allowed window")


def canonical_format(settings: Settings) -> CanonicalFormat:
    """Canonical format selected by settings."""
    return CanonicalFormat(digest_empty_body=settings.legacy_empty_body_digest)


async def signable_request_from(request: Request) -> SignableRequest:
    """Extract the signed attributes from a Starlette request."""
    raw_path = request.scope.get("raw_path")
    if raw_path:
        # some servers leave the query string on raw_path
        path = raw_path.decode("latin-1").split("?", 1)[0]
    else:
        path = request.url.path
    if request.url.query:
        path = f"{path}?{request.url.query}"

    body = await request.body()
    return SignableRequest(
        method=request.method,
        path=path,
        content_type=request.headers.get("Content-Type", ""),
        date=request.headers.get("Date", ""),
        body=body or None,
    )


async def authenticate_request(
    request: Request,
    settings: Settings,
    resolver: KeyResolver | AsyncKeyResolver,
) -> AuthContext:
    """Authenticate a request and return an AuthContext."""
    authorization = request.headers.get("Authorization")
    if not authorization:
        raise AuthError(401, ErrorCode.MISSING_AUTHORIZATION, "Missing Authorization header")

    if settings.hmac_ttl_seconds is not None:
        check_date(request.headers.get("Date"), settings.hmac_ttl_seconds)

    try:
        signable = await signable_request_from(request)
    except InvalidRequestFields as e:
        raise AuthError(400, ErrorCode.INVALID_REQUEST, str(e)) from e

    header_digest = request.headers.get("Content-Digest")
    if signable.body and header_digest and header_digest.lower() != content_digest(signable.body):
        raise AuthError(401, ErrorCode.DIGEST_MISMATCH, "Content-Digest does not match body")

    try:
        result = await aauthenticate(
            signable,
            authorization,
            resolver,
            accept_digests=settings.accept_digests,
            fmt=canonical_format(settings),
        )
    except MalformedAuthHeader as e:
        raise AuthError(401, ErrorCode.MALFORMED_AUTH_HEADER, str(e)) from e
    except ResolverUnavailable as e:
        raise AuthError(503, ErrorCode.RESOLVER_UNAVAILABLE, "Key resolver unavailable") from e

    if not result.authenticated:
        raise AuthError(
            401,
            ErrorCode.UNAUTHORIZED,
            "Invalid HMAC signature",
            reason=result.outcome.value,
        )

    return AuthContext(
        public_id=result.public_id,
        signing_hash=result.signing_hash.value if result.signing_hash else None,
    )


class HmacAuthMiddleware(BaseHTTPMiddleware):
    """NCSA.HMAC authentication middleware for inbound requests."""

    def __init__(
        self,
        app: ASGIApp,
        settings: Settings,
        resolver: KeyResolver | AsyncKeyResolver | None = None,
    ) -> None:
        super().__init__(app)
        self._settings = settings
        self._resolver = resolver or SettingsKeyResolver(settings)
        self._exempt_paths = set(settings.auth_exempt_paths)

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        if self._settings.auth_mode != "hmac":
            return await call_next(request)

        if request.url.path in self._exempt_paths:
            return await call_next(request)

        start = time.perf_counter()
        try:
            auth = await authenticate_request(request, self._settings, self._resolver)
        except AuthError as exc:
            record_auth_decision(exc.reason, time.perf_counter() - start)
            logger.info(
                "Request rejected",
                path=request.url.path,
                code=exc.code,
                reason=exc.reason,
            )
            return error_response(exc.code, exc.message, exc.status_code)

        record_auth_decision("authenticated", time.perf_counter() - start)
        request.state.auth = auth
        set_subject(auth.public_id)
        return await call_next(request)
