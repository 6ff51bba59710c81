"""HMAC canonicalization, signing and verification for the NCSA.HMAC scheme."""

from __future__ import annotations

import base64
import hashlib
import hmac
import inspect
import re
from collections.abc import Iterable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Protocol

from ncsa_hmac.common.errors import (
    EmptyKey,
    InvalidRequestFields,
    MalformedAuthHeader,
    ResolverUnavailable,
    UnsupportedHashAlgorithm,
)
from ncsa_hmac.common.logging import get_logger

logger = get_logger(__name__)

SCHEME = "NCSA.HMAC"

# MD5 of b"", sent by legacy clients that always attach a digest
EMPTY_BODY_DIGEST = "d41d8cd98f00b204e9800998ecf8427e"

_HEX_RE = re.compile(r"[0-9a-fA-F]*")
_AUTHORIZATION_RE = re.compile(rf"{re.escape(SCHEME)} ([^:\s]+):(\S+)")

_FIELD_ORDER: dict[str, tuple[str, ...]] = {
    "1": ("method", "content_type", "content_digest", "date", "path"),
}


class SigningHash(str, Enum):
    """Hash algorithms supported for HMAC signing."""

    SHA256 = "sha256"
    SHA384 = "sha384"
    SHA512 = "sha512"

    @classmethod
    def parse(cls, value: SigningHash | str) -> SigningHash:
        """Resolve an enum member or case-insensitive name ("SHA-512", "sha512")."""
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            try:
                return cls(value.strip().lower().replace("-", ""))
            except ValueError:
                pass
        raise UnsupportedHashAlgorithm(f"Unsupported signing hash: {value!r}")


@dataclass(frozen=True)
class CanonicalFormat:
    """
    Versioned layout of the string to sign.

    Version "1" joins method, content type, content digest, date and path
    with newlines. An empty-body request contributes an empty digest slot
    unless ``digest_empty_body`` is set, in which case the MD5 of the empty
    body is used the way older clients computed it.
    """

    version: str = "1"
    separator: str = "\n"
    digest_empty_body: bool = False

    def __post_init__(self) -> None:
        if self.version not in _FIELD_ORDER:
            raise InvalidRequestFields(f"Unknown canonical format version: {self.version!r}")

    @property
    def fields(self) -> tuple[str, ...]:
        return _FIELD_ORDER[self.version]


DEFAULT_FORMAT = CanonicalFormat()


def content_digest(body: bytes | None) -> str:
    """Hex MD5 of the body, or an empty string when there is no body."""
    if not body:
        return ""
    return hashlib.md5(body, usedforsecurity=False).hexdigest()


@dataclass(frozen=True)
class SignableRequest:
    """Request attributes covered by the signature."""

    method: str
    path: str
    content_type: str = ""
    date: str = ""
    body: bytes | None = None
    content_digest: str | None = None

    def __post_init__(self) -> None:
        for name in ("method", "path", "content_type", "date"):
            if not isinstance(getattr(self, name), str):
                raise InvalidRequestFields(f"{name} must be a string")
        if not self.method.strip():
            raise InvalidRequestFields("method must not be empty")
        if not self.path:
            raise InvalidRequestFields("path must not be empty")
        if self.body is not None and not isinstance(self.body, (bytes, bytearray)):
            raise InvalidRequestFields("body must be bytes")

        expected = content_digest(self.body)
        digest = self.content_digest
        if digest is None:
            digest = expected
        elif not isinstance(digest, str) or not _HEX_RE.fullmatch(digest):
            raise InvalidRequestFields("content_digest must be a hex string")
        elif not self.body and digest:
            raise InvalidRequestFields("content_digest given for a request without a body")
        elif self.body and digest.lower() != expected:
            raise InvalidRequestFields("content_digest does not match body")

        object.__setattr__(self, "method", self.method.strip().upper())
        object.__setattr__(self, "content_digest", digest.lower())
        if isinstance(self.body, bytearray):
            object.__setattr__(self, "body", bytes(self.body))

    @classmethod
    def build(
        cls,
        method: str,
        path: str,
        *,
        content_type: str = "",
        date: str = "",
        body: bytes | str | None = None,
    ) -> SignableRequest:
        """Build a request, encoding a text body as UTF-8."""
        if isinstance(body, str):
            body = body.encode("utf-8")
        return cls(
            method=method,
            path=path,
            content_type=content_type,
            date=date,
            body=body,
        )


@dataclass(frozen=True)
class KeyPair:
    """Public identity and shared secret of a signer."""

    public_id: str
    private_key: str = field(repr=False)


class KeyResolver(Protocol):
    """Maps a claimed public id to its private key, or None if unknown."""

    def resolve(self, public_id: str) -> str | None: ...


class AsyncKeyResolver(Protocol):
    """Async variant of KeyResolver for key stores that do I/O."""

    async def resolve(self, public_id: str) -> str | None: ...


class Outcome(str, Enum):
    """Verification outcomes that are not errors."""

    AUTHENTICATED = "authenticated"
    UNKNOWN_IDENTITY = "unknown_identity"
    SIGNATURE_MISMATCH = "signature_mismatch"


@dataclass(frozen=True)
class VerificationResult:
    """Authorization decision for a single request."""

    public_id: str
    outcome: Outcome
    signing_hash: SigningHash | None = None

    @property
    def authenticated(self) -> bool:
        return self.outcome is Outcome.AUTHENTICATED


# === Canonicalizer ===


def canonicalize(request: SignableRequest, fmt: CanonicalFormat = DEFAULT_FORMAT) -> bytes:
    """Build the string to sign for a request."""
    if not isinstance(request, SignableRequest):
        raise InvalidRequestFields("request must be a SignableRequest")

    digest = request.content_digest or ""
    if not digest and fmt.digest_empty_body:
        digest = EMPTY_BODY_DIGEST

    values = {
        "method": request.method,
        "content_type": request.content_type,
        "content_digest": digest,
        "date": request.date,
        "path": request.path,
    }
    return fmt.separator.join(values[name] for name in fmt.fields).encode("utf-8")


# === Signer ===


def _key_bytes(private_key: KeyPair | str | bytes | None) -> bytes:
    if isinstance(private_key, KeyPair):
        private_key = private_key.private_key
    if not private_key:
        raise EmptyKey("Private key must not be empty")
    if isinstance(private_key, str):
        return private_key.encode("utf-8")
    if isinstance(private_key, bytes):
        return private_key
    raise TypeError(f"Private key must be str or bytes, not {type(private_key).__name__}")


def compute_signature(
    canonical: bytes | str,
    private_key: KeyPair | str | bytes,
    signing_hash: SigningHash | str = SigningHash.SHA512,
) -> str:
    """Create a single-line base64 HMAC signature over a canonical string."""
    algorithm = SigningHash.parse(signing_hash)
    key = _key_bytes(private_key)
    if isinstance(canonical, str):
        canonical = canonical.encode("utf-8")
    digest = hmac.new(key, canonical, algorithm.value).digest()
    return base64.b64encode(digest).decode("ascii").replace("\n", "")


def sign(
    request: SignableRequest,
    private_key: KeyPair | str | bytes,
    signing_hash: SigningHash | str = SigningHash.SHA512,
    fmt: CanonicalFormat = DEFAULT_FORMAT,
) -> str:
    """Sign a request with a shared secret."""
    return compute_signature(canonicalize(request, fmt), private_key, signing_hash)


def format_authorization(public_id: str, signature: str) -> str:
    """Render an Authorization header value."""
    if not public_id or ":" in public_id or any(ch.isspace() for ch in public_id):
        raise InvalidRequestFields("public_id must be non-empty without ':' or whitespace")
    return f"{SCHEME} {public_id}:{signature}"


def authorization_header(
    request: SignableRequest,
    key_pair: KeyPair,
    signing_hash: SigningHash | str = SigningHash.SHA512,
    fmt: CanonicalFormat = DEFAULT_FORMAT,
) -> str:
    """Sign a request and render the NCSA.HMAC Authorization header."""
    return format_authorization(key_pair.public_id, sign(request, key_pair, signing_hash, fmt))


def signed_headers(
    request: SignableRequest,
    key_pair: KeyPair,
    signing_hash: SigningHash | str = SigningHash.SHA512,
    fmt: CanonicalFormat = DEFAULT_FORMAT,
) -> dict[str, str]:
    """Headers a client must send for the server to rebuild the signed string."""
    headers: dict[str, str] = {}
    if request.date:
        headers["Date"] = request.date
    if request.content_type:
        headers["Content-Type"] = request.content_type
    if request.content_digest:
        headers["Content-Digest"] = request.content_digest
    elif fmt.digest_empty_body:
        headers["Content-Digest"] = EMPTY_BODY_DIGEST
    headers["Authorization"] = authorization_header(request, key_pair, signing_hash, fmt)
    return headers


# === Verifier ===


def parse_authorization(header: str | None) -> tuple[str, str]:
    """
    Split an Authorization header into public id and signature.

    Raises:
        MalformedAuthHeader: If the header is missing or not NCSA.HMAC
    """
    if not header or not isinstance(header, str):
        raise MalformedAuthHeader("Missing authorization header")

    match = _AUTHORIZATION_RE.fullmatch(header.strip())
    if not match:
        raise MalformedAuthHeader(f"Authorization header is not '{SCHEME} <id>:<signature>'")
    return match.group(1), match.group(2)


def _accepted(accept_digests: Iterable[SigningHash | str] | SigningHash | str) -> tuple[SigningHash, ...]:
    if isinstance(accept_digests, str):
        accept_digests = (accept_digests,)
    digests = tuple(SigningHash.parse(value) for value in accept_digests)
    if not digests:
        raise UnsupportedHashAlgorithm("No accepted signing hashes configured")
    return digests


def _resolver_failed(public_id: str, exc: Exception) -> ResolverUnavailable:
    logger.error("Key resolver failed", public_id=public_id, error=str(exc))
    return ResolverUnavailable(f"Key resolver failed for {public_id!r}: {exc}")


def _decide(
    request: SignableRequest,
    public_id: str,
    presented: str,
    private_key: Any,
    digests: tuple[SigningHash, ...],
    fmt: CanonicalFormat,
) -> VerificationResult:
    if private_key is not None and not isinstance(private_key, (str, bytes)):
        error = TypeError(f"resolver returned {type(private_key).__name__}, expected str or bytes")
        raise _resolver_failed(public_id, error) from error
    if not private_key:
        logger.info("HMAC identity unknown", public_id=public_id)
        return VerificationResult(public_id=public_id, outcome=Outcome.UNKNOWN_IDENTITY)

    canonical = canonicalize(request, fmt)
    presented_bytes = presented.encode("utf-8")
    for algorithm in digests:
        expected = compute_signature(canonical, private_key, algorithm)
        if hmac.compare_digest(expected.encode("ascii"), presented_bytes):
            logger.debug("HMAC signature verified", public_id=public_id, signing_hash=algorithm.value)
            return VerificationResult(
                public_id=public_id,
                outcome=Outcome.AUTHENTICATED,
                signing_hash=algorithm,
            )

    logger.warning("HMAC signature mismatch", public_id=public_id)
    return VerificationResult(public_id=public_id, outcome=Outcome.SIGNATURE_MISMATCH)


def authenticate(
    request: SignableRequest,
    authorization: str | None,
    resolver: KeyResolver,
    accept_digests: Iterable[SigningHash | str] | SigningHash | str = (SigningHash.SHA512,),
    fmt: CanonicalFormat = DEFAULT_FORMAT,
) -> VerificationResult:
    """
    Decide whether a request carries a valid signature.

    Unknown identities and mismatched signatures are reported in the
    result; only malformed input and resolver faults raise.

    Raises:
        MalformedAuthHeader: If the Authorization header cannot be parsed
        ResolverUnavailable: If the resolver fails or returns a non-key value
    """
    public_id, presented = parse_authorization(authorization)
    digests = _accepted(accept_digests)

    try:
        private_key = resolver.resolve(public_id)
    except ResolverUnavailable:
        raise
    except Exception as e:
        raise _resolver_failed(public_id, e) from e

    if inspect.isawaitable(private_key):
        if inspect.iscoroutine(private_key):
            private_key.close()
        raise TypeError("Resolver returned an awaitable; use aauthenticate()")

    return _decide(request, public_id, presented, private_key, digests, fmt)


async def aauthenticate(
    request: SignableRequest,
    authorization: str | None,
    resolver: AsyncKeyResolver | KeyResolver,
    accept_digests: Iterable[SigningHash | str] | SigningHash | str = (SigningHash.SHA512,),
    fmt: CanonicalFormat = DEFAULT_FORMAT,
) -> VerificationResult:
    """Async variant of authenticate() for resolvers that await I/O."""
    public_id, presented = parse_authorization(authorization)
    digests = _accepted(accept_digests)

    try:
        private_key = resolver.resolve(public_id)
        if inspect.isawaitable(private_key):
            private_key = await private_key
    except ResolverUnavailable:
        raise
    except Exception as e:
        raise _resolver_failed(public_id, e) from e

    return _decide(request, public_id, presented, private_key, digests, fmt)


def verify(
    request: SignableRequest,
    authorization: str | None,
    resolver: KeyResolver,
    accept_digests: Iterable[SigningHash | str] | SigningHash | str = (SigningHash.SHA512,),
    fmt: CanonicalFormat = DEFAULT_FORMAT,
) -> bool:
    """Return True iff the request is signed by a key the resolver knows."""
    return authenticate(request, authorization, resolver, accept_digests, fmt).authenticated


async def averify(
    request: SignableRequest,
    authorization: str | None,
    resolver: AsyncKeyResolver | KeyResolver,
    accept_digests: Iterable[SigningHash | str] | SigningHash | str = (SigningHash.SHA512,),
    fmt: CanonicalFormat = DEFAULT_FORMAT,
) -> bool:
    """Async variant of verify()."""
    result = await aauthenticate(request, authorization, resolver, accept_digests, fmt)
    return result.authenticated
