"""HTTP client that signs outbound requests with NCSA.HMAC."""

import json
from email.utils import formatdate
from typing import Any

import aiohttp

from ncsa_hmac.common.errors import EmptyKey
from ncsa_hmac.common.hmac import (
    CanonicalFormat,
    KeyPair,
    SignableRequest,
    SigningHash,
    signed_headers,
)
from ncsa_hmac.common.logging import get_logger
from ncsa_hmac.common.metrics import record_client_request
from ncsa_hmac.common.settings import Settings

logger = get_logger(__name__)


def http_date(timestamp: float | None = None) -> str:
    """Format a timestamp (default now) as an RFC 7231 HTTP-date."""
    return formatdate(timestamp, usegmt=True)


class HmacClientError(Exception):
    """Error sending a signed request."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class HmacClient:
    """
    aiohttp client whose requests carry Date, Content-Digest and an
    NCSA.HMAC Authorization header.
    """

    def __init__(
        self,
        settings: Settings,
        key_pair: KeyPair | None = None,
        base_url: str | None = None,
    ):
        """
        Initialize the client.

        Args:
            settings: Application settings
            key_pair: Signing identity (defaults to the client_* settings)
            base_url: Server base URL (defaults to settings.client_base_url)
        """
        if key_pair is None:
            if not settings.client_public_id or not settings.client_private_key:
                raise EmptyKey("Client public id and private key are not configured")
            key_pair = KeyPair(settings.client_public_id, settings.client_private_key)

        self._key_pair = key_pair
        self._base = (base_url or settings.client_base_url).rstrip("/")
        self._signing_hash = SigningHash.parse(settings.sign_with)
        self._fmt = CanonicalFormat(digest_empty_body=settings.legacy_empty_body_digest)
        self._timeout = aiohttp.ClientTimeout(total=settings.http_timeout)
        self._session: aiohttp.ClientSession | None = None

    async def __aenter__(self) -> "HmacClient":
        """Enter async context."""
        self._session = aiohttp.ClientSession(timeout=self._timeout)
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Exit async context."""
        if self._session:
            await self._session.close()
            self._session = None

    def _ensure_session(self) -> aiohttp.ClientSession:
        """Ensure session exists."""
        if not self._session:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
        return self._session

    def prepare(
        self,
        method: str,
        path: str,
        body: bytes | str | None = None,
        content_type: str = "",
        date: str | None = None,
    ) -> tuple[SignableRequest, dict[str, str]]:
        """Build the signable request and the headers that go with it."""
        if body and not content_type:
            # aiohttp would add this itself after signing
            content_type = "application/octet-stream"

        signable = SignableRequest.build(
            method,
            path,
            content_type=content_type,
            date=date or http_date(),
            body=body,
        )
        return signable, signed_headers(signable, self._key_pair, self._signing_hash, self._fmt)

    async def _signed_request(
        self,
        method: str,
        path: str,
        body: bytes | str | None = None,
        content_type: str = "",
    ) -> aiohttp.ClientResponse:
        """
        Sign and send a request.

        Raises:
            HmacClientError: On transport failure
        """
        signable, headers = self.prepare(method, path, body, content_type)
        session = self._ensure_session()

        logger.debug(
            "Sending signed request",
            method=signable.method,
            path=signable.path,
            public_id=self._key_pair.public_id,
        )

        try:
            response = await session.request(
                signable.method,
                f"{self._base}{signable.path}",
                data=signable.body,
                headers=headers,
            )
        except aiohttp.ClientError as e:
            raise HmacClientError(f"Request failed: {e}") from e

        record_client_request(signable.method, response.status)
        return response

    async def request(
        self,
        method: str,
        path: str,
        *,
        json_body: Any = None,
        body: bytes | str | None = None,
        content_type: str = "",
    ) -> Any:
        """
        Send a signed request and decode the response.

        Returns:
            Decoded JSON, raw text for non-JSON bodies, or None when empty
        """
        if json_body is not None:
            body = json.dumps(json_body, separators=(",", ":"))
            content_type = content_type or "application/json"

        response = await self._signed_request(method, path, body, content_type)
        async with response:
            if response.status >= 400:
                text = await response.text()
                raise HmacClientError(
                    f"{method.upper()} {path} failed: {text}",
                    response.status,
                )
            payload = await response.read()

        if not payload:
            return None
        try:
            return json.loads(payload)
        except ValueError:
            return payload.decode("utf-8", errors="replace")

    async def get(self, path: str) -> Any:
        return await self.request("GET", path)

    async def delete(self, path: str) -> Any:
        return await self.request("DELETE", path)

    async def post(self, path: str, json_body: Any = None, **kwargs: Any) -> Any:
        return await self.request("POST", path, json_body=json_body, **kwargs)

    async def put(self, path: str, json_body: Any = None, **kwargs: Any) -> Any:
        return await self.request("PUT", path, json_body=json_body, **kwargs)

    async def patch(self, path: str, json_body: Any = None, **kwargs: Any) -> Any:
        return await self.request("PATCH", path, json_body=json_body, **kwargs)
