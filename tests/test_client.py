"""Tests for the signing HTTP client."""

from email.utils import parsedate_to_datetime
from unittest.mock import AsyncMock, patch

import aiohttp
import pytest

from conftest import WIDGET_DIGEST
from ncsa_hmac.client import HmacClient, HmacClientError, http_date
from ncsa_hmac.common.auth import StaticKeyResolver
from ncsa_hmac.common.errors import EmptyKey
from ncsa_hmac.common.hmac import EMPTY_BODY_DIGEST, CanonicalFormat, SignableRequest, verify
from ncsa_hmac.common.settings import Settings


def mock_response(status: int = 200, payload: bytes = b"", text: str = "") -> AsyncMock:
    response = AsyncMock()
    response.status = status
    response.read = AsyncMock(return_value=payload)
    response.text = AsyncMock(return_value=text)
    response.__aenter__ = AsyncMock(return_value=response)
    response.__aexit__ = AsyncMock(return_value=None)
    return response


class TestHttpDate:
    """Test HTTP-date formatting."""

    def test_format(self):
        """Test formatting a fixed timestamp."""
        assert http_date(1704067200) == "Mon, 01 Jan 2024 00:00:00 GMT"

    def test_now_parses(self):
        """Test that the current date round-trips through the parser."""
        assert parsedate_to_datetime(http_date()).tzinfo is not None


class TestHmacClientSetup:
    """Test client construction."""

    def test_requires_key_pair(self):
        """Test that a client needs credentials."""
        with pytest.raises(EmptyKey):
            HmacClient(Settings())

    def test_key_pair_from_settings(self, settings):
        """Test credentials taken from settings."""
        client = HmacClient(settings)
        _, headers = client.prepare("GET", "/widgets")
        assert headers["Authorization"].startswith("NCSA.HMAC widget-client:")

    def test_prepare_get(self, settings, key_pair):
        """Test preparing a bodyless GET."""
        client = HmacClient(settings, key_pair=key_pair)
        signable, headers = client.prepare("get", "/widgets", date="Tue, 01 Jan 2024 00:00:00 GMT")

        assert signable.method == "GET"
        assert headers["Date"] == "Tue, 01 Jan 2024 00:00:00 GMT"
        assert "Content-Digest" not in headers
        assert verify(signable, headers["Authorization"], StaticKeyResolver.from_key_pairs(key_pair))

    def test_prepare_body_defaults_content_type(self, settings):
        """Test the content type used for raw bodies."""
        client = HmacClient(settings)
        signable, headers = client.prepare("PUT", "/blob", body=b"\x00\x01")

        assert signable.content_type == "application/octet-stream"
        assert headers["Content-Type"] == "application/octet-stream"

    def test_sign_with_setting(self, key_pair):
        """Test the sign_with setting."""
        settings = Settings(sign_with="sha256")
        client = HmacClient(settings, key_pair=key_pair)
        signable, headers = client.prepare("GET", "/widgets")

        resolver = StaticKeyResolver.from_key_pairs(key_pair)
        assert verify(signable, headers["Authorization"], resolver) is False
        assert verify(signable, headers["Authorization"], resolver, accept_digests="sha256") is True


    def test_legacy_empty_body_digest(self, key_pair):
        """Test that legacy mode sends and signs MD5('') for empty bodies."""
        client = HmacClient(Settings(legacy_empty_body_digest=True), key_pair=key_pair)
        signable, headers = client.prepare("GET", "/widgets")

        resolver = StaticKeyResolver.from_key_pairs(key_pair)
        legacy = CanonicalFormat(digest_empty_body=True)
        assert headers["Content-Digest"] == EMPTY_BODY_DIGEST
        assert verify(signable, headers["Authorization"], resolver, fmt=legacy) is True
        assert verify(signable, headers["Authorization"], resolver) is False

class TestHmacClientRequests:
    """Test signed requests against a mocked session."""

    @pytest.mark.asyncio
    async def test_post_json_is_signed(self, settings, key_pair):
        """Test that a JSON POST is sent signed."""
        client = HmacClient(settings, key_pair=key_pair)

        async with client:
            with patch.object(
                client._ensure_session(), "request", new_callable=AsyncMock
            ) as mock_request:
                mock_request.return_value = mock_response(201, b'{"id": 7}')

                result = await client.post("/widgets", {"a": 1})

        assert result == {"id": 7}

        method, url = mock_request.call_args.args
        kwargs = mock_request.call_args.kwargs
        headers = kwargs["headers"]
        assert method == "POST"
        assert url == "http://api.test/widgets"
        assert kwargs["data"] == b'{"a":1}'
        assert headers["Content-Type"] == "application/json"
        assert headers["Content-Digest"] == WIDGET_DIGEST

        received = SignableRequest(
            method=method,
            path="/widgets",
            content_type=headers["Content-Type"],
            date=headers["Date"],
            body=kwargs["data"],
        )
        assert verify(received, headers["Authorization"], StaticKeyResolver.from_key_pairs(key_pair))

    @pytest.mark.asyncio
    async def test_empty_response_is_none(self, settings):
        """Test that an empty response decodes to None."""
        client = HmacClient(settings)

        async with client:
            with patch.object(
                client._ensure_session(), "request", new_callable=AsyncMock
            ) as mock_request:
                mock_request.return_value = mock_response(204)
                assert await client.delete("/widgets/7") is None

    @pytest.mark.asyncio
    async def test_text_response(self, settings):
        """Test a non-JSON response body."""
        client = HmacClient(settings)

        async with client:
            with patch.object(
                client._ensure_session(), "request", new_callable=AsyncMock
            ) as mock_request:
                mock_request.return_value = mock_response(200, b"pong")
                assert await client.get("/ping") == "pong"

    @pytest.mark.asyncio
    async def test_error_status_raises(self, settings):
        """Test that error statuses raise."""
        client = HmacClient(settings)

        async with client:
            with patch.object(
                client._ensure_session(), "request", new_callable=AsyncMock
            ) as mock_request:
                mock_request.return_value = mock_response(401, text="unauthorized")

                with pytest.raises(HmacClientError) as exc_info:
                    await client.get("/widgets")

        assert exc_info.value.status_code == 401
        assert "unauthorized" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_transport_error_raises(self, settings):
        """Test that connection errors raise."""
        client = HmacClient(settings)

        async with client:
            with patch.object(
                client._ensure_session(), "request", new_callable=AsyncMock
            ) as mock_request:
                mock_request.side_effect = aiohttp.ClientConnectionError("refused")

                with pytest.raises(HmacClientError) as exc_info:
                    await client.put("/widgets/7", {"a": 2})

        assert exc_info.value.status_code is None
