"""Pytest configuration and fixtures."""

import pytest

from ncsa_hmac.common.hmac import KeyPair, SignableRequest
from ncsa_hmac.common.settings import Settings

DATE = "Tue, 01 Jan 2024 00:00:00 GMT"
WIDGET_BODY = '{"a":1}'
WIDGET_DIGEST = "bb6cb5c68df4652941caf652a366f2d8"

# HMAC-SHA512("secret123", canonical POST /widgets request), base64
WIDGET_SIGNATURE = (
    "l7QrkJhubmJKmOBZVyZq0tBzotr2SnZx/IKoj5YMpUC5JRAeb0kbiSEjUk8y8ELEYCsYbBFvte0B75GpxO18Hw=="
)


@pytest.fixture
def key_pair() -> KeyPair:
    """Signing identity shared by client and server."""
    return KeyPair(public_id="widget-client", private_key="secret123")


@pytest.fixture
def settings(key_pair: KeyPair) -> Settings:
    """Create test settings."""
    return Settings(
        auth_mode="hmac",
        hmac_keys={key_pair.public_id: key_pair.private_key},
        client_public_id=key_pair.public_id,
        client_private_key=key_pair.private_key,
        client_base_url="http://api.test",
    )


@pytest.fixture
def widget_request() -> SignableRequest:
    """POST /widgets with a small JSON body."""
    return SignableRequest.build(
        "POST",
        "/widgets",
        content_type="application/json",
        date=DATE,
        body=WIDGET_BODY,
    )
