"""Common utilities for ncsa-hmac."""

from ncsa_hmac.common.settings import Settings, get_settings

__all__ = [
    "Settings",
    "get_settings",
]
