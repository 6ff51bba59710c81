"""Request context utilities."""

from __future__ import annotations

import contextvars

import structlog

_subject_var: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "ncsa_hmac_subject",
    default=None,
)


def set_subject(value: str | None) -> None:
    """Set the authenticated public id in context."""
    _subject_var.set(value)
    if value is not None:
        structlog.contextvars.bind_contextvars(subject=value)


def get_subject() -> str | None:
    """Get the authenticated public id."""
    return _subject_var.get()
