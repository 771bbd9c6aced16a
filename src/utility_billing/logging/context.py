"""Ids attached to every log line emitted while billing work is in progress."""

from __future__ import annotations

import contextlib
from typing import Iterator

import structlog


def _present(ids: dict[str, object]) -> dict[str, object]:
    return {key: value for key, value in ids.items() if value is not None}


def bind_context(**ids: object) -> None:
    """Bind ids for the rest of the current task. ``None`` values are skipped."""
    structlog.contextvars.bind_contextvars(**_present(ids))


@contextlib.contextmanager
def log_context(**ids: object) -> Iterator[None]:
    """Bind ids for the duration of a block, restoring earlier values on exit.

    Each asyncio task runs on its own copy of the context, so customers
    billed concurrently never see each other's ids.
    """
    with structlog.contextvars.bound_contextvars(**_present(ids)):
        yield
