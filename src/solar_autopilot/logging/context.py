"""Per-tick log context."""

from __future__ import annotations

import contextlib
from typing import Iterator

import structlog


@contextlib.contextmanager
def tick_context(tick: int, **extra: object) -> Iterator[None]:
    """Tag every log record emitted inside the block with the tick number.

    Context vars are task-local, so concurrent tasks (e.g. a status poller)
    never see another task's tick.
    """
    structlog.contextvars.bind_contextvars(tick=tick, **extra)
    try:
        yield
    finally:
        structlog.contextvars.unbind_contextvars("tick", *extra)
