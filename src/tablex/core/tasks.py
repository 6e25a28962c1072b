"""
Background-task port

Non-critical side effects (snapshot mirroring, row-count refreshes) are handed to
a ``BackgroundTasks`` implementation so they run after the primary result is
produced. Their failures are logged and never reach the caller.
"""

import logging
from collections.abc import Callable
from typing import Protocol

logger = logging.getLogger(__name__)

Work = Callable[[], object]


class BackgroundTasks(Protocol):
    """Host-supplied mechanism for work that must not gate the primary result"""

    def defer_after_response(self, work: Work) -> None: ...


def run_guarded(work: Work) -> None:
    """Run one unit of deferred work, logging instead of raising."""
    try:
        work()
    except Exception:
        logger.warning("Deferred task %s failed", getattr(work, "__name__", work), exc_info=True)


class InlineTaskRunner:
    """Runs deferred work immediately (CLI and scripts)."""

    def defer_after_response(self, work: Work) -> None:
        run_guarded(work)


class DeferredTaskQueue:
    """Collects deferred work until the host drains it after responding."""

    def __init__(self) -> None:
        self._pending: list[Work] = []

    def defer_after_response(self, work: Work) -> None:
        self._pending.append(work)

    def __len__(self) -> int:
        return len(self._pending)

    def drain(self) -> int:
        """Run and clear every pending task; return how many ran."""
        pending, self._pending = self._pending, []
        for work in pending:
            run_guarded(work)
        return len(pending)
