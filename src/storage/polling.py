"""Polling-diff change feed — turns periodic stage listings into change events.

Works over any async stage listing, so a repository without a push channel
can still offer ``subscribe``.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable

import structlog

from src.core.types import Stage
from src.storage.base import StageChangeHandler, Subscription

logger = structlog.stdlib.get_logger()

FetchFn = Callable[[], Awaitable[list[Stage]]]


def diff_stages(
    previous: dict[int, Stage],
    current: list[Stage],
) -> list[tuple[Stage | None, Stage]]:
    """Return (old, new) pairs for stages that appeared or changed."""
    changes: list[tuple[Stage | None, Stage]] = []
    for stage in current:
        old = previous.get(stage.id)
        if old is None or old != stage:
            changes.append((old, stage))
    return changes


class PollingSubscription(Subscription):
    """Background task that re-lists stages and emits the differences.

    The first listing only seeds the baseline; nothing is emitted for it.

    Usage::

        sub = PollingSubscription(repo.list_all, handler, interval_secs=15)
        await sub.start()
        # ...
        sub.cancel()
    """

    def __init__(
        self,
        fetch_fn: FetchFn,
        handler: StageChangeHandler,
        interval_secs: float = 15.0,
    ) -> None:
        self._fetch_fn = fetch_fn
        self._handler = handler
        self._interval_secs = interval_secs
        self._snapshot: dict[int, Stage] = {}
        self._task: asyncio.Task[None] | None = None
        self._running = False
        self._in_poll = False
        self._error_count = 0

    @property
    def active(self) -> bool:
        return self._running

    @property
    def error_count(self) -> int:
        return self._error_count

    async def start(self) -> None:
        """Seed the baseline and start polling.

        Raises:
            RepositoryUnavailableError: If the baseline listing fails.
        """
        if self._running:
            return
        self._snapshot = {s.id: s for s in await self._fetch_fn()}
        self._running = True
        self._task = asyncio.create_task(self._poll_loop())
        logger.info(
            "stage_change_polling_started",
            interval_secs=self._interval_secs,
            baseline=len(self._snapshot),
        )

    def cancel(self) -> None:
        """Stop polling. A poll that is already emitting runs to completion."""
        self._running = False
        if self._task is not None and not self._in_poll:
            self._task.cancel()
        self._task = None

    async def poll_once(self) -> int:
        """Fetch, diff, and emit. Returns the number of changes emitted."""
        current = await self._fetch_fn()
        changes = diff_stages(self._snapshot, current)
        self._snapshot = {s.id: s for s in current}
        for old, new in changes:
            try:
                result = self._handler(old, new)
                if asyncio.iscoroutine(result):
                    await result
            except Exception:
                logger.exception("stage_change_handler_error", stage_id=new.id)
        return len(changes)

    async def _poll_loop(self) -> None:
        while self._running:
            try:
                await asyncio.sleep(self._interval_secs)
            except asyncio.CancelledError:
                break
            if not self._running:
                break
            self._in_poll = True
            try:
                await self.poll_once()
            except asyncio.CancelledError:
                break
            except Exception:
                self._error_count += 1
                logger.exception(
                    "stage_change_poll_error",
                    error_count=self._error_count,
                )
            finally:
                self._in_poll = False
