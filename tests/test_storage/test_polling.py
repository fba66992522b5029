"""Tests for the polling-diff change feed."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock

import pytest

from src.core.exceptions import RepositoryUnavailableError
from src.core.types import Stage, StageStatus
from src.storage.polling import PollingSubscription, diff_stages


def _stage(stage_id: int = 1, status: StageStatus = StageStatus.ACTIVE, **kw: object) -> Stage:
    return Stage(id=stage_id, name=f"S{stage_id}", status=status, **kw)  # type: ignore[arg-type]


class TestDiffStages:
    def test_new_stage_has_no_old(self) -> None:
        changes = diff_stages({}, [_stage(1)])
        assert changes == [(None, _stage(1))]

    def test_unchanged_stage_skipped(self) -> None:
        assert diff_stages({1: _stage(1)}, [_stage(1)]) == []

    def test_changed_field_reported(self) -> None:
        old = _stage(1, current_pilgrims=10)
        new = _stage(1, current_pilgrims=20)
        assert diff_stages({1: old}, [new]) == [(old, new)]

    def test_removed_stage_ignored(self) -> None:
        assert diff_stages({1: _stage(1)}, []) == []


class TestPollingSubscription:
    async def test_baseline_not_emitted(self) -> None:
        fetch = AsyncMock(return_value=[_stage(1)])
        seen: list[int] = []
        sub = PollingSubscription(fetch, lambda o, n: seen.append(n.id), interval_secs=60)
        await sub.start()
        assert seen == []
        assert sub.active is True
        sub.cancel()
        assert sub.active is False

    async def test_poll_once_emits_changes(self) -> None:
        fetch = AsyncMock(side_effect=[
            [_stage(1)],
            [_stage(1, StageStatus.COMPLETED), _stage(2)],
        ])
        seen: list[tuple[StageStatus | None, int]] = []
        sub = PollingSubscription(
            fetch,
            lambda o, n: seen.append((o.status if o else None, n.id)),
            interval_secs=60,
        )
        await sub.start()
        emitted = await sub.poll_once()
        sub.cancel()
        assert emitted == 2
        assert seen == [(StageStatus.ACTIVE, 1), (None, 2)]

    async def test_start_propagates_baseline_failure(self) -> None:
        fetch = AsyncMock(side_effect=RepositoryUnavailableError("down"))
        sub = PollingSubscription(fetch, lambda o, n: None)
        with pytest.raises(RepositoryUnavailableError):
            await sub.start()
        assert sub.active is False

    async def test_loop_survives_fetch_errors(self) -> None:
        calls = 0

        async def fetch() -> list[Stage]:
            nonlocal calls
            calls += 1
            if calls == 1:
                return []
            if calls == 2:
                raise RepositoryUnavailableError("blip")
            return [_stage(3)]

        seen: list[int] = []
        sub = PollingSubscription(fetch, lambda o, n: seen.append(n.id), interval_secs=0.01)
        await sub.start()
        for _ in range(50):
            if seen:
                break
            await asyncio.sleep(0.01)
        sub.cancel()
        assert seen == [3]
        assert sub.error_count == 1

    async def test_cancel_lets_running_handler_finish(self) -> None:
        calls = 0

        async def fetch() -> list[Stage]:
            nonlocal calls
            calls += 1
            return [_stage(1)] if calls == 1 else [_stage(1, StageStatus.COMPLETED)]

        entered = asyncio.Event()
        finished: list[int] = []

        async def handler(old: Stage | None, new: Stage) -> None:
            entered.set()
            await asyncio.sleep(0.05)
            finished.append(new.id)

        sub = PollingSubscription(fetch, handler, interval_secs=0.01)
        await sub.start()
        await asyncio.wait_for(entered.wait(), timeout=1.0)
        sub.cancel()
        assert sub.active is False

        await asyncio.sleep(0.15)
        assert finished == [1]
        # The loop does not poll again after cancel.
        assert calls == 2

    async def test_cancel_while_sleeping_stops_loop(self) -> None:
        fetch = AsyncMock(return_value=[_stage(1)])
        sub = PollingSubscription(fetch, lambda o, n: None, interval_secs=0.01)
        await sub.start()
        sub.cancel()
        await asyncio.sleep(0.05)
        assert fetch.await_count == 1
