"""Tests for StageMonitor — lifecycle, periodic sweep, reactive path, diagnostics."""

from __future__ import annotations

import asyncio
import datetime
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import yaml

from src.core.config import MonitorConfig, load_settings, reset_settings
from src.core.exceptions import AlertPersistenceError, RepositoryUnavailableError
from src.core.types import (
    Alert,
    AlertChannel,
    AlertPriority,
    AlertRecord,
    Stage,
    StageStatus,
)
from src.monitor.scheduler import StageMonitor
from src.storage.base import StageChangeHandler, Subscription
from src.storage.memory import InMemoryAlertStore, InMemoryStageRepository
from src.storage.polling import PollingSubscription

NOW = datetime.datetime(2025, 6, 15, 12, 0, tzinfo=datetime.UTC)

# ── Helpers ─────────────────────────────────────────────────────


def _stage(
    stage_id: int = 1,
    end_in_hours: float = 72.0,
    start_in_hours: float = -24.0,
    **kw: object,
) -> Stage:
    start = NOW + datetime.timedelta(hours=start_in_hours)
    end = NOW + datetime.timedelta(hours=end_in_hours)
    defaults: dict[str, object] = {
        "id": stage_id,
        "name": f"Stage {stage_id}",
        "status": StageStatus.ACTIVE,
        "start_date": start.date().isoformat(),
        "start_time": start.time().isoformat(),
        "end_date": end.date().isoformat(),
        "end_time": end.time().isoformat(),
        "current_pilgrims": 500,
        "departed_count": 100,
        "required_departures": 200,
    }
    defaults.update(kw)
    return Stage(**defaults)  # type: ignore[arg-type]


def _config(**kw: object) -> MonitorConfig:
    defaults: dict[str, object] = {"poll_interval_secs": 300.0}
    defaults.update(kw)
    return MonitorConfig(**defaults)  # type: ignore[arg-type]


def _monitor(
    stages: list[Stage] | None = None,
    dispatcher: object | None = None,
    **config_kw: object,
) -> tuple[StageMonitor, InMemoryStageRepository, InMemoryAlertStore]:
    repo = InMemoryStageRepository(stages or [])
    store = InMemoryAlertStore()
    monitor = StageMonitor(
        repo,
        store,
        dispatcher=dispatcher,  # type: ignore[arg-type]
        config=_config(**config_kw),
        now_fn=lambda: NOW,
    )
    return monitor, repo, store


def _mock_dispatcher() -> MagicMock:
    dispatcher = MagicMock()
    dispatcher.dispatch = AsyncMock(return_value={})
    return dispatcher


class _PollingStageRepository(InMemoryStageRepository):
    """Stage changes are picked up by polling rather than emitted on upsert."""

    async def subscribe(self, handler: StageChangeHandler) -> Subscription:
        sub = PollingSubscription(self._list_all, handler, interval_secs=0.01)
        await sub.start()
        return sub

    async def _list_all(self) -> list[Stage]:
        return await self.list_stages(list(StageStatus))


class _SlowAlertStore(InMemoryAlertStore):
    def __init__(self, delay: float) -> None:
        super().__init__()
        self.delay = delay
        self.insert_started = asyncio.Event()

    async def insert_alert(self, record: AlertRecord) -> Alert:
        self.insert_started.set()
        await asyncio.sleep(self.delay)
        return await super().insert_alert(record)


# ── Lifecycle ───────────────────────────────────────────────────


class TestLifecycle:
    async def test_start_is_idempotent(self) -> None:
        monitor, repo, _ = _monitor()
        await monitor.start()
        await monitor.start()
        try:
            assert monitor.running is True
            assert monitor.subscribed is True
            assert monitor.pass_count == 1
            assert repo.subscriber_count == 1
        finally:
            await monitor.stop()

    async def test_stop_is_idempotent(self) -> None:
        monitor, repo, _ = _monitor()
        await monitor.stop()
        await monitor.start()
        await monitor.stop()
        await monitor.stop()
        assert monitor.running is False
        assert monitor.subscribed is False
        assert repo.subscriber_count == 0

    async def test_start_runs_immediate_pass(self) -> None:
        monitor, _, store = _monitor([_stage(end_in_hours=-2)])
        await monitor.start()
        try:
            assert len(store.alerts) == 1
        finally:
            await monitor.stop()

    async def test_subscription_failure_keeps_polling(self) -> None:
        monitor, repo, _ = _monitor()
        repo.subscribe = AsyncMock(  # type: ignore[method-assign]
            side_effect=RepositoryUnavailableError("no feed"),
        )
        await monitor.start()
        try:
            assert monitor.running is True
            assert monitor.subscribed is False
        finally:
            await monitor.stop()

    async def test_timer_repeats_passes(self) -> None:
        monitor, _, _ = _monitor(poll_interval_secs=0.01)
        await monitor.start()
        await asyncio.sleep(0.1)
        await monitor.stop()
        passes = monitor.pass_count
        assert passes >= 2
        await asyncio.sleep(0.05)
        assert monitor.pass_count == passes

    async def test_instances_are_independent(self) -> None:
        first, _, _ = _monitor()
        second, _, _ = _monitor()
        await first.start()
        await second.start()
        await first.stop()
        try:
            assert first.running is False
            assert second.running is True
            assert second.subscribed is True
        finally:
            await second.stop()

    async def test_snapshot(self) -> None:
        monitor, _, _ = _monitor()
        await monitor.run_pass()
        snap = monitor.snapshot()
        assert snap["running"] is False
        assert snap["pass_count"] == 1
        assert snap["last_pass_at"] == NOW.isoformat()

    async def test_subscription_retried_on_timer(self) -> None:
        monitor, repo, _ = _monitor(poll_interval_secs=0.01)
        subscribe = repo.subscribe
        attempts = 0

        async def flaky_subscribe(handler: StageChangeHandler) -> Subscription:
            nonlocal attempts
            attempts += 1
            if attempts == 1:
                raise RepositoryUnavailableError("no feed yet")
            return await subscribe(handler)

        repo.subscribe = flaky_subscribe  # type: ignore[method-assign]
        await monitor.start()
        try:
            assert monitor.subscribed is False
            for _ in range(50):
                if monitor.subscribed:
                    break
                await asyncio.sleep(0.01)
            assert monitor.subscribed is True
            assert repo.subscriber_count == 1
            await asyncio.sleep(0.05)
            assert attempts == 2
        finally:
            await monitor.stop()
        assert repo.subscriber_count == 0

    async def test_restart_during_first_pass(self) -> None:
        monitor, repo, _ = _monitor()
        list_stages = repo.list_stages
        entered = asyncio.Event()
        release = asyncio.Event()
        calls = 0

        async def blocking_list(statuses: object) -> list[Stage]:
            nonlocal calls
            calls += 1
            if calls == 1:
                entered.set()
                await release.wait()
            return await list_stages(statuses)  # type: ignore[arg-type]

        repo.list_stages = blocking_list  # type: ignore[method-assign]

        first = asyncio.create_task(monitor.start())
        await asyncio.wait_for(entered.wait(), timeout=1.0)
        await monitor.stop()
        await monitor.start()
        release.set()
        await first

        try:
            assert monitor.running is True
            assert repo.subscriber_count == 1
            assert monitor.pass_count == 2
        finally:
            await monitor.stop()
        assert repo.subscriber_count == 0
        assert monitor.snapshot()["running"] is False

    async def test_config_defaults_to_loaded_settings(self, tmp_path: Path) -> None:
        config_file = tmp_path / "settings.yaml"
        config_file.write_text(yaml.dump({"monitor": {"poll_interval_secs": 42}}))
        load_settings(config_file)
        try:
            monitor = StageMonitor(InMemoryStageRepository(), InMemoryAlertStore())
            assert monitor._config.poll_interval_secs == 42
        finally:
            reset_settings()


# ── Periodic sweep ──────────────────────────────────────────────


class TestRunPass:
    async def test_only_overdue_stage_alerts(self) -> None:
        monitor, _, store = _monitor([
            _stage(1, end_in_hours=-2),
            _stage(2, end_in_hours=72),
        ])
        created = await monitor.run_pass()

        assert len(created) == 1
        alert = store.alerts[0]
        assert alert.stage_id == 1
        assert alert.type == AlertPriority.CRITICAL
        assert "ended" in alert.message
        assert AlertChannel.WHATSAPP in alert.channels
        assert alert.is_resolved is False
        assert monitor.alerts_created == 1

    async def test_low_priority_inside_window(self) -> None:
        monitor, _, store = _monitor([_stage(end_in_hours=30)])
        await monitor.run_pass()
        assert store.alerts[0].type == AlertPriority.LOW
        assert store.alerts[0].channels == [AlertChannel.IN_APP]

    async def test_unmonitored_status_ignored(self) -> None:
        monitor, _, store = _monitor([
            _stage(end_in_hours=-2, status=StageStatus.PENDING),
        ])
        assert await monitor.run_pass() == []
        assert store.alerts == []

    async def test_invalid_time_skips_stage(self) -> None:
        monitor, _, store = _monitor([
            _stage(1, end_date="not-a-date"),
            _stage(2, end_in_hours=-2),
        ])
        created = await monitor.run_pass()
        assert [a.stage_id for a in created] == [2]
        assert len(store.alerts) == 1

    async def test_repository_failure_returns_empty(self) -> None:
        monitor, repo, _ = _monitor()
        repo.list_stages = AsyncMock(  # type: ignore[method-assign]
            side_effect=RepositoryUnavailableError("down"),
        )
        assert await monitor.run_pass() == []
        assert monitor.pass_count == 1

    async def test_insert_failure_is_contained(self) -> None:
        dispatcher = _mock_dispatcher()
        monitor, _, store = _monitor(
            [_stage(1, end_in_hours=-2), _stage(2, end_in_hours=3)],
            dispatcher=dispatcher,
        )
        store.insert_alert = AsyncMock(  # type: ignore[method-assign]
            side_effect=AlertPersistenceError("rejected"),
        )
        assert await monitor.run_pass() == []
        assert monitor.alerts_created == 0
        dispatcher.dispatch.assert_not_awaited()

    async def test_created_alert_is_dispatched(self) -> None:
        dispatcher = _mock_dispatcher()
        monitor, _, store = _monitor([_stage(end_in_hours=3)], dispatcher=dispatcher)
        await monitor.run_pass()
        dispatcher.dispatch.assert_awaited_once_with(store.alerts[0])

    async def test_dispatch_error_is_contained(self) -> None:
        dispatcher = _mock_dispatcher()
        dispatcher.dispatch.side_effect = RuntimeError("boom")
        monitor, _, _ = _monitor([_stage(end_in_hours=3)], dispatcher=dispatcher)
        created = await monitor.run_pass()
        assert len(created) == 1

    async def test_duplicates_allowed_by_default(self) -> None:
        monitor, _, store = _monitor([_stage(end_in_hours=-2)])
        await monitor.run_pass()
        await monitor.run_pass()
        assert len(store.alerts) == 2

    async def test_duplicate_open_alert_suppressed(self) -> None:
        monitor, _, store = _monitor(
            [_stage(end_in_hours=-2)], suppress_duplicate_open_alerts=True,
        )
        await monitor.run_pass()
        await monitor.run_pass()
        assert len(store.alerts) == 1

        await store.resolve_alert(store.alerts[0].id)
        await monitor.run_pass()
        assert len(store.alerts) == 2


# ── Reactive path ───────────────────────────────────────────────


class TestStageChange:
    async def test_status_change_alerts(self) -> None:
        stage = _stage(end_in_hours=72)
        monitor, repo, store = _monitor([stage])
        await monitor.start()
        try:
            assert store.alerts == []
            await repo.upsert(stage.model_copy(
                update={"status": StageStatus.WAITING_DEPARTURE},
            ))
            assert len(store.alerts) == 1
            assert store.alerts[0].type == AlertPriority.LOW
        finally:
            await monitor.stop()

    async def test_comfortable_unchanged_stage_ignored(self) -> None:
        stage = _stage(end_in_hours=72)
        monitor, repo, store = _monitor([stage])
        await monitor.start()
        try:
            await repo.upsert(stage.model_copy(update={"current_pilgrims": 450}))
            assert store.alerts == []
        finally:
            await monitor.stop()

    async def test_overdue_change_alerts(self) -> None:
        stage = _stage(end_in_hours=-0.5, status=StageStatus.PENDING)
        monitor, repo, store = _monitor([stage])
        await monitor.start()
        try:
            await repo.upsert(stage.model_copy(update={"current_pilgrims": 10}))
            assert len(store.alerts) == 1
            assert store.alerts[0].type == AlertPriority.CRITICAL
        finally:
            await monitor.stop()

    async def test_new_stage_counts_as_change(self) -> None:
        monitor, _, store = _monitor()
        monitor._running = True
        alert = await monitor.on_stage_change(None, _stage(end_in_hours=72))
        assert alert is not None
        assert len(store.alerts) == 1

    async def test_ignored_when_stopped(self) -> None:
        monitor, _, store = _monitor()
        assert await monitor.on_stage_change(None, _stage(end_in_hours=-2)) is None
        assert store.alerts == []

    async def test_invalid_time_ignored(self) -> None:
        monitor, _, store = _monitor()
        monitor._running = True
        assert await monitor.on_stage_change(None, _stage(end_time=None)) is None
        assert store.alerts == []


# ── Diagnostic sweep ────────────────────────────────────────────


class TestDiagnosticSweep:
    async def test_premature_activation(self) -> None:
        monitor, _, store = _monitor([_stage(start_in_hours=5)])
        created = await monitor.run_diagnostic_sweep()
        assert len(created) == 1
        assert created[0].type == AlertPriority.HIGH
        assert created[0].channels == [AlertChannel.IN_APP]
        assert "before its scheduled start" in store.alerts[0].message

    async def test_over_capacity(self) -> None:
        monitor, _, _ = _monitor([_stage(current_pilgrims=20000)])
        created = await monitor.run_diagnostic_sweep()
        assert created[0].type == AlertPriority.CRITICAL

    async def test_capacity_ceiling_configurable(self) -> None:
        monitor, _, _ = _monitor([_stage(current_pilgrims=600)], capacity_ceiling=550)
        created = await monitor.run_diagnostic_sweep()
        assert len(created) == 1

    async def test_healthy_stage_not_flagged(self) -> None:
        monitor, _, store = _monitor([_stage()])
        assert await monitor.run_diagnostic_sweep() == []
        assert store.alerts == []

    async def test_findings_not_dispatched(self) -> None:
        dispatcher = _mock_dispatcher()
        monitor, _, _ = _monitor([_stage(current_pilgrims=0)], dispatcher=dispatcher)
        created = await monitor.run_diagnostic_sweep()
        assert created[0].type == AlertPriority.MEDIUM
        dispatcher.dispatch.assert_not_awaited()

    async def test_completed_stages_excluded(self) -> None:
        monitor, _, _ = _monitor([
            _stage(end_in_hours=-2, status=StageStatus.COMPLETED),
        ])
        assert await monitor.run_diagnostic_sweep() == []

    async def test_repository_failure_returns_empty(self) -> None:
        monitor, repo, _ = _monitor()
        repo.list_stages = AsyncMock(  # type: ignore[method-assign]
            side_effect=RepositoryUnavailableError("down"),
        )
        assert await monitor.run_diagnostic_sweep() == []

    async def test_duplicate_finding_suppressed(self) -> None:
        monitor, _, store = _monitor(
            [_stage(current_pilgrims=20000)], suppress_duplicate_open_alerts=True,
        )
        assert len(await monitor.run_diagnostic_sweep()) == 1
        assert await monitor.run_diagnostic_sweep() == []
        assert len(store.alerts) == 1

    async def test_duplicate_findings_allowed_by_default(self) -> None:
        monitor, _, store = _monitor([_stage(current_pilgrims=20000)])
        await monitor.run_diagnostic_sweep()
        await monitor.run_diagnostic_sweep()
        assert len(store.alerts) == 2


# ── Stop during reactive alert ──────────────────────────────────


class TestStopDuringReactiveAlert:
    async def test_in_flight_reactive_alert_completes(self) -> None:
        stage = _stage(end_in_hours=72)
        repo = _PollingStageRepository([stage])
        store = _SlowAlertStore(delay=0.1)
        monitor = StageMonitor(repo, store, config=_config(), now_fn=lambda: NOW)

        await monitor.start()
        assert store.alerts == []
        await repo.upsert(stage.model_copy(
            update={"status": StageStatus.WAITING_DEPARTURE},
        ))
        await asyncio.wait_for(store.insert_started.wait(), timeout=1.0)
        await monitor.stop()

        await asyncio.sleep(0.3)
        assert len(store.alerts) == 1
        assert store.alerts[0].stage_id == stage.id

    async def test_no_reactive_alerts_after_stop(self) -> None:
        stage = _stage(end_in_hours=72)
        repo = _PollingStageRepository([stage])
        store = _SlowAlertStore(delay=0)
        monitor = StageMonitor(repo, store, config=_config(), now_fn=lambda: NOW)

        await monitor.start()
        await monitor.stop()
        await repo.upsert(stage.model_copy(
            update={"status": StageStatus.WAITING_DEPARTURE},
        ))
        await asyncio.sleep(0.05)
        assert store.alerts == []
