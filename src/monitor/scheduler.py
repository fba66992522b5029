"""StageMonitor — periodic and change-driven stage evaluation.

One monitor owns one recurring timer task and one stage-change
subscription. Both funnel into the same evaluation path: classify the stage,
persist an alert when the policy asks for one, then fan it out.

Overlapping passes are not guarded against. If a reactive event lands
mid-sweep, both paths may insert an alert for the same stage; enable
``suppress_duplicate_open_alerts`` or deduplicate in the alert store if
that matters.
"""

from __future__ import annotations

import asyncio
import datetime
from collections.abc import Callable

import structlog

from src.core.config import MonitorConfig, get_settings
from src.core.exceptions import (
    AlertPersistenceError,
    InvalidTimeFormatError,
    RepositoryUnavailableError,
)
from src.core.logging import DECISION_LOGGER_NAME
from src.core.types import Alert, AlertAnalysis, AlertPriority, AlertRecord, Stage
from src.monitor.dispatcher import NotificationDispatcher
from src.policy.classifier import OVERDUE_HOURS, build_alert_record, classify
from src.policy.clock import resolve_timezone, to_instant, utc_now
from src.policy.heuristics import assess_attention, build_attention_record
from src.storage.base import AlertStore, StageRepository, Subscription

# Dedicated structured logger for created alerts.
decision_logger = structlog.get_logger(DECISION_LOGGER_NAME)

logger = structlog.stdlib.get_logger()

NowFn = Callable[[], datetime.datetime]
OpenAlertKeys = set[tuple[int, AlertPriority]]


def _is_duplicate(
    stage_id: int,
    priority: AlertPriority,
    open_keys: OpenAlertKeys | None,
) -> bool:
    if open_keys is None or (stage_id, priority) not in open_keys:
        return False
    logger.debug(
        "duplicate_alert_suppressed", stage_id=stage_id, priority=priority.value,
    )
    return True


class StageMonitor:
    """Evaluates stages on a fixed period and on every stage change.

    Usage::

        monitor = StageMonitor(repository, alert_store, dispatcher)
        await monitor.start()   # immediate pass, subscribe, arm timer
        # ...
        await monitor.stop()    # cancel timer and subscription

    ``start`` and ``stop`` are idempotent and meant to be called from a
    single control task. In-flight passes are left to finish on ``stop``.
    """

    def __init__(
        self,
        repository: StageRepository,
        alert_store: AlertStore,
        dispatcher: NotificationDispatcher | None = None,
        config: MonitorConfig | None = None,
        now_fn: NowFn | None = None,
    ) -> None:
        self._repository = repository
        self._alert_store = alert_store
        self._dispatcher = dispatcher
        self._config = config or get_settings().monitor
        self._tz = resolve_timezone(self._config.timezone)
        self._now_fn = now_fn or utc_now

        self._task: asyncio.Task[None] | None = None
        self._subscription: Subscription | None = None
        self._running = False
        # Bumped by start() and stop() so a superseded start() can bail out.
        self._generation = 0
        self._pass_count = 0
        self._alerts_created = 0
        self._last_pass_at: datetime.datetime | None = None

    # ── Properties ───────────────────────────────────────────────

    @property
    def running(self) -> bool:
        return self._running

    @property
    def subscribed(self) -> bool:
        return self._subscription is not None and self._subscription.active

    @property
    def pass_count(self) -> int:
        """Number of sweeps started (scheduled and immediate)."""
        return self._pass_count

    @property
    def alerts_created(self) -> int:
        return self._alerts_created

    @property
    def dispatcher(self) -> NotificationDispatcher | None:
        return self._dispatcher

    # ── Lifecycle ────────────────────────────────────────────────

    async def start(self) -> None:
        """Run one pass now, subscribe to stage changes, arm the timer."""
        if self._running:
            return
        self._running = True
        self._generation += 1
        generation = self._generation
        logger.info(
            "stage_monitor_starting",
            poll_interval_secs=self._config.poll_interval_secs,
            statuses=[s.value for s in self._config.monitored_statuses],
        )

        await self.run_pass()
        if generation != self._generation:
            # stop() (and possibly another start()) ran during the first pass.
            return

        await self._ensure_subscription(generation)
        if generation != self._generation:
            return
        self._task = asyncio.create_task(self._timer_loop())

    async def stop(self) -> None:
        """Cancel the timer and the subscription. No-op when stopped."""
        if not self._running:
            return
        self._running = False
        self._generation += 1

        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

        if self._subscription is not None:
            self._subscription.cancel()
            self._subscription = None

        logger.info(
            "stage_monitor_stopped",
            pass_count=self._pass_count,
            alerts_created=self._alerts_created,
        )

    async def _ensure_subscription(self, generation: int) -> None:
        """Subscribe to stage changes unless already subscribed.

        Failures are logged; the timer retries on its next tick.
        """
        if self._subscription is not None:
            return
        try:
            subscription = await self._repository.subscribe(self.on_stage_change)
        except RepositoryUnavailableError as exc:
            logger.warning("stage_subscription_failed", error=str(exc))
            return
        except Exception:
            logger.exception("stage_subscription_failed")
            return

        if generation != self._generation:
            subscription.cancel()
            return
        self._subscription = subscription
        logger.info("stage_subscription_established")

    async def _timer_loop(self) -> None:
        interval = self._config.poll_interval_secs
        generation = self._generation
        while self._running:
            try:
                await asyncio.sleep(interval)
            except asyncio.CancelledError:
                break
            if not self._running:
                break
            try:
                await self._ensure_subscription(generation)
                # Shielded so stop() halts scheduling without aborting a pass.
                await asyncio.shield(self.run_pass())
            except asyncio.CancelledError:
                break
            except Exception:
                logger.exception("stage_monitor_loop_error")

    # ── Periodic sweep ───────────────────────────────────────────

    async def run_pass(self) -> list[Alert]:
        """Classify every monitored stage once. Returns the alerts created."""
        now = self._now_fn()
        self._pass_count += 1
        self._last_pass_at = now

        try:
            stages = await self._repository.list_stages(self._config.monitored_statuses)
        except RepositoryUnavailableError as exc:
            logger.warning("stage_listing_failed", error=str(exc))
            return []
        except Exception:
            logger.exception("stage_listing_failed")
            return []

        open_keys = await self._open_alert_keys()
        created: list[Alert] = []
        for stage in stages:
            try:
                alert = await self._evaluate(stage, now, open_keys)
            except Exception:
                logger.exception("stage_evaluation_error", stage_id=stage.id)
                continue
            if alert is not None:
                created.append(alert)

        logger.info(
            "stage_pass_complete",
            pass_count=self._pass_count,
            stages=len(stages),
            alerts=len(created),
        )
        return created

    async def _evaluate(
        self,
        stage: Stage,
        now: datetime.datetime,
        open_keys: OpenAlertKeys | None,
    ) -> Alert | None:
        try:
            analysis = classify(stage, now, self._tz)
        except InvalidTimeFormatError as exc:
            logger.warning("stage_time_invalid", stage_id=stage.id, error=str(exc))
            return None

        if not (analysis.needs_alert or analysis.time_remaining <= OVERDUE_HOURS):
            return None
        return await self._raise_alert(stage, analysis, open_keys)

    # ── Reactive path ────────────────────────────────────────────

    async def on_stage_change(self, old: Stage | None, new: Stage) -> Alert | None:
        """Re-evaluate a single stage right after it changes.

        An alert is raised when the stage is past its end, its status
        changed (a first sighting counts as a change), or the primary
        policy asks for one.
        """
        if not self._running:
            return None

        now = self._now_fn()
        try:
            end = to_instant(new.end_date, new.end_time, self._tz)
            analysis = classify(new, now, self._tz)
        except InvalidTimeFormatError as exc:
            logger.warning("stage_time_invalid", stage_id=new.id, error=str(exc))
            return None

        status_changed = old is None or old.status != new.status
        logger.debug(
            "stage_change_detected",
            stage_id=new.id,
            old_status=old.status.value if old is not None else None,
            new_status=new.status.value,
            time_remaining=round(analysis.time_remaining, 2),
        )

        if now > end or status_changed or analysis.needs_alert:
            open_keys = await self._open_alert_keys()
            return await self._raise_alert(new, analysis, open_keys)
        return None

    # ── Diagnostic sweep ─────────────────────────────────────────

    async def run_diagnostic_sweep(self) -> list[Alert]:
        """Run the heuristic attention check over diagnostic statuses.

        Independent of the primary policy; a stage may be alerted by both.
        Duplicate suppression, when enabled, uses the same (stage, priority)
        key as the periodic sweep.
        """
        now = self._now_fn()
        try:
            stages = await self._repository.list_stages(self._config.diagnostic_statuses)
        except RepositoryUnavailableError as exc:
            logger.warning("stage_listing_failed", error=str(exc), sweep="diagnostic")
            return []
        except Exception:
            logger.exception("stage_listing_failed", sweep="diagnostic")
            return []

        open_keys = await self._open_alert_keys()
        created: list[Alert] = []
        for stage in stages:
            try:
                finding = assess_attention(
                    stage, now, self._tz, self._config.capacity_ceiling,
                )
            except InvalidTimeFormatError as exc:
                logger.warning("stage_time_invalid", stage_id=stage.id, error=str(exc))
                continue
            if finding is None:
                continue

            logger.info(
                "stage_needs_attention",
                stage_id=stage.id,
                reason=finding.reason,
                priority=finding.priority.value,
            )
            if _is_duplicate(stage.id, finding.priority, open_keys):
                continue
            alert = await self._persist(build_attention_record(stage, finding))
            if alert is not None:
                created.append(alert)
                if open_keys is not None:
                    open_keys.add((stage.id, finding.priority))
        return created

    # ── Alert creation ───────────────────────────────────────────

    async def _open_alert_keys(self) -> OpenAlertKeys | None:
        """(stage, priority) pairs with an open alert, when suppression is on."""
        if not self._config.suppress_duplicate_open_alerts:
            return None
        try:
            open_alerts = await self._alert_store.list_open_alerts()
        except Exception:
            logger.exception("open_alert_listing_failed")
            return set()
        return {(a.stage_id, a.type) for a in open_alerts}

    async def _raise_alert(
        self,
        stage: Stage,
        analysis: AlertAnalysis,
        open_keys: OpenAlertKeys | None,
    ) -> Alert | None:
        if _is_duplicate(stage.id, analysis.priority, open_keys):
            return None

        alert = await self._persist(build_alert_record(stage, analysis))
        if alert is None:
            return None
        if open_keys is not None:
            open_keys.add((stage.id, analysis.priority))

        if self._dispatcher is not None:
            try:
                await self._dispatcher.dispatch(alert)
            except Exception:
                logger.exception("alert_dispatch_error", alert_id=alert.id)
        return alert

    async def _persist(self, record: AlertRecord) -> Alert | None:
        try:
            alert = await self._alert_store.insert_alert(record)
        except AlertPersistenceError as exc:
            logger.warning(
                "alert_insert_failed", stage_id=record.stage_id, error=str(exc),
            )
            return None
        except Exception:
            logger.exception("alert_insert_failed", stage_id=record.stage_id)
            return None

        self._alerts_created += 1
        decision_logger.info(
            "alert_created",
            alert_id=alert.id,
            stage_id=alert.stage_id,
            priority=alert.type.value,
            channels=[c.value for c in alert.channels],
            message=alert.message,
        )
        return alert

    def snapshot(self) -> dict[str, object]:
        """Return a snapshot of monitor state."""
        return {
            "running": self._running,
            "subscribed": self.subscribed,
            "pass_count": self._pass_count,
            "alerts_created": self._alerts_created,
            "last_pass_at": (
                self._last_pass_at.isoformat() if self._last_pass_at else None
            ),
        }
