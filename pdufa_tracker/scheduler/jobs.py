"""PDUFA Tracker — Scheduler Jobs.

APScheduler daily job that runs the scrape cycle at CHECK_TIME:
fetch → normalize → upsert → cache clear → alerts. At most one cycle is in
flight at a time; scheduled and manual triggers share the same lock.
"""

import asyncio
import time
import uuid
from dataclasses import asdict, dataclass, field
from datetime import date, datetime, timezone
from typing import Any, Callable, Dict, List, Optional
from zoneinfo import ZoneInfo

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from pdufa_tracker.alerts.discord import DiscordAlertDispatcher
from pdufa_tracker.config import settings
from pdufa_tracker.connectors.sources.base import BaseSource
from pdufa_tracker.core.errors import CycleInProgressError, PersistenceError
from pdufa_tracker.core.logging import get_logger
from pdufa_tracker.pipeline.fetcher import build_sources, fetch_all
from pdufa_tracker.pipeline.normalizer import normalize
from pdufa_tracker.store.cache import MISS, TTLCache
from pdufa_tracker.store.repository import PDUFAStore

logger = get_logger("scheduler")

JOB_ID = "pdufa_daily_check"

STATUS_SUCCESS = "success"
STATUS_PARTIAL = "partial"
STATUS_FAILURE = "failure"


@dataclass
class CycleResult:
    cycle_id: str
    trigger: str
    started_at: datetime
    status: str = STATUS_SUCCESS
    finished_at: Optional[datetime] = None
    fetched: int = 0
    valid: int = 0
    dropped: int = 0
    inserted: int = 0
    updated: int = 0
    unchanged: int = 0
    alerts_sent: int = 0
    source_errors: Dict[str, str] = field(default_factory=dict)
    message: str = ""

    @property
    def duration_ms(self) -> int:
        if self.finished_at is None:
            return 0
        return int((self.finished_at - self.started_at).total_seconds() * 1000)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["started_at"] = self.started_at.isoformat()
        data["finished_at"] = self.finished_at.isoformat() if self.finished_at else None
        data["duration_ms"] = self.duration_ms
        return data


@dataclass
class SchedulerState:
    running: bool = False
    cycle_in_flight: bool = False
    last_run_at: Optional[datetime] = None
    last_run_result: Optional[CycleResult] = None
    next_run_at: Optional[datetime] = None
    total_alerts_sent: int = 0
    last_error: Optional[str] = None


class PDUFAScheduler:
    """Owns the cron job and the scrape cycle."""

    def __init__(
        self,
        store: PDUFAStore,
        cache: TTLCache,
        dispatcher: DiscordAlertDispatcher,
        source_factory: Callable[[], List[BaseSource]] = build_sources,
        timezone_name: Optional[str] = None,
        check_time: Optional[str] = None,
    ):
        self.store = store
        self.cache = cache
        self.dispatcher = dispatcher
        self.source_factory = source_factory
        self.timezone = ZoneInfo(timezone_name or settings.scheduler_timezone)
        self.check_time = check_time or settings.check_time
        self.state = SchedulerState()
        self._lock = asyncio.Lock()
        self._scheduler: Optional[AsyncIOScheduler] = None

    # ── Lifecycle ──

    def start(self, run_on_startup: bool = False) -> None:
        """Register the daily job and start the scheduler. Idempotent."""
        if self.state.running:
            logger.info("Scheduler already running")
            return

        hour, _, minute = self.check_time.partition(":")
        self._scheduler = AsyncIOScheduler(timezone=self.timezone)
        self._scheduler.add_job(
            self._scheduled_cycle,
            CronTrigger(hour=int(hour), minute=int(minute or 0), timezone=self.timezone),
            id=JOB_ID,
            replace_existing=True,
            misfire_grace_time=3600,
            coalesce=True,
            max_instances=1,
        )
        if run_on_startup:
            self._scheduler.add_job(
                self._scheduled_cycle, kwargs={"trigger": "startup"}, id="pdufa_startup_check"
            )
        self._scheduler.start()
        self.state.running = True
        self._refresh_next_run()
        logger.info(
            f"Scheduler started. Daily PDUFA check at {self.check_time} {self.timezone.key}"
        )

    async def stop(self) -> None:
        """Stop future runs and wait for any in-flight cycle to finish."""
        if self._scheduler and self._scheduler.running:
            self._scheduler.shutdown(wait=False)
        self._scheduler = None
        self.state.running = False
        self.state.next_run_at = None
        if self._lock.locked():
            logger.info("Waiting for in-flight cycle before shutdown")
        async with self._lock:
            pass
        logger.info("Scheduler stopped")

    def _refresh_next_run(self) -> None:
        job = self._scheduler.get_job(JOB_ID) if self._scheduler else None
        self.state.next_run_at = job.next_run_time if job else None

    def status(self) -> Dict[str, Any]:
        self._refresh_next_run()
        state = self.state
        return {
            "running": state.running,
            "cycleInFlight": state.cycle_in_flight,
            "lastRunAt": state.last_run_at.isoformat() if state.last_run_at else None,
            "lastRunResult": state.last_run_result.to_dict() if state.last_run_result else None,
            "nextRunAt": state.next_run_at.isoformat() if state.next_run_at else None,
            "totalAlertsSent": state.total_alerts_sent,
            "lastError": state.last_error,
            "config": {
                "checkTime": self.check_time,
                "timezone": self.timezone.key,
                "alertLookaheadDays": self.dispatcher.lookahead_days,
                "weeklySummaryDay": self.dispatcher.summary_day,
                "dayOfReminder": self.dispatcher.day_of_reminder,
                "enabledSources": settings.source_names,
                "discordConfigured": self.dispatcher.configured,
            },
        }

    # ── Cycle ──

    def _today(self) -> date:
        return datetime.now(self.timezone).date()

    async def _scheduled_cycle(self, trigger: str = "scheduled") -> None:
        try:
            await self.run_cycle(trigger=trigger)
        except CycleInProgressError:
            logger.warning("Scheduled check skipped: a cycle is already running")

    async def run_manual_check(self) -> CycleResult:
        return await self.run_cycle(trigger="manual")

    async def run_cycle(self, trigger: str = "scheduled", today: Optional[date] = None) -> CycleResult:
        """Run one full cycle. Raises CycleInProgressError if one is in flight.

        Failures inside the cycle are recorded in the returned result, never raised.
        """
        if self._lock.locked():
            raise CycleInProgressError("A PDUFA check is already in progress")

        async with self._lock:
            self.state.cycle_in_flight = True
            result = CycleResult(
                cycle_id=uuid.uuid4().hex[:8],
                trigger=trigger,
                started_at=datetime.now(timezone.utc),
            )
            log_extra = {"cycle_id": result.cycle_id, "trigger": trigger}
            logger.info(f"PDUFA check starting ({trigger})", extra=log_extra)
            started = time.monotonic()

            try:
                await self._execute(result, today or self._today())
            except Exception as e:
                result.status = STATUS_FAILURE
                result.message = f"Unexpected error: {e}"
                logger.exception(f"PDUFA check crashed: {e}", extra=log_extra)
                await self.dispatcher.send_error_alert(str(e), f"{trigger.title()} Check")
            finally:
                result.finished_at = datetime.now(timezone.utc)
                self.state.cycle_in_flight = False
                self.state.last_run_at = result.finished_at
                self.state.last_run_result = result
                self.state.total_alerts_sent += result.alerts_sent
                self.state.last_error = result.message if result.status == STATUS_FAILURE else None

            logger.info(
                f"PDUFA check finished: {result.status}. {result.message}",
                extra={**log_extra, "duration_ms": int((time.monotonic() - started) * 1000)},
            )
            return result

    async def _fail(self, result: CycleResult, message: str) -> None:
        result.status = STATUS_FAILURE
        result.message = message
        logger.error(f"PDUFA check failed: {message}", extra={"cycle_id": result.cycle_id})
        await self.dispatcher.send_error_alert(message, f"{result.trigger.title()} Check")

    async def _execute(self, result: CycleResult, today: date) -> None:
        # 1. Fetch
        sources = self.source_factory()
        try:
            outcome = await fetch_all(sources)
        finally:
            await asyncio.gather(*(s.close() for s in sources), return_exceptions=True)
        result.fetched = len(outcome.records)
        result.source_errors = dict(outcome.errors)

        if outcome.all_failed:
            detail = "; ".join(outcome.errors.values()) or "no sources enabled"
            await self._fail(result, f"All sources failed: {detail}")
            return

        # 2. Normalize
        normalized = normalize(outcome.records)
        result.valid = len(normalized.records)
        result.dropped = normalized.dropped
        if not normalized.records:
            await self._fail(result, "No valid PDUFA records after normalization")
            return

        # 3. Persist
        try:
            upserted = await asyncio.to_thread(self.store.upsert, normalized.records)
        except PersistenceError as e:
            await self._fail(result, str(e))
            return
        result.inserted = upserted.inserted
        result.updated = upserted.updated
        result.unchanged = upserted.unchanged

        # 4. Invalidate
        self.cache.clear()

        # 5. Alerts
        try:
            window = max(self.dispatcher.lookahead_days, 7)
            upcoming = await asyncio.to_thread(self.store.query_upcoming, window, today)
            alerts = await asyncio.to_thread(self.dispatcher.evaluate, upcoming, today)
        except PersistenceError as e:
            await self._fail(result, str(e))
            return
        summary = self.dispatcher.weekly_summary(upcoming, today)
        if summary:
            alerts.append(summary)
        for alert in alerts:
            if await self.dispatcher.send(alert):
                result.alerts_sent += 1

        result.status = STATUS_PARTIAL if outcome.errors else STATUS_SUCCESS
        result.message = (
            f"{result.valid} records ({result.inserted} new, {result.updated} updated), "
            f"{result.dropped} dropped, {result.alerts_sent} alerts sent"
        )
        if outcome.errors:
            result.message += f"; failed sources: {', '.join(sorted(outcome.errors))}"

    # ── Admin ──

    async def send_test_alert(self) -> bool:
        sent = await self.dispatcher.send_test_alert()
        if sent:
            self.state.total_alerts_sent += 1
        return sent

    async def validate_system(self) -> Dict[str, bool]:
        results = {"scraper": False, "store": False, "cache": False, "discord": False}

        sources = self.source_factory()
        try:
            outcome = await fetch_all(sources)
            results["scraper"] = bool(outcome.succeeded)
        finally:
            await asyncio.gather(*(s.close() for s in sources), return_exceptions=True)

        try:
            results["store"] = await asyncio.to_thread(self.store.ping)
        except PersistenceError as e:
            logger.error(f"Store validation failed: {e}")

        check_key = f"validate:{uuid.uuid4().hex}"
        self.cache.set(check_key, "ok")
        value = self.cache.get(check_key)
        self.cache.delete(check_key)
        results["cache"] = value is not MISS and value == "ok"

        results["discord"] = await self.dispatcher.validate_webhook()

        logger.info(
            "System validation: "
            + ", ".join(f"{k}={'PASSED' if v else 'FAILED'}" for k, v in results.items())
        )
        return results
