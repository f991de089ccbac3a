"""PDUFA Tracker — Discord Alert Dispatcher.

Decides which canonical records warrant a notification, renders Discord
webhook payloads, delivers them with bounded retries and records every
delivered alert in the idempotency set so no decision is announced twice.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import httpx

from pdufa_tracker.config import settings
from pdufa_tracker.core.errors import DeliveryError, PersistenceError
from pdufa_tracker.core.logging import get_logger, mask_secret_url
from pdufa_tracker.core.retry import RetryPolicy
from pdufa_tracker.models.pdufa_models import PDUFARecord
from pdufa_tracker.store.repository import AlertLogRepository

logger = get_logger("alerts.discord")

# ── Alert types ──
PDUFA_TODAY = "pdufa_today"
PDUFA_TOMORROW = "pdufa_tomorrow"
PDUFA_UPCOMING = "pdufa_upcoming"
WEEKLY_SUMMARY = "weekly_summary"
TEST_ALERT = "test"
ERROR_ALERT = "error"

COLOR_RED = 0xFF0000
COLOR_ORANGE = 0xFFA500
COLOR_YELLOW = 0xFFD700
COLOR_GREEN = 0x00FF00
COLOR_BLUE = 0x0099FF

# Discord rejects embeds with more than 25 fields and messages with more than 10 embeds
MAX_FIELDS_PER_EMBED = 25
MAX_EMBEDS = 10
MAX_RECORDS_PER_ALERT = MAX_FIELDS_PER_EMBED * MAX_EMBEDS

FOOTER = "PDUFA Alert System"

WEEKDAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")


@dataclass
class Alert:
    """One webhook message, covering one or more records."""

    alert_type: str
    payload: Dict[str, Any]
    records: List[PDUFARecord] = field(default_factory=list)
    tracked: bool = True
    created_on: date = field(default_factory=date.today)


def _chunks(items: List[Any], size: int) -> List[List[Any]]:
    return [items[i:i + size] for i in range(0, len(items), size)]


def _record_title(record: PDUFARecord, with_date: bool = False) -> str:
    title = f"${record.ticker} {record.company}" if record.ticker else record.company
    return f"{record.pdufa_date.isoformat()} - {title}" if with_date else title


def _record_details(record: PDUFARecord, brief: bool = False) -> str:
    lines = [f"**Drug:** {record.drug}"]
    if record.indication:
        lines.append(f"**Indication:** {record.indication}")
    if brief:
        return "\n".join(lines)
    if record.review_type:
        lines.append(f"**Review Type:** {record.review_type}")
    if record.status:
        lines.append(f"**Status:** {record.status}")
    if record.source_url:
        lines.append(f"**Source:** [View Details]({record.source_url})")
    return "\n".join(lines)


class DiscordAlertDispatcher:
    """Sends PDUFA notifications to a Discord webhook."""

    def __init__(
        self,
        alert_log: AlertLogRepository,
        webhook_url: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
        retry: Optional[RetryPolicy] = None,
        lookahead_days: Optional[int] = None,
        suppression_days: Optional[int] = None,
        summary_day: Optional[str] = None,
        day_of_reminder: Optional[bool] = None,
    ):
        self.alert_log = alert_log
        self.webhook_url = (
            settings.discord_webhook_url if webhook_url is None else webhook_url
        )
        self.username = settings.discord_username
        self.avatar_url = settings.discord_avatar_url
        self.retry = retry or RetryPolicy(
            max_attempts=settings.alert_max_attempts,
            base_delay=settings.alert_backoff_base,
            max_delay=settings.alert_backoff_max,
        )
        self.lookahead_days = (
            settings.alert_lookahead_days if lookahead_days is None else lookahead_days
        )
        self.suppression_days = (
            settings.alert_suppression_days if suppression_days is None else suppression_days
        )
        self.summary_day = (summary_day or settings.weekly_summary_day).strip().lower()
        self.day_of_reminder = (
            settings.alert_day_of_reminder if day_of_reminder is None else day_of_reminder
        )
        self._client = client
        self._owns_client = client is None
        self._last_summary_on: Optional[date] = None

    @property
    def configured(self) -> bool:
        return bool(self.webhook_url)

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=settings.http_timeout)
            self._owns_client = True
        return self._client

    async def close(self) -> None:
        if self._owns_client and self._client and not self._client.is_closed:
            await self._client.aclose()

    # ── Payloads ──

    def _payload(
        self, content: str, embeds: List[Dict[str, Any]]
    ) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "content": content,
            "embeds": embeds[:MAX_EMBEDS],
            "username": self.username,
        }
        if self.avatar_url:
            payload["avatar_url"] = self.avatar_url
        return payload

    def _embeds(
        self,
        title: str,
        description: str,
        color: int,
        fields: List[Dict[str, Any]],
        footer: str = FOOTER,
    ) -> List[Dict[str, Any]]:
        timestamp = datetime.now(timezone.utc).isoformat()
        embeds = []
        for i, chunk in enumerate(_chunks(fields, MAX_FIELDS_PER_EMBED) or [[]]):
            embed: Dict[str, Any] = {
                "title": title if i == 0 else f"{title} (cont.)",
                "color": color,
                "footer": {"text": footer},
                "timestamp": timestamp,
            }
            if i == 0:
                embed["description"] = description
            if chunk:
                embed["fields"] = chunk
            embeds.append(embed)
        return embeds

    def build_decision_alert(self, alert_type: str, records: List[PDUFARecord]) -> Alert:
        n = len(records)
        if alert_type == PDUFA_TODAY:
            title, color = "🚨 PDUFA Decision Day Alert", COLOR_RED
            description = f"**{n} PDUFA decision(s) scheduled for today!**"
            content = f"@here **PDUFA Decision Day Alert** - {n} decision(s) expected today!"
        elif alert_type == PDUFA_TOMORROW:
            title, color = "⚠️ PDUFA Decision Tomorrow Alert", COLOR_ORANGE
            description = f"**{n} PDUFA decision(s) scheduled for tomorrow!**"
            content = f"@here **PDUFA Decision Tomorrow Alert** - {n} decision(s) expected tomorrow!"
        else:
            title, color = "📌 Upcoming PDUFA Decisions", COLOR_YELLOW
            description = (
                f"**{n} PDUFA decision(s) in the next {self.lookahead_days} days**"
            )
            content = f"**Upcoming PDUFA Decisions** - {n} decision(s) coming up"

        with_date = alert_type == PDUFA_UPCOMING
        fields = [
            {
                "name": _record_title(r, with_date=with_date),
                "value": _record_details(r),
                "inline": False,
            }
            for r in records
        ]
        return Alert(
            alert_type=alert_type,
            payload=self._payload(content, self._embeds(title, description, color, fields)),
            records=list(records),
        )

    # ── Evaluation ──

    def _should_alert(self, record: PDUFARecord, alert_type: str, since: datetime) -> bool:
        sent = self.alert_log.last_alert(
            record.company_key, record.drug_key, record.pdufa_date, since
        )
        if sent is None:
            return True
        # Opt-in: one more alert on decision day for a decision announced earlier
        return self.day_of_reminder and alert_type == PDUFA_TODAY and sent != PDUFA_TODAY

    def evaluate(self, records: List[PDUFARecord], today: Optional[date] = None) -> List[Alert]:
        """Alerts for records inside the lookahead window not yet announced.

        A decision is announced once per (company, drug, date) within the
        suppression window, whichever window it was first seen in. A revised
        date is a new identity and alerts again. Groups larger than one
        message can show are split so every announced record is visible.
        """
        today = today or date.today()
        horizon = today + timedelta(days=self.lookahead_days)
        since = datetime.now(timezone.utc) - timedelta(days=self.suppression_days)

        groups: Dict[str, List[PDUFARecord]] = {
            PDUFA_TODAY: [],
            PDUFA_TOMORROW: [],
            PDUFA_UPCOMING: [],
        }
        for record in sorted(records, key=lambda r: (r.pdufa_date, r.company)):
            if not today <= record.pdufa_date <= horizon:
                continue
            if record.pdufa_date == today:
                alert_type = PDUFA_TODAY
            elif record.pdufa_date == today + timedelta(days=1):
                alert_type = PDUFA_TOMORROW
            else:
                alert_type = PDUFA_UPCOMING
            if self._should_alert(record, alert_type, since):
                groups[alert_type].append(record)

        alerts = [
            self.build_decision_alert(alert_type, chunk)
            for alert_type, group in groups.items()
            for chunk in _chunks(group, MAX_RECORDS_PER_ALERT)
        ]
        for alert in alerts:
            alert.created_on = today
        return alerts

    def weekly_summary(
        self, records: List[PDUFARecord], today: Optional[date] = None
    ) -> Optional[Alert]:
        """Summary of the next 7 days, only on the configured weekday and once per day."""
        today = today or date.today()
        if WEEKDAYS[today.weekday()] != self.summary_day:
            return None
        if self._last_summary_on == today:
            return None
        week = sorted(
            (r for r in records if today <= r.pdufa_date <= today + timedelta(days=7)),
            key=lambda r: (r.pdufa_date, r.company),
        )
        if not week:
            return None

        fields = [
            {
                "name": _record_title(r, with_date=True),
                "value": _record_details(r, brief=True),
                "inline": True,
            }
            for r in week
        ]
        n = len(week)
        embeds = self._embeds(
            "📅 Weekly PDUFA Calendar Summary",
            f"**{n} PDUFA decision(s) scheduled for this week**",
            COLOR_GREEN,
            fields,
        )
        return Alert(
            alert_type=WEEKLY_SUMMARY,
            payload=self._payload(f"📅 **Weekly PDUFA Summary** - {n} decision(s) this week", embeds),
            records=week,
            tracked=False,
            created_on=today,
        )

    # ── Delivery ──

    async def _post(self, payload: Dict[str, Any]) -> int:
        """POST with retries. Returns the attempt count or raises DeliveryError."""
        client = await self._get_client()
        attempt = 0
        while True:
            attempt += 1
            try:
                resp = await client.post(self.webhook_url, json=payload)
            except httpx.RequestError as e:
                if self.retry.can_retry(attempt):
                    logger.warning(
                        f"Webhook request error: {e}. Retrying in {self.retry.delay_for(attempt)}s",
                        extra={"attempt": attempt},
                    )
                    await self.retry.wait(attempt)
                    continue
                raise DeliveryError(
                    f"webhook unreachable after {attempt} attempts: {e}", attempts=attempt
                ) from e

            if resp.status_code in (200, 204):
                return attempt

            if RetryPolicy.is_retryable_status(resp.status_code):
                retry_after = self._retry_after(resp) if resp.status_code == 429 else None
                if self.retry.can_retry(attempt):
                    logger.warning(
                        f"Webhook returned {resp.status_code}. Retrying in "
                        f"{self.retry.delay_for(attempt, retry_after)}s "
                        f"(attempt {attempt}/{self.retry.max_attempts})",
                        extra={"status_code": resp.status_code, "attempt": attempt},
                    )
                    await self.retry.wait(attempt, retry_after)
                    continue
                raise DeliveryError(
                    f"webhook returned HTTP {resp.status_code} after {attempt} attempts",
                    status_code=resp.status_code,
                    attempts=attempt,
                )

            raise DeliveryError(
                f"webhook rejected payload: HTTP {resp.status_code} {resp.text[:200]}",
                status_code=resp.status_code,
                attempts=attempt,
            )

    @staticmethod
    def _retry_after(resp: httpx.Response) -> Optional[float]:
        try:
            body = resp.json()
            if isinstance(body, dict) and body.get("retry_after") is not None:
                return float(body["retry_after"])
        except ValueError:
            pass
        return RetryPolicy.parse_retry_after(resp.headers.get("Retry-After"))

    async def send(self, alert: Alert) -> bool:
        """Deliver one alert. Never raises; returns False on any failure."""
        if not self.configured:
            logger.warning(
                f"Discord webhook not configured; skipping {alert.alert_type} alert",
                extra={"alert_type": alert.alert_type},
            )
            return False

        try:
            attempts = await self._post(alert.payload)
        except DeliveryError as e:
            logger.error(
                f"Discord delivery failed for {alert.alert_type} "
                f"({mask_secret_url(self.webhook_url)}): {e}",
                extra={"alert_type": alert.alert_type, "status_code": e.status_code},
            )
            return False

        logger.info(
            f"Discord {alert.alert_type} alert sent ({len(alert.records)} records)",
            extra={
                "alert_type": alert.alert_type,
                "attempt": attempts,
                "record_count": len(alert.records),
            },
        )
        if alert.tracked and alert.records:
            try:
                await asyncio.to_thread(
                    self.alert_log.mark_alerted, alert.records, alert.alert_type
                )
            except PersistenceError as e:
                # Delivered already; the next cycle may repeat this alert
                logger.error(
                    f"Could not record {alert.alert_type} alert as sent: {e}",
                    extra={"alert_type": alert.alert_type, "record_count": len(alert.records)},
                )
        if alert.alert_type == WEEKLY_SUMMARY:
            self._last_summary_on = alert.created_on
        return True

    async def send_test_alert(self) -> bool:
        embeds = self._embeds(
            "🧪 PDUFA Alert System Test",
            "This is a test message to verify the Discord webhook integration is working correctly.",
            COLOR_BLUE,
            [],
            footer=f"{FOOTER} • Test Message",
        )
        alert = Alert(
            alert_type=TEST_ALERT,
            payload=self._payload("🧪 **Test Alert** - PDUFA system is operational", embeds),
            tracked=False,
        )
        return await self.send(alert)

    async def send_error_alert(self, error: str, context: str) -> bool:
        embeds = self._embeds(
            "❌ PDUFA System Error",
            f"**Error in {context}**\n```{error[:1500]}```",
            COLOR_RED,
            [],
            footer=f"{FOOTER} • Error Report",
        )
        alert = Alert(
            alert_type=ERROR_ALERT,
            payload=self._payload("❌ **PDUFA System Error** - Check logs for details", embeds),
            tracked=False,
        )
        return await self.send(alert)

    async def validate_webhook(self) -> bool:
        if not self.configured:
            return False
        client = await self._get_client()
        try:
            resp = await client.get(self.webhook_url)
        except httpx.RequestError as e:
            logger.warning(f"Discord webhook validation failed: {e}")
            return False
        return resp.status_code == 200
