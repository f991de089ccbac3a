"""Discord dispatcher tests. The webhook is an httpx.MockTransport."""

import json
from datetime import timedelta

import httpx
import pytest

from conftest import NO_WAIT, WebhookRecorder, make_record
from pdufa_tracker.alerts.discord import (
    DiscordAlertDispatcher,
    PDUFA_TODAY,
    PDUFA_TOMORROW,
    PDUFA_UPCOMING,
    WEEKDAYS,
    WEEKLY_SUMMARY,
)
from pdufa_tracker.database import build_engine
from pdufa_tracker.store.repository import AlertLogRepository


# =============================================================================
# Evaluation
# =============================================================================

class TestEvaluate:
    """Which records qualify and how they are grouped."""

    def test_groups_by_alert_type(self, make_dispatcher, today):
        dispatcher = make_dispatcher()
        records = [
            make_record("Acme", "AC-1", today),
            make_record("Beta Bio", "B-2", today + timedelta(days=1)),
            make_record("Gamma Gene", "G-3", today + timedelta(days=5)),
            make_record("Late Labs", "L-4", today + timedelta(days=30)),
            make_record("Past Pharma", "P-5", today - timedelta(days=1)),
        ]

        alerts = dispatcher.evaluate(records, today)

        by_type = {a.alert_type: [r.drug for r in a.records] for a in alerts}
        assert by_type == {
            PDUFA_TODAY: ["AC-1"],
            PDUFA_TOMORROW: ["B-2"],
            PDUFA_UPCOMING: ["G-3"],
        }

    def test_payload_shape(self, make_dispatcher, today):
        dispatcher = make_dispatcher()
        record = make_record(
            "Acme Therapeutics", "AC-1", today,
            indication="Chronic migraine", review_type="Priority Review",
            source_url="https://example.test/acme",
        )

        alert = dispatcher.evaluate([record], today)[0]

        payload = alert.payload
        assert payload["content"].startswith("@here")
        assert payload["username"] == "PDUFA Alert Bot"
        embed = payload["embeds"][0]
        assert embed["color"] == 0xFF0000
        assert embed["fields"][0]["name"] == "$ACME Acme Therapeutics"
        assert "**Review Type:** Priority Review" in embed["fields"][0]["value"]
        assert "[View Details](https://example.test/acme)" in embed["fields"][0]["value"]

    def test_many_records_split_across_embeds(self, make_dispatcher, today):
        dispatcher = make_dispatcher()
        records = [make_record(f"Company {i}", f"D-{i}", today) for i in range(30)]

        embeds = dispatcher.evaluate(records, today)[0].payload["embeds"]

        assert len(embeds) == 2
        assert len(embeds[0]["fields"]) == 25
        assert len(embeds[1]["fields"]) == 5

    def test_oversized_group_split_into_several_alerts(self, make_dispatcher, today):
        dispatcher = make_dispatcher()
        records = [make_record(f"Company {i:03d}", f"D-{i}", today) for i in range(260)]

        alerts = dispatcher.evaluate(records, today)

        assert [len(a.records) for a in alerts] == [250, 10]
        assert len(alerts[0].payload["embeds"]) == 10
        assert sum(len(e["fields"]) for e in alerts[0].payload["embeds"]) == 250
        shown = {r.drug for a in alerts for r in a.records}
        assert shown == {f"D-{i}" for i in range(260)}


# =============================================================================
# Delivery
# =============================================================================

class TestSend:
    """Webhook delivery, retries and idempotency."""

    @pytest.mark.asyncio
    async def test_no_duplicate_alert_across_cycles(self, make_dispatcher, webhook, today):
        dispatcher = make_dispatcher(webhook)
        record = make_record(pdufa_date=today)

        for alert in dispatcher.evaluate([record], today):
            assert await dispatcher.send(alert)

        assert dispatcher.evaluate([record], today) == []
        assert len(webhook.posts) == 1

    @pytest.mark.asyncio
    async def test_revised_date_alerts_again(self, make_dispatcher, webhook, today):
        dispatcher = make_dispatcher(webhook)
        await dispatcher.send(dispatcher.evaluate([make_record(pdufa_date=today)], today)[0])

        revised = make_record(pdufa_date=today + timedelta(days=1))
        alerts = dispatcher.evaluate([revised], today)

        assert [a.alert_type for a in alerts] == [PDUFA_TOMORROW]

    @pytest.mark.asyncio
    async def test_one_alert_per_decision_as_it_approaches(self, make_dispatcher, webhook, today):
        dispatcher = make_dispatcher(webhook)
        record = make_record(pdufa_date=today + timedelta(days=2))

        for day in range(3):
            for alert in dispatcher.evaluate([record], today + timedelta(days=day)):
                assert await dispatcher.send(alert)

        assert len(webhook.posts) == 1
        assert json.loads(webhook.posts[0].content)["embeds"][0]["color"] == 0xFFD700

    @pytest.mark.asyncio
    async def test_day_of_reminder_is_opt_in(self, make_dispatcher, webhook, today):
        dispatcher = make_dispatcher(webhook, day_of_reminder=True)
        record = make_record(pdufa_date=today + timedelta(days=1))

        for day in range(2):
            for alert in dispatcher.evaluate([record], today + timedelta(days=day)):
                assert await dispatcher.send(alert)

        assert len(webhook.posts) == 2
        assert dispatcher.evaluate([record], today + timedelta(days=1)) == []

    @pytest.mark.asyncio
    async def test_alert_log_failure_after_delivery_still_succeeds(self, webhook, today):
        broken_log = AlertLogRepository(build_engine("sqlite://"))
        dispatcher = DiscordAlertDispatcher(
            broken_log,
            webhook_url="https://discord.test/api/webhooks/1/token",
            client=httpx.AsyncClient(transport=httpx.MockTransport(webhook)),
            retry=NO_WAIT,
        )
        alert = dispatcher.build_decision_alert(PDUFA_TODAY, [make_record(pdufa_date=today)])

        assert await dispatcher.send(alert) is True
        assert len(webhook.posts) == 1

    @pytest.mark.asyncio
    async def test_failed_delivery_is_not_recorded(self, make_dispatcher, today):
        recorder = WebhookRecorder([httpx.Response(400, json={"message": "Invalid Form Body"})])
        dispatcher = make_dispatcher(recorder)
        record = make_record(pdufa_date=today)

        sent = await dispatcher.send(dispatcher.evaluate([record], today)[0])

        assert sent is False
        assert len(recorder.posts) == 1
        assert len(dispatcher.evaluate([record], today)) == 1

    @pytest.mark.asyncio
    async def test_retries_rate_limit_and_server_errors(self, make_dispatcher, today):
        recorder = WebhookRecorder(
            [
                httpx.Response(429, json={"retry_after": 0.5}),
                httpx.Response(502),
                httpx.Response(204),
            ]
        )
        dispatcher = make_dispatcher(recorder)

        sent = await dispatcher.send(dispatcher.evaluate([make_record(pdufa_date=today)], today)[0])

        assert sent is True
        assert len(recorder.posts) == 3

    @pytest.mark.asyncio
    async def test_gives_up_on_network_errors(self, make_dispatcher, today):
        recorder = WebhookRecorder([httpx.ConnectError("down")] * 5)
        dispatcher = make_dispatcher(recorder)

        sent = await dispatcher.send(dispatcher.evaluate([make_record(pdufa_date=today)], today)[0])

        assert sent is False
        assert len(recorder.posts) == dispatcher.retry.max_attempts

    @pytest.mark.asyncio
    async def test_missing_webhook_skips(self, make_dispatcher, webhook, today):
        dispatcher = make_dispatcher(webhook, webhook_url="")

        assert await dispatcher.send_test_alert() is False
        assert webhook.requests == []

    @pytest.mark.asyncio
    async def test_test_alert_payload(self, make_dispatcher, webhook):
        dispatcher = make_dispatcher(webhook)

        assert await dispatcher.send_test_alert() is True
        body = json.loads(webhook.posts[0].content)
        assert body["embeds"][0]["color"] == 0x0099FF
        assert "Test Alert" in body["content"]

    @pytest.mark.asyncio
    async def test_error_alert_payload(self, make_dispatcher, webhook):
        dispatcher = make_dispatcher(webhook)

        assert await dispatcher.send_error_alert("All sources failed", "Scheduled Check")
        body = json.loads(webhook.posts[0].content)
        assert "Scheduled Check" in body["embeds"][0]["description"]
        assert "All sources failed" in body["embeds"][0]["description"]

    @pytest.mark.asyncio
    async def test_validate_webhook(self, make_dispatcher):
        ok = make_dispatcher(WebhookRecorder([httpx.Response(200, json={"id": "1"})]))
        gone = make_dispatcher(WebhookRecorder([httpx.Response(401)]))

        assert await ok.validate_webhook() is True
        assert await gone.validate_webhook() is False
        assert await make_dispatcher(webhook_url="").validate_webhook() is False


# =============================================================================
# Weekly summary
# =============================================================================

class TestWeeklySummary:
    @pytest.mark.asyncio
    async def test_only_on_summary_day_and_once(self, make_dispatcher, webhook, today):
        dispatcher = make_dispatcher(webhook, summary_day=WEEKDAYS[today.weekday()])
        records = [
            make_record("Acme", "AC-1", today + timedelta(days=2)),
            make_record("Late Labs", "L-4", today + timedelta(days=20)),
        ]

        summary = dispatcher.weekly_summary(records, today)

        assert summary.alert_type == WEEKLY_SUMMARY
        assert [r.drug for r in summary.records] == ["AC-1"]
        assert await dispatcher.send(summary)
        assert dispatcher.weekly_summary(records, today) is None

    def test_skipped_on_other_days(self, make_dispatcher, today):
        dispatcher = make_dispatcher()
        records = [make_record(pdufa_date=today + timedelta(days=2))]

        assert dispatcher.weekly_summary(records, today) is None
