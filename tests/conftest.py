"""Shared pytest fixtures.

- in-memory SQLite store (StaticPool)
- record and raw-record factories
- a static source that never touches the network
"""

import asyncio
from datetime import date, datetime, timedelta, timezone
from typing import List, Optional

import httpx
import pytest

from pdufa_tracker.alerts.discord import WEEKDAYS, DiscordAlertDispatcher
from pdufa_tracker.connectors.sources.base import BaseSource
from pdufa_tracker.core.errors import FetchError
from pdufa_tracker.core.retry import RetryPolicy
from pdufa_tracker.database import build_engine, init_db
from pdufa_tracker.models.pdufa_models import PDUFARecord
from pdufa_tracker.models.raw_models import CheckRareRaw, FDATrackerRaw, RTTNewsRaw
from pdufa_tracker.pipeline.normalizer import company_key, drug_key
from pdufa_tracker.store.cache import TTLCache
from pdufa_tracker.store.repository import AlertLogRepository, PDUFAStore

NO_WAIT = RetryPolicy(max_attempts=3, base_delay=0, max_delay=0)


# ── Store ──

@pytest.fixture
def engine():
    eng = build_engine("sqlite://")
    init_db(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def store(engine):
    return PDUFAStore(engine)


@pytest.fixture
def alert_log(engine):
    return AlertLogRepository(engine)


@pytest.fixture
def cache():
    return TTLCache(ttl_seconds=300)


@pytest.fixture
def today():
    return date.today()


def not_today(on: date) -> str:
    """A weekly summary day that is guaranteed not to be ``on``."""
    return WEEKDAYS[(on.weekday() + 1) % 7]


# ── Records ──

def make_record(
    company: str = "Acme Therapeutics",
    drug: str = "AC-1",
    pdufa_date: Optional[date] = None,
    ticker: Optional[str] = "ACME",
    sources: str = "rttnews",
    **fields,
) -> PDUFARecord:
    return PDUFARecord(
        company_key=company_key(company),
        drug_key=drug_key(drug),
        ticker=ticker,
        company=company,
        drug=drug,
        pdufa_date=pdufa_date or date.today() + timedelta(days=10),
        source_ids=sources,
        last_updated=fields.pop("last_updated", datetime(2025, 1, 1, tzinfo=timezone.utc)),
        **fields,
    )


@pytest.fixture
def record_factory():
    return make_record


@pytest.fixture
def sample_raw_records(today):
    """Three candidates: two describe Acme / AC-1, one is unique."""
    pdufa = today + timedelta(days=3)
    return [
        RTTNewsRaw(
            company="Acme Therapeutics, Inc.",
            drug="AC-1",
            date_text=pdufa.strftime("%m/%d/%Y"),
            status="Under Review",
            url="https://example.test/rttnews",
        ),
        FDATrackerRaw(
            company="ACME Therapeutics (NASDAQ: ACME)",
            drug="AC-1",
            date_text=pdufa.strftime("%B %d, %Y"),
            indication="Chronic migraine",
            review_type="Priority Review",
            url="https://example.test/fdatracker",
        ),
        CheckRareRaw(
            company="Rarity Bio Ltd",
            drug="RB-200 (raritinib)",
            date_text=(today + timedelta(days=20)).isoformat(),
            indication="Fabry disease",
            url="https://example.test/checkrare",
        ),
    ]


# ── Sources ──

class StaticSource(BaseSource):
    """Returns canned records, or fails, without any HTTP."""

    def __init__(self, name: str, records=None, error: Optional[str] = None, gate=None):
        super().__init__(retry=NO_WAIT)
        self.name = name
        self.records = list(records or [])
        self.error = error
        self.gate = gate

    async def _fetch(self) -> List:
        if self.gate is not None:
            await self.gate.wait()
        if self.error:
            raise FetchError(self.name, self.error)
        return self.records


@pytest.fixture
def static_source():
    return StaticSource


# ── Discord ──

class WebhookRecorder:
    """httpx.MockTransport handler replaying a scripted list of responses."""

    def __init__(self, responses=None):
        self.responses = list(responses or [])
        self.requests: List[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.responses:
            response = self.responses.pop(0)
            if isinstance(response, Exception):
                raise response
            return response
        return httpx.Response(204)

    @property
    def posts(self) -> List[httpx.Request]:
        return [r for r in self.requests if r.method == "POST"]


@pytest.fixture
def webhook():
    return WebhookRecorder()


@pytest.fixture
def make_dispatcher(alert_log, today):
    def _make(recorder=None, webhook_url="https://discord.test/api/webhooks/1/token", **kwargs):
        client = None
        if recorder is not None:
            client = httpx.AsyncClient(transport=httpx.MockTransport(recorder))
        kwargs.setdefault("summary_day", not_today(today))
        return DiscordAlertDispatcher(
            alert_log,
            webhook_url=webhook_url,
            client=client,
            retry=NO_WAIT,
            **kwargs,
        )

    return _make


async def wait_until(predicate, attempts: int = 50) -> None:
    for _ in range(attempts):
        if predicate():
            return
        await asyncio.sleep(0)
