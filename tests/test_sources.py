"""Source fetcher tests. All HTTP is served by httpx.MockTransport."""

import json

import httpx
import pytest

from conftest import NO_WAIT
from pdufa_tracker.connectors.sources.biopharmcatalyst import BioPharmCatalystSource
from pdufa_tracker.connectors.sources.checkrare import CheckRareSource
from pdufa_tracker.connectors.sources.fdatracker import FDATrackerSource
from pdufa_tracker.connectors.sources.rttnews import RTTNewsSource
from pdufa_tracker.connectors.sources.seed_file import SeedFileSource
from pdufa_tracker.core.errors import FetchError
from pdufa_tracker.core.retry import RetryPolicy


RTTNEWS_HTML = """
<html><body>
<table>
  <tr><th>Company Name</th><th>Drug</th><th>Event Date</th><th>Status</th></tr>
  <tr><td>Acme Therapeutics, Inc.</td><td>AC-1</td><td>03/15/2025</td><td>Under Review</td></tr>
  <tr><td>Rarity Bio Ltd</td><td>RB-200</td><td>04/01/2025</td><td></td></tr>
  <tr><td></td><td>Orphan</td><td>04/02/2025</td><td></td></tr>
</table>
</body></html>
"""

CHECKRARE_HTML = """
<table>
  <tr><td>Rarity Bio</td><td>RB-200</td><td>April 1, 2025</td><td>Fabry disease</td></tr>
</table>
"""

FDATRACKER_HTML = """
<div class="calendar-entry">
  <span class="company">Acme Therapeutics</span>
  <span class="drug">AC-1</span>
  <span class="date">March 15, 2025</span>
  <span class="indication">Chronic migraine</span>
  <span class="review-type">Priority Review</span>
</div>
<div class="pdufa-entry">
  <span class="company-name">No Date Pharma</span>
  <span class="drug-name">ND-9</span>
</div>
"""


def _mock_client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


class RecordingRetry(RetryPolicy):
    """Records each computed delay instead of sleeping."""

    def __init__(self):
        super().__init__(max_attempts=3, base_delay=0, max_delay=60)
        object.__setattr__(self, "waits", [])

    async def wait(self, attempt, retry_after=None):
        delay = self.delay_for(attempt, retry_after)
        self.waits.append(delay)
        return delay


# =============================================================================
# Parsers
# =============================================================================

class TestParsers:
    """HTML → raw record parsing."""

    def test_rttnews_table_by_header(self):
        records = RTTNewsSource().parse(RTTNEWS_HTML)

        assert [r.company for r in records] == ["Acme Therapeutics, Inc.", "Rarity Bio Ltd"]
        assert records[0].date_text == "03/15/2025"
        assert records[0].status == "Under Review"
        assert records[0].source == "rttnews"

    def test_checkrare_table_without_header(self):
        records = CheckRareSource(years=[2025]).parse(CHECKRARE_HTML, "https://checkrare.test/2025")

        assert len(records) == 1
        assert records[0].indication == "Fabry disease"
        assert records[0].url == "https://checkrare.test/2025"

    def test_fdatracker_entries(self):
        records = FDATrackerSource().parse(FDATRACKER_HTML)

        assert len(records) == 1
        assert records[0].review_type == "Priority Review"
        assert records[0].indication == "Chronic migraine"

    def test_biopharmcatalyst_next_data(self):
        data = {
            "props": {
                "pageProps": {
                    "catalysts": [
                        {
                            "ticker": "acme",
                            "company": "Acme Therapeutics",
                            "drug": "AC-1",
                            "catalystDate": "2025-03-15",
                            "catalystType": "PDUFA",
                            "indication": "Chronic migraine",
                            "updatedAt": "2025-01-10T12:00:00Z",
                        },
                        {
                            "ticker": "RBIO",
                            "company": "Rarity Bio",
                            "drug": "RB-200",
                            "catalystDate": "2025-05-01",
                            "catalystType": "Phase 2 data readout",
                        },
                    ]
                }
            }
        }
        html = f'<script id="__NEXT_DATA__" type="application/json">{json.dumps(data)}</script>'

        records = BioPharmCatalystSource().parse(html)

        assert len(records) == 1
        assert records[0].ticker == "ACME"
        assert records[0].updated_at is not None

    def test_biopharmcatalyst_falls_back_to_table(self):
        html = """
        <table>
          <tr><th>Ticker</th><th>Company</th><th>Drug</th><th>PDUFA Date</th></tr>
          <tr><td>ACME</td><td>Acme Therapeutics</td><td>AC-1</td><td>2025-03-15</td></tr>
        </table>
        """

        records = BioPharmCatalystSource().parse(html)

        assert len(records) == 1
        assert records[0].catalyst_date == "2025-03-15"


# =============================================================================
# HTTP behaviour
# =============================================================================

class TestFetch:
    """Retry and error classification."""

    @pytest.mark.asyncio
    async def test_retries_transient_status(self):
        calls = []

        def handler(request):
            calls.append(request)
            if len(calls) == 1:
                return httpx.Response(503)
            return httpx.Response(200, text=RTTNEWS_HTML)

        source = RTTNewsSource(client=_mock_client(handler), retry=NO_WAIT)
        records = await source.fetch()

        assert len(calls) == 2
        assert len(records) == 2

    @pytest.mark.asyncio
    async def test_gives_up_after_max_attempts(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(429)

        source = RTTNewsSource(client=_mock_client(handler), retry=NO_WAIT)
        with pytest.raises(FetchError) as exc:
            await source.fetch()

        assert len(calls) == NO_WAIT.max_attempts
        assert exc.value.status_code == 429
        assert exc.value.source == "rttnews"

    @pytest.mark.asyncio
    async def test_rate_limit_honours_retry_after(self):
        responses = [
            httpx.Response(429, headers={"Retry-After": "7"}),
            httpx.Response(503, headers={"Retry-After": "9"}),
            httpx.Response(200, text=RTTNEWS_HTML),
        ]

        def handler(request):
            return responses.pop(0)

        retry = RecordingRetry()
        source = RTTNewsSource(client=_mock_client(handler), retry=retry)
        records = await source.fetch()

        # Only a 429 carries a usable Retry-After
        assert retry.waits == [7.0, 0]
        assert len(records) == 2

    @pytest.mark.asyncio
    async def test_client_error_is_not_retried(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(403)

        source = FDATrackerSource(client=_mock_client(handler), retry=NO_WAIT)
        with pytest.raises(FetchError):
            await source.fetch()
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_connection_error_becomes_fetch_error(self):
        def handler(request):
            raise httpx.ConnectError("connection refused")

        source = RTTNewsSource(client=_mock_client(handler), retry=NO_WAIT)
        with pytest.raises(FetchError, match="connection failed"):
            await source.fetch()

    @pytest.mark.asyncio
    async def test_checkrare_skips_missing_year(self):
        def handler(request):
            if "2026" in str(request.url):
                return httpx.Response(404)
            return httpx.Response(200, text=CHECKRARE_HTML)

        source = CheckRareSource(client=_mock_client(handler), retry=NO_WAIT, years=[2025, 2026])
        records = await source.fetch()

        assert len(records) == 1

    @pytest.mark.asyncio
    async def test_checkrare_fails_when_every_year_fails(self):
        def handler(request):
            return httpx.Response(404)

        source = CheckRareSource(client=_mock_client(handler), retry=NO_WAIT, years=[2025, 2026])
        with pytest.raises(FetchError):
            await source.fetch()


# =============================================================================
# Seed file
# =============================================================================

class TestSeedFile:
    """Local JSON seed source."""

    @pytest.mark.asyncio
    async def test_loads_records(self, tmp_path):
        path = tmp_path / "seed.json"
        path.write_text(
            json.dumps(
                [
                    {"ticker": "ASND", "company": "Ascendis Pharma A/S",
                     "drug": "TransCon CNP", "pdufa_date": "2025-11-30"},
                    "not an object",
                ]
            ),
            encoding="utf-8",
        )

        records = await SeedFileSource(path=str(path)).fetch()

        assert len(records) == 1
        assert records[0].source == "seed_file"
        assert records[0].url == str(path)

    @pytest.mark.asyncio
    async def test_missing_file(self, tmp_path):
        with pytest.raises(FetchError, match="not found"):
            await SeedFileSource(path=str(tmp_path / "missing.json")).fetch()

    @pytest.mark.asyncio
    async def test_invalid_json(self, tmp_path):
        path = tmp_path / "seed.json"
        path.write_text("{not json", encoding="utf-8")

        with pytest.raises(FetchError, match="invalid JSON"):
            await SeedFileSource(path=str(path)).fetch()
