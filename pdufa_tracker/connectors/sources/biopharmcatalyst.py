"""PDUFA Tracker — BioPharmCatalyst FDA calendar source.

Prefers the ``__NEXT_DATA__`` JSON embedded in the page and falls back to
the rendered table when the JSON is missing or has no catalysts.
"""

import json
import re
from datetime import datetime
from typing import Any, Dict, List, Optional

from bs4 import BeautifulSoup

from pdufa_tracker.connectors.sources.base import BaseSource
from pdufa_tracker.connectors.sources.html_tables import iter_table_rows
from pdufa_tracker.core.logging import get_logger
from pdufa_tracker.models.raw_models import BioPharmCatalystRaw

logger = get_logger("sources.biopharmcatalyst")

BIOPHARMCATALYST_URL = "https://www.biopharmcatalyst.com/calendars/fda-calendar"

DECISION_TYPES = ("pdufa", "nda", "bla", "approval", "decision")

COLUMNS = {
    "ticker": ("ticker", "symbol"),
    "company": ("company", "name"),
    "drug": ("drug",),
    "date": ("pdufa", "date"),
    "indication": ("indication", "disease"),
    "stage": ("stage", "phase", "catalyst"),
}

_TICKER_IN_TEXT = re.compile(r"\(([A-Z]{1,5})\)")


def _first(item: Dict[str, Any], *keys: str) -> str:
    for key in keys:
        value = item.get(key)
        if value:
            return str(value).strip()
    return ""


def _parse_timestamp(value: str) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


class BioPharmCatalystSource(BaseSource):
    name = "biopharmcatalyst"

    def __init__(self, *args, url: str = BIOPHARMCATALYST_URL, **kwargs):
        super().__init__(*args, **kwargs)
        self.url = url

    async def _fetch(self) -> List[BioPharmCatalystRaw]:
        html = await self.get_text(self.url)
        return self.parse(html)

    def parse(self, html: str) -> List[BioPharmCatalystRaw]:
        soup = BeautifulSoup(html, "html.parser")

        script = soup.find("script", {"id": "__NEXT_DATA__"})
        if script and script.string:
            try:
                records = self._parse_next_data(json.loads(script.string))
            except (json.JSONDecodeError, AttributeError, TypeError) as e:
                logger.warning(f"Embedded JSON unusable, using table: {e}")
                records = []
            if records:
                return records

        return [
            BioPharmCatalystRaw(
                ticker=row.get("ticker", ""),
                company=row["company"],
                drug=row["drug"],
                catalyst_date=row["date"],
                indication=row.get("indication", ""),
                stage=row.get("stage", ""),
                url=self.url,
            )
            for row in iter_table_rows(
                soup,
                COLUMNS,
                positional=("ticker", "company", "drug", "date", "indication", "stage"),
            )
        ]

    def _parse_next_data(self, data: Dict[str, Any]) -> List[BioPharmCatalystRaw]:
        page_props = data.get("props", {}).get("pageProps", {})
        catalysts = (
            page_props.get("catalysts")
            or page_props.get("events")
            or page_props.get("data")
            or []
        )
        if not isinstance(catalysts, list):
            return []

        records = []
        for cat in catalysts:
            if not isinstance(cat, dict):
                continue
            cat_type = _first(cat, "catalystType", "type", "stage").lower()
            if cat_type and not any(t in cat_type for t in DECISION_TYPES):
                continue

            company = _first(cat, "company", "companyName")
            ticker = _first(cat, "ticker", "symbol")
            if not ticker:
                m = _TICKER_IN_TEXT.search(company)
                ticker = m.group(1) if m else ""

            records.append(
                BioPharmCatalystRaw(
                    ticker=ticker.upper(),
                    company=company,
                    drug=_first(cat, "drug", "drugName"),
                    catalyst_date=_first(cat, "catalystDate", "date"),
                    indication=_first(cat, "indication", "disease"),
                    stage=_first(cat, "stage", "phase"),
                    note=_first(cat, "note", "description"),
                    updated_at=_parse_timestamp(_first(cat, "updatedAt", "updated_at")),
                    url=self.url,
                )
            )
        return records
