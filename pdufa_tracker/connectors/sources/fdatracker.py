"""PDUFA Tracker — FDATracker calendar source."""

from typing import List

from bs4 import BeautifulSoup

from pdufa_tracker.connectors.sources.base import BaseSource
from pdufa_tracker.models.raw_models import FDATrackerRaw

FDATRACKER_URL = "https://www.fdatracker.com/fda-calendar"

ENTRY_SELECTOR = ".calendar-entry, .pdufa-entry"


def _select_text(element, selector: str) -> str:
    found = element.select_one(selector)
    return " ".join(found.get_text(" ", strip=True).split()) if found else ""


class FDATrackerSource(BaseSource):
    """Calendar entry blocks with company, drug, date and review type."""

    name = "fdatracker"

    def __init__(self, *args, url: str = FDATRACKER_URL, **kwargs):
        super().__init__(*args, **kwargs)
        self.url = url

    async def _fetch(self) -> List[FDATrackerRaw]:
        html = await self.get_text(self.url)
        return self.parse(html)

    def parse(self, html: str) -> List[FDATrackerRaw]:
        soup = BeautifulSoup(html, "html.parser")
        records = []
        for entry in soup.select(ENTRY_SELECTOR):
            company = _select_text(entry, ".company, .company-name")
            drug = _select_text(entry, ".drug, .drug-name")
            date_text = _select_text(entry, ".pdufa-date, .date")
            if not (company and drug and date_text):
                continue
            records.append(
                FDATrackerRaw(
                    company=company,
                    drug=drug,
                    date_text=date_text,
                    indication=_select_text(entry, ".indication"),
                    review_type=_select_text(entry, ".review-type"),
                    url=self.url,
                )
            )
        return records
