"""PDUFA Tracker — CheckRare orphan-drug PDUFA dates source.

CheckRare publishes one page per year; the current and next year are both
polled so decisions early next year show up before January.
"""

from datetime import date
from typing import List, Optional

from bs4 import BeautifulSoup

from pdufa_tracker.connectors.sources.base import BaseSource
from pdufa_tracker.connectors.sources.html_tables import iter_table_rows
from pdufa_tracker.core.errors import FetchError
from pdufa_tracker.core.logging import get_logger
from pdufa_tracker.models.raw_models import CheckRareRaw

logger = get_logger("sources.checkrare")

CHECKRARE_URL = "https://checkrare.com/{year}-orphan-drugs-pdufa-dates-and-fda-approvals/"

COLUMNS = {
    "company": ("company", "sponsor"),
    "drug": ("drug", "product", "therapy"),
    "date": ("pdufa", "date"),
    "indication": ("indication", "disease", "condition"),
}


class CheckRareSource(BaseSource):
    """Yearly HTML tables: company, drug, date, indication."""

    name = "checkrare"

    def __init__(self, *args, years: Optional[List[int]] = None, **kwargs):
        super().__init__(*args, **kwargs)
        current = date.today().year
        self.years = years or [current, current + 1]

    def urls(self) -> List[str]:
        return [CHECKRARE_URL.format(year=y) for y in self.years]

    async def _fetch(self) -> List[CheckRareRaw]:
        records: List[CheckRareRaw] = []
        errors: List[FetchError] = []
        for url in self.urls():
            try:
                html = await self.get_text(url)
            except FetchError as e:
                # Next year's page usually 404s until late in the year
                logger.warning(f"CheckRare page skipped: {e}", extra={"source": self.name})
                errors.append(e)
                continue
            records.extend(self.parse(html, url))

        if errors and len(errors) == len(self.years):
            raise errors[0]
        return records

    def parse(self, html: str, url: str) -> List[CheckRareRaw]:
        soup = BeautifulSoup(html, "html.parser")
        return [
            CheckRareRaw(
                company=row["company"],
                drug=row["drug"],
                date_text=row["date"],
                indication=row.get("indication", ""),
                url=url,
            )
            for row in iter_table_rows(
                soup, COLUMNS, positional=("company", "drug", "date", "indication")
            )
        ]
