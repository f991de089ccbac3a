"""PDUFA Tracker — RTTNews FDA Calendar source."""

from typing import List

from bs4 import BeautifulSoup

from pdufa_tracker.connectors.sources.base import BaseSource
from pdufa_tracker.connectors.sources.html_tables import iter_table_rows
from pdufa_tracker.models.raw_models import RTTNewsRaw

RTTNEWS_URL = "https://www.rttnews.com/corpinfo/fdacalendar.aspx"

COLUMNS = {
    "company": ("company",),
    "drug": ("drug",),
    "date": ("date",),
    "status": ("status", "event", "outcome"),
}


class RTTNewsSource(BaseSource):
    """Server-rendered table: company, drug, date, status."""

    name = "rttnews"

    def __init__(self, *args, url: str = RTTNEWS_URL, **kwargs):
        super().__init__(*args, **kwargs)
        self.url = url

    async def _fetch(self) -> List[RTTNewsRaw]:
        html = await self.get_text(self.url)
        return self.parse(html)

    def parse(self, html: str) -> List[RTTNewsRaw]:
        soup = BeautifulSoup(html, "html.parser")
        return [
            RTTNewsRaw(
                company=row["company"],
                drug=row["drug"],
                date_text=row["date"],
                status=row.get("status", ""),
                url=self.url,
            )
            for row in iter_table_rows(
                soup, COLUMNS, positional=("company", "drug", "date", "status")
            )
        ]
