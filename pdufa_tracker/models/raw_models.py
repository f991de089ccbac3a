"""PDUFA Tracker — Raw Source Models (Immutable).

Each source yields its own record shape, tagged with a ``source`` literal.
``RawRecord`` is the discriminated union of all of them; ``to_candidate``
adapts a variant into the loose ``Candidate`` shape the normalizer consumes.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Candidate:
    """Source-agnostic candidate record. Dates are still unparsed text."""

    source: str
    company: str
    drug: str
    date_text: str
    ticker: str = ""
    indication: str = ""
    description: str = ""
    review_type: str = ""
    status: str = ""
    source_url: str = ""
    last_updated: Optional[datetime] = None


class RawBase(BaseModel):
    """Fields every raw record carries."""

    model_config = ConfigDict(frozen=True)

    url: str = ""
    fetched_at: datetime = Field(default_factory=_now)


class RTTNewsRaw(RawBase):
    """Row from the RTTNews FDA calendar table."""

    source: Literal["rttnews"] = "rttnews"
    company: str
    drug: str
    date_text: str
    status: str = ""

    def to_candidate(self) -> Candidate:
        return Candidate(
            source=self.source,
            company=self.company,
            drug=self.drug,
            date_text=self.date_text,
            status=self.status,
            source_url=self.url,
            last_updated=self.fetched_at,
        )


class CheckRareRaw(RawBase):
    """Row from a CheckRare orphan-drug PDUFA table."""

    source: Literal["checkrare"] = "checkrare"
    company: str
    drug: str
    date_text: str
    indication: str = ""

    def to_candidate(self) -> Candidate:
        return Candidate(
            source=self.source,
            company=self.company,
            drug=self.drug,
            date_text=self.date_text,
            indication=self.indication,
            source_url=self.url,
            last_updated=self.fetched_at,
        )


class FDATrackerRaw(RawBase):
    """Calendar entry block from FDATracker."""

    source: Literal["fdatracker"] = "fdatracker"
    company: str
    drug: str
    date_text: str
    indication: str = ""
    review_type: str = ""

    def to_candidate(self) -> Candidate:
        return Candidate(
            source=self.source,
            company=self.company,
            drug=self.drug,
            date_text=self.date_text,
            indication=self.indication,
            review_type=self.review_type,
            source_url=self.url,
            last_updated=self.fetched_at,
        )


class BioPharmCatalystRaw(RawBase):
    """Catalyst entry from BioPharmCatalyst (embedded JSON or table row)."""

    source: Literal["biopharmcatalyst"] = "biopharmcatalyst"
    ticker: str = ""
    company: str
    drug: str
    catalyst_date: str
    indication: str = ""
    stage: str = ""
    note: str = ""
    updated_at: Optional[datetime] = None

    def to_candidate(self) -> Candidate:
        return Candidate(
            source=self.source,
            company=self.company,
            drug=self.drug,
            date_text=self.catalyst_date,
            ticker=self.ticker,
            indication=self.indication,
            description=self.note,
            status=self.stage,
            source_url=self.url,
            last_updated=self.updated_at or self.fetched_at,
        )


class SeedRaw(RawBase):
    """Manually curated record loaded from the local seed file."""

    source: Literal["seed_file"] = "seed_file"
    ticker: str = ""
    company: str = ""
    drug: str = ""
    pdufa_date: str = ""
    indication: str = ""
    description: str = ""
    review_type: str = ""
    status: str = ""
    source_url: str = ""
    last_updated: Optional[datetime] = None

    def to_candidate(self) -> Candidate:
        return Candidate(
            source=self.source,
            company=self.company,
            drug=self.drug,
            date_text=self.pdufa_date,
            ticker=self.ticker,
            indication=self.indication,
            description=self.description,
            review_type=self.review_type,
            status=self.status,
            source_url=self.source_url or self.url,
            last_updated=self.last_updated or self.fetched_at,
        )


RawRecord = Annotated[
    Union[RTTNewsRaw, CheckRareRaw, FDATrackerRaw, BioPharmCatalystRaw, SeedRaw],
    Field(discriminator="source"),
]
