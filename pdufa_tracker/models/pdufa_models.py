"""PDUFA Tracker — Canonical PDUFA Models.

``PDUFARecord`` is the deduplicated, validated representation of a single
FDA decision. One current row exists per (company_key, drug_key); revised
dates are kept in ``PDUFADateRevision`` for audit.
"""

from datetime import date, datetime, timezone
from typing import List, Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel
from sqlmodel import SQLModel, Field, UniqueConstraint


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ─────────────────────────────────────────────
# DATABASE MODELS
# ─────────────────────────────────────────────


class PDUFARecord(SQLModel, table=True):
    """Canonical PDUFA decision record.

    Unique constraint on (company_key, drug_key) makes upserts idempotent:
    re-running a cycle updates the row instead of duplicating it.
    """

    __tablename__ = "pdufa_records"
    __table_args__ = (
        UniqueConstraint("company_key", "drug_key", name="uq_pdufa_company_drug"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    company_key: str = Field(index=True, description="Normalized company match key")
    drug_key: str = Field(index=True, description="Normalized drug match key")
    ticker: Optional[str] = Field(default=None, index=True)
    company: str = Field(description="Sponsor company name")
    drug: str = Field(description="Drug or biologic name")
    pdufa_date: date = Field(index=True, description="FDA action deadline")
    indication: str = Field(default="")
    description: str = Field(default="")
    review_type: str = Field(default="", description="Priority Review | Standard Review")
    status: str = Field(default="")
    source_url: str = Field(default="")
    source_ids: str = Field(default="", description="Comma-separated source names")
    confidence: str = Field(default="low", description="high | medium | low")
    last_updated: datetime = Field(default_factory=utcnow)

    @property
    def sources(self) -> List[str]:
        return [s for s in self.source_ids.split(",") if s]


class PDUFADateRevision(SQLModel, table=True):
    """Audit trail of superseded PDUFA dates. Never modified."""

    __tablename__ = "pdufa_date_revisions"

    id: Optional[int] = Field(default=None, primary_key=True)
    record_id: int = Field(index=True, foreign_key="pdufa_records.id")
    previous_date: date
    new_date: date
    source_ids: str = Field(default="")
    revised_at: datetime = Field(default_factory=utcnow)


class AlertLog(SQLModel, table=True):
    """Idempotency set for delivered alerts."""

    __tablename__ = "alert_log"
    __table_args__ = (
        UniqueConstraint(
            "company_key",
            "drug_key",
            "pdufa_date",
            name="uq_alert_identity",
        ),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    company_key: str = Field(index=True)
    drug_key: str = Field(index=True)
    pdufa_date: date = Field(index=True)
    alert_type: str = Field(description="Type of the last alert sent for this decision")
    sent_at: datetime = Field(default_factory=utcnow)


# ─────────────────────────────────────────────
# PYDANTIC SCHEMAS — API output
# ─────────────────────────────────────────────


class CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, from_attributes=True
    )


class PDUFARecordOut(CamelModel):
    """Public representation of a canonical record."""

    id: Optional[int] = None
    ticker: Optional[str] = None
    company: str
    drug: str
    pdufa_date: date
    indication: str = ""
    description: str = ""
    review_type: str = ""
    status: str = ""
    source_url: str = ""
    source_ids: List[str] = []
    confidence: str = "low"
    last_updated: datetime
    days_until: Optional[int] = None

    @classmethod
    def from_record(cls, record: PDUFARecord, today: Optional[date] = None) -> "PDUFARecordOut":
        today = today or date.today()
        return cls(
            id=record.id,
            ticker=record.ticker,
            company=record.company,
            drug=record.drug,
            pdufa_date=record.pdufa_date,
            indication=record.indication,
            description=record.description,
            review_type=record.review_type,
            status=record.status,
            source_url=record.source_url,
            source_ids=record.sources,
            confidence=record.confidence,
            last_updated=record.last_updated,
            days_until=(record.pdufa_date - today).days,
        )


class RevisionOut(CamelModel):
    previous_date: date
    new_date: date
    source_ids: List[str] = []
    revised_at: datetime

    @classmethod
    def from_revision(cls, rev: PDUFADateRevision) -> "RevisionOut":
        return cls(
            previous_date=rev.previous_date,
            new_date=rev.new_date,
            source_ids=[s for s in rev.source_ids.split(",") if s],
            revised_at=rev.revised_at,
        )


class PDUFAStats(CamelModel):
    total_pdufas: int = 0
    upcoming_pdufas: int = 0
    today_pdufas: int = 0
    tomorrow_pdufas: int = 0
    this_week_pdufas: int = 0
    this_month_pdufas: int = 0
    by_source: dict = {}
    last_updated: Optional[datetime] = None
