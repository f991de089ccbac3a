"""PDUFA Tracker — Persistent Store.

All reads and writes of canonical records go through ``PDUFAStore``; the
alert idempotency set lives in ``AlertLogRepository``. Both wrap any
SQLAlchemy failure in ``PersistenceError``.
"""

import math
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from typing import Iterable, Iterator, List, Optional

from sqlalchemy import func, or_, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from pdufa_tracker.core.errors import PersistenceError
from pdufa_tracker.core.logging import get_logger
from pdufa_tracker.models.pdufa_models import (
    AlertLog,
    PDUFADateRevision,
    PDUFARecord,
    PDUFAStats,
)

logger = get_logger("store")

# Fields compared on upsert; a change in any of them bumps last_updated
CONTENT_FIELDS = (
    "ticker",
    "company",
    "drug",
    "pdufa_date",
    "indication",
    "description",
    "review_type",
    "status",
    "source_url",
    "source_ids",
    "confidence",
)

DEFAULT_PAGE = 1
DEFAULT_LIMIT = 50


@dataclass
class UpsertResult:
    inserted: int = 0
    updated: int = 0
    unchanged: int = 0
    revised: int = 0

    @property
    def total(self) -> int:
        return self.inserted + self.updated + self.unchanged


@dataclass
class Page:
    items: List[PDUFARecord] = field(default_factory=list)
    total: int = 0
    page: int = DEFAULT_PAGE
    limit: int = DEFAULT_LIMIT

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.limit else 0


class _Repository:
    def __init__(self, engine: Engine):
        self.engine = engine

    @contextmanager
    def _session(self) -> Iterator[Session]:
        try:
            with Session(self.engine) as session:
                yield session
        except SQLAlchemyError as e:
            logger.error(f"Store operation failed: {e}")
            raise PersistenceError(f"PDUFA store unavailable: {e.__class__.__name__}") from e


class PDUFAStore(_Repository):
    """Durable store of canonical PDUFA records."""

    # ── Writes ──

    def upsert(self, records: Iterable[PDUFARecord]) -> UpsertResult:
        """Insert or update by (company_key, drug_key). Idempotent.

        A revised PDUFA date is kept in ``pdufa_date_revisions`` before the
        record is updated in place.
        """
        result = UpsertResult()
        with self._session() as session:
            for record in records:
                existing = session.exec(
                    select(PDUFARecord).where(
                        PDUFARecord.company_key == record.company_key,
                        PDUFARecord.drug_key == record.drug_key,
                    )
                ).first()

                if existing is None:
                    data = record.model_dump(exclude={"id"})
                    session.add(PDUFARecord(**data))
                    result.inserted += 1
                    continue

                changed = [
                    name
                    for name in CONTENT_FIELDS
                    if getattr(existing, name) != getattr(record, name)
                ]
                if not changed:
                    result.unchanged += 1
                    continue

                if existing.pdufa_date != record.pdufa_date:
                    session.add(
                        PDUFADateRevision(
                            record_id=existing.id,
                            previous_date=existing.pdufa_date,
                            new_date=record.pdufa_date,
                            source_ids=record.source_ids,
                        )
                    )
                    result.revised += 1
                    logger.info(
                        f"PDUFA date revised for {existing.company} / {existing.drug}: "
                        f"{existing.pdufa_date} → {record.pdufa_date}"
                    )

                for name in changed:
                    setattr(existing, name, getattr(record, name))
                existing.last_updated = record.last_updated or datetime.now(timezone.utc)
                session.add(existing)
                result.updated += 1

            session.commit()

        logger.info(
            f"Upserted {result.total} records "
            f"({result.inserted} new, {result.updated} updated, {result.unchanged} unchanged)",
            extra={"record_count": result.total},
        )
        return result

    # ── Reads ──

    def get(self, record_id: int) -> Optional[PDUFARecord]:
        with self._session() as session:
            return session.get(PDUFARecord, record_id)

    def query_all(self, page: int = DEFAULT_PAGE, limit: int = DEFAULT_LIMIT) -> Page:
        page = max(page, 1)
        limit = max(limit, 1)
        with self._session() as session:
            total = session.exec(select(func.count()).select_from(PDUFARecord)).one()
            items = session.exec(
                select(PDUFARecord)
                .order_by(PDUFARecord.pdufa_date, PDUFARecord.company)
                .offset((page - 1) * limit)
                .limit(limit)
            ).all()
        return Page(items=list(items), total=total, page=page, limit=limit)

    def query_upcoming(self, days: int, today: Optional[date] = None) -> List[PDUFARecord]:
        """Records with pdufa_date in [today, today + days], soonest first."""
        today = today or date.today()
        end = today + timedelta(days=max(days, 0))
        with self._session() as session:
            return list(
                session.exec(
                    select(PDUFARecord)
                    .where(PDUFARecord.pdufa_date >= today, PDUFARecord.pdufa_date <= end)
                    .order_by(PDUFARecord.pdufa_date, PDUFARecord.company)
                ).all()
            )

    def query_by_date(self, on: date) -> List[PDUFARecord]:
        with self._session() as session:
            return list(
                session.exec(
                    select(PDUFARecord)
                    .where(PDUFARecord.pdufa_date == on)
                    .order_by(PDUFARecord.company)
                ).all()
            )

    def query_by_ticker(self, ticker: str) -> List[PDUFARecord]:
        with self._session() as session:
            return list(
                session.exec(
                    select(PDUFARecord)
                    .where(func.upper(PDUFARecord.ticker) == ticker.strip().upper())
                    .order_by(PDUFARecord.pdufa_date)
                ).all()
            )

    def query_by_company(self, company: str) -> List[PDUFARecord]:
        term = company.strip()
        with self._session() as session:
            return list(
                session.exec(
                    select(PDUFARecord)
                    .where(PDUFARecord.company.icontains(term, autoescape=True))
                    .order_by(PDUFARecord.pdufa_date)
                ).all()
            )

    def search(self, query: str) -> List[PDUFARecord]:
        """Case-insensitive substring match over company, drug, ticker, indication."""
        term = query.strip()
        if not term:
            return []
        columns = (
            PDUFARecord.company,
            PDUFARecord.drug,
            PDUFARecord.ticker,
            PDUFARecord.indication,
        )
        with self._session() as session:
            return list(
                session.exec(
                    select(PDUFARecord)
                    .where(
                        or_(*(c.icontains(term, autoescape=True) for c in columns))
                    )
                    .order_by(PDUFARecord.pdufa_date)
                ).all()
            )

    def revisions(self, record_id: int) -> List[PDUFADateRevision]:
        with self._session() as session:
            return list(
                session.exec(
                    select(PDUFADateRevision)
                    .where(PDUFADateRevision.record_id == record_id)
                    .order_by(PDUFADateRevision.revised_at)
                ).all()
            )

    def stats(self, today: Optional[date] = None) -> PDUFAStats:
        today = today or date.today()

        def count_between(session: Session, start: date, end: date) -> int:
            return session.exec(
                select(func.count())
                .select_from(PDUFARecord)
                .where(PDUFARecord.pdufa_date >= start, PDUFARecord.pdufa_date <= end)
            ).one()

        with self._session() as session:
            total = session.exec(select(func.count()).select_from(PDUFARecord)).one()
            upcoming = session.exec(
                select(func.count())
                .select_from(PDUFARecord)
                .where(PDUFARecord.pdufa_date >= today)
            ).one()
            last_updated = session.exec(select(func.max(PDUFARecord.last_updated))).one()

            by_source: dict = {}
            for source_ids in session.exec(select(PDUFARecord.source_ids)).all():
                for source in filter(None, (source_ids or "").split(",")):
                    by_source[source] = by_source.get(source, 0) + 1

            return PDUFAStats(
                total_pdufas=total,
                upcoming_pdufas=upcoming,
                today_pdufas=count_between(session, today, today),
                tomorrow_pdufas=count_between(
                    session, today + timedelta(days=1), today + timedelta(days=1)
                ),
                this_week_pdufas=count_between(session, today, today + timedelta(days=7)),
                this_month_pdufas=count_between(session, today, today + timedelta(days=30)),
                by_source=dict(sorted(by_source.items())),
                last_updated=last_updated,
            )

    def ping(self) -> bool:
        with self._session() as session:
            session.connection().execute(text("SELECT 1"))
        return True


class AlertLogRepository(_Repository):
    """Idempotency set of delivered alerts, one entry per (company, drug, date)."""

    def _entry(
        self, session: Session, company_key: str, drug_key: str, pdufa_date: date
    ) -> Optional[AlertLog]:
        return session.exec(
            select(AlertLog).where(
                AlertLog.company_key == company_key,
                AlertLog.drug_key == drug_key,
                AlertLog.pdufa_date == pdufa_date,
            )
        ).first()

    def last_alert(
        self,
        company_key: str,
        drug_key: str,
        pdufa_date: date,
        since: datetime,
    ) -> Optional[str]:
        """Type of the alert sent for this decision since ``since``, if any."""
        # SQLite hands back naive datetimes; compare in naive UTC
        cutoff = since.astimezone(timezone.utc).replace(tzinfo=None) if since.tzinfo else since
        with self._session() as session:
            entry = self._entry(session, company_key, drug_key, pdufa_date)
        if entry is None:
            return None
        sent_at = entry.sent_at
        if sent_at.tzinfo is not None:
            sent_at = sent_at.astimezone(timezone.utc).replace(tzinfo=None)
        return entry.alert_type if sent_at >= cutoff else None

    def mark_alerted(self, records: Iterable[PDUFARecord], alert_type: str) -> int:
        now = datetime.now(timezone.utc)
        count = 0
        with self._session() as session:
            for record in records:
                entry = self._entry(
                    session, record.company_key, record.drug_key, record.pdufa_date
                )
                if entry is None:
                    entry = AlertLog(
                        company_key=record.company_key,
                        drug_key=record.drug_key,
                        pdufa_date=record.pdufa_date,
                        alert_type=alert_type,
                    )
                entry.alert_type = alert_type
                entry.sent_at = now
                session.add(entry)
                count += 1
            session.commit()
        return count
