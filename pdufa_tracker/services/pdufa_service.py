"""PDUFA Tracker — Cached Query Service.

Read path used by the API: cache first, then the store. Store calls run in
a worker thread so a cycle writing to the store never blocks the loop.
Every method returns ``(data, cached)``.
"""

import asyncio
from datetime import date
from typing import Any, Callable, Dict, List, Optional, Tuple

from pdufa_tracker.core.logging import get_logger
from pdufa_tracker.models.pdufa_models import PDUFARecord, PDUFARecordOut, RevisionOut
from pdufa_tracker.store.cache import MISS, TTLCache
from pdufa_tracker.store.repository import PDUFAStore

logger = get_logger("services.pdufa")


def serialize(records: List[PDUFARecord], today: Optional[date] = None) -> List[Dict[str, Any]]:
    return [
        PDUFARecordOut.from_record(r, today).model_dump(mode="json", by_alias=True)
        for r in records
    ]


class PDUFAService:
    def __init__(self, store: PDUFAStore, cache: TTLCache):
        self.store = store
        self.cache = cache

    async def _cached(self, key: str, load: Callable[[], Any]) -> Tuple[Any, bool]:
        value = self.cache.get(key)
        if value is not MISS:
            return value, True
        generation = self.cache.generation
        value = await asyncio.to_thread(load)
        if not self.cache.set(key, value, generation=generation):
            logger.debug(f"Cache cleared during load of {key}; result not cached")
        return value, False

    async def list_all(self, page: int, limit: int) -> Tuple[Dict[str, Any], bool]:
        def load():
            result = self.store.query_all(page=page, limit=limit)
            return {
                "items": serialize(result.items),
                "total": result.total,
                "pagination": {
                    "page": result.page,
                    "limit": result.limit,
                    "totalPages": result.total_pages,
                },
            }

        return await self._cached(f"all:{page}:{limit}", load)

    async def upcoming(self, days: int) -> Tuple[List[Dict[str, Any]], bool]:
        return await self._cached(
            f"upcoming:{days}", lambda: serialize(self.store.query_upcoming(days))
        )

    async def by_date(self, on: date) -> Tuple[List[Dict[str, Any]], bool]:
        return await self._cached(
            f"date:{on.isoformat()}", lambda: serialize(self.store.query_by_date(on))
        )

    async def by_ticker(self, ticker: str) -> Tuple[List[Dict[str, Any]], bool]:
        return await self._cached(
            f"ticker:{ticker.upper()}", lambda: serialize(self.store.query_by_ticker(ticker))
        )

    async def by_company(self, company: str) -> Tuple[List[Dict[str, Any]], bool]:
        return await self._cached(
            f"company:{company.lower()}",
            lambda: serialize(self.store.query_by_company(company)),
        )

    async def search(self, query: str) -> Tuple[List[Dict[str, Any]], bool]:
        return await self._cached(
            f"search:{query.lower()}", lambda: serialize(self.store.search(query))
        )

    async def stats(self) -> Tuple[Dict[str, Any], bool]:
        return await self._cached(
            "stats", lambda: self.store.stats().model_dump(mode="json", by_alias=True)
        )

    async def revisions(self, record_id: int) -> Optional[List[Dict[str, Any]]]:
        """Date-change history, or None when the record does not exist. Uncached."""

        def load():
            if self.store.get(record_id) is None:
                return None
            return [
                RevisionOut.from_revision(r).model_dump(mode="json", by_alias=True)
                for r in self.store.revisions(record_id)
            ]

        return await asyncio.to_thread(load)

    def clear_cache(self) -> int:
        return self.cache.clear()
