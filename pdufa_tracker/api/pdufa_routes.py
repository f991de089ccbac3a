"""PDUFA Tracker — PDUFA API Routes.

Every response uses the same envelope:
``{"success": bool, "data" | "message": ..., "timestamp": iso8601}``.
Errors are rendered by the exception handlers registered in ``main``.
"""

import re
from datetime import date, datetime, timezone
from typing import Any, Optional

from fastapi import APIRouter, Query, Request

from pdufa_tracker.core.errors import RequestError
from pdufa_tracker.core.logging import get_logger
from pdufa_tracker.scheduler.jobs import STATUS_FAILURE, PDUFAScheduler
from pdufa_tracker.services.pdufa_service import PDUFAService

logger = get_logger("api.pdufa")

router = APIRouter(prefix="/api/pdufa", tags=["PDUFA"])

_ISO_DATE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


# ── Envelope ──


def envelope(
    data: Any = None,
    message: Optional[str] = None,
    success: bool = True,
    **extra: Any,
) -> dict:
    body: dict = {"success": success}
    if data is not None:
        body["data"] = data
    if message is not None:
        body["message"] = message
    body.update(extra)
    body["timestamp"] = datetime.now(timezone.utc).isoformat()
    return body


def _service(request: Request) -> PDUFAService:
    return request.app.state.pdufa_service


def _scheduler(request: Request) -> PDUFAScheduler:
    return request.app.state.scheduler


# ── Queries ──


@router.get("")
async def list_pdufas(
    request: Request,
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=500),
):
    """All canonical records, paginated, soonest first."""
    result, cached = await _service(request).list_all(page, limit)
    return envelope(
        data=result["items"],
        total=result["total"],
        pagination=result["pagination"],
        cached=cached,
    )


@router.get("/upcoming")
async def upcoming_pdufas(request: Request, days: int = Query(30, ge=0, le=3650)):
    """Decisions between today and today + days, inclusive."""
    data, cached = await _service(request).upcoming(days)
    return envelope(data=data, total=len(data), cached=cached)


@router.get("/search")
async def search_pdufas(request: Request, q: Optional[str] = Query(None)):
    """Case-insensitive search across company, drug, ticker and indication."""
    if q is None or not q.strip():
        raise RequestError("Search query parameter 'q' is required")
    data, cached = await _service(request).search(q.strip())
    return envelope(data=data, total=len(data), cached=cached)


@router.get("/stats")
async def pdufa_stats(request: Request):
    data, cached = await _service(request).stats()
    return envelope(data=data, cached=cached)


@router.get("/date/{on}")
async def pdufas_on_date(request: Request, on: str):
    if not _ISO_DATE.match(on):
        raise RequestError("Invalid date format. Use YYYY-MM-DD")
    try:
        parsed = date.fromisoformat(on)
    except ValueError:
        raise RequestError(f"Invalid date: {on}")
    data, cached = await _service(request).by_date(parsed)
    return envelope(data=data, total=len(data), cached=cached)


@router.get("/ticker/{ticker}")
async def pdufas_by_ticker(request: Request, ticker: str):
    if not ticker.strip():
        raise RequestError("Ticker is required")
    data, cached = await _service(request).by_ticker(ticker.strip())
    return envelope(data=data, total=len(data), cached=cached)


@router.get("/company/{company}")
async def pdufas_by_company(request: Request, company: str):
    if not company.strip():
        raise RequestError("Company is required")
    data, cached = await _service(request).by_company(company.strip())
    return envelope(data=data, total=len(data), cached=cached)


# ── Scheduler ──


@router.get("/scheduler/status")
async def scheduler_status(request: Request):
    return envelope(data=_scheduler(request).status())


@router.post("/scheduler/check")
async def scheduler_check(request: Request):
    """Run a full cycle now. 409 if one is already running."""
    result = await _scheduler(request).run_manual_check()
    return envelope(
        data=result.to_dict(),
        message=f"Manual PDUFA check {result.status}",
        success=result.status != STATUS_FAILURE,
    )


@router.post("/scheduler/test-alert")
async def scheduler_test_alert(request: Request):
    sent = await _scheduler(request).send_test_alert()
    return envelope(
        data={"sent": sent},
        message="Test alert sent" if sent else "Test alert was not delivered",
        success=sent,
    )


@router.post("/scheduler/validate")
async def scheduler_validate(request: Request):
    results = await _scheduler(request).validate_system()
    return envelope(data=results, success=all(results.values()))


# ── Cache ──


@router.post("/cache/clear")
async def clear_cache(request: Request):
    cleared = _service(request).clear_cache()
    return envelope(data={"cleared": cleared}, message="Cache cleared")


# ── Audit ──


@router.get("/{record_id}/revisions")
async def record_revisions(request: Request, record_id: int):
    """History of PDUFA date changes for one record."""
    data = await _service(request).revisions(record_id)
    if data is None:
        raise RequestError(f"PDUFA record {record_id} not found", status_code=404)
    return envelope(data=data, total=len(data))
