"""PDUFA Tracker — Raw → Canonical Normalizer/Deduplicator.

Converts raw source records into canonical ``PDUFARecord`` rows:
  adapt → validate → group by fuzzy (company, drug) key → pick the most
  complete candidate → back-fill empty fields → merge provenance.

Invalid candidates are dropped and counted, never fatal.
"""

import re
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Dict, Iterable, List, Optional, Tuple

from pdufa_tracker.core.errors import ValidationError
from pdufa_tracker.core.logging import get_logger
from pdufa_tracker.models.pdufa_models import PDUFARecord
from pdufa_tracker.models.raw_models import Candidate, RawRecord

logger = get_logger("pipeline.normalizer")

# Fields that count towards completeness; company, drug and date are required
OPTIONAL_FIELDS = (
    "ticker",
    "indication",
    "description",
    "review_type",
    "status",
    "source_url",
)

PLACEHOLDERS = {"", "n/a", "na", "unknown", "not specified", "-", "--", "tbd"}

CORPORATE_SUFFIXES = {
    "inc", "incorporated", "corp", "corporation", "co", "company", "plc",
    "ltd", "limited", "llc", "lp", "sa", "ag", "nv", "as", "se", "bv",
    "holdings", "holding", "group", "the",
}

DATE_FORMATS = (
    "%Y-%m-%d",
    "%m/%d/%Y",
    "%m-%d-%Y",
    "%B %d %Y",
    "%b %d %Y",
    "%d %B %Y",
    "%d %b %Y",
)

_TICKER_PATTERNS = (
    re.compile(r"\((?:[A-Za-z ]+:\s*)?([A-Z]{1,5})\)"),
    re.compile(r"\$([A-Z]{1,5})\b"),
)
_TICKER_PAREN = re.compile(r"\s*\((?:[A-Za-z ]+:\s*)?[A-Z]{1,5}\)")
_PARENS = re.compile(r"\([^)]*\)")
_ORDINAL = re.compile(r"(\d{1,2})(st|nd|rd|th)\b", re.IGNORECASE)
_NON_WORD = re.compile(r"[^a-z0-9]+")


@dataclass
class NormalizeResult:
    records: List[PDUFARecord] = field(default_factory=list)
    dropped: int = 0
    errors: List[str] = field(default_factory=list)


# ── Field helpers ──


def _clean(value: Optional[str]) -> str:
    """Collapse whitespace and blank out placeholder values."""
    text = " ".join((value or "").split())
    return "" if text.lower() in PLACEHOLDERS else text


def parse_pdufa_date(text: str) -> date:
    """Parse a calendar date from the formats the sources publish.

    Raises ValidationError for anything that is not a single calendar day,
    including quarter or month-only targets such as "Q3 2025".
    """
    raw = _clean(text)
    if not raw:
        raise ValidationError("pdufa_date", "missing PDUFA date")

    if re.match(r"^\d{4}-\d{2}-\d{2}T", raw):
        raw = raw[:10]
    candidate = _ORDINAL.sub(r"\1", raw)
    candidate = candidate.replace(",", " ").replace(".", " ")
    candidate = " ".join(candidate.split())

    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(candidate, fmt).date()
        except ValueError:
            continue
    raise ValidationError("pdufa_date", f"unparseable PDUFA date: {text!r}")


def extract_ticker(ticker: str, company: str) -> Optional[str]:
    """Explicit ticker if given, else one embedded in the company text."""
    explicit = _clean(ticker).lstrip("$").upper()
    if explicit and re.fullmatch(r"[A-Z][A-Z0-9.]{0,5}", explicit):
        return explicit
    for pattern in _TICKER_PATTERNS:
        m = pattern.search(company or "")
        if m:
            return m.group(1)
    return None


def clean_company(company: str) -> str:
    """Display name without an embedded "(NASDAQ: XYZ)" ticker."""
    return _clean(_TICKER_PAREN.sub("", company or ""))


def company_key(company: str) -> str:
    words = _NON_WORD.sub(" ", _PARENS.sub(" ", clean_company(company).lower())).split()
    while words and words[-1] in CORPORATE_SUFFIXES:
        words.pop()
    while words and words[0] == "the":
        words.pop(0)
    return " ".join(words)


def drug_key(drug: str) -> str:
    lowered = _clean(drug).lower()
    key = _NON_WORD.sub("", _PARENS.sub(" ", lowered))
    # Drug names given only in parentheses keep their content
    return key or _NON_WORD.sub("", lowered)


def _aware(ts: Optional[datetime]) -> datetime:
    if ts is None:
        return datetime.min.replace(tzinfo=timezone.utc)
    if ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts


def confidence_for(source_count: int) -> str:
    if source_count >= 3:
        return "high"
    if source_count == 2:
        return "medium"
    return "low"


# ── Validation ──


@dataclass
class _Valid:
    candidate: Candidate
    company: str
    drug: str
    pdufa_date: date
    ticker: Optional[str]
    key: Tuple[str, str]

    def completeness(self) -> int:
        score = 1 if self.ticker else 0
        for name in OPTIONAL_FIELDS[1:]:
            if _clean(getattr(self.candidate, name)):
                score += 1
        return score


def validate_candidate(candidate: Candidate) -> _Valid:
    company = clean_company(candidate.company)
    drug = _clean(candidate.drug)
    if not company:
        raise ValidationError("company", f"missing company ({candidate.source})")
    if not drug:
        raise ValidationError("drug", f"missing drug for {company} ({candidate.source})")
    pdufa_date = parse_pdufa_date(candidate.date_text)

    key = (company_key(company), drug_key(drug))
    if not all(key):
        raise ValidationError("company", f"empty match key for {company} / {drug}")

    return _Valid(
        candidate=candidate,
        company=company,
        drug=drug,
        pdufa_date=pdufa_date,
        ticker=extract_ticker(candidate.ticker, candidate.company),
        key=key,
    )


# ── Merge ──


def _merge_group(group: List[_Valid]) -> PDUFARecord:
    """Most complete candidate wins; ties go to the latest update."""
    ranked = sorted(
        group,
        key=lambda v: (v.completeness(), _aware(v.candidate.last_updated)),
        reverse=True,
    )
    best = ranked[0]

    values: Dict[str, str] = {
        name: _clean(getattr(best.candidate, name)) for name in OPTIONAL_FIELDS[1:]
    }
    ticker = best.ticker
    for other in ranked[1:]:
        ticker = ticker or other.ticker
        for name, current in values.items():
            if not current:
                values[name] = _clean(getattr(other.candidate, name))

    sources = sorted({v.candidate.source for v in group})
    last_updated = max(_aware(v.candidate.last_updated) for v in group)
    if last_updated.year == 1:
        last_updated = datetime.now(timezone.utc)

    return PDUFARecord(
        company_key=best.key[0],
        drug_key=best.key[1],
        ticker=ticker,
        company=best.company,
        drug=best.drug,
        pdufa_date=best.pdufa_date,
        source_ids=",".join(sources),
        confidence=confidence_for(len(sources)),
        last_updated=last_updated,
        **values,
    )


def normalize_candidates(candidates: Iterable[Candidate]) -> NormalizeResult:
    result = NormalizeResult()
    groups: Dict[Tuple[str, str], List[_Valid]] = defaultdict(list)

    for candidate in candidates:
        try:
            valid = validate_candidate(candidate)
        except ValidationError as e:
            result.dropped += 1
            result.errors.append(str(e))
            continue
        groups[valid.key].append(valid)

    result.records = sorted(
        (_merge_group(group) for group in groups.values()),
        key=lambda r: (r.pdufa_date, r.company_key, r.drug_key),
    )
    if result.dropped:
        logger.info(f"Dropped {result.dropped} invalid candidates")
    logger.info(
        f"Normalized {len(result.records)} canonical records",
        extra={"record_count": len(result.records)},
    )
    return result


def normalize(raw_records: Iterable[RawRecord]) -> NormalizeResult:
    """Adapt every raw variant and normalize the combined candidate list."""
    return normalize_candidates(raw.to_candidate() for raw in raw_records)
