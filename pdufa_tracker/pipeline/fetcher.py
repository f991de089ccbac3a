"""PDUFA Tracker — Concurrent Source Fan-out.

Runs every enabled source at once. One source failing never aborts the
others: failures are collected into the outcome, not raised.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Type

from pdufa_tracker.config import settings
from pdufa_tracker.connectors.sources.base import BaseSource
from pdufa_tracker.connectors.sources.biopharmcatalyst import BioPharmCatalystSource
from pdufa_tracker.connectors.sources.checkrare import CheckRareSource
from pdufa_tracker.connectors.sources.fdatracker import FDATrackerSource
from pdufa_tracker.connectors.sources.rttnews import RTTNewsSource
from pdufa_tracker.connectors.sources.seed_file import SeedFileSource
from pdufa_tracker.core.errors import FetchError
from pdufa_tracker.core.logging import get_logger
from pdufa_tracker.models.raw_models import RawRecord

logger = get_logger("pipeline.fetcher")

SOURCE_REGISTRY: Dict[str, Type[BaseSource]] = {
    RTTNewsSource.name: RTTNewsSource,
    CheckRareSource.name: CheckRareSource,
    FDATrackerSource.name: FDATrackerSource,
    BioPharmCatalystSource.name: BioPharmCatalystSource,
    SeedFileSource.name: SeedFileSource,
}


@dataclass
class FetchOutcome:
    """Combined result of one fan-out across all sources."""

    records: List[RawRecord] = field(default_factory=list)
    succeeded: List[str] = field(default_factory=list)
    errors: Dict[str, str] = field(default_factory=dict)

    @property
    def all_failed(self) -> bool:
        return not self.succeeded

    @property
    def partial(self) -> bool:
        return bool(self.succeeded) and bool(self.errors)


def build_sources(names: Optional[Sequence[str]] = None) -> List[BaseSource]:
    """Instantiate the configured sources, skipping unknown names."""
    sources: List[BaseSource] = []
    for name in names if names is not None else settings.source_names:
        cls = SOURCE_REGISTRY.get(name)
        if cls is None:
            logger.warning(f"Unknown source '{name}' ignored")
            continue
        sources.append(cls())
    return sources


async def fetch_all(sources: Sequence[BaseSource]) -> FetchOutcome:
    """Fetch every source concurrently and collect records and failures."""
    outcome = FetchOutcome()
    if not sources:
        return outcome

    results = await asyncio.gather(
        *(source.fetch() for source in sources), return_exceptions=True
    )

    for source, result in zip(sources, results):
        if isinstance(result, FetchError):
            outcome.errors[source.name] = str(result)
            logger.warning(f"Source failed: {result}", extra={"source": source.name})
        elif isinstance(result, BaseException):
            outcome.errors[source.name] = f"{type(result).__name__}: {result}"
            logger.error(
                f"Source {source.name} raised unexpectedly: {result}",
                extra={"source": source.name},
            )
        else:
            outcome.records.extend(result)
            outcome.succeeded.append(source.name)

    logger.info(
        f"Fetched {len(outcome.records)} raw records "
        f"({len(outcome.succeeded)} ok, {len(outcome.errors)} failed)",
        extra={"record_count": len(outcome.records)},
    )
    return outcome
