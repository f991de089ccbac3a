"""PDUFA Tracker — Local seed file source.

Loads manually curated PDUFA dates from a JSON list, e.g.::

    [{"ticker": "ASND", "company": "Ascendis Pharma A/S",
      "drug": "TransCon CNP", "pdufa_date": "2025-11-30"}]
"""

import asyncio
import json
from pathlib import Path
from typing import List, Optional

from pydantic import ValidationError as PydanticValidationError

from pdufa_tracker.config import settings
from pdufa_tracker.connectors.sources.base import BaseSource
from pdufa_tracker.core.errors import FetchError
from pdufa_tracker.core.logging import get_logger
from pdufa_tracker.models.raw_models import SeedRaw

logger = get_logger("sources.seed_file")


class SeedFileSource(BaseSource):
    name = "seed_file"

    def __init__(self, *args, path: Optional[str] = None, **kwargs):
        super().__init__(*args, **kwargs)
        self.path = Path(path or settings.seed_file or "")

    async def _fetch(self) -> List[SeedRaw]:
        if not self.path.is_file():
            raise FetchError(self.name, f"seed file not found: {self.path}")
        text = await asyncio.to_thread(self.path.read_text, encoding="utf-8")
        try:
            items = json.loads(text)
        except json.JSONDecodeError as e:
            raise FetchError(self.name, f"invalid JSON in {self.path}: {e}") from e
        if not isinstance(items, list):
            raise FetchError(self.name, "seed file must contain a JSON list")

        records = []
        for i, item in enumerate(items):
            try:
                records.append(SeedRaw.model_validate({**item, "url": str(self.path)}))
            except (PydanticValidationError, TypeError) as e:
                logger.warning(f"Seed item {i} skipped: {e}", extra={"source": self.name})
        return records
