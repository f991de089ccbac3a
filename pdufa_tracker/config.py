"""PDUFA Tracker — Central Configuration via Pydantic Settings."""

import os
from typing import List, Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables / .env file."""

    # ── Database ──
    database_url: str = ""

    # ── App ──
    log_level: str = "INFO"
    host: str = "0.0.0.0"
    port: int = 3001

    # ── Scheduler ──
    scheduler_enabled: bool = True
    check_time: str = "08:00"  # HH:MM, daily
    scheduler_timezone: str = "America/New_York"
    weekly_summary_day: str = "monday"
    run_on_startup: bool = False

    # ── Sources ──
    enabled_sources: str = "rttnews,checkrare,fdatracker,biopharmcatalyst"
    seed_file: Optional[str] = None
    http_timeout: float = 15.0
    fetch_max_retries: int = 3

    # ── Cache ──
    cache_ttl_seconds: int = 300

    # ── Discord ──
    discord_webhook_url: str = ""
    discord_username: str = "PDUFA Alert Bot"
    discord_avatar_url: Optional[str] = None

    # ── Alerts ──
    alert_lookahead_days: int = 7
    alert_suppression_days: int = 30
    alert_day_of_reminder: bool = False
    alert_max_attempts: int = 4
    alert_backoff_base: float = 1.0
    alert_backoff_max: float = 30.0

    @property
    def effective_database_url(self) -> str:
        """Return the configured URL if set, otherwise fall back to SQLite."""
        if self.database_url:
            return self.database_url
        # Vercel has a read-only filesystem; use /tmp for SQLite
        if os.environ.get("VERCEL"):
            return "sqlite:////tmp/pdufa.db"
        return "sqlite:///./pdufa.db"

    @property
    def source_names(self) -> List[str]:
        names = [s.strip().lower() for s in self.enabled_sources.split(",")]
        names = [n for n in names if n]
        if self.seed_file and "seed_file" not in names:
            names.append("seed_file")
        return names

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


settings = Settings()
