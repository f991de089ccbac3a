"""PDUFA Tracker — Database Engine & Session Factory."""

from sqlalchemy import text
from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel, create_engine

from pdufa_tracker.config import settings
from pdufa_tracker.core.logging import get_logger, mask_secret_url

logger = get_logger("database")

db_url = settings.effective_database_url


def build_engine(url: str) -> Engine:
    """Create an engine with backend-appropriate pool settings."""
    engine_kwargs: dict = {"echo": False}

    if url.startswith("sqlite"):
        engine_kwargs["connect_args"] = {"check_same_thread": False}
        # In-memory databases live on one connection; share it across threads
        if url in ("sqlite://", "sqlite:///:memory:"):
            engine_kwargs["poolclass"] = StaticPool
    else:
        engine_kwargs["pool_pre_ping"] = True
        engine_kwargs["pool_size"] = 5
        engine_kwargs["max_overflow"] = 10
        engine_kwargs["pool_recycle"] = 300

    return create_engine(url, **engine_kwargs)


# ── Log what we're connecting to ──
if db_url.startswith("sqlite"):
    logger.info("📦 Database backend: SQLite")
    logger.info(f"📍 Database path: {db_url}")
else:
    logger.info("🐘 Database backend: PostgreSQL")
    logger.info(f"📍 Database URL: {mask_secret_url(db_url)}")

engine = build_engine(db_url)


def test_connection(bind: Engine = engine) -> bool:
    """Test the database connection with SELECT 1."""
    try:
        with bind.connect() as conn:
            conn.execute(text("SELECT 1"))
            conn.commit()
        logger.info("✅ Database connection test: SUCCESS")
        return True
    except Exception as e:
        logger.error(f"❌ Database connection test: FAILED — {e}")
        return False


def init_db(bind: Engine = engine) -> None:
    """Create all tables."""
    # Table classes must be registered on the metadata before create_all
    from pdufa_tracker.models import pdufa_models  # noqa: F401

    logger.info("🔨 Creating database tables...")
    SQLModel.metadata.create_all(bind)
    logger.info("✅ Database tables ready")
