from typing import Iterator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlmodel import SQLModel, Session
from src.core.config import settings

# Import ALL models to ensure they're registered with SQLModel.metadata
from src.modules.watermark.models import Watermark
from src.modules.usage.models import UsageRecord
from src.modules.media.models import MediaJob


def build_engine(database_url: str) -> Engine:
    """Create a sync engine usable from API handlers and pool threads alike."""
    connect_args = {}
    if database_url.startswith("sqlite"):
        # Pool threads share the engine; give concurrent writers time to queue
        connect_args = {"check_same_thread": False, "timeout": 30}
    return create_engine(database_url, echo=False, connect_args=connect_args)


engine = build_engine(settings.DATABASE_URL)


def create_db_and_tables(bind: Engine = engine):
    """Create all tables if they don't exist."""
    SQLModel.metadata.create_all(bind, checkfirst=True)


def get_session() -> Iterator[Session]:
    with Session(engine) as session:
        yield session
