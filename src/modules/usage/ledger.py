"""
Usage Ledger

Per-chat counter of delivered files. Increments are a single
INSERT ... ON CONFLICT DO UPDATE statement, so concurrent pipelines for the
same chat never lose an update.
"""

from datetime import datetime

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.engine import Engine
from sqlalchemy import select
from sqlmodel import Session

from src.core.logging import get_logger
from src.modules.usage.models import UsageRecord

logger = get_logger(__name__)

_UPSERT_DIALECTS = {
    "sqlite": sqlite.insert,
    "postgresql": postgresql.insert,
}


class UsageLedger:

    def __init__(self, engine: Engine):
        self.engine = engine
        dialect = engine.dialect.name
        if dialect not in _UPSERT_DIALECTS:
            raise ValueError(f"Atomic upsert is not supported for dialect {dialect!r}")
        self._insert = _UPSERT_DIALECTS[dialect]

    def increment(self, chat_id: int) -> int:
        """Add one to the chat's counter, creating it at 1. Returns the new count."""
        now = datetime.utcnow()
        table = UsageRecord.__table__
        statement = self._insert(table).values(chat_id=chat_id, count=1, updated_at=now)
        statement = statement.on_conflict_do_update(
            index_elements=[table.c["chat_id"]],
            set_={"count": table.c["count"] + 1, "updated_at": now},
        )

        with self.engine.begin() as connection:
            connection.execute(statement)
            count = connection.execute(
                select(table.c["count"]).where(table.c["chat_id"] == chat_id)
            ).scalar_one()

        logger.info("usage_incremented", chat_id=chat_id, count=count)
        return count

    def get_count(self, chat_id: int) -> int:
        with Session(self.engine) as session:
            record = session.get(UsageRecord, chat_id)
            return record.count if record else 0
