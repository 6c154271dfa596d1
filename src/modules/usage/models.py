from datetime import datetime

from sqlalchemy import BigInteger, Column
from sqlmodel import SQLModel, Field


class UsageRecord(SQLModel, table=True):
    """Number of watermarked files delivered to a chat."""
    __tablename__ = "usage_counters"

    chat_id: int = Field(sa_column=Column(BigInteger, primary_key=True, autoincrement=False))
    count: int = Field(default=0)
    updated_at: datetime = Field(default_factory=datetime.utcnow)
