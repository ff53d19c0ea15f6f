"""Persisted bottle history: one serialized blob per store name (thrown + picked collections)."""
from sqlalchemy import Column, DateTime, String, Text
from sqlalchemy.sql import func

from driftbottle.db.base import Base


class HistoryBlob(Base):
    __tablename__ = "history_blobs"

    store_name = Column(String(64), primary_key=True)
    payload_json = Column(Text, nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
