from sqlalchemy import Column, String, Text, Integer, DateTime
from .base import Base


class SyncQueueRow(Base):
    __tablename__ = "sync_queue"

    id = Column(String, primary_key=True)
    kind = Column("type", String(30), nullable=False)  # symptom, feedback
    data_json = Column(Text, nullable=False)
    created_at = Column(DateTime, nullable=False, index=True)
    attempts = Column(Integer, nullable=False, default=0)  # Advisory only, never evicts
    last_error = Column(Text, nullable=True)
    seq = Column(Integer, nullable=False, default=0)
