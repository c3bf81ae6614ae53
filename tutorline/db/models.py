"""Database models."""
from datetime import datetime
from sqlalchemy import Column, Integer, String, DateTime, Text, Index
from sqlalchemy.orm import declarative_base

Base = declarative_base()


class HistoryRecord(Base):
    """Question/answer history for a caller."""

    __tablename__ = "history_records"

    id = Column(Integer, primary_key=True, index=True)
    caller = Column(String, nullable=False, index=True)  # Caller phone number, not the Twilio number
    subject = Column(String, nullable=False)
    question = Column(Text, nullable=False)
    answer = Column(Text, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        Index("ix_history_records_caller_subject", "caller", "subject"),
    )
