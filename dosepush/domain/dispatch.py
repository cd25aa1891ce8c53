"""
Dispatch record model.
One row per schedule per calendar day; the unique key is the claim.
"""

import uuid
from datetime import datetime
from enum import Enum

from sqlalchemy import Column, String, DateTime, Date, Integer, Text, Enum as SQLEnum, UniqueConstraint, Index

from dosepush.domain.schedule import Base


class DispatchStatus(str, Enum):
    """Dispatch status enumeration."""
    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"


class DispatchRecord(Base):
    """SQLAlchemy model for a claimed reminder delivery."""

    __tablename__ = "reminder_dispatches"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    schedule_id = Column(String(36), nullable=False)
    workspace_id = Column(Integer, nullable=False)
    user_id = Column(Integer, nullable=False)
    scheduled_for = Column(DateTime, nullable=False)  # local wall time
    scheduled_date = Column(Date, nullable=False)
    status = Column(SQLEnum(DispatchStatus), default=DispatchStatus.PENDING, nullable=False)
    sent_count = Column(Integer, default=0, nullable=False)
    error_message = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint("schedule_id", "scheduled_date", name="uq_dispatch_schedule_day"),
        Index("ix_reminder_dispatches_scheduled_for", "scheduled_for"),
        Index("ix_reminder_dispatches_owner", "workspace_id", "user_id", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<DispatchRecord(id={self.id}, schedule_id={self.schedule_id}, status={self.status})>"
