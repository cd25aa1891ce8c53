"""
Recurring medicine schedule model and schemas.
"""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import Column, String, DateTime, Integer, Boolean, Numeric, Index
from sqlalchemy.orm import declarative_base
from pydantic import BaseModel, Field, field_validator

from dosepush.utils.time import parse_time_of_day, format_time_of_day

Base = declarative_base()

ALLOWED_DOSAGE_UNITS = ("mg", "ml", "g", "mcg", "tablet", "drop")


class RecurringSchedule(Base):
    """SQLAlchemy model for a user's standing daily reminder."""

    __tablename__ = "recurring_schedules"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    workspace_id = Column(Integer, nullable=False)
    user_id = Column(Integer, nullable=False)
    medicine_name = Column(String(255), nullable=False)
    dosage_value = Column(Numeric(10, 2), nullable=False)
    dosage_unit = Column(String(16), nullable=False)
    time_of_day = Column(String(8), nullable=False)  # HH:MM:SS, deployment timezone
    reminder_message = Column(String(255), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        Index("ix_recurring_schedules_owner", "workspace_id", "user_id", "is_active"),
    )

    def __repr__(self) -> str:
        return f"<RecurringSchedule(id={self.id}, time_of_day={self.time_of_day}, active={self.is_active})>"


# Pydantic Schemas

class ScheduleCreate(BaseModel):
    """Schema for creating a schedule; rejects bad shapes at the boundary."""
    workspace_id: int = Field(..., ge=1)
    user_id: int = Field(..., ge=1)
    medicine_name: str = Field(..., min_length=1, max_length=255)
    dosage_value: Decimal = Field(..., gt=0)
    dosage_unit: str
    time_of_day: str
    reminder_message: Optional[str] = Field(None, max_length=255)
    is_active: bool = True

    @field_validator("time_of_day")
    @classmethod
    def _valid_time_of_day(cls, value: str) -> str:
        parsed = parse_time_of_day(value)
        if parsed is None:
            raise ValueError("time_of_day must be a 24-hour HH:MM or HH:MM:SS value")
        return format_time_of_day(parsed)

    @field_validator("dosage_unit")
    @classmethod
    def _known_unit(cls, value: str) -> str:
        if value not in ALLOWED_DOSAGE_UNITS:
            raise ValueError(f"dosage_unit must be one of {', '.join(ALLOWED_DOSAGE_UNITS)}")
        return value

    @field_validator("reminder_message")
    @classmethod
    def _blank_message_is_none(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        value = value.strip()
        return value or None

    def to_model(self) -> RecurringSchedule:
        return RecurringSchedule(id=str(uuid.uuid4()), **self.model_dump())
