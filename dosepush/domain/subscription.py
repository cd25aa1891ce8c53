"""
Web Push subscription model and registration schemas.
"""

import base64
import binascii
import hashlib
from datetime import datetime
from typing import Optional
from urllib.parse import urlsplit

from sqlalchemy import Column, String, DateTime, Integer, Boolean, Text, UniqueConstraint, Index
from pydantic import BaseModel, Field, field_validator

from dosepush.domain.schedule import Base

P256DH_LENGTH = 65
AUTH_SECRET_LENGTH = 16


def endpoint_hash(endpoint: str) -> str:
    """Stable lookup key for a push endpoint."""
    return hashlib.sha256(endpoint.encode("utf-8")).hexdigest()


def decode_base64url(value: str) -> bytes:
    """Decode unpadded base64url, raising ValueError on bad input."""
    padded = value + "=" * (-len(value) % 4)
    try:
        return base64.urlsafe_b64decode(padded.encode("ascii"))
    except (binascii.Error, UnicodeEncodeError) as e:
        raise ValueError("not valid base64url") from e


class PushSubscription(Base):
    """SQLAlchemy model for one browser's push registration."""

    __tablename__ = "push_subscriptions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    workspace_id = Column(Integer, nullable=False)
    user_id = Column(Integer, nullable=False)
    endpoint = Column(Text, nullable=False)
    endpoint_hash = Column(String(64), nullable=False)
    p256dh = Column(String(255), nullable=False)
    auth = Column(String(255), nullable=False)
    user_agent = Column(String(255), nullable=True)
    last_seen_at = Column(DateTime, default=datetime.utcnow)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint("workspace_id", "user_id", "endpoint_hash", name="uq_push_owner_endpoint"),
        Index("ix_push_subscriptions_endpoint_hash", "endpoint_hash"),
    )

    def __repr__(self) -> str:
        return f"<PushSubscription(id={self.id}, user_id={self.user_id}, active={self.is_active})>"


# Pydantic Schemas

class SubscriptionKeys(BaseModel):
    """Keys supplied by the browser's PushSubscription.toJSON()."""
    p256dh: str
    auth: str

    @field_validator("p256dh")
    @classmethod
    def _valid_p256dh(cls, value: str) -> str:
        value = value.strip()
        raw = decode_base64url(value)
        if len(raw) != P256DH_LENGTH or raw[0] != 0x04:
            raise ValueError("p256dh must be an uncompressed P-256 public key")
        return value

    @field_validator("auth")
    @classmethod
    def _valid_auth(cls, value: str) -> str:
        value = value.strip()
        if len(decode_base64url(value)) != AUTH_SECRET_LENGTH:
            raise ValueError("auth must be a 16-byte secret")
        return value


class SubscriptionCreate(BaseModel):
    """Schema for registering a browser subscription."""
    endpoint: str = Field(..., min_length=1, max_length=2048)
    keys: SubscriptionKeys
    user_agent: Optional[str] = None

    @field_validator("endpoint")
    @classmethod
    def _valid_endpoint(cls, value: str) -> str:
        value = value.strip()
        if not value.isprintable():
            raise ValueError("endpoint must not contain control characters")
        parts = urlsplit(value)
        if parts.scheme not in ("https", "http") or not parts.hostname:
            raise ValueError("endpoint must be an absolute http(s) URL")
        return value

    @field_validator("user_agent")
    @classmethod
    def _truncate_user_agent(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        return value[:255] or None


class SubscriptionRemove(BaseModel):
    """Schema for unsubscribing a browser."""
    endpoint: str = Field(..., min_length=1, max_length=2048)
