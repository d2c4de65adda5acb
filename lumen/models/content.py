"""Message and Response models.

Ownership is keyed by ``device_hash``; rows written before hashing was
introduced only carry the raw ``device_id``.
"""

import secrets
from datetime import datetime, timezone
from typing import Optional

from sqlmodel import Field, SQLModel


class Message(SQLModel, table=True):
    __tablename__ = "messages"

    id: str = Field(default_factory=lambda: f"msg_{secrets.token_hex(6)}", primary_key=True)
    device_id: Optional[str] = Field(default=None, index=True)  # legacy owner
    device_hash: Optional[str] = Field(default=None, index=True)
    text: str
    status: str = Field(default="waiting")  # 'waiting' | 'answered' | 'hidden'
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class Response(SQLModel, table=True):
    __tablename__ = "responses"

    id: str = Field(default_factory=lambda: f"rsp_{secrets.token_hex(6)}", primary_key=True)
    message_id: str = Field(foreign_key="messages.id", index=True)
    device_id: Optional[str] = Field(default=None, index=True)  # legacy owner
    device_hash: Optional[str] = Field(default=None, index=True)
    text: str
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
