"""Per-identity activity statistics."""

from datetime import datetime, timezone
from typing import Optional

from sqlmodel import Field, SQLModel


class UserStats(SQLModel, table=True):
    __tablename__ = "user_stats"

    device_key: str = Field(primary_key=True)  # identity hash; raw device id on legacy rows
    messages_sent: int = Field(default=0)
    replies_given: int = Field(default=0)
    replies_received: int = Field(default=0)
    karma_score: int = Field(default=0)
    replies_unread: int = Field(default=0)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    last_active_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    last_replies_seen_at: Optional[datetime] = None
