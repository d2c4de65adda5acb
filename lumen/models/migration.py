"""Migration token model."""

from datetime import datetime, timezone
from typing import Optional

from sqlmodel import Field, SQLModel


class MigrationToken(SQLModel, table=True):
    __tablename__ = "migration_tokens"

    token_hash: str = Field(primary_key=True)
    token_preview: str
    from_device_id: str
    from_device_hash: str = Field(index=True)
    expires_at: datetime
    used_at: Optional[datetime] = None
    used_by_device_id: Optional[str] = None
    used_by_device_hash: Optional[str] = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
