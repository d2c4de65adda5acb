"""Device purge, debug and stats schemas."""

from typing import Optional

from pydantic import BaseModel


class PurgeSummary(BaseModel):
    messages: int
    responses: int
    user_stats: int
    migration_tokens: int
    left_journey: bool


class PurgeResponse(BaseModel):
    ok: bool = True
    removed: PurgeSummary


class DeviceSourcesResponse(BaseModel):
    header: Optional[str]
    cookie: Optional[str]
    query: Optional[str]
    body: Optional[str]


class DeviceDebugResponse(BaseModel):
    sources: DeviceSourcesResponse
    source: Optional[str]
    resolved_device_id: Optional[str]
    effective_device_id: Optional[str]
    conflicts: list[str]
    journey: Optional[dict]
    last_key_preview: Optional[str] = None


class UserStatsResponse(BaseModel):
    device_id: str
    messages_sent: int = 0
    replies_given: int = 0
    replies_received: int = 0
    karma_score: int = 0
    replies_unread: int = 0
    created_at: Optional[str] = None
    last_active_at: Optional[str] = None
