"""Migration token schemas."""

from pydantic import BaseModel


class MigrationCreateResponse(BaseModel):
    token: str
    expires_at: str


class MigrationApplyRequest(BaseModel):
    token: str = ""


class MigrationApplyResponse(BaseModel):
    migrated_device_id: str
