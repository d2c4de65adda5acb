"""Journey backup, attach and status schemas."""

from typing import Optional

from pydantic import BaseModel


class JourneySnapshotResponse(BaseModel):
    journey_id: str
    primary_device_id: str
    primary_device_hash: str
    device_ids: list[str]
    device_hashes: list[str]
    last_key_preview: Optional[str]


class JourneyStatusResponse(BaseModel):
    journey_id: str
    effective_device_id: str
    primary_device_id: str
    is_primary: bool
    attached_devices: int
    attached_device_ids: list[str]
    attached_device_hashes: list[str]
    last_key_preview: Optional[str]
    local_has_history: bool


class JourneyStatusEnvelope(BaseModel):
    status: JourneyStatusResponse
    debug: Optional[dict] = None  # only with LUMEN_IDENTITY_DEBUG


# --- Backup key ---

class BackupKeyResponse(BaseModel):
    identity_key: str  # shown once, never retrievable again
    journey: JourneySnapshotResponse
    status: JourneyStatusResponse


# --- Attach ---

class AttachRequest(BaseModel):
    identity_key: str = ""


class MergeSummary(BaseModel):
    messages_updated: int
    responses_updated: int
    stats_merged: bool


class AttachResponse(BaseModel):
    ok: bool = True
    already_attached: bool
    status: JourneyStatusResponse
    merge: Optional[MergeSummary] = None
    merge_incomplete: bool = False
