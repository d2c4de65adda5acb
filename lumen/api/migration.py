"""Migration token API endpoints."""

from fastapi import APIRouter, Depends, Response
from sqlmodel import Session

from lumen.api.deps import require_device
from lumen.database import get_session
from lumen.schemas.migration import (
    MigrationApplyRequest,
    MigrationApplyResponse,
    MigrationCreateResponse,
)
from lumen.services.device_resolution import DeviceResolution
from lumen.services.migration_service import apply_migration_token, create_migration_token_for_device
from lumen.utils.cookies import attach_device_cookie

router = APIRouter(prefix="/migration", tags=["migration"])


@router.post("/create", response_model=MigrationCreateResponse)
def create_migration(
    response: Response,
    device: DeviceResolution = Depends(require_device),
    session: Session = Depends(get_session),
):
    """Create a single-use, 24h token that hands this identity to another device."""
    device_id = device.require_effective_device_id()
    payload = create_migration_token_for_device(session, device_id)
    attach_device_cookie(response, device_id)
    return MigrationCreateResponse(token=payload.token, expires_at=payload.expires_at.isoformat())


@router.post("/apply", response_model=MigrationApplyResponse)
def apply_migration(
    request: MigrationApplyRequest,
    response: Response,
    device: DeviceResolution = Depends(require_device),
    session: Session = Depends(get_session),
):
    """Redeem a migration token; this device continues as the migrated identity."""
    result = apply_migration_token(session, request.token, device.require_device_id())
    attach_device_cookie(response, result.migrated_device_id)
    return MigrationApplyResponse(migrated_device_id=result.migrated_device_id)
