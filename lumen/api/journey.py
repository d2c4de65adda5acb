"""Journey backup key, attach and status API endpoints."""

import logging
from dataclasses import asdict

from fastapi import APIRouter, Depends, Response, status
from sqlmodel import Session

from lumen.api.deps import require_device
from lumen.config import settings
from lumen.database import get_session
from lumen.schemas.journey import (
    AttachRequest,
    AttachResponse,
    BackupKeyResponse,
    JourneySnapshotResponse,
    JourneyStatusEnvelope,
    JourneyStatusResponse,
    MergeSummary,
)
from lumen.services.device_resolution import DeviceResolution
from lumen.services.journey_service import (
    attach_device_to_journey,
    create_journey_key_for_device,
    get_journey_status,
)
from lumen.services.merge_service import merge_device_path
from lumen.utils.cookies import attach_device_cookie

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/journey", tags=["journey"])


@router.post("/backup", response_model=BackupKeyResponse, status_code=status.HTTP_201_CREATED)
def create_backup_key(
    response: Response,
    device: DeviceResolution = Depends(require_device),
    session: Session = Depends(get_session),
):
    """Issue a backup key for this device's journey. The key is returned only once."""
    identity_key, journey = create_journey_key_for_device(session, device.require_device_id())
    current = get_journey_status(session, device.require_device_id())
    attach_device_cookie(response, current.effective_device_id)
    return BackupKeyResponse(
        identity_key=identity_key,
        journey=JourneySnapshotResponse(**asdict(journey)),
        status=JourneyStatusResponse(**asdict(current)),
    )


@router.post("/attach", response_model=AttachResponse)
def attach_journey(
    request: AttachRequest,
    response: Response,
    device: DeviceResolution = Depends(require_device),
    session: Session = Depends(get_session),
):
    """Redeem a backup key and fold this device's history into the journey."""
    device_id = device.require_device_id()
    attachment = attach_device_to_journey(session, request.identity_key, device_id)
    primary_device_id = attachment.journey.primary_device_id

    merge = None
    merge_incomplete = False
    if not attachment.already_attached and primary_device_id != device_id:
        # The attach is already committed at this point
        try:
            result = merge_device_path(session, device_id, primary_device_id)
            merge = MergeSummary(**asdict(result))
        except Exception:
            session.rollback()
            merge_incomplete = True
            logger.exception(
                "History merge failed after attaching device to journey %s",
                attachment.journey.journey_id[:12],
            )

    current = get_journey_status(session, device_id)
    attach_device_cookie(response, current.effective_device_id)
    return AttachResponse(
        already_attached=attachment.already_attached,
        status=JourneyStatusResponse(**asdict(current)),
        merge=merge,
        merge_incomplete=merge_incomplete,
    )


@router.get("/status", response_model=JourneyStatusEnvelope)
def read_journey_status(
    response: Response,
    device: DeviceResolution = Depends(require_device),
    session: Session = Depends(get_session),
):
    """Journey membership of this device and the identity it resolves to."""
    current = get_journey_status(session, device.require_device_id())
    attach_device_cookie(response, current.effective_device_id)
    return JourneyStatusEnvelope(
        status=JourneyStatusResponse(**asdict(current)),
        debug=device.to_debug_dict() if settings.identity_debug else None,
    )
