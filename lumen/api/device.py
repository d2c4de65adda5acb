"""Device purge and identity debug API endpoints."""

from dataclasses import asdict

from fastapi import APIRouter, Depends, HTTPException, Response
from sqlmodel import Session

from lumen.api.deps import get_device_resolution, require_device
from lumen.config import settings
from lumen.database import get_session
from lumen.schemas.device import DeviceDebugResponse, PurgeResponse, PurgeSummary
from lumen.services.device_resolution import DeviceResolution
from lumen.services.journey_service import get_journey_debug_snapshot
from lumen.services.purge_service import purge_device_data
from lumen.utils.cookies import attach_device_cookie, clear_device_cookie

router = APIRouter(prefix="/device", tags=["device"])


@router.post("/purge", response_model=PurgeResponse)
def purge_device(
    response: Response,
    device: DeviceResolution = Depends(require_device),
    session: Session = Depends(get_session),
):
    """Delete all data stored for this device and forget its identifier."""
    result = purge_device_data(session, device.require_device_id())
    clear_device_cookie(response)
    return PurgeResponse(removed=PurgeSummary(**asdict(result)))


def _debug_response(device: DeviceResolution, session: Session, response: Response) -> DeviceDebugResponse:
    # Dumps raw identifiers, so it only exists when explicitly enabled
    if not settings.identity_debug:
        raise HTTPException(status_code=404, detail="Not found")

    if device.effective_device_id:
        attach_device_cookie(response, device.effective_device_id)

    payload = device.to_debug_dict()
    if device.resolved_device_id:
        snapshot = get_journey_debug_snapshot(session, device.resolved_device_id)
        payload["last_key_preview"] = snapshot.last_key_preview if snapshot else None
    return DeviceDebugResponse(**payload)


@router.get("/debug", response_model=DeviceDebugResponse)
def device_debug(
    response: Response,
    device: DeviceResolution = Depends(get_device_resolution),
    session: Session = Depends(get_session),
):
    return _debug_response(device, session, response)


@router.post("/debug", response_model=DeviceDebugResponse)
def device_debug_with_body(
    response: Response,
    device: DeviceResolution = Depends(get_device_resolution),
    session: Session = Depends(get_session),
):
    return _debug_response(device, session, response)
