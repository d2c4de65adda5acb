"""User statistics API endpoint."""

from fastapi import APIRouter, Depends, Response
from sqlmodel import Session

from lumen.api.deps import require_device
from lumen.database import get_session
from lumen.schemas.device import UserStatsResponse
from lumen.services.device_resolution import DeviceResolution
from lumen.services.stats_service import get_user_stats
from lumen.utils.cookies import attach_device_cookie

router = APIRouter(prefix="/stats", tags=["stats"])


@router.get("/user", response_model=UserStatsResponse)
def user_stats(
    response: Response,
    device: DeviceResolution = Depends(require_device),
    session: Session = Depends(get_session),
):
    """Stats of the effective identity (empty counters if nothing was recorded yet)."""
    device_id = device.require_effective_device_id()
    attach_device_cookie(response, device_id)

    stats = get_user_stats(session, device_id)
    if stats is None:
        return UserStatsResponse(device_id=device_id)

    return UserStatsResponse(
        device_id=device_id,
        messages_sent=stats.messages_sent,
        replies_given=stats.replies_given,
        replies_received=stats.replies_received,
        karma_score=stats.karma_score,
        replies_unread=stats.replies_unread,
        created_at=stats.created_at.isoformat() if stats.created_at else None,
        last_active_at=stats.last_active_at.isoformat() if stats.last_active_at else None,
    )
