"""Common API dependencies: device identifier sources and resolution."""

import json
import logging

from fastapi import Depends, Request
from sqlmodel import Session

from lumen.config import settings
from lumen.database import get_session
from lumen.services.device_resolution import DeviceResolution, DeviceSources, resolve_device

logger = logging.getLogger(__name__)

WRITE_METHODS = {"POST", "PUT", "PATCH", "DELETE"}


async def _read_body_device_id(request: Request):
    if request.method not in WRITE_METHODS:
        return None
    body = await request.body()
    if not body:
        return None
    try:
        payload = json.loads(body)
    except ValueError:
        logger.debug("Request body is not JSON, ignoring body device id")
        return None
    if isinstance(payload, dict):
        return payload.get("deviceId")
    return None


async def read_device_sources(request: Request) -> DeviceSources:
    """Collect every candidate device identifier the request carries."""
    return DeviceSources(
        header=request.headers.get(settings.device_id_header),
        cookie=request.cookies.get(settings.device_cookie_name),
        query=request.query_params.get("deviceId"),
        body=await _read_body_device_id(request),
    )


def get_device_resolution(
    sources: DeviceSources = Depends(read_device_sources),
    session: Session = Depends(get_session),
) -> DeviceResolution:
    """Resolve the request's device. Does not fail when no identifier is present."""
    return resolve_device(session, sources)


def require_device(resolution: DeviceResolution = Depends(get_device_resolution)) -> DeviceResolution:
    """Like get_device_resolution, but fails with DeviceUnidentified when nothing was sent."""
    resolution.require_device_id()
    return resolution
