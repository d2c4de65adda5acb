"""Device identifier cookie helpers."""

from fastapi import Response

from lumen.config import settings


def attach_device_cookie(response: Response, device_id: str) -> Response:
    """Point the client's persisted identifier at ``device_id``.

    Readable from JavaScript so the client can keep local storage in sync.
    """
    response.set_cookie(
        key=settings.device_cookie_name,
        value=device_id,
        max_age=settings.device_cookie_max_age,
        path="/",
        samesite="lax",
        httponly=False,
    )
    return response


def clear_device_cookie(response: Response) -> Response:
    response.set_cookie(
        key=settings.device_cookie_name,
        value="",
        max_age=0,
        path="/",
        samesite="lax",
        httponly=False,
    )
    return response
