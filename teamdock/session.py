from __future__ import annotations

from typing import Optional

from fastapi import Depends, Request, Response, status

from . import models
from .config import settings
from .errors import api_error
from .profile_store import ProfileStore, get_profile_store


def request_origin(request: Request) -> str:
    if settings.public_base_url:
        return settings.public_base_url
    scheme = request.url.scheme
    if settings.trust_proxy_headers:
        forwarded = request.headers.get("x-forwarded-proto")
        if forwarded:
            scheme = forwarded.split(",")[0].strip()
    host = request.headers.get("host") or request.url.netloc
    return f"{scheme}://{host}"


def callback_url(request: Request) -> str:
    return f"{request_origin(request)}/auth/callback"


def set_session_cookie(response: Response, profile_id: str) -> None:
    response.set_cookie(
        key=settings.session_cookie_name,
        value=profile_id,
        max_age=settings.session_max_age_seconds,
        path="/",
        httponly=True,
        secure=not settings.is_local_environment,
        samesite="lax",
    )


def clear_session_cookie(response: Response) -> None:
    response.delete_cookie(
        key=settings.session_cookie_name,
        path="/",
        httponly=True,
        secure=not settings.is_local_environment,
        samesite="lax",
    )


def get_current_profile(
    request: Request, store: ProfileStore = Depends(get_profile_store)
) -> models.Profile:
    profile_id: Optional[str] = request.cookies.get(settings.session_cookie_name)
    profile = store.get(profile_id) if profile_id else None
    if profile is None:
        raise api_error(
            "Not authenticated",
            error_code="not_authenticated",
            status_code=status.HTTP_401_UNAUTHORIZED,
        )
    return profile
