from __future__ import annotations

import logging
import secrets
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, Request, Response, status
from fastapi.responses import RedirectResponse

from .. import identity, models, schemas, utils
from ..discord import DiscordClient, get_discord_client
from ..errors import CallbackError, StoreWriteFailed, api_error
from ..profile_store import ProfileStore, get_profile_store
from ..rate_limit import rate_limit_dependency
from ..session import (
    callback_url,
    clear_session_cookie,
    get_current_profile,
    request_origin,
    set_session_cookie,
)

logger = logging.getLogger(__name__)

# Browser-facing OAuth flow, mounted without the API version prefix.
browser_router = APIRouter(tags=["Discord OAuth"])
router = APIRouter(tags=["Authentication"])

_DUMMY_SECRET_HASH = utils.hash(secrets.token_urlsafe(16))


@browser_router.get("/auth/initiate")
def discord_initiate(
    request: Request,
    _: None = rate_limit_dependency("oauth_initiate"),
    discord: DiscordClient = Depends(get_discord_client),
):
    authorize_url = discord.authorization_url(callback_url(request))
    return RedirectResponse(authorize_url, status_code=status.HTTP_302_FOUND)


@browser_router.get("/auth/callback")
def discord_callback(
    request: Request,
    code: Optional[str] = None,
    error: Optional[str] = None,
    store: ProfileStore = Depends(get_profile_store),
    discord: DiscordClient = Depends(get_discord_client),
):
    origin = request_origin(request)
    try:
        result = identity.complete_discord_callback(
            store,
            discord,
            code=code,
            error=error,
            redirect_uri=callback_url(request),
        )
    except CallbackError as exc:
        logger.warning(
            "Discord callback failed",
            extra={"error_class": exc.__class__.__name__, "reason": str(exc)},
        )
        return RedirectResponse(
            identity.build_error_redirect(origin, exc.redirect_code),
            status_code=status.HTTP_302_FOUND,
        )
    except Exception:
        logger.exception("Unexpected error during Discord callback")
        return RedirectResponse(
            identity.build_error_redirect(origin, StoreWriteFailed.redirect_code),
            status_code=status.HTTP_302_FOUND,
        )

    response = RedirectResponse(
        identity.build_success_redirect(origin, result),
        status_code=status.HTTP_302_FOUND,
    )
    set_session_cookie(response, result.profile_id)
    return response


@router.post("/auth/login", response_model=schemas.SessionOut)
def secret_code_login(
    payload: schemas.SecretLogin,
    response: Response,
    _: None = rate_limit_dependency("secret_login"),
    store: ProfileStore = Depends(get_profile_store),
):
    candidates = store.find_login_candidates(payload.identifier)
    if not candidates:
        utils.verify(payload.secret_code, _DUMMY_SECRET_HASH)
    profile = next(
        (
            candidate
            for candidate in candidates
            if utils.verify(payload.secret_code, str(candidate.secret_code_hash))
        ),
        None,
    )
    if profile is not None:
        profile = store.touch_presence(str(profile.id), now=datetime.now(timezone.utc))
    if profile is None:
        raise api_error(
            "Invalid credentials",
            error_code="invalid_credentials",
            status_code=status.HTTP_403_FORBIDDEN,
        )

    set_session_cookie(response, str(profile.id))
    return schemas.SessionOut(profile_id=str(profile.id), name=str(profile.name))


@router.get("/auth/session", response_model=schemas.ProfileOut)
def current_session(profile: models.Profile = Depends(get_current_profile)):
    return profile


@router.post("/auth/logout", status_code=status.HTTP_204_NO_CONTENT)
def logout():
    response = Response(status_code=status.HTTP_204_NO_CONTENT)
    clear_session_cookie(response)
    return response
