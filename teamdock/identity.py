"""Discord identity reconciliation.

Turns an authorization code into exactly one of three outcomes against the
profile store: a new profile, a one-time link of an existing email-matched
profile, or a presence refresh of the already linked profile.
"""

from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional
from urllib.parse import urlencode

from . import utils
from .discord import DiscordClient, ExternalIdentity
from .errors import MissingCode, ProviderDenied, StoreWriteFailed
from .profile_store import ProfileStore

logger = logging.getLogger(__name__)

OUTCOME_CREATED = "created"
OUTCOME_LINKED = "linked"
OUTCOME_REFRESHED = "refreshed"

_BOOTSTRAP_SECRET_BYTES = 18


@dataclass(frozen=True)
class ReconciliationResult:
    profile_id: str
    display_name: str
    is_new_user: bool
    outcome: str


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


def generate_bootstrap_secret() -> str:
    return secrets.token_urlsafe(_BOOTSTRAP_SECRET_BYTES)


def reconcile_identity(
    store: ProfileStore,
    identity: ExternalIdentity,
    *,
    avatar_url: str,
    now: Optional[datetime] = None,
) -> ReconciliationResult:
    now = now or _now_utc()

    linked = store.find_by_external_id(identity.external_id)
    if linked is not None:
        refreshed = store.touch_presence(str(linked.id), now=now, avatar_url=avatar_url)
        if refreshed is None:
            raise StoreWriteFailed(f"Linked profile {linked.id} disappeared during refresh")
        return ReconciliationResult(
            profile_id=str(refreshed.id),
            display_name=str(refreshed.name or identity.display_name),
            is_new_user=False,
            outcome=OUTCOME_REFRESHED,
        )

    by_email = store.find_by_email(identity.email) if identity.email else None
    if by_email is not None:
        updated = store.link_external_identity(
            str(by_email.id), identity=identity, avatar_url=avatar_url, now=now
        )
        if updated is None:
            raise StoreWriteFailed(
                f"Failed to link Discord identity to profile {by_email.id}"
            )
        logger.info(
            "Linked Discord identity to existing profile",
            extra={"profile_id": str(updated.id), "discord_id": identity.external_id},
        )
        return ReconciliationResult(
            profile_id=str(updated.id),
            display_name=str(updated.name or identity.display_name),
            is_new_user=False,
            outcome=OUTCOME_LINKED,
        )

    created = store.create(
        name=identity.display_name,
        email=identity.email,
        discord_id=identity.external_id,
        discord_username=identity.display_name,
        discord_avatar=avatar_url,
        discord_email=identity.email,
        secret_code_hash=utils.hash(generate_bootstrap_secret()),
        proficiencies=[],
        profile_type="looking",
        is_available=True,
        user_status="available",
        last_active_at=now,
    )
    logger.info(
        "Created profile from Discord identity",
        extra={"profile_id": str(created.id), "discord_id": identity.external_id},
    )
    return ReconciliationResult(
        profile_id=str(created.id),
        display_name=str(created.name),
        is_new_user=True,
        outcome=OUTCOME_CREATED,
    )


def complete_discord_callback(
    store: ProfileStore,
    discord: DiscordClient,
    *,
    code: Optional[str],
    error: Optional[str],
    redirect_uri: str,
) -> ReconciliationResult:
    if error:
        raise ProviderDenied(f"Discord reported an authorization error: {error}")
    if not code:
        raise MissingCode("Discord callback is missing the authorization code")

    token = discord.exchange_code(code, redirect_uri)
    identity = discord.fetch_identity(token.access_token)
    return reconcile_identity(store, identity, avatar_url=discord.avatar_url(identity))


def build_success_redirect(origin: str, result: ReconciliationResult) -> str:
    params = {
        "discord_auth": "success",
        "profile_id": result.profile_id,
        "username": result.display_name,
    }
    if result.is_new_user:
        params["is_new_user"] = "true"
    return f"{origin}/?{urlencode(params)}"


def build_error_redirect(origin: str, error_code: str) -> str:
    return f"{origin}/?{urlencode({'error': error_code})}"
