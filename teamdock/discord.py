from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterator, Optional
from urllib.parse import urlencode

import httpx

from .config import Settings, settings
from .errors import ProviderNotConfigured, UpstreamExchangeFailed


@dataclass(frozen=True)
class DiscordToken:
    access_token: str
    token_type: str
    scope: str | None = None
    expires_in: int | None = None
    refresh_token: str | None = None


@dataclass(frozen=True)
class ExternalIdentity:
    external_id: str
    display_name: str
    email: str | None = None
    avatar_hash: str | None = None
    discriminator: str | None = None


class DiscordClient:
    """Discord OAuth2 client bound to an injected ``httpx.Client``."""

    def __init__(
        self,
        http: httpx.Client,
        *,
        client_id: Optional[str],
        client_secret: Optional[str],
        api_base_url: str = "https://discord.com/api/v10",
        authorize_url: str = "https://discord.com/api/oauth2/authorize",
        cdn_base_url: str = "https://cdn.discordapp.com",
        scopes: tuple[str, ...] = ("identify", "email"),
        prompt: Optional[str] = "none",
    ):
        self._http = http
        self.client_id = client_id
        self.client_secret = client_secret
        self.api_base_url = api_base_url.rstrip("/")
        self.authorize_url = authorize_url
        self.cdn_base_url = cdn_base_url.rstrip("/")
        self.scopes = scopes
        self.prompt = prompt

    @classmethod
    def from_settings(cls, http: httpx.Client, config: Settings = settings) -> "DiscordClient":
        return cls(
            http,
            client_id=config.discord_client_id,
            client_secret=config.discord_client_secret,
            api_base_url=config.discord_api_base_url,
            authorize_url=config.discord_authorize_url,
            cdn_base_url=config.discord_cdn_base_url,
            scopes=tuple(config.discord_scopes),
            prompt=config.discord_prompt,
        )

    def authorization_url(self, redirect_uri: str) -> str:
        if not self.client_id:
            raise ProviderNotConfigured("DISCORD_CLIENT_ID is not set")
        params = {
            "client_id": self.client_id,
            "redirect_uri": redirect_uri,
            "response_type": "code",
            "scope": " ".join(self.scopes),
        }
        if self.prompt:
            params["prompt"] = self.prompt
        return f"{self.authorize_url}?{urlencode(params)}"

    def exchange_code(self, code: str, redirect_uri: str) -> DiscordToken:
        if not self.client_id or not self.client_secret:
            raise UpstreamExchangeFailed("Discord client credentials are not configured")

        try:
            response = self._http.post(
                f"{self.api_base_url}/oauth2/token",
                data={
                    "client_id": self.client_id,
                    "client_secret": self.client_secret,
                    "grant_type": "authorization_code",
                    "code": code,
                    "redirect_uri": redirect_uri,
                },
                headers={
                    "Content-Type": "application/x-www-form-urlencoded",
                    "Accept": "application/json",
                },
            )
        except httpx.HTTPError as exc:
            raise UpstreamExchangeFailed(f"Could not reach Discord token endpoint: {exc}") from exc

        try:
            payload = response.json()
        except ValueError:
            payload = None

        if not isinstance(payload, dict):
            raise UpstreamExchangeFailed(
                f"Discord token endpoint returned a malformed body (status {response.status_code})"
            )
        if response.status_code >= 400 or "error" in payload:
            reason = payload.get("error_description") or payload.get("error") or "unknown error"
            raise UpstreamExchangeFailed(
                f"Discord code exchange failed (status {response.status_code}): {reason}"
            )

        access_token = payload.get("access_token")
        if not isinstance(access_token, str) or not access_token:
            raise UpstreamExchangeFailed("Discord did not return an access token")

        expires_in = payload.get("expires_in")
        return DiscordToken(
            access_token=access_token,
            token_type=str(payload.get("token_type") or "Bearer"),
            scope=payload.get("scope"),
            expires_in=int(expires_in) if isinstance(expires_in, int) else None,
            refresh_token=payload.get("refresh_token"),
        )

    def fetch_identity(self, access_token: str) -> ExternalIdentity:
        try:
            response = self._http.get(
                f"{self.api_base_url}/users/@me",
                headers={"Authorization": f"Bearer {access_token}"},
            )
        except httpx.HTTPError as exc:
            raise UpstreamExchangeFailed(f"Could not fetch Discord user: {exc}") from exc

        if response.status_code >= 400:
            raise UpstreamExchangeFailed(
                f"Discord user lookup failed (status {response.status_code})"
            )

        try:
            payload = response.json()
        except ValueError as exc:
            raise UpstreamExchangeFailed("Discord user response was not JSON") from exc

        if not isinstance(payload, dict):
            raise UpstreamExchangeFailed("Discord user response was invalid")
        return identity_from_payload(payload)

    def avatar_url(self, identity: ExternalIdentity) -> str:
        return avatar_url(identity, cdn_base_url=self.cdn_base_url)


def _optional_str(value: Any) -> str | None:
    if isinstance(value, str) and value:
        return value
    return None


def identity_from_payload(payload: dict[str, Any]) -> ExternalIdentity:
    raw_id = payload.get("id")
    external_id = str(raw_id) if raw_id is not None else ""
    if not external_id:
        raise UpstreamExchangeFailed("Discord user did not include an id")

    username = _optional_str(payload.get("username"))
    if username is None:
        raise UpstreamExchangeFailed("Discord user did not include a username")

    return ExternalIdentity(
        external_id=external_id,
        display_name=username,
        email=_optional_str(payload.get("email")),
        avatar_hash=_optional_str(payload.get("avatar")),
        discriminator=_optional_str(payload.get("discriminator")),
    )


def _default_avatar_index(identity: ExternalIdentity) -> int:
    discriminator = identity.discriminator or "0"
    try:
        legacy = int(discriminator)
    except ValueError:
        legacy = 0
    if legacy == 0 and identity.external_id.isdigit():
        # Migrated usernames have no discriminator; Discord derives the default
        # from the snowflake instead.
        return (int(identity.external_id) >> 22) % 6
    return legacy % 5


def avatar_url(
    identity: ExternalIdentity, *, cdn_base_url: str = "https://cdn.discordapp.com"
) -> str:
    base = cdn_base_url.rstrip("/")
    if not identity.avatar_hash:
        return f"{base}/embed/avatars/{_default_avatar_index(identity)}.png"
    extension = "gif" if identity.avatar_hash.startswith("a_") else "png"
    return f"{base}/avatars/{identity.external_id}/{identity.avatar_hash}.{extension}"


def get_discord_client() -> Iterator[DiscordClient]:
    with httpx.Client(timeout=settings.discord_timeout_seconds) as http:
        yield DiscordClient.from_settings(http)
