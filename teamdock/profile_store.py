from __future__ import annotations

from datetime import datetime
from typing import Any

from fastapi import Depends
from sqlalchemy import func, or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from . import database, models
from .discord import ExternalIdentity
from .errors import StoreWriteFailed


class ProfileStore:
    """Point lookups, inserts and updates against the ``profiles`` table.

    Every write is a single statement followed by a commit. Database errors,
    including unique-constraint violations on ``discord_id``, are rolled back
    and surfaced as :class:`StoreWriteFailed`.
    """

    def __init__(self, db: Session):
        self.db = db

    def _fail(self, message: str, exc: SQLAlchemyError) -> StoreWriteFailed:
        self.db.rollback()
        return StoreWriteFailed(f"{message}: {exc.__class__.__name__}")

    def get(self, profile_id: str) -> models.Profile | None:
        try:
            return (
                self.db.query(models.Profile)
                .filter(models.Profile.id == profile_id)
                .first()
            )
        except SQLAlchemyError as exc:
            raise self._fail("Profile lookup failed", exc) from exc

    def find_by_external_id(self, external_id: str) -> models.Profile | None:
        try:
            return (
                self.db.query(models.Profile)
                .filter(models.Profile.discord_id == external_id)
                .first()
            )
        except SQLAlchemyError as exc:
            raise self._fail("Profile lookup by discord id failed", exc) from exc

    def find_by_email(self, email: str) -> models.Profile | None:
        normalized = email.strip().lower()
        if not normalized:
            return None
        try:
            return (
                self.db.query(models.Profile)
                .filter(func.lower(models.Profile.email) == normalized)
                .order_by(models.Profile.created_at.asc(), models.Profile.id.asc())
                .first()
            )
        except SQLAlchemyError as exc:
            raise self._fail("Profile lookup by email failed", exc) from exc

    def find_login_candidates(self, identifier: str) -> list[models.Profile]:
        """Profiles a secret-code login may belong to, oldest first.

        Names and phone numbers are not unique, so the caller checks the
        secret code against each candidate in turn.
        """
        value = identifier.strip()
        if not value:
            return []
        if "@" in value:
            condition = func.lower(models.Profile.email) == value.lower()
        else:
            condition = or_(models.Profile.name == value, models.Profile.phone == value)
        try:
            return (
                self.db.query(models.Profile)
                .filter(condition)
                .order_by(models.Profile.created_at.asc(), models.Profile.id.asc())
                .all()
            )
        except SQLAlchemyError as exc:
            raise self._fail("Profile lookup for login failed", exc) from exc

    def create(self, **fields: Any) -> models.Profile:
        profile = models.Profile(**fields)
        try:
            self.db.add(profile)
            self.db.commit()
            self.db.refresh(profile)
        except SQLAlchemyError as exc:
            raise self._fail("Profile insert failed", exc) from exc
        return profile

    def _update(self, profile_id: str, values: dict[str, Any]) -> models.Profile | None:
        try:
            updated = (
                self.db.query(models.Profile)
                .filter(models.Profile.id == profile_id)
                .update(values, synchronize_session="fetch")
            )
            self.db.commit()
        except SQLAlchemyError as exc:
            raise self._fail("Profile update failed", exc) from exc
        if not updated:
            return None
        return self.get(profile_id)

    def touch_presence(
        self, profile_id: str, *, now: datetime, avatar_url: str | None = None
    ) -> models.Profile | None:
        values: dict[str, Any] = {"last_active_at": now}
        if avatar_url is not None:
            values["discord_avatar"] = avatar_url
        return self._update(profile_id, values)

    def link_external_identity(
        self,
        profile_id: str,
        *,
        identity: ExternalIdentity,
        avatar_url: str,
        now: datetime,
    ) -> models.Profile | None:
        return self._update(
            profile_id,
            {
                "discord_id": identity.external_id,
                "discord_username": identity.display_name,
                "discord_avatar": avatar_url,
                "discord_email": identity.email,
                "last_active_at": now,
            },
        )


def get_profile_store(db: Session = Depends(database.get_db)) -> ProfileStore:
    return ProfileStore(db)
