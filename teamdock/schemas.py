from datetime import datetime
from typing import Annotated, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

SecretCode = Annotated[str, Field(min_length=6, max_length=12, pattern=r"^\d+$")]


class ProfileCreate(BaseModel):
    name: Annotated[str, Field(min_length=1, max_length=80)]
    email: EmailStr
    phone: Annotated[str, Field(min_length=1, max_length=32)]
    secret_code: SecretCode
    proficiencies: list[Annotated[str, Field(min_length=1, max_length=40)]] = Field(
        min_length=1, max_length=20
    )

    @field_validator("name", "phone")
    @classmethod
    def strip_required_text(cls, value: str) -> str:
        stripped = value.strip()
        if not stripped:
            raise ValueError("must not be blank")
        return stripped


class ProfileOut(BaseModel):
    id: str
    name: str
    email: Optional[str] = None
    discord_username: Optional[str] = None
    discord_avatar: Optional[str] = None
    proficiencies: list[str]
    profile_type: str
    is_available: bool
    user_status: str
    created_at: datetime
    last_active_at: datetime

    model_config = ConfigDict(from_attributes=True)


class SecretLogin(BaseModel):
    identifier: Annotated[str, Field(min_length=1, max_length=254)]
    secret_code: Annotated[str, Field(min_length=1, max_length=64)]


class SessionOut(BaseModel):
    profile_id: str
    name: str
