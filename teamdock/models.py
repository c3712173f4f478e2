import uuid

from sqlalchemy import JSON, Boolean, Column, String
from sqlalchemy.sql import func
from sqlalchemy.sql.expression import true
from sqlalchemy.sql.sqltypes import TIMESTAMP

from .database import Base


class Profile(Base):
    __tablename__ = "profiles"
    id = Column(
        String(36), primary_key=True, nullable=False, default=lambda: str(uuid.uuid4())
    )
    name = Column(String, nullable=False)
    email = Column(String, nullable=True, index=True)
    phone = Column(String, nullable=True)
    secret_code_hash = Column(String, nullable=False)

    discord_id = Column(String, nullable=True, unique=True)
    discord_username = Column(String, nullable=True)
    discord_avatar = Column(String, nullable=True)
    discord_email = Column(String, nullable=True)

    proficiencies = Column(JSON, nullable=False, default=list)
    profile_type = Column(String, nullable=False, server_default="looking", default="looking")
    is_available = Column(Boolean, nullable=False, server_default=true(), default=True)
    user_status = Column(
        String, nullable=False, server_default="available", default="available"
    )

    created_at = Column(
        TIMESTAMP(timezone=True), nullable=False, server_default=func.now()
    )
    last_active_at = Column(
        TIMESTAMP(timezone=True), nullable=False, server_default=func.now()
    )
