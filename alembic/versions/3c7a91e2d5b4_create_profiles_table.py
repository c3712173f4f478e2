"""create profiles table

Revision ID: 3c7a91e2d5b4
Revises:
Create Date: 2026-10-18 09:30:00.000000

"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "3c7a91e2d5b4"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "profiles",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("email", sa.String(), nullable=True),
        sa.Column("phone", sa.String(), nullable=True),
        sa.Column("secret_code_hash", sa.String(), nullable=False),
        sa.Column("discord_id", sa.String(), nullable=True),
        sa.Column("discord_username", sa.String(), nullable=True),
        sa.Column("discord_avatar", sa.String(), nullable=True),
        sa.Column("discord_email", sa.String(), nullable=True),
        sa.Column("proficiencies", sa.JSON(), nullable=False),
        sa.Column(
            "profile_type", sa.String(), server_default="looking", nullable=False
        ),
        sa.Column(
            "is_available", sa.Boolean(), server_default=sa.true(), nullable=False
        ),
        sa.Column(
            "user_status", sa.String(), server_default="available", nullable=False
        ),
        sa.Column(
            "created_at",
            sa.TIMESTAMP(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.Column(
            "last_active_at",
            sa.TIMESTAMP(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("discord_id", name="uq_profiles_discord_id"),
    )
    op.create_index(op.f("ix_profiles_email"), "profiles", ["email"], unique=False)
    op.create_index(
        "ix_profiles_email_lower",
        "profiles",
        [sa.text("lower(email)")],
        unique=False,
    )


def downgrade() -> None:
    op.drop_index("ix_profiles_email_lower", table_name="profiles")
    op.drop_index(op.f("ix_profiles_email"), table_name="profiles")
    op.drop_table("profiles")
