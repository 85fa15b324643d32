"""auth_schema

Revision ID: 3f9c2a71d0b4
Revises: 
Create Date: 2026-10-19 09:12:40.118204

"""
from alembic import op
import sqlalchemy as sa


revision = '3f9c2a71d0b4'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    role = sa.Enum("USER", "ADMIN", name="role")

    op.create_table(
        "user",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("full_name", sa.String(), nullable=False),
        sa.Column("email", sa.String(), nullable=False),
        sa.Column("password_hash", sa.String(), nullable=False),
        sa.Column("role", role, nullable=False, server_default="USER"),
        sa.Column("is_premium", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("level", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("xp_total", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_user_email", "user", ["email"], unique=True)

    op.create_table(
        "refreshtoken",
        sa.Column("token", sa.String(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("family_id", sa.String(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("replaced_by", sa.String(), nullable=True),
        sa.ForeignKeyConstraint(["user_id"], ["user.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("token"),
    )
    op.create_index("ix_refreshtoken_user_id", "refreshtoken", ["user_id"], unique=False)
    op.create_index("ix_refreshtoken_family_id", "refreshtoken", ["family_id"], unique=False)

    op.create_table(
        "passwordreset",
        sa.Column("token", sa.String(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("used", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["user_id"], ["user.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("token"),
    )
    op.create_index("ix_passwordreset_user_id", "passwordreset", ["user_id"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_passwordreset_user_id", table_name="passwordreset")
    op.drop_table("passwordreset")
    op.drop_index("ix_refreshtoken_family_id", table_name="refreshtoken")
    op.drop_index("ix_refreshtoken_user_id", table_name="refreshtoken")
    op.drop_table("refreshtoken")
    op.drop_index("ix_user_email", table_name="user")
    op.drop_table("user")
    sa.Enum(name="role").drop(op.get_bind(), checkfirst=True)
