"""create_crm_tables

Revision ID: 3c1f0a9d2b7e
Revises:
Create Date: 2026-10-18 09:12:40.118203

"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "3c1f0a9d2b7e"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("now()"),
            comment="Record creation timestamp",
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("now()"),
            comment="Record last update timestamp",
        ),
    ]


def _entity_core() -> list[sa.Column]:
    return [
        sa.Column("id", sa.String(length=36), nullable=False, comment="Entity UUID"),
        sa.Column(
            "organization_id",
            sa.String(length=36),
            nullable=False,
            comment="Owning organization UUID",
        ),
        sa.Column(
            "created_by",
            sa.String(length=255),
            nullable=True,
            comment="Profile id of the creating actor",
        ),
        sa.Column(
            "assigned_to",
            sa.String(length=255),
            nullable=True,
            comment="Profile id of the assignee",
        ),
        sa.Column("tags", sa.JSON(), nullable=False, server_default=sa.text("'[]'")),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column(
            "custom_fields", sa.JSON(), nullable=False, server_default=sa.text("'{}'")
        ),
        *_timestamps(),
    ]


def upgrade() -> None:
    """Upgrade schema."""
    # Tenants
    op.create_table(
        "organizations",
        sa.Column(
            "id", sa.String(length=36), nullable=False, comment="Organization UUID"
        ),
        sa.Column(
            "name",
            sa.String(length=255),
            nullable=False,
            comment="Organization display name",
        ),
        sa.Column(
            "subscription_plan",
            sa.String(length=32),
            nullable=False,
            server_default="free",
            comment="Subscription plan (free, pro, enterprise)",
        ),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "profiles",
        sa.Column(
            "id", sa.String(length=255), nullable=False, comment="Auth provider user id"
        ),
        sa.Column(
            "email", sa.String(length=255), nullable=False, comment="User email address"
        ),
        sa.Column("first_name", sa.String(length=128), nullable=True),
        sa.Column("last_name", sa.String(length=128), nullable=True),
        sa.Column("job_title", sa.String(length=128), nullable=True),
        sa.Column("phone", sa.String(length=64), nullable=True),
        sa.Column("avatar_url", sa.String(length=1024), nullable=True),
        sa.Column(
            "role",
            sa.String(length=32),
            nullable=False,
            server_default="user",
            comment="Role inside the organization (owner, admin, manager, user, agent)",
        ),
        sa.Column(
            "organization_id",
            sa.String(length=36),
            nullable=False,
            comment="Organization UUID",
        ),
        sa.Column(
            "onboarding_completed",
            sa.Boolean(),
            nullable=False,
            server_default=sa.false(),
        ),
        *_timestamps(),
        sa.ForeignKeyConstraint(
            ["organization_id"], ["organizations.id"], ondelete="CASCADE"
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_profiles_email"), "profiles", ["email"], unique=False)
    op.create_index(
        op.f("ix_profiles_organization_id"),
        "profiles",
        ["organization_id"],
        unique=False,
    )

    # Business entities
    op.create_table(
        "contacts",
        *_entity_core(),
        sa.Column("first_name", sa.String(length=128), nullable=False),
        sa.Column("last_name", sa.String(length=128), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=True),
        sa.Column("phone", sa.String(length=64), nullable=True),
        sa.Column("mobile", sa.String(length=64), nullable=True),
        sa.Column("company", sa.String(length=255), nullable=True),
        sa.Column("job_title", sa.String(length=128), nullable=True),
        sa.Column("department", sa.String(length=128), nullable=True),
        sa.Column("website", sa.Text(), nullable=True),
        sa.Column("linkedin_url", sa.Text(), nullable=True),
        sa.Column("twitter_url", sa.Text(), nullable=True),
        sa.Column("facebook_url", sa.Text(), nullable=True),
        sa.Column("address", sa.JSON(), nullable=True),
        sa.Column("lead_score", sa.Integer(), nullable=False, server_default="0"),
        sa.Column(
            "status", sa.String(length=32), nullable=False, server_default="active"
        ),
        sa.Column("lead_source", sa.String(length=32), nullable=True),
        sa.Column(
            "lifecycle_stage",
            sa.String(length=32),
            nullable=False,
            server_default="lead",
        ),
        sa.Column("last_contacted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("next_follow_up_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(
            ["organization_id"], ["organizations.id"], ondelete="CASCADE"
        ),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "deals",
        *_entity_core(),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column(
            "value",
            sa.Numeric(precision=14, scale=2),
            nullable=False,
            server_default="0",
            comment="Deal amount in the deal currency",
        ),
        sa.Column(
            "currency", sa.String(length=3), nullable=False, server_default="USD"
        ),
        sa.Column(
            "stage",
            sa.String(length=32),
            nullable=False,
            server_default="prospecting",
            comment="Pipeline stage",
        ),
        sa.Column("probability", sa.Integer(), nullable=False, server_default="10"),
        sa.Column("expected_close_date", sa.Date(), nullable=True),
        sa.Column("actual_close_date", sa.Date(), nullable=True),
        sa.Column("lead_source", sa.String(length=32), nullable=True),
        sa.Column("contact_id", sa.String(length=36), nullable=True),
        sa.ForeignKeyConstraint(
            ["organization_id"], ["organizations.id"], ondelete="CASCADE"
        ),
        sa.ForeignKeyConstraint(["contact_id"], ["contacts.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "tasks",
        *_entity_core(),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("type", sa.String(length=32), nullable=False, server_default="task"),
        sa.Column(
            "priority", sa.String(length=16), nullable=False, server_default="medium"
        ),
        sa.Column(
            "status", sa.String(length=16), nullable=False, server_default="pending"
        ),
        sa.Column("due_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "completed_at",
            sa.DateTime(timezone=True),
            nullable=True,
            comment="Stamped by the service when status first becomes completed",
        ),
        sa.Column("reminder_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("contact_id", sa.String(length=36), nullable=True),
        sa.Column("deal_id", sa.String(length=36), nullable=True),
        sa.ForeignKeyConstraint(
            ["organization_id"], ["organizations.id"], ondelete="CASCADE"
        ),
        sa.ForeignKeyConstraint(["contact_id"], ["contacts.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["deal_id"], ["deals.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )

    for table in ("contacts", "deals", "tasks"):
        op.create_index(
            op.f(f"ix_{table}_organization_id"), table, ["organization_id"], unique=False
        )
        op.create_index(op.f(f"ix_{table}_created_at"), table, ["created_at"], unique=False)
        op.create_index(
            f"idx_{table}_org_created", table, ["organization_id", "created_at"], unique=False
        )
    op.create_index(op.f("ix_deals_contact_id"), "deals", ["contact_id"], unique=False)
    op.create_index(op.f("ix_tasks_contact_id"), "tasks", ["contact_id"], unique=False)
    op.create_index(op.f("ix_tasks_deal_id"), "tasks", ["deal_id"], unique=False)
    op.create_index(
        "idx_tasks_org_status", "tasks", ["organization_id", "status"], unique=False
    )

    # Audit trail (no foreign keys on subjects so records outlive them)
    op.create_table(
        "activities",
        sa.Column("id", sa.String(length=36), nullable=False, comment="Activity UUID"),
        sa.Column("organization_id", sa.String(length=36), nullable=False),
        sa.Column(
            "user_id", sa.String(length=255), nullable=False, comment="Acting profile id"
        ),
        sa.Column("contact_id", sa.String(length=36), nullable=True),
        sa.Column("deal_id", sa.String(length=36), nullable=True),
        sa.Column("task_id", sa.String(length=36), nullable=True),
        sa.Column(
            "type",
            sa.String(length=64),
            nullable=False,
            comment="Entity and activity kind, e.g. deal_stage_changed",
        ),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column(
            "metadata", sa.JSON(), nullable=False, server_default=sa.text("'{}'")
        ),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("now()"),
            comment="Record creation timestamp",
        ),
        sa.ForeignKeyConstraint(
            ["organization_id"], ["organizations.id"], ondelete="CASCADE"
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        op.f("ix_activities_organization_id"),
        "activities",
        ["organization_id"],
        unique=False,
    )
    for column in ("contact_id", "deal_id", "task_id"):
        op.create_index(
            op.f(f"ix_activities_{column}"), "activities", [column], unique=False
        )
    op.create_index(
        "idx_activities_org_created",
        "activities",
        ["organization_id", "created_at"],
        unique=False,
    )


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_table("activities")
    op.drop_table("tasks")
    op.drop_table("deals")
    op.drop_table("contacts")
    op.drop_table("profiles")
    op.drop_table("organizations")
