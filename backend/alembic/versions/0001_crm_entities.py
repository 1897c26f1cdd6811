"""crm entities

Revision ID: 0001_crm_entities
Revises:
Create Date: 2026-10-16
"""

from alembic import op
import sqlalchemy as sa


revision = "0001_crm_entities"
down_revision = None
branch_labels = None
depends_on = None


def _inspector():
    from sqlalchemy import inspect as sa_inspect
    return sa_inspect(op.get_bind())


def upgrade() -> None:
    existing_tables = set(_inspector().get_table_names())
    now = sa.text("(CURRENT_TIMESTAMP)")

    if "organizations" not in existing_tables:
        op.create_table(
            "organizations",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("name", sa.String(), nullable=False),
            sa.Column("priority", sa.String(), nullable=True),
            sa.Column("segment", sa.String(), nullable=True),
            sa.Column("distributor", sa.String(), nullable=True),
            sa.Column("account_manager", sa.String(), nullable=True),
            sa.Column("phone", sa.String(), nullable=True),
            sa.Column("email", sa.String(), nullable=True),
            sa.Column("address", sa.Text(), nullable=True),
            sa.Column("city", sa.String(), nullable=True),
            sa.Column("state", sa.String(), nullable=True),
            sa.Column("zip_code", sa.String(), nullable=True),
            sa.Column("notes", sa.Text(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), server_default=now),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        )
        op.create_index("ix_organizations_id", "organizations", ["id"])
        op.create_index("ix_organizations_name", "organizations", ["name"])

    if "contacts" not in existing_tables:
        op.create_table(
            "contacts",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("organization_id", sa.Integer(), sa.ForeignKey("organizations.id"), nullable=False),
            sa.Column("first_name", sa.String(), nullable=False),
            sa.Column("last_name", sa.String(), nullable=False),
            sa.Column("email", sa.String(), nullable=True),
            sa.Column("phone", sa.String(), nullable=True),
            sa.Column("title", sa.String(), nullable=True),
            sa.Column("account_manager", sa.String(), nullable=True),
            sa.Column("linkedin", sa.String(), nullable=True),
            sa.Column("notes", sa.Text(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), server_default=now),
        )
        op.create_index("ix_contacts_id", "contacts", ["id"])
        op.create_index("ix_contacts_organization_id", "contacts", ["organization_id"])
        op.create_index("ix_contacts_email", "contacts", ["email"])

    if "opportunities" not in existing_tables:
        op.create_table(
            "opportunities",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("organization_id", sa.Integer(), sa.ForeignKey("organizations.id"), nullable=False),
            sa.Column("name", sa.String(), nullable=False),
            sa.Column("stage", sa.String(), nullable=True),
            sa.Column("status", sa.String(), nullable=True),
            sa.Column("value", sa.Float(), nullable=True),
            sa.Column("probability", sa.Float(), nullable=True),
            sa.Column("start_date", sa.DateTime(timezone=True), nullable=True),
            sa.Column("expected_close_date", sa.DateTime(timezone=True), nullable=True),
            sa.Column("principal", sa.String(), nullable=True),
            sa.Column("product", sa.String(), nullable=True),
            sa.Column("owner", sa.String(), nullable=True),
            sa.Column("notes", sa.Text(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), server_default=now),
        )
        op.create_index("ix_opportunities_id", "opportunities", ["id"])
        op.create_index("ix_opportunities_organization_id", "opportunities", ["organization_id"])
        op.create_index("ix_opportunities_name", "opportunities", ["name"])

    if "interactions" not in existing_tables:
        op.create_table(
            "interactions",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("organization_id", sa.Integer(), sa.ForeignKey("organizations.id"), nullable=True),
            sa.Column("contact_id", sa.Integer(), sa.ForeignKey("contacts.id"), nullable=True),
            sa.Column("opportunity_id", sa.Integer(), sa.ForeignKey("opportunities.id"), nullable=True),
            sa.Column("type", sa.String(), nullable=True),
            sa.Column("date", sa.DateTime(timezone=True), nullable=False),
            sa.Column("account_manager", sa.String(), nullable=True),
            sa.Column("principal", sa.String(), nullable=True),
            sa.Column("notes", sa.Text(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), server_default=now),
        )
        op.create_index("ix_interactions_id", "interactions", ["id"])
        op.create_index("ix_interactions_organization_id", "interactions", ["organization_id"])


def downgrade() -> None:
    op.drop_table("interactions")
    op.drop_table("opportunities")
    op.drop_table("contacts")
    op.drop_table("organizations")
