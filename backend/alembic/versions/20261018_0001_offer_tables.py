"""sale offer coordinator tables

Revision ID: 20261018_0001
Revises:
Create Date: 2026-10-18
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261018_0001_offer_tables"
down_revision = None
branch_labels = None
depends_on = None


def _id() -> sa.Column:
    return sa.Column("id", sa.String(length=36), primary_key=True)


def _offer_fk() -> sa.Column:
    return sa.Column(
        "offer_id",
        sa.String(length=36),
        sa.ForeignKey("property_sale_offers.id", ondelete="CASCADE"),
        nullable=False,
    )


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    ]


def upgrade() -> None:
    op.create_table(
        "properties",
        _id(),
        sa.Column("owner_id", sa.String(length=64), nullable=False),
        sa.Column("title", sa.String(length=255)),
        sa.Column("address_street", sa.String(length=255)),
        sa.Column("address_commune", sa.String(length=128)),
        sa.Column("address_region", sa.String(length=128)),
        sa.Column("price", sa.Numeric(16, 2)),
        *_timestamps(),
    )
    op.create_index("ix_properties_owner_id", "properties", ["owner_id"])

    op.create_table(
        "property_sale_offers",
        _id(),
        sa.Column("property_id", sa.String(length=36), sa.ForeignKey("properties.id"), nullable=False),
        sa.Column("buyer_id", sa.String(length=64), nullable=False),
        sa.Column("buyer_name", sa.String(length=255)),
        sa.Column("buyer_email", sa.String(length=255)),
        sa.Column("buyer_phone", sa.String(length=64)),
        sa.Column("offer_amount", sa.Numeric(16, 2), nullable=False),
        sa.Column("offer_amount_currency", sa.String(length=8), nullable=False, server_default="CLP"),
        sa.Column("financing_type", sa.String(length=64)),
        sa.Column("message", sa.Text()),
        sa.Column("status", sa.String(length=32), nullable=False, server_default="pendiente"),
        sa.Column("requests_title_study", sa.Boolean(), server_default=sa.false()),
        sa.Column("requests_property_inspection", sa.Boolean(), server_default=sa.false()),
        sa.Column("seller_response", sa.Text()),
        sa.Column("seller_notes", sa.Text()),
        sa.Column("counter_offer_amount", sa.Numeric(16, 2)),
        sa.Column("counter_offer_terms", sa.Text()),
        sa.Column("counter_offer_by", sa.String(length=16)),
        sa.Column("closing_note", sa.Text()),
        sa.Column("responded_at", sa.DateTime(timezone=True)),
        *_timestamps(),
    )
    op.create_index("ix_property_sale_offers_property_id", "property_sale_offers", ["property_id"])
    op.create_index("ix_property_sale_offers_buyer_id", "property_sale_offers", ["buyer_id"])
    op.create_index("ix_property_sale_offers_status", "property_sale_offers", ["status"])
    op.create_index("ix_property_sale_offers_created_at", "property_sale_offers", ["created_at"])

    op.create_table(
        "offer_tasks",
        _id(),
        _offer_fk(),
        sa.Column("task_type", sa.String(length=32), nullable=False),
        sa.Column("description", sa.Text()),
        sa.Column("priority", sa.String(length=16), nullable=False, server_default="normal"),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="pendiente"),
        sa.Column("assigned_to", sa.String(length=64)),
        sa.Column("assigned_by", sa.String(length=64)),
        sa.Column("due_date", sa.DateTime(timezone=True)),
        sa.Column("completed_at", sa.DateTime(timezone=True)),
        *_timestamps(),
    )
    op.create_index("ix_offer_tasks_offer_id", "offer_tasks", ["offer_id"])
    op.create_index("ix_offer_tasks_assigned_to", "offer_tasks", ["assigned_to"])

    op.create_table(
        "offer_documents",
        _id(),
        _offer_fk(),
        sa.Column("document_name", sa.String(length=255), nullable=False),
        sa.Column("document_type", sa.String(length=32), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="pendiente"),
        sa.Column("file_url", sa.String(length=1024)),
        sa.Column("file_size", sa.Integer()),
        sa.Column("file_type", sa.String(length=128)),
        sa.Column("notes", sa.Text()),
        sa.Column("requested_by", sa.String(length=64)),
        sa.Column("uploaded_by", sa.String(length=64)),
        sa.Column("validated_by", sa.String(length=64)),
        sa.Column("validated_at", sa.DateTime(timezone=True)),
        sa.Column("is_required", sa.Boolean(), server_default=sa.false()),
        sa.Column("uploaded_at", sa.DateTime(timezone=True)),
        sa.Column("expires_at", sa.DateTime(timezone=True)),
        *_timestamps(),
    )
    op.create_index("ix_offer_documents_offer_id", "offer_documents", ["offer_id"])

    op.create_table(
        "offer_formal_requests",
        _id(),
        _offer_fk(),
        sa.Column("request_type", sa.String(length=32), nullable=False),
        sa.Column("request_title", sa.String(length=255), nullable=False),
        sa.Column("request_description", sa.Text()),
        sa.Column("required_documents", sa.JSON()),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="solicitada"),
        sa.Column("requested_by", sa.String(length=64), nullable=False),
        sa.Column("requested_to", sa.String(length=64)),
        sa.Column("response_text", sa.Text()),
        sa.Column("response_documents", sa.JSON()),
        sa.Column("responded_at", sa.DateTime(timezone=True)),
        sa.Column("due_date", sa.DateTime(timezone=True)),
        *_timestamps(),
    )
    op.create_index("ix_offer_formal_requests_offer_id", "offer_formal_requests", ["offer_id"])

    op.create_table(
        "offer_communications",
        _id(),
        _offer_fk(),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("message_type", sa.String(length=16), nullable=False, server_default="comunicacion"),
        sa.Column("author_id", sa.String(length=64), nullable=False),
        sa.Column("author_role", sa.String(length=16), nullable=False),
        sa.Column("is_private", sa.Boolean(), server_default=sa.false()),
        sa.Column("visible_to_buyer", sa.Boolean(), server_default=sa.true()),
        sa.Column("attachment_ids", sa.JSON()),
        *_timestamps(),
    )
    op.create_index("ix_offer_communications_offer_id", "offer_communications", ["offer_id"])

    op.create_table(
        "offer_timeline",
        _id(),
        _offer_fk(),
        sa.Column("event_type", sa.String(length=64), nullable=False),
        sa.Column("event_title", sa.String(length=255), nullable=False),
        sa.Column("event_description", sa.Text()),
        sa.Column("triggered_by", sa.String(length=64), nullable=False),
        sa.Column("triggered_by_role", sa.String(length=16), nullable=False),
        sa.Column("related_data", sa.JSON()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_offer_timeline_offer_id", "offer_timeline", ["offer_id"])
    op.create_index("ix_offer_timeline_event_type", "offer_timeline", ["event_type"])
    op.create_index("ix_offer_timeline_created_at", "offer_timeline", ["created_at"])


def downgrade() -> None:
    for table in (
        "offer_timeline",
        "offer_communications",
        "offer_formal_requests",
        "offer_documents",
        "offer_tasks",
        "property_sale_offers",
        "properties",
    ):
        op.drop_table(table)
