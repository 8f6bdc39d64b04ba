"""create principals and patient records tables

Revision ID: 4e7a0c1d2b3f
Revises:
Create Date: 2026-10-18 09:12:40.118204

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '4e7a0c1d2b3f'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create principals, patient_records, record_grants and record_events tables."""
    # Check if tables already exist (idempotent)
    conn = op.get_bind()
    inspector = sa.inspect(conn)
    existing_tables = set(inspector.get_table_names())

    if "principals" not in existing_tables:
        op.create_table(
            "principals",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("username", sa.String(150), nullable=False, unique=True),
            sa.Column("address", sa.String(128), nullable=True, unique=True),
            sa.Column("name", sa.String(255), nullable=True),
            sa.Column("healthcare_type", sa.String(128), nullable=True),
            sa.Column("organization_name", sa.String(255), nullable=True),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        )

    if "patient_records" not in existing_tables:
        op.create_table(
            "patient_records",
            sa.Column("record_id", sa.String(128), primary_key=True),
            sa.Column("owner_id", sa.String(64), nullable=False),
            sa.Column("content", sa.JSON(), nullable=False),
            sa.Column("access_requests", sa.JSON(), nullable=False),
            sa.Column("version", sa.Integer(), nullable=False),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
            sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        )
        op.create_index("ix_patient_records_owner_id", "patient_records", ["owner_id"])

    if "record_grants" not in existing_tables:
        op.create_table(
            "record_grants",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column(
                "record_id",
                sa.String(128),
                sa.ForeignKey("patient_records.record_id", ondelete="CASCADE"),
                nullable=False,
            ),
            sa.Column("principal_id", sa.String(64), nullable=False),
            sa.Column("file_ids", sa.JSON(), nullable=False),
            sa.UniqueConstraint("record_id", "principal_id", name="uq_record_grant_principal"),
        )
        op.create_index("ix_record_grants_principal_id", "record_grants", ["principal_id"])

    if "record_events" not in existing_tables:
        op.create_table(
            "record_events",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column(
                "record_id",
                sa.String(128),
                sa.ForeignKey("patient_records.record_id", ondelete="CASCADE"),
                nullable=False,
            ),
            sa.Column("seq", sa.Integer(), nullable=False),
            sa.Column("kind", sa.String(64), nullable=False),
            sa.Column("timestamp", sa.DateTime(), nullable=False),
            sa.Column("by_principal", sa.String(64), nullable=True),
            sa.Column("to_principal", sa.String(64), nullable=True),
            sa.Column("for_principal", sa.String(64), nullable=True),
            sa.Column("with_principal", sa.String(64), nullable=True),
            sa.Column("file_id", sa.String(64), nullable=True),
            sa.Column("file_name", sa.String(255), nullable=True),
            sa.UniqueConstraint("record_id", "seq", name="uq_record_event_seq"),
        )
        op.create_index("idx_record_events_record_seq", "record_events", ["record_id", "seq"])


def downgrade() -> None:
    op.drop_index("idx_record_events_record_seq", table_name="record_events")
    op.drop_table("record_events")
    op.drop_index("ix_record_grants_principal_id", table_name="record_grants")
    op.drop_table("record_grants")
    op.drop_index("ix_patient_records_owner_id", table_name="patient_records")
    op.drop_table("patient_records")
    op.drop_table("principals")
