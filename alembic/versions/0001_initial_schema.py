"""Initial FlashGate schema."""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "0001_initial_schema"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    """Create node, cluster and lease tables."""
    op.create_table(
        "flash_nodes",
        sa.Column("namespace", sa.String(length=253), primary_key=True),
        sa.Column("name", sa.String(length=253), primary_key=True),
        sa.Column("generation", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("spec", postgresql.JSONB, nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column("status", postgresql.JSONB, nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )

    op.create_table(
        "flash_clusters",
        sa.Column("namespace", sa.String(length=253), primary_key=True),
        sa.Column("name", sa.String(length=253), primary_key=True),
        sa.Column("generation", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("spec", postgresql.JSONB, nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column("sync_status", sa.String(length=32), nullable=True),
        sa.Column("last_sync_error", sa.Text(), nullable=False, server_default=""),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )

    op.create_table(
        "cluster_leases",
        sa.Column("namespace", sa.String(length=253), primary_key=True),
        sa.Column("name", sa.String(length=253), primary_key=True),
        sa.Column("holder_identity", sa.String(length=253), nullable=False, server_default=""),
        sa.Column("lease_duration_seconds", sa.Integer(), nullable=False),
        sa.Column("acquire_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("renew_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("lease_transitions", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("version", sa.Integer(), nullable=False, server_default="0"),
    )


def downgrade() -> None:
    """Drop node, cluster and lease tables."""
    op.drop_table("cluster_leases")
    op.drop_table("flash_clusters")
    op.drop_table("flash_nodes")
