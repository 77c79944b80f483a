# migrations/versions/20261018_certificates_initial.py
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "20261018_certificates_initial"
down_revision = None
branch_labels = None
depends_on = None

def upgrade():
    op.create_table(
        "certificate_numbers",
        sa.Column("certificate_number", sa.String(64), nullable=False),
        sa.Column("kind", sa.String(10), nullable=False),
        sa.Column("reserved_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("certificate_number", name="pk_certificate_numbers"),
    )

    op.create_table(
        "single_certificates",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("certificate_number", sa.String(64), nullable=False),
        sa.Column("issuer_id", sa.String(64), nullable=False),
        sa.Column("holder_name", sa.String(200), nullable=False),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("grant_date", sa.Date(), nullable=False),
        sa.Column("expiration_date", sa.Date(), nullable=True),
        sa.Column("certificate_hash", sa.String(80), nullable=False),
        sa.Column("transaction_hash", sa.String(80), nullable=True),
        sa.Column("status", sa.Integer(), nullable=False),
        sa.Column("issue_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("artifact_url", sa.String(255), nullable=True),
        sa.PrimaryKeyConstraint("id", name="pk_single_certificates"),
    )
    op.create_index("ix_single_certificates_certificate_number", "single_certificates", ["certificate_number"], unique=True)
    op.create_index("ix_single_certificates_issuer_id", "single_certificates", ["issuer_id"])

    op.create_table(
        "batch_certificates",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("certificate_number", sa.String(64), nullable=False),
        sa.Column("issuer_id", sa.String(64), nullable=False),
        sa.Column("batch_id", sa.Integer(), nullable=False),
        sa.Column("proof", sa.JSON(), nullable=False),
        sa.Column("encoded_proof", sa.String(80), nullable=False),
        sa.Column("certificate_hash", sa.String(80), nullable=False),
        sa.Column("transaction_hash", sa.String(80), nullable=True),
        sa.Column("status", sa.Integer(), nullable=False),
        sa.Column("holder_name", sa.String(200), nullable=False),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("grant_date", sa.Date(), nullable=False),
        sa.Column("expiration_date", sa.Date(), nullable=True),
        sa.Column("extra_fields", sa.JSON(), nullable=True),
        sa.Column("issue_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("artifact_url", sa.String(255), nullable=True),
        sa.PrimaryKeyConstraint("id", name="pk_batch_certificates"),
    )
    op.create_index("ix_batch_certificates_certificate_number", "batch_certificates", ["certificate_number"], unique=True)
    op.create_index("ix_batch_certificates_issuer_id", "batch_certificates", ["issuer_id"])
    op.create_index("ix_batch_certificates_batch_id", "batch_certificates", ["batch_id"])
    op.create_index("ix_batch_certificates_encoded_proof", "batch_certificates", ["encoded_proof"])

    op.create_table(
        "short_urls",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("certificate_number", sa.String(64), nullable=False),
        sa.Column("issuer_id", sa.String(64), nullable=False),
        sa.Column("url", sa.Text(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("id", name="pk_short_urls"),
    )
    op.create_index("ix_short_urls_certificate_number", "short_urls", ["certificate_number"], unique=True)

    op.create_table(
        "certificate_events",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("issuer_id", sa.String(64), nullable=False),
        sa.Column("certificate_number", sa.String(64), nullable=True),
        sa.Column("batch_id", sa.Integer(), nullable=True),
        sa.Column("action", sa.String(30), nullable=False),
        sa.Column("status", sa.Integer(), nullable=True),
        sa.Column("transaction_hash", sa.String(80), nullable=True),
        sa.Column("details_json", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("id", name="pk_certificate_events"),
    )
    op.create_index("ix_certificate_events_certificate_number", "certificate_events", ["certificate_number"])

def downgrade():
    op.drop_index("ix_certificate_events_certificate_number", table_name="certificate_events")
    op.drop_table("certificate_events")
    op.drop_index("ix_short_urls_certificate_number", table_name="short_urls")
    op.drop_table("short_urls")
    for ix in ("encoded_proof", "batch_id", "issuer_id", "certificate_number"):
        op.drop_index(f"ix_batch_certificates_{ix}", table_name="batch_certificates")
    op.drop_table("batch_certificates")
    op.drop_index("ix_single_certificates_issuer_id", table_name="single_certificates")
    op.drop_index("ix_single_certificates_certificate_number", table_name="single_certificates")
    op.drop_table("single_certificates")
    op.drop_table("certificate_numbers")
