"""documents_and_files

Revision ID: 0002
Revises: 0001
Create Date: 2026-10-19

Adds the document catalog (seeded with the standard kinds), the per-trámite
checklist snapshot and versioned file records.
"""
import uuid
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "0002"
down_revision: Union[str, None] = "0001"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

DEFAULT_DOCUMENT_TYPES = (
    ("FACTURA", "Factura", True),
    ("EVIDENCIA_PLACA", "Evidencia placa", False),
    ("DOC_FISICO", "Documento físico", False),
    ("RECIBO_TIMBRE", "Recibo timbre", False),
    ("RECIBO_DERECHOS", "Recibo derechos", False),
    ("OTRO", "Otro", False),
)


def upgrade() -> None:
    # --- document_types ---
    document_types = op.create_table(
        "document_types",
        sa.Column("document_type_id", sa.String(36), primary_key=True),
        sa.Column("key", sa.String(50), nullable=False, unique=True),
        sa.Column("name", sa.String(150), nullable=False),
        sa.Column("required", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.true()),
    )
    op.bulk_insert(
        document_types,
        [
            {"document_type_id": str(uuid.uuid4()), "key": key, "name": name, "required": required, "is_active": True}
            for key, name, required in DEFAULT_DOCUMENT_TYPES
        ],
    )

    # --- tramite_documents ---
    op.create_table(
        "tramite_documents",
        sa.Column("document_id", sa.String(36), primary_key=True),
        sa.Column("tramite_id", sa.String(36), sa.ForeignKey("tramites.tramite_id"), nullable=False),
        sa.Column(
            "document_type_id", sa.String(36), sa.ForeignKey("document_types.document_type_id"), nullable=True,
        ),
        sa.Column("doc_key", sa.String(50), nullable=False),
        sa.Column("name_snapshot", sa.String(150), nullable=False),
        sa.Column("required", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("status", sa.Enum("PENDIENTE", "RECIBIDO", name="checkliststatus"), nullable=False),
        sa.Column("received_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("tramite_id", "doc_key", name="uq_tramite_documents_key"),
    )

    # --- tramite_files ---
    op.create_table(
        "tramite_files",
        sa.Column("file_id", sa.String(36), primary_key=True),
        sa.Column("tramite_id", sa.String(36), sa.ForeignKey("tramites.tramite_id"), nullable=False),
        sa.Column(
            "document_type_id", sa.String(36), sa.ForeignKey("document_types.document_type_id"), nullable=True,
        ),
        sa.Column("doc_key", sa.String(50), nullable=False),
        sa.Column("version", sa.Integer, nullable=False),
        sa.Column("filename_original", sa.String(255), nullable=True),
        sa.Column("storage_path", sa.String(500), nullable=False),
        sa.Column("size_bytes", sa.Integer, nullable=False),
        sa.Column("uploaded_by", sa.String(100), nullable=False),
        sa.Column("uploaded_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint("tramite_id", "doc_key", "version", name="uq_tramite_files_version"),
    )


def downgrade() -> None:
    op.drop_table("tramite_files")
    op.drop_table("tramite_documents")
    op.drop_table("document_types")
    sa.Enum(name="checkliststatus").drop(op.get_bind(), checkfirst=True)
