"""initial_schema

Revision ID: 0001
Revises:
Create Date: 2026-10-19

Creates all tables for the trámites backend:
agencies, tramites, consecutivo_reservations, tramite_history, alert_rules.
"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "0001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

TRAMITE_STATES = (
    "FACTURA_RECIBIDA",
    "PLACA_ASIGNADA",
    "DOCS_FISICOS_PENDIENTES",
    "DOCS_FISICOS_COMPLETOS",
    "ENVIADO_GESTOR_TRANSITO",
    "FINALIZADO_ENTREGADO",
    "CANCELADO",
)


def _state_enum():
    return sa.Enum(*TRAMITE_STATES, name="tramitestate", create_type=False)


def upgrade() -> None:
    sa.Enum(*TRAMITE_STATES, name="tramitestate").create(op.get_bind(), checkfirst=True)

    # --- agencies ---
    op.create_table(
        "agencies",
        sa.Column("agency_id", sa.String(36), primary_key=True),
        sa.Column("code", sa.String(50), nullable=False, unique=True),
        sa.Column("name", sa.String(150), nullable=False),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    # --- tramites ---
    op.create_table(
        "tramites",
        sa.Column("tramite_id", sa.String(36), primary_key=True),
        sa.Column("year", sa.Integer, nullable=False),
        sa.Column("agency_id", sa.String(36), sa.ForeignKey("agencies.agency_id"), nullable=False),
        sa.Column("agency_code_snapshot", sa.String(50), nullable=False),
        sa.Column("consecutivo", sa.Integer, nullable=False),
        sa.Column("state", _state_enum(), nullable=False),
        sa.Column("placa", sa.String(20), nullable=True),
        sa.Column("fee", sa.Numeric(12, 2), nullable=True),
        sa.Column("city", sa.String(100), nullable=True),
        sa.Column("client_name", sa.String(200), nullable=True),
        sa.Column("client_doc", sa.String(50), nullable=True),
        sa.Column("invoice_path", sa.String(500), nullable=True),
        sa.Column("previous_agency_id", sa.String(36), sa.ForeignKey("agencies.agency_id"), nullable=True),
        sa.Column("previous_consecutivo", sa.Integer, nullable=True),
        sa.Column("created_by", sa.String(100), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("finalized_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
    )

    # --- consecutivo_reservations ---
    op.create_table(
        "consecutivo_reservations",
        sa.Column("reservation_id", sa.String(36), primary_key=True),
        sa.Column("agency_id", sa.String(36), sa.ForeignKey("agencies.agency_id"), nullable=False),
        sa.Column("year", sa.Integer, nullable=False),
        sa.Column("consecutivo", sa.Integer, nullable=False),
        sa.Column("status", sa.Enum("RESERVED", "RELEASED", name="reservationstatus"), nullable=False),
        sa.Column("tramite_id", sa.String(36), sa.ForeignKey("tramites.tramite_id"), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("released_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index(
        "ix_reservations_agency_year_status",
        "consecutivo_reservations",
        ["agency_id", "year", "status"],
    )
    op.create_index(
        "uq_reservations_active_consecutivo",
        "consecutivo_reservations",
        ["agency_id", "year", "consecutivo"],
        unique=True,
        postgresql_where=sa.text("status = 'RESERVED'"),
        sqlite_where=sa.text("status = 'RESERVED'"),
    )

    # --- tramite_history ---
    op.create_table(
        "tramite_history",
        sa.Column("history_id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("tramite_id", sa.String(36), sa.ForeignKey("tramites.tramite_id"), nullable=False),
        sa.Column("from_state", _state_enum(), nullable=True),
        sa.Column("to_state", _state_enum(), nullable=False),
        sa.Column("actor", sa.String(100), nullable=False),
        sa.Column("changed_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("notes", sa.Text, nullable=True),
        sa.Column(
            "action_type",
            sa.Enum("NORMAL", "FINALIZE", "CANCEL", "REOPEN", name="actiontype"),
            nullable=False,
        ),
    )
    op.create_index("ix_tramite_history_tramite_changed", "tramite_history", ["tramite_id", "changed_at"])

    # --- alert_rules ---
    op.create_table(
        "alert_rules",
        sa.Column("rule_id", sa.String(36), primary_key=True),
        sa.Column("name", sa.String(150), nullable=False, unique=True),
        sa.Column("from_state", _state_enum(), nullable=False),
        sa.Column("to_state", _state_enum(), nullable=False),
        sa.Column("threshold_days", sa.Integer, nullable=False),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.true()),
    )


def downgrade() -> None:
    op.drop_table("alert_rules")
    op.drop_index("ix_tramite_history_tramite_changed", table_name="tramite_history")
    op.drop_table("tramite_history")
    op.drop_index("uq_reservations_active_consecutivo", table_name="consecutivo_reservations")
    op.drop_index("ix_reservations_agency_year_status", table_name="consecutivo_reservations")
    op.drop_table("consecutivo_reservations")
    op.drop_table("tramites")
    op.drop_table("agencies")
    sa.Enum(name="actiontype").drop(op.get_bind(), checkfirst=True)
    sa.Enum(name="reservationstatus").drop(op.get_bind(), checkfirst=True)
    sa.Enum(name="tramitestate").drop(op.get_bind(), checkfirst=True)
