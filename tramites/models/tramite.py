"""Trámite (case) ORM model and workflow states."""
import uuid
import enum
from sqlalchemy import Column, String, Integer, Numeric, DateTime, ForeignKey, Enum as SAEnum
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from tramites.database import Base


class TramiteState(str, enum.Enum):
    FACTURA_RECIBIDA = "FACTURA_RECIBIDA"
    PLACA_ASIGNADA = "PLACA_ASIGNADA"
    DOCS_FISICOS_PENDIENTES = "DOCS_FISICOS_PENDIENTES"
    DOCS_FISICOS_COMPLETOS = "DOCS_FISICOS_COMPLETOS"
    ENVIADO_GESTOR_TRANSITO = "ENVIADO_GESTOR_TRANSITO"
    FINALIZADO_ENTREGADO = "FINALIZADO_ENTREGADO"
    CANCELADO = "CANCELADO"


INITIAL_STATE = TramiteState.FACTURA_RECIBIDA
FINALIZED_STATE = TramiteState.FINALIZADO_ENTREGADO
CANCELLED_STATE = TramiteState.CANCELADO
LOCKED_STATES = frozenset({FINALIZED_STATE, CANCELLED_STATE})
REOPEN_DEFAULT_STATE = TramiteState.DOCS_FISICOS_PENDIENTES


def format_display_id(year: int, agency_code: str, consecutivo: int) -> str:
    """Human-facing identifier, e.g. ``2025-AUTOTROPICAL-0007``."""
    return f"{year}-{agency_code}-{consecutivo:04d}"


class Tramite(Base):
    __tablename__ = "tramites"

    tramite_id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    year = Column(Integer, nullable=False)
    agency_id = Column(String(36), ForeignKey("agencies.agency_id"), nullable=False)
    agency_code_snapshot = Column(String(50), nullable=False)
    consecutivo = Column(Integer, nullable=False)
    state = Column(SAEnum(TramiteState), nullable=False, default=INITIAL_STATE)
    placa = Column(String(20), nullable=True)
    fee = Column(Numeric(12, 2), nullable=True)
    city = Column(String(100), nullable=True)
    client_name = Column(String(200), nullable=True)
    client_doc = Column(String(50), nullable=True)
    invoice_path = Column(String(500), nullable=True)
    previous_agency_id = Column(String(36), ForeignKey("agencies.agency_id"), nullable=True)
    previous_consecutivo = Column(Integer, nullable=True)
    created_by = Column(String(100), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
    finalized_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)

    history = relationship(
        "TramiteHistory",
        back_populates="tramite",
        order_by="TramiteHistory.history_id",
    )

    @property
    def display_id(self) -> str:
        return format_display_id(self.year, self.agency_code_snapshot, self.consecutivo)

    @property
    def is_locked(self) -> bool:
        return self.state in LOCKED_STATES
