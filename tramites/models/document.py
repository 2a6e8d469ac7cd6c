"""Document catalog, per-trámite checklist snapshot and stored file versions."""
import uuid
import enum
from sqlalchemy import Column, String, Integer, Boolean, DateTime, ForeignKey, UniqueConstraint, Enum as SAEnum
from sqlalchemy.sql import func
from tramites.database import Base

INVOICE_DOC_KEY = "FACTURA"


class ChecklistStatus(str, enum.Enum):
    PENDIENTE = "PENDIENTE"
    RECIBIDO = "RECIBIDO"


class DocumentType(Base):
    __tablename__ = "document_types"

    document_type_id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    key = Column(String(50), nullable=False, unique=True)
    name = Column(String(150), nullable=False)
    required = Column(Boolean, nullable=False, default=False)
    is_active = Column(Boolean, nullable=False, default=True)


class TramiteDocument(Base):
    """Checklist item copied from the active catalog when the trámite is created."""

    __tablename__ = "tramite_documents"

    document_id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    tramite_id = Column(String(36), ForeignKey("tramites.tramite_id"), nullable=False)
    document_type_id = Column(String(36), ForeignKey("document_types.document_type_id"), nullable=True)
    doc_key = Column(String(50), nullable=False)
    name_snapshot = Column(String(150), nullable=False)
    required = Column(Boolean, nullable=False, default=False)
    status = Column(SAEnum(ChecklistStatus), nullable=False, default=ChecklistStatus.PENDIENTE)
    received_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (UniqueConstraint("tramite_id", "doc_key", name="uq_tramite_documents_key"),)


class TramiteFile(Base):
    __tablename__ = "tramite_files"

    file_id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    tramite_id = Column(String(36), ForeignKey("tramites.tramite_id"), nullable=False)
    document_type_id = Column(String(36), ForeignKey("document_types.document_type_id"), nullable=True)
    doc_key = Column(String(50), nullable=False)
    version = Column(Integer, nullable=False)
    filename_original = Column(String(255), nullable=True)
    storage_path = Column(String(500), nullable=False)
    size_bytes = Column(Integer, nullable=False)
    uploaded_by = Column(String(100), nullable=False)
    uploaded_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (UniqueConstraint("tramite_id", "doc_key", "version", name="uq_tramite_files_version"),)
