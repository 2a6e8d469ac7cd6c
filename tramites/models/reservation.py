"""Consecutivo reservation model.

Rows are inserted and updated only by ``ConsecutivoAllocator``. The partial
unique index keeps RESERVED numbers unique per (agency, year) even if two
allocations race past the serializable check.
"""
import uuid
import enum
from sqlalchemy import Column, String, Integer, DateTime, ForeignKey, Index, Enum as SAEnum, text
from sqlalchemy.sql import func
from tramites.database import Base


class ReservationStatus(str, enum.Enum):
    RESERVED = "RESERVED"
    RELEASED = "RELEASED"


class ConsecutivoReservation(Base):
    __tablename__ = "consecutivo_reservations"

    reservation_id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    agency_id = Column(String(36), ForeignKey("agencies.agency_id"), nullable=False)
    year = Column(Integer, nullable=False)
    consecutivo = Column(Integer, nullable=False)
    status = Column(SAEnum(ReservationStatus), nullable=False, default=ReservationStatus.RESERVED)
    tramite_id = Column(String(36), ForeignKey("tramites.tramite_id"), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    released_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("ix_reservations_agency_year_status", "agency_id", "year", "status"),
        Index(
            "uq_reservations_active_consecutivo",
            "agency_id",
            "year",
            "consecutivo",
            unique=True,
            postgresql_where=text("status = 'RESERVED'"),
            sqlite_where=text("status = 'RESERVED'"),
        ),
    )
