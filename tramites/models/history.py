"""Append-only state history of a trámite."""
import enum
from sqlalchemy import Column, String, Integer, DateTime, ForeignKey, Text, Index, Enum as SAEnum
from sqlalchemy.orm import relationship
from tramites.database import Base
from tramites.models.tramite import TramiteState


class ActionType(str, enum.Enum):
    NORMAL = "NORMAL"
    FINALIZE = "FINALIZE"
    CANCEL = "CANCEL"
    REOPEN = "REOPEN"


class TramiteHistory(Base):
    __tablename__ = "tramite_history"

    history_id = Column(Integer, primary_key=True, autoincrement=True)
    tramite_id = Column(String(36), ForeignKey("tramites.tramite_id"), nullable=False)
    from_state = Column(SAEnum(TramiteState), nullable=True)
    to_state = Column(SAEnum(TramiteState), nullable=False)
    actor = Column(String(100), nullable=False)
    changed_at = Column(DateTime(timezone=True), nullable=False)
    notes = Column(Text, nullable=True)
    action_type = Column(SAEnum(ActionType), nullable=False, default=ActionType.NORMAL)

    tramite = relationship("Tramite", back_populates="history")

    __table_args__ = (Index("ix_tramite_history_tramite_changed", "tramite_id", "changed_at"),)
