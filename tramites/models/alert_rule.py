"""Overdue (atrasado) rule: time allowed between two states."""
import uuid
from sqlalchemy import Column, String, Integer, Boolean, Enum as SAEnum
from tramites.database import Base
from tramites.models.tramite import TramiteState


class AlertRule(Base):
    __tablename__ = "alert_rules"

    rule_id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    name = Column(String(150), nullable=False, unique=True)
    from_state = Column(SAEnum(TramiteState), nullable=False)
    to_state = Column(SAEnum(TramiteState), nullable=False)
    threshold_days = Column(Integer, nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
