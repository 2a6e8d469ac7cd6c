"""Pydantic schemas for overdue alert rules."""
from pydantic import BaseModel, Field

from tramites.models.tramite import TramiteState


class AlertRuleCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=150)
    from_state: TramiteState
    to_state: TramiteState
    threshold_days: int = Field(..., ge=0)


class AlertRuleOut(BaseModel):
    rule_id: str
    name: str
    from_state: TramiteState
    to_state: TramiteState
    threshold_days: int
    is_active: bool

    model_config = {"from_attributes": True}
