"""Pydantic schemas for agencies (concesionarios)."""
from datetime import datetime
from typing import Optional
from pydantic import BaseModel, Field


class AgencyCreate(BaseModel):
    code: str = Field(..., min_length=1, max_length=50)
    name: str = Field(..., min_length=1, max_length=150)


class AgencyOut(BaseModel):
    agency_id: str
    code: str
    name: str
    is_active: bool
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}
