"""Pydantic schemas for the document catalog."""
from pydantic import BaseModel, Field


class DocumentTypeCreate(BaseModel):
    key: str = Field(..., min_length=1, max_length=50)
    name: str = Field(..., min_length=1, max_length=150)
    required: bool = False


class DocumentTypeOut(BaseModel):
    document_type_id: str
    key: str
    name: str
    required: bool
    is_active: bool

    model_config = {"from_attributes": True}
