"""Pydantic schemas for trámites and their history."""
from datetime import datetime
from decimal import Decimal
from typing import Optional, Union
from pydantic import Base64Bytes, BaseModel, Field

from tramites.models.document import ChecklistStatus
from tramites.models.history import ActionType
from tramites.models.tramite import TramiteState


class TramiteCreate(BaseModel):
    agency_code: str
    actor: str
    year: Optional[int] = Field(None, description="Defaults to the current year in the business timezone.")
    city: Optional[str] = None
    client_name: Optional[str] = None
    client_doc: Optional[str] = None
    fee: Optional[Union[Decimal, str]] = None
    invoice_pdf: Optional[Base64Bytes] = Field(None, description="Invoice PDF, base64 encoded.")
    invoice_filename: Optional[str] = Field(None, max_length=255)


class TramitePatch(BaseModel):
    actor: str
    agency_code: Optional[str] = Field(None, description="Reassigns the trámite and its consecutivo.")
    city: Optional[str] = None
    fee: Optional[Union[Decimal, str]] = None


class ChangeStateRequest(BaseModel):
    to_state: str
    actor: str
    notes: Optional[str] = Field(None, max_length=500)
    placa: Optional[str] = Field(None, max_length=20)


class FinalizeRequest(BaseModel):
    actor: str


class CancelRequest(BaseModel):
    actor: str
    reason: Optional[str] = None


class ReopenRequest(BaseModel):
    actor: str
    reason: str = Field(..., min_length=1)
    to_state: Optional[str] = None


class TramiteOut(BaseModel):
    tramite_id: str
    display_id: str
    year: int
    agency_id: str
    agency_code_snapshot: str
    consecutivo: int
    state: TramiteState
    placa: Optional[str] = None
    fee: Optional[Decimal] = None
    city: Optional[str] = None
    client_name: Optional[str] = None
    client_doc: Optional[str] = None
    invoice_path: Optional[str] = None
    previous_agency_id: Optional[str] = None
    previous_consecutivo: Optional[int] = None
    created_by: str
    created_at: Optional[datetime] = None
    finalized_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    is_overdue: bool = False

    model_config = {"from_attributes": True}


class TramitePage(BaseModel):
    items: list[TramiteOut]
    total: int


class HistoryEntryOut(BaseModel):
    history_id: int
    from_state: Optional[TramiteState] = None
    to_state: TramiteState
    actor: str
    changed_at: datetime
    notes: Optional[str] = None
    action_type: ActionType

    model_config = {"from_attributes": True}


class OverdueOut(BaseModel):
    tramite: TramiteOut
    rule: str
    days_late: int


class FileUploadRequest(BaseModel):
    actor: str
    doc_key: str = Field(..., min_length=1, max_length=50)
    content: Base64Bytes = Field(..., description="PDF file, base64 encoded.")
    filename_original: Optional[str] = Field(None, max_length=255)


class TramiteFileOut(BaseModel):
    file_id: str
    tramite_id: str
    doc_key: str
    version: int
    filename_original: Optional[str] = None
    storage_path: str
    size_bytes: int
    uploaded_by: str
    uploaded_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class ChecklistItemOut(BaseModel):
    document_id: str
    doc_key: str
    name_snapshot: str
    required: bool
    status: ChecklistStatus
    received_at: Optional[datetime] = None

    model_config = {"from_attributes": True}
