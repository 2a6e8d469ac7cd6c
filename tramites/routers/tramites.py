"""Trámite API routes — delegates to TramiteStateMachine for invariant enforcement."""
import logging
from typing import Optional
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from tramites.config import Settings
from tramites.database import get_db
from tramites.dependencies import get_settings, get_state_machine
from tramites.errors import NotFound
from tramites.models.agency import Agency
from tramites.models.tramite import Tramite, TramiteState
from tramites.schemas.tramite import (
    CancelRequest,
    ChangeStateRequest,
    ChecklistItemOut,
    FileUploadRequest,
    FinalizeRequest,
    HistoryEntryOut,
    OverdueOut,
    ReopenRequest,
    TramiteCreate,
    TramiteFileOut,
    TramiteOut,
    TramitePage,
    TramitePatch,
)
from tramites.services import sla_service
from tramites.services.tramite_service import TramiteStateMachine, current_year

logger = logging.getLogger(__name__)
router = APIRouter()


def _agency_by_code(db: Session, code: str) -> Agency:
    agency = db.query(Agency).filter(Agency.code == code.strip().upper()).first()
    if not agency:
        raise NotFound("Agency", code)
    return agency


def _out(db: Session, tramite: Tramite) -> TramiteOut:
    breach = sla_service.overdue_map(db, [tramite])[tramite.tramite_id]
    return TramiteOut.model_validate(tramite).model_copy(update={"is_overdue": breach is not None})


@router.post("/", response_model=TramiteOut, status_code=status.HTTP_201_CREATED)
def create_tramite(
    payload: TramiteCreate,
    db: Session = Depends(get_db),
    machine: TramiteStateMachine = Depends(get_state_machine),
    config: Settings = Depends(get_settings),
):
    """Reserve a consecutivo and open a trámite in FACTURA_RECIBIDA."""
    agency = _agency_by_code(db, payload.agency_code)
    tramite = machine.create_case(
        agency.agency_id,
        payload.year or current_year(config.BUSINESS_TIMEZONE),
        payload.actor,
        city=payload.city,
        client_name=payload.client_name,
        client_doc=payload.client_doc,
        fee=payload.fee,
        invoice_pdf=payload.invoice_pdf,
        invoice_filename=payload.invoice_filename,
    )
    return _out(db, tramite)


@router.get("/", response_model=TramitePage)
def list_tramites(
    year: Optional[int] = Query(None),
    agency_code: Optional[str] = Query(None),
    state: Optional[TramiteState] = Query(None),
    consecutivo: Optional[int] = Query(None, ge=1),
    placa: Optional[str] = Query(None),
    include_cancelled: bool = Query(False),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db),
    machine: TramiteStateMachine = Depends(get_state_machine),
):
    """Inbox listing with filters; each item carries its overdue flag."""
    items, total = machine.list_cases(
        year=year,
        agency_code=agency_code.strip().upper() if agency_code else None,
        state=state,
        consecutivo=consecutivo,
        placa=placa,
        include_cancelled=include_cancelled,
        offset=(page - 1) * page_size,
        limit=page_size,
    )
    breaches = sla_service.overdue_map(db, items)
    return TramitePage(
        items=[
            TramiteOut.model_validate(t).model_copy(update={"is_overdue": breaches[t.tramite_id] is not None})
            for t in items
        ],
        total=total,
    )


@router.get("/overdue", response_model=list[OverdueOut])
def list_overdue(db: Session = Depends(get_db)):
    """Trámites breaching an active alert rule, with the worst rule for each."""
    return [
        OverdueOut(
            tramite=TramiteOut.model_validate(t).model_copy(update={"is_overdue": True}),
            rule=breach.rule_text,
            days_late=breach.days_late,
        )
        for t, breach in sla_service.list_overdue(db)
    ]


@router.get("/{tramite_id}", response_model=TramiteOut)
def get_tramite(
    tramite_id: str,
    db: Session = Depends(get_db),
    machine: TramiteStateMachine = Depends(get_state_machine),
):
    return _out(db, machine.get(tramite_id))


@router.patch("/{tramite_id}", response_model=TramiteOut)
def patch_tramite(
    tramite_id: str,
    payload: TramitePatch,
    db: Session = Depends(get_db),
    machine: TramiteStateMachine = Depends(get_state_machine),
):
    """Edit details and/or move the trámite to another agency (new consecutivo).

    A reassignment carries the detail edits in its own transaction, so an
    invalid fee leaves the agency and consecutivo untouched.
    """
    if payload.agency_code:
        new_agency = _agency_by_code(db, payload.agency_code)
        tramite = machine.reassign(
            tramite_id, new_agency.agency_id, payload.actor, fee=payload.fee, city=payload.city,
        )
    elif payload.fee is not None or payload.city is not None:
        tramite = machine.update_details(tramite_id, payload.actor, fee=payload.fee, city=payload.city)
    else:
        tramite = machine.get(tramite_id)
    return _out(db, tramite)


@router.get("/{tramite_id}/history", response_model=list[HistoryEntryOut])
def get_history(tramite_id: str, machine: TramiteStateMachine = Depends(get_state_machine)):
    """State history in chronological order."""
    return machine.history(tramite_id)


@router.post("/{tramite_id}/state", response_model=TramiteOut)
def change_state(
    tramite_id: str,
    payload: ChangeStateRequest,
    db: Session = Depends(get_db),
    machine: TramiteStateMachine = Depends(get_state_machine),
):
    extra = {"placa": payload.placa} if payload.placa is not None else None
    tramite = machine.change_state(tramite_id, payload.to_state, payload.actor, payload.notes, extra)
    return _out(db, tramite)


@router.post("/{tramite_id}/finalize", response_model=TramiteOut)
def finalize_tramite(
    tramite_id: str,
    payload: FinalizeRequest,
    db: Session = Depends(get_db),
    machine: TramiteStateMachine = Depends(get_state_machine),
):
    return _out(db, machine.finalize(tramite_id, payload.actor))


@router.post("/{tramite_id}/cancel", response_model=TramiteOut)
def cancel_tramite(
    tramite_id: str,
    payload: CancelRequest,
    db: Session = Depends(get_db),
    machine: TramiteStateMachine = Depends(get_state_machine),
):
    """Cancel the trámite; its consecutivo becomes reusable."""
    return _out(db, machine.cancel(tramite_id, payload.actor, payload.reason))


@router.post("/{tramite_id}/reopen", response_model=TramiteOut)
def reopen_tramite(
    tramite_id: str,
    payload: ReopenRequest,
    db: Session = Depends(get_db),
    machine: TramiteStateMachine = Depends(get_state_machine),
):
    return _out(db, machine.reopen(tramite_id, payload.reason, payload.actor, payload.to_state))


@router.get("/{tramite_id}/checklist", response_model=list[ChecklistItemOut])
def get_checklist(tramite_id: str, machine: TramiteStateMachine = Depends(get_state_machine)):
    return machine.checklist(tramite_id)


@router.get("/{tramite_id}/files", response_model=list[TramiteFileOut])
def list_files(tramite_id: str, machine: TramiteStateMachine = Depends(get_state_machine)):
    """Stored documents, grouped by doc key, oldest version first."""
    return machine.list_files(tramite_id)


@router.post("/{tramite_id}/files", response_model=TramiteFileOut, status_code=status.HTTP_201_CREATED)
def upload_file(
    tramite_id: str,
    payload: FileUploadRequest,
    machine: TramiteStateMachine = Depends(get_state_machine),
):
    """Store the next version of a document (``{DOC_KEY}_v{n}.pdf``)."""
    return machine.upload_file(
        tramite_id,
        payload.doc_key.strip().upper(),
        payload.content,
        payload.actor,
        payload.filename_original,
    )
