"""Trámite state machine — creation, transitions, cancellation, reassignment.

Responsibilities:
- Case creation: reserve a consecutivo, store the invoice, then create the
  trámite + bind the reservation + checklist snapshot + file record + initial
  history in one transaction. Any failure releases the reservation and
  deletes the stored file.
- Lock guard: FINALIZADO_ENTREGADO and CANCELADO reject further transitions,
  edits and uploads (reopen is the only way out of FINALIZADO_ENTREGADO).
- Per-state required data (placa for PLACA_ASIGNADA) checked before mutation.
- Cancellation releases the consecutivo in the same transaction.
- Agency reassignment swaps reservations atomically and keeps the previous
  (agency, consecutivo) for audit; detail edits sent with it share that
  transaction.
- Document uploads are versioned per doc key and mark the checklist item
  received; the artifact is deleted if the record cannot be committed.
"""
import logging
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Optional

import pytz
from sqlalchemy import func
from sqlalchemy.orm import Session

from tramites.errors import (
    AlreadyCancelled,
    AlreadyFinalized,
    CaseLocked,
    InvalidState,
    MissingRequiredField,
    NotFinalized,
    NotFound,
    UploadTooLarge,
    ValidationFailed,
)
from tramites.models.agency import Agency
from tramites.models.document import (
    INVOICE_DOC_KEY,
    ChecklistStatus,
    DocumentType,
    TramiteDocument,
    TramiteFile,
)
from tramites.models.history import ActionType, TramiteHistory
from tramites.models.tramite import (
    CANCELLED_STATE,
    FINALIZED_STATE,
    INITIAL_STATE,
    LOCKED_STATES,
    REOPEN_DEFAULT_STATE,
    Tramite,
    TramiteState,
)
from tramites.services import history_ledger
from tramites.services.consecutivo_allocator import ConsecutivoAllocator
from tramites.services.storage import ArtifactStorage, build_relative_path

logger = logging.getLogger(__name__)

PDF_MAGIC = b"%PDF-"
DEFAULT_MAX_UPLOAD_BYTES = 20 * 1024 * 1024

# Auxiliary data that must arrive together with the transition into a state
REQUIRED_FIELDS: dict[TramiteState, str] = {
    TramiteState.PLACA_ASIGNADA: "placa",
}


def versioned_filename(doc_key: str, version: int) -> str:
    return f"{doc_key}_v{version}.pdf"


def current_year(tz_name: str) -> int:
    """Calendar year right now in the business timezone."""
    return datetime.now(pytz.timezone(tz_name)).year


def normalize_placa(value: str) -> str:
    return value.strip().upper()


def parse_fee(value: Any) -> Decimal:
    """Accept numbers or strings like "1,250,000.50"; reject negatives."""
    if isinstance(value, str):
        value = value.replace(",", "").strip() or "0"
    try:
        fee = Decimal(str(value))
    except InvalidOperation:
        raise ValidationFailed("Invalid fee.", {"fee": str(value)})
    if not fee.is_finite():
        raise ValidationFailed("Invalid fee.", {"fee": str(value)})
    if fee < 0:
        raise ValidationFailed("Fee cannot be negative.", {"fee": str(value)})
    return fee


def _parse_state(value: Any) -> TramiteState:
    try:
        return TramiteState(value)
    except ValueError:
        raise InvalidState(value)


def check_pdf(data: bytes, max_bytes: int, field: str = "file") -> None:
    if not data:
        raise ValidationFailed("PDF file is required.", {"field": field})
    if len(data) > max_bytes:
        raise UploadTooLarge(len(data), max_bytes)
    if not data.startswith(PDF_MAGIC):
        raise ValidationFailed("File must be a PDF.", {"field": field})


class TramiteStateMachine:
    """Workflow engine over one request-scoped session.

    Mutating methods commit on success and roll back on failure.
    """

    def __init__(
        self,
        db: Session,
        allocator: ConsecutivoAllocator,
        storage: ArtifactStorage,
        max_upload_bytes: int = DEFAULT_MAX_UPLOAD_BYTES,
    ):
        self.db = db
        self.allocator = allocator
        self.storage = storage
        self.max_upload_bytes = max_upload_bytes

    # ------------------------------------------------------------------ reads

    def get(self, tramite_id: str) -> Tramite:
        tramite = self.db.query(Tramite).filter(Tramite.tramite_id == tramite_id).first()
        if not tramite:
            raise NotFound("Tramite", tramite_id)
        return tramite

    def history(self, tramite_id: str) -> list[TramiteHistory]:
        self.get(tramite_id)
        return history_ledger.list_entries(self.db, tramite_id)

    def checklist(self, tramite_id: str) -> list[TramiteDocument]:
        self.get(tramite_id)
        return (
            self.db.query(TramiteDocument)
            .filter(TramiteDocument.tramite_id == tramite_id)
            .order_by(TramiteDocument.name_snapshot)
            .all()
        )

    def list_files(self, tramite_id: str) -> list[TramiteFile]:
        self.get(tramite_id)
        return (
            self.db.query(TramiteFile)
            .filter(TramiteFile.tramite_id == tramite_id)
            .order_by(TramiteFile.doc_key, TramiteFile.version)
            .all()
        )

    def list_cases(
        self,
        *,
        year: Optional[int] = None,
        agency_code: Optional[str] = None,
        state: Optional[TramiteState] = None,
        consecutivo: Optional[int] = None,
        placa: Optional[str] = None,
        include_cancelled: bool = False,
        offset: int = 0,
        limit: int = 20,
    ) -> tuple[list[Tramite], int]:
        query = self.db.query(Tramite)
        if not include_cancelled:
            query = query.filter(Tramite.state != CANCELLED_STATE)
        if year is not None:
            query = query.filter(Tramite.year == year)
        if agency_code:
            query = query.filter(Tramite.agency_code_snapshot == agency_code)
        if state is not None:
            query = query.filter(Tramite.state == state)
        if consecutivo is not None:
            query = query.filter(Tramite.consecutivo == consecutivo)
        if placa:
            query = query.filter(Tramite.placa.ilike(f"%{placa.strip()}%"))

        total = query.count()
        items = query.order_by(Tramite.created_at.desc()).offset(offset).limit(limit).all()
        return items, total

    # --------------------------------------------------------------- creation

    def create_case(
        self,
        agency_id: str,
        year: int,
        actor: str,
        *,
        city: Optional[str] = None,
        client_name: Optional[str] = None,
        client_doc: Optional[str] = None,
        fee: Any = None,
        invoice_pdf: Optional[bytes] = None,
        invoice_filename: Optional[str] = None,
    ) -> Tramite:
        """Reserve a consecutivo and create the trámite with its checklist and first history entry."""
        agency = self.db.query(Agency).filter(Agency.agency_id == agency_id).first()
        if not agency:
            raise NotFound("Agency", agency_id)
        parsed_fee = parse_fee(fee) if fee is not None else None
        if invoice_pdf is not None:
            check_pdf(invoice_pdf, self.max_upload_bytes, "invoice_pdf")

        reservation = self.allocator.reserve(agency.agency_id, year)

        storage_path = None
        try:
            if invoice_pdf is not None:
                storage_path = build_relative_path(
                    year, agency.code, reservation.consecutivo, versioned_filename(INVOICE_DOC_KEY, 1),
                )
                self.storage.write(storage_path, invoice_pdf)

            tramite = Tramite(
                year=year,
                agency_id=agency.agency_id,
                agency_code_snapshot=agency.code,
                consecutivo=reservation.consecutivo,
                state=INITIAL_STATE,
                fee=parsed_fee,
                city=city,
                client_name=client_name,
                client_doc=client_doc,
                invoice_path=storage_path,
                created_by=actor,
            )
            self.db.add(tramite)
            self.db.flush()

            self.allocator.bind(self.db, reservation.reservation_id, tramite.tramite_id)
            doc_types = self._snapshot_checklist(tramite, invoice_received=storage_path is not None)
            if storage_path is not None:
                invoice_type = doc_types.get(INVOICE_DOC_KEY)
                self.db.add(
                    TramiteFile(
                        tramite_id=tramite.tramite_id,
                        document_type_id=invoice_type.document_type_id if invoice_type else None,
                        doc_key=INVOICE_DOC_KEY,
                        version=1,
                        filename_original=invoice_filename,
                        storage_path=storage_path,
                        size_bytes=len(invoice_pdf),
                        uploaded_by=actor,
                    )
                )
            notes = "Trámite created with invoice." if storage_path else "Trámite created."
            history_ledger.append_entry(self.db, tramite, None, INITIAL_STATE, actor, notes)
            self.db.commit()
        except Exception:
            self.db.rollback()
            if storage_path is not None:
                self._compensate(f"delete artifact {storage_path}", lambda: self.storage.delete_if_exists(storage_path))
            self._compensate(
                f"release reservation {reservation.reservation_id}",
                lambda: self.allocator.release(reservation.reservation_id),
            )
            raise

        self.db.refresh(tramite)
        logger.info("Created trámite %s (%s) by %s", tramite.display_id, tramite.tramite_id, actor)
        return tramite

    # ------------------------------------------------------------ transitions

    def change_state(
        self,
        tramite_id: str,
        to_state: Any,
        actor: str,
        notes: Optional[str] = None,
        extra: Optional[dict[str, Any]] = None,
    ) -> Tramite:
        """Move a trámite to a non-terminal state, with any data that state requires."""
        tramite = self.get(tramite_id)
        if tramite.is_locked:
            attempted = to_state.value if isinstance(to_state, TramiteState) else str(to_state)
            raise CaseLocked(tramite.tramite_id, tramite.state.value, attempted)

        target = _parse_state(to_state)
        if target in LOCKED_STATES:
            raise InvalidState(target.value, "Use finalize or cancel to reach a terminal state.")

        updates: dict[str, Any] = {}
        field = REQUIRED_FIELDS.get(target)
        if field is not None:
            value = (extra or {}).get(field)
            if value is None or not str(value).strip():
                raise MissingRequiredField(tramite.tramite_id, field, target.value)
            updates[field] = normalize_placa(str(value)) if field == "placa" else value

        def apply() -> None:
            history_ledger.append_entry(self.db, tramite, tramite.state, target, actor, notes)
            tramite.state = target
            for name, value in updates.items():
                setattr(tramite, name, value)

        self._in_transaction(apply)
        logger.info("Trámite %s moved to %s by %s", tramite_id, target.value, actor)
        return tramite

    def finalize(self, tramite_id: str, actor: str) -> Tramite:
        tramite = self.get(tramite_id)
        if tramite.state == FINALIZED_STATE:
            raise AlreadyFinalized(tramite.tramite_id)
        if tramite.state == CANCELLED_STATE:
            raise CaseLocked(tramite.tramite_id, tramite.state.value, FINALIZED_STATE.value)

        def apply() -> None:
            history_ledger.append_entry(
                self.db, tramite, tramite.state, FINALIZED_STATE, actor, "Finalized.", ActionType.FINALIZE,
            )
            tramite.state = FINALIZED_STATE
            tramite.finalized_at = datetime.now(timezone.utc)

        self._in_transaction(apply)
        logger.info("Trámite %s finalized by %s", tramite_id, actor)
        return tramite

    def cancel(self, tramite_id: str, actor: str, reason: Optional[str] = None) -> Tramite:
        """Cancel the trámite and free its consecutivo for reuse."""
        tramite = self.get(tramite_id)
        if tramite.state == CANCELLED_STATE:
            raise AlreadyCancelled(tramite.tramite_id)

        def apply() -> None:
            history_ledger.append_entry(
                self.db, tramite, tramite.state, CANCELLED_STATE, actor, reason, ActionType.CANCEL,
            )
            tramite.state = CANCELLED_STATE
            tramite.cancelled_at = datetime.now(timezone.utc)
            self.allocator.release_for_tramite(self.db, tramite.tramite_id)

        self._in_transaction(apply)
        logger.info("Trámite %s cancelled by %s (reason: %s)", tramite_id, actor, reason)
        return tramite

    def reopen(
        self,
        tramite_id: str,
        reason: str,
        actor: str,
        target_state: Any = None,
    ) -> Tramite:
        tramite = self.get(tramite_id)
        if tramite.state != FINALIZED_STATE:
            raise NotFinalized(tramite.tramite_id, tramite.state.value)

        target = REOPEN_DEFAULT_STATE if target_state is None else _parse_state(target_state)
        if target in LOCKED_STATES:
            raise InvalidState(target.value, "A trámite can only be reopened into a non-terminal state.")

        def apply() -> None:
            history_ledger.append_entry(self.db, tramite, tramite.state, target, actor, reason, ActionType.REOPEN)
            tramite.state = target
            tramite.finalized_at = None

        self._in_transaction(apply)
        logger.info("Trámite %s reopened into %s by %s", tramite_id, target.value, actor)
        return tramite

    # ------------------------------------------------------------- reassignment

    def reassign(
        self,
        tramite_id: str,
        new_agency_id: str,
        actor: str,
        *,
        fee: Any = None,
        city: Optional[str] = None,
    ) -> Tramite:
        """Move the trámite to another agency under a freshly reserved consecutivo.

        ``fee`` and ``city`` are validated before anything is reserved and are
        written in the same transaction as the agency swap.
        """
        tramite = self.get(tramite_id)
        if tramite.is_locked:
            raise CaseLocked(tramite.tramite_id, tramite.state.value)

        new_agency = self.db.query(Agency).filter(Agency.agency_id == new_agency_id).first()
        if not new_agency:
            raise NotFound("Agency", new_agency_id)
        parsed_fee = parse_fee(fee) if fee is not None else None
        if new_agency.agency_id == tramite.agency_id:
            if parsed_fee is None and city is None:
                return tramite
            return self.update_details(tramite_id, actor, fee=parsed_fee, city=city)

        old_agency_id = tramite.agency_id
        old_code = tramite.agency_code_snapshot
        old_consecutivo = tramite.consecutivo

        reservation = self.allocator.reserve(new_agency.agency_id, tramite.year)
        try:
            self.allocator.release_for_tramite(self.db, tramite.tramite_id)
            self.allocator.bind(self.db, reservation.reservation_id, tramite.tramite_id)

            tramite.previous_agency_id = old_agency_id
            tramite.previous_consecutivo = old_consecutivo
            tramite.agency_id = new_agency.agency_id
            tramite.agency_code_snapshot = new_agency.code
            tramite.consecutivo = reservation.consecutivo
            if parsed_fee is not None:
                tramite.fee = parsed_fee
            if city is not None:
                tramite.city = city

            history_ledger.append_entry(
                self.db,
                tramite,
                tramite.state,
                tramite.state,
                actor,
                notes=(
                    f"Agency changed from {old_code} to {new_agency.code}. "
                    f"Consecutivo {old_consecutivo:04d} reassigned to {reservation.consecutivo:04d}."
                ),
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            self._compensate(
                f"release reservation {reservation.reservation_id}",
                lambda: self.allocator.release(reservation.reservation_id),
            )
            raise

        self.db.refresh(tramite)
        logger.info("Trámite %s reassigned to agency %s by %s", tramite_id, new_agency.code, actor)
        return tramite

    def update_details(
        self,
        tramite_id: str,
        actor: str,
        *,
        fee: Any = None,
        city: Optional[str] = None,
    ) -> Tramite:
        """Edit non-identifying fields of an unlocked trámite."""
        tramite = self.get(tramite_id)
        if tramite.is_locked:
            raise CaseLocked(tramite.tramite_id, tramite.state.value)

        parsed_fee = parse_fee(fee) if fee is not None else None

        def apply() -> None:
            if parsed_fee is not None:
                tramite.fee = parsed_fee
            if city is not None:
                tramite.city = city

        self._in_transaction(apply)
        logger.info("Trámite %s details updated by %s", tramite_id, actor)
        return tramite

    # ------------------------------------------------------------------ files

    def upload_file(
        self,
        tramite_id: str,
        doc_key: str,
        data: bytes,
        actor: str,
        filename_original: Optional[str] = None,
    ) -> TramiteFile:
        """Store the next version of a document and mark its checklist item received."""
        check_pdf(data, self.max_upload_bytes)
        tramite = self.get(tramite_id)
        if tramite.is_locked:
            raise CaseLocked(tramite.tramite_id, tramite.state.value)

        doc_type = self.db.query(DocumentType).filter(DocumentType.key == doc_key).first()
        if not doc_type:
            raise ValidationFailed("Unknown document key.", {"doc_key": doc_key})

        last_version = (
            self.db.query(func.max(TramiteFile.version))
            .filter(TramiteFile.tramite_id == tramite_id, TramiteFile.doc_key == doc_key)
            .scalar()
        )
        version = (last_version or 0) + 1
        storage_path = build_relative_path(
            tramite.year, tramite.agency_code_snapshot, tramite.consecutivo, versioned_filename(doc_key, version),
        )

        record = TramiteFile(
            tramite_id=tramite_id,
            document_type_id=doc_type.document_type_id,
            doc_key=doc_key,
            version=version,
            filename_original=filename_original,
            storage_path=storage_path,
            size_bytes=len(data),
            uploaded_by=actor,
        )
        write_started = False
        try:
            # flushing claims (tramite, key, version); a racing upload fails here, before the file
            self.db.add(record)
            self.db.flush()
            write_started = True
            self.storage.write(storage_path, data)
            self.db.query(TramiteDocument).filter(
                TramiteDocument.tramite_id == tramite_id,
                TramiteDocument.doc_key == doc_key,
            ).update(
                {TramiteDocument.status: ChecklistStatus.RECIBIDO, TramiteDocument.received_at: datetime.now(timezone.utc)},
                synchronize_session=False,
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            if write_started:
                self._compensate(f"delete artifact {storage_path}", lambda: self.storage.delete_if_exists(storage_path))
            raise

        self.db.refresh(record)
        logger.info("Stored %s v%d for trámite %s by %s", doc_key, version, tramite_id, actor)
        return record

    # ---------------------------------------------------------------- helpers

    def _snapshot_checklist(self, tramite: Tramite, invoice_received: bool) -> dict[str, DocumentType]:
        """Copy the active document catalog into the trámite's checklist."""
        doc_types = self.db.query(DocumentType).filter(DocumentType.is_active.is_(True)).all()
        now = datetime.now(timezone.utc)
        for doc_type in doc_types:
            received = invoice_received and doc_type.key == INVOICE_DOC_KEY
            self.db.add(
                TramiteDocument(
                    tramite_id=tramite.tramite_id,
                    document_type_id=doc_type.document_type_id,
                    doc_key=doc_type.key,
                    name_snapshot=doc_type.name,
                    required=doc_type.required,
                    status=ChecklistStatus.RECIBIDO if received else ChecklistStatus.PENDIENTE,
                    received_at=now if received else None,
                )
            )
        return {doc_type.key: doc_type for doc_type in doc_types}

    def _in_transaction(self, apply: Callable[[], None]) -> None:
        try:
            apply()
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

    def _compensate(self, description: str, action: Callable[[], Any]) -> None:
        """Run a compensating action; a failure is logged, never raised."""
        try:
            action()
        except Exception:
            logger.exception("Compensation failed: %s", description)
