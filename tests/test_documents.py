"""Checklist snapshots and versioned document uploads."""
import base64
from pathlib import Path

import pytest

from tramites.errors import CaseLocked, UploadTooLarge, ValidationFailed
from tramites.models import ChecklistStatus, TramiteDocument, TramiteFile
from tramites.services.tramite_service import TramiteStateMachine, versioned_filename
from tests.conftest import YEAR, FailingWriteStorage, create_test_agency, make_agency, make_document_types

PDF = b"%PDF-1.4 evidence"


def _open_case(machine, agency, **kwargs):
    return machine.create_case(agency.agency_id, YEAR, "ana", **kwargs)


def _statuses(machine, tramite_id):
    return {item.doc_key: item.status for item in machine.checklist(tramite_id)}


def test_versioned_filename():
    assert versioned_filename("EVIDENCIA_PLACA", 3) == "EVIDENCIA_PLACA_v3.pdf"


class TestChecklist:
    def test_snapshot_copies_active_types(self, db, machine):
        make_document_types(db)
        agency = make_agency(db)
        tramite = _open_case(machine, agency)

        items = machine.checklist(tramite.tramite_id)

        assert [i.doc_key for i in items] == ["EVIDENCIA_PLACA", "FACTURA", "RECIBO_TIMBRE"]
        assert all(i.status == ChecklistStatus.PENDIENTE for i in items)
        factura = next(i for i in items if i.doc_key == "FACTURA")
        assert factura.required is True
        assert factura.name_snapshot == "Factura"

    def test_invoice_marks_factura_received(self, db, machine):
        make_document_types(db)
        agency = make_agency(db)
        tramite = _open_case(machine, agency, invoice_pdf=PDF, invoice_filename="fac-001.pdf")

        statuses = _statuses(machine, tramite.tramite_id)
        assert statuses["FACTURA"] == ChecklistStatus.RECIBIDO
        assert statuses["EVIDENCIA_PLACA"] == ChecklistStatus.PENDIENTE

        files = machine.list_files(tramite.tramite_id)
        assert len(files) == 1
        assert files[0].doc_key == "FACTURA"
        assert files[0].version == 1
        assert files[0].filename_original == "fac-001.pdf"
        assert files[0].storage_path == "2025/AUTOTROPICAL/1/FACTURA_v1.pdf"
        assert files[0].document_type_id is not None

    def test_snapshot_is_not_affected_by_later_catalog_changes(self, db, machine):
        doc_types = make_document_types(db)
        agency = make_agency(db)
        tramite = _open_case(machine, agency)

        doc_types[1].name = "Foto de placa"
        db.commit()

        item = next(i for i in machine.checklist(tramite.tramite_id) if i.doc_key == "EVIDENCIA_PLACA")
        assert item.name_snapshot == "Evidencia placa"

    def test_empty_catalog_gives_empty_checklist(self, db, machine):
        agency = make_agency(db)
        tramite = _open_case(machine, agency, invoice_pdf=PDF)

        assert machine.checklist(tramite.tramite_id) == []
        assert machine.list_files(tramite.tramite_id)[0].document_type_id is None


class TestUploadFile:
    def test_versions_increase_per_key(self, db, machine, test_settings):
        make_document_types(db)
        agency = make_agency(db)
        tid = _open_case(machine, agency).tramite_id

        first = machine.upload_file(tid, "EVIDENCIA_PLACA", PDF, "luis", "placa.pdf")
        second = machine.upload_file(tid, "EVIDENCIA_PLACA", PDF + b" retake", "luis")

        assert first.version == 1
        assert second.version == 2
        assert first.storage_path == "2025/AUTOTROPICAL/1/EVIDENCIA_PLACA_v1.pdf"
        assert second.storage_path == "2025/AUTOTROPICAL/1/EVIDENCIA_PLACA_v2.pdf"
        root = Path(test_settings.STORAGE_ROOT)
        assert (root / "2025" / "AUTOTROPICAL" / "1" / "EVIDENCIA_PLACA_v1.pdf").read_bytes() == PDF
        assert (root / "2025" / "AUTOTROPICAL" / "1" / "EVIDENCIA_PLACA_v2.pdf").exists()
        assert second.size_bytes == len(PDF) + len(b" retake")

    def test_versions_continue_after_invoice(self, db, machine):
        make_document_types(db)
        agency = make_agency(db)
        tid = _open_case(machine, agency, invoice_pdf=PDF).tramite_id

        record = machine.upload_file(tid, "FACTURA", PDF, "ana")

        assert record.version == 2
        assert record.storage_path.endswith("FACTURA_v2.pdf")

    def test_upload_marks_item_received(self, db, machine):
        make_document_types(db)
        agency = make_agency(db)
        tid = _open_case(machine, agency).tramite_id

        machine.upload_file(tid, "RECIBO_TIMBRE", PDF, "luis")

        db.expire_all()
        item = db.query(TramiteDocument).filter_by(tramite_id=tid, doc_key="RECIBO_TIMBRE").one()
        assert item.status == ChecklistStatus.RECIBIDO
        assert item.received_at is not None
        assert _statuses(machine, tid)["EVIDENCIA_PLACA"] == ChecklistStatus.PENDIENTE

    def test_list_files_ordered_by_key_then_version(self, db, machine):
        make_document_types(db)
        agency = make_agency(db)
        tid = _open_case(machine, agency, invoice_pdf=PDF).tramite_id
        machine.upload_file(tid, "RECIBO_TIMBRE", PDF, "luis")
        machine.upload_file(tid, "EVIDENCIA_PLACA", PDF, "luis")
        machine.upload_file(tid, "EVIDENCIA_PLACA", PDF, "luis")

        listed = [(f.doc_key, f.version) for f in machine.list_files(tid)]
        assert listed == [("EVIDENCIA_PLACA", 1), ("EVIDENCIA_PLACA", 2), ("FACTURA", 1), ("RECIBO_TIMBRE", 1)]

    @pytest.mark.parametrize("close", ["finalize", "cancel"])
    def test_locked_case_rejects_upload(self, db, machine, test_settings, close):
        make_document_types(db)
        agency = make_agency(db)
        tid = _open_case(machine, agency).tramite_id
        getattr(machine, close)(tid, "luis")

        with pytest.raises(CaseLocked):
            machine.upload_file(tid, "EVIDENCIA_PLACA", PDF, "luis")

        assert not (Path(test_settings.STORAGE_ROOT) / "2025" / "AUTOTROPICAL" / "1" / "EVIDENCIA_PLACA_v1.pdf").exists()
        assert db.query(TramiteFile).count() == 0

    def test_unknown_key_rejected(self, db, machine):
        make_document_types(db)
        agency = make_agency(db)
        tid = _open_case(machine, agency).tramite_id

        with pytest.raises(ValidationFailed) as exc:
            machine.upload_file(tid, "PASAPORTE", PDF, "luis")
        assert exc.value.detail["details"] == {"doc_key": "PASAPORTE"}

    @pytest.mark.parametrize("data", [b"", b"GIF89a not a pdf"])
    def test_non_pdf_rejected(self, db, machine, data):
        make_document_types(db)
        agency = make_agency(db)
        tid = _open_case(machine, agency).tramite_id

        with pytest.raises(ValidationFailed):
            machine.upload_file(tid, "EVIDENCIA_PLACA", data, "luis")
        assert db.query(TramiteFile).count() == 0

    def test_oversized_upload_rejected(self, db, allocator, storage):
        make_document_types(db)
        agency = make_agency(db)
        machine = TramiteStateMachine(db, allocator, storage, max_upload_bytes=8)
        tid = _open_case(machine, agency).tramite_id

        with pytest.raises(UploadTooLarge):
            machine.upload_file(tid, "EVIDENCIA_PLACA", PDF, "luis")

    def test_commit_failure_deletes_artifact(self, db, machine, test_settings, monkeypatch):
        make_document_types(db)
        agency = make_agency(db)
        tid = _open_case(machine, agency).tramite_id

        def boom():
            raise RuntimeError("database unavailable")

        monkeypatch.setattr(db, "commit", boom)
        with pytest.raises(RuntimeError):
            machine.upload_file(tid, "EVIDENCIA_PLACA", PDF, "luis")
        monkeypatch.undo()

        assert not (Path(test_settings.STORAGE_ROOT) / "2025" / "AUTOTROPICAL" / "1" / "EVIDENCIA_PLACA_v1.pdf").exists()
        db.expire_all()
        assert db.query(TramiteFile).count() == 0
        assert _statuses(machine, tid)["EVIDENCIA_PLACA"] == ChecklistStatus.PENDIENTE

    def test_storage_failure_leaves_no_record(self, db, allocator, storage, test_settings):
        make_document_types(db)
        agency = make_agency(db)
        tid = _open_case(TramiteStateMachine(db, allocator, storage), agency).tramite_id
        failing = FailingWriteStorage(test_settings.STORAGE_ROOT)
        machine = TramiteStateMachine(db, allocator, failing)

        with pytest.raises(OSError):
            machine.upload_file(tid, "EVIDENCIA_PLACA", PDF, "luis")

        assert failing.deleted == ["2025/AUTOTROPICAL/1/EVIDENCIA_PLACA_v1.pdf"]
        db.expire_all()
        assert db.query(TramiteFile).count() == 0
        assert _statuses(machine, tid)["EVIDENCIA_PLACA"] == ChecklistStatus.PENDIENTE


# ---------------------------------------------------------------------------
# HTTP
# ---------------------------------------------------------------------------
def _seed_catalog(client):
    for key, name, required in (("factura", "Factura", True), ("EVIDENCIA_PLACA", "Evidencia placa", False)):
        resp = client.post("/api/document-types/", json={"key": key, "name": name, "required": required})
        assert resp.status_code == 201, resp.text


def _create_tramite(client, **overrides):
    payload = {"agency_code": "AUTOTROPICAL", "actor": "ana", "year": YEAR}
    payload.update(overrides)
    resp = client.post("/api/tramites/", json=payload)
    assert resp.status_code == 201, resp.text
    return resp.json()


class TestDocumentTypesApi:
    def test_create_and_list(self, client):
        _seed_catalog(client)

        resp = client.get("/api/document-types/")
        assert [d["key"] for d in resp.json()] == ["EVIDENCIA_PLACA", "FACTURA"]

    def test_duplicate_key(self, client):
        _seed_catalog(client)

        resp = client.post("/api/document-types/", json={"key": "Factura", "name": "Otra"})
        assert resp.status_code == 409
        assert resp.json()["errorCode"] == "CONFLICT"
        assert resp.json()["details"] == {"key": "FACTURA"}


class TestFilesApi:
    def test_upload_and_list(self, client):
        create_test_agency(client)
        _seed_catalog(client)
        tid = _create_tramite(client)["tramite_id"]

        resp = client.post(
            f"/api/tramites/{tid}/files",
            json={"actor": "luis", "doc_key": "evidencia_placa", "content": base64.b64encode(PDF).decode()},
        )
        assert resp.status_code == 201, resp.text
        assert resp.json()["storage_path"] == "2025/AUTOTROPICAL/1/EVIDENCIA_PLACA_v1.pdf"

        files = client.get(f"/api/tramites/{tid}/files").json()
        assert [(f["doc_key"], f["version"]) for f in files] == [("EVIDENCIA_PLACA", 1)]

        checklist = {i["doc_key"]: i["status"] for i in client.get(f"/api/tramites/{tid}/checklist").json()}
        assert checklist == {"EVIDENCIA_PLACA": "RECIBIDO", "FACTURA": "PENDIENTE"}

    def test_upload_to_locked_case(self, client):
        create_test_agency(client)
        _seed_catalog(client)
        tid = _create_tramite(client)["tramite_id"]
        client.post(f"/api/tramites/{tid}/finalize", json={"actor": "luis"})

        resp = client.post(
            f"/api/tramites/{tid}/files",
            json={"actor": "luis", "doc_key": "EVIDENCIA_PLACA", "content": base64.b64encode(PDF).decode()},
        )
        assert resp.status_code == 409
        assert resp.json()["errorCode"] == "TRAMITE_LOCKED"
        assert client.get(f"/api/tramites/{tid}/files").json() == []

    def test_checklist_unknown_tramite(self, client):
        resp = client.get("/api/tramites/missing/checklist")
        assert resp.status_code == 404
