"""
Tests para el módulo de Folios (CAF)

Cubren:
- Parseo y normalización del XML del CAF
- Ingesta: reemplazo del CAF vigente, CAF en espera y rangos cruzados
- Asignación: folios en orden, agotamiento, rotación y concurrencia
- Endpoints HTTP
"""
import logging
from concurrent.futures import ThreadPoolExecutor

import pytest
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from pos_boletas.core.config import settings
from pos_boletas.modules.folios.allocator import FolioAllocator
from pos_boletas.modules.folios.exceptions import (
    CompanyNotFound, FolioAllocationError, MalformedPermit, NoActivePermit,
    OverlappingPermit, PermitExhausted, PermitOutOfOrder, StoreConflict
)
from pos_boletas.modules.folios.models import Caf, CafStatus
from pos_boletas.modules.folios.parser import (
    decode_artifact, encode_artifact, normalize_artifact, parse_caf
)
from pos_boletas.modules.folios.service import CafIngestionService


def active_cafs(db: Session, company_id: int, document_type: int = 39):
    db.expire_all()
    return db.query(Caf).filter(
        Caf.company_id == company_id,
        Caf.document_type == document_type,
        Caf.active.is_(True)
    ).all()


# ===== TESTS DEL PARSER =====

class TestCafParser:
    """Tests para parse_caf y la normalización del XML"""

    def test_parse_valid_caf(self, caf_xml):
        descriptor = parse_caf(caf_xml(1, 50))

        assert descriptor.document_type == 39
        assert descriptor.range_start == 1
        assert descriptor.range_end == 50
        assert descriptor.size == 50
        assert descriptor.issuer_id == "76354771-K"
        assert descriptor.business_name == "COMERCIAL TEMUCO SPA"
        assert descriptor.authorized_at == "2025-11-26"

    def test_parse_namespaced_caf(self, caf_xml):
        descriptor = parse_caf(caf_xml(101, 200, namespace="http://www.sii.cl/SiiDte"))

        assert descriptor.range_start == 101
        assert descriptor.range_end == 200

    def test_parse_latin1_bytes(self, caf_xml):
        """Los CAF del SII vienen en ISO-8859-1"""
        raw = caf_xml(1, 10, business_name="COMERCIALIZADORA ÑUÑOA LTDA").encode("iso-8859-1")

        descriptor = parse_caf(raw)

        assert descriptor.business_name == "COMERCIALIZADORA ÑUÑOA LTDA"
        # El artefacto vuelve a los mismos bytes que se cargaron
        assert encode_artifact(descriptor.normalized_artifact) == raw

    def test_decode_artifact_without_declaration_defaults_to_utf8(self):
        assert decode_artifact("<AUTORIZACION>ñ</AUTORIZACION>".encode("utf-8")) == "<AUTORIZACION>ñ</AUTORIZACION>"

    def test_parse_escaped_newlines(self, caf_xml):
        """Saltos de línea que llegan como texto literal \\n se corrigen"""
        xml = caf_xml(1, 5)
        descriptor = parse_caf(xml.replace("\n", "\\n"))

        assert descriptor.normalized_artifact == xml
        assert descriptor.range_end == 5

    def test_parse_crlf(self, caf_xml):
        xml = caf_xml(1, 5)
        descriptor = parse_caf(xml.replace("\n", "\r\n"))

        assert descriptor.normalized_artifact == xml

    def test_normalize_is_idempotent(self, caf_xml):
        text = "\ufeff" + caf_xml(1, 5).replace("\n", "\\r\\n") + "\n\n"
        once = normalize_artifact(text)

        assert normalize_artifact(once) == once
        assert not once.startswith("\ufeff")

    @pytest.mark.parametrize("document", ["", "   ", "esto no es xml", "<AUTORIZACION><CAF>"])
    def test_parse_rejects_invalid_xml(self, document):
        with pytest.raises(MalformedPermit):
            parse_caf(document)

    def test_parse_rejects_unknown_root(self):
        with pytest.raises(MalformedPermit, match="AUTORIZACION"):
            parse_caf("<FACTURA><CAF><DA><TD>39</TD></DA></CAF></FACTURA>")

    def test_parse_rejects_missing_fields(self, caf_xml):
        xml = caf_xml(1, 50)

        with pytest.raises(MalformedPermit, match="TD"):
            parse_caf(xml.replace("<TD>39</TD>", ""))
        with pytest.raises(MalformedPermit, match="RNG"):
            parse_caf(xml.replace("<RNG><D>1</D><H>50</H></RNG>", ""))
        with pytest.raises(MalformedPermit, match="RE"):
            parse_caf(xml.replace("<RE>76354771-K</RE>", ""))

    def test_parse_rejects_non_numeric_range(self, caf_xml):
        with pytest.raises(MalformedPermit):
            parse_caf(caf_xml(1, 50).replace("<D>1</D>", "<D>uno</D>"))
        with pytest.raises(MalformedPermit):
            parse_caf(caf_xml(1, 50).replace("<H>50</H>", "<H>-50</H>"))

    def test_parse_rejects_zero_and_inverted_range(self, caf_xml):
        with pytest.raises(MalformedPermit):
            parse_caf(caf_xml(0, 10))
        with pytest.raises(MalformedPermit, match="invertido"):
            parse_caf(caf_xml(10, 5))

    def test_single_folio_range(self, caf_xml):
        descriptor = parse_caf(caf_xml(7, 7))
        assert descriptor.size == 1


# ===== TESTS DE INGESTA =====

class TestCafIngestion:
    """Tests para CafIngestionService"""

    def test_ingest_activates_caf(self, db: Session, company, caf_xml):
        result = CafIngestionService(db).ingest(caf_xml(1, 50), company.id)

        assert result.active is True
        assert result.status == CafStatus.ACTIVE
        assert result.cursor == 0
        assert result.superseded_ids == []
        assert result.issuer_mismatch is False
        assert result.warnings == []

    def test_ingest_unknown_company(self, db: Session, caf_xml):
        with pytest.raises(CompanyNotFound):
            CafIngestionService(db).ingest(caf_xml(1, 50), 999)

    def test_malformed_caf_is_rejected_before_company_lookup(self, db: Session):
        with pytest.raises(MalformedPermit):
            CafIngestionService(db).ingest("<AUTORIZACION/>", 999)

    def test_issuer_mismatch_is_a_warning(self, db: Session, company, caf_xml, caplog):
        with caplog.at_level(logging.WARNING):
            result = CafIngestionService(db).ingest(caf_xml(1, 50, rut="76543210-3"), company.id)

        assert result.active is True
        assert result.issuer_mismatch is True
        assert len(result.warnings) == 1
        assert "76543210-3" in result.warnings[0]
        assert "MismatchedIssuerWarning" in caplog.text

    def test_issuer_rut_is_compared_normalized(self, db: Session, company, caf_xml):
        result = CafIngestionService(db).ingest(caf_xml(1, 50, rut="076.354.771-k"), company.id)
        assert result.issuer_mismatch is False

    def test_new_caf_supersedes_active_one(self, db: Session, company, caf_xml, session_factory):
        service = CafIngestionService(db)
        first = service.ingest(caf_xml(1, 10), company.id)

        allocator = FolioAllocator(session_factory)
        allocator.allocate(company.id, 39)
        allocator.allocate(company.id, 39)

        second = service.ingest(caf_xml(11, 20), company.id)

        assert second.superseded_ids == [first.id]
        assert [caf.id for caf in active_cafs(db, company.id)] == [second.id]

        old = db.get(Caf, first.id)
        assert old.active is False
        assert old.status == CafStatus.SUPERSEDED
        assert old.deactivated_at is not None
        # Los folios consumidos del CAF reemplazado no se tocan
        assert old.cursor == 2

        assert allocator.allocate(company.id, 39).folio == 11

    def test_document_types_are_independent(self, db: Session, company, caf_xml):
        service = CafIngestionService(db)
        boleta = service.ingest(caf_xml(1, 10, document_type=39), company.id)
        exenta = service.ingest(caf_xml(1, 10, document_type=41), company.id)

        assert exenta.superseded_ids == []
        assert [caf.id for caf in active_cafs(db, company.id, 39)] == [boleta.id]
        assert [caf.id for caf in active_cafs(db, company.id, 41)] == [exenta.id]

    def test_overlapping_caf_is_rejected(self, db: Session, company, caf_xml):
        service = CafIngestionService(db)
        service.ingest(caf_xml(1, 10), company.id)

        with pytest.raises(OverlappingPermit):
            service.ingest(caf_xml(5, 15), company.id)
        with pytest.raises(OverlappingPermit):
            service.ingest(caf_xml(1, 10), company.id)

        assert len(active_cafs(db, company.id)) == 1

    def test_stage_keeps_current_caf_active(self, db: Session, company, caf_xml):
        service = CafIngestionService(db)
        current = service.ingest(caf_xml(1, 3), company.id)
        staged = service.ingest(caf_xml(4, 6), company.id, stage=True)

        assert staged.active is False
        assert staged.status == CafStatus.PENDING
        assert staged.superseded_ids == []
        assert [caf.id for caf in active_cafs(db, company.id)] == [current.id]

    def test_stage_without_active_caf_activates(self, db: Session, company, caf_xml):
        result = CafIngestionService(db).ingest(caf_xml(1, 3), company.id, stage=True)

        assert result.active is True
        assert result.status == CafStatus.ACTIVE

    def test_stage_must_follow_active_range(self, db: Session, company, caf_xml):
        service = CafIngestionService(db)
        service.ingest(caf_xml(10, 20), company.id)

        with pytest.raises(PermitOutOfOrder):
            service.ingest(caf_xml(1, 5), company.id, stage=True)

    def test_list_permits(self, db: Session, company, caf_xml):
        service = CafIngestionService(db)
        service.ingest(caf_xml(1, 3), company.id)
        service.ingest(caf_xml(4, 6), company.id, stage=True)
        service.ingest(caf_xml(1, 3, document_type=41), company.id)

        cafs = service.list_permits(company.id)
        assert [(c.document_type, c.range_start) for c in cafs] == [(39, 1), (39, 4), (41, 1)]
        assert len(service.list_permits(company.id, document_type=41)) == 1

        with pytest.raises(CompanyNotFound):
            service.list_permits(999)

    def test_supersede_retires_pending_below_new_range(self, db: Session, company, caf_xml, session_factory):
        """Un CAF en espera bajo el nuevo rango no queda varado"""
        service = CafIngestionService(db)
        first = service.ingest(caf_xml(1, 3), company.id)
        staged = service.ingest(caf_xml(4, 6), company.id, stage=True)

        latest = service.ingest(caf_xml(10, 10), company.id)

        assert latest.superseded_ids == [first.id, staged.id]
        db.expire_all()
        assert db.get(Caf, staged.id).status == CafStatus.SUPERSEDED
        assert db.get(Caf, staged.id).active is False

        allocator = FolioAllocator(session_factory)
        assert allocator.allocate(company.id, 39).folio == 10
        with pytest.raises(PermitExhausted):
            allocator.allocate(company.id, 39)

    def test_supersede_keeps_pending_above_new_range(self, db: Session, company, caf_xml, session_factory):
        service = CafIngestionService(db)
        first = service.ingest(caf_xml(1, 3), company.id)
        staged = service.ingest(caf_xml(20, 21), company.id, stage=True)

        latest = service.ingest(caf_xml(10, 11), company.id)

        assert latest.superseded_ids == [first.id]
        db.expire_all()
        assert db.get(Caf, staged.id).status == CafStatus.PENDING

        allocator = FolioAllocator(session_factory)
        assert [allocator.allocate(company.id, 39).folio for _ in range(4)] == [10, 11, 20, 21]

    def test_concurrent_uploads_leave_one_active(self, db: Session, company, caf_xml, session_factory):
        company_id = company.id

        def upload(i):
            with session_factory() as session:
                service = CafIngestionService(session, max_attempts=20)
                return service.ingest(caf_xml(i * 10 + 1, i * 10 + 10), company_id).id

        with ThreadPoolExecutor(max_workers=8) as pool:
            ids = list(pool.map(upload, range(8)))

        db.expire_all()
        cafs = db.query(Caf).filter(Caf.company_id == company_id).all()
        assert sorted(caf.id for caf in cafs) == sorted(ids)
        assert len([caf for caf in cafs if caf.active]) == 1
        assert {caf.status for caf in cafs if not caf.active} == {CafStatus.SUPERSEDED}

    def test_integrity_error_is_retried(self, db: Session, company, caf_xml, monkeypatch):
        original = CafIngestionService._insert
        calls = []

        def flaky_insert(self, descriptor, owner_id, status):
            calls.append(status)
            if len(calls) == 1:
                raise IntegrityError("INSERT INTO cafs", {}, Exception("UNIQUE constraint failed: cafs.company_id"))
            return original(self, descriptor, owner_id, status)

        monkeypatch.setattr(CafIngestionService, "_insert", flaky_insert)

        result = CafIngestionService(db).ingest(caf_xml(1, 10), company.id)

        assert result.active is True
        assert len(calls) == 2

    def test_persistent_integrity_error_is_bounded(self, db: Session, company, caf_xml, monkeypatch):
        calls = []

        def conflicting_insert(self, descriptor, owner_id, status):
            calls.append(status)
            raise IntegrityError("INSERT INTO cafs", {}, Exception("UNIQUE constraint failed: cafs.company_id"))

        monkeypatch.setattr(CafIngestionService, "_insert", conflicting_insert)

        with pytest.raises(StoreConflict):
            CafIngestionService(db, max_attempts=3).ingest(caf_xml(1, 10), company.id)

        assert len(calls) == 3
        assert db.query(Caf).count() == 0

    def test_explicit_zero_attempts_is_kept(self, db: Session):
        assert CafIngestionService(db, max_attempts=0).max_attempts == 0
        assert CafIngestionService(db).max_attempts == settings.FOLIO_MAX_ATTEMPTS


# ===== TESTS DEL ALLOCATOR =====

class TestFolioAllocator:
    """Tests para FolioAllocator"""

    def test_sequential_allocation_until_exhausted(self, db: Session, company, caf_xml, session_factory):
        stored = CafIngestionService(db).ingest(caf_xml(1, 3), company.id)
        allocator = FolioAllocator(session_factory)

        folios = [allocator.allocate(company.id, 39).folio for _ in range(3)]
        assert folios == [1, 2, 3]

        # Agotado: falla siempre, nunca entrega un folio inventado
        for _ in range(2):
            with pytest.raises(PermitExhausted):
                allocator.allocate(company.id, 39)

        caf = db.get(Caf, stored.id)
        db.refresh(caf)
        assert caf.status == CafStatus.EXHAUSTED
        assert caf.active is False
        assert caf.cursor == 3

    def test_no_active_permit(self, db: Session, company, session_factory):
        with pytest.raises(NoActivePermit):
            FolioAllocator(session_factory).allocate(company.id, 39)

    def test_returns_stored_artifact(self, db: Session, company, caf_xml, session_factory):
        xml = caf_xml(1, 5, business_name="COMERCIALIZADORA ÑUÑOA LTDA")
        stored = CafIngestionService(db).ingest(xml.encode("iso-8859-1"), company.id)

        result = FolioAllocator(session_factory).allocate(company.id, 39)

        assert result.caf_id == stored.id
        assert result.permit_artifact == db.get(Caf, stored.id).artifact
        assert result.permit_artifact == xml

    def test_rotates_to_staged_caf(self, db: Session, company, caf_xml, session_factory):
        service = CafIngestionService(db)
        first = service.ingest(caf_xml(1, 3), company.id)
        second = service.ingest(caf_xml(4, 6), company.id, stage=True)
        allocator = FolioAllocator(session_factory)

        folios = [allocator.allocate(company.id, 39) for _ in range(6)]

        assert [r.folio for r in folios] == [1, 2, 3, 4, 5, 6]
        assert {r.caf_id for r in folios[:3]} == {first.id}
        assert {r.caf_id for r in folios[3:]} == {second.id}
        with pytest.raises(PermitExhausted):
            allocator.allocate(company.id, 39)

        db.expire_all()
        assert db.get(Caf, first.id).status == CafStatus.EXHAUSTED
        assert db.get(Caf, second.id).status == CafStatus.EXHAUSTED

    def test_rotation_chain(self, db: Session, company, caf_xml, session_factory):
        service = CafIngestionService(db)
        service.ingest(caf_xml(1, 1), company.id)
        service.ingest(caf_xml(2, 2), company.id, stage=True)
        service.ingest(caf_xml(3, 3), company.id, stage=True)
        allocator = FolioAllocator(session_factory)

        assert [allocator.allocate(company.id, 39).folio for _ in range(3)] == [1, 2, 3]
        assert len(active_cafs(db, company.id)) == 1

    def test_caf_staged_while_active_runs_out(self, db: Session, company, caf_xml, session_factory, monkeypatch):
        """Un CAF en espera cargado justo cuando se agota el vigente no queda bloqueado"""
        service = CafIngestionService(db)
        service.ingest(caf_xml(1, 2), company.id)
        allocator = FolioAllocator(session_factory)
        company_id = company.id
        assert [allocator.allocate(company_id, 39).folio for _ in range(2)] == [1, 2]

        original = CafIngestionService._insert

        def insert_after_exhaustion(self, descriptor, owner_id, status):
            # Otro proceso agota el vigente entre la lectura y la inserción
            with pytest.raises(PermitExhausted):
                allocator.allocate(company_id, 39)
            return original(self, descriptor, owner_id, status)

        monkeypatch.setattr(CafIngestionService, "_insert", insert_after_exhaustion)
        staged = service.ingest(caf_xml(3, 5), company_id, stage=True)
        monkeypatch.undo()

        assert staged.status == CafStatus.PENDING
        assert [allocator.allocate(company_id, 39).folio for _ in range(3)] == [3, 4, 5]
        assert [caf.id for caf in active_cafs(db, company_id)] == [staged.id]

    def test_lowest_pending_is_activated_first(self, db: Session, company, caf_xml, session_factory):
        service = CafIngestionService(db)
        first = service.ingest(caf_xml(1, 1), company.id)
        later = service.ingest(caf_xml(5, 5), company.id, stage=True)
        following = service.ingest(caf_xml(2, 2), company.id, stage=True)
        allocator = FolioAllocator(session_factory)

        results = [allocator.allocate(company.id, 39) for _ in range(3)]

        assert [r.folio for r in results] == [1, 2, 5]
        assert [r.caf_id for r in results] == [first.id, following.id, later.id]

    def test_explicit_zero_bounds_are_kept(self, db: Session, company, caf_xml, session_factory):
        allocator = FolioAllocator(session_factory, max_attempts=0, max_rotations=0)
        assert allocator.max_attempts == 0
        assert allocator.max_rotations == 0

        service = CafIngestionService(db)
        service.ingest(caf_xml(1, 1), company.id)
        service.ingest(caf_xml(2, 2), company.id, stage=True)

        assert allocator.allocate(company.id, 39).folio == 1
        with pytest.raises(FolioAllocationError) as exc_info:
            allocator.allocate(company.id, 39)
        assert exc_info.value.code == "PERMIT_CHAIN_TOO_LONG"

    def test_superseded_caf_is_never_reactivated(self, db: Session, company, caf_xml, session_factory):
        service = CafIngestionService(db)
        old = service.ingest(caf_xml(1, 5), company.id)
        service.ingest(caf_xml(6, 7), company.id)
        allocator = FolioAllocator(session_factory)

        assert [allocator.allocate(company.id, 39).folio for _ in range(2)] == [6, 7]
        with pytest.raises(PermitExhausted):
            allocator.allocate(company.id, 39)

        db.expire_all()
        assert db.get(Caf, old.id).status == CafStatus.SUPERSEDED
        assert db.get(Caf, old.id).cursor == 0

    def test_stale_cursor_is_rejected(self, db: Session, company, caf_xml, session_factory):
        """El UPDATE condicional no pisa un folio ya confirmado por otro proceso"""
        CafIngestionService(db).ingest(caf_xml(1, 10), company.id)
        allocator = FolioAllocator(session_factory)

        with session_factory() as stale:
            caf = allocator._active_caf(stale, company.id, 39)
            assert caf.cursor == 0

            assert allocator.allocate(company.id, 39).folio == 1

            with pytest.raises(StoreConflict):
                allocator._commit_cursor(stale, caf, 1)

        assert allocator.allocate(company.id, 39).folio == 2

    def test_conflict_is_retried(self, db: Session, company, caf_xml, session_factory, monkeypatch):
        CafIngestionService(db).ingest(caf_xml(1, 10), company.id)
        original = FolioAllocator._commit_cursor
        calls = []

        def flaky_commit(self, session, caf, next_folio):
            calls.append(next_folio)
            if len(calls) == 1:
                session.rollback()
                raise StoreConflict("otro proceso ganó la carrera")
            return original(self, session, caf, next_folio)

        monkeypatch.setattr(FolioAllocator, "_commit_cursor", flaky_commit)

        assert FolioAllocator(session_factory).allocate(company.id, 39).folio == 1
        assert calls == [1, 1]

    def test_persistent_conflict_is_bounded(self, db: Session, company, caf_xml, session_factory, monkeypatch):
        CafIngestionService(db).ingest(caf_xml(1, 10), company.id)
        calls = []

        def always_conflict(self, session, caf, next_folio):
            calls.append(next_folio)
            session.rollback()
            raise StoreConflict("otro proceso ganó la carrera")

        monkeypatch.setattr(FolioAllocator, "_commit_cursor", always_conflict)

        with pytest.raises(FolioAllocationError) as exc_info:
            FolioAllocator(session_factory, max_attempts=3).allocate(company.id, 39)

        assert exc_info.value.code == "ALLOCATION_CONTENTION"
        assert len(calls) == 3
        assert db.query(Caf).one().cursor == 0

    def test_concurrent_allocation_is_unique(self, db: Session, company, caf_xml, session_factory):
        CafIngestionService(db).ingest(caf_xml(1, 50), company.id)
        allocator = FolioAllocator(session_factory, max_attempts=100)
        company_id = company.id

        with ThreadPoolExecutor(max_workers=50) as pool:
            folios = list(pool.map(lambda _: allocator.allocate(company_id, 39).folio, range(50)))

        assert sorted(folios) == list(range(1, 51))

    def test_concurrent_allocation_past_exhaustion(self, db: Session, company, caf_xml, session_factory):
        CafIngestionService(db).ingest(caf_xml(1, 20), company.id)
        allocator = FolioAllocator(session_factory, max_attempts=100)
        company_id = company.id

        def allocate(_):
            try:
                return allocator.allocate(company_id, 39).folio
            except PermitExhausted:
                return None

        with ThreadPoolExecutor(max_workers=30) as pool:
            results = list(pool.map(allocate, range(30)))

        folios = [folio for folio in results if folio is not None]
        assert sorted(folios) == list(range(1, 21))
        assert results.count(None) == 10

    def test_peek_status(self, db: Session, company, caf_xml, session_factory):
        service = CafIngestionService(db)
        current = service.ingest(caf_xml(1, 10), company.id)
        service.ingest(caf_xml(11, 20), company.id, stage=True)
        allocator = FolioAllocator(session_factory)
        for _ in range(3):
            allocator.allocate(company.id, 39)

        status = allocator.peek_status(company.id, 39)

        assert status.caf_id == current.id
        assert status.next_folio == 4
        assert status.remaining == 7
        assert status.pending_cafs == 1
        assert status.pending_folios == 10
        # Consultar no consume folios
        assert allocator.allocate(company.id, 39).folio == 4

    def test_peek_status_without_caf(self, db: Session, company, session_factory):
        status = FolioAllocator(session_factory).peek_status(company.id, 39)

        assert status.caf_id is None
        assert status.next_folio is None
        assert status.remaining == 0


# ===== TESTS DE API =====

class TestFoliosAPI:
    """Tests de los endpoints de folios"""

    def upload(self, client, company_id, xml, **params):
        return client.post(
            "/folios/upload",
            params={"company_id": company_id, **params},
            files={"file": ("caf.xml", xml.encode("iso-8859-1"), "text/xml")},
        )

    def test_upload_and_allocate(self, client, company, caf_xml):
        response = self.upload(client, company.id, caf_xml(1, 2))
        assert response.status_code == 201
        body = response.json()
        assert body["status"] == "active"
        assert body["range_start"] == 1
        assert body["range_end"] == 2

        first = client.post("/folios/next", params={"company_id": company.id})
        assert first.status_code == 200
        assert first.json()["folio"] == 1
        assert first.json()["caf_id"] == body["id"]
        assert first.json()["caf_artifact"] == caf_xml(1, 2)

        assert client.post("/folios/next", params={"company_id": company.id}).json()["folio"] == 2

        exhausted = client.post("/folios/next", params={"company_id": company.id})
        assert exhausted.status_code == 409
        assert exhausted.json()["detail"]["code"] == "PERMIT_EXHAUSTED"

    def test_allocate_without_caf(self, client, company):
        response = client.post("/folios/next", params={"company_id": company.id})

        assert response.status_code == 409
        assert response.json()["detail"]["code"] == "NO_ACTIVE_PERMIT"

    def test_upload_malformed(self, client, company):
        response = self.upload(client, company.id, "<AUTORIZACION><CAF/></AUTORIZACION>")

        assert response.status_code == 400
        assert response.json()["detail"]["code"] == "MALFORMED_PERMIT"

    def test_upload_unknown_company(self, client, caf_xml):
        response = self.upload(client, 999, caf_xml(1, 10))

        assert response.status_code == 404
        assert response.json()["detail"]["code"] == "COMPANY_NOT_FOUND"

    def test_upload_overlapping(self, client, company, caf_xml):
        self.upload(client, company.id, caf_xml(1, 10))
        response = self.upload(client, company.id, caf_xml(10, 20))

        assert response.status_code == 409
        assert response.json()["detail"]["code"] == "OVERLAPPING_PERMIT"

    def test_upload_with_issuer_mismatch(self, client, company, caf_xml):
        response = self.upload(client, company.id, caf_xml(1, 10, rut="11111111-1"))

        assert response.status_code == 201
        assert response.json()["issuer_mismatch"] is True
        assert response.json()["warnings"]

    def test_list_and_status(self, client, company, caf_xml):
        self.upload(client, company.id, caf_xml(1, 10))
        self.upload(client, company.id, caf_xml(11, 20), stage="true")
        client.post("/folios/next", params={"company_id": company.id})

        listing = client.get("/folios", params={"company_id": company.id})
        assert listing.status_code == 200
        assert listing.json()["total"] == 2
        assert [c["status"] for c in listing.json()["cafs"]] == ["active", "pending"]
        assert listing.json()["cafs"][0]["remaining"] == 9

        status = client.get("/folios/status", params={"company_id": company.id})
        assert status.status_code == 200
        assert status.json()["next_folio"] == 2
        assert status.json()["pending_folios"] == 10
