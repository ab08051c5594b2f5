"""
Tests para el módulo DTE (emisión de boletas)

El microservicio de firma se reemplaza por un firmador falso; el cliente
SimpleApiSigner se prueba con una sesión HTTP falsa.
"""
import json
from datetime import date
from decimal import Decimal

import pytest
import requests
from sqlalchemy.orm import Session

from pos_boletas.modules.company.models import Company
from pos_boletas.modules.dte.exceptions import SigningServiceError, SigningNotConfigured
from pos_boletas.modules.dte.models import DteEmission, EmissionStatus
from pos_boletas.modules.dte.router import get_signer
from pos_boletas.modules.dte.schemas import DteItem, EmissionRequest
from pos_boletas.modules.dte.service import EmissionService, build_dte_document
from pos_boletas.modules.dte.signer import SignedDocument, SigningConfig, SimpleApiSigner
from pos_boletas.modules.folios.allocator import FolioAllocator
from pos_boletas.modules.folios.exceptions import CompanyNotFound, NoActivePermit, PermitExhausted
from pos_boletas.modules.folios.models import Caf
from pos_boletas.modules.folios.parser import encode_artifact
from pos_boletas.modules.folios.service import CafIngestionService


class FakeSigner:
    def __init__(self, fail: bool = False, configured: bool = True):
        self.fail = fail
        self.configured = configured
        self.calls = []

    def ensure_configured(self):
        if not self.configured:
            raise SigningNotConfigured("Falta configurar SIMPLEAPI_KEY")

    def sign(self, document: dict, caf_artifact: str) -> SignedDocument:
        self.calls.append((document, caf_artifact))
        if self.fail:
            raise SigningServiceError("Servicio de firma respondió 500: error interno", status_code=500)
        folio = document["Encabezado"]["IdentificacionDTE"]["Folio"]
        return SignedDocument(folio=folio, stamp=f"<TED>{folio}</TED>", xml=f"<DTE folio='{folio}'/>")


class FakeResponse:
    def __init__(self, status_code: int = 200, body=None, text: str = ""):
        self.status_code = status_code
        self._body = body
        self.text = text or json.dumps(body)

    @property
    def ok(self):
        return 200 <= self.status_code < 400

    def json(self):
        if self._body is None:
            raise ValueError("No JSON object could be decoded")
        return self._body


class FakeSession:
    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.requests = []

    def post(self, url, files=None, data=None, headers=None, timeout=None):
        self.requests.append({
            "url": url,
            "files": {name: value[1] if isinstance(value[1], bytes) else value[0] for name, value in files.items()},
            "data": data,
            "headers": headers,
            "timeout": timeout,
        })
        if self.error:
            raise self.error
        return self.response


@pytest.fixture
def sale():
    return EmissionRequest(items=[
        DteItem(name="Pan amasado", quantity=Decimal("2"), unit_price=Decimal("1500")),
        DteItem(name="Bebida 1.5L", quantity=Decimal("1"), unit_price=Decimal("1990")),
    ])


@pytest.fixture
def signing_config(tmp_path):
    cert = tmp_path / "certificado.pfx"
    cert.write_bytes(b"PKCS12")
    return SigningConfig(
        url="https://signer.test/api/v1/dte/generar",
        api_key="api-key-123",
        cert_path=str(cert),
        cert_password="secreto",
        cert_rut="11111111-1",
        timeout=5,
    )


# ===== TESTS DE ARMADO DEL DOCUMENTO =====

class TestBuildDocument:
    """Tests para build_dte_document"""

    def test_document_structure(self, db: Session, company: Company, sale):
        document = build_dte_document(company, 7, sale, issue_date=date(2025, 12, 1))

        header = document["Encabezado"]
        assert header["IdentificacionDTE"] == {
            "TipoDTE": 39,
            "Folio": 7,
            "FechaEmision": "2025-12-01",
            "IndicadorServicio": 3,
        }
        assert header["Emisor"]["Rut"] == "76354771-K"
        assert header["Receptor"]["Rut"] == "66666666-6"
        assert header["Totales"]["MontoTotal"] == 4990
        assert [line["NroLinDet"] for line in document["Detalles"]] == [1, 2]
        assert document["Referencia"] == []

    def test_amounts_are_rounded_to_pesos(self, db: Session, company: Company):
        request = EmissionRequest(items=[
            DteItem(name="Queso", quantity=Decimal("1.5"), unit_price=Decimal("999"), unit="Kg"),
        ])
        line = build_dte_document(company, 1, request)["Detalles"][0]

        assert line["Cantidad"] == 1.5
        assert line["MontoItem"] == 1499
        assert line["UnmdItem"] == "Kg"

    def test_exempt_item_and_long_name(self, db: Session, company: Company):
        request = EmissionRequest(items=[DteItem(name="x" * 100, quantity=Decimal("1"), unit_price=Decimal("100"), exempt=True)])
        line = build_dte_document(company, 1, request)["Detalles"][0]

        assert len(line["Nombre"]) == 80
        assert line["IndExe"] == 1
        assert line["Cantidad"] == 1

    def test_test_case_reference(self, db: Session, company: Company, sale):
        request = sale.model_copy(update={"test_case": "CASO-1"})
        document = build_dte_document(company, 1, request)

        assert document["Referencia"] == [{
            "NroLinRef": 1,
            "TpoDocRef": "SET",
            "FolioRef": "0",
            "RazonRef": "CASO-1",
        }]


# ===== TESTS DEL SERVICIO DE EMISIÓN =====

class TestEmissionService:
    """Tests para EmissionService"""

    def test_emit_signs_with_stored_caf(self, db: Session, company, caf_xml, session_factory, sale):
        stored = CafIngestionService(db).ingest(caf_xml(1, 10), company.id)
        signer = FakeSigner()

        emission = EmissionService(db, FolioAllocator(session_factory), signer).emit(company.id, sale)

        assert emission.status == EmissionStatus.SIGNED
        assert emission.folio == 1
        assert emission.caf_id == stored.id
        assert emission.total == 4990
        assert emission.stamp == "<TED>1</TED>"
        document, artifact = signer.calls[0]
        assert document["Encabezado"]["IdentificacionDTE"]["Folio"] == 1
        assert artifact == db.get(Caf, stored.id).artifact

    def test_signing_failure_burns_folio(self, db: Session, company, caf_xml, session_factory, sale):
        CafIngestionService(db).ingest(caf_xml(1, 10), company.id)
        allocator = FolioAllocator(session_factory)

        with pytest.raises(SigningServiceError):
            EmissionService(db, allocator, FakeSigner(fail=True)).emit(company.id, sale)

        failed = db.query(DteEmission).one()
        assert failed.status == EmissionStatus.FAILED
        assert failed.folio == 1
        assert "500" in failed.error

        # El folio quemado no se reutiliza
        emission = EmissionService(db, allocator, FakeSigner()).emit(company.id, sale)
        assert emission.folio == 2

    def test_unreadable_certificate_is_recorded_as_failed(
        self, db: Session, company, caf_xml, session_factory, sale, signing_config, tmp_path, monkeypatch
    ):
        CafIngestionService(db).ingest(caf_xml(1, 10), company.id)
        missing_cert = SigningConfig(**{**signing_config.__dict__, "cert_path": str(tmp_path / "borrado.pfx")})
        signer = SimpleApiSigner(missing_cert, session=FakeSession(FakeResponse(200, {"TED": "<TED/>"})))
        monkeypatch.setattr(signer, "ensure_configured", lambda: None)

        with pytest.raises(SigningServiceError):
            EmissionService(db, FolioAllocator(session_factory), signer).emit(company.id, sale)

        failed = db.query(DteEmission).one()
        assert failed.status == EmissionStatus.FAILED
        assert failed.folio == 1
        assert "certificado" in failed.error

    def test_unconfigured_signer_does_not_consume_folio(self, db: Session, company, caf_xml, session_factory, sale):
        CafIngestionService(db).ingest(caf_xml(1, 10), company.id)
        allocator = FolioAllocator(session_factory)
        signer = FakeSigner(configured=False)

        with pytest.raises(SigningNotConfigured):
            EmissionService(db, allocator, signer).emit(company.id, sale)

        assert signer.calls == []
        assert allocator.peek_status(company.id, 39).next_folio == 1

    def test_exhausted_caf_stops_before_signing(self, db: Session, company, caf_xml, session_factory, sale):
        CafIngestionService(db).ingest(caf_xml(1, 1), company.id)
        signer = FakeSigner()
        service = EmissionService(db, FolioAllocator(session_factory), signer)

        assert service.emit(company.id, sale).folio == 1
        with pytest.raises(PermitExhausted):
            service.emit(company.id, sale)

        assert len(signer.calls) == 1
        assert db.query(DteEmission).count() == 1

    def test_emit_without_caf(self, db: Session, company, session_factory, sale):
        with pytest.raises(NoActivePermit):
            EmissionService(db, FolioAllocator(session_factory), FakeSigner()).emit(company.id, sale)

    def test_emit_unknown_company(self, db: Session, session_factory, sale):
        with pytest.raises(CompanyNotFound):
            EmissionService(db, FolioAllocator(session_factory), FakeSigner()).emit(999, sale)

    def test_list_emissions(self, db: Session, company, caf_xml, session_factory, sale):
        CafIngestionService(db).ingest(caf_xml(1, 10), company.id)
        service = EmissionService(db, FolioAllocator(session_factory), FakeSigner())
        for _ in range(3):
            service.emit(company.id, sale)

        page = service.list_emissions(company.id, limit=2)

        assert page["total"] == 3
        assert [e.folio for e in page["emissions"]] == [3, 2]


# ===== TESTS DEL CLIENTE DE FIRMA =====

class TestSimpleApiSigner:
    """Tests para SimpleApiSigner con una sesión HTTP falsa"""

    def test_sign_sends_document_certificate_and_caf(self, signing_config, caf_xml):
        caf = caf_xml(1, 10, business_name="COMERCIALIZADORA ÑUÑOA LTDA")
        session = FakeSession(FakeResponse(200, {"Folio": 1, "TED": "<TED/>", "XML": "<DTE/>"}))
        signer = SimpleApiSigner(signing_config, session=session)

        signed = signer.sign({"Encabezado": {"IdentificacionDTE": {"Folio": 1}}}, caf)

        assert signed == SignedDocument(folio=1, stamp="<TED/>", xml="<DTE/>")
        request = session.requests[0]
        assert request["url"] == signing_config.url
        assert request["headers"] == {"Authorization": "api-key-123"}
        assert request["timeout"] == 5
        assert request["files"]["files2"] == encode_artifact(caf)
        assert request["files"]["files2"] == caf.encode("iso-8859-1")
        payload = json.loads(request["data"]["input"])
        assert payload["Certificado"] == {"Rut": "11111111-1", "Password": "secreto"}
        assert payload["Documento"]["Encabezado"]["IdentificacionDTE"]["Folio"] == 1

    def test_sign_accepts_timbre_key(self, signing_config):
        session = FakeSession(FakeResponse(200, {"Timbre": "<TED/>"}))
        signed = SimpleApiSigner(signing_config, session=session).sign(
            {"Encabezado": {"IdentificacionDTE": {"Folio": 3}}}, "<AUTORIZACION/>"
        )
        assert signed.stamp == "<TED/>"

    def test_sign_non_2xx(self, signing_config):
        session = FakeSession(FakeResponse(500, text="error interno"))

        with pytest.raises(SigningServiceError) as exc_info:
            SimpleApiSigner(signing_config, session=session).sign(
                {"Encabezado": {"IdentificacionDTE": {"Folio": 1}}}, "<AUTORIZACION/>"
            )

        assert exc_info.value.status_code == 500
        assert exc_info.value.code == "SIGNING_FAILED"

    def test_sign_network_error(self, signing_config):
        session = FakeSession(error=requests.ConnectionError("connection refused"))

        with pytest.raises(SigningServiceError, match="contactar"):
            SimpleApiSigner(signing_config, session=session).sign(
                {"Encabezado": {"IdentificacionDTE": {"Folio": 1}}}, "<AUTORIZACION/>"
            )

    def test_sign_invalid_json(self, signing_config):
        session = FakeSession(FakeResponse(200, body=None, text="<html>"))

        with pytest.raises(SigningServiceError, match="JSON"):
            SimpleApiSigner(signing_config, session=session).sign(
                {"Encabezado": {"IdentificacionDTE": {"Folio": 1}}}, "<AUTORIZACION/>"
            )

    def test_sign_unreadable_certificate(self, signing_config, tmp_path, monkeypatch):
        """El certificado desaparece después de validar la configuración"""
        missing_cert = SigningConfig(**{**signing_config.__dict__, "cert_path": str(tmp_path / "borrado.pfx")})
        session = FakeSession(FakeResponse(200, {"TED": "<TED/>"}))
        signer = SimpleApiSigner(missing_cert, session=session)
        monkeypatch.setattr(signer, "ensure_configured", lambda: None)

        with pytest.raises(SigningServiceError, match="certificado") as exc_info:
            signer.sign({"Encabezado": {"IdentificacionDTE": {"Folio": 1}}}, "<AUTORIZACION/>")

        assert exc_info.value.code == "SIGNING_FAILED"
        assert session.requests == []

    def test_ensure_configured(self, signing_config, tmp_path):
        SimpleApiSigner(signing_config).ensure_configured()

        missing_key = SigningConfig(**{**signing_config.__dict__, "api_key": ""})
        with pytest.raises(SigningNotConfigured, match="SIMPLEAPI_KEY"):
            SimpleApiSigner(missing_key).ensure_configured()

        missing_cert = SigningConfig(**{**signing_config.__dict__, "cert_path": str(tmp_path / "no.pfx")})
        with pytest.raises(SigningNotConfigured):
            SimpleApiSigner(missing_cert).ensure_configured()


# ===== TESTS DE API =====

class TestDteAPI:
    """Tests de los endpoints de emisión"""

    @pytest.fixture
    def signer(self, client):
        fake = FakeSigner()
        client.app.dependency_overrides[get_signer] = lambda: fake
        yield fake
        client.app.dependency_overrides.pop(get_signer, None)

    def payload(self):
        return {"items": [{"name": "Pan amasado", "quantity": "2", "unit_price": "1500"}]}

    def test_emit_endpoint(self, client, signer, company, caf_xml):
        client.post(
            "/folios/upload",
            params={"company_id": company.id},
            files={"file": ("caf.xml", caf_xml(1, 5).encode("iso-8859-1"), "text/xml")},
        )

        response = client.post(f"/dte/emit/{company.id}", json=self.payload())

        assert response.status_code == 201
        assert response.json()["folio"] == 1
        assert response.json()["status"] == "signed"

        emissions = client.get(f"/dte/emissions/{company.id}")
        assert emissions.status_code == 200
        assert emissions.json()["total"] == 1

    def test_emit_without_caf(self, client, signer, company):
        response = client.post(f"/dte/emit/{company.id}", json=self.payload())

        assert response.status_code == 409
        assert response.json()["detail"]["code"] == "NO_ACTIVE_PERMIT"
        assert signer.calls == []

    def test_emit_signing_failure(self, client, signer, company, caf_xml):
        client.post(
            "/folios/upload",
            params={"company_id": company.id},
            files={"file": ("caf.xml", caf_xml(1, 5).encode("iso-8859-1"), "text/xml")},
        )
        signer.fail = True

        response = client.post(f"/dte/emit/{company.id}", json=self.payload())

        assert response.status_code == 502
        assert response.json()["detail"]["code"] == "SIGNING_FAILED"
        assert client.get(f"/dte/emissions/{company.id}").json()["emissions"][0]["status"] == "failed"

    def test_emit_requires_items(self, client, signer, company):
        response = client.post(f"/dte/emit/{company.id}", json={"items": []})
        assert response.status_code == 422
