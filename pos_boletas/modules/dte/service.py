from sqlalchemy.orm import Session
from decimal import Decimal, ROUND_HALF_UP
from datetime import date
from typing import Optional
import logging

from pos_boletas.modules.company.models import Company
from pos_boletas.modules.dte.models import DteEmission, EmissionStatus
from pos_boletas.modules.dte.schemas import EmissionRequest, DteItem
from pos_boletas.modules.dte.exceptions import SigningServiceError
from pos_boletas.modules.folios.allocator import FolioAllocator
from pos_boletas.modules.folios.exceptions import CompanyNotFound

logger = logging.getLogger(__name__)

# Receptor genérico para boletas sin cliente identificado
GENERIC_RECEIVER = {
    "Rut": "66666666-6",
    "RazonSocial": "Cliente Boleta",
    "Direccion": "Direccion",
    "Comuna": "Temuco",
}


def _round_clp(amount: Decimal) -> int:
    return int(amount.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def build_detail_line(index: int, item: DteItem) -> dict:
    line = {
        "NroLinDet": index,
        "Nombre": item.name[:80],
        "Cantidad": float(item.quantity) if item.quantity % 1 else int(item.quantity),
        "Precio": _round_clp(item.unit_price),
        "MontoItem": _round_clp(item.quantity * item.unit_price),
    }
    if item.exempt:
        line["IndExe"] = 1
    if item.unit:
        line["UnmdItem"] = item.unit
    return line


def build_dte_document(company: Company, folio: int, request: EmissionRequest, issue_date: Optional[date] = None) -> dict:
    """Arma el documento en el formato JSON que espera el servicio de firma."""
    details = [build_detail_line(i, item) for i, item in enumerate(request.items, start=1)]
    total = sum(line["MontoItem"] for line in details)

    document = {
        "Encabezado": {
            "IdentificacionDTE": {
                "TipoDTE": request.document_type,
                "Folio": folio,
                "FechaEmision": (issue_date or date.today()).isoformat(),
                "IndicadorServicio": request.service_indicator,
            },
            "Emisor": {
                "Rut": company.rut,
                "RazonSocialBoleta": company.business_name,
                "GiroBoleta": company.activity or "",
                "DireccionOrigen": company.address or "Sin direccion",
                "ComunaOrigen": company.commune or "",
            },
            "Receptor": dict(GENERIC_RECEIVER),
            "Totales": {"MontoTotal": total},
        },
        "Detalles": details,
        "Referencia": [],
    }

    if request.test_case:
        # Referencia obligatoria para identificar casos del set de pruebas
        document["Referencia"] = [{
            "NroLinRef": 1,
            "TpoDocRef": "SET",
            "FolioRef": "0",
            "RazonRef": request.test_case,
        }]
    return document


class EmissionService:
    """Orquesta la emisión: folio -> documento -> firma -> registro."""

    def __init__(self, db: Session, allocator: Optional[FolioAllocator] = None, signer=None):
        self.db = db
        self.allocator = allocator
        self.signer = signer

    def emit(self, company_id: int, request: EmissionRequest) -> DteEmission:
        company = self.db.query(Company).filter(Company.id == company_id).first()
        if not company:
            raise CompanyNotFound(company_id)

        # Antes de consumir el folio: sin firma configurada el folio se perdería
        self.signer.ensure_configured()

        allocation = self.allocator.allocate(company_id, request.document_type)
        document = build_dte_document(company, allocation.folio, request)

        emission = DteEmission(
            company_id=company_id,
            caf_id=allocation.caf_id,
            document_type=request.document_type,
            folio=allocation.folio,
            total=Decimal(document["Encabezado"]["Totales"]["MontoTotal"]),
            test_case=request.test_case,
        )

        try:
            signed = self.signer.sign(document, allocation.permit_artifact)
        except SigningServiceError as e:
            emission.status = EmissionStatus.FAILED
            emission.error = e.message
            self.db.add(emission)
            self.db.commit()
            logger.error(
                f"Signing failed for company {company_id}, type {request.document_type}, "
                f"folio {allocation.folio} burned: {e.message}"
            )
            raise

        emission.status = EmissionStatus.SIGNED
        emission.stamp = signed.stamp
        emission.xml = signed.xml
        self.db.add(emission)
        self.db.commit()
        self.db.refresh(emission)

        logger.info(f"DTE type {request.document_type} folio {allocation.folio} signed for company {company_id}")
        return emission

    def list_emissions(self, company_id: int, limit: int = 50, offset: int = 0):
        query = self.db.query(DteEmission).filter(DteEmission.company_id == company_id)
        total = query.count()
        emissions = query.order_by(DteEmission.id.desc()).offset(offset).limit(limit).all()
        return {"emissions": emissions, "total": total, "limit": limit, "offset": offset}
