from sqlalchemy.orm import Session
from sqlalchemy.exc import IntegrityError
from typing import List, Optional, Union
from datetime import datetime, timezone
import logging

from pos_boletas.core.config import settings
from pos_boletas.common.validators import normalize_rut
from pos_boletas.modules.company.models import Company
from pos_boletas.modules.folios.models import Caf, CafStatus
from pos_boletas.modules.folios.parser import parse_caf, PermitDescriptor
from pos_boletas.modules.folios.schemas import IngestionResult
from pos_boletas.modules.folios.exceptions import (
    CompanyNotFound, OverlappingPermit, PermitOutOfOrder, StoreConflict, MismatchedIssuerWarning
)

logger = logging.getLogger(__name__)


class CafIngestionService:
    """
    Admite CAF nuevos para una empresa.

    Por defecto el CAF cargado queda vigente y el vigente del mismo tipo queda
    reemplazado (superseded), junto con los CAF en espera que comienzan bajo el
    nuevo rango, todo en una sola transacción. Con stage=True queda en espera y
    el allocator lo activa cuando se agota el vigente.
    """

    def __init__(self, db: Session, max_attempts: Optional[int] = None):
        self.db = db
        self.max_attempts = settings.FOLIO_MAX_ATTEMPTS if max_attempts is None else max_attempts

    def ingest(self, document: Union[str, bytes], company_id: int, stage: bool = False) -> IngestionResult:
        # Parseo antes de tocar la base de datos
        descriptor = parse_caf(document)

        company = self.db.query(Company).filter(Company.id == company_id).first()
        if not company:
            raise CompanyNotFound(company_id)

        warnings = []
        issuer_mismatch = normalize_rut(descriptor.issuer_id) != normalize_rut(company.rut)
        if issuer_mismatch:
            message = (
                f"El RUT emisor del CAF ({descriptor.issuer_id}) no coincide con "
                f"el RUT de la empresa ({company.rut})"
            )
            logger.warning(f"{MismatchedIssuerWarning.__name__}: company={company_id} {message}")
            warnings.append(message)

        for attempt in range(1, self.max_attempts + 1):
            try:
                caf, superseded_ids = self._store(descriptor, company_id, stage)
                break
            except (IntegrityError, StoreConflict) as e:
                # Otra ingesta o un allocator cambió los CAF de la empresa entre la lectura y la escritura
                self.db.rollback()
                logger.debug(f"CAF ingestion conflict for company {company_id} (attempt {attempt}): {e}")
        else:
            raise StoreConflict(
                f"No fue posible registrar el CAF tras {self.max_attempts} intentos por cargas concurrentes"
            )

        logger.info(
            f"CAF {caf.id} stored for company {company_id}, type {caf.document_type}, "
            f"range [{caf.range_start}-{caf.range_end}], status {caf.status.value}"
            + (f", superseded {superseded_ids}" if superseded_ids else "")
        )

        return IngestionResult(
            id=caf.id,
            company_id=caf.company_id,
            document_type=caf.document_type,
            range_start=caf.range_start,
            range_end=caf.range_end,
            cursor=caf.cursor,
            active=caf.active,
            status=caf.status,
            superseded_ids=superseded_ids,
            issuer_mismatch=issuer_mismatch,
            warnings=warnings,
        )

    def _store(self, descriptor: PermitDescriptor, company_id: int, stage: bool):
        existing = self.db.query(Caf).filter(
            Caf.company_id == company_id,
            Caf.document_type == descriptor.document_type
        ).all()

        overlapping = [
            caf for caf in existing
            if caf.range_start <= descriptor.range_end and caf.range_end >= descriptor.range_start
        ]
        if overlapping:
            ranges = ", ".join(f"[{c.range_start}-{c.range_end}]" for c in overlapping)
            raise OverlappingPermit(
                f"El rango [{descriptor.range_start}-{descriptor.range_end}] se cruza con CAF ya cargados: {ranges}"
            )

        active = [caf for caf in existing if caf.active]
        if stage and active:
            current_end = max(caf.range_end for caf in active)
            if descriptor.range_start <= current_end:
                raise PermitOutOfOrder(
                    f"Un CAF en espera debe comenzar después del folio {current_end} del CAF vigente"
                )
            return self._insert(descriptor, company_id, CafStatus.PENDING), []

        # Los CAF en espera bajo el nuevo rango quedarían fuera del orden ascendente
        skipped = [
            caf for caf in existing
            if caf.status == CafStatus.PENDING and caf.range_start < descriptor.range_start
        ]
        superseded_ids = [caf.id for caf in active] + [caf.id for caf in skipped]
        if superseded_ids:
            updated = self.db.query(Caf).filter(
                Caf.id.in_(superseded_ids),
                Caf.status.in_([CafStatus.ACTIVE, CafStatus.PENDING])
            ).update(
                {
                    Caf.active: False,
                    Caf.status: CafStatus.SUPERSEDED,
                    Caf.deactivated_at: datetime.now(timezone.utc),
                },
                synchronize_session=False
            )
            if updated != len(superseded_ids):
                self.db.rollback()
                raise StoreConflict(f"Los CAF {superseded_ids} cambiaron de estado durante la carga")

        return self._insert(descriptor, company_id, CafStatus.ACTIVE), superseded_ids

    def _insert(self, descriptor: PermitDescriptor, company_id: int, status: CafStatus) -> Caf:
        caf = Caf(
            company_id=company_id,
            document_type=descriptor.document_type,
            range_start=descriptor.range_start,
            range_end=descriptor.range_end,
            cursor=descriptor.range_start - 1,
            active=status == CafStatus.ACTIVE,
            status=status,
            artifact=descriptor.normalized_artifact,
            issuer_rut=normalize_rut(descriptor.issuer_id),
            authorized_at=descriptor.authorized_at,
        )
        self.db.add(caf)
        self.db.commit()
        self.db.refresh(caf)
        return caf

    def list_permits(self, company_id: int, document_type: Optional[int] = None) -> List[Caf]:
        if not self.db.query(Company.id).filter(Company.id == company_id).first():
            raise CompanyNotFound(company_id)

        query = self.db.query(Caf).filter(Caf.company_id == company_id)
        if document_type is not None:
            query = query.filter(Caf.document_type == document_type)
        return query.order_by(Caf.document_type, Caf.range_start, Caf.created_at).all()
