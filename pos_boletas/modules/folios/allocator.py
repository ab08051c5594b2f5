"""
Asignación de folios.

Cada folio se entrega exactamente una vez: el cursor del CAF se confirma con un
UPDATE condicional (compare-and-swap) sobre el valor leído, nunca con una
lectura seguida de una escritura ciega:

    UPDATE cafs SET cursor = :next
    WHERE id = :id AND active AND cursor = :cursor

Si el UPDATE no afecta filas, otro allocator ganó la carrera (StoreConflict) y
se reintenta toda la operación. El agotamiento del CAF y la activación del
siguiente en espera se confirman en la misma transacción, también con
condiciones sobre el estado leído.

Cada intento usa su propia sesión: un folio confirmado queda consumido aunque
la transacción del llamador se deshaga después (folio quemado).
"""
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional
import logging

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from pos_boletas.core.config import settings
from pos_boletas.modules.folios.models import Caf, CafStatus
from pos_boletas.modules.folios.schemas import FolioStatusOut
from pos_boletas.modules.folios.exceptions import (
    NoActivePermit, PermitExhausted, StoreConflict, FolioAllocationError
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AllocationResult:
    folio: int
    permit_artifact: str
    caf_id: int


class FolioAllocator:

    def __init__(
        self,
        session_factory: sessionmaker,
        max_attempts: Optional[int] = None,
        max_rotations: Optional[int] = None
    ):
        self.session_factory = session_factory
        self.max_attempts = settings.FOLIO_MAX_ATTEMPTS if max_attempts is None else max_attempts
        self.max_rotations = settings.FOLIO_MAX_ROTATIONS if max_rotations is None else max_rotations

    def allocate(self, company_id: int, document_type: int) -> AllocationResult:
        """
        Consume y devuelve el siguiente folio de la empresa para el tipo de DTE.

        Raises:
            NoActivePermit: no hay CAF cargado para (empresa, tipo).
            PermitExhausted: el CAF vigente se agotó y no hay uno en espera.
            FolioAllocationError: contención persistente o demasiados CAF agotados seguidos.
        """
        conflicts = 0
        rotations = 0

        while True:
            try:
                with self.session_factory() as db:
                    caf = self._active_caf(db, company_id, document_type)
                    if caf is None:
                        # Un CAF en espera cargado mientras el vigente se agotaba
                        pending = self._lowest_pending(db, company_id, document_type)
                        if pending is None:
                            raise self._missing_permit_error(db, company_id, document_type)
                        self._activate_pending(db, pending)
                        continue

                    next_folio = caf.cursor + 1
                    if next_folio > caf.range_end:
                        if rotations >= self.max_rotations:
                            logger.error(
                                f"Too many exhausted CAFs in a row for company {company_id}, type {document_type}"
                            )
                            raise FolioAllocationError(
                                f"Se agotaron {rotations} CAF seguidos sin obtener folio",
                                code="PERMIT_CHAIN_TOO_LONG"
                            )
                        self._rotate(db, caf)
                        rotations += 1
                        continue

                    caf_id, artifact = caf.id, caf.artifact
                    self._commit_cursor(db, caf, next_folio)
                    logger.debug(
                        f"Folio {next_folio} allocated from CAF {caf_id} "
                        f"(company {company_id}, type {document_type})"
                    )
                    return AllocationResult(folio=next_folio, permit_artifact=artifact, caf_id=caf_id)

            except StoreConflict as e:
                conflicts += 1
                if conflicts >= self.max_attempts:
                    logger.error(
                        f"Folio allocation for company {company_id}, type {document_type} "
                        f"gave up after {conflicts} conflicts"
                    )
                    raise FolioAllocationError(
                        f"No fue posible asignar folio tras {conflicts} intentos por contención, reintente"
                    ) from e
                logger.debug(f"Allocation conflict ({conflicts}/{self.max_attempts}): {e}")

    def peek_status(self, company_id: int, document_type: int) -> FolioStatusOut:
        """Estado de la numeración sin consumir folios."""
        with self.session_factory() as db:
            caf = self._active_caf(db, company_id, document_type)
            pending = db.query(Caf).filter(
                Caf.company_id == company_id,
                Caf.document_type == document_type,
                Caf.status == CafStatus.PENDING
            ).all()

            return FolioStatusOut(
                company_id=company_id,
                document_type=document_type,
                caf_id=caf.id if caf else None,
                next_folio=caf.next_folio if caf and caf.remaining > 0 else None,
                remaining=caf.remaining if caf else 0,
                pending_cafs=len(pending),
                pending_folios=sum(p.remaining for p in pending),
            )

    def _active_caf(self, db: Session, company_id: int, document_type: int) -> Optional[Caf]:
        return db.query(Caf).filter(
            Caf.company_id == company_id,
            Caf.document_type == document_type,
            Caf.active.is_(True)
        ).order_by(Caf.range_start, Caf.created_at, Caf.id).first()

    def _missing_permit_error(self, db: Session, company_id: int, document_type: int):
        exhausted = db.query(func.count(Caf.id)).filter(
            Caf.company_id == company_id,
            Caf.document_type == document_type,
            Caf.status == CafStatus.EXHAUSTED
        ).scalar()
        if exhausted:
            return PermitExhausted(company_id, document_type)
        logger.warning(f"No active CAF for company {company_id}, type {document_type}")
        return NoActivePermit(company_id, document_type)

    def _commit_cursor(self, db: Session, caf: Caf, next_folio: int):
        caf_id, cursor = caf.id, caf.cursor
        updated = db.query(Caf).filter(
            Caf.id == caf_id,
            Caf.active.is_(True),
            Caf.cursor == cursor
        ).update({Caf.cursor: next_folio}, synchronize_session=False)

        if updated != 1:
            db.rollback()
            raise StoreConflict(f"El cursor del CAF {caf_id} cambió antes de confirmar el folio {next_folio}")
        db.commit()

    def _rotate(self, db: Session, caf: Caf):
        """Marca el CAF como agotado y activa el siguiente en espera, en una sola transacción."""
        caf_id, cursor, range_end = caf.id, caf.cursor, caf.range_end
        company_id, document_type = caf.company_id, caf.document_type

        deactivated = db.query(Caf).filter(
            Caf.id == caf_id,
            Caf.active.is_(True),
            Caf.cursor == cursor
        ).update(
            {
                Caf.active: False,
                Caf.status: CafStatus.EXHAUSTED,
                Caf.deactivated_at: datetime.now(timezone.utc),
            },
            synchronize_session=False
        )
        if deactivated != 1:
            db.rollback()
            raise StoreConflict(f"El CAF {caf_id} ya fue desactivado por otro proceso")

        # La ingesta deja todo CAF en espera sobre el rango vigente; se toma el menor
        successor = self._lowest_pending(db, company_id, document_type)

        if successor is None:
            db.commit()
            logger.warning(
                f"CAF {caf_id} exhausted at folio {range_end} with no successor "
                f"(company {company_id}, type {document_type})"
            )
            raise PermitExhausted(company_id, document_type)

        self._activate_pending(db, successor, exhausted_id=caf_id)

    def _lowest_pending(self, db: Session, company_id: int, document_type: int) -> Optional[Caf]:
        return db.query(Caf).filter(
            Caf.company_id == company_id,
            Caf.document_type == document_type,
            Caf.status == CafStatus.PENDING
        ).order_by(Caf.range_start, Caf.created_at, Caf.id).first()

    def _activate_pending(self, db: Session, caf: Caf, exhausted_id: Optional[int] = None):
        """
        Activa un CAF en espera y confirma la transacción en curso.

        El índice único de CAF activo por (empresa, tipo) resuelve la carrera
        entre dos procesos que activan CAF distintos: el perdedor reintenta.
        """
        caf_id, company_id, document_type = caf.id, caf.company_id, caf.document_type
        caf_range = f"[{caf.range_start}-{caf.range_end}]"

        try:
            activated = db.query(Caf).filter(
                Caf.id == caf_id,
                Caf.status == CafStatus.PENDING
            ).update(
                {Caf.active: True, Caf.status: CafStatus.ACTIVE},
                synchronize_session=False
            )
            if activated != 1:
                db.rollback()
                raise StoreConflict(f"El CAF {caf_id} ya fue activado por otro proceso")
            db.commit()
        except IntegrityError as e:
            db.rollback()
            raise StoreConflict(f"Otro CAF quedó activo antes de activar el CAF {caf_id}") from e

        if exhausted_id is None:
            logger.info(f"Pending CAF {caf_id} {caf_range} activated (company {company_id}, type {document_type})")
        else:
            logger.info(
                f"CAF {exhausted_id} exhausted, CAF {caf_id} {caf_range} activated "
                f"(company {company_id}, type {document_type})"
            )
