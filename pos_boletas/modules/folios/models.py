from pos_boletas.database.database import Base
from sqlalchemy import Column, Integer, String, Boolean, DateTime, ForeignKey, Text, Enum, Index, CheckConstraint, UniqueConstraint, text
from sqlalchemy.orm import relationship
from pos_boletas.common.mixins import TimestampMixin
import enum


class CafStatus(enum.Enum):
    PENDING = "pending"          # Cargado en espera del agotamiento del vigente
    ACTIVE = "active"            # Vigente, se consumen folios de este rango
    EXHAUSTED = "exhausted"      # Rango consumido completo
    SUPERSEDED = "superseded"    # Reemplazado por un CAF nuevo antes de agotarse


class Caf(Base, TimestampMixin):
    """
    Código de Autorización de Folios.

    range_start, range_end y artifact no cambian después de la ingesta.
    cursor guarda el último folio consumido y solo avanza.
    A lo más un CAF activo por (company_id, document_type).
    """
    __tablename__ = "cafs"

    id = Column(Integer, primary_key=True, index=True)
    company_id = Column(Integer, ForeignKey("companies.id"), nullable=False)
    document_type = Column(Integer, nullable=False)  # 39 = boleta electrónica

    range_start = Column(Integer, nullable=False)
    range_end = Column(Integer, nullable=False)
    cursor = Column(Integer, nullable=False)

    active = Column(Boolean, nullable=False, default=False)
    status = Column(Enum(CafStatus), nullable=False, default=CafStatus.PENDING)

    artifact = Column(Text, nullable=False)  # XML normalizado, se reenvía tal cual al firmador
    issuer_rut = Column(String(12), nullable=True)
    authorized_at = Column(String(10), nullable=True)  # FA del CAF (YYYY-MM-DD)
    deactivated_at = Column(DateTime(timezone=True), nullable=True)

    company = relationship("Company", back_populates="cafs")

    __table_args__ = (
        Index("ix_cafs_company_type_active", "company_id", "document_type", "active"),
        Index("ix_cafs_company_type_range", "company_id", "document_type", "range_start"),
        # A lo más un CAF activo por empresa y tipo, también ante ingestas concurrentes
        Index(
            "uq_cafs_one_active", "company_id", "document_type", unique=True,
            postgresql_where=text("active"), sqlite_where=text("active = 1"),
        ),
        UniqueConstraint("company_id", "document_type", "range_start", name="uq_cafs_company_type_start"),
        CheckConstraint("range_start <= range_end", name="ck_cafs_range"),
        CheckConstraint("cursor >= range_start - 1 AND cursor <= range_end", name="ck_cafs_cursor"),
    )

    @property
    def remaining(self) -> int:
        return self.range_end - self.cursor

    @property
    def next_folio(self) -> int:
        return self.cursor + 1

    def __repr__(self):
        return (
            f"<Caf id={self.id} company={self.company_id} type={self.document_type} "
            f"[{self.range_start}-{self.range_end}] cursor={self.cursor} status={self.status}>"
        )
