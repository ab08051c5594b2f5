from pos_boletas.database.database import Base
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Text, Enum, Numeric, UniqueConstraint
from sqlalchemy.sql import func
import enum


class EmissionStatus(enum.Enum):
    SIGNED = "signed"    # Firmado por el microservicio
    FAILED = "failed"    # Falló la firma, el folio queda quemado


class DteEmission(Base):
    """Registro de cada intento de emisión con su folio."""
    __tablename__ = "dte_emissions"

    id = Column(Integer, primary_key=True, index=True)
    company_id = Column(Integer, ForeignKey("companies.id"), nullable=False, index=True)
    caf_id = Column(Integer, ForeignKey("cafs.id"), nullable=False)
    document_type = Column(Integer, nullable=False)
    folio = Column(Integer, nullable=False)
    status = Column(Enum(EmissionStatus), nullable=False)
    total = Column(Numeric(14, 0), nullable=False, default=0)
    test_case = Column(String(20), nullable=True)  # Caso del set de pruebas SII
    stamp = Column(Text, nullable=True)  # TED / timbre
    xml = Column(Text, nullable=True)
    error = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (
        UniqueConstraint("company_id", "document_type", "folio", name="uq_dte_emission_folio"),
    )
