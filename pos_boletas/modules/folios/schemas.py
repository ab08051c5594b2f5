from pydantic import BaseModel, Field
from typing import Optional, List
from datetime import datetime
from pos_boletas.modules.folios.models import CafStatus


class IngestionResult(BaseModel):
    id: int = Field(..., description="ID del CAF almacenado")
    company_id: int
    document_type: int = Field(..., description="Tipo DTE (39 = boleta electrónica)")
    range_start: int = Field(..., description="Folio desde")
    range_end: int = Field(..., description="Folio hasta")
    cursor: int = Field(..., description="Último folio consumido")
    active: bool
    status: CafStatus
    superseded_ids: List[int] = Field(default_factory=list, description="CAF desactivados por esta carga")
    issuer_mismatch: bool = Field(default=False, description="El RUT emisor del CAF no coincide con la empresa")
    warnings: List[str] = Field(default_factory=list)


class CafOut(BaseModel):
    id: int
    company_id: int
    document_type: int
    range_start: int
    range_end: int
    cursor: int
    remaining: int = Field(..., description="Folios disponibles en este CAF")
    active: bool
    status: CafStatus
    issuer_rut: Optional[str] = None
    authorized_at: Optional[str] = None
    created_at: Optional[datetime] = None
    deactivated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class CafList(BaseModel):
    cafs: List[CafOut]
    total: int


class FolioAllocationOut(BaseModel):
    folio: int = Field(..., description="Folio asignado, ya consumido")
    caf_id: int
    company_id: int
    document_type: int
    caf_artifact: str = Field(..., description="XML del CAF, reenviar sin modificar al firmador")


class FolioStatusOut(BaseModel):
    company_id: int
    document_type: int
    caf_id: Optional[int] = None
    next_folio: Optional[int] = None
    remaining: int = 0
    pending_cafs: int = 0
    pending_folios: int = 0
