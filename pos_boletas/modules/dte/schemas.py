from pydantic import BaseModel, Field
from typing import Optional, List
from decimal import Decimal
from datetime import datetime
from pos_boletas.modules.dte.models import EmissionStatus


class DteItem(BaseModel):
    name: str = Field(..., min_length=1, description="Nombre del ítem, se trunca a 80 caracteres")
    quantity: Decimal = Field(..., gt=0)
    unit_price: Decimal = Field(..., ge=0, description="Precio unitario con IVA")
    exempt: bool = Field(default=False, description="Ítem exento de IVA (IndExe = 1)")
    unit: Optional[str] = Field(None, max_length=4, description="Unidad de medida, ej: Kg")


class EmissionRequest(BaseModel):
    document_type: int = Field(default=39, description="Tipo DTE, 39 = boleta electrónica")
    service_indicator: int = Field(default=3, description="IndicadorServicio: 3 = boletas de venta y servicios")
    items: List[DteItem] = Field(..., min_length=1)
    test_case: Optional[str] = Field(None, max_length=20, description="Caso del set de pruebas SII, ej: CASO-1")


class EmissionOut(BaseModel):
    id: int
    company_id: int
    caf_id: int
    document_type: int
    folio: int
    status: EmissionStatus
    total: Decimal
    test_case: Optional[str] = None
    stamp: Optional[str] = None
    xml: Optional[str] = None
    error: Optional[str] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class EmissionList(BaseModel):
    emissions: List[EmissionOut]
    total: int
    limit: int
    offset: int
