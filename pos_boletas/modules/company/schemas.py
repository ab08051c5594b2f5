from pydantic import BaseModel, Field, field_validator
from typing import Optional
from datetime import datetime
from pos_boletas.common.validators import validate_chile_rut, format_chile_rut

class CompanyCreate(BaseModel):
    rut: str = Field(..., description="RUT de la empresa (ej: 76.543.210-3)")
    business_name: str = Field(..., min_length=1, max_length=100, description="Razón social")
    activity: Optional[str] = Field(None, max_length=80, description="Giro")
    address: Optional[str] = None
    commune: Optional[str] = Field(None, max_length=50)
    email: Optional[str] = None

    @field_validator('rut')
    @classmethod
    def validate_rut(cls, v):
        if not validate_chile_rut(v):
            raise ValueError(
                'RUT inválido. Use formato chileno con dígito verificador: '
                'XX.XXX.XXX-X o XXXXXXXX-X'
            )
        return format_chile_rut(v)

    class Config:
        from_attributes = True

class CompanyOut(BaseModel):
    id: int
    rut: str
    business_name: str
    activity: Optional[str] = None
    address: Optional[str] = None
    commune: Optional[str] = None
    email: Optional[str] = None
    is_active: bool = True
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True
