from fastapi import HTTPException, status
from sqlalchemy.orm import Session
from pos_boletas.modules.company.models import Company
from pos_boletas.modules.company.schemas import CompanyCreate
import logging

logger = logging.getLogger(__name__)

def list_companies(db: Session):
    return db.query(Company).order_by(Company.id).all()

def get_company(db: Session, company_id: int) -> Company:
    company = db.query(Company).filter(Company.id == company_id).first()
    if not company:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Empresa no encontrada")
    return company

def create_company(db: Session, company_data: CompanyCreate) -> Company:
    """
    Create a new company in the database.

    Args:
        company_data (CompanyCreate): The company data, RUT already normalized.

    Returns:
        Company: The created company.
    """
    if db.query(Company).filter_by(rut=company_data.rut).first():
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Ya existe una empresa con ese RUT")

    company = Company(**company_data.model_dump())
    db.add(company)
    db.commit()
    db.refresh(company)
    logger.info(f"Company {company.id} created with RUT {company.rut}")
    return company
