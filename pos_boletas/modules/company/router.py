from fastapi import APIRouter, HTTPException, status
from pos_boletas.modules.company import service
from pos_boletas.modules.company.schemas import CompanyCreate, CompanyOut
from pos_boletas.dependencies.dbDependecies import db_dependency


company_router = APIRouter()

@company_router.get("/", response_model=list[CompanyOut], status_code=status.HTTP_200_OK)
async def get_companies(db: db_dependency):
    """
    List all registered companies.
    """
    return service.list_companies(db)

@company_router.get("/{company_id}", response_model=CompanyOut, status_code=status.HTTP_200_OK)
async def get_company(company_id: int, db: db_dependency):
    return service.get_company(db, company_id)

@company_router.post("/", response_model=CompanyOut, status_code=status.HTTP_201_CREATED)
async def create_company(company: CompanyCreate, db: db_dependency):
    """
    Endpoint to create a company.
    The RUT is validated (módulo 11) and stored as NNNNNNNN-D.
    """
    try:
        return service.create_company(db, company)
    except HTTPException as e:
        raise e
    except Exception as e:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e))
