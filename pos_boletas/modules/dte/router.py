from fastapi import APIRouter, Depends, status, Query, Path
from typing import Annotated

from pos_boletas.common.errors import domain_http_exception
from pos_boletas.dependencies.dbDependecies import db_dependency, session_factory_dependency
from pos_boletas.modules.dte.exceptions import SigningServiceError
from pos_boletas.modules.dte.schemas import EmissionRequest, EmissionOut, EmissionList
from pos_boletas.modules.dte.service import EmissionService
from pos_boletas.modules.dte.signer import SimpleApiSigner, SigningConfig
from pos_boletas.modules.folios.allocator import FolioAllocator
from pos_boletas.modules.folios.exceptions import FolioError


def get_signer() -> SimpleApiSigner:
    return SimpleApiSigner(SigningConfig.from_settings())


signer_dependency = Annotated[SimpleApiSigner, Depends(get_signer)]

dte_router = APIRouter(prefix="/dte", tags=["DTE"])


@dte_router.post("/emit/{company_id}", response_model=EmissionOut, status_code=status.HTTP_201_CREATED)
def emit_dte(
    request: EmissionRequest,
    db: db_dependency,
    session_factory: session_factory_dependency,
    signer: signer_dependency,
    company_id: int = Path(..., description="ID de la empresa emisora")
):
    """
    Emitir una boleta electrónica.

    **Errores:**
    - 409 `NO_ACTIVE_PERMIT`: no hay CAF cargado, cargue uno
    - 409 `PERMIT_EXHAUSTED`: CAF agotado, cargue uno nuevo
    - 503 `ALLOCATION_CONTENTION`: contención transitoria, reintente
    - 502 `SIGNING_FAILED`: la firma falló, el folio queda quemado
    """
    service = EmissionService(db, FolioAllocator(session_factory), signer)
    try:
        return service.emit(company_id, request)
    except (FolioError, SigningServiceError) as e:
        raise domain_http_exception(e)


@dte_router.get("/emissions/{company_id}", response_model=EmissionList, status_code=status.HTTP_200_OK)
async def list_emissions(
    db: db_dependency,
    company_id: int = Path(...),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0)
):
    return EmissionService(db).list_emissions(company_id, limit=limit, offset=offset)
