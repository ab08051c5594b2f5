"""
Endpoints de folios (CAF)

- Carga de CAF (XML del SII) por empresa
- Listado de CAF y estado de la numeración
- Asignación del siguiente folio para el orquestador de emisión
"""
from fastapi import APIRouter, status, Query, UploadFile, File
from typing import Optional

from pos_boletas.common.errors import domain_http_exception
from pos_boletas.dependencies.dbDependecies import db_dependency, session_factory_dependency
from pos_boletas.modules.folios.allocator import FolioAllocator
from pos_boletas.modules.folios.exceptions import FolioError
from pos_boletas.modules.folios.service import CafIngestionService
from pos_boletas.modules.folios.schemas import (
    IngestionResult, CafOut, CafList, FolioAllocationOut, FolioStatusOut
)

folios_router = APIRouter(prefix="/folios", tags=["Folios"])


@folios_router.post("/upload", response_model=IngestionResult, status_code=status.HTTP_201_CREATED)
async def upload_caf(
    db: db_dependency,
    company_id: int = Query(..., description="ID de la empresa dueña del CAF"),
    stage: bool = Query(False, description="Dejar el CAF en espera hasta que se agote el vigente"),
    file: UploadFile = File(...)
):
    """
    Cargar un CAF descargado del SII.

    - Por defecto queda vigente y reemplaza al CAF activo del mismo tipo.
    - Con `stage=true` queda en espera y se activa al agotarse el vigente.
    - Si el RUT emisor no coincide con la empresa se carga igual y se informa en `warnings`.
    """
    content = await file.read()
    try:
        return CafIngestionService(db).ingest(content, company_id, stage=stage)
    except FolioError as e:
        raise domain_http_exception(e)


@folios_router.get("", response_model=CafList, status_code=status.HTTP_200_OK)
async def list_cafs(
    db: db_dependency,
    company_id: int = Query(...),
    document_type: Optional[int] = Query(None, description="Filtrar por tipo DTE")
):
    try:
        cafs = CafIngestionService(db).list_permits(company_id, document_type)
    except FolioError as e:
        raise domain_http_exception(e)
    return CafList(cafs=[CafOut.model_validate(caf) for caf in cafs], total=len(cafs))


@folios_router.post("/next", response_model=FolioAllocationOut, status_code=status.HTTP_200_OK)
def allocate_folio(
    session_factory: session_factory_dependency,
    company_id: int = Query(...),
    document_type: int = Query(39, description="Tipo DTE, 39 = boleta electrónica")
):
    """
    Consumir el siguiente folio. El folio queda consumido aunque el documento no llegue a firmarse.
    """
    try:
        result = FolioAllocator(session_factory).allocate(company_id, document_type)
    except FolioError as e:
        raise domain_http_exception(e)
    return FolioAllocationOut(
        folio=result.folio,
        caf_id=result.caf_id,
        company_id=company_id,
        document_type=document_type,
        caf_artifact=result.permit_artifact
    )


@folios_router.get("/status", response_model=FolioStatusOut, status_code=status.HTTP_200_OK)
def folio_status(
    session_factory: session_factory_dependency,
    company_id: int = Query(...),
    document_type: int = Query(39)
):
    return FolioAllocator(session_factory).peek_status(company_id, document_type)
