"""
Traducción de errores de dominio a respuestas HTTP.

Cada error de dominio trae un `code` estable; el cliente distingue
"sin CAF cargado", "CAF agotado" y "contención, reintente" por ese código.
"""
from fastapi import HTTPException, status

STATUS_BY_CODE = {
    "MALFORMED_PERMIT": status.HTTP_400_BAD_REQUEST,
    "COMPANY_NOT_FOUND": status.HTTP_404_NOT_FOUND,
    "OVERLAPPING_PERMIT": status.HTTP_409_CONFLICT,
    "PERMIT_OUT_OF_ORDER": status.HTTP_409_CONFLICT,
    "NO_ACTIVE_PERMIT": status.HTTP_409_CONFLICT,
    "PERMIT_EXHAUSTED": status.HTTP_409_CONFLICT,
    "STORE_CONFLICT": status.HTTP_409_CONFLICT,
    "ALLOCATION_CONTENTION": status.HTTP_503_SERVICE_UNAVAILABLE,
    "PERMIT_CHAIN_TOO_LONG": status.HTTP_503_SERVICE_UNAVAILABLE,
    "SIGNING_FAILED": status.HTTP_502_BAD_GATEWAY,
    "SIGNING_NOT_CONFIGURED": status.HTTP_500_INTERNAL_SERVER_ERROR,
}


def domain_http_exception(exc: Exception) -> HTTPException:
    code = getattr(exc, "code", "INTERNAL_ERROR")
    message = getattr(exc, "message", str(exc))
    return HTTPException(
        status_code=STATUS_BY_CODE.get(code, status.HTTP_500_INTERNAL_SERVER_ERROR),
        detail={"code": code, "message": message}
    )
