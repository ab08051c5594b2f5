"""
Errores del motor de folios.

Los errores de parseo y validación se lanzan antes de tocar la base de datos.
StoreConflict nunca sale del allocator: se reintenta y, si se agotan los
intentos, se reporta como FolioAllocationError.
"""


class FolioError(Exception):
    """Base para los errores del motor de folios."""

    code = "FOLIO_ERROR"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class MalformedPermit(FolioError):
    """El XML del CAF no es válido o le faltan campos obligatorios."""

    code = "MALFORMED_PERMIT"


class CompanyNotFound(FolioError):
    code = "COMPANY_NOT_FOUND"

    def __init__(self, company_id: int):
        super().__init__(f"Empresa {company_id} no encontrada")
        self.company_id = company_id


class OverlappingPermit(FolioError):
    """El rango del CAF se cruza con uno ya cargado para la misma empresa y tipo."""

    code = "OVERLAPPING_PERMIT"


class PermitOutOfOrder(FolioError):
    """Un CAF en espera debe comenzar después del rango del CAF vigente."""

    code = "PERMIT_OUT_OF_ORDER"


class NoActivePermit(FolioError):
    code = "NO_ACTIVE_PERMIT"

    def __init__(self, company_id: int, document_type: int):
        super().__init__(
            f"No hay CAF activo para la empresa {company_id} y tipo DTE {document_type}"
        )
        self.company_id = company_id
        self.document_type = document_type


class PermitExhausted(FolioError):
    code = "PERMIT_EXHAUSTED"

    def __init__(self, company_id: int, document_type: int):
        super().__init__(
            f"CAF agotado para la empresa {company_id} y tipo DTE {document_type}, no hay más folios"
        )
        self.company_id = company_id
        self.document_type = document_type


class StoreConflict(FolioError):
    """Otro allocator confirmó primero; se reintenta toda la operación."""

    code = "STORE_CONFLICT"


class FolioAllocationError(FolioError):
    """Falla genérica de asignación: contención persistente o cadena de CAF demasiado larga."""

    code = "ALLOCATION_CONTENTION"

    def __init__(self, message: str, code: str = None):
        super().__init__(message)
        if code:
            self.code = code


class MismatchedIssuerWarning(UserWarning):
    """El RUT emisor del CAF no coincide con el RUT de la empresa. No bloquea la ingesta."""
