"""
Validadores específicos para Chile
"""
import re
from typing import Optional


def clean_rut(rut: str) -> str:
    """Quita puntos, guiones y espacios; deja el dígito verificador en mayúscula."""
    return re.sub(r'[\.\s\-]', '', rut or '').upper()


def calculate_rut_dv(body: str) -> str:
    """
    Calcula el dígito verificador de un RUT (módulo 11).
    Factores 2..7 aplicados de derecha a izquierda.
    """
    total = 0
    factor = 2
    for digit in reversed(body):
        total += int(digit) * factor
        factor = 2 if factor == 7 else factor + 1

    remainder = 11 - (total % 11)
    if remainder == 11:
        return '0'
    if remainder == 10:
        return 'K'
    return str(remainder)


def validate_chile_rut(rut: str) -> bool:
    """
    Valida RUT chileno.
    Formatos válidos:
    - 76.543.210-K
    - 76543210-K
    - 76543210K
    """
    cleaned = clean_rut(rut)
    if not re.match(r'^\d{7,8}[0-9K]$', cleaned):
        return False

    body, dv = cleaned[:-1], cleaned[-1]
    return calculate_rut_dv(body) == dv


def format_chile_rut(rut: str) -> str:
    """Formatea RUT como NNNNNNNN-D (sin puntos), formato usado por el SII en el CAF."""
    cleaned = clean_rut(rut)
    return f"{cleaned[:-1]}-{cleaned[-1]}"


def normalize_rut(rut: Optional[str]) -> Optional[str]:
    """Normaliza un RUT para comparaciones; no valida el dígito verificador."""
    if not rut:
        return None
    cleaned = clean_rut(rut).lstrip('0')
    if len(cleaned) < 2:
        return None
    return f"{cleaned[:-1]}-{cleaned[-1]}"
