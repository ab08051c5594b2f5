"""
Parser del XML de autorización de folios (CAF) entregado por el SII.

Estructura esperada:

    <AUTORIZACION>
      <CAF version="1.0">
        <DA>
          <RE>76354771-K</RE>
          <RS>EMPRESA SPA</RS>
          <TD>39</TD>
          <RNG><D>1</D><H>50</H></RNG>
          <FA>2025-11-26</FA>
          ...
        </DA>
        <FRMA algoritmo="SHA1withRSA">...</FRMA>
      </CAF>
      <RSASK>...</RSASK>
      <RSAPUBK>...</RSAPUBK>
    </AUTORIZACION>

No tiene efectos secundarios: se puede llamar en paralelo y las veces que sea.
"""
from dataclasses import dataclass
from typing import Optional, Union
import re

from lxml import etree

from pos_boletas.modules.folios.exceptions import MalformedPermit

ROOT_TAG = "AUTORIZACION"

_XML_DECLARATION = re.compile(r'^\s*<\?xml[^>]*\?>')
_DECLARED_ENCODING = re.compile(rb'^\s*<\?xml[^>]*encoding=["\']([A-Za-z0-9._\-]+)["\']')
_DIGITS = re.compile(r'^\d+$')


@dataclass(frozen=True)
class PermitDescriptor:
    document_type: int
    range_start: int
    range_end: int
    issuer_id: str
    normalized_artifact: str
    business_name: Optional[str] = None
    authorized_at: Optional[str] = None

    @property
    def size(self) -> int:
        return self.range_end - self.range_start + 1


def decode_artifact(raw: bytes) -> str:
    """Decodifica usando el encoding declarado en el prólogo XML (los CAF del SII vienen en ISO-8859-1)."""
    raw = raw.lstrip(b'\xef\xbb\xbf')
    match = _DECLARED_ENCODING.match(raw)
    encoding = match.group(1).decode('ascii') if match else 'utf-8'
    try:
        return raw.decode(encoding)
    except (LookupError, UnicodeDecodeError):
        return raw.decode('iso-8859-1')


def encode_artifact(text: str) -> bytes:
    """Inverso de decode_artifact: bytes en el encoding declarado, para reenviar el CAF al firmador."""
    match = _DECLARED_ENCODING.match(text.encode('ascii', errors='ignore'))
    encoding = match.group(1).decode('ascii') if match else 'utf-8'
    try:
        return text.encode(encoding)
    except (LookupError, UnicodeEncodeError):
        return text.encode('utf-8')


def normalize_artifact(text: str) -> str:
    """
    Corrige saltos de línea doblemente codificados o escapados por el transporte.
    Idempotente: normalize_artifact(normalize_artifact(x)) == normalize_artifact(x).
    """
    text = text.lstrip('\ufeff')
    text = (
        text.replace('\\r\\n', '\n')
        .replace('\\n', '\n')
        .replace('\\r', '\n')
        .replace('\\t', '\t')
    )
    text = text.replace('\r\n', '\n').replace('\r', '\n')
    return text.strip()


def _local(element) -> str:
    if not isinstance(element.tag, str):
        return ''
    return etree.QName(element).localname


def _child(parent, name: str):
    if parent is None:
        return None
    for element in parent:
        if _local(element) == name:
            return element
    return None


def _text(parent, name: str, required: bool = True) -> Optional[str]:
    element = _child(parent, name)
    value = element.text.strip() if element is not None and element.text else ''
    if not value:
        if required:
            raise MalformedPermit(f"El CAF no contiene el campo {name}")
        return None
    return value


def _number(parent, name: str, label: str) -> int:
    value = _text(parent, name)
    if not _DIGITS.match(value):
        raise MalformedPermit(f"{label} no es numérico: {value!r}")
    number = int(value)
    if number < 1:
        raise MalformedPermit(f"{label} debe ser mayor que cero")
    return number


def parse_caf(document: Union[str, bytes]) -> PermitDescriptor:
    """
    Convierte el XML de un CAF en un PermitDescriptor.

    Raises:
        MalformedPermit: XML mal formado, raíz desconocida, campos faltantes
            o no numéricos, o rango invertido.
    """
    if isinstance(document, bytes):
        document = decode_artifact(document)
    if not document or not document.strip():
        raise MalformedPermit("El documento CAF está vacío")

    normalized = normalize_artifact(document)
    # lxml no acepta str con declaración de encoding
    body = _XML_DECLARATION.sub('', normalized, count=1)

    parser = etree.XMLParser(resolve_entities=False, no_network=True, huge_tree=False)
    try:
        root = etree.fromstring(body.encode('utf-8'), parser)
    except etree.XMLSyntaxError as e:
        raise MalformedPermit(f"XML del CAF mal formado: {e}") from e

    if _local(root) != ROOT_TAG:
        raise MalformedPermit(f"Raíz inesperada <{_local(root)}>, se esperaba <{ROOT_TAG}>")

    da = _child(_child(root, 'CAF'), 'DA')
    if da is None:
        raise MalformedPermit("El CAF no contiene el bloque CAF/DA")

    rng = _child(da, 'RNG')
    if rng is None:
        raise MalformedPermit("El CAF no contiene el rango de folios (RNG)")

    document_type = _number(da, 'TD', "Tipo DTE")
    range_start = _number(rng, 'D', "Folio desde")
    range_end = _number(rng, 'H', "Folio hasta")
    if range_start > range_end:
        raise MalformedPermit(f"Rango de folios invertido: {range_start} > {range_end}")

    return PermitDescriptor(
        document_type=document_type,
        range_start=range_start,
        range_end=range_end,
        issuer_id=_text(da, 'RE'),
        normalized_artifact=normalized,
        business_name=_text(da, 'RS', required=False),
        authorized_at=_text(da, 'FA', required=False),
    )
