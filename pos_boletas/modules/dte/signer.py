"""
Cliente del microservicio de firma (SimpleAPI).

Recibe el documento en JSON, el certificado digital y el CAF, y devuelve el
XML firmado con su timbre (TED). La configuración llega explícita en
SigningConfig; este módulo no lee variables de entorno.
"""
from dataclasses import dataclass
from typing import Optional
import json
import logging
import os

import requests

from pos_boletas.core.config import settings
from pos_boletas.modules.dte.exceptions import SigningServiceError, SigningNotConfigured
from pos_boletas.modules.folios.parser import encode_artifact

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SigningConfig:
    url: str
    api_key: str
    cert_path: str
    cert_password: str
    cert_rut: str
    timeout: int = 30

    @classmethod
    def from_settings(cls) -> "SigningConfig":
        return cls(
            url=settings.SIMPLEAPI_URL,
            api_key=settings.SIMPLEAPI_KEY,
            cert_path=settings.SIMPLEAPI_CERT_PATH,
            cert_password=settings.SIMPLEAPI_CERT_PASS,
            cert_rut=settings.SIMPLEAPI_CERT_RUT,
            timeout=settings.SIMPLEAPI_TIMEOUT,
        )


@dataclass(frozen=True)
class SignedDocument:
    folio: Optional[int]
    stamp: Optional[str]
    xml: Optional[str]


class SimpleApiSigner:

    def __init__(self, config: SigningConfig, session: Optional[requests.Session] = None):
        self.config = config
        self.session = session or requests.Session()

    def ensure_configured(self):
        """Valida credenciales y certificado antes de consumir un folio."""
        missing = [
            name for name, value in (
                ("SIMPLEAPI_KEY", self.config.api_key),
                ("SIMPLEAPI_CERT_PASS", self.config.cert_password),
                ("SIMPLEAPI_CERT_RUT", self.config.cert_rut),
            ) if not value
        ]
        if missing:
            raise SigningNotConfigured(f"Falta configurar {', '.join(missing)}")
        if not os.path.isfile(self.config.cert_path):
            raise SigningNotConfigured(f"No se encontró el certificado en {self.config.cert_path}")

    def certificate_block(self) -> dict:
        return {"Rut": self.config.cert_rut, "Password": self.config.cert_password}

    def sign(self, document: dict, caf_artifact: str) -> SignedDocument:
        """
        Envía el documento a firmar. El CAF se reenvía byte a byte tal como se almacenó.

        Raises:
            SigningServiceError: error de red o de lectura del certificado, respuesta
                no 2xx o respuesta ilegible.
        """
        self.ensure_configured()
        payload = {"Documento": document, "Certificado": self.certificate_block()}

        try:
            with open(self.config.cert_path, "rb") as cert:
                files = {
                    "files": (os.path.basename(self.config.cert_path), cert, "application/x-pkcs12"),
                    "files2": ("caf.xml", encode_artifact(caf_artifact), "text/xml"),
                }
                logger.info(f"Sending DTE folio {document['Encabezado']['IdentificacionDTE']['Folio']} to signer")
                response = self.session.post(
                    self.config.url,
                    files=files,
                    data={"input": json.dumps(payload)},
                    headers={"Authorization": self.config.api_key},
                    timeout=self.config.timeout
                )
        except requests.RequestException as e:
            raise SigningServiceError(f"No se pudo contactar al servicio de firma: {e}") from e
        except OSError as e:
            raise SigningServiceError(f"No se pudo leer el certificado {self.config.cert_path}: {e}") from e

        if not response.ok:
            raise SigningServiceError(
                f"Servicio de firma respondió {response.status_code}: {response.text}",
                status_code=response.status_code
            )

        try:
            body = response.json()
        except ValueError as e:
            raise SigningServiceError("Respuesta del servicio de firma no es JSON") from e

        return SignedDocument(
            folio=body.get("Folio"),
            stamp=body.get("TED") or body.get("Timbre"),
            xml=body.get("XML"),
        )
