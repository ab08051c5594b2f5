class SigningServiceError(Exception):
    """El microservicio de firma rechazó el documento o no respondió."""

    code = "SIGNING_FAILED"

    def __init__(self, message: str, status_code: int = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class SigningNotConfigured(SigningServiceError):
    """Faltan credenciales o certificado; se detecta antes de consumir un folio."""

    code = "SIGNING_NOT_CONFIGURED"
