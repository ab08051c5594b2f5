from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Optional
from pydantic import field_validator

class Settings(BaseSettings):
    # Database settings
    POSTGRES_USER: str = 'boletas_user'
    POSTGRES_PASSWORD: str = 'boletas_pass'
    POSTGRES_DB: str = 'boletas_db'
    POSTGRES_HOST: str = 'postgres'
    POSTGRES_PORT: int = 5432
    DATABASE_URL: Optional[str] = None  # Overrides the Postgres URL (e.g. sqlite for local runs)

    # Folio allocation
    FOLIO_MAX_ATTEMPTS: int = 10  # Retries when a concurrent allocator wins the race
    FOLIO_MAX_ROTATIONS: int = 5  # Exhausted -> next CAF hops per allocation

    # Signing microservice (SimpleAPI)
    SIMPLEAPI_URL: str = 'https://api.simpleapi.cl/api/v1/dte/generar'
    SIMPLEAPI_KEY: str = ''
    SIMPLEAPI_CERT_PATH: str = 'certificados/certificado.pfx'
    SIMPLEAPI_CERT_PASS: str = ''
    SIMPLEAPI_CERT_RUT: str = ''
    SIMPLEAPI_TIMEOUT: int = 30

    # Environment
    ENVIRONMENT: str = "development"
    DEBUG: bool = True

    @property
    def database_url(self) -> str:
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return (
            f"postgresql+psycopg2://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}"
            f"@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"
        )

    model_config = SettingsConfigDict(
        extra="allow",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True
    )

    @field_validator("DEBUG", mode="before")
    @classmethod
    def parse_debug(cls, v):
        if isinstance(v, str):
            return v.lower().strip('"').strip("'") in ("true", "1", "yes", "on")
        return bool(v)

    @field_validator("SIMPLEAPI_KEY", mode="before")
    @classmethod
    def strip_api_key(cls, v):
        # .env files often keep the key quoted
        if isinstance(v, str):
            return v.strip().strip('"').strip("'")
        return v

settings = Settings()
