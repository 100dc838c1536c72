from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field


class Settings(BaseSettings):
    # Base de datos
    db_url: str = Field("sqlite+aiosqlite:///./oauth.sqlite3", alias="DB_URL")

    # Firmas: ventana de tolerancia de oauth_timestamp (segundos)
    timestamp_tolerance: int = Field(300, ge=0, alias="OAUTH_TIMESTAMP_TOLERANCE")

    # Vida de los tokens (segundos)
    access_token_ttl: int = Field(3600, gt=0, alias="OAUTH_ACCESS_TOKEN_TTL")
    request_token_ttl: int = Field(3600, gt=0, alias="OAUTH_REQUEST_TOKEN_TTL")

    # Canjes permitidos por request token
    default_use_limit: int = Field(1, ge=1, alias="OAUTH_DEFAULT_USE_LIMIT")
    max_use_limit: int = Field(10, ge=1, alias="OAUTH_MAX_USE_LIMIT")

    # Entropía de token/secret (bytes) y reintentos ante colisión
    token_bytes: int = Field(24, ge=16, le=48, alias="OAUTH_TOKEN_BYTES")
    token_attempts: int = Field(5, ge=1, alias="OAUTH_TOKEN_ATTEMPTS")

    # Usuario humano autenticado por la aplicación anfitriona (proxy / sesión)
    remote_user_header: str = Field("X-Remote-User", alias="OAUTH_REMOTE_USER_HEADER")

    # Esquema+host públicos si el servicio está detrás de un proxy
    public_base_url: str | None = Field(None, alias="OAUTH_PUBLIC_BASE_URL")

    realm: str = Field("", alias="OAUTH_REALM")
    contact: str | None = Field(None, alias="OAUTH_CONTACT")

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
        populate_by_name=True,  # permite defaults si no hay variable de entorno
    )


settings = Settings()
