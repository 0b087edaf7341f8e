from typing import Literal

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class GeneralConfig(BaseSettings):
    GATEWAY_SCHEME: Literal["http", "https"] = "https"
    """Scheme of URLs pointing back at the gateway (TLS ends at the edge)"""

    SENTRY_DSN: str = ""
    SENTRY_ENVIRONMENT: str = ""


class RegistryConfig(BaseSettings):
    REGISTRY_SERVICE_NAME: str = "registry-gateway"
    """Service name advertised in rewritten WWW-Authenticate challenges"""

    REGISTRY_DEFAULT_NAMESPACE: str = "library"


class ProxyConfig(BaseSettings):
    PROXY_CONNECT_TIMEOUT: float = 30.0
    PROXY_READ_TIMEOUT: float = 1800.0  # 30 minutes for large blob downloads
    PROXY_WRITE_TIMEOUT: float = 1800.0  # 30 minutes for large blob uploads
    PROXY_POOL_TIMEOUT: float = 10.0

    @model_validator(mode="after")
    def check_timeouts(self):
        for name in (
            "PROXY_CONNECT_TIMEOUT",
            "PROXY_READ_TIMEOUT",
            "PROXY_WRITE_TIMEOUT",
            "PROXY_POOL_TIMEOUT",
        ):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive")
        return self


class Settings(
    GeneralConfig,
    RegistryConfig,
    ProxyConfig,
    BaseSettings,
):
    model_config = SettingsConfigDict(
        env_file=(".env", ".env.prod", ".env.test"),
        extra="allow",
    )


settings = Settings()
