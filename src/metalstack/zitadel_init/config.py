"""Runtime settings for zitadel-init using pydantic-settings.

Settings can be provided via:
1. Environment variables (ZITADEL_INIT_*)
2. CLI arguments (--endpoint, --namespace, etc.)
"""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class InitSettings(BaseSettings):
    """Connection, secret and logging settings for a bootstrap run."""

    model_config = SettingsConfigDict(
        env_prefix="ZITADEL_INIT_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Zitadel connection
    endpoint: str = Field(default="localhost", description="Zitadel server address")
    port: int = Field(default=8080, description="Zitadel server port")
    external_domain: str | None = Field(
        default=None,
        description="Overrides the Host authority sent to Zitadel",
    )
    insecure: bool = Field(
        default=True,
        description="Connect without TLS, do not use in production",
    )
    skip_verify_tls: bool = Field(
        default=False,
        description="Accept untrusted TLS certificates",
    )
    timeout: float = Field(default=30.0, description="HTTP request timeout in seconds")

    # Produced client credentials
    namespace: str = Field(
        default="metal-control-plane",
        description="Namespace of the client credentials secret",
    )
    secret_name: str = Field(
        default="zitadel-client-credentials",
        description="Name of the client credentials secret",
    )

    # Bootstrap personal access token
    token_namespace: str | None = Field(
        default=None,
        description="Namespace of the PAT secret (defaults to namespace)",
    )
    token_secret_name: str = Field(default="zitadel-admin-pat")
    token_secret_key: str = Field(default="pat")
    poll_interval: float = Field(default=2.0, ge=0)

    # Desired state
    config_path: Path | None = None

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    log_json: bool = True

    @field_validator("log_level", mode="before")
    @classmethod
    def normalize_log_level(cls, v):
        return v.upper() if isinstance(v, str) else v

    @property
    def base_url(self) -> str:
        """Get the Zitadel API base URL."""
        scheme = "http" if self.insecure else "https"
        return f"{scheme}://{self.endpoint}:{self.port}"

    @property
    def authority(self) -> str:
        """Host authority presented to Zitadel."""
        return self.external_domain or self.endpoint

    @property
    def effective_token_namespace(self) -> str:
        return self.token_namespace or self.namespace

    def with_overrides(self, **overrides) -> "InitSettings":
        """Create a new settings instance with CLI overrides applied.

        ``None`` values are ignored so unset CLI options keep the
        environment value.
        """
        update = {k: v for k, v in overrides.items() if v is not None}
        return self.model_copy(update=update)
