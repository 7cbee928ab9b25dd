"""Pydantic models for the desired-state descriptor.

Example YAML structure:
    project:
      id: metal-stack
      name: metal-stack

    application:
      id: metal-stack
      name: metal-stack
      redirect_uri: https://api.example.com/auth/openid-connect/callback

    users:
      - email: admin@example.com
        first_name: Admin
        last_name: User
        password: ${ADMIN_PASSWORD}   # supports env vars

    identity_providers:
      - name: github
        issuer: https://token.actions.githubusercontent.com
        client_id: ${GITHUB_CLIENT_ID}
        client_secret: ${GITHUB_CLIENT_SECRET:-changeme}

JSON files with the same structure are accepted as well.
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, model_validator


_PLACEHOLDER = re.compile(r"\$\{(?P<name>[A-Za-z_]\w*)(?::-(?P<default>[^}]*))?\}")

# Defaults may contain placeholders themselves; bounds the substitution passes.
_MAX_NESTING = 5


def _placeholder_value(match: re.Match[str]) -> str:
    return os.getenv(match["name"]) or match["default"] or ""


def interpolate_env(value: Any) -> Any:
    """Substitute ``${VAR}`` and ``${VAR:-default}`` in every string of ``value``.

    Unset and empty variables both fall back to the default, or to "".
    """
    if isinstance(value, dict):
        return {key: interpolate_env(item) for key, item in value.items()}
    if isinstance(value, list):
        return [interpolate_env(item) for item in value]
    if not isinstance(value, str):
        return value

    for _ in range(_MAX_NESTING):
        expanded = _PLACEHOLDER.sub(_placeholder_value, value)
        if expanded == value:
            break
        value = expanded
    return value


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")


class ProjectConfig(_Frozen):
    """Project owned by the default organization."""

    id: str = Field(..., min_length=1, description="Stable project ID")
    name: str = Field(..., min_length=1, description="Display name")


class ApplicationConfig(_Frozen):
    """OIDC web application registered inside the project."""

    id: str = Field(..., min_length=1, description="Requested application ID")
    name: str = Field(..., min_length=1, description="Display name, used for lookups")
    redirect_uri: str = Field(..., min_length=1)
    post_logout_redirect_uris: tuple[str, ...] = ()


class UserConfig(_Frozen):
    """Static human user. The email doubles as username and user ID."""

    email: str = Field(..., min_length=3, pattern=r"^[^@\s]+@[^@\s]+$")
    first_name: str = Field(..., min_length=1)
    last_name: str = Field(..., min_length=1)
    password: str = ""
    org_id: str | None = Field(
        default=None,
        description="Organization override, defaults to the default organization",
    )


class IdentityProviderConfig(_Frozen):
    """Generic OIDC identity provider federated into Zitadel."""

    name: str = Field(..., min_length=1, description="Unique provider name")
    issuer: str = Field(..., min_length=1)
    client_id: str = Field(..., min_length=1)
    client_secret: str = ""
    scopes: tuple[str, ...] = ("openid", "profile", "email")
    is_id_token_mapping: bool = False
    add_to_login_policy: bool = True

    # Provider options
    is_linking_allowed: bool = True
    is_creation_allowed: bool = True
    is_auto_creation: bool = False
    is_auto_update: bool = False


class InitConfig(_Frozen):
    """Top-level desired state for a bootstrap run."""

    project: ProjectConfig
    application: ApplicationConfig
    users: tuple[UserConfig, ...] = ()
    identity_providers: tuple[IdentityProviderConfig, ...] = ()

    @model_validator(mode="after")
    def _unique_keys(self) -> "InitConfig":
        emails = [u.email.lower() for u in self.users]
        duplicates = sorted({e for e in emails if emails.count(e) > 1})
        if duplicates:
            raise ValueError(f"duplicate user emails: {', '.join(duplicates)}")

        names = [p.name for p in self.identity_providers]
        duplicates = sorted({n for n in names if names.count(n) > 1})
        if duplicates:
            raise ValueError(f"duplicate identity provider names: {', '.join(duplicates)}")
        return self

    @classmethod
    def from_file(cls, path: str | Path) -> "InitConfig":
        """Load configuration from a YAML or JSON file with env var interpolation."""
        p = Path(path)
        if not p.exists():
            raise FileNotFoundError(f"Config file not found: {path}")

        # JSON is a subset of YAML
        raw = yaml.safe_load(p.read_text())
        if not isinstance(raw, dict):
            raise ValueError(f"Config file must be a mapping: {path}")

        return cls.model_validate(interpolate_env(raw))

    def validate_references(self) -> list[str]:
        """Return warnings for settings that are valid but likely mistakes."""
        warnings: list[str] = []
        for user in self.users:
            if not user.password:
                warnings.append(f"user {user.email} has no password and cannot log in")
        for provider in self.identity_providers:
            if not provider.client_secret:
                warnings.append(f"identity provider {provider.name} has no client secret")
            if "openid" not in provider.scopes:
                warnings.append(f"identity provider {provider.name} does not request the openid scope")
        if not self.application.redirect_uri.startswith(("http://", "https://")):
            warnings.append(
                f"application {self.application.name} redirect uri is not an http(s) url"
            )
        return warnings
