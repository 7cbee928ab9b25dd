"""Pytest configuration and fixtures."""

from __future__ import annotations

import itertools
from pathlib import Path
from typing import Any, Iterable

import pytest

from metalstack.zitadel_init.models import (
    ApplicationConfig,
    IdentityProviderConfig,
    InitConfig,
    ProjectConfig,
    UserConfig,
)
from metalstack.zitadel_init.secretstore import (
    Mutator,
    SecretConflictError,
    SecretNotFoundError,
    SecretStoreError,
)
from metalstack.zitadel_init.zitadel import (
    ZitadelConflictError,
    ZitadelError,
    ZitadelNotFoundError,
    ZitadelPreconditionError,
)


# ---------------------------------------------------------------------------
# Fake Zitadel
# ---------------------------------------------------------------------------


class FakeZitadel:
    """In-memory stand-in for ZitadelClient with Zitadel's error quirks.

    - creating an existing user fails with failed_precondition
    - updates that change nothing fail with failed_precondition "No changes"
    - with ``reassign_app_ids`` the created application gets a different ID
      than the one requested
    """

    def __init__(self, org_ids: Iterable[str] = ("org-1",), reassign_app_ids: bool = False):
        self.orgs = [{"id": org_id, "name": f"org {org_id}", "isDefault": True} for org_id in org_ids]
        self.projects: dict[str, dict[str, Any]] = {}
        self.apps: dict[str, dict[str, Any]] = {}
        self.users: dict[str, dict[str, Any]] = {}
        self.providers: dict[str, dict[str, Any]] = {}
        self.login_policy: set[str] = set()
        self.calls: list[str] = []
        self.failures: dict[str, ZitadelError] = {}
        self.token: str | None = None
        self.reassign_app_ids = reassign_app_ids
        self._ids = itertools.count(1)
        self._secrets = itertools.count(1)

    async def __aenter__(self) -> "FakeZitadel":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        return None

    def _record(self, name: str) -> None:
        self.calls.append(name)
        if name in self.failures:
            raise self.failures[name]

    def count(self, name: str) -> int:
        return self.calls.count(name)

    def _new_secret(self) -> str:
        return f"secret-{next(self._secrets)}"

    # Organizations

    async def list_organizations(self, default_only: bool = False) -> list[dict[str, Any]]:
        self._record("list_organizations")
        return [o for o in self.orgs if o["isDefault"] or not default_only]

    # Projects

    async def create_project(self, org_id: str, project_id: str, name: str) -> dict[str, Any]:
        self._record("create_project")
        if project_id in self.projects:
            raise ZitadelConflictError("Project already exists", code="already_exists")
        self.projects[project_id] = {"id": project_id, "name": name, "organizationId": org_id}
        return {"id": project_id}

    # Applications

    async def create_oidc_application(
        self, project_id, app_id, name, redirect_uris, post_logout_redirect_uris=()
    ) -> dict[str, Any]:
        self._record("create_oidc_application")
        if any(a["projectId"] == project_id and a["name"] == name for a in self.apps.values()):
            raise ZitadelConflictError("Application already exists", code="already_exists")
        if app_id in self.apps:
            raise ZitadelConflictError("Application already exists", code="already_exists")
        actual_id = f"{app_id}-{next(self._ids)}" if self.reassign_app_ids else app_id
        client_id = f"{actual_id}@{project_id}"
        secret = self._new_secret()
        self.apps[actual_id] = {
            "id": actual_id,
            "name": name,
            "projectId": project_id,
            "oidcConfig": {"clientId": client_id, "redirectUris": list(redirect_uris)},
            "secret": secret,
        }
        return {
            "appId": actual_id,
            "oidcResponse": {"clientId": client_id, "clientSecret": secret},
        }

    async def list_applications(self, project_id: str, name: str | None = None) -> list[dict[str, Any]]:
        self._record("list_applications")
        return [
            a
            for a in self.apps.values()
            if a["projectId"] == project_id and (name is None or a["name"] == name)
        ]

    async def update_oidc_application(
        self, project_id, app_id, name, redirect_uris, post_logout_redirect_uris=()
    ) -> None:
        self._record("update_oidc_application")
        app = self.apps.get(app_id)
        if app is None:
            raise ZitadelNotFoundError("Application not found", code="not_found")
        if app["oidcConfig"]["redirectUris"] == list(redirect_uris):
            raise ZitadelPreconditionError(
                "UpdateApplication failed (failed_precondition): No changes",
                code="failed_precondition",
            )
        app["oidcConfig"]["redirectUris"] = list(redirect_uris)

    async def regenerate_client_secret(self, project_id: str, app_id: str) -> str:
        self._record("regenerate_client_secret")
        secret = self._new_secret()
        self.apps[app_id]["secret"] = secret
        return secret

    # Users

    async def create_human_user(
        self, org_id, user_id, username, email, first_name, last_name, password
    ) -> dict[str, Any]:
        self._record("create_human_user")
        if user_id in self.users:
            raise ZitadelPreconditionError("User already exists", code="failed_precondition")
        self.users[user_id] = {
            "orgId": org_id,
            "username": username,
            "email": email,
            "firstName": first_name,
            "lastName": last_name,
            "password": password,
        }
        return {"id": user_id}

    async def update_human_user(self, user_id, username, first_name, last_name) -> None:
        self._record("update_human_user")
        user = self.users[user_id]
        user["firstName"] = first_name
        user["lastName"] = last_name

    # Identity providers

    async def list_generic_oidc_providers(self, org_id: str, name: str) -> list[dict[str, Any]]:
        self._record("list_generic_oidc_providers")
        return [dict(p) for p in self.providers.values() if p["name"] == name]

    async def add_generic_oidc_provider(self, org_id: str, provider: IdentityProviderConfig) -> str:
        self._record("add_generic_oidc_provider")
        provider_id = f"idp-{next(self._ids)}"
        self.providers[provider_id] = {
            "id": provider_id,
            "name": provider.name,
            "issuer": provider.issuer,
            "clientId": provider.client_id,
        }
        return provider_id

    async def update_generic_oidc_provider(
        self, org_id: str, provider_id: str, provider: IdentityProviderConfig
    ) -> None:
        self._record("update_generic_oidc_provider")
        self.providers[provider_id].update(issuer=provider.issuer, clientId=provider.client_id)

    async def add_provider_to_login_policy(self, org_id: str, provider_id: str) -> None:
        self._record("add_provider_to_login_policy")
        if provider_id in self.login_policy:
            raise ZitadelConflictError("IDP already in policy", code="already_exists")
        self.login_policy.add(provider_id)

    def factory(self, settings, token: str) -> "FakeZitadel":
        self.token = token
        return self


# ---------------------------------------------------------------------------
# In-memory secret store
# ---------------------------------------------------------------------------


class InMemorySecretStore:
    """Secret store with the same conditional-write contract as the Kubernetes one."""

    def __init__(self):
        self.secrets: dict[tuple[str, str], dict[str, str]] = {}
        self.versions: dict[tuple[str, str], int] = {}
        self.reads = 0
        self.missing_reads: dict[tuple[str, str], int] = {}
        self.read_error: SecretStoreError | None = None
        self.conflicts = 0
        self.writes = 0

    def put(self, namespace: str, name: str, data: dict[str, str]) -> None:
        key = (namespace, name)
        self.secrets[key] = dict(data)
        self.versions[key] = self.versions.get(key, 0) + 1

    async def get(self, namespace: str, name: str) -> dict[str, str]:
        self.reads += 1
        key = (namespace, name)
        if self.read_error is not None:
            raise self.read_error
        if self.missing_reads.get(key, 0) > 0:
            self.missing_reads[key] -= 1
            raise SecretNotFoundError(f"secret {namespace}/{name} not found", status_code=404)
        if key not in self.secrets:
            raise SecretNotFoundError(f"secret {namespace}/{name} not found", status_code=404)
        return dict(self.secrets[key])

    async def create(self, namespace: str, name: str, data: dict[str, str]) -> None:
        if (namespace, name) in self.secrets:
            raise SecretConflictError("exists", status_code=409)
        self.writes += 1
        self.put(namespace, name, data)

    async def create_or_update(self, namespace: str, name: str, mutate: Mutator) -> str:
        key = (namespace, name)
        for _ in range(5):
            existing = dict(self.secrets.get(key, {}))
            exists = key in self.secrets
            desired = await mutate(dict(existing))
            if self.conflicts > 0:
                self.conflicts -= 1
                continue
            if not exists:
                self.writes += 1
                self.put(namespace, name, desired)
                return "created"
            if desired == existing:
                return "unchanged"
            self.writes += 1
            self.put(namespace, name, desired)
            return "updated"
        raise SecretConflictError("too many conflicts", status_code=409)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def zitadel() -> FakeZitadel:
    return FakeZitadel()


@pytest.fixture
def store() -> InMemorySecretStore:
    return InMemorySecretStore()


@pytest.fixture
def project_config() -> ProjectConfig:
    return ProjectConfig(id="p1", name="demo")


@pytest.fixture
def application_config() -> ApplicationConfig:
    return ApplicationConfig(id="metal-stack", name="metal-stack", redirect_uri="https://a/cb")


@pytest.fixture
def users_config() -> tuple[UserConfig, ...]:
    return (
        UserConfig(email="alice@example.com", first_name="Alice", last_name="A", password="pw-a"),
        UserConfig(email="bob@example.com", first_name="Bob", last_name="B", password="pw-b"),
    )


@pytest.fixture
def providers_config() -> tuple[IdentityProviderConfig, ...]:
    return (
        IdentityProviderConfig(
            name="github",
            issuer="https://github.example.com",
            client_id="gh-client",
            client_secret="gh-secret",
        ),
    )


@pytest.fixture
def init_config(project_config, application_config, users_config, providers_config) -> InitConfig:
    return InitConfig(
        project=project_config,
        application=application_config,
        users=users_config,
        identity_providers=providers_config,
    )


@pytest.fixture
def sample_yaml(tmp_path: Path) -> Path:
    path = tmp_path / "bootstrap.yaml"
    path.write_text(
        """
project:
  id: metal-stack
  name: metal-stack
application:
  id: metal-stack
  name: metal-stack
  redirect_uri: https://api.example.com/auth/callback
users:
  - email: admin@example.com
    first_name: Admin
    last_name: User
    password: ${TEST_ADMIN_PASSWORD:-changeme}
identity_providers:
  - name: github
    issuer: https://github.example.com
    client_id: ${TEST_GH_CLIENT_ID}
    client_secret: gh-secret
"""
    )
    return path
