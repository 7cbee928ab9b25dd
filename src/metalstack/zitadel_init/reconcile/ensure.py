"""Create-or-update reconciliation of Zitadel resources.

Every ensurer first tries to create its resource. A create error that the
signal tables classify as "already exists" switches to the lookup/update
path; every other error propagates. IDs returned by Zitadel are treated as
authoritative over the ones requested in the configuration.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable

from metalstack.zitadel_init.logs import get_logger
from metalstack.zitadel_init.models import (
    ApplicationConfig,
    IdentityProviderConfig,
    ProjectConfig,
    UserConfig,
)
from metalstack.zitadel_init.reconcile.errors import (
    AmbiguousResourceError,
    MissingResourceError,
    ReconcileError,
)
from metalstack.zitadel_init.zitadel import (
    ResourceKind,
    ZitadelClient,
    ZitadelError,
    is_conflict,
    is_no_op,
)

logger = get_logger(__name__)


@dataclass(frozen=True)
class ProjectResult:
    project_id: str
    created: bool


@dataclass(frozen=True)
class ApplicationResult:
    """Application identity after reconciliation.

    ``client_secret`` is only set when the application was created in this
    run; Zitadel never returns it again afterwards.
    """

    app_id: str
    client_id: str
    client_secret: str = ""
    created: bool = False


@dataclass(frozen=True)
class UserResult:
    email: str
    created: bool


@dataclass(frozen=True)
class ProviderResult:
    name: str
    provider_id: str
    created: bool
    activated: bool


def _single(kind: str, name: str, matches: list[dict[str, Any]]) -> dict[str, Any] | None:
    """Return the only match, None for no match, or fail on ambiguity."""
    if len(matches) > 1:
        raise AmbiguousResourceError(kind, name, [str(m.get("id", "?")) for m in matches])
    return matches[0] if matches else None


async def resolve_default_organization(zitadel: ZitadelClient) -> str:
    """Return the ID of the instance's default organization."""
    orgs = await zitadel.list_organizations(default_only=True)
    org = _single("default organization", "default", orgs)
    if org is None:
        raise MissingResourceError("no default organization found")
    logger.info("resolved default organization", org_id=org["id"])
    return org["id"]


async def ensure_project(
    zitadel: ZitadelClient, org_id: str, project: ProjectConfig
) -> ProjectResult:
    """Create the project once. An existing project is left as it is."""
    try:
        result = await zitadel.create_project(org_id, project.id, project.name)
    except ZitadelError as e:
        if not is_conflict(e, ResourceKind.PROJECT):
            raise
        logger.info("project already exists", project_id=project.id)
        return ProjectResult(project_id=project.id, created=False)

    project_id = result.get("id") or project.id
    logger.info("project created", project_id=project_id)
    return ProjectResult(project_id=project_id, created=True)


def _client_id_of(app: dict[str, Any]) -> str:
    return (app.get("oidcConfig") or {}).get("clientId", "")


async def _lookup_application(
    zitadel: ZitadelClient, project_id: str, name: str
) -> dict[str, Any]:
    # Lookup by name: the ID requested at creation is not reliably the one
    # Zitadel assigned.
    apps = await zitadel.list_applications(project_id, name=name)
    app = _single("application", name, [a for a in apps if a.get("name") == name])
    if app is None:
        raise MissingResourceError(
            f"application {name!r} reported as existing but not found in project {project_id}"
        )
    return app


async def ensure_application(
    zitadel: ZitadelClient, project_id: str, app: ApplicationConfig
) -> ApplicationResult:
    """Create the OIDC application or reconcile its redirect URIs."""
    redirect_uris = [app.redirect_uri]

    try:
        result = await zitadel.create_oidc_application(
            project_id,
            app.id,
            app.name,
            redirect_uris,
            app.post_logout_redirect_uris,
        )
    except ZitadelError as e:
        if not is_conflict(e, ResourceKind.APPLICATION):
            raise
        return await _update_application(zitadel, project_id, app, redirect_uris)

    oidc = result.get("oidcResponse") or {}
    client_id = oidc.get("clientId", "")
    if not client_id:
        raise MissingResourceError(f"no oidc response found when creating application {app.name!r}")

    app_id = result.get("appId", "")
    if not app_id:
        app_id = (await _lookup_application(zitadel, project_id, app.name))["id"]

    logger.info(
        "application created",
        app_id=app_id,
        client_id=client_id,
        issued_secret=bool(oidc.get("clientSecret")),
    )
    return ApplicationResult(
        app_id=app_id,
        client_id=client_id,
        client_secret=oidc.get("clientSecret", ""),
        created=True,
    )


async def _update_application(
    zitadel: ZitadelClient,
    project_id: str,
    app: ApplicationConfig,
    redirect_uris: list[str],
) -> ApplicationResult:
    existing = await _lookup_application(zitadel, project_id, app.name)
    app_id = existing["id"]

    try:
        await zitadel.update_oidc_application(
            project_id,
            app_id,
            app.name,
            redirect_uris,
            app.post_logout_redirect_uris,
        )
    except ZitadelError as e:
        if not is_no_op(e):
            raise
        logger.info("application unchanged", app_id=app_id)
    else:
        logger.info("application updated", app_id=app_id, redirect_uris=redirect_uris)

    client_id = _client_id_of(existing)
    if not client_id:
        raise MissingResourceError(f"application {app.name!r} has no oidc client id")
    return ApplicationResult(app_id=app_id, client_id=client_id, created=False)


async def ensure_users(
    zitadel: ZitadelClient, org_id: str, users: Iterable[UserConfig]
) -> list[UserResult]:
    """Create static users or refresh their profile names.

    The first failing user aborts the whole batch. Passwords are only set at
    creation time.
    """
    results: list[UserResult] = []
    for user in users:
        try:
            results.append(await _ensure_user(zitadel, user.org_id or org_id, user))
        except ZitadelError as e:
            raise ReconcileError(f"user {user.email}: {e}") from e

    logger.info(
        "users ensured",
        created=sum(r.created for r in results),
        updated=sum(not r.created for r in results),
    )
    return results


async def _ensure_user(zitadel: ZitadelClient, org_id: str, user: UserConfig) -> UserResult:
    try:
        await zitadel.create_human_user(
            org_id,
            user_id=user.email,
            username=user.email,
            email=user.email,
            first_name=user.first_name,
            last_name=user.last_name,
            password=user.password,
        )
    except ZitadelError as e:
        if not is_conflict(e, ResourceKind.USER):
            raise
    else:
        logger.info("user created", email=user.email)
        return UserResult(email=user.email, created=True)

    await zitadel.update_human_user(
        user_id=user.email,
        username=user.email,
        first_name=user.first_name,
        last_name=user.last_name,
    )
    logger.info("user updated", email=user.email)
    return UserResult(email=user.email, created=False)


async def _match_provider(
    zitadel: ZitadelClient, org_id: str, name: str
) -> dict[str, Any] | None:
    providers = await zitadel.list_generic_oidc_providers(org_id, name)
    return _single("identity provider", name, [p for p in providers if p.get("name") == name])


async def ensure_identity_providers(
    zitadel: ZitadelClient, org_id: str, providers: Iterable[IdentityProviderConfig]
) -> list[ProviderResult]:
    """Create or update generic OIDC providers and activate them for login."""
    return [await _ensure_provider(zitadel, org_id, provider) for provider in providers]


async def _ensure_provider(
    zitadel: ZitadelClient, org_id: str, provider: IdentityProviderConfig
) -> ProviderResult:
    existing = await _match_provider(zitadel, org_id, provider.name)
    created = False

    if existing is None:
        try:
            provider_id = await zitadel.add_generic_oidc_provider(org_id, provider)
            created = True
        except ZitadelError as e:
            if not is_conflict(e, ResourceKind.IDENTITY_PROVIDER):
                raise
            # Created concurrently between listing and adding
            existing = await _match_provider(zitadel, org_id, provider.name)
            if existing is None:
                raise MissingResourceError(
                    f"identity provider {provider.name!r} reported as existing but not listed"
                ) from e

    if existing is not None:
        provider_id = existing["id"]
        try:
            await zitadel.update_generic_oidc_provider(org_id, provider_id, provider)
        except ZitadelError as e:
            if not is_no_op(e):
                raise
            logger.info("identity provider unchanged", name=provider.name)

    if not provider_id:
        raise MissingResourceError(f"identity provider {provider.name!r} has no id")

    activated = False
    if provider.add_to_login_policy:
        try:
            await zitadel.add_provider_to_login_policy(org_id, provider_id)
        except ZitadelError as e:
            if not is_conflict(e, ResourceKind.LOGIN_POLICY_PROVIDER):
                raise
            logger.debug("identity provider already in login policy", name=provider.name)
        activated = True

    logger.info(
        "identity provider ensured",
        name=provider.name,
        provider_id=provider_id,
        created=created,
        activated=activated,
    )
    return ProviderResult(
        name=provider.name,
        provider_id=provider_id,
        created=created,
        activated=activated,
    )
