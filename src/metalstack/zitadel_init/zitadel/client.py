"""Zitadel API client.

Wraps the Zitadel connect/JSON API for managing:
- Organizations (read-only, default organization lookup)
- Projects
- OIDC applications and their client secrets
- Human users
- Generic OIDC identity providers and the login policy
"""

from __future__ import annotations

import logging
from typing import Any, Iterable

import httpx

from metalstack.zitadel_init.config import InitSettings
from metalstack.zitadel_init.models import IdentityProviderConfig

logger = logging.getLogger(__name__)

ORG_SERVICE = "zitadel.org.v2.OrganizationService"
PROJECT_SERVICE = "zitadel.project.v2beta.ProjectService"
APP_SERVICE = "zitadel.app.v2beta.AppService"
USER_SERVICE = "zitadel.user.v2.UserService"
MANAGEMENT_SERVICE = "zitadel.management.v1.ManagementService"

# Fixed OIDC settings for the confidential web application.
OIDC_APPLICATION_SETTINGS: dict[str, Any] = {
    "responseTypes": ["OIDC_RESPONSE_TYPE_CODE"],
    "grantTypes": ["OIDC_GRANT_TYPE_AUTHORIZATION_CODE"],
    "appType": "OIDC_APP_TYPE_WEB",
    "authMethodType": "OIDC_AUTH_METHOD_TYPE_POST",
    "accessTokenType": "OIDC_TOKEN_TYPE_BEARER",
    "version": "OIDC_VERSION_1_0",
}

# Used when the error body carries no connect code.
_STATUS_CODES: dict[int, str] = {
    400: "invalid_argument",
    401: "unauthenticated",
    403: "permission_denied",
    404: "not_found",
    409: "already_exists",
    412: "failed_precondition",
    429: "resource_exhausted",
    499: "canceled",
    500: "internal",
    501: "unimplemented",
    503: "unavailable",
    504: "deadline_exceeded",
}


class ZitadelError(Exception):
    """Base exception for Zitadel API errors."""

    def __init__(
        self,
        message: str,
        code: str = "unknown",
        status_code: int | None = None,
        response: dict | None = None,
    ):
        super().__init__(message)
        self.code = code
        self.status_code = status_code
        self.response = response


class ZitadelAuthError(ZitadelError):
    """Authentication failed or the token lacks permissions."""

    pass


class ZitadelNotFoundError(ZitadelError):
    """Resource not found."""

    pass


class ZitadelConflictError(ZitadelError):
    """Resource already exists."""

    pass


class ZitadelPreconditionError(ZitadelError):
    """Request rejected because of the current resource state."""

    pass


_CODE_ERRORS: dict[str, type[ZitadelError]] = {
    "unauthenticated": ZitadelAuthError,
    "permission_denied": ZitadelAuthError,
    "not_found": ZitadelNotFoundError,
    "already_exists": ZitadelConflictError,
    "failed_precondition": ZitadelPreconditionError,
}


def _text_filter(name: str) -> dict[str, str]:
    return {"name": name, "method": "TEXT_FILTER_METHOD_EQUALS"}


class ZitadelClient:
    """Async client for the Zitadel API authenticated with a personal access token."""

    def __init__(
        self,
        settings: InitSettings,
        token: str,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        if not token or not token.strip():
            raise ZitadelAuthError("refusing to build a client with an empty access token")
        self._settings = settings
        self._token = token.strip()
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> "ZitadelClient":
        """Async context manager entry."""
        headers = {}
        if self._settings.external_domain:
            headers["Host"] = self._settings.authority
        self._client = httpx.AsyncClient(
            base_url=self._settings.base_url,
            timeout=self._settings.timeout,
            verify=not self._settings.skip_verify_tls,
            headers=headers,
            transport=self._transport,
        )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Async context manager exit."""
        if self._client:
            await self._client.aclose()
            self._client = None

    # -------------------------------------------------------------------------
    # HTTP helpers
    # -------------------------------------------------------------------------

    def _headers(self, org_id: str | None = None) -> dict[str, str]:
        headers = {
            "Authorization": f"Bearer {self._token}",
            "Content-Type": "application/json",
            "Connect-Protocol-Version": "1",
        }
        if org_id:
            headers["x-zitadel-orgid"] = org_id
        return headers

    async def _call(
        self,
        service: str,
        method: str,
        payload: dict[str, Any],
        org_id: str | None = None,
    ) -> dict[str, Any]:
        """POST a unary request to ``/<service>/<method>``."""
        if self._client is None:
            raise RuntimeError("ZitadelClient must be used as an async context manager")

        logger.debug("Calling %s/%s", service, method)
        try:
            response = await self._client.post(
                f"/{service}/{method}",
                headers=self._headers(org_id),
                json=payload,
            )
        except httpx.HTTPError as e:
            raise ZitadelError(f"{method} request failed: {e}", code="unavailable") from e

        return self._handle_response(response, method)

    def _handle_response(self, response: httpx.Response, method: str) -> dict[str, Any]:
        """Handle API response, mapping connect error codes to exceptions."""
        if response.status_code == 200:
            if not response.content:
                return {}
            return response.json()

        body: dict[str, Any] = {}
        try:
            parsed = response.json()
            if isinstance(parsed, dict):
                body = parsed
        except ValueError:
            pass

        code = body.get("code") or _STATUS_CODES.get(response.status_code, "unknown")
        message = body.get("message") or response.text or response.reason_phrase
        error_cls = _CODE_ERRORS.get(code, ZitadelError)
        raise error_cls(
            f"{method} failed ({code}): {message}",
            code=code,
            status_code=response.status_code,
            response=body or None,
        )

    # -------------------------------------------------------------------------
    # Organizations
    # -------------------------------------------------------------------------

    async def list_organizations(self, default_only: bool = False) -> list[dict[str, Any]]:
        """List organizations, optionally only the instance default one."""
        queries = [{"defaultQuery": {}}] if default_only else []
        result = await self._call(ORG_SERVICE, "ListOrganizations", {"queries": queries})
        return result.get("result", [])

    # -------------------------------------------------------------------------
    # Projects
    # -------------------------------------------------------------------------

    async def create_project(self, org_id: str, project_id: str, name: str) -> dict[str, Any]:
        """Create a project with a caller-chosen ID."""
        logger.debug("Creating project: %s", project_id)
        result = await self._call(
            PROJECT_SERVICE,
            "CreateProject",
            {"organizationId": org_id, "id": project_id, "name": name},
        )
        logger.info("Created project: %s (id=%s)", name, result.get("id", project_id))
        return result

    # -------------------------------------------------------------------------
    # Applications
    # -------------------------------------------------------------------------

    async def create_oidc_application(
        self,
        project_id: str,
        app_id: str,
        name: str,
        redirect_uris: Iterable[str],
        post_logout_redirect_uris: Iterable[str] = (),
    ) -> dict[str, Any]:
        """Create an OIDC web application.

        The response carries ``oidcResponse.clientId`` and, only at creation
        time, ``oidcResponse.clientSecret``.
        """
        payload = {
            "projectId": project_id,
            "id": app_id,
            "name": name,
            "oidcRequest": {
                **OIDC_APPLICATION_SETTINGS,
                "redirectUris": list(redirect_uris),
                "postLogoutRedirectUris": list(post_logout_redirect_uris),
            },
        }

        logger.debug("Creating application: %s", name)
        result = await self._call(APP_SERVICE, "CreateApplication", payload)
        logger.info("Created application: %s (id=%s)", name, result.get("appId", ""))
        return result

    async def list_applications(
        self, project_id: str, name: str | None = None
    ) -> list[dict[str, Any]]:
        """List applications of a project, optionally filtered by exact name."""
        filters = [{"nameFilter": _text_filter(name)}] if name else []
        result = await self._call(
            APP_SERVICE,
            "ListApplications",
            {"projectId": project_id, "filters": filters},
        )
        return result.get("applications", [])

    async def update_oidc_application(
        self,
        project_id: str,
        app_id: str,
        name: str,
        redirect_uris: Iterable[str],
        post_logout_redirect_uris: Iterable[str] = (),
    ) -> None:
        """Update the redirect configuration of an OIDC application."""
        payload = {
            "projectId": project_id,
            "id": app_id,
            "name": name,
            "oidcConfigurationRequest": {
                "redirectUris": list(redirect_uris),
                "postLogoutRedirectUris": list(post_logout_redirect_uris),
            },
        }

        logger.debug("Updating application: %s", app_id)
        await self._call(APP_SERVICE, "UpdateApplication", payload)
        logger.info("Updated application: %s", app_id)

    async def regenerate_client_secret(self, project_id: str, app_id: str) -> str:
        """Regenerate the client secret of an OIDC application."""
        logger.debug("Regenerating client secret for: %s", app_id)
        result = await self._call(
            APP_SERVICE,
            "RegenerateClientSecret",
            {"projectId": project_id, "applicationId": app_id, "isOidc": True},
        )
        return result.get("clientSecret", "")

    # -------------------------------------------------------------------------
    # Users
    # -------------------------------------------------------------------------

    async def create_human_user(
        self,
        org_id: str,
        user_id: str,
        username: str,
        email: str,
        first_name: str,
        last_name: str,
        password: str,
    ) -> dict[str, Any]:
        """Create a human user with a password that does not need changing."""
        human: dict[str, Any] = {
            "profile": {"givenName": first_name, "familyName": last_name},
            "email": {"email": email, "isVerified": True},
        }
        if password:
            human["password"] = {"password": password, "changeRequired": False}

        logger.debug("Creating user: %s", username)
        result = await self._call(
            USER_SERVICE,
            "CreateUser",
            {
                "organizationId": org_id,
                "userId": user_id,
                "username": username,
                "human": human,
            },
        )
        logger.info("Created user: %s", username)
        return result

    async def update_human_user(
        self, user_id: str, username: str, first_name: str, last_name: str
    ) -> None:
        """Update the profile names of a human user."""
        logger.debug("Updating user: %s", username)
        await self._call(
            USER_SERVICE,
            "UpdateUser",
            {
                "userId": user_id,
                "username": username,
                "human": {"profile": {"givenName": first_name, "familyName": last_name}},
            },
        )
        logger.info("Updated user: %s", username)

    # -------------------------------------------------------------------------
    # Identity providers
    # -------------------------------------------------------------------------

    @staticmethod
    def _provider_payload(provider: IdentityProviderConfig) -> dict[str, Any]:
        return {
            "name": provider.name,
            "issuer": provider.issuer,
            "clientId": provider.client_id,
            "clientSecret": provider.client_secret,
            "scopes": list(provider.scopes),
            "isIdTokenMapping": provider.is_id_token_mapping,
            "providerOptions": {
                "isLinkingAllowed": provider.is_linking_allowed,
                "isCreationAllowed": provider.is_creation_allowed,
                "isAutoCreation": provider.is_auto_creation,
                "isAutoUpdate": provider.is_auto_update,
            },
        }

    async def list_generic_oidc_providers(self, org_id: str, name: str) -> list[dict[str, Any]]:
        """List identity providers whose name equals ``name``."""
        result = await self._call(
            MANAGEMENT_SERVICE,
            "ListProviders",
            {"queries": [{"idpNameQuery": {"name": name, "method": "TEXT_QUERY_METHOD_EQUALS"}}]},
            org_id=org_id,
        )
        return result.get("result", [])

    async def add_generic_oidc_provider(
        self, org_id: str, provider: IdentityProviderConfig
    ) -> str:
        """Register a generic OIDC provider. Returns the provider ID."""
        logger.debug("Adding identity provider: %s", provider.name)
        result = await self._call(
            MANAGEMENT_SERVICE,
            "AddGenericOIDCProvider",
            self._provider_payload(provider),
            org_id=org_id,
        )
        provider_id = result.get("id", "")
        logger.info("Added identity provider: %s (id=%s)", provider.name, provider_id)
        return provider_id

    async def update_generic_oidc_provider(
        self, org_id: str, provider_id: str, provider: IdentityProviderConfig
    ) -> None:
        logger.debug("Updating identity provider: %s", provider.name)
        await self._call(
            MANAGEMENT_SERVICE,
            "UpdateGenericOIDCProvider",
            {"id": provider_id, **self._provider_payload(provider)},
            org_id=org_id,
        )
        logger.info("Updated identity provider: %s (id=%s)", provider.name, provider_id)

    async def add_provider_to_login_policy(self, org_id: str, provider_id: str) -> None:
        """Offer an identity provider on the organization's login screen."""
        logger.debug("Adding identity provider %s to login policy", provider_id)
        await self._call(
            MANAGEMENT_SERVICE,
            "AddIDPToLoginPolicy",
            {"idpId": provider_id, "ownerType": "IDP_OWNER_TYPE_ORG"},
            org_id=org_id,
        )
