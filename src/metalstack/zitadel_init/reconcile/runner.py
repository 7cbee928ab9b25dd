"""Bootstrap orchestration.

Runs the ensurers strictly in dependency order:

    default organization -> project -> application -> users
        -> identity providers -> client credentials secret

Each step receives immutable inputs and contributes to an ``InitResult``
returned to the caller. The first failure aborts the run with an
``InitError`` naming the step; nothing is rolled back, re-running is the
recovery path.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Awaitable, TypeVar

from metalstack.zitadel_init.logs import get_logger
from metalstack.zitadel_init.models import InitConfig
from metalstack.zitadel_init.reconcile.ensure import (
    ApplicationResult,
    ProjectResult,
    ProviderResult,
    UserResult,
    ensure_application,
    ensure_identity_providers,
    ensure_project,
    ensure_users,
    resolve_default_organization,
)
from metalstack.zitadel_init.reconcile.errors import InitError
from metalstack.zitadel_init.reconcile.secret import (
    CredentialWriter,
    SecretOutcome,
    SecretReconciler,
)
from metalstack.zitadel_init.zitadel import ZitadelClient

logger = get_logger(__name__)

T = TypeVar("T")


@dataclass
class InitResult:
    """Everything a bootstrap run produced."""

    org_id: str = ""
    project: ProjectResult | None = None
    application: ApplicationResult | None = None
    users: list[UserResult] = field(default_factory=list)
    providers: list[ProviderResult] = field(default_factory=list)
    secret: SecretOutcome | None = None

    def summary(self) -> str:
        """Get a human-readable summary of the run."""
        lines = [f"Organization: {self.org_id}"]

        if self.project:
            verb = "created" if self.project.created else "exists"
            lines.append(f"Project {self.project.project_id}: {verb}")

        if self.application:
            verb = "created" if self.application.created else "updated"
            lines.append(
                f"Application {self.application.app_id}: {verb} "
                f"(client_id={self.application.client_id})"
            )

        created = [u.email for u in self.users if u.created]
        updated = [u.email for u in self.users if not u.created]
        if created:
            lines.append(f"Created {len(created)} users: {', '.join(created)}")
        if updated:
            lines.append(f"Updated {len(updated)} users: {', '.join(updated)}")

        for p in self.providers:
            verb = "created" if p.created else "updated"
            suffix = ", active in login policy" if p.activated else ""
            lines.append(f"Identity provider {p.name}: {verb}{suffix}")

        if self.secret:
            lines.append(f"Client credentials secret: {self.secret.action} ({self.secret.source.value})")

        return "\n".join(lines)


class InitRunner:
    """Sequence the bootstrap steps against Zitadel and the secret store."""

    def __init__(
        self,
        zitadel: ZitadelClient,
        store: CredentialWriter,
        config: InitConfig,
        namespace: str,
        secret_name: str,
    ):
        self._zitadel = zitadel
        self._config = config
        self._secrets = SecretReconciler(store, zitadel, namespace, secret_name)

    async def _step(self, step: str, call: Awaitable[T]) -> T:
        logger.info("starting step", step=step)
        try:
            return await call
        except Exception as e:
            logger.error("step failed", step=step, error=str(e))
            raise InitError(step, e) from e

    async def run(self) -> InitResult:
        cfg = self._config
        result = InitResult()

        result.org_id = await self._step(
            "resolve default organization",
            resolve_default_organization(self._zitadel),
        )
        result.project = await self._step(
            "ensure project",
            ensure_project(self._zitadel, result.org_id, cfg.project),
        )
        result.application = await self._step(
            "ensure application",
            ensure_application(self._zitadel, result.project.project_id, cfg.application),
        )
        result.users = await self._step(
            "ensure users",
            ensure_users(self._zitadel, result.org_id, cfg.users),
        )
        result.providers = await self._step(
            "ensure identity providers",
            ensure_identity_providers(self._zitadel, result.org_id, cfg.identity_providers),
        )
        result.secret = await self._step(
            "save client credentials",
            self._secrets.reconcile(result.project.project_id, result.application),
        )

        logger.info("bootstrap completed", project_id=result.project.project_id)
        return result
