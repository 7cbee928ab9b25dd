"""Persisting the OIDC client credentials.

The stored ``client_secret`` is chosen in this order:

1. the secret Zitadel issued when the application was created in this run
2. the secret already present in the store
3. a freshly regenerated secret, requested at most once per run

so the secret is rotated as rarely as possible and never blanked. Once a
regeneration happened, the regenerated value wins over the stored one on
conflict retries, since regenerating revokes every earlier secret.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Protocol

from metalstack.zitadel_init.logs import get_logger
from metalstack.zitadel_init.reconcile.ensure import ApplicationResult
from metalstack.zitadel_init.reconcile.errors import ReconcileError
from metalstack.zitadel_init.secretstore import Mutator

logger = get_logger(__name__)

CLIENT_ID_KEY = "client_id"
CLIENT_SECRET_KEY = "client_secret"


class SecretSource(str, Enum):
    ISSUED = "issued"
    PRESERVED = "preserved"
    REGENERATED = "regenerated"


@dataclass(frozen=True)
class SecretOutcome:
    action: str  # "created", "updated", "unchanged"
    source: SecretSource


class CredentialWriter(Protocol):
    async def create_or_update(self, namespace: str, name: str, mutate: Mutator) -> str: ...


class SecretRegenerator(Protocol):
    async def regenerate_client_secret(self, project_id: str, app_id: str) -> str: ...


class SecretReconciler:
    """Write ``client_id``/``client_secret`` to the credentials secret."""

    def __init__(
        self,
        store: CredentialWriter,
        zitadel: SecretRegenerator,
        namespace: str,
        name: str,
    ):
        self._store = store
        self._zitadel = zitadel
        self._namespace = namespace
        self._name = name

    async def reconcile(self, project_id: str, application: ApplicationResult) -> SecretOutcome:
        source: SecretSource | None = None
        regenerated: str | None = None

        async def mutate(current: dict[str, str]) -> dict[str, str]:
            nonlocal source, regenerated

            if application.client_secret:
                source = SecretSource.ISSUED
                secret = application.client_secret
            elif regenerated:
                # The mutator may run again after a write conflict. The
                # regeneration already revoked whatever another writer stored.
                source = SecretSource.REGENERATED
                secret = regenerated
            elif current.get(CLIENT_SECRET_KEY):
                source = SecretSource.PRESERVED
                secret = current[CLIENT_SECRET_KEY]
            else:
                logger.info("regenerating client secret", app_id=application.app_id)
                regenerated = await self._zitadel.regenerate_client_secret(
                    project_id, application.app_id
                )
                if not regenerated:
                    raise ReconcileError(
                        f"regenerating the client secret of application {application.app_id} "
                        "returned an empty value"
                    )
                source = SecretSource.REGENERATED
                secret = regenerated

            return {CLIENT_ID_KEY: application.client_id, CLIENT_SECRET_KEY: secret}

        action = await self._store.create_or_update(self._namespace, self._name, mutate)
        if source is None:
            raise ReconcileError(f"secret store never applied {self._namespace}/{self._name}")
        logger.info(
            "client credentials written",
            namespace=self._namespace,
            secret=self._name,
            action=action,
            source=source.value,
        )
        return SecretOutcome(action=action, source=source)
