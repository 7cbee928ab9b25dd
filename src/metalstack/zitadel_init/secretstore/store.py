"""Kubernetes-backed secret store.

Reads and writes Opaque secrets through the kubernetes python client. The
client is synchronous, so every API call runs in a worker thread to keep the
event loop (and with it cancellation) responsive.
"""

from __future__ import annotations

import asyncio
import base64
import logging
import os
from typing import Awaitable, Callable

from kubernetes import client, config
from kubernetes.client.exceptions import ApiException

logger = logging.getLogger(__name__)

MANAGED_BY_LABELS = {"app.kubernetes.io/managed-by": "zitadel-init"}

Mutator = Callable[[dict[str, str]], Awaitable[dict[str, str]]]


class SecretStoreError(Exception):
    """Raised when secret store operations fail."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class SecretNotFoundError(SecretStoreError):
    """Secret does not exist (yet)."""

    pass


class SecretConflictError(SecretStoreError):
    """Secret kept changing underneath a conditional write."""

    pass


def is_running_in_cluster() -> bool:
    """Check if running inside a Kubernetes cluster."""
    return bool(os.getenv("KUBERNETES_SERVICE_HOST"))


def _decode(data: dict[str, str] | None) -> dict[str, str]:
    return {k: base64.b64decode(v).decode("utf-8") for k, v in (data or {}).items()}


def _encode(data: dict[str, str]) -> dict[str, str]:
    return {k: base64.b64encode(v.encode("utf-8")).decode("ascii") for k, v in data.items()}


class KubernetesSecretStore:
    """Secret store on top of ``CoreV1Api``."""

    def __init__(
        self,
        api: client.CoreV1Api,
        conflict_retries: int = 5,
        labels: dict[str, str] | None = None,
    ):
        self._api = api
        self._conflict_retries = conflict_retries
        self._labels = dict(MANAGED_BY_LABELS if labels is None else labels)

    @classmethod
    def from_environment(cls, **kwargs) -> "KubernetesSecretStore":
        """Build a store from in-cluster config, falling back to kubeconfig."""
        if is_running_in_cluster():
            config.load_incluster_config()
        else:
            config.load_kube_config()
        return cls(client.CoreV1Api(), **kwargs)

    async def _read(self, namespace: str, name: str) -> client.V1Secret:
        try:
            return await asyncio.to_thread(self._api.read_namespaced_secret, name, namespace)
        except ApiException as e:
            if e.status == 404:
                raise SecretNotFoundError(
                    f"secret {namespace}/{name} not found", status_code=404
                ) from e
            raise SecretStoreError(
                f"could not read secret {namespace}/{name}: {e.reason}",
                status_code=e.status,
            ) from e

    async def get(self, namespace: str, name: str) -> dict[str, str]:
        """Return the decoded data of a secret.

        Raises:
            SecretNotFoundError: the secret does not exist
            SecretStoreError: any other API failure
        """
        secret = await self._read(namespace, name)
        return _decode(secret.data)

    async def create(self, namespace: str, name: str, data: dict[str, str]) -> None:
        body = client.V1Secret(
            api_version="v1",
            kind="Secret",
            metadata=client.V1ObjectMeta(name=name, namespace=namespace, labels=self._labels),
            type="Opaque",
            data=_encode(data),
        )
        try:
            await asyncio.to_thread(self._api.create_namespaced_secret, namespace, body)
        except ApiException as e:
            if e.status == 409:
                raise SecretConflictError(
                    f"secret {namespace}/{name} already exists", status_code=409
                ) from e
            raise SecretStoreError(
                f"could not create secret {namespace}/{name}: {e.reason}",
                status_code=e.status,
            ) from e
        logger.info("Created secret %s/%s", namespace, name)

    async def create_or_update(self, namespace: str, name: str, mutate: Mutator) -> str:
        """Create or update a secret from a read-modify-write mutator.

        ``mutate`` receives the current decoded data (empty when the secret
        does not exist) and returns the desired data. The write is
        conditional on the resource version that was read; on a conflict the
        secret is re-read and the mutator applied again.

        Returns:
            "created", "updated" or "unchanged"
        """
        for attempt in range(1, self._conflict_retries + 1):
            try:
                current = await self._read(namespace, name)
            except SecretNotFoundError:
                current = None

            existing = _decode(current.data) if current is not None else {}
            desired = await mutate(dict(existing))

            if current is None:
                try:
                    await self.create(namespace, name, desired)
                    return "created"
                except SecretConflictError:
                    logger.debug(
                        "Secret %s/%s appeared concurrently (attempt %d)", namespace, name, attempt
                    )
                    continue

            if desired == existing:
                logger.info("Secret %s/%s is up to date", namespace, name)
                return "unchanged"

            current.data = _encode(desired)
            current.string_data = None
            current.type = current.type or "Opaque"
            try:
                await asyncio.to_thread(
                    self._api.replace_namespaced_secret, name, namespace, current
                )
            except ApiException as e:
                if e.status == 409:
                    logger.debug(
                        "Secret %s/%s changed concurrently (attempt %d)", namespace, name, attempt
                    )
                    continue
                raise SecretStoreError(
                    f"could not update secret {namespace}/{name}: {e.reason}",
                    status_code=e.status,
                ) from e
            logger.info("Updated secret %s/%s", namespace, name)
            return "updated"

        raise SecretConflictError(
            f"secret {namespace}/{name} kept changing after {self._conflict_retries} attempts",
            status_code=409,
        )
