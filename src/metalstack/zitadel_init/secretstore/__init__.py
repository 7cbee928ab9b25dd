"""Secret store access."""

from metalstack.zitadel_init.secretstore.store import (
    KubernetesSecretStore,
    Mutator,
    SecretConflictError,
    SecretNotFoundError,
    SecretStoreError,
)

__all__ = [
    "KubernetesSecretStore",
    "Mutator",
    "SecretConflictError",
    "SecretNotFoundError",
    "SecretStoreError",
]
