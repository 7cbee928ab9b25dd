"""Idempotent bootstrap reconciliation.

Provides the credential waiter, the resource ensurers, the client secret
reconciler and the runner that sequences them.
"""

from metalstack.zitadel_init.reconcile.errors import (
    AmbiguousResourceError,
    CredentialError,
    CredentialWaitCancelled,
    InitError,
    MissingResourceError,
    ReconcileError,
)
from metalstack.zitadel_init.reconcile.runner import InitResult, InitRunner
from metalstack.zitadel_init.reconcile.secret import SecretReconciler, SecretSource
from metalstack.zitadel_init.reconcile.waiter import CredentialWaiter, WaitState

__all__ = [
    "AmbiguousResourceError",
    "CredentialError",
    "CredentialWaitCancelled",
    "CredentialWaiter",
    "InitError",
    "InitResult",
    "InitRunner",
    "MissingResourceError",
    "ReconcileError",
    "SecretReconciler",
    "SecretSource",
    "WaitState",
]
