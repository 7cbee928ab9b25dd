"""Zitadel API access.

Provides the async API client and the error-code tables used to tell
"already exists" and "no changes" apart from real failures.
"""

from metalstack.zitadel_init.zitadel.client import (
    ZitadelAuthError,
    ZitadelClient,
    ZitadelConflictError,
    ZitadelError,
    ZitadelNotFoundError,
    ZitadelPreconditionError,
)
from metalstack.zitadel_init.zitadel.signals import ResourceKind, is_conflict, is_no_op

__all__ = [
    "ZitadelAuthError",
    "ZitadelClient",
    "ZitadelConflictError",
    "ZitadelError",
    "ZitadelNotFoundError",
    "ZitadelPreconditionError",
    "ResourceKind",
    "is_conflict",
    "is_no_op",
]
