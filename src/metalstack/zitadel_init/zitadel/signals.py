"""Error-code tables for Zitadel API quirks.

Zitadel does not report "already exists" uniformly: creating a user that
exists fails with ``failed_precondition`` while other resources answer with
``already_exists``. An update that would not change anything is rejected
with ``failed_precondition`` and a "no changes" message. The tables below
keep those mappings in one place so the ensurers only ask
``is_conflict(err, kind)`` and ``is_no_op(err)``.
"""

from __future__ import annotations

from enum import Enum

from metalstack.zitadel_init.zitadel.client import ZitadelError

ALREADY_EXISTS = "already_exists"
FAILED_PRECONDITION = "failed_precondition"
NOT_FOUND = "not_found"


class ResourceKind(str, Enum):
    PROJECT = "project"
    APPLICATION = "application"
    USER = "user"
    IDENTITY_PROVIDER = "identity_provider"
    LOGIN_POLICY_PROVIDER = "login_policy_provider"


# Codes that mean "the resource is already there" for a create call.
CONFLICT_SIGNALS: dict[ResourceKind, frozenset[str]] = {
    ResourceKind.PROJECT: frozenset({ALREADY_EXISTS}),
    ResourceKind.APPLICATION: frozenset({ALREADY_EXISTS}),
    ResourceKind.USER: frozenset({ALREADY_EXISTS, FAILED_PRECONDITION}),
    ResourceKind.IDENTITY_PROVIDER: frozenset({ALREADY_EXISTS}),
    ResourceKind.LOGIN_POLICY_PROVIDER: frozenset({ALREADY_EXISTS}),
}

# Message fragments Zitadel uses when an update is a no-op.
NO_CHANGES_MARKERS: tuple[str, ...] = ("No changes", "NoChangesFound")


def is_conflict(err: ZitadelError, kind: ResourceKind) -> bool:
    """Check whether a create error means the resource already exists."""
    return err.code in CONFLICT_SIGNALS[kind]


def is_no_op(err: ZitadelError) -> bool:
    """Check whether an update error means nothing needed to change."""
    if err.code != FAILED_PRECONDITION:
        return False
    message = str(err)
    return any(marker in message for marker in NO_CHANGES_MARKERS)
