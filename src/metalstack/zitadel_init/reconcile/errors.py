"""Reconciliation errors."""

from __future__ import annotations


class ReconcileError(Exception):
    """Base exception for bootstrap failures."""

    pass


class AmbiguousResourceError(ReconcileError):
    """More than one resource matches a name that must be unique."""

    def __init__(self, kind: str, name: str, ids: list[str]):
        super().__init__(
            f"{len(ids)} {kind}s named {name!r} exist ({', '.join(ids)}), refusing to pick one"
        )
        self.kind = kind
        self.name = name
        self.ids = ids


class MissingResourceError(ReconcileError):
    """A resource reported as existing could not be found."""

    pass


class CredentialError(ReconcileError):
    """The bootstrap credential is unusable."""

    pass


class CredentialWaitCancelled(ReconcileError):
    """Waiting for the bootstrap credential was cancelled."""

    pass


class InitError(ReconcileError):
    """A bootstrap step failed; wraps the underlying cause."""

    def __init__(self, step: str, cause: Exception):
        super().__init__(f"unable to {step}: {cause}")
        self.step = step
        self.cause = cause
