"""Waiting for the bootstrap personal access token.

The token secret is materialized by another controller, possibly after this
job has started. The waiter polls the secret store until the secret shows up,
a hard error occurs, or the run is cancelled. Polling is modelled as a small
state machine so each transition can be checked without real delays.
"""

from __future__ import annotations

import asyncio
from enum import Enum
from typing import Protocol

from metalstack.zitadel_init.logs import get_logger
from metalstack.zitadel_init.reconcile.errors import CredentialError, CredentialWaitCancelled
from metalstack.zitadel_init.secretstore import SecretNotFoundError, SecretStoreError

logger = get_logger(__name__)

DEFAULT_POLL_INTERVAL = 2.0


class WaitState(str, Enum):
    WAITING = "waiting"
    FOUND = "found"
    FAILED = "failed"
    CANCELLED = "cancelled"


class WaitEvent(str, Enum):
    SECRET_FOUND = "secret_found"
    SECRET_MISSING = "secret_missing"
    TOKEN_EMPTY = "token_empty"
    READ_FAILED = "read_failed"
    CANCELLED = "cancelled"


TERMINAL_STATES = frozenset({WaitState.FOUND, WaitState.FAILED, WaitState.CANCELLED})

_TRANSITIONS: dict[WaitEvent, WaitState] = {
    WaitEvent.SECRET_FOUND: WaitState.FOUND,
    WaitEvent.SECRET_MISSING: WaitState.WAITING,
    WaitEvent.TOKEN_EMPTY: WaitState.FAILED,
    WaitEvent.READ_FAILED: WaitState.FAILED,
    WaitEvent.CANCELLED: WaitState.CANCELLED,
}


def transition(state: WaitState, event: WaitEvent) -> WaitState:
    """Return the state that follows ``state`` when ``event`` occurs."""
    if state in TERMINAL_STATES:
        raise ValueError(f"no transition out of terminal state {state.value}")
    return _TRANSITIONS[event]


class SecretReader(Protocol):
    async def get(self, namespace: str, name: str) -> dict[str, str]: ...


class CredentialWaiter:
    """Poll a secret until it holds a non-empty token.

    Args:
        store: Secret store to read from
        namespace: Namespace of the token secret
        name: Name of the token secret
        key: Data key holding the token
        poll_interval: Seconds between reads while the secret is missing
        stop: Ambient cancellation signal; setting it ends the wait
    """

    def __init__(
        self,
        store: SecretReader,
        namespace: str,
        name: str,
        key: str = "pat",
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        stop: asyncio.Event | None = None,
    ):
        self._store = store
        self._namespace = namespace
        self._name = name
        self._key = key
        self._poll_interval = poll_interval
        self._stop = stop
        self.state = WaitState.WAITING
        self.attempts = 0

    def _advance(self, event: WaitEvent) -> WaitState:
        self.state = transition(self.state, event)
        return self.state

    async def _observe(self) -> tuple[WaitEvent, str, Exception | None]:
        try:
            data = await self._store.get(self._namespace, self._name)
        except SecretNotFoundError:
            return WaitEvent.SECRET_MISSING, "", None
        except SecretStoreError as e:
            return WaitEvent.READ_FAILED, "", e

        token = data.get(self._key, "").strip()
        if not token:
            return WaitEvent.TOKEN_EMPTY, "", None
        return WaitEvent.SECRET_FOUND, token, None

    async def _pause(self) -> bool:
        """Sleep one poll interval. Returns True if the stop signal fired."""
        if self._stop is None:
            await asyncio.sleep(self._poll_interval)
            return False
        try:
            await asyncio.wait_for(self._stop.wait(), timeout=self._poll_interval)
        except asyncio.TimeoutError:
            return False
        return True

    def _cancelled(self) -> CredentialWaitCancelled:
        self._advance(WaitEvent.CANCELLED)
        logger.warning(
            "credential wait cancelled",
            namespace=self._namespace,
            secret=self._name,
            attempts=self.attempts,
        )
        return CredentialWaitCancelled(
            f"cancelled while waiting for secret {self._namespace}/{self._name}"
        )

    async def wait(self) -> str:
        """Block until the token is available and return it.

        Raises:
            CredentialError: the secret could not be read or holds no token
            CredentialWaitCancelled: the stop signal fired
        """
        logger.info("waiting for credential", namespace=self._namespace, secret=self._name)
        try:
            while True:
                if self._stop is not None and self._stop.is_set():
                    raise self._cancelled()

                self.attempts += 1
                event, token, error = await self._observe()
                state = self._advance(event)

                if state is WaitState.FOUND:
                    logger.info("credential found", secret=self._name, attempts=self.attempts)
                    return token

                if state is WaitState.FAILED:
                    if event is WaitEvent.TOKEN_EMPTY:
                        raise CredentialError(
                            f"secret {self._namespace}/{self._name} has no value for key {self._key!r}"
                        )
                    raise CredentialError(
                        f"unable to read secret {self._namespace}/{self._name}: {error}"
                    ) from error

                logger.debug("credential not present yet", secret=self._name, attempts=self.attempts)
                if await self._pause():
                    raise self._cancelled()
        except asyncio.CancelledError:
            if self.state not in TERMINAL_STATES:
                self._advance(WaitEvent.CANCELLED)
            raise
