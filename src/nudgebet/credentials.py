"""Current bearer credential plus invalidate/renew notifications.

Token issuance and refresh live elsewhere; this only holds whatever token the
auth layer last handed over and tells the core when it changes.
"""

from __future__ import annotations

import logging
from collections.abc import Callable

from nudgebet.signals import Signal

log = logging.getLogger(__name__)


class CredentialContext:
    def __init__(self, token: str | None = None) -> None:
        self._token = token
        self._invalidated: Signal[None] = Signal("credential.invalidated")
        self._renewed: Signal[str] = Signal("credential.renewed")

    def current(self) -> str | None:
        return self._token

    @property
    def is_valid(self) -> bool:
        return bool(self._token)

    def renew(self, token: str) -> None:
        """Install a fresh token (login or refresh) and notify listeners."""
        self._token = token
        log.info("Credential renewed")
        self._renewed.emit(token)

    def invalidate(self) -> None:
        """Drop the token (logout or failed refresh). No-op when already invalid."""
        if self._token is None:
            return
        self._token = None
        log.info("Credential invalidated")
        self._invalidated.emit(None)

    def on_invalidated(self, callback: Callable[[None], None]) -> Callable[[], None]:
        return self._invalidated.connect(callback)

    def on_renewed(self, callback: Callable[[str], None]) -> Callable[[], None]:
        return self._renewed.connect(callback)
