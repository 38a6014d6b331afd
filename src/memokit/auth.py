"""Signed-in user signal consumed by user-scoped engines."""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Protocol, runtime_checkable

logger = logging.getLogger(__name__)


@runtime_checkable
class UserIdentity(Protocol):
    """Anything that can report the current user id, or None when signed out."""

    def current_user_id(self) -> str | None: ...


class Session:
    """Mutable sign-in state owned by the authentication layer."""

    def __init__(self, user_id: str | None = None) -> None:
        self._user_id = user_id or None
        self._listeners: list[Callable[[str | None], None]] = []

    def current_user_id(self) -> str | None:
        return self._user_id

    def sign_in(self, user_id: str) -> None:
        if not user_id:
            raise ValueError("user_id must be non-empty")
        self._set(user_id)

    def sign_out(self) -> None:
        self._set(None)

    def on_change(self, listener: Callable[[str | None], None]) -> Callable[[], None]:
        """Register a listener for sign-in changes. Returns a remover."""
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    def _set(self, user_id: str | None) -> None:
        if user_id == self._user_id:
            return
        self._user_id = user_id
        logger.info("Session user changed: %s", user_id or "<signed out>")
        for listener in list(self._listeners):
            listener(user_id)
