"""Key/value capability consumed by the alert dispatcher for per-user state.

Any backend satisfying KeyValueStore works: the in-memory store for tests and
single-process runs, or the ledger settings table for durable state.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Protocol

from recon.data.store import LedgerStore
from recon.logging import get_logger

logger = get_logger(__name__)

ChangeListener = Callable[[str, str], None]


def mute_key(user_id: str) -> str:
    return f"notifications_muted:{user_id}"


def parse_flag(value: str | None) -> bool:
    return value is not None and value.strip().lower() in ("true", "1", "yes", "on")


class KeyValueStore(Protocol):
    async def get(self, key: str) -> str | None: ...

    async def set(self, key: str, value: str) -> None: ...

    def on_change(self, listener: ChangeListener) -> Callable[[], None]: ...


class _ListenerMixin:
    def __init__(self) -> None:
        self._listeners: list[ChangeListener] = []

    def on_change(self, listener: ChangeListener) -> Callable[[], None]:
        """Register a listener called with (key, value) after every set.

        Returns a callable that unregisters the listener.
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self, key: str, value: str) -> None:
        for listener in list(self._listeners):
            try:
                listener(key, value)
            except Exception:
                logger.error("kv_listener_failed", key=key, exc_info=True)


class InMemoryKeyValueStore(_ListenerMixin):
    """Process-local store. State is lost on restart."""

    def __init__(self, initial: dict[str, str] | None = None) -> None:
        super().__init__()
        self._data: dict[str, str] = dict(initial or {})

    async def get(self, key: str) -> str | None:
        return self._data.get(key)

    async def set(self, key: str, value: str) -> None:
        self._data[key] = value
        self._notify(key, value)


class SettingsKeyValueStore(_ListenerMixin):
    """Store backed by the ledger settings table."""

    def __init__(self, store: LedgerStore) -> None:
        super().__init__()
        self._store = store

    async def get(self, key: str) -> str | None:
        return await self._store.get_setting(key)

    async def set(self, key: str, value: str) -> None:
        await self._store.set_setting(key, value)
        self._notify(key, value)
