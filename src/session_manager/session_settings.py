"""User-tunable session settings with change subscriptions."""

import logging
from dataclasses import asdict, dataclass, fields, replace
from typing import Callable, List, Optional

from src.session_manager.config import (
    DEFAULT_RANKED_INTERVAL_MINUTES,
    DEFAULT_SESSION_TIMEOUT_MINUTES,
    SESSION_SETTINGS_KEY,
)
from src.state_store import MemoryStore, StateStore

logger = logging.getLogger(__name__)

SettingsListener = Callable[["SessionSettings"], None]


@dataclass(frozen=True)
class SessionSettings:
    session_timeout_minutes: float = DEFAULT_SESSION_TIMEOUT_MINUTES
    ranked_interval_minutes: float = DEFAULT_RANKED_INTERVAL_MINUTES


def _positive_number(value) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and value > 0


class SessionSettingsService:
    """Persists SessionSettings under a single store key.

    Subscribers are called immediately with the current settings and again
    after every successful update.
    """

    def __init__(self, store: Optional[StateStore] = None):
        self.store = store or MemoryStore()
        self._listeners: List[SettingsListener] = []
        self._settings = self._load()

    @property
    def settings(self) -> SessionSettings:
        return self._settings

    def subscribe(self, listener: SettingsListener) -> Callable[[], None]:
        """Register a listener; returns a function that unregisters it."""
        self._listeners.append(listener)
        listener(self._settings)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def update(self, **changes) -> SessionSettings:
        """Apply and persist setting changes.

        Raises:
            ValueError: on an unknown key or a non-positive value.
        """
        known = {f.name for f in fields(SessionSettings)}
        for key, value in changes.items():
            if key not in known:
                raise ValueError(f"Unknown session setting: {key}")
            if not _positive_number(value):
                raise ValueError(f"{key} must be a positive number, got {value!r}")

        self._settings = replace(self._settings, **changes)
        self.store.set(SESSION_SETTINGS_KEY, asdict(self._settings))
        logger.info("Session settings updated: %s", changes)

        for listener in list(self._listeners):
            listener(self._settings)
        return self._settings

    def _load(self) -> SessionSettings:
        raw = self.store.get(SESSION_SETTINGS_KEY)
        if not isinstance(raw, dict):
            return SessionSettings()

        values = {}
        for f in fields(SessionSettings):
            value = raw.get(f.name)
            if value is None:
                continue
            if _positive_number(value):
                values[f.name] = value
            else:
                logger.warning("Ignoring invalid stored setting %s=%r", f.name, value)
        return SessionSettings(**values)
