"""Key-value state stores - persist JSON blobs under namespaced keys."""

import json
import logging
import re
from pathlib import Path
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)

_UNSAFE_KEY_CHARS = re.compile(r"[^A-Za-z0-9_.-]")


def namespaced_key(prefix: str, player_id: str) -> str:
    """Build a per-player storage key, e.g. ``rank_identity_state_v2_alice``."""
    return f"{prefix}_{player_id}"


class StateStore:
    """Interface for the persistent key-value store.

    Implementations must never raise on a missing key or malformed content;
    ``get`` returns None in both cases.
    """

    def get(self, key: str) -> Optional[Any]:
        raise NotImplementedError

    def set(self, key: str, value: Any) -> None:
        raise NotImplementedError

    def remove(self, key: str) -> None:
        raise NotImplementedError


class MemoryStore(StateStore):
    """Process-local store. Values are kept as JSON text so reads never alias."""

    def __init__(self):
        self._data: Dict[str, str] = {}

    def get(self, key: str) -> Optional[Any]:
        raw = self._data.get(key)
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except json.JSONDecodeError as e:
            logger.warning("Corrupt value for key %s: %s", key, e)
            return None

    def set(self, key: str, value: Any) -> None:
        self._data[key] = json.dumps(value)

    def set_raw(self, key: str, raw: str) -> None:
        """Store raw text as-is, bypassing JSON encoding (e.g. a corrupt payload)."""
        self._data[key] = raw

    def remove(self, key: str) -> None:
        self._data.pop(key, None)


class JsonFileStore(StateStore):
    """Stores each key as ``<key>.json`` inside a storage directory."""

    def __init__(self, storage_dir: Path):
        self.storage_dir = Path(storage_dir)
        self.storage_dir.mkdir(parents=True, exist_ok=True)

    def _path_for(self, key: str) -> Path:
        safe = _UNSAFE_KEY_CHARS.sub("_", key)
        return self.storage_dir / f"{safe}.json"

    def get(self, key: str) -> Optional[Any]:
        filepath = self._path_for(key)

        if not filepath.exists():
            return None

        try:
            with open(filepath, "r", encoding="utf-8") as f:
                return json.load(f)
        except (json.JSONDecodeError, OSError) as e:
            logger.warning("Corrupt state file %s: %s", filepath, e)
            return None

    def set(self, key: str, value: Any) -> None:
        filepath = self._path_for(key)
        tmp_path = filepath.with_suffix(".json.tmp")

        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(value, f, indent=2)
        tmp_path.replace(filepath)

        logger.debug("Saved state key %s to %s", key, filepath)

    def remove(self, key: str) -> None:
        filepath = self._path_for(key)
        if filepath.exists():
            filepath.unlink()
            logger.info("Removed state key %s", key)
