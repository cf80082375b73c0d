"""Key-value storage tiers backing the token store.

The durable tier survives process restarts (a JSON file on disk); the
ephemeral tier lives only as long as the process.
"""

import json
from pathlib import Path
from typing import Iterable, Mapping, Optional, Protocol

from telo_auth.utils.logging import get_logger

logger = get_logger(__name__)


class StorageTier(Protocol):
    """Port interface for a string key-value tier."""

    def get(self, key: str) -> Optional[str]:
        """Return the stored value, or None if the key is absent."""
        ...

    def set(self, key: str, value: str) -> None:
        """Store a value, replacing any previous one."""
        ...

    def remove(self, key: str) -> None:
        """Remove a key. Removing an absent key is not an error."""
        ...

    def update(self, values: Mapping[str, str], remove: Iterable[str] = ()) -> None:
        """Apply several writes and removals as one unit."""
        ...

    def keys(self) -> list[str]:
        """List the stored keys."""
        ...


class MemoryTier:
    """Ephemeral tier scoped to the current process."""

    def __init__(self) -> None:
        self._data: dict[str, str] = {}

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def remove(self, key: str) -> None:
        self._data.pop(key, None)

    def update(self, values: Mapping[str, str], remove: Iterable[str] = ()) -> None:
        for key in remove:
            self._data.pop(key, None)
        self._data.update(values)

    def keys(self) -> list[str]:
        return list(self._data)


class FileTier:
    """Durable tier persisted as a single JSON object on disk.

    Every write rewrites the whole file through a temporary sibling so a
    crash mid-write never leaves a truncated file behind. `update` applies
    all of its changes in one rewrite.
    """

    def __init__(self, path: str | Path):
        self.path = Path(path)

    def _load(self) -> dict[str, str]:
        try:
            raw = self.path.read_bytes()
        except FileNotFoundError:
            return {}

        try:
            data = json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError):
            logger.warning(f"Ignoring corrupt session store at {self.path}")
            return {}

        if not isinstance(data, dict):
            logger.warning(f"Ignoring unexpected session store layout at {self.path}")
            return {}

        return {k: v for k, v in data.items() if isinstance(v, str)}

    def _save(self, data: dict[str, str]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp_path.write_text(json.dumps(data), encoding="utf-8")
        tmp_path.replace(self.path)

    def get(self, key: str) -> Optional[str]:
        return self._load().get(key)

    def set(self, key: str, value: str) -> None:
        self.update({key: value})

    def remove(self, key: str) -> None:
        self.update({}, remove=[key])

    def update(self, values: Mapping[str, str], remove: Iterable[str] = ()) -> None:
        data = self._load()
        changed = dict(data)
        for key in remove:
            changed.pop(key, None)
        changed.update(values)
        if changed != data:
            self._save(changed)

    def keys(self) -> list[str]:
        return list(self._load())
