"""
Credential store for the last-known identity.

The identity survives restarts as a single JSON record under one key of a
key-value backend. A corrupt record reads as "logged out" and is removed.
"""

import json
import logging
from collections.abc import MutableMapping
from pathlib import Path
from typing import Iterator, Optional

from .identity import Identity

logger = logging.getLogger(__name__)

STORAGE_KEY = "hms_user"


class JsonFileBackend(MutableMapping):
    """String key-value backend persisted to a JSON file (write-through)."""

    def __init__(self, path: Path):
        self.path = Path(path)
        self._data = self._read()

    def _read(self) -> dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            with open(self.path, encoding="utf-8") as f:
                data = json.load(f)
        except (json.JSONDecodeError, OSError, UnicodeDecodeError) as e:
            logger.warning(f"Ignoring unreadable state file {self.path}: {e}")
            return {}
        if not isinstance(data, dict):
            return {}
        return {k: v for k, v in data.items() if isinstance(k, str) and isinstance(v, str)}

    def _write(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(self._data, f, indent=2)
        tmp_path.replace(self.path)

    def __getitem__(self, key: str) -> str:
        return self._data[key]

    def __setitem__(self, key: str, value: str) -> None:
        self._data[key] = value
        self._write()

    def __delitem__(self, key: str) -> None:
        del self._data[key]
        self._write()

    def __iter__(self) -> Iterator[str]:
        return iter(self._data)

    def __len__(self) -> int:
        return len(self._data)


class CredentialStore:
    """Persists the last-known Identity across restarts."""

    def __init__(self, backend: Optional[MutableMapping] = None, key: str = STORAGE_KEY):
        self.backend = backend if backend is not None else {}
        self.key = key

    def load(self) -> Optional[Identity]:
        """Return the stored identity, or None if absent or corrupt."""
        raw = self.backend.get(self.key)
        if raw is None:
            return None
        try:
            return Identity.from_dict(json.loads(raw))
        except (TypeError, ValueError) as e:
            # json.JSONDecodeError is a ValueError
            logger.warning(f"Discarding corrupt stored identity: {e}")
            self.clear()
            return None

    def save(self, identity: Identity) -> None:
        self.backend[self.key] = json.dumps(identity.to_dict())

    def clear(self) -> None:
        self.backend.pop(self.key, None)
