"""Durable key-value storage backends for client-side state.

KeyValueStorage is the narrow interface the auth cache writes through.
JsonFileStorage keeps every key in one JSON document on disk and replaces
the file atomically on each write; InMemoryStorage is the process-local
variant used by tests and throwaway sessions.

Backends raise OSError (or ValueError for an unreadable document) and leave
the decision to swallow it to the caller.
"""

from __future__ import annotations

import json
import os
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path


class KeyValueStorage(ABC):
    """String-to-string storage that survives the process (or not, for tests)."""

    @abstractmethod
    def get(self, key: str) -> str | None:
        """Return the stored value, or None if the key is absent."""
        ...

    @abstractmethod
    def set(self, key: str, value: str) -> None:
        """Store value under key, replacing any previous value."""
        ...

    @abstractmethod
    def delete(self, key: str) -> None:
        """Remove key. Missing keys are not an error."""
        ...


class InMemoryStorage(KeyValueStorage):
    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self._data: dict[str, str] = dict(initial or {})

    def get(self, key: str) -> str | None:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def delete(self, key: str) -> None:
        self._data.pop(key, None)


class JsonFileStorage(KeyValueStorage):
    """All keys in a single JSON object file.

    Usage:
        storage = JsonFileStorage(Path("~/.salesboost/auth.json").expanduser())
        storage.set("salesSpark_auth", '{"user": null, "timestamp": 0}')
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path).expanduser()

    def _load(self) -> dict[str, str]:
        try:
            raw = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return {}
        if not raw.strip():
            return {}
        data = json.loads(raw)
        if not isinstance(data, dict):
            raise ValueError(f"storage file {self.path} does not hold a JSON object")
        return data

    def _dump(self, data: dict[str, str]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=self.path.parent, prefix=".tmp-", suffix=".json")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(data, fh)
            os.replace(tmp_name, self.path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    def get(self, key: str) -> str | None:
        value = self._load().get(key)
        return value if isinstance(value, str) else None

    def set(self, key: str, value: str) -> None:
        try:
            data = self._load()
        except ValueError:
            # Unreadable document: start over rather than refuse every write
            data = {}
        data[key] = value
        self._dump(data)

    def delete(self, key: str) -> None:
        try:
            data = self._load()
        except ValueError:
            data = {}
        if key in data:
            del data[key]
        self._dump(data)
