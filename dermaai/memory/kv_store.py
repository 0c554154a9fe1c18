from __future__ import annotations

import re
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict


class StorageError(Exception):
    """A value could not be read, written or removed."""


_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]")


def _check_quota(key: str, value: str, max_value_bytes: int | None) -> None:
    if max_value_bytes is None:
        return
    size = len(value.encode("utf-8"))
    if size > max_value_bytes:
        raise StorageError(
            f"Quota exceeded for {key!r}: {size} bytes > {max_value_bytes} bytes"
        )


class KeyValueStore(ABC):
    """String key/value storage. Implementations raise StorageError on failure."""

    @abstractmethod
    def get(self, key: str) -> str | None:
        ...

    @abstractmethod
    def set(self, key: str, value: str) -> None:
        ...

    @abstractmethod
    def delete(self, key: str) -> None:
        ...


class MemoryStore(KeyValueStore):
    def __init__(self, max_value_bytes: int | None = None) -> None:
        self._data: Dict[str, str] = {}
        self.max_value_bytes = max_value_bytes

    def get(self, key: str) -> str | None:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        _check_quota(key, value, self.max_value_bytes)
        self._data[key] = value

    def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self) -> list[str]:
        return list(self._data)


class JsonFileStore(KeyValueStore):
    """
    One file per key under `directory`.

    Keys are sanitized into file names, so two keys differing only in
    unsafe characters share a file.
    """

    def __init__(self, directory: str | Path, max_value_bytes: int | None = None) -> None:
        self.directory = Path(directory)
        self.max_value_bytes = max_value_bytes

    def _path(self, key: str) -> Path:
        return self.directory / f"{_UNSAFE_CHARS.sub('_', key)}.json"

    def get(self, key: str) -> str | None:
        path = self._path(key)
        if not path.exists():
            return None
        try:
            return path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            raise StorageError(f"Cannot read {path}: {e}") from e

    def set(self, key: str, value: str) -> None:
        _check_quota(key, value, self.max_value_bytes)
        path = self._path(key)
        tmp = path.with_suffix(".tmp")
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            tmp.write_text(value, encoding="utf-8")
            tmp.replace(path)
        except OSError as e:
            raise StorageError(f"Cannot write {path}: {e}") from e

    def delete(self, key: str) -> None:
        try:
            self._path(key).unlink(missing_ok=True)
        except OSError as e:
            raise StorageError(f"Cannot remove {key!r}: {e}") from e


class NamespacedStore(KeyValueStore):
    """View over another store with every key prefixed (one per session)."""

    def __init__(self, store: KeyValueStore, prefix: str) -> None:
        self.store = store
        self.prefix = prefix

    def get(self, key: str) -> str | None:
        return self.store.get(self.prefix + key)

    def set(self, key: str, value: str) -> None:
        self.store.set(self.prefix + key, value)

    def delete(self, key: str) -> None:
        self.store.delete(self.prefix + key)
