from __future__ import annotations

import logging
import time
from typing import Any, Callable, Iterable

from pydantic import ValidationError

from dermaai.config import DISEASE_CACHE_DURATION_MS, DISEASE_CACHE_KEY
from dermaai.memory.kv_store import KeyValueStore, StorageError
from dermaai.models import CacheInfo, CacheSnapshot, CachedDiseaseEntry

logger = logging.getLogger(__name__)


def _now_ms() -> int:
    return int(time.time() * 1000)


class DiseaseLookupCache:
    """
    Canonical disease records keyed by id and by label, persisted as a single
    snapshot that expires as a whole.

    Lookups never raise: storage or decoding problems degrade to a miss, and
    callers show the raw disease name instead.
    """

    def __init__(
        self,
        store: KeyValueStore,
        *,
        key: str = DISEASE_CACHE_KEY,
        expiry_ms: int = DISEASE_CACHE_DURATION_MS,
        clock: Callable[[], int] = _now_ms,
    ) -> None:
        self.store = store
        self.key = key
        self.expiry_ms = expiry_ms
        self.clock = clock

        self._by_id: dict[str, CachedDiseaseEntry] = {}
        self._by_label: dict[str, CachedDiseaseEntry] = {}
        self._loaded = False
        self._timestamp = 0
        self._expiry_time = 0

    # ----------------------------
    # Persistence
    # ----------------------------

    def _read_snapshot(self) -> CacheSnapshot | None:
        raw = self.store.get(self.key)
        if not raw:
            return None
        return CacheSnapshot.model_validate_json(raw)

    def _is_fresh(self, snapshot: CacheSnapshot) -> bool:
        return self.clock() - snapshot.timestamp < snapshot.expiry_time

    def _fill(self, entries: Iterable[CachedDiseaseEntry]) -> None:
        self._by_id.clear()
        self._by_label.clear()
        for entry in entries:
            previous = self._by_label.get(entry.label)
            if previous is not None and previous.id != entry.id:
                logger.warning(
                    "Duplicate disease label %r: %s replaces %s",
                    entry.label, entry.id, previous.id,
                )
            self._by_id[entry.id] = entry
            self._by_label[entry.label] = entry

    def _load_from_storage(self) -> bool:
        try:
            snapshot = self._read_snapshot()
        except (StorageError, ValidationError, ValueError) as e:
            logger.error("Error loading disease cache: %s", e)
            self.clear_cache()
            return False

        if snapshot is None:
            return False

        if not self._is_fresh(snapshot):
            logger.info("Disease cache expired, clearing")
            self.clear_cache()
            return False

        self._fill(snapshot.diseases)
        self._mark_loaded(snapshot)
        return True

    def _mark_loaded(self, snapshot: CacheSnapshot) -> None:
        self._timestamp = snapshot.timestamp
        self._expiry_time = snapshot.expiry_time
        self._loaded = True

    def _forget(self) -> None:
        self._by_id.clear()
        self._by_label.clear()
        self._loaded = False

    def _ensure_loaded(self) -> None:
        # storage may hold a newer snapshot from another instance
        if self._loaded and self.clock() - self._timestamp >= self._expiry_time:
            self._forget()
        if not self._loaded:
            self._load_from_storage()

    # ----------------------------
    # Public API
    # ----------------------------

    def has_data(self) -> bool:
        self._ensure_loaded()
        return bool(self._by_id)

    def get_by_id(self, disease_id: str) -> CachedDiseaseEntry | None:
        self._ensure_loaded()
        return self._by_id.get(disease_id)

    def get_by_label(self, label: str) -> CachedDiseaseEntry | None:
        self._ensure_loaded()
        return self._by_label.get(label)

    def get_disease_info(self, key: str) -> CachedDiseaseEntry | None:
        """Resolve an id or a label. Ids win when a key is both."""
        self._ensure_loaded()
        return self._by_id.get(key) or self._by_label.get(key)

    def update_cache(self, diseases: Iterable[Any]) -> None:
        entries: list[CachedDiseaseEntry] = []
        for d in diseases:
            if isinstance(d, CachedDiseaseEntry):
                entries.append(d)
                continue
            if not isinstance(d, dict):
                d = {"id": getattr(d, "id", None), "label": getattr(d, "label", None)}
            try:
                entries.append(CachedDiseaseEntry(id=d.get("id"), label=d.get("label")))
            except ValidationError:
                logger.warning("Skipping malformed disease entry: %r", d)

        snapshot = CacheSnapshot(
            diseases=entries,
            timestamp=self.clock(),
            expiry_time=self.expiry_ms,
        )
        self._fill(entries)
        self._mark_loaded(snapshot)

        try:
            self.store.set(self.key, snapshot.model_dump_json(by_alias=True))
        except StorageError as e:
            # memory cache stays usable for this process
            logger.error("Error saving disease cache: %s", e)

        logger.info("Disease cache updated with %d diseases", len(entries))

    def clear_cache(self) -> None:
        self._forget()
        try:
            self.store.delete(self.key)
        except StorageError as e:
            logger.error("Error clearing disease cache: %s", e)

    def is_valid(self) -> bool:
        try:
            snapshot = self._read_snapshot()
        except (StorageError, ValidationError, ValueError):
            return False
        return snapshot is not None and self._is_fresh(snapshot)

    def get_cache_info(self) -> CacheInfo:
        has_data = self.has_data()
        return CacheInfo(size=len(self._by_id), is_valid=self.is_valid(), has_data=has_data)
