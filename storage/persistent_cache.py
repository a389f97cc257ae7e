"""Versioned, timestamped snapshot cache over a key-value store."""
import json
import logging
import time
from typing import Any, Callable, Dict, List, Optional

from processor.models import CacheSnapshot, Record
from storage.kv_store import KeyValueStore, StorageError, StorageQuotaExceededError

logger = logging.getLogger(__name__)


def epoch_millis() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


class PersistentCache:
    """
    Saves and loads the catalog snapshot.

    Storage failures never propagate out of this class. When the underlying
    store is unusable every operation degrades to a no-op returning False or
    None, and the catalog keeps working from memory only.
    """

    DEFAULT_KEY = 'campuslife_events'
    VERSION = '1.0'
    MAX_AGE_MS = 24 * 60 * 60 * 1000
    EVICTION_AGE_MS = 7 * 24 * 60 * 60 * 1000
    PROBE_KEY = '__storage_test__'

    def __init__(
        self,
        store: KeyValueStore,
        key: str = DEFAULT_KEY,
        clock: Callable[[], int] = epoch_millis
    ):
        """
        Initialize the cache and probe the store.

        Args:
            store: Key-value store holding the snapshot
            key: Name of the snapshot key
            clock: Returns the current time in epoch milliseconds
        """
        self.store = store
        self.key = key
        self.clock = clock
        self.is_available = self._check_availability()

    def _check_availability(self) -> bool:
        try:
            self.store.set(self.PROBE_KEY, self.PROBE_KEY)
            self.store.delete(self.PROBE_KEY)
            return True
        except StorageError as e:
            logger.warning(f"Persistent store not available, running memory-only: {e}")
            return False

    def save(self, records: List[Record]) -> bool:
        """
        Persist a snapshot of records.

        On a quota failure stale keys are evicted and the write is retried once
        with a minimal payload. The previous snapshot stays intact if both
        attempts fail.

        Args:
            records: Records to persist

        Returns:
            True if the snapshot was written, False otherwise
        """
        if not self.is_available:
            logger.warning("Storage not available, records not saved")
            return False

        items = [record.to_dict() for record in records]

        try:
            self.store.set(self.key, json.dumps({
                'records': items,
                'timestamp': self.clock(),
                'version': self.VERSION
            }))
            return True
        except StorageQuotaExceededError as e:
            logger.warning(f"Storage quota exceeded, evicting stale entries: {e}")
        except StorageError as e:
            logger.error(f"Error saving snapshot: {e}")
            return False

        self.evict_stale()
        try:
            self.store.set(self.key, json.dumps({
                'records': items,
                'timestamp': self.clock()
            }))
            logger.info(f"Saved {len(items)} records after eviction")
            return True
        except StorageError as e:
            logger.error(f"Still failed to save snapshot after eviction: {e}")
            return False

    def load(self) -> Optional[List[Record]]:
        """
        Load the cached records, applying the staleness policy.

        Snapshots older than 24 hours keep only user-created records, which are
        re-saved with a fresh timestamp. A stale snapshot without user records
        is erased.

        Returns:
            List of Record objects, or None if nothing usable is cached
        """
        if not self.is_available:
            return None

        snapshot = self.read_snapshot()
        if snapshot is None:
            return None

        age = self.clock() - snapshot.timestamp
        if age <= self.MAX_AGE_MS:
            return snapshot.records

        user_records = [r for r in snapshot.records if r.is_user_created]
        if user_records:
            logger.info(
                f"Snapshot is stale ({age} ms); keeping {len(user_records)} "
                f"user-created of {len(snapshot.records)} records"
            )
            self.save(user_records)
            return user_records

        logger.info(f"Snapshot is stale ({age} ms) with no user records; clearing")
        self.clear()
        return None

    def read_snapshot(self) -> Optional[CacheSnapshot]:
        """
        Read and decode the raw snapshot without applying staleness rules.

        Returns:
            CacheSnapshot, or None if missing or malformed
        """
        try:
            raw = self.store.get(self.key)
        except StorageError as e:
            logger.error(f"Error loading snapshot: {e}")
            return None

        if raw is None:
            return None

        try:
            data = json.loads(raw)
            timestamp = data['timestamp']
            items = data['records']
            if isinstance(timestamp, bool) or not isinstance(timestamp, (int, float)):
                raise ValueError(f"timestamp is not a number: {timestamp!r}")
            if not isinstance(items, list):
                raise ValueError("records is not a list")
            records = [Record.from_dict(item) for item in items]
        except (ValueError, TypeError, KeyError) as e:
            logger.warning(f"Ignoring malformed snapshot under {self.key!r}: {e}")
            return None

        return CacheSnapshot(
            records=records,
            timestamp=int(timestamp),
            version=data.get('version')
        )

    def clear(self) -> bool:
        """
        Remove the snapshot key.

        Returns:
            True if the key was removed, False otherwise
        """
        if not self.is_available:
            return False

        try:
            self.store.delete(self.key)
            return True
        except StorageError as e:
            logger.error(f"Error clearing snapshot: {e}")
            return False

    def evict_stale(self) -> int:
        """
        Remove every key in the store whose payload timestamp is over 7 days old.

        Keys without a timestamp field and unparsable values are left alone.

        Returns:
            Number of keys removed
        """
        if not self.is_available:
            return 0

        now = self.clock()
        removed = 0

        try:
            keys = self.store.keys()
        except StorageError as e:
            logger.error(f"Error listing keys for eviction: {e}")
            return 0

        for key in keys:
            try:
                data = json.loads(self.store.get(key) or '')
                timestamp = data['timestamp']
                if now - timestamp > self.EVICTION_AGE_MS:
                    self.store.delete(key)
                    removed += 1
            except (ValueError, TypeError, KeyError):
                continue
            except StorageError as e:
                logger.warning(f"Skipping key {key!r} during eviction: {e}")
                continue

        logger.info(f"Evicted {removed} stale keys")
        return removed

    def storage_info(self) -> Dict[str, Any]:
        """
        Report approximate space used by the store.

        Returns:
            Dict with ``used_kb`` and ``available``
        """
        if not self.is_available:
            return {'used_kb': 0.0, 'available': False}

        try:
            used = 0
            for key in self.store.keys():
                used += len(key) + len(self.store.get(key) or '')
        except StorageError as e:
            logger.warning(f"Unable to measure storage usage: {e}")
            return {'used_kb': None, 'available': False}

        return {'used_kb': round(used / 1024, 2), 'available': True}
