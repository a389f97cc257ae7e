"""In-memory record store with persistence and change notification."""
import logging
from datetime import date
from typing import Callable, List, Optional, Union

from processor.event_processor import parse_record_date
from processor.models import EventDraft, Record, StoreSnapshot
from storage.persistent_cache import PersistentCache, epoch_millis

logger = logging.getLogger(__name__)

Subscriber = Callable[['RecordStore'], None]


class RecordStore:
    """
    Source of truth for the catalog while the app is running.

    Every mutating call persists through the cache and then notifies
    subscribers. ``generation`` advances on each change to the record list.
    """

    def __init__(
        self,
        cache: PersistentCache,
        subscribers: Optional[List[Subscriber]] = None,
        clock: Callable[[], int] = epoch_millis
    ):
        """
        Initialize an empty store.

        Args:
            cache: Persistent snapshot cache
            subscribers: Initial subscriber list, used in place
            clock: Returns the current time in epoch milliseconds
        """
        self.cache = cache
        self.clock = clock
        self.records: List[Record] = []
        self.is_loading = False
        self.error: Optional[str] = None
        self.generation = 0
        self._subscribers = subscribers if subscribers is not None else []
        self._last_id = 0

    def init(self) -> bool:
        """
        Load cached records into memory.

        Safe to call repeatedly; the list is left as-is when the cache has
        nothing to offer. User-created records held in memory but missing
        from the snapshot (a failed save) are kept ahead of the cached ones.

        Returns:
            True if cached records were installed
        """
        cached = self.cache.load()
        if not cached:
            return False

        cached_ids = {record.id for record in cached}
        unsaved = [
            record for record in self.records
            if record.is_user_created and record.id not in cached_ids
        ]
        self._replace(unsaved + cached)
        logger.info(f"Loaded {len(cached)} records from cache")

        if unsaved:
            logger.warning(f"Kept {len(unsaved)} user records missing from the snapshot")
            self.cache.save(self.records)

        self.notify()
        return True

    def subscribe(self, fn: Subscriber) -> Callable[[], None]:
        """
        Register a change listener.

        Returns:
            Callable that removes the listener
        """
        self._subscribers.append(fn)

        def unsubscribe() -> None:
            if fn in self._subscribers:
                self._subscribers.remove(fn)

        return unsubscribe

    def notify(self) -> None:
        """Call every subscriber with this store."""
        for fn in list(self._subscribers):
            fn(self)

    def snapshot(self) -> StoreSnapshot:
        """Immutable view of the current state for renderers."""
        return StoreSnapshot(
            records=tuple(self.records),
            is_loading=self.is_loading,
            error=self.error
        )

    def set_loading(self, is_loading: bool) -> None:
        self.is_loading = is_loading
        self.notify()

    def set_error(self, error: Optional[str]) -> None:
        self.error = error
        self.notify()

    def clear_error(self) -> None:
        self.error = None
        self.notify()

    def set_events(self, records: List[Record]) -> None:
        """
        Replace the whole record list, persist and notify.

        Args:
            records: New record list
        """
        self._replace(records)
        self.cache.save(self.records)
        self.notify()

    def add_event(self, draft: EventDraft) -> Record:
        """
        Store a user-authored event at the front of the list.

        Args:
            draft: Validated event draft

        Returns:
            The stored Record
        """
        record = Record(
            id=self._next_id(),
            title=draft.title,
            date=draft.date,
            location=draft.location,
            description=draft.description,
            is_user_created=True
        )

        self.records.insert(0, record)
        self.generation += 1

        if not self.cache.save(self.records):
            logger.warning(f"Event {record.id} kept in memory only; snapshot not saved")
        self.notify()
        return record

    def get_event_by_id(self, event_id: Union[int, str]) -> Optional[Record]:
        """
        Look up a record by id.

        Args:
            event_id: Integer id or its decimal string form

        Returns:
            Record or None if not found
        """
        try:
            wanted = int(event_id)
        except (TypeError, ValueError):
            return None

        for record in self.records:
            if record.id == wanted:
                return record
        return None

    def get_all_events(self) -> List[Record]:
        return list(self.records)

    def filter_events(self, keyword: Optional[str]) -> List[Record]:
        """
        Case-insensitive substring match over title, description and location.

        Args:
            keyword: Text to look for; empty returns every record

        Returns:
            Matching records in list order
        """
        if not keyword:
            return list(self.records)

        needle = keyword.lower()
        return [
            record for record in self.records
            if needle in record.title.lower()
            or needle in (record.description or '').lower()
            or needle in record.location.lower()
        ]

    def cleanup_past_events(self, today: Optional[date] = None) -> int:
        """
        Drop every record dated before today, user-created or not.

        Records whose date cannot be parsed are kept.

        Args:
            today: Reference date (default: today)

        Returns:
            Number of records removed
        """
        today = today or date.today()
        kept = []

        for record in self.records:
            event_date = parse_record_date(record.date)
            if event_date is None:
                logger.warning(f"Keeping record {record.id} with unparsable date {record.date!r}")
                kept.append(record)
            elif event_date >= today:
                kept.append(record)

        removed = len(self.records) - len(kept)
        if removed > 0:
            self._replace(kept)
            logger.info(f"Automatically removed {removed} past event(s)")
            self.cache.save(self.records)

        return removed

    def clear_all_data(self) -> None:
        """Empty the list and erase the persisted snapshot."""
        self._replace([])
        self.cache.clear()
        self.notify()

    def _replace(self, records: List[Record]) -> None:
        self.records = list(records)
        self.generation += 1
        self._last_id = max(
            [self._last_id] + [r.id for r in self.records if r.is_user_created]
        )

    def _next_id(self) -> int:
        # Clock-derived, strictly increasing even within one millisecond
        self._last_id = max(self.clock(), self._last_id + 1)
        return self._last_id
