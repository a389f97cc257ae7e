"""Cache-first refresh and merge of the event catalog."""
import logging
from datetime import date
from typing import Callable, Iterable, List, Union

from processor.event_validator import validate_draft
from processor.models import EventDraft, Record, SubmitResult, SyncResult
from remote.events_api import RemoteSourceError
from state.record_store import RecordStore

logger = logging.getLogger(__name__)

DEFAULT_DESCRIPTION = "No description provided"


def merge_records(current: Iterable[Record], fetched: Iterable[Record]) -> List[Record]:
    """
    Reconcile local records with a freshly fetched batch.

    User-created records survive, everything else is replaced by the fetched
    batch. User content comes first.

    Args:
        current: Records currently held in memory
        fetched: Records returned by the remote source

    Returns:
        Merged record list
    """
    user_records = [record for record in current if record.is_user_created]
    return user_records + list(fetched)


class SyncOrchestrator:
    """
    Runs the catalog refresh invoked when the catalog view opens.

    Each call to ``view_catalog`` takes a ticket from a monotonic counter. A
    fetch that completes after a newer refresh has started is discarded, so
    a slow response can never overwrite newer state.
    """

    def __init__(
        self,
        store: RecordStore,
        remote,
        today: Callable[[], date] = date.today
    ):
        """
        Initialize the orchestrator.

        Args:
            store: Record store to read and update
            remote: Remote source exposing ``fetch_all_events_async``,
                ``fetch_event_by_id_async`` and ``submit_event_async``
            today: Returns the reference date for past-event cleanup
        """
        self.store = store
        self.remote = remote
        self.today = today
        self.sync_generation = 0

    async def view_catalog(self) -> SyncResult:
        """
        Show cached records, then refresh from the remote source.

        Returns:
            SyncResult describing what the view should show
        """
        self.sync_generation += 1
        ticket = self.sync_generation

        self.store.clear_error()
        from_cache = self.store.init()
        self.store.set_loading(True)

        try:
            fetched = await self.remote.fetch_all_events_async()
        except RemoteSourceError as e:
            if ticket != self.sync_generation:
                logger.info(f"Ignoring failure of superseded refresh {ticket}: {e}")
                return self._discarded(from_cache)

            message = str(e)
            self.store.set_error(message)
            self.store.set_loading(False)

            stale = bool(self.store.records)
            if stale:
                logger.warning(
                    f"Could not fetch latest events, showing {len(self.store.records)} "
                    f"cached records: {message}"
                )
            else:
                logger.error(f"Could not fetch events and nothing is cached: {message}")

            return SyncResult(
                records=self.store.get_all_events(),
                from_cache=from_cache,
                refreshed=False,
                stale=stale,
                error=message
            )

        if ticket != self.sync_generation:
            logger.info(
                f"Discarding result of refresh {ticket}; refresh "
                f"{self.sync_generation} is newer"
            )
            return self._discarded(from_cache)

        # Partition the list as it is now, not as it was before the fetch
        merged = merge_records(self.store.records, fetched)
        self.store.set_events(merged)
        removed = self.store.cleanup_past_events(today=self.today())
        self.store.set_loading(False)

        logger.info(
            f"Refresh {ticket} merged {len(fetched)} fetched records; "
            f"{len(self.store.records)} in catalog, {removed} past removed"
        )
        return SyncResult(
            records=self.store.get_all_events(),
            from_cache=from_cache,
            refreshed=True,
            stale=False,
            removed_past=removed
        )

    async def submit_event(self, draft: EventDraft) -> SubmitResult:
        """
        Validate and store a user event, then send it to the remote source.

        The local record is kept even when the remote submission fails.

        Args:
            draft: Raw event draft

        Returns:
            SubmitResult with the stored record or validation errors
        """
        validation = validate_draft(draft, today=self.today())
        if not validation.is_valid:
            logger.info(f"Rejected event draft: {validation.errors}")
            return SubmitResult(success=False, errors=validation.errors)

        clean = EventDraft(
            title=draft.title.strip(),
            date=draft.date,
            location=draft.location.strip(),
            description=(draft.description or '').strip() or DEFAULT_DESCRIPTION
        )
        record = self.store.add_event(clean)

        try:
            response = await self.remote.submit_event_async(clean)
        except RemoteSourceError as e:
            logger.warning(f"Remote submission failed, event {record.id} saved locally: {e}")
            return SubmitResult(success=True, record=record)

        return SubmitResult(
            success=True,
            record=record,
            remote_accepted=bool(response.get('success')),
            remote_id=response.get('id')
        )

    async def get_event(self, event_id: Union[int, str]) -> Record:
        """
        Find an event locally, falling back to the remote source.

        Raises:
            EventNotFoundError: If neither side knows the event
            RemoteSourceError: If the remote lookup fails
        """
        record = self.store.get_event_by_id(event_id)
        if record is not None:
            return record

        logger.info(f"Event {event_id} not in catalog, fetching from remote source")
        return await self.remote.fetch_event_by_id_async(event_id)

    def _discarded(self, from_cache: bool) -> SyncResult:
        return SyncResult(
            records=self.store.get_all_events(),
            from_cache=from_cache,
            refreshed=False,
            stale=False,
            discarded=True
        )
