"""Unit tests for SyncOrchestrator."""
import asyncio
from datetime import date, timedelta

import pytest

from processor.models import EventDraft, Record
from remote.events_api import EventNotFoundError, RemoteSourceError
from state.record_store import RecordStore
from storage.kv_store import InMemoryKeyValueStore
from storage.persistent_cache import PersistentCache
from sync.orchestrator import DEFAULT_DESCRIPTION, SyncOrchestrator, merge_records

TODAY = date(2030, 6, 15)


def iso(days: int) -> str:
    return (TODAY + timedelta(days=days)).isoformat()


def remote_record(i: int, days: int = 5) -> Record:
    return Record(id=i, title=f'Campus Event {i}', date=iso(days), location='Campus Venue')


def user_record(i: int, days: int = 5) -> Record:
    return Record(id=i, title=f'My Event {i}', date=iso(days), location='Dorm',
                  is_user_created=True)


class FakeRemote:
    """Remote source whose responses are scripted per call."""

    def __init__(self):
        self.responses = []
        self.submitted = []
        self.submit_error = None
        self.by_id = {}

    def respond(self, result=None, error=None, gate=None):
        self.responses.append((result, error, gate))

    async def fetch_all_events_async(self):
        result, error, gate = self.responses.pop(0)
        if gate is not None:
            await gate.wait()
        if error is not None:
            raise error
        return list(result)

    async def fetch_event_by_id_async(self, event_id):
        try:
            return self.by_id[int(event_id)]
        except KeyError:
            raise EventNotFoundError(404, "Event not found")

    async def submit_event_async(self, draft):
        if self.submit_error is not None:
            raise self.submit_error
        self.submitted.append(draft)
        return {'success': True, 'id': 101}


@pytest.fixture
def cache():
    return PersistentCache(InMemoryKeyValueStore())


@pytest.fixture
def store(cache):
    return RecordStore(cache)


@pytest.fixture
def remote():
    return FakeRemote()


@pytest.fixture
def orchestrator(store, remote):
    return SyncOrchestrator(store, remote, today=lambda: TODAY)


def test_merge_records_keeps_user_records_first():
    """Test merge drops stale remote records and keeps user ones first."""
    current = [remote_record(1), user_record(10), remote_record(2), user_record(11)]
    fetched = [remote_record(3), remote_record(4)]

    merged = merge_records(current, fetched)

    assert [r.id for r in merged] == [10, 11, 3, 4]


class TestViewCatalog:
    """Refresh flow."""

    @pytest.mark.asyncio
    async def test_cache_first_then_refresh(self, cache, store, remote, orchestrator):
        """Test cached records paint first and are merged with fetched ones."""
        cache.save([user_record(10), remote_record(1)])
        remote.respond([remote_record(2), remote_record(3)])
        snapshots = []
        store.subscribe(lambda s: snapshots.append(s.snapshot()))

        result = await orchestrator.view_catalog()

        first_paint = next(s for s in snapshots if s.records)
        assert [r.id for r in first_paint.records] == [10, 1]
        assert result.from_cache is True
        assert result.refreshed is True
        assert [r.id for r in result.records] == [10, 2, 3]
        assert [r.id for r in cache.load()] == [10, 2, 3]
        assert store.is_loading is False
        assert store.error is None

    @pytest.mark.asyncio
    async def test_merge_is_idempotent(self, store, remote, orchestrator):
        """Test repeated refreshes with the same batch converge."""
        store.add_event(EventDraft(title='Book Club', date=iso(2), location='Library'))
        batch = [remote_record(1), remote_record(2)]
        remote.respond(batch)
        remote.respond(batch)

        first = await orchestrator.view_catalog()
        second = await orchestrator.view_catalog()

        assert first.records == second.records
        assert len(second.records) == 3

    @pytest.mark.asyncio
    async def test_refresh_cleans_up_past_events(self, store, remote, orchestrator):
        """Test past records are dropped after the merge."""
        store.set_events([user_record(10, days=-2), user_record(11, days=1)])
        remote.respond([remote_record(1, days=-1), remote_record(2, days=0)])

        result = await orchestrator.view_catalog()

        assert [r.id for r in result.records] == [11, 2]
        assert result.removed_past == 2

    @pytest.mark.asyncio
    async def test_failure_with_cached_records_is_stale(self, cache, store, remote, orchestrator):
        """Test a failed fetch keeps showing cached data."""
        cache.save([remote_record(1)])
        remote.respond(error=RemoteSourceError("request failed"))

        result = await orchestrator.view_catalog()

        assert result.stale is True
        assert result.error == "request failed"
        assert [r.id for r in result.records] == [1]
        assert store.error == "request failed"
        assert store.is_loading is False

    @pytest.mark.asyncio
    async def test_failure_without_records(self, store, remote, orchestrator):
        """Test a failed fetch with nothing cached surfaces the error."""
        remote.respond(error=RemoteSourceError("request failed"))

        result = await orchestrator.view_catalog()

        assert result.stale is False
        assert result.records == []
        assert result.error == "request failed"

    @pytest.mark.asyncio
    async def test_error_cleared_on_next_view(self, store, remote, orchestrator):
        remote.respond(error=RemoteSourceError("request failed"))
        remote.respond([remote_record(1)])

        await orchestrator.view_catalog()
        await orchestrator.view_catalog()

        assert store.error is None

    @pytest.mark.asyncio
    async def test_user_records_added_during_fetch_survive(self, store, remote, orchestrator):
        """Test the merge uses the list as it is after the fetch resumes."""
        gate = asyncio.Event()
        remote.respond([remote_record(1)], gate=gate)

        task = asyncio.create_task(orchestrator.view_catalog())
        await asyncio.sleep(0)
        added = store.add_event(EventDraft(title='Late Add', date=iso(3), location='Hub'))
        gate.set()
        result = await task

        assert [r.id for r in result.records] == [added.id, 1]

    @pytest.mark.asyncio
    async def test_unsaved_user_record_survives_refresh(self, remote):
        """Test a user record the cache could not save is not lost on the next view."""
        store = RecordStore(PersistentCache(InMemoryKeyValueStore(quota_bytes=900)))
        orchestrator = SyncOrchestrator(store, remote, today=lambda: TODAY)
        remote.respond([remote_record(1)])

        small = store.add_event(EventDraft(title='Book Club', date=iso(3), location='Library'))
        big = store.add_event(EventDraft(title='Poetry Night', date=iso(4), location='Cafe',
                                         description='D' * 600))
        result = await orchestrator.view_catalog()

        assert big in store.records
        assert small in store.records
        assert [r.id for r in result.records] == [big.id, small.id, 1]

    @pytest.mark.asyncio
    async def test_superseded_fetch_is_discarded(self, store, remote, orchestrator):
        """Test an older refresh finishing last does not overwrite newer state."""
        slow_gate = asyncio.Event()
        fast_gate = asyncio.Event()
        remote.respond([remote_record(1)], gate=slow_gate)
        remote.respond([remote_record(2)], gate=fast_gate)

        slow = asyncio.create_task(orchestrator.view_catalog())
        await asyncio.sleep(0)
        fast = asyncio.create_task(orchestrator.view_catalog())
        await asyncio.sleep(0)

        fast_gate.set()
        fast_result = await fast
        slow_gate.set()
        slow_result = await slow

        assert fast_result.refreshed is True
        assert slow_result.discarded is True
        assert [r.id for r in store.records] == [2]
        assert store.is_loading is False

    @pytest.mark.asyncio
    async def test_superseded_failure_leaves_no_error(self, store, remote, orchestrator):
        slow_gate = asyncio.Event()
        remote.respond(error=RemoteSourceError("request failed"), gate=slow_gate)
        remote.respond([remote_record(2)])

        slow = asyncio.create_task(orchestrator.view_catalog())
        await asyncio.sleep(0)
        await orchestrator.view_catalog()
        slow_gate.set()
        slow_result = await slow

        assert slow_result.discarded is True
        assert store.error is None


class TestSubmitEvent:
    """Optimistic submission."""

    @pytest.mark.asyncio
    async def test_valid_submission(self, store, remote, orchestrator):
        """Test a valid draft is stored, trimmed and sent."""
        draft = EventDraft(title='  Book Club  ', date=iso(3), location=' Library ', description='')

        result = await orchestrator.submit_event(draft)

        assert result.success is True
        assert result.remote_accepted is True
        assert result.remote_id == 101
        assert store.records == [result.record]
        assert result.record.title == 'Book Club'
        assert result.record.location == 'Library'
        assert result.record.description == DEFAULT_DESCRIPTION
        assert remote.submitted[0].title == 'Book Club'

    @pytest.mark.asyncio
    async def test_remote_failure_keeps_local_record(self, store, remote, orchestrator):
        """Test remote failures never roll back the local add."""
        remote.submit_error = RemoteSourceError("request failed")

        result = await orchestrator.submit_event(
            EventDraft(title='Chess Night', date=iso(1), location='Hall B')
        )

        assert result.success is True
        assert result.remote_accepted is False
        assert store.records == [result.record]

    @pytest.mark.asyncio
    async def test_invalid_draft_leaves_list_unchanged(self, store, remote, orchestrator):
        """Test rejected drafts do not mutate the store."""
        store.set_events([remote_record(1)])

        result = await orchestrator.submit_event(
            EventDraft(title='No', date=iso(-1), location='')
        )

        assert result.success is False
        assert 'Event name must be at least 3 characters' in result.errors
        assert [r.id for r in store.records] == [1]
        assert remote.submitted == []


class TestGetEvent:
    """Detail lookup."""

    @pytest.mark.asyncio
    async def test_local_hit(self, store, orchestrator):
        store.set_events([remote_record(1)])

        record = await orchestrator.get_event('1')

        assert record.id == 1

    @pytest.mark.asyncio
    async def test_remote_fallback(self, remote, orchestrator):
        remote.by_id[5] = remote_record(5)

        record = await orchestrator.get_event(5)

        assert record.id == 5

    @pytest.mark.asyncio
    async def test_not_found(self, orchestrator):
        with pytest.raises(EventNotFoundError):
            await orchestrator.get_event(404)
