"""Entry point for the event catalog, called by the view router."""
import asyncio
import json
import logging
import os
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Mapping, Optional

from processor.models import EventDraft, StoreSnapshot
from processor.search_index import SearchIndex
from remote.events_api import EventNotFoundError, EventsAPIClient, RemoteSourceError
from state.record_store import RecordStore
from storage.kv_store import DynamoDBKeyValueStore, InMemoryKeyValueStore, KeyValueStore
from storage.persistent_cache import PersistentCache
from sync.orchestrator import SyncOrchestrator

logger = logging.getLogger(__name__)


# Configure JSON logging
class JsonFormatter(logging.Formatter):
    """Custom JSON formatter for structured logging."""

    RESERVED = set(vars(logging.LogRecord('', 0, '', 0, '', (), None))) | {'message', 'asctime'}

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_data = {
            'timestamp': self.formatTime(record),
            'level': record.levelname,
            'message': record.getMessage(),
            'logger': record.name
        }

        # Fields passed through extra=
        for key, value in vars(record).items():
            if key not in self.RESERVED:
                log_data[key] = value

        if record.exc_info:
            log_data['exception'] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


def setup_logging(log_level: str = 'INFO') -> None:
    """
    Configure logging with JSON formatter.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
    """
    root_logger = logging.getLogger()

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler()
    handler.setFormatter(JsonFormatter())
    root_logger.addHandler(handler)

    root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))


@dataclass
class CatalogConfig:
    """Runtime settings read from the environment."""
    api_url: str = EventsAPIClient.DEFAULT_BASE_URL
    store_backend: str = 'memory'
    table_name: str = 'campuslife-cache'
    cache_key: str = PersistentCache.DEFAULT_KEY
    log_level: str = 'INFO'
    timeout_seconds: int = 30
    max_retries: int = 3
    retry_base_delay: float = 1.0
    page_size: int = SearchIndex.DEFAULT_PAGE_SIZE


def load_config(environ: Optional[Mapping[str, str]] = None) -> CatalogConfig:
    """
    Read configuration from environment variables.

    Args:
        environ: Mapping to read from (default: os.environ)

    Returns:
        CatalogConfig
    """
    env = os.environ if environ is None else environ
    return CatalogConfig(
        api_url=env.get('CATALOG_API_URL', EventsAPIClient.DEFAULT_BASE_URL),
        store_backend=env.get('CATALOG_STORE', 'memory').lower(),
        table_name=env.get('CATALOG_TABLE_NAME', 'campuslife-cache'),
        cache_key=env.get('CATALOG_CACHE_KEY', PersistentCache.DEFAULT_KEY),
        log_level=env.get('LOG_LEVEL', 'INFO'),
        timeout_seconds=int(env.get('TIMEOUT_SECONDS', '30')),
        max_retries=int(env.get('MAX_RETRIES', '3')),
        retry_base_delay=float(env.get('RETRY_BASE_DELAY', '1.0')),
        page_size=int(env.get('PAGE_SIZE', str(SearchIndex.DEFAULT_PAGE_SIZE)))
    )


def build_kv_store(config: CatalogConfig) -> KeyValueStore:
    """Create the key-value backend named by the configuration."""
    if config.store_backend == 'dynamodb':
        return DynamoDBKeyValueStore(table_name=config.table_name)
    if config.store_backend != 'memory':
        raise ValueError(f"Unknown CATALOG_STORE backend: {config.store_backend}")
    return InMemoryKeyValueStore()


def _response(status_code: int, body: Dict[str, Any]) -> Dict[str, Any]:
    return {'statusCode': status_code, 'body': json.dumps(body)}


class CatalogApp:
    """
    Wires the catalog core together and answers router requests.

    Each request is a dict with an ``action`` key; responses carry a
    ``statusCode`` and a JSON ``body``.
    """

    def __init__(
        self,
        store: RecordStore,
        orchestrator: SyncOrchestrator,
        search_index: SearchIndex,
        renderer: Optional[Callable[[StoreSnapshot], None]] = None
    ):
        self.store = store
        self.orchestrator = orchestrator
        self.search_index = search_index
        if renderer is not None:
            store.subscribe(lambda s: renderer(s.snapshot()))

        self._actions = {
            'view': self._handle_view,
            'submit': self._handle_submit,
            'detail': self._handle_detail,
            'search': self._handle_search,
            'next_page': self._handle_next_page,
            'filter': self._handle_filter,
            'clear': self._handle_clear,
            'storage_info': self._handle_storage_info,
        }

    @classmethod
    def from_config(
        cls,
        config: CatalogConfig,
        renderer: Optional[Callable[[StoreSnapshot], None]] = None,
        kv_store: Optional[KeyValueStore] = None,
        remote=None
    ) -> 'CatalogApp':
        """
        Build the application from configuration.

        Args:
            config: Runtime settings
            renderer: Optional render collaborator fed store snapshots
            kv_store: Key-value backend override
            remote: Remote source override
        """
        cache = PersistentCache(
            kv_store or build_kv_store(config), key=config.cache_key
        )
        store = RecordStore(cache)
        remote = remote or EventsAPIClient(
            base_url=config.api_url,
            timeout=config.timeout_seconds,
            max_retries=config.max_retries,
            base_delay=config.retry_base_delay
        )
        return cls(
            store=store,
            orchestrator=SyncOrchestrator(store, remote),
            search_index=SearchIndex(page_size=config.page_size),
            renderer=renderer
        )

    async def handle(self, request: Dict[str, Any]) -> Dict[str, Any]:
        """
        Dispatch a router request.

        Args:
            request: Dict with ``action`` and action-specific fields

        Returns:
            Response dict with statusCode and JSON body
        """
        action = request.get('action')
        handler = self._actions.get(action)
        if handler is None:
            return _response(400, {'message': f"Unknown action: {action}"})

        start_time = time.time()
        try:
            return await handler(request)
        except Exception as e:
            duration = time.time() - start_time
            logger.error(
                f"Catalog action '{action}' failed: {str(e)}",
                extra={
                    'duration_seconds': round(duration, 2),
                    'error_type': type(e).__name__
                },
                exc_info=True
            )
            return _response(500, {
                'message': 'Catalog request failed',
                'error': str(e),
                'error_type': type(e).__name__
            })

    async def _handle_view(self, request: Dict[str, Any]) -> Dict[str, Any]:
        result = await self.orchestrator.view_catalog()
        body = {
            'records': [record.to_dict() for record in result.records],
            'fromCache': result.from_cache,
            'stale': result.stale,
            'removedPast': result.removed_past,
            'error': result.error
        }

        if result.error and not result.records:
            body['retry'] = True
            return _response(503, body)
        return _response(200, body)

    async def _handle_submit(self, request: Dict[str, Any]) -> Dict[str, Any]:
        form = request.get('form') or {}
        draft = EventDraft(
            title=form.get('eventName') or '',
            date=form.get('eventDate') or '',
            location=form.get('eventLocation') or '',
            description=form.get('description') or ''
        )

        result = await self.orchestrator.submit_event(draft)
        if not result.success:
            return _response(400, {'message': 'Invalid event', 'errors': result.errors})

        return _response(201, {
            'message': 'Event submitted successfully!',
            'record': result.record.to_dict(),
            'remoteAccepted': result.remote_accepted
        })

    async def _handle_detail(self, request: Dict[str, Any]) -> Dict[str, Any]:
        event_id = request.get('id')
        try:
            record = await self.orchestrator.get_event(event_id)
        except EventNotFoundError:
            return _response(404, {'message': 'Event not found'})
        except RemoteSourceError as e:
            return _response(502, {'message': 'Failed to load event', 'error': str(e)})
        return _response(200, {'record': record.to_dict()})

    def _current_results(self, query: Optional[str]):
        if not self.search_index.is_current(self.store.generation):
            self.search_index.build_index(self.store.records, generation=self.store.generation)
        return self.search_index.search(query)

    def _page_response(self, query: Optional[str]) -> Dict[str, Any]:
        page = self.search_index.paginate(self._current_results(query))
        return _response(200, {
            'items': [record.to_dict() for record in page.items],
            'currentPage': page.current_page,
            'totalPages': page.total_pages,
            'totalItems': page.total_items,
            'hasMore': page.has_more
        })

    async def _handle_search(self, request: Dict[str, Any]) -> Dict[str, Any]:
        self.search_index.reset_page()
        return self._page_response(request.get('query'))

    async def _handle_next_page(self, request: Dict[str, Any]) -> Dict[str, Any]:
        self.search_index.next_page()
        return self._page_response(request.get('query'))

    async def _handle_filter(self, request: Dict[str, Any]) -> Dict[str, Any]:
        records = self.store.filter_events(request.get('keyword'))
        return _response(200, {'records': [record.to_dict() for record in records]})

    async def _handle_clear(self, request: Dict[str, Any]) -> Dict[str, Any]:
        self.store.clear_all_data()
        return _response(200, {'message': 'All catalog data cleared'})

    async def _handle_storage_info(self, request: Dict[str, Any]) -> Dict[str, Any]:
        return _response(200, self.store.cache.storage_info())


def main() -> None:
    """Run a single catalog refresh and print the response."""
    config = load_config()
    setup_logging(config.log_level)
    app = CatalogApp.from_config(config)
    response = asyncio.run(app.handle({'action': 'view'}))
    print(json.dumps(response))


if __name__ == '__main__':
    main()
