"""HTTP client for the remote events source."""
import asyncio
import logging
import time
from typing import Any, Callable, Dict, List, Optional, Union

import requests

from processor.event_processor import RecordProcessor
from processor.models import EventDraft, Record

logger = logging.getLogger(__name__)


class RemoteSourceError(Exception):
    """Raised when a request to the remote source fails."""


class ClientRequestError(RemoteSourceError):
    """Raised on a 4xx response; these are never retried."""

    def __init__(self, status_code: int, message: str = ''):
        super().__init__(message or f"Client error: {status_code}")
        self.status_code = status_code


class EventNotFoundError(ClientRequestError):
    """Raised when the remote source has no event with the requested id."""


class EventsAPIClient:
    """Client for the remote events REST API."""

    DEFAULT_BASE_URL = "http://localhost:8080/api"
    EVENTS_PATH = "/events"

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        timeout: int = 30,
        max_retries: int = 3,
        base_delay: float = 1.0,
        processor: Optional[RecordProcessor] = None,
        sleep: Callable[[float], None] = time.sleep
    ):
        """
        Initialize the API client.

        Args:
            base_url: Root URL of the events API
            timeout: HTTP request timeout in seconds (default: 30)
            max_retries: Maximum attempts per request (default: 3)
            base_delay: Delay unit in seconds; attempt n waits base_delay * n
            processor: Normalizer for remote payload items
            sleep: Blocking sleep used between attempts
        """
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self.max_retries = max(1, max_retries)
        self.base_delay = base_delay
        self.processor = processor or RecordProcessor()
        self.sleep = sleep

    def fetch_all_events(self) -> List[Record]:
        """
        Fetch every event from the remote source.

        Returns:
            List of Record objects

        Raises:
            RemoteSourceError: If the request fails after retries
        """
        logger.info("Fetching events from remote source")
        payload = self._request_json('GET', self.EVENTS_PATH)

        if isinstance(payload, dict) and isinstance(payload.get('events'), list):
            payload = payload['events']
        if not isinstance(payload, list):
            raise RemoteSourceError(
                f"Unexpected events payload type: {type(payload).__name__}"
            )

        records = self.processor.process_records(payload)
        logger.info(f"Successfully fetched {len(records)} events")
        return records

    def fetch_event_by_id(self, event_id: Union[int, str]) -> Record:
        """
        Fetch a single event.

        Args:
            event_id: Remote event identifier

        Returns:
            Record object

        Raises:
            EventNotFoundError: If the remote source answers 404
            RemoteSourceError: If the request fails or the item is invalid
        """
        try:
            payload = self._request_json('GET', f"{self.EVENTS_PATH}/{event_id}")
        except ClientRequestError as e:
            if e.status_code == 404:
                raise EventNotFoundError(404, "Event not found") from e
            raise

        try:
            record = self.processor.process_record(payload)
        except (TypeError, ValueError) as e:
            raise RemoteSourceError(f"Remote event {event_id} is malformed: {e}") from e
        if record is None:
            raise RemoteSourceError(f"Remote event {event_id} is not a valid event")
        return record

    def submit_event(self, draft: EventDraft) -> Dict[str, Any]:
        """
        Send a user-authored event to the remote source.

        Args:
            draft: Event draft

        Returns:
            Dict with ``success`` and the remote ``id``

        Raises:
            RemoteSourceError: If the request fails after retries
        """
        result = self._request_json('POST', self.EVENTS_PATH, json={
            'title': draft.title,
            'date': draft.date,
            'location': draft.location,
            'description': draft.description
        })

        remote_id = result.get('id') if isinstance(result, dict) else None
        logger.info(f"Submitted event '{draft.title}' (remote id {remote_id})")
        return {'success': True, 'id': remote_id}

    async def fetch_all_events_async(self) -> List[Record]:
        # Run the blocking request off the event loop
        return await asyncio.to_thread(self.fetch_all_events)

    async def fetch_event_by_id_async(self, event_id: Union[int, str]) -> Record:
        return await asyncio.to_thread(self.fetch_event_by_id, event_id)

    async def submit_event_async(self, draft: EventDraft) -> Dict[str, Any]:
        return await asyncio.to_thread(self.submit_event, draft)

    def _request_json(self, method: str, path: str, **kwargs) -> Any:
        response = self._request_with_retry(method, path, **kwargs)
        try:
            return response.json()
        except ValueError as e:
            raise RemoteSourceError(f"Invalid JSON from {path}: {e}") from e

    def _request_with_retry(self, method: str, path: str, **kwargs) -> requests.Response:
        """
        Issue a request, retrying server and network failures.

        Attempt n waits ``base_delay * n`` seconds before the next try. 4xx
        responses fail immediately.

        Args:
            method: HTTP method
            path: Path relative to the base URL

        Returns:
            Successful response

        Raises:
            ClientRequestError: On a 4xx response
            RemoteSourceError: If all retry attempts fail
        """
        url = f"{self.base_url}{path}"
        last_error = None

        for attempt in range(1, self.max_retries + 1):
            try:
                logger.info(f"{method} {url} (attempt {attempt}/{self.max_retries})")
                response = requests.request(method, url, timeout=self.timeout, **kwargs)
            except requests.RequestException as e:
                last_error = e
            else:
                if response.ok:
                    return response
                if 400 <= response.status_code < 500:
                    logger.error(f"{method} {url} rejected with {response.status_code}")
                    raise ClientRequestError(response.status_code)
                last_error = requests.HTTPError(
                    f"HTTP error! status: {response.status_code}", response=response
                )

            if attempt < self.max_retries:
                delay = self.base_delay * attempt
                logger.warning(
                    f"Request failed (attempt {attempt}/{self.max_retries}): "
                    f"{last_error}. Retrying in {delay} seconds..."
                )
                self.sleep(delay)
            else:
                logger.error(
                    f"All {self.max_retries} retry attempts failed. Last error: {last_error}"
                )

        raise RemoteSourceError("request failed") from last_error
