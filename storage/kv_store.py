"""Key-value store backends for the persistent snapshot cache."""
import logging
from typing import Dict, List, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

logger = logging.getLogger(__name__)


class StorageError(Exception):
    """Raised when the key-value store rejects an operation."""


class StorageQuotaExceededError(StorageError):
    """Raised when a write does not fit in the store."""


class StorageUnavailableError(StorageError):
    """Raised when the store cannot be reached or used at all."""


class KeyValueStore:
    """String-keyed store of string values."""

    def get(self, key: str) -> Optional[str]:
        raise NotImplementedError

    def set(self, key: str, value: str) -> None:
        raise NotImplementedError

    def delete(self, key: str) -> None:
        raise NotImplementedError

    def keys(self) -> List[str]:
        raise NotImplementedError


class InMemoryKeyValueStore(KeyValueStore):
    """
    Process-local store with an optional size quota.

    Size is counted as the total length of all keys and values, which is how
    browser storage quotas are usually reported.
    """

    def __init__(self, quota_bytes: Optional[int] = None, available: bool = True):
        self.quota_bytes = quota_bytes
        self.available = available
        self._data: Dict[str, str] = {}

    def _check_available(self) -> None:
        if not self.available:
            raise StorageUnavailableError("In-memory store disabled")

    def get(self, key: str) -> Optional[str]:
        self._check_available()
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._check_available()
        if self.quota_bytes is not None:
            used = sum(
                len(k) + len(v) for k, v in self._data.items() if k != key
            )
            if used + len(key) + len(value) > self.quota_bytes:
                raise StorageQuotaExceededError(
                    f"Writing {key!r} would exceed quota of {self.quota_bytes} bytes"
                )
        self._data[key] = value

    def delete(self, key: str) -> None:
        self._check_available()
        self._data.pop(key, None)

    def keys(self) -> List[str]:
        self._check_available()
        return list(self._data.keys())


class DynamoDBKeyValueStore(KeyValueStore):
    """
    Store backed by a DynamoDB table.

    The table uses ``cache_key`` (string) as its hash key and keeps each value
    in a ``payload`` string attribute.
    """

    KEY_ATTRIBUTE = 'cache_key'
    VALUE_ATTRIBUTE = 'payload'

    def __init__(self, table_name: str, dynamodb=None):
        """
        Initialize DynamoDB table reference.

        Args:
            table_name: Name of the DynamoDB table
            dynamodb: Optional boto3 DynamoDB resource
        """
        self.table_name = table_name
        self.dynamodb = dynamodb or boto3.resource('dynamodb')
        self.table = self.dynamodb.Table(table_name)
        logger.info(f"Initialized DynamoDBKeyValueStore for table: {table_name}")

    def get(self, key: str) -> Optional[str]:
        try:
            response = self.table.get_item(Key={self.KEY_ATTRIBUTE: key})
        except (ClientError, BotoCoreError) as e:
            raise self._translate_error(e, f"reading {key!r}") from e

        item = response.get('Item')
        if item is None:
            return None
        return item.get(self.VALUE_ATTRIBUTE)

    def set(self, key: str, value: str) -> None:
        try:
            self.table.put_item(
                Item={self.KEY_ATTRIBUTE: key, self.VALUE_ATTRIBUTE: value}
            )
        except (ClientError, BotoCoreError) as e:
            raise self._translate_error(e, f"writing {key!r}") from e

    def delete(self, key: str) -> None:
        try:
            self.table.delete_item(Key={self.KEY_ATTRIBUTE: key})
        except (ClientError, BotoCoreError) as e:
            raise self._translate_error(e, f"deleting {key!r}") from e

    def keys(self) -> List[str]:
        """
        List every key in the table using Scan operation.

        Returns:
            List of keys
        """
        scan_kwargs = {
            'ProjectionExpression': '#k',
            'ExpressionAttributeNames': {'#k': self.KEY_ATTRIBUTE}
        }

        try:
            response = self.table.scan(**scan_kwargs)
            items = response.get('Items', [])

            # Handle pagination
            while 'LastEvaluatedKey' in response:
                response = self.table.scan(
                    ExclusiveStartKey=response['LastEvaluatedKey'],
                    **scan_kwargs
                )
                items.extend(response.get('Items', []))
        except (ClientError, BotoCoreError) as e:
            raise self._translate_error(e, "scanning keys") from e

        return [item[self.KEY_ATTRIBUTE] for item in items]

    def _translate_error(self, error: Exception, action: str) -> StorageError:
        """
        Map a boto error onto the storage error taxonomy.

        Args:
            error: ClientError or BotoCoreError
            action: Description of the failed operation

        Returns:
            StorageError subclass instance
        """
        message = f"DynamoDB error {action} in {self.table_name}: {error}"

        if isinstance(error, ClientError):
            code = error.response.get('Error', {}).get('Code', '')
            detail = error.response.get('Error', {}).get('Message', '')
            if code == 'ValidationException' and 'size' in detail.lower():
                return StorageQuotaExceededError(message)
            if code in ('ResourceNotFoundException', 'AccessDeniedException'):
                return StorageUnavailableError(message)
            return StorageError(message)

        return StorageUnavailableError(message)
