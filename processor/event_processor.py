"""Record processor for validating and normalizing remote event payloads."""
import logging
from datetime import date, datetime
from typing import Any, Dict, List, Optional

from processor.models import Record

logger = logging.getLogger(__name__)


class RecordProcessor:
    """Processor for turning remote JSON items into Record objects."""

    MAX_TITLE_LENGTH = 100
    MAX_LOCATION_LENGTH = 100
    MAX_DESCRIPTION_LENGTH = 500

    def process_records(self, raw_items: List[Dict[str, Any]]) -> List[Record]:
        """
        Process and validate raw items from the remote source.

        Args:
            raw_items: List of decoded JSON objects

        Returns:
            List of validated Record objects
        """
        records = []

        for item in raw_items:
            try:
                record = self.process_record(item)
                if record:
                    records.append(record)
            except Exception as e:
                logger.warning(f"Failed to process remote item {item!r}: {e}")
                continue

        logger.info(
            f"Processed {len(records)} valid records out of "
            f"{len(raw_items)} remote items"
        )
        return records

    def process_record(self, item: Dict[str, Any]) -> Optional[Record]:
        """
        Process a single remote item.

        Args:
            item: Decoded JSON object

        Returns:
            Record object or None if validation fails
        """
        if not isinstance(item, dict):
            logger.warning(f"Skipping non-object remote item: {item!r}")
            return None

        if not self._validate_required_fields(item):
            return None

        normalized_date = self.normalize_date(str(item['date']))
        if not normalized_date:
            logger.warning(
                f"Invalid date format for record '{item['title']}': {item['date']}"
            )
            return None

        return Record(
            id=int(item['id']),
            title=str(item['title']).strip()[:self.MAX_TITLE_LENGTH],
            date=normalized_date,
            location=str(item['location']).strip()[:self.MAX_LOCATION_LENGTH],
            description=str(item.get('description') or '')[:self.MAX_DESCRIPTION_LENGTH],
            is_user_created=False
        )

    def _validate_required_fields(self, item: Dict[str, Any]) -> bool:
        """
        Validate that required fields are present and non-empty.

        Args:
            item: Decoded JSON object

        Returns:
            True if valid, False otherwise
        """
        if item.get('id') is None:
            logger.warning("Remote item missing required field: id")
            return False

        for field_name in ('title', 'date', 'location'):
            value = item.get(field_name)
            if value is None or not str(value).strip():
                logger.warning(
                    f"Remote item {item.get('id')} missing required field: {field_name}"
                )
                return False

        return True

    @staticmethod
    def normalize_date(date_str: str) -> Optional[str]:
        """
        Normalize date to ISO 8601 format (YYYY-MM-DD).

        Args:
            date_str: Date string in various formats

        Returns:
            ISO 8601 formatted date string or None if parsing fails
        """
        date_formats = [
            '%Y-%m-%d',      # ISO 8601
            '%m/%d/%Y',      # US format
            '%m-%d-%Y',      # US format with dashes
            '%B %d, %Y',     # Full month name
            '%b %d, %Y',     # Abbreviated month name
            '%Y/%m/%d',      # Alternative ISO format
        ]

        value = date_str.strip()
        # Full timestamps keep only the calendar date
        if 'T' in value:
            value = value.split('T', 1)[0]

        for fmt in date_formats:
            try:
                date_obj = datetime.strptime(value, fmt)
                return date_obj.strftime('%Y-%m-%d')
            except ValueError:
                continue

        return None


def parse_record_date(value: str) -> Optional[date]:
    """
    Parse a record's ISO date, ignoring any time component.

    Args:
        value: ISO 8601 date or datetime string

    Returns:
        date object or None if the value cannot be parsed
    """
    try:
        return date.fromisoformat(value.strip()[:10])
    except (AttributeError, ValueError):
        return None
