"""Data models for the event catalog."""
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple


@dataclass
class Record:
    """One catalog entry (event)."""
    id: int
    title: str
    date: str
    location: str
    description: str = ''
    is_user_created: bool = False

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert to the persisted wire format.

        Returns:
            Dictionary with camelCase keys
        """
        return {
            'id': self.id,
            'title': self.title,
            'date': self.date,
            'location': self.location,
            'description': self.description,
            'isUserCreated': self.is_user_created
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Record':
        """
        Build a Record from the persisted wire format.

        Args:
            data: Dictionary with camelCase keys

        Returns:
            Record object

        Raises:
            KeyError: If a required key is missing
            TypeError: If a text field is not a string
            ValueError: If the id is not an integer
        """
        for key in ('title', 'date', 'location'):
            if not isinstance(data[key], str):
                raise TypeError(f"{key} must be a string, got {type(data[key]).__name__}")
        if not isinstance(data.get('description') or '', str):
            raise TypeError("description must be a string")

        return cls(
            id=int(data['id']),
            title=data['title'],
            date=data['date'],
            location=data['location'],
            description=data.get('description') or '',
            is_user_created=bool(data.get('isUserCreated', False))
        )


@dataclass
class EventDraft:
    """User-submitted event before an id is assigned."""
    title: str
    date: str
    location: str
    description: str = ''


@dataclass
class CacheSnapshot:
    """Persisted state blob: records plus write timestamp."""
    records: List[Record]
    timestamp: int
    version: Optional[str] = None


@dataclass(frozen=True)
class StoreSnapshot:
    """Immutable view of the record store handed to renderers."""
    records: Tuple[Record, ...]
    is_loading: bool
    error: Optional[str]


@dataclass
class Page:
    """One page window over a result list."""
    items: List[Any]
    current_page: int
    total_pages: int
    total_items: int
    has_more: bool


@dataclass
class ValidationResult:
    """Outcome of validating a single field."""
    is_valid: bool
    errors: List[str] = field(default_factory=list)


@dataclass
class FormValidation:
    """Outcome of validating a whole draft."""
    is_valid: bool
    errors: List[str]
    fields: Dict[str, ValidationResult]


@dataclass
class SubmitResult:
    """Result of submitting a user event."""
    success: bool
    record: Optional[Record] = None
    remote_accepted: bool = False
    remote_id: Optional[int] = None
    errors: List[str] = field(default_factory=list)


@dataclass
class SyncResult:
    """Result of a catalog refresh."""
    records: List[Record]
    from_cache: bool
    refreshed: bool
    stale: bool
    discarded: bool = False
    removed_past: int = 0
    error: Optional[str] = None
