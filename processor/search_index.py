"""Inverted token index over the catalog with page-window slicing."""
import logging
import math
import re
from typing import Dict, List, Optional, Sequence, Set, Tuple

from processor.models import Page, Record

logger = logging.getLogger(__name__)

_NON_WORD = re.compile(r'[^\w\s]')
MIN_TOKEN_LENGTH = 3


def tokenize(text: str) -> List[str]:
    """
    Split text into searchable terms.

    Lowercases, strips punctuation, splits on whitespace and drops tokens
    shorter than three characters.
    """
    cleaned = _NON_WORD.sub('', text.lower())
    return [token for token in cleaned.split() if len(token) >= MIN_TOKEN_LENGTH]


class SearchIndex:
    """
    Exact-token search over a captured record list.

    The index keeps the list it was built from, so positions in the index
    always resolve against that same list. Rebuild after every change to the
    catalog.
    """

    DEFAULT_PAGE_SIZE = 6

    def __init__(self, page_size: int = DEFAULT_PAGE_SIZE):
        if page_size < 1:
            raise ValueError(f"page_size must be positive, got {page_size}")
        self.page_size = page_size
        self.current_page = 1
        self._index: Dict[str, Set[int]] = {}
        self._records: Tuple[Record, ...] = ()
        self.generation: Optional[int] = None

    @property
    def records(self) -> List[Record]:
        """Records the index was last built from."""
        return list(self._records)

    def build_index(self, records: Sequence[Record], generation: Optional[int] = None) -> None:
        """
        Rebuild the index from a record list.

        Args:
            records: Records to index; captured as an immutable snapshot
            generation: Optional store generation the list belongs to
        """
        self._index.clear()
        self._records = tuple(records)
        self.generation = generation

        for position, record in enumerate(self._records):
            text = f"{record.title} {record.description} {record.location}"
            for token in tokenize(text):
                self._index.setdefault(token, set()).add(position)

        logger.debug(
            f"Indexed {len(self._records)} records into {len(self._index)} tokens"
        )

    def is_current(self, generation: int) -> bool:
        """Check whether the index was built for the given store generation."""
        return self.generation == generation

    def search(self, query: Optional[str]) -> List[Record]:
        """
        Find records containing any of the query's tokens.

        Args:
            query: Free text; tokenized like the indexed text

        Returns:
            Matching records in catalog order; all records for an empty query
        """
        if not query or not query.strip():
            return list(self._records)

        positions: Set[int] = set()
        for token in tokenize(query):
            positions |= self._index.get(token, set())

        return [self._records[position] for position in sorted(positions)]

    def paginate(self, items: Sequence) -> Page:
        """
        Slice the current page out of a result list.

        Args:
            items: Full result list

        Returns:
            Page window with totals
        """
        start = (self.current_page - 1) * self.page_size
        end = start + self.page_size

        return Page(
            items=list(items[start:end]),
            current_page=self.current_page,
            total_pages=math.ceil(len(items) / self.page_size),
            total_items=len(items),
            has_more=end < len(items)
        )

    def next_page(self) -> None:
        self.current_page += 1

    def reset_page(self) -> None:
        self.current_page = 1
