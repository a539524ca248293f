"""In-memory catalog, slot lifecycle and slot search."""

from .search import SUPPORTED_INCLUDES, SlotSearchResult, search_slots
from .slot_store import BookingOutcome, SlotStore, StoreError

__all__ = [
    "BookingOutcome",
    "SUPPORTED_INCLUDES",
    "SlotSearchResult",
    "SlotStore",
    "StoreError",
    "search_slots",
]
