"""Identity mapping store - primary attendee to ordered secondary attendees."""

import threading
from typing import Dict, Iterable, List, Optional

from calendar_sync.logging_config import get_logger
from calendar_sync.models.mapping import IdentityMapping
from calendar_sync.utils.clock import Clock

logger = get_logger(__name__)


class IdentityMappingStore:
    """Thread-safe, read-mostly identity map.

    ``load`` replaces the whole map at once so readers never see a partially
    refreshed mapping.
    """

    def __init__(self, clock: Optional[Clock] = None):
        self._mappings: Dict[str, List[str]] = {}
        self._lock = threading.RLock()
        self._clock = clock or Clock()
        self._last_loaded_at: Optional[int] = None
        self._load_errors = 0

    def load(self, mappings: Iterable[IdentityMapping]) -> int:
        """Replace all mappings.

        Rows for the same primary are merged in order.

        Returns:
            Number of primaries loaded
        """
        new_mappings: Dict[str, List[str]] = {}
        for mapping in mappings:
            secondaries = new_mappings.setdefault(mapping.primary, [])
            for secondary in mapping.secondaries:
                if secondary not in secondaries and secondary != mapping.primary:
                    secondaries.append(secondary)

        with self._lock:
            self._mappings = new_mappings
            self._last_loaded_at = self._clock.now_millis()

        logger.info("identity_mappings_loaded", mapping_count=len(new_mappings))
        return len(new_mappings)

    def record_load_failure(self, error: BaseException) -> None:
        """Count a failed refresh; the previous mapping stays in place."""
        with self._lock:
            self._load_errors += 1
            load_errors = self._load_errors
        logger.error(
            "identity_mappings_load_failed",
            error=str(error),
            error_type=type(error).__name__,
            load_errors=load_errors,
            kept_mapping_count=self.size(),
        )

    def has_primary(self, email: str) -> bool:
        with self._lock:
            return email.strip().lower() in self._mappings

    def secondaries_for(self, email: str) -> List[str]:
        with self._lock:
            return list(self._mappings.get(email.strip().lower(), []))

    def all_primaries(self) -> List[str]:
        with self._lock:
            return list(self._mappings.keys())

    def size(self) -> int:
        with self._lock:
            return len(self._mappings)

    def metadata(self) -> Dict[str, Optional[int]]:
        with self._lock:
            return {
                "lastLoadedAt": self._last_loaded_at,
                "loadErrors": self._load_errors,
                "mappingCount": len(self._mappings),
            }

    def __len__(self) -> int:
        return self.size()
