import logging
import threading
from typing import Dict, Optional, Tuple

from cohort_insights.mapping.session_facts import SessionFactsResult
from cohort_insights.parsing.models import RawSession


class FactsCache:
    """A thread-safe in-memory cache of map-stage results.

    Entries are keyed by session id and validated against the RawSession
    fingerprint, so a session whose content changed is recomputed.
    """

    def __init__(self, max_entries: Optional[int] = None):
        """Create a new :class:`FactsCache`.

        Args:
            max_entries: Optional maximum number of cached sessions. When the
                limit is reached the oldest entry is evicted. :pydata:`None`
                (default) means unlimited.
        """
        self._entries: Dict[str, Tuple[str, SessionFactsResult]] = {}
        self._lock = threading.Lock()
        # None == unlimited
        self._max_entries = max_entries if (max_entries or 0) > 0 else None
        self._logger = logging.getLogger(__name__)
        self.hits = 0
        self.misses = 0

    def get(self, raw: RawSession) -> Optional[SessionFactsResult]:
        """Return the cached result for *raw*, or None if absent or stale."""
        fingerprint = raw.fingerprint()
        with self._lock:
            entry = self._entries.get(raw.session_id)
            if entry is None or entry[0] != fingerprint:
                self.misses += 1
                return None
            self.hits += 1
            return entry[1]

    def put(self, raw: RawSession, result: SessionFactsResult) -> None:
        """Store *result* for *raw*, replacing any previous entry for the session."""
        fingerprint = raw.fingerprint()
        with self._lock:
            if raw.session_id in self._entries:
                self._logger.debug("Replacing cached facts for session %s", raw.session_id)
                del self._entries[raw.session_id]
            elif self._max_entries is not None and len(self._entries) >= self._max_entries:
                oldest = next(iter(self._entries))
                del self._entries[oldest]
                self._logger.debug("Evicted cached facts for session %s", oldest)
            self._entries[raw.session_id] = (fingerprint, result)

    def invalidate(self, session_id: str) -> Optional[SessionFactsResult]:
        """Remove a session's entry. Returns the removed result or None if not found."""
        with self._lock:
            entry = self._entries.pop(session_id, None)
        return entry[1] if entry else None

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def count(self) -> int:
        """Returns the number of cached sessions."""
        with self._lock:
            return len(self._entries)
