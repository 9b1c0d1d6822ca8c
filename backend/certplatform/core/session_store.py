"""
Keyed storage for in-progress test sessions.

The engine only talks to the `SessionStore` interface. Production uses redis
so any API worker can serve any session; tests and single-process setups use
the bounded in-memory store. The durable copy of every session lives in the
`test_attempts` table, so losing a store entry only costs a resume.
"""
import abc
import logging
import threading
from collections import OrderedDict
from datetime import datetime
from typing import List, Optional

from .cache import CacheManager, cache
from .config import settings
from ..schemas.test import TestSession

logger = logging.getLogger(__name__)


class SessionStore(abc.ABC):

    @abc.abstractmethod
    def get(self, session_id: str) -> Optional[TestSession]:
        ...

    @abc.abstractmethod
    def set(self, session: TestSession) -> None:
        ...

    @abc.abstractmethod
    def delete(self, session_id: str) -> bool:
        ...

    @abc.abstractmethod
    def list_all(self) -> List[TestSession]:
        ...

    def list_expired(self, now: datetime) -> List[TestSession]:
        return [s for s in self.list_all() if s.is_expired(now)]

    def size(self) -> int:
        return len(self.list_all())


class InMemorySessionStore(SessionStore):
    """Capacity-bounded map; the least recently written session is dropped first."""

    def __init__(self, max_size: Optional[int] = None):
        self.max_size = max_size or settings.session_store_max_size
        self._sessions: "OrderedDict[str, str]" = OrderedDict()
        self._lock = threading.Lock()

    def get(self, session_id: str) -> Optional[TestSession]:
        with self._lock:
            raw = self._sessions.get(session_id)
        # stored as JSON so callers never share a mutable instance with the store
        return TestSession.model_validate_json(raw) if raw is not None else None

    def set(self, session: TestSession) -> None:
        with self._lock:
            self._sessions[session.session_id] = session.model_dump_json()
            self._sessions.move_to_end(session.session_id)
            while len(self._sessions) > self.max_size:
                evicted_id, _ = self._sessions.popitem(last=False)
                logger.warning(f"Session store full, evicted session {evicted_id}")

    def delete(self, session_id: str) -> bool:
        with self._lock:
            return self._sessions.pop(session_id, None) is not None

    def list_all(self) -> List[TestSession]:
        with self._lock:
            raws = list(self._sessions.values())
        return [TestSession.model_validate_json(raw) for raw in raws]

    def size(self) -> int:
        with self._lock:
            return len(self._sessions)


class RedisSessionStore(SessionStore):
    key_prefix = "test_session:"

    def __init__(self, cache_manager: Optional[CacheManager] = None, grace_seconds: Optional[int] = None):
        self.cache = cache_manager or cache
        self.grace_seconds = grace_seconds if grace_seconds is not None else settings.session_grace_seconds

    def _key(self, session_id: str) -> str:
        return f"{self.key_prefix}{session_id}"

    def get(self, session_id: str) -> Optional[TestSession]:
        raw = self.cache.get_raw(self._key(session_id))
        return TestSession.model_validate_json(raw) if raw else None

    def set(self, session: TestSession) -> None:
        # keep the entry a little past the deadline so expiry can still be auto-submitted
        ttl = session.time_limit * 60 + self.grace_seconds
        self.cache.set(self._key(session.session_id), session.model_dump_json(), ttl=ttl)

    def delete(self, session_id: str) -> bool:
        return self.cache.delete(self._key(session_id))

    def list_all(self) -> List[TestSession]:
        sessions = []
        for key in self.cache.scan_keys(f"{self.key_prefix}*"):
            raw = self.cache.get_raw(key)
            if raw:
                sessions.append(TestSession.model_validate_json(raw))
        return sessions


_store: Optional[SessionStore] = None


def get_session_store() -> SessionStore:
    global _store
    if _store is None:
        if settings.session_store_backend == "memory":
            _store = InMemorySessionStore()
        else:
            _store = RedisSessionStore()
        logger.info(f"Using {type(_store).__name__} for test sessions")
    return _store
