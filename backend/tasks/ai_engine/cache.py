# tasks/ai_engine/cache.py

import datetime
import hashlib
import itertools
import json
import logging
import threading
from collections import OrderedDict
from typing import Any, Callable, Dict, Iterable, Optional

from django.conf import settings

from .types import AIDecision, Task, WorkerContext

# Configure logging for cache monitoring
logger = logging.getLogger(__name__)

DEFAULT_CACHE_TTL = 15 * 60  # construction-site connectivity window
DEFAULT_MAX_ENTRIES = 100
KEY_HASH_LENGTH = 16


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


def _stable_hash(payload: Any) -> str:
    serialized = json.dumps(payload, sort_keys=True, default=str)
    return hashlib.sha256(serialized.encode()).hexdigest()[:KEY_HASH_LENGTH]


class DecisionCache:
    """
    In-process memory of recent decisions and where they came from.

    The cache is an optimization only: a miss, an expired entry or an
    evicted entry simply means "recompute".

    Features:
    - Lazy expiry: entries older than the TTL are dropped when looked up,
      or in bulk via clear_expired().
    - Bounded size with insertion-order eviction (not LRU).
    - Per-key call generations so that a slow writer cannot overwrite an
      entry produced by a newer call.
    - Thread-safe; the cache owns no timer or background thread.
    """

    def __init__(
        self,
        ttl: Optional[int] = None,
        max_entries: Optional[int] = None,
        clock: Callable[[], datetime.datetime] = _utcnow,
    ):
        """
        Args:
            ttl: Entry lifetime in seconds (default: AI_DECISION_CACHE_TTL or 15 minutes).
            max_entries: Capacity (default: AI_DECISION_CACHE_MAX_ENTRIES or 100).
            clock: Returns the current aware datetime; injectable for tests.
        """
        if ttl is None:
            ttl = getattr(settings, "AI_DECISION_CACHE_TTL", DEFAULT_CACHE_TTL)
        if max_entries is None:
            max_entries = getattr(settings, "AI_DECISION_CACHE_MAX_ENTRIES", DEFAULT_MAX_ENTRIES)
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")

        self.ttl = datetime.timedelta(seconds=ttl)
        self.max_entries = max_entries
        self._clock = clock
        self._entries: "OrderedDict[str, AIDecision]" = OrderedDict()
        self._generations: Dict[str, int] = {}
        self._generation_counter = itertools.count(1)
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def now(self) -> datetime.datetime:
        return self._clock()

    def get(self, key: str) -> Optional[AIDecision]:
        """Returns the live entry for `key`, evicting it first if it has expired."""
        with self._lock:
            decision = self._entries.get(key)
            if decision is None:
                return None
            if self._is_expired(decision):
                del self._entries[key]
                logger.debug(f"Decision cache expired: {key}")
                return None
            logger.debug(f"Decision cache hit: {key}")
            return decision

    def put(self, key: str, decision: AIDecision, generation: Optional[int] = None) -> bool:
        """
        Stores `decision` under `key`.

        A write tagged with a generation older than the newest one issued for
        the key is discarded. Returns whether the entry was stored.
        """
        with self._lock:
            if generation is not None and generation < self._generations.get(key, 0):
                logger.debug(f"Discarding superseded decision for {key} (generation {generation})")
                return False

            # Re-putting counts as a fresh insertion
            self._entries.pop(key, None)
            while len(self._entries) >= self.max_entries:
                evicted, _ = self._entries.popitem(last=False)
                logger.debug(f"Decision cache full, evicted oldest entry: {evicted}")

            self._entries[key] = decision
            return True

    def next_generation(self, key: str) -> int:
        """
        Issues a call generation for `key`.

        Generations come from one process-wide counter, so a generation issued
        later is always larger, even after the key was swept.
        """
        with self._lock:
            generation = next(self._generation_counter)
            self._generations[key] = generation
            return generation

    def clear_expired(self) -> int:
        """Sweeps every expired entry. Returns the number removed."""
        with self._lock:
            expired = [key for key, decision in self._entries.items() if self._is_expired(decision)]
            for key in expired:
                del self._entries[key]
            # Generations of keys with no live entry can be forgotten
            for key in list(self._generations):
                if key not in self._entries:
                    del self._generations[key]

        if expired:
            logger.info(f"Decision cache sweep removed {len(expired)} expired entries")
        return len(expired)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._generations.clear()

    def _is_expired(self, decision: AIDecision) -> bool:
        return self._clock() - decision.timestamp > self.ttl

    # -----------------------------------------------------------------------
    # Key derivation
    # -----------------------------------------------------------------------

    @staticmethod
    def prioritization_key(tasks: Iterable[Task], context: Optional[WorkerContext]) -> str:
        """
        Deterministic key for a (task-id set, context) pair.

        Ids are sorted so that input order does not matter. The hash is
        truncated; collisions only cost a recomputation.
        """
        task_ids = ",".join(sorted(task.id for task in tasks))
        context_payload = (context or WorkerContext()).to_dict()
        return f"prioritize-{_stable_hash([task_ids, context_payload])}"

    @staticmethod
    def prediction_key(task: Task) -> str:
        return f"predict-{task.id}"

    @staticmethod
    def conflict_key(
        local_update: Dict[str, Any], remote_update: Dict[str, Any], original_task: Task
    ) -> str:
        payload = {
            "original": original_task.to_dict(),
            "local": local_update,
            "remote": remote_update,
        }
        return f"conflict-{_stable_hash(payload)}"
