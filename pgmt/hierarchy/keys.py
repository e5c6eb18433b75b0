"""Project-scoped issue key allocation (PGM-1, PGM-2, ...)."""

import logging
import threading
from abc import ABC, abstractmethod
from collections.abc import Callable

from pgmt.errors import AllocationError
from pgmt.stores.base import IssueStore

logger = logging.getLogger(__name__)

DEFAULT_MAX_ATTEMPTS = 16


class KeySequence(ABC):
    """Atomic per-project counter. Each call hands out a value no other caller gets."""

    @abstractmethod
    def next_value(self, project_id: str) -> int: ...


class LockedKeySequence(KeySequence):
    """In-process counter, one lock per project.

    A project's counter starts from seed(project_id) the first time it is used.
    """

    def __init__(self, seed: Callable[[str], int] | None = None) -> None:
        self._seed = seed or (lambda _project_id: 0)
        self._values: dict[str, int] = {}
        self._locks: dict[str, threading.Lock] = {}
        self._registry_lock = threading.Lock()

    def _lock_for(self, project_id: str) -> threading.Lock:
        with self._registry_lock:
            return self._locks.setdefault(project_id, threading.Lock())

    def next_value(self, project_id: str) -> int:
        with self._lock_for(project_id):
            if project_id not in self._values:
                self._values[project_id] = self._seed(project_id)
            self._values[project_id] += 1
            return self._values[project_id]


def format_key(project_key: str, number: int) -> str:
    return f"{project_key}-{number}"


class KeyAllocator:
    def __init__(
        self,
        store: IssueStore,
        sequence: KeySequence,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self._store = store
        self._sequence = sequence
        self._max_attempts = max_attempts

    def next_key(self, project_key: str, project_id: str) -> str:
        """Return an unused key for the project.

        Numbers come from the sequence, so two callers never see the same one. A number
        whose key is already taken (imported data, a reset counter) is skipped.
        """
        for attempt in range(1, self._max_attempts + 1):
            candidate = format_key(project_key, self._sequence.next_value(project_id))
            if not self._store.exists_by_key(candidate):
                logger.debug("Allocated %s (attempt %d)", candidate, attempt)
                return candidate
            logger.warning("Key %s already taken, trying the next number", candidate)

        raise AllocationError(
            f"Could not allocate a key for project {project_key} after {self._max_attempts} attempts"
        )
