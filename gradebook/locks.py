"""
In-process mutual exclusion per cohort (class, term, academic session).

Only one aggregate-and-rank sequence may run for a cohort at a time inside
this process. Across processes the row lock taken by ranking.rank() applies.
"""
import logging
import threading
from contextlib import contextmanager

from . import config
from .exceptions import CohortLockTimeout

logger = logging.getLogger(__name__)

_registry_lock = threading.Lock()
# cohort key -> [lock, number of holders and waiters]
_cohort_locks = {}


def cohort_key(class_id, term_id, academic_session_id):
    return f"{class_id}:{term_id}:{academic_session_id}"


def _checkout(key):
    with _registry_lock:
        entry = _cohort_locks.get(key)
        if entry is None:
            entry = [threading.Lock(), 0]
            _cohort_locks[key] = entry
        entry[1] += 1
        return entry[0]


def _release(key):
    with _registry_lock:
        entry = _cohort_locks[key]
        entry[1] -= 1
        if entry[1] == 0:
            del _cohort_locks[key]


@contextmanager
def cohort_lock(class_id, term_id, academic_session_id, timeout=None):
    """
    Hold the cohort mutex for the duration of the block.

    Raises:
        CohortLockTimeout: if the lock is not acquired within timeout seconds
    """
    if timeout is None:
        timeout = config.COHORT_LOCK_TIMEOUT
    key = cohort_key(class_id, term_id, academic_session_id)
    lock = _checkout(key)
    try:
        if not lock.acquire(timeout=timeout):
            logger.warning(f"Timed out waiting {timeout}s for cohort lock {key}")
            raise CohortLockTimeout(key, timeout)
        try:
            yield key
        finally:
            lock.release()
    finally:
        _release(key)


def is_locked(class_id, term_id, academic_session_id):
    """True while some thread holds or waits for the cohort lock."""
    with _registry_lock:
        return cohort_key(class_id, term_id, academic_session_id) in _cohort_locks
