"""
Result generation for single students and whole classes.

A class run aggregates every enrolled student (in parallel where the
database allows it), waits for all of them to settle, and then ranks the
cohort exactly once. Students without gradable approved subjects are
reported as failures; any other error aborts the run before ranking.
"""
import logging
import threading
import time
from concurrent.futures import FIRST_COMPLETED, ThreadPoolExecutor, wait

from django.db import connection, connections

from students.models import Enrollment, Student
from . import config
from .aggregation import aggregate
from .exceptions import (
    InsufficientDataError,
    NotFoundError,
    ResultGenerationError,
    ResultGenerationTimeout,
    ValidationError,
)
from .locks import cohort_lock
from .ranking import rank

logger = logging.getLogger(__name__)

_EXHAUSTED = object()


class StudentFailure:
    def __init__(self, student_id, reason):
        self.student_id = student_id
        self.reason = reason

    def to_dict(self):
        return {'student_id': self.student_id, 'reason': self.reason}


class ClassGenerationSummary:
    """Outcome of generate_for_class."""

    def __init__(self, succeeded=None, failed=None, cancelled=False, statistics=None):
        self.succeeded = succeeded or []
        self.failed = failed or []
        self.cancelled = cancelled
        self.statistics = statistics

    @property
    def failed_ids(self):
        return [failure.student_id for failure in self.failed]

    def to_dict(self):
        return {
            'succeeded': len(self.succeeded),
            'failed': self.failed_ids,
            'cancelled': self.cancelled,
            'statistics': self.statistics.to_dict() if self.statistics else None,
        }


def _check_term(term, academic_session):
    if not term.belongs_to(academic_session):
        raise ValidationError(
            f"Term {term.pk} does not belong to academic session {academic_session.pk}",
            kind=ValidationError.INVALID_FIELD,
            field='term',
        )


def resolve_student_class(student, academic_session):
    """
    Class a student belongs to for an academic session.

    Uses the session's active enrollment and falls back to the student's
    current class.

    Raises:
        NotFoundError: if the student has neither
    """
    enrollment = student.get_enrollment(academic_session)
    if enrollment:
        return enrollment.class_assigned
    if student.current_class_id:
        return student.current_class
    raise NotFoundError('Class for student', student.pk)


def generate_for_student(student, term, academic_session):
    """
    Aggregate one student's result and re-rank their cohort.

    Returns:
        Result: refreshed, with its new position

    Raises:
        ValidationError: if the term is not part of the academic session
        InsufficientDataError: if the student has nothing gradable
        CohortLockTimeout: if another run holds the cohort for too long
    """
    _check_term(term, academic_session)
    class_obj = resolve_student_class(student, academic_session)

    with cohort_lock(class_obj.pk, term.pk, academic_session.pk):
        result = aggregate(student, class_obj, term, academic_session)
        rank(class_obj, term, academic_session)

    result.refresh_from_db()
    return result


def _close_connections_after(func):
    def run(item):
        try:
            return func(item)
        finally:
            connections.close_all()
    return run


def _fan_out(items, func, max_workers=1, timeout=None, cancel_event=None):
    """
    Call func(item) for every item with at most max_workers in flight.

    InsufficientDataError from func is collected as a failure; any other
    exception cancels what has not started and is raised as a
    ResultGenerationError. On timeout or abort nothing new is started and
    the call only returns once in-flight work has finished.

    Returns:
        tuple: (succeeded items, StudentFailure list, cancelled flag)
    """
    deadline = time.monotonic() + timeout if timeout else None
    succeeded = []
    failed = []

    def settle(item, call):
        try:
            call()
        except InsufficientDataError as e:
            logger.warning(f"No result for student {item}: {e}")
            failed.append(StudentFailure(item, str(e)))
        except Exception as e:
            logger.error(f"Result generation aborted at student {item}: {e}")
            raise ResultGenerationError(f"Result generation failed for student {item}: {e}", student_id=item) from e
        else:
            succeeded.append(item)

    def check_deadline():
        if deadline is not None and time.monotonic() >= deadline:
            raise ResultGenerationTimeout(f"Result generation did not finish within {timeout}s")

    if max_workers <= 1:
        for item in items:
            if cancel_event is not None and cancel_event.is_set():
                return succeeded, failed, True
            check_deadline()
            settle(item, lambda: func(item))
        return succeeded, failed, False

    stop = threading.Event()
    run_item = _close_connections_after(func)

    def worker(item):
        if stop.is_set():
            return None
        return run_item(item)

    executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix='result-generation')
    pending = {}
    remaining_items = iter(items)
    cancelled = False
    try:
        while True:
            while not cancelled and len(pending) < max_workers:
                if cancel_event is not None and cancel_event.is_set():
                    cancelled = True
                    break
                item = next(remaining_items, _EXHAUSTED)
                if item is _EXHAUSTED:
                    break
                pending[executor.submit(worker, item)] = item

            if not pending:
                break

            wait_for = None
            if deadline is not None:
                wait_for = max(deadline - time.monotonic(), 0)
            done, _ = wait(pending, timeout=wait_for, return_when=FIRST_COMPLETED)
            if not done:
                raise ResultGenerationTimeout(f"Result generation did not finish within {timeout}s")

            for future in done:
                item = pending.pop(future)
                settle(item, future.result)
    finally:
        stop.set()
        for future in pending:
            future.cancel()
        # Running workers may still be writing results
        executor.shutdown(wait=True, cancel_futures=True)

    return succeeded, failed, cancelled


def _worker_count(max_workers):
    if max_workers is None:
        max_workers = config.RESULT_GENERATION_MAX_WORKERS
    # SQLite cannot take concurrent writers
    if connection.vendor == 'sqlite':
        return 1
    return max(int(max_workers), 1)


def generate_for_class(class_obj, term, academic_session, cancel_event=None, max_workers=None, timeout=None):
    """
    Generate results for every student enrolled in a class, then rank.

    Args:
        class_obj: Class instance
        term: Term instance
        academic_session: AcademicSession instance
        cancel_event: threading.Event; once set no more students are started
            and ranking is skipped
        max_workers: parallel aggregations (defaults to
            RESULT_GENERATION_MAX_WORKERS)
        timeout: seconds for the whole batch (defaults to
            RESULT_GENERATION_TIMEOUT)

    Returns:
        ClassGenerationSummary

    Raises:
        ResultGenerationError: if any student failed for a reason other than
            missing data; nothing is ranked
        ResultGenerationTimeout: if the batch ran past its timeout; raised
            once the students already running have finished
        ValidationError: if the term is not part of the academic session
        CohortLockTimeout: if another run holds the cohort for too long
    """
    _check_term(term, academic_session)
    if timeout is None:
        timeout = config.RESULT_GENERATION_TIMEOUT
    workers = _worker_count(max_workers)
    student_ids = Enrollment.enrolled_student_ids(class_obj, academic_session)

    def generate(student_id):
        student = Student.objects.get(pk=student_id)
        aggregate(student, class_obj, term, academic_session)

    logger.info(f"Generating results for {len(student_ids)} student(s) in {class_obj} ({term})")

    with cohort_lock(class_obj.pk, term.pk, academic_session.pk):
        succeeded, failed, cancelled = _fan_out(
            student_ids, generate, max_workers=workers, timeout=timeout, cancel_event=cancel_event
        )
        if cancelled:
            logger.warning(
                f"Result generation for {class_obj} ({term}) cancelled after "
                f"{len(succeeded) + len(failed)} student(s); ranking skipped"
            )
            return ClassGenerationSummary(succeeded, failed, cancelled=True)

        statistics = rank(class_obj, term, academic_session)

    logger.info(
        f"Generated results for {class_obj} ({term}): "
        f"{len(succeeded)} succeeded, {len(failed)} without data"
    )
    return ClassGenerationSummary(succeeded, failed, statistics=statistics)
