"""
Celery tasks for gradebook app.
Handles result generation off the request path.
"""
import logging

from celery import shared_task

from . import config
from .exceptions import CohortLockTimeout, GradebookError, InsufficientDataError


logger = logging.getLogger(__name__)


def _load_cohort(class_id, term_id, academic_session_id):
    from academics.models import Class
    from core.models import AcademicSession, Term

    return (
        Class.objects.get(pk=class_id),
        Term.objects.get(pk=term_id),
        AcademicSession.objects.get(pk=academic_session_id),
    )


@shared_task(
    bind=True,
    max_retries=config.TASK_MAX_RETRIES,
    default_retry_delay=config.TASK_RETRY_DELAY,
    soft_time_limit=config.TASK_SOFT_TIME_LIMIT,
    time_limit=config.TASK_TIME_LIMIT,
)
def generate_class_results(self, class_id, term_id, academic_session_id):
    """
    Generate and rank results for every student in a class.

    Args:
        class_id: ID of the Class
        term_id: ID of the Term
        academic_session_id: ID of the AcademicSession

    Returns:
        dict with success and the generation summary, or the error

    Retries while another run holds the cohort lock.
    """
    from django.core.exceptions import ObjectDoesNotExist
    from .generation import generate_for_class

    try:
        class_obj, term, academic_session = _load_cohort(class_id, term_id, academic_session_id)
    except ObjectDoesNotExist as e:
        # Non-retryable - cohort no longer exists
        logger.error(f"Cannot generate results for class {class_id}: {e}")
        return {'success': False, 'error': str(e)}

    try:
        summary = generate_for_class(class_obj, term, academic_session)
    except CohortLockTimeout as e:
        retry_count = self.request.retries
        logger.warning(
            f"Cohort busy for class {class_id} (attempt {retry_count + 1}/"
            f"{config.TASK_MAX_RETRIES + 1}): {e}"
        )
        raise self.retry(exc=e, countdown=config.TASK_RETRY_DELAY * (2 ** retry_count))
    except GradebookError as e:
        logger.error(f"Result generation failed for class {class_id}: {e}")
        return {'success': False, 'error': str(e)}

    return {'success': True, **summary.to_dict()}


@shared_task(
    bind=True,
    max_retries=config.TASK_MAX_RETRIES,
    default_retry_delay=config.TASK_RETRY_DELAY,
    soft_time_limit=config.TASK_SOFT_TIME_LIMIT,
    time_limit=config.TASK_TIME_LIMIT,
)
def generate_student_result(self, student_id, term_id, academic_session_id):
    """
    Generate one student's result and re-rank their class.

    Returns:
        dict with success and the serialized result, or the error
    """
    from core.models import AcademicSession, Term
    from students.models import Student
    from .generation import generate_for_student
    from .utils import serialize_result

    try:
        student = Student.objects.get(pk=student_id)
        term = Term.objects.get(pk=term_id)
        academic_session = AcademicSession.objects.get(pk=academic_session_id)
    except (Student.DoesNotExist, Term.DoesNotExist, AcademicSession.DoesNotExist) as e:
        logger.error(f"Cannot generate result for student {student_id}: {e}")
        return {'success': False, 'error': str(e)}

    try:
        result = generate_for_student(student, term, academic_session)
    except CohortLockTimeout as e:
        raise self.retry(exc=e, countdown=config.TASK_RETRY_DELAY * (2 ** self.request.retries))
    except InsufficientDataError as e:
        logger.warning(f"No result for student {student_id}: {e}")
        return {'success': False, 'error': str(e)}
    except GradebookError as e:
        logger.error(f"Result generation failed for student {student_id}: {e}")
        return {'success': False, 'error': str(e)}

    return {'success': True, 'result': serialize_result(result)}


def dispatch_result_generation(class_id, term_id, academic_session_id):
    """
    Regenerate a cohort's results after a grade sheet is approved.

    Queued on Celery when GRADEBOOK_RESULT_GENERATION_ASYNC is set, otherwise
    run in the calling process. Failures are logged, never raised, because
    the approval that triggered this has already been committed.
    """
    if config.RESULT_GENERATION_ASYNC:
        generate_class_results.delay(class_id, term_id, academic_session_id)
        logger.info(f"Queued result generation for class {class_id}, term {term_id}")
        return None

    try:
        # Called directly, a retry re-raises the CohortLockTimeout
        return generate_class_results(class_id, term_id, academic_session_id)
    except Exception:
        logger.exception(f"Result generation after approval failed for class {class_id}")
        return None
