"""
Read helpers for generated results.
"""
import logging

from .exceptions import NotFoundError

logger = logging.getLogger(__name__)


def _as_str(value):
    return str(value) if value is not None else None


def get_result(result_id):
    """
    Fetch a Result with its subject lines.

    Raises:
        NotFoundError: if no such result exists
    """
    from django.core.exceptions import ValidationError as DjangoValidationError
    from .models import Result

    try:
        return Result.objects.select_related(
            'student', 'class_assigned', 'term', 'academic_session'
        ).prefetch_related('subject_lines__subject').get(pk=result_id)
    except (Result.DoesNotExist, ValueError, DjangoValidationError):
        raise NotFoundError('Result', result_id)


def get_student_results(student, term=None, academic_session=None):
    """
    All results for a student, oldest session and term first.

    Args:
        student: The Student instance
        term: Optional Term to narrow to
        academic_session: Optional AcademicSession to narrow to

    Returns:
        QuerySet of Result
    """
    from .models import Result

    results = Result.objects.filter(student=student)
    if term is not None:
        results = results.filter(term=term)
    if academic_session is not None:
        results = results.filter(academic_session=academic_session)
    return results.select_related(
        'class_assigned', 'term', 'academic_session'
    ).prefetch_related('subject_lines__subject').order_by(
        'academic_session__start_date', 'term__term_number'
    )


def get_class_results(class_obj, term, academic_session):
    """
    Results for a cohort ordered by position, plus its statistics.

    Returns:
        tuple: (list of Result, ClassResultStatistics or None)
    """
    from django.db.models import F
    from .models import ClassResultStatistics, Result

    results = list(Result.objects.filter(
        class_assigned=class_obj,
        term=term,
        academic_session=academic_session,
    ).select_related('student').order_by(
        F('position').asc(nulls_last=True), 'student__last_name', 'student__first_name'
    ))
    statistics = ClassResultStatistics.objects.filter(
        class_assigned=class_obj,
        term=term,
        academic_session=academic_session,
    ).first()
    return results, statistics


def serialize_result(result):
    """
    Plain dict for a Result, safe to return from a Celery task.

    Decimal values are rendered as strings.
    """
    return {
        'id': str(result.pk),
        'student_id': result.student_id,
        'class_id': result.class_assigned_id,
        'term_id': result.term_id,
        'academic_session_id': result.academic_session_id,
        'total_score': _as_str(result.total_score),
        'average_score': _as_str(result.average_score),
        'grade_letter': result.grade_letter,
        'position': result.position,
        'remark': result.remark,
        'subject_count': result.subject_count,
        'generated_at': result.generated_at.isoformat() if result.generated_at else None,
        'subjects': [
            {
                'subject_id': line.subject_id,
                'subject': line.subject.name,
                'ca_score': _as_str(line.ca_score),
                'exam_score': _as_str(line.exam_score),
                'total_score': _as_str(line.total_score),
                'grade_letter': line.grade_letter,
                'remark': line.remark,
            }
            for line in result.subject_lines.select_related('subject').order_by('subject__name')
        ],
    }
