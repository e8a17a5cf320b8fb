"""
Per-student result aggregation.

Approved subject grades for a cohort are folded into one Result with a
subject line per graded subject. Positions are not touched here; the
ranking engine owns them.
"""
import logging
from decimal import Decimal

from django.db import transaction
from django.utils import timezone

from .exceptions import InsufficientDataError
from .models import GradeSubmission, Result, ResultSubjectLine, SubjectGrade
from .scoring import grade_letter_for, overall_remark_for, remark_for, round_score

logger = logging.getLogger(__name__)


class ResultSummary:
    """Aggregate numbers for one student, before they are written."""

    def __init__(self, subject_count, total_score, average_score, grade_letter, remark):
        self.subject_count = subject_count
        self.total_score = total_score
        self.average_score = average_score
        self.grade_letter = grade_letter
        self.remark = remark

    def to_dict(self):
        return {
            'subject_count': self.subject_count,
            'total_score': self.total_score,
            'average_score': self.average_score,
            'grade_letter': self.grade_letter,
            'remark': self.remark,
        }


def collect_approved_grades(student, class_obj, term, academic_session):
    """
    Approved SubjectGrade rows for a student in a cohort, one per subject.

    If a subject somehow has more than one approved sheet, the most recently
    reviewed one wins.
    """
    grades = SubjectGrade.objects.filter(
        student=student,
        submission__status=GradeSubmission.Status.APPROVED,
        submission__class_assigned=class_obj,
        submission__term=term,
        submission__academic_session=academic_session,
    ).select_related('submission__subject').order_by(
        'submission__subject__name', '-submission__reviewed_at'
    )

    by_subject = {}
    for grade in grades:
        by_subject.setdefault(grade.submission.subject_id, grade)
    return list(by_subject.values())


def summarize_grades(grades, student_id=None):
    """
    Sum and average the gradable totals of a list of subject grades.

    Raises:
        InsufficientDataError: if none of the grades has a total
    """
    totals = [grade.total_score for grade in grades if grade.total_score is not None]
    if not totals:
        raise InsufficientDataError(student_id)

    total = sum(totals, Decimal('0'))
    average = round_score(total / len(totals))
    return ResultSummary(
        subject_count=len(totals),
        total_score=round_score(total),
        average_score=average,
        grade_letter=grade_letter_for(average),
        remark=overall_remark_for(average),
    )


def aggregate(student, class_obj, term, academic_session):
    """
    Create or refresh a student's Result for a cohort.

    The Result keeps its id across regenerations; its subject lines are
    replaced wholesale. Nothing is written if the student has no gradable
    approved subjects.

    Args:
        student: Student instance
        class_obj: Class the result belongs to
        term: Term instance
        academic_session: AcademicSession instance

    Returns:
        Result: saved result (position unchanged)

    Raises:
        InsufficientDataError: if no approved subject has both scores
    """
    grades = collect_approved_grades(student, class_obj, term, academic_session)
    summary = summarize_grades(grades, student_id=student.pk)

    with transaction.atomic():
        result, created = Result.objects.select_for_update().get_or_create(
            student=student,
            class_assigned=class_obj,
            term=term,
            academic_session=academic_session,
        )
        result.total_score = summary.total_score
        result.average_score = summary.average_score
        result.grade_letter = summary.grade_letter
        result.remark = summary.remark
        result.subject_count = summary.subject_count
        result.generated_at = timezone.now()
        result.save(update_fields=[
            'total_score', 'average_score', 'grade_letter', 'remark',
            'subject_count', 'generated_at', 'updated_at',
        ])

        ResultSubjectLine.objects.filter(result=result).delete()
        ResultSubjectLine.objects.bulk_create([
            ResultSubjectLine(
                result=result,
                subject_id=grade.submission.subject_id,
                ca_score=grade.ca_score,
                exam_score=grade.exam_score,
                total_score=grade.total_score,
                grade_letter=grade.grade_letter,
                remark=grade.comment or remark_for(grade.total_score),
            )
            for grade in grades
        ])

    logger.info(
        f"{'Created' if created else 'Updated'} result for student {student.pk}: "
        f"average {summary.average_score} over {summary.subject_count} subject(s)"
    )
    return result
