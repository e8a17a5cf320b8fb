"""
Grade submission lifecycle.

    DRAFT --submit--> SUBMITTED --approve--> APPROVED
                                --reject---> REJECTED --revise--> (new) DRAFT

Every legal move is listed in TRANSITIONS; anything else raises
InvalidStateError. Each operation runs in a transaction with the submission
row locked, and records a GradeSubmissionEvent.
"""
import logging

from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import IntegrityError, transaction
from django.utils import timezone

from students.models import Student
from .exceptions import ConflictError, InvalidStateError, NotFoundError, ValidationError
from .forms import RejectionForm, SubjectGradeRowForm
from .models import GradeSubmission, GradeSubmissionEvent, SubjectGrade
from .scoring import score_for

logger = logging.getLogger(__name__)

Status = GradeSubmission.Status


class Action:
    EDIT = 'edit'
    SUBMIT = 'submit'
    APPROVE = 'approve'
    REJECT = 'reject'
    REVISE = 'revise'


# (current state, action) -> state of the submission after the action.
# REVISE leaves the rejected sheet as it is and opens a new DRAFT.
TRANSITIONS = {
    (Status.DRAFT, Action.EDIT): Status.DRAFT,
    (Status.DRAFT, Action.SUBMIT): Status.SUBMITTED,
    (Status.SUBMITTED, Action.APPROVE): Status.APPROVED,
    (Status.SUBMITTED, Action.REJECT): Status.REJECTED,
    (Status.REJECTED, Action.REVISE): Status.REJECTED,
}

ACTIVE_STATUSES = (Status.DRAFT, Status.SUBMITTED, Status.APPROVED)


def next_status(current, action):
    """Look up the state a submission moves to, or raise InvalidStateError."""
    try:
        return TRANSITIONS[(current, action)]
    except KeyError:
        raise InvalidStateError(current, action)


def get_submission(submission_id):
    try:
        return GradeSubmission.objects.select_related(
            'class_assigned', 'subject', 'term', 'academic_session'
        ).get(pk=submission_id)
    except (GradeSubmission.DoesNotExist, ValueError, DjangoValidationError):
        raise NotFoundError('GradeSubmission', submission_id)


def _lock_submission(submission_id):
    try:
        return GradeSubmission.objects.select_for_update().get(pk=submission_id)
    except (GradeSubmission.DoesNotExist, ValueError, DjangoValidationError):
        raise NotFoundError('GradeSubmission', submission_id)


def _record_event(submission, from_status, actor=None, note=''):
    GradeSubmissionEvent.objects.create(
        submission=submission,
        from_status=from_status or '',
        to_status=submission.status,
        actor=actor,
        note=note,
    )


def _has_active_submission(class_obj, subject, term, academic_session):
    return GradeSubmission.objects.filter(
        class_assigned=class_obj,
        subject=subject,
        term=term,
        academic_session=academic_session,
        status__in=ACTIVE_STATUSES,
    ).exists()


def create_draft(teacher, class_obj, subject, term, academic_session):
    """
    Open a new, empty grade sheet for (class, subject, term, session).

    Raises:
        ValidationError: if the term is not part of the academic session
        ConflictError: if a draft, submitted or approved sheet already exists
    """
    if not term.belongs_to(academic_session):
        raise ValidationError(
            f"Term {term.pk} does not belong to academic session {academic_session.pk}",
            kind=ValidationError.INVALID_FIELD,
            field='term',
        )

    if _has_active_submission(class_obj, subject, term, academic_session):
        raise ConflictError(
            f"An active grade submission already exists for {subject} in {class_obj} ({term})"
        )

    try:
        with transaction.atomic():
            submission = GradeSubmission.objects.create(
                teacher=teacher,
                class_assigned=class_obj,
                subject=subject,
                term=term,
                academic_session=academic_session,
            )
            _record_event(submission, None, actor=teacher.user)
    except IntegrityError:
        # Lost a race with another teacher creating the same sheet
        raise ConflictError(
            f"An active grade submission already exists for {subject} in {class_obj} ({term})"
        )

    logger.info(f"Created draft grade submission {submission.pk} for {subject} in {class_obj}")
    return submission


def _clean_rows(rows):
    """Validate every row before anything is written. Returns cleaned dicts."""
    cleaned_rows = []
    seen = set()
    for index, row in enumerate(rows):
        form = SubjectGradeRowForm(data=row)
        if not form.is_valid():
            raise ValidationError(
                f"Row {index} is invalid",
                kind=ValidationError.INVALID_FIELD,
                errors=form.errors.get_json_data(),
            )
        data = form.cleaned_data
        student_id = data['student_id']
        if student_id in seen:
            raise ValidationError(
                f"Student {student_id} appears more than once",
                kind=ValidationError.INVALID_FIELD,
                field='student_id',
            )
        seen.add(student_id)

        # Only keys present in the row overwrite stored values
        cleaned = {'student_id': student_id}
        for field in ('ca_score', 'exam_score', 'comment'):
            if field in row:
                cleaned[field] = data[field]
        cleaned_rows.append(cleaned)
    return cleaned_rows


def upsert_grades(submission_id, rows):
    """
    Create or overwrite student rows on a DRAFT submission.

    Args:
        submission_id: GradeSubmission id
        rows: iterable of dicts with student_id and any of ca_score,
            exam_score, comment. Omitted keys keep their stored value;
            an explicit None clears it.

    Returns:
        list of the saved SubjectGrade rows, in input order

    Raises:
        InvalidStateError: if the submission is not a DRAFT
        ValidationError: for malformed rows or out-of-range scores
        NotFoundError: for an unknown submission or student
    """
    rows = list(rows)

    with transaction.atomic():
        submission = _lock_submission(submission_id)
        next_status(submission.status, Action.EDIT)
        cleaned_rows = _clean_rows(rows)

        student_ids = [row['student_id'] for row in cleaned_rows]
        known = set(Student.objects.filter(pk__in=student_ids).values_list('pk', flat=True))
        for student_id in student_ids:
            if student_id not in known:
                raise NotFoundError('Student', student_id)

        existing = {
            grade.student_id: grade
            for grade in SubjectGrade.objects.filter(submission=submission, student_id__in=student_ids)
        }

        saved = []
        for row in cleaned_rows:
            grade = existing.get(row['student_id']) or SubjectGrade(
                submission=submission, student_id=row['student_id']
            )
            ca = row.get('ca_score', grade.ca_score)
            exam = row.get('exam_score', grade.exam_score)
            breakdown = score_for(ca, exam)

            grade.ca_score = breakdown.ca_score
            grade.exam_score = breakdown.exam_score
            grade.total_score = breakdown.total_score
            grade.grade_letter = breakdown.grade_letter
            if 'comment' in row:
                grade.comment = row['comment'] or ''
            grade.save()
            saved.append(grade)

        # Touch updated_at so reviewers can see the sheet changed
        submission.save(update_fields=['updated_at'])

    logger.info(f"Saved {len(saved)} grade row(s) on submission {submission_id}")
    return saved


def submit(submission_id):
    """
    Send a DRAFT sheet for review.

    Raises:
        InvalidStateError: unless the submission is a DRAFT
        ValidationError: kind NO_GRADABLE_ROWS when no row has a total
    """
    with transaction.atomic():
        submission = _lock_submission(submission_id)
        new_status = next_status(submission.status, Action.SUBMIT)

        if not submission.grades.filter(total_score__isnull=False).exists():
            raise ValidationError(
                'A submission needs at least one student with both CA and exam scores',
                kind=ValidationError.NO_GRADABLE_ROWS,
            )

        previous = submission.status
        submission.status = new_status
        submission.submitted_at = timezone.now()
        submission.save(update_fields=['status', 'submitted_at', 'updated_at'])
        _record_event(submission, previous, actor=submission.teacher.user)

    logger.info(f"Grade submission {submission_id} submitted for review")
    return submission


def approve(submission_id, reviewer):
    """
    Approve a SUBMITTED sheet.

    Result regeneration for the class cohort is scheduled with
    transaction.on_commit, so it only ever sees the committed approval.
    """
    from .tasks import dispatch_result_generation

    with transaction.atomic():
        submission = _lock_submission(submission_id)
        new_status = next_status(submission.status, Action.APPROVE)

        previous = submission.status
        submission.status = new_status
        submission.reviewed_at = timezone.now()
        submission.reviewed_by = reviewer
        submission.save(update_fields=['status', 'reviewed_at', 'reviewed_by', 'updated_at'])
        _record_event(submission, previous, actor=reviewer)

        class_id = submission.class_assigned_id
        term_id = submission.term_id
        academic_session_id = submission.academic_session_id
        transaction.on_commit(
            lambda: dispatch_result_generation(class_id, term_id, academic_session_id)
        )

    logger.info(f"Grade submission {submission_id} approved by {reviewer}")
    return submission


def reject(submission_id, reviewer, reason):
    """
    Send a SUBMITTED sheet back to its teacher. Results are not touched.

    Raises:
        ValidationError: kind REQUIRED for a blank reason, INVALID_FIELD when
            the reason is too long
        InvalidStateError: unless the submission is SUBMITTED
    """
    form = RejectionForm(data={'reason': reason})
    if not form.is_valid():
        errors = form.errors.get_json_data()
        codes = {error['code'] for error in errors.get('reason', [])}
        raise ValidationError(
            'A rejection reason of at most 255 characters is required',
            kind=ValidationError.REQUIRED if 'required' in codes else ValidationError.INVALID_FIELD,
            field='reason',
            errors=errors,
        )
    reason = form.cleaned_data['reason']

    with transaction.atomic():
        submission = _lock_submission(submission_id)
        new_status = next_status(submission.status, Action.REJECT)

        previous = submission.status
        submission.status = new_status
        submission.reviewed_at = timezone.now()
        submission.reviewed_by = reviewer
        submission.rejection_reason = reason
        submission.save(
            update_fields=['status', 'reviewed_at', 'reviewed_by', 'rejection_reason', 'updated_at']
        )
        _record_event(submission, previous, actor=reviewer, note=reason)

    logger.info(f"Grade submission {submission_id} rejected by {reviewer}")
    return submission


def revise(submission_id, teacher=None):
    """
    Re-open a REJECTED sheet as a new DRAFT carrying over its rows.

    The rejected submission keeps its status for the audit trail.

    Args:
        submission_id: the REJECTED GradeSubmission
        teacher: owner of the new draft (defaults to the original teacher)

    Raises:
        InvalidStateError: unless the submission is REJECTED
        ConflictError: if another active sheet was opened in the meantime
    """
    with transaction.atomic():
        rejected = _lock_submission(submission_id)
        next_status(rejected.status, Action.REVISE)
        owner = teacher or rejected.teacher

        if _has_active_submission(
            rejected.class_assigned_id, rejected.subject_id, rejected.term_id, rejected.academic_session_id
        ):
            raise ConflictError(
                f"An active grade submission already exists for the sheet of {submission_id}"
            )

        try:
            with transaction.atomic():
                draft = GradeSubmission.objects.create(
                    teacher=owner,
                    class_assigned_id=rejected.class_assigned_id,
                    subject_id=rejected.subject_id,
                    term_id=rejected.term_id,
                    academic_session_id=rejected.academic_session_id,
                )
        except IntegrityError:
            raise ConflictError(
                f"An active grade submission already exists for the sheet of {submission_id}"
            )

        SubjectGrade.objects.bulk_create([
            SubjectGrade(
                submission=draft,
                student_id=grade.student_id,
                ca_score=grade.ca_score,
                exam_score=grade.exam_score,
                total_score=grade.total_score,
                grade_letter=grade.grade_letter,
                comment=grade.comment,
            )
            for grade in rejected.grades.all()
        ])
        _record_event(draft, None, actor=owner.user, note=f"Revision of {rejected.pk}")

    logger.info(f"Opened draft {draft.pk} as a revision of rejected submission {submission_id}")
    return draft
