import uuid
from django.conf import settings
from django.db import models
from django.core.validators import MinValueValidator, MaxValueValidator
from django.utils.translation import gettext_lazy as _
from decimal import Decimal
from academics.models import Class, Subject
from students.models import Student
from teachers.models import Teacher
from core.models import AcademicSession, Term


class GradeSubmission(models.Model):
    """
    A teacher's grade sheet for one class/subject/term/session.

    Status only changes through gradebook.submissions; rows are never
    deleted so the review history stays auditable.
    """
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    class Status(models.TextChoices):
        DRAFT = 'DRAFT', _('Draft')
        SUBMITTED = 'SUBMITTED', _('Submitted')
        APPROVED = 'APPROVED', _('Approved')
        REJECTED = 'REJECTED', _('Rejected')

    teacher = models.ForeignKey(
        Teacher,
        on_delete=models.PROTECT,
        related_name='grade_submissions'
    )
    class_assigned = models.ForeignKey(
        Class,
        on_delete=models.CASCADE,
        related_name='grade_submissions'
    )
    subject = models.ForeignKey(
        Subject,
        on_delete=models.CASCADE,
        related_name='grade_submissions'
    )
    term = models.ForeignKey(
        Term,
        on_delete=models.CASCADE,
        related_name='grade_submissions'
    )
    academic_session = models.ForeignKey(
        AcademicSession,
        on_delete=models.CASCADE,
        related_name='grade_submissions'
    )

    status = models.CharField(
        max_length=10,
        choices=Status.choices,
        default=Status.DRAFT,
        db_index=True
    )
    submitted_at = models.DateTimeField(null=True, blank=True)
    reviewed_at = models.DateTimeField(null=True, blank=True)
    reviewed_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='reviewed_grade_submissions'
    )
    rejection_reason = models.CharField(max_length=255, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return f"{self.subject.name} - {self.class_assigned.name} ({self.term}): {self.status}"

    @property
    def is_editable(self):
        return self.status == self.Status.DRAFT

    class Meta:
        db_table = 'grade_submission'
        ordering = ['-created_at']
        verbose_name = 'Grade Submission'
        verbose_name_plural = 'Grade Submissions'
        constraints = [
            # Rejected sheets stay for audit and must not block a new draft
            models.UniqueConstraint(
                fields=['class_assigned', 'subject', 'term', 'academic_session'],
                condition=~models.Q(status='REJECTED'),
                name='unique_active_grade_submission',
            ),
        ]
        indexes = [
            models.Index(fields=['class_assigned', 'term', 'academic_session', 'status'], name='grade_sub_cohort_status_idx'),
        ]


class SubjectGrade(models.Model):
    """One student's scores within a grade submission."""
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    submission = models.ForeignKey(
        GradeSubmission,
        on_delete=models.CASCADE,
        related_name='grades'
    )
    student = models.ForeignKey(
        Student,
        on_delete=models.CASCADE,
        related_name='subject_grades'
    )
    ca_score = models.DecimalField(
        max_digits=5,
        decimal_places=2,
        null=True,
        blank=True,
        validators=[MinValueValidator(Decimal('0'))],
        help_text='Continuous assessment score'
    )
    exam_score = models.DecimalField(
        max_digits=5,
        decimal_places=2,
        null=True,
        blank=True,
        validators=[MinValueValidator(Decimal('0'))],
        help_text='Examination score'
    )
    total_score = models.DecimalField(
        max_digits=5,
        decimal_places=2,
        null=True,
        blank=True,
        validators=[MinValueValidator(Decimal('0')), MaxValueValidator(Decimal('100'))],
        help_text='CA + exam, only when both are recorded'
    )
    grade_letter = models.CharField(max_length=2, blank=True)
    comment = models.CharField(max_length=200, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return f"{self.student} - {self.submission.subject.name}: {self.total_score}"

    class Meta:
        db_table = 'subject_grade'
        ordering = ['submission', 'student']
        verbose_name = 'Subject Grade'
        verbose_name_plural = 'Subject Grades'
        unique_together = ['submission', 'student']
        indexes = [
            models.Index(fields=['student', 'submission'], name='subject_grade_student_idx'),
        ]


class GradeSubmissionEvent(models.Model):
    """
    Audit log for submission state changes. Tracks who moved a sheet and when.
    """
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    submission = models.ForeignKey(
        GradeSubmission,
        on_delete=models.CASCADE,
        related_name='events'
    )
    from_status = models.CharField(max_length=10, blank=True)
    to_status = models.CharField(max_length=10)
    actor = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='grade_submission_events'
    )
    note = models.CharField(max_length=255, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    def __str__(self):
        return f"{self.submission_id}: {self.from_status or '-'} -> {self.to_status}"

    class Meta:
        db_table = 'grade_submission_event'
        ordering = ['created_at']
        verbose_name = 'Grade Submission Event'
        verbose_name_plural = 'Grade Submission Events'


class Result(models.Model):
    """
    Overall term result for a student (report card summary).
    Aggregated from approved SubjectGrades; regenerated in place.
    """
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    student = models.ForeignKey(
        Student,
        on_delete=models.CASCADE,
        related_name='results'
    )
    class_assigned = models.ForeignKey(
        Class,
        on_delete=models.CASCADE,
        related_name='results'
    )
    term = models.ForeignKey(
        Term,
        on_delete=models.CASCADE,
        related_name='results'
    )
    academic_session = models.ForeignKey(
        AcademicSession,
        on_delete=models.CASCADE,
        related_name='results'
    )

    # Aggregated scores
    total_score = models.DecimalField(
        max_digits=8,
        decimal_places=2,
        null=True,
        blank=True,
        help_text='Sum of all subject totals'
    )
    average_score = models.DecimalField(
        max_digits=5,
        decimal_places=2,
        null=True,
        blank=True,
        help_text='Average across graded subjects'
    )
    grade_letter = models.CharField(max_length=2, blank=True)

    # Class position
    position = models.PositiveSmallIntegerField(
        null=True,
        blank=True,
        help_text='Overall class position'
    )

    remark = models.CharField(max_length=255, blank=True)
    subject_count = models.PositiveSmallIntegerField(default=0)
    generated_at = models.DateTimeField(null=True, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return f"{self.student} - {self.term}: Position {self.position}"

    class Meta:
        db_table = 'result'
        ordering = ['term', 'position']
        verbose_name = 'Result'
        verbose_name_plural = 'Results'
        constraints = [
            models.UniqueConstraint(
                fields=['student', 'class_assigned', 'term', 'academic_session'],
                name='unique_student_result',
            ),
        ]
        indexes = [
            models.Index(fields=['class_assigned', 'term', 'academic_session'], name='result_cohort_idx'),
        ]


class ResultSubjectLine(models.Model):
    """Frozen copy of one subject's contribution to a Result."""
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    result = models.ForeignKey(
        Result,
        on_delete=models.CASCADE,
        related_name='subject_lines'
    )
    subject = models.ForeignKey(
        Subject,
        on_delete=models.CASCADE,
        related_name='result_lines'
    )
    ca_score = models.DecimalField(max_digits=5, decimal_places=2, null=True, blank=True)
    exam_score = models.DecimalField(max_digits=5, decimal_places=2, null=True, blank=True)
    total_score = models.DecimalField(max_digits=5, decimal_places=2, null=True, blank=True)
    grade_letter = models.CharField(max_length=2, blank=True)
    remark = models.CharField(max_length=200, blank=True)

    def __str__(self):
        return f"{self.subject.name}: {self.total_score} ({self.grade_letter})"

    class Meta:
        db_table = 'result_subject_line'
        ordering = ['result', 'subject__name']
        verbose_name = 'Result Subject Line'
        verbose_name_plural = 'Result Subject Lines'
        unique_together = ['result', 'subject']


class ClassResultStatistics(models.Model):
    """
    Class-wide statistics for a cohort (class, term, session).

    Written by the ranking engine; the row is also the cohort marker that
    ranking locks while it recomputes positions.
    """
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    class_assigned = models.ForeignKey(
        Class,
        on_delete=models.CASCADE,
        related_name='result_statistics'
    )
    term = models.ForeignKey(
        Term,
        on_delete=models.CASCADE,
        related_name='result_statistics'
    )
    academic_session = models.ForeignKey(
        AcademicSession,
        on_delete=models.CASCADE,
        related_name='result_statistics'
    )
    highest_score = models.DecimalField(max_digits=5, decimal_places=2, null=True, blank=True)
    lowest_score = models.DecimalField(max_digits=5, decimal_places=2, null=True, blank=True)
    class_average = models.DecimalField(max_digits=5, decimal_places=2, null=True, blank=True)
    total_students = models.PositiveIntegerField(default=0)
    ranked_at = models.DateTimeField(null=True, blank=True)

    def __str__(self):
        return f"{self.class_assigned} - {self.term}: avg {self.class_average}"

    class Meta:
        db_table = 'class_result_statistics'
        verbose_name = 'Class Result Statistics'
        verbose_name_plural = 'Class Result Statistics'
        constraints = [
            models.UniqueConstraint(
                fields=['class_assigned', 'term', 'academic_session'],
                name='unique_cohort_statistics',
            ),
        ]
