import threading
import time
import uuid
from datetime import date
from decimal import Decimal
from unittest import mock

from django.contrib.auth import get_user_model
from django.core.exceptions import ImproperlyConfigured
from django.test import TestCase, override_settings

from academics.models import Class, Subject
from core.models import AcademicSession, Term
from students.models import Enrollment, Student
from teachers.models import Teacher

from .aggregation import aggregate, collect_approved_grades, summarize_grades
from .exceptions import (
    CohortLockTimeout,
    ConflictError,
    InsufficientDataError,
    InvalidStateError,
    NotFoundError,
    ResultGenerationError,
    ResultGenerationTimeout,
    ValidationError,
)
from .generation import _fan_out, generate_for_class, generate_for_student, resolve_student_class
from .locks import cohort_lock, is_locked
from .models import ClassResultStatistics, GradeSubmission, Result, ResultSubjectLine, SubjectGrade
from .ranking import assign_positions, compute_statistics, rank
from .scoring import grade_letter_for, overall_remark_for, remark_for, round_score, score_for
from .submissions import (
    TRANSITIONS,
    Action,
    approve,
    create_draft,
    get_submission,
    next_status,
    reject,
    revise,
    submit,
    upsert_grades,
)
from .tasks import dispatch_result_generation, generate_class_results, generate_student_result
from .utils import get_class_results, get_result, get_student_results, serialize_result


User = get_user_model()


class GradebookTestCase(TestCase):
    """Shared fixtures: one class, three subjects, a teacher and a reviewer."""

    def setUp(self):
        self.session = AcademicSession.objects.create(
            name='2024/2025',
            start_date=date(2024, 9, 1),
            end_date=date(2025, 7, 31),
            is_current=True,
        )
        self.term = Term.objects.create(
            academic_session=self.session,
            name='First Term',
            term_number=1,
            start_date=date(2024, 9, 1),
            end_date=date(2024, 12, 20),
            is_current=True,
        )
        self.class_obj = Class.objects.create(name='JHS1-A')
        self.math = Subject.objects.create(name='Mathematics')
        self.english = Subject.objects.create(name='English Language')
        self.science = Subject.objects.create(name='Integrated Science')

        teacher_user = User.objects.create_user(email='teacher@school.com', password='pass')
        self.teacher = Teacher.objects.create(
            first_name='Ama', last_name='Owusu', staff_id='TCH-001', user=teacher_user
        )
        self.reviewer = User.objects.create_user(email='head@school.com', password='pass')

    def _student(self, number, class_obj=None, enroll=True):
        student = Student.objects.create(
            first_name='Kofi',
            last_name=f'Student{number:02d}',
            admission_number=f'STU{number:03d}',
        )
        if enroll:
            Enrollment.objects.create(
                student=student,
                academic_session=self.session,
                class_assigned=class_obj or self.class_obj,
            )
        return student

    def _draft(self, subject):
        return create_draft(self.teacher, self.class_obj, subject, self.term, self.session)

    def _approved_sheet(self, subject, rows):
        submission = self._draft(subject)
        upsert_grades(submission.pk, rows)
        submit(submission.pk)
        approve(submission.pk, self.reviewer)
        return submission


class ScoringTests(TestCase):
    """Tests for score validation and grade lookup."""

    def test_score_for_complete_pair(self):
        """Both scores present yields a total, letter and remark."""
        breakdown = score_for(25, Decimal('52.5'))
        self.assertEqual(breakdown.total_score, Decimal('77.50'))
        self.assertEqual(breakdown.grade_letter, 'B')
        self.assertEqual(breakdown.remark, 'Very Good')
        self.assertTrue(breakdown.is_gradable)

    def test_score_for_missing_exam(self):
        """A missing score leaves the subject ungraded."""
        breakdown = score_for(20, None)
        self.assertEqual(breakdown.ca_score, Decimal('20.00'))
        self.assertIsNone(breakdown.total_score)
        self.assertEqual(breakdown.grade_letter, '')
        self.assertFalse(breakdown.is_gradable)

    def test_out_of_range_scores(self):
        """Scores outside their bounds raise OUT_OF_RANGE."""
        for ca, exam, field in [(31, 50, 'ca_score'), (-1, 50, 'ca_score'), (20, 70.01, 'exam_score')]:
            with self.assertRaises(ValidationError) as ctx:
                score_for(ca, exam)
            self.assertEqual(ctx.exception.kind, ValidationError.OUT_OF_RANGE)
            self.assertEqual(ctx.exception.field, field)

    def test_bounds_are_inclusive(self):
        breakdown = score_for(30, 70)
        self.assertEqual(breakdown.total_score, Decimal('100.00'))
        self.assertEqual(score_for(0, 0).grade_letter, 'F')

    def test_non_numeric_scores(self):
        """Strings, booleans and NaN are rejected as INVALID_FIELD."""
        for value in ['abc', True, 'NaN']:
            with self.assertRaises(ValidationError) as ctx:
                score_for(value, 50)
            self.assertEqual(ctx.exception.kind, ValidationError.INVALID_FIELD)

    def test_grade_boundaries(self):
        """Each band starts at its minimum, inclusive."""
        cases = [
            (Decimal('100'), 'A'), (Decimal('80'), 'A'), (Decimal('79.99'), 'B'),
            (Decimal('70'), 'B'), (Decimal('60'), 'C'), (Decimal('50'), 'D'),
            (Decimal('40'), 'E'), (Decimal('39.99'), 'F'), (Decimal('0'), 'F'),
        ]
        for score, letter in cases:
            self.assertEqual(grade_letter_for(score), letter, score)

    def test_remarks(self):
        self.assertEqual(remark_for(Decimal('85')), 'Excellent')
        self.assertEqual(remark_for(Decimal('45')), 'Poor')
        self.assertEqual(remark_for(None), '')
        self.assertEqual(overall_remark_for(None), 'No grades available')
        self.assertEqual(overall_remark_for(Decimal('61.67')), 'Good')

    def test_round_score_half_up(self):
        self.assertEqual(round_score(Decimal('77.125')), Decimal('77.13'))
        self.assertEqual(round_score(Decimal('185') / 3), Decimal('61.67'))
        self.assertIsNone(round_score(None))

    @override_settings(GRADEBOOK_GRADING_SCALE=[
        {'grade': 'P', 'min': 0, 'remark': 'Pass'},
        {'grade': 'D', 'min': 70, 'remark': 'Distinction'},
    ])
    def test_misordered_scale_is_rejected(self):
        with self.assertRaises(ImproperlyConfigured):
            grade_letter_for(Decimal('75'))

    @override_settings(GRADEBOOK_CA_MAX_SCORE=Decimal('40'), GRADEBOOK_EXAM_MAX_SCORE=Decimal('60'))
    def test_configurable_bounds(self):
        self.assertEqual(score_for(40, 60).total_score, Decimal('100.00'))
        with self.assertRaises(ValidationError):
            score_for(20, 61)


class TransitionTableTests(TestCase):
    """Tests for the submission transition table."""

    def test_only_listed_transitions_are_legal(self):
        """Every (state, action) pair outside the table is refused."""
        actions = [Action.EDIT, Action.SUBMIT, Action.APPROVE, Action.REJECT, Action.REVISE]
        for status in GradeSubmission.Status.values:
            for action in actions:
                if (status, action) in TRANSITIONS:
                    self.assertEqual(next_status(status, action), TRANSITIONS[(status, action)])
                else:
                    with self.assertRaises(InvalidStateError) as ctx:
                        next_status(status, action)
                    self.assertEqual(ctx.exception.current_state, status)
                    self.assertEqual(ctx.exception.attempted_transition, action)

    def test_approved_is_terminal(self):
        self.assertFalse([key for key in TRANSITIONS if key[0] == GradeSubmission.Status.APPROVED])


class CreateDraftTests(GradebookTestCase):
    """Tests for opening grade sheets."""

    def test_create_draft(self):
        submission = self._draft(self.math)
        self.assertEqual(submission.status, GradeSubmission.Status.DRAFT)
        self.assertTrue(submission.is_editable)
        event = submission.events.get()
        self.assertEqual(event.from_status, '')
        self.assertEqual(event.to_status, GradeSubmission.Status.DRAFT)
        self.assertEqual(event.actor, self.teacher.user)

    def test_duplicate_active_sheet_conflicts(self):
        """Only one active sheet per class/subject/term/session."""
        self._draft(self.math)
        with self.assertRaises(ConflictError):
            self._draft(self.math)

    def test_approved_sheet_blocks_new_draft(self):
        student = self._student(1)
        self._approved_sheet(self.math, [{'student_id': student.pk, 'ca_score': 20, 'exam_score': 50}])
        with self.assertRaises(ConflictError):
            self._draft(self.math)

    def test_rejected_sheet_does_not_block(self):
        student = self._student(1)
        submission = self._draft(self.math)
        upsert_grades(submission.pk, [{'student_id': student.pk, 'ca_score': 20, 'exam_score': 50}])
        submit(submission.pk)
        reject(submission.pk, self.reviewer, 'Scores look inflated')

        fresh = self._draft(self.math)
        self.assertNotEqual(fresh.pk, submission.pk)

    def test_term_from_another_session(self):
        other_session = AcademicSession.objects.create(
            name='2025/2026', start_date=date(2025, 9, 1), end_date=date(2026, 7, 31)
        )
        with self.assertRaises(ValidationError) as ctx:
            create_draft(self.teacher, self.class_obj, self.math, self.term, other_session)
        self.assertEqual(ctx.exception.field, 'term')

    def test_get_submission_unknown(self):
        with self.assertRaises(NotFoundError):
            get_submission(uuid.uuid4())


class UpsertGradesTests(GradebookTestCase):
    """Tests for entering scores on a draft."""

    def setUp(self):
        super().setUp()
        self.student = self._student(1)
        self.submission = self._draft(self.math)

    def test_upsert_computes_total_and_letter(self):
        rows = upsert_grades(self.submission.pk, [
            {'student_id': self.student.pk, 'ca_score': 25, 'exam_score': '52.5', 'comment': ' Good work '},
        ])
        grade = SubjectGrade.objects.get(pk=rows[0].pk)
        self.assertEqual(grade.total_score, Decimal('77.50'))
        self.assertEqual(grade.grade_letter, 'B')
        self.assertEqual(grade.comment, 'Good work')

    def test_upsert_overwrites_existing_row(self):
        upsert_grades(self.submission.pk, [{'student_id': self.student.pk, 'ca_score': 10, 'exam_score': 30}])
        upsert_grades(self.submission.pk, [{'student_id': self.student.pk, 'ca_score': 28, 'exam_score': 60}])
        grade = SubjectGrade.objects.get(submission=self.submission, student=self.student)
        self.assertEqual(grade.total_score, Decimal('88.00'))
        self.assertEqual(SubjectGrade.objects.filter(submission=self.submission).count(), 1)

    def test_omitted_keys_keep_stored_values(self):
        """A row with only exam_score leaves ca_score and comment alone."""
        upsert_grades(self.submission.pk, [
            {'student_id': self.student.pk, 'ca_score': 20, 'comment': 'Late'},
        ])
        upsert_grades(self.submission.pk, [{'student_id': self.student.pk, 'exam_score': 45}])
        grade = SubjectGrade.objects.get(submission=self.submission, student=self.student)
        self.assertEqual(grade.ca_score, Decimal('20.00'))
        self.assertEqual(grade.total_score, Decimal('65.00'))
        self.assertEqual(grade.comment, 'Late')

    def test_explicit_none_clears_score(self):
        upsert_grades(self.submission.pk, [{'student_id': self.student.pk, 'ca_score': 20, 'exam_score': 45}])
        upsert_grades(self.submission.pk, [{'student_id': self.student.pk, 'exam_score': None}])
        grade = SubjectGrade.objects.get(submission=self.submission, student=self.student)
        self.assertIsNone(grade.exam_score)
        self.assertIsNone(grade.total_score)
        self.assertEqual(grade.grade_letter, '')

    def test_out_of_range_writes_nothing(self):
        """A bad row aborts the whole batch."""
        other = self._student(2)
        with self.assertRaises(ValidationError) as ctx:
            upsert_grades(self.submission.pk, [
                {'student_id': self.student.pk, 'ca_score': 20, 'exam_score': 45},
                {'student_id': other.pk, 'ca_score': 35, 'exam_score': 45},
            ])
        self.assertEqual(ctx.exception.kind, ValidationError.OUT_OF_RANGE)
        self.assertFalse(SubjectGrade.objects.filter(submission=self.submission).exists())

    def test_unknown_student(self):
        with self.assertRaises(NotFoundError):
            upsert_grades(self.submission.pk, [{'student_id': 999999, 'ca_score': 20, 'exam_score': 45}])
        self.assertFalse(SubjectGrade.objects.filter(submission=self.submission).exists())

    def test_malformed_row(self):
        for row in [{'ca_score': 20}, {'student_id': 'abc'}, {'student_id': self.student.pk, 'comment': 'x' * 201}]:
            with self.assertRaises(ValidationError) as ctx:
                upsert_grades(self.submission.pk, [row])
            self.assertEqual(ctx.exception.kind, ValidationError.INVALID_FIELD)

    def test_duplicate_student_in_batch(self):
        with self.assertRaises(ValidationError):
            upsert_grades(self.submission.pk, [
                {'student_id': self.student.pk, 'ca_score': 20},
                {'student_id': self.student.pk, 'ca_score': 25},
            ])

    def test_upsert_after_submit_is_refused(self):
        upsert_grades(self.submission.pk, [{'student_id': self.student.pk, 'ca_score': 20, 'exam_score': 45}])
        submit(self.submission.pk)
        with self.assertRaises(InvalidStateError) as ctx:
            upsert_grades(self.submission.pk, [{'student_id': self.student.pk, 'ca_score': 10}])
        self.assertEqual(ctx.exception.current_state, GradeSubmission.Status.SUBMITTED)

    def test_state_is_checked_before_row_contents(self):
        """A bad row on a submitted sheet reports the sheet state."""
        upsert_grades(self.submission.pk, [{'student_id': self.student.pk, 'ca_score': 20, 'exam_score': 45}])
        submit(self.submission.pk)
        for row in [{'ca_score': 20}, {'student_id': self.student.pk, 'ca_score': 99}]:
            with self.assertRaises(InvalidStateError):
                upsert_grades(self.submission.pk, [row])


class SubmissionLifecycleTests(GradebookTestCase):
    """Tests for submit, approve, reject and revise."""

    def setUp(self):
        super().setUp()
        self.student = self._student(1)
        self.submission = self._draft(self.math)
        upsert_grades(self.submission.pk, [
            {'student_id': self.student.pk, 'ca_score': 20, 'exam_score': 45, 'comment': 'Steady'},
        ])

    def test_submit(self):
        submission = submit(self.submission.pk)
        self.assertEqual(submission.status, GradeSubmission.Status.SUBMITTED)
        self.assertIsNotNone(submission.submitted_at)

    def test_submit_without_gradable_rows(self):
        """A sheet where nobody has both scores cannot be submitted."""
        empty = self._draft(self.english)
        upsert_grades(empty.pk, [{'student_id': self.student.pk, 'ca_score': 20}])
        with self.assertRaises(ValidationError) as ctx:
            submit(empty.pk)
        self.assertEqual(ctx.exception.kind, ValidationError.NO_GRADABLE_ROWS)
        self.assertEqual(get_submission(empty.pk).status, GradeSubmission.Status.DRAFT)

    def test_approve_requires_submitted(self):
        with self.assertRaises(InvalidStateError) as ctx:
            approve(self.submission.pk, self.reviewer)
        self.assertEqual(ctx.exception.current_state, GradeSubmission.Status.DRAFT)
        self.assertEqual(ctx.exception.attempted_transition, Action.APPROVE)

    def test_approve(self):
        submit(self.submission.pk)
        submission = approve(self.submission.pk, self.reviewer)
        self.assertEqual(submission.status, GradeSubmission.Status.APPROVED)
        self.assertEqual(submission.reviewed_by, self.reviewer)
        self.assertIsNotNone(submission.reviewed_at)

    def test_approved_sheet_is_final(self):
        submit(self.submission.pk)
        approve(self.submission.pk, self.reviewer)
        with self.assertRaises(InvalidStateError):
            reject(self.submission.pk, self.reviewer, 'Too late')
        with self.assertRaises(InvalidStateError):
            upsert_grades(self.submission.pk, [{'student_id': self.student.pk, 'ca_score': 1}])

    def test_reject_requires_reason(self):
        submit(self.submission.pk)
        for reason in ['', '   ', None]:
            with self.assertRaises(ValidationError) as ctx:
                reject(self.submission.pk, self.reviewer, reason)
            self.assertEqual(ctx.exception.kind, ValidationError.REQUIRED)
        self.assertEqual(get_submission(self.submission.pk).status, GradeSubmission.Status.SUBMITTED)

    def test_reject_reason_too_long(self):
        submit(self.submission.pk)
        with self.assertRaises(ValidationError) as ctx:
            reject(self.submission.pk, self.reviewer, 'x' * 256)
        self.assertEqual(ctx.exception.kind, ValidationError.INVALID_FIELD)

    def test_reject(self):
        submit(self.submission.pk)
        submission = reject(self.submission.pk, self.reviewer, '  Check the exam column  ')
        self.assertEqual(submission.status, GradeSubmission.Status.REJECTED)
        self.assertEqual(submission.rejection_reason, 'Check the exam column')

    def test_revise_opens_new_draft_with_rows(self):
        """The rejected sheet is kept and its rows are copied to a new draft."""
        submit(self.submission.pk)
        reject(self.submission.pk, self.reviewer, 'Recheck')

        draft = revise(self.submission.pk)
        self.assertNotEqual(draft.pk, self.submission.pk)
        self.assertEqual(draft.status, GradeSubmission.Status.DRAFT)
        self.assertEqual(draft.teacher, self.teacher)
        copied = draft.grades.get()
        self.assertEqual(copied.student, self.student)
        self.assertEqual(copied.total_score, Decimal('65.00'))
        self.assertEqual(copied.comment, 'Steady')
        self.assertEqual(get_submission(self.submission.pk).status, GradeSubmission.Status.REJECTED)

    def test_revise_only_from_rejected(self):
        with self.assertRaises(InvalidStateError):
            revise(self.submission.pk)

    def test_revise_conflicts_with_newer_sheet(self):
        submit(self.submission.pk)
        reject(self.submission.pk, self.reviewer, 'Recheck')
        self._draft(self.math)
        with self.assertRaises(ConflictError):
            revise(self.submission.pk)

    def test_every_transition_is_audited(self):
        submit(self.submission.pk)
        reject(self.submission.pk, self.reviewer, 'Recheck')
        transitions = set(self.submission.events.values_list('from_status', 'to_status', 'actor'))
        self.assertEqual(transitions, {
            ('', 'DRAFT', self.teacher.user.pk),
            ('DRAFT', 'SUBMITTED', self.teacher.user.pk),
            ('SUBMITTED', 'REJECTED', self.reviewer.pk),
        })


class AggregationTests(GradebookTestCase):
    """Tests for per-student result aggregation."""

    def setUp(self):
        super().setUp()
        self.student = self._student(1)

    def test_two_subject_average(self):
        """Totals 80 and 75 average to 77.50 (B, Very Good)."""
        self._approved_sheet(self.math, [{'student_id': self.student.pk, 'ca_score': 30, 'exam_score': 50}])
        self._approved_sheet(self.english, [{'student_id': self.student.pk, 'ca_score': 25, 'exam_score': 50}])

        result = aggregate(self.student, self.class_obj, self.term, self.session)
        self.assertEqual(result.total_score, Decimal('155.00'))
        self.assertEqual(result.average_score, Decimal('77.50'))
        self.assertEqual(result.grade_letter, 'B')
        self.assertEqual(result.remark, 'Very Good')
        self.assertEqual(result.subject_count, 2)
        self.assertIsNone(result.position)

    def test_three_subject_average_rounds_half_up(self):
        """Totals 60, 60 and 65 average to 61.67 (C)."""
        self._approved_sheet(self.math, [{'student_id': self.student.pk, 'ca_score': 20, 'exam_score': 40}])
        self._approved_sheet(self.english, [{'student_id': self.student.pk, 'ca_score': 20, 'exam_score': 40}])
        self._approved_sheet(self.science, [{'student_id': self.student.pk, 'ca_score': 25, 'exam_score': 40}])

        result = aggregate(self.student, self.class_obj, self.term, self.session)
        self.assertEqual(result.total_score, Decimal('185.00'))
        self.assertEqual(result.average_score, Decimal('61.67'))
        self.assertEqual(result.grade_letter, 'C')

    def test_ungraded_subject_is_listed_but_not_averaged(self):
        other = self._student(2)
        self._approved_sheet(self.math, [{'student_id': self.student.pk, 'ca_score': 30, 'exam_score': 50}])
        self._approved_sheet(self.english, [
            {'student_id': self.student.pk, 'ca_score': 25},
            {'student_id': other.pk, 'ca_score': 25, 'exam_score': 50},
        ])

        result = aggregate(self.student, self.class_obj, self.term, self.session)
        self.assertEqual(result.subject_count, 1)
        self.assertEqual(result.average_score, Decimal('80.00'))
        english_line = result.subject_lines.get(subject=self.english)
        self.assertIsNone(english_line.total_score)
        self.assertEqual(english_line.grade_letter, '')
        self.assertEqual(result.subject_lines.count(), 2)

    def test_line_remark_prefers_teacher_comment(self):
        self._approved_sheet(self.math, [
            {'student_id': self.student.pk, 'ca_score': 30, 'exam_score': 50, 'comment': 'Brilliant'},
        ])
        self._approved_sheet(self.english, [{'student_id': self.student.pk, 'ca_score': 20, 'exam_score': 25}])

        result = aggregate(self.student, self.class_obj, self.term, self.session)
        self.assertEqual(result.subject_lines.get(subject=self.math).remark, 'Brilliant')
        self.assertEqual(result.subject_lines.get(subject=self.english).remark, 'Poor')

    def test_unapproved_sheets_are_ignored(self):
        self._approved_sheet(self.math, [{'student_id': self.student.pk, 'ca_score': 30, 'exam_score': 50}])
        pending = self._draft(self.english)
        upsert_grades(pending.pk, [{'student_id': self.student.pk, 'ca_score': 5, 'exam_score': 5}])
        submit(pending.pk)

        grades = collect_approved_grades(self.student, self.class_obj, self.term, self.session)
        self.assertEqual([grade.submission.subject for grade in grades], [self.math])

    def test_no_gradable_subjects(self):
        """Nothing approved means no Result row at all."""
        with self.assertRaises(InsufficientDataError) as ctx:
            aggregate(self.student, self.class_obj, self.term, self.session)
        self.assertEqual(ctx.exception.student_id, self.student.pk)
        self.assertFalse(Result.objects.exists())

    def test_summarize_grades_requires_a_total(self):
        with self.assertRaises(InsufficientDataError):
            summarize_grades([SubjectGrade(ca_score=Decimal('20'))])

    def test_regeneration_replaces_lines(self):
        """Re-aggregating keeps the Result id and never duplicates lines."""
        self._approved_sheet(self.math, [{'student_id': self.student.pk, 'ca_score': 30, 'exam_score': 50}])
        first = aggregate(self.student, self.class_obj, self.term, self.session)
        second = aggregate(self.student, self.class_obj, self.term, self.session)

        self.assertEqual(first.pk, second.pk)
        self.assertEqual(second.average_score, first.average_score)
        self.assertEqual(second.grade_letter, first.grade_letter)
        self.assertEqual(Result.objects.count(), 1)
        self.assertEqual(ResultSubjectLine.objects.count(), 1)

        self._approved_sheet(self.english, [{'student_id': self.student.pk, 'ca_score': 25, 'exam_score': 50}])
        third = aggregate(self.student, self.class_obj, self.term, self.session)
        self.assertEqual(third.pk, first.pk)
        self.assertEqual(third.average_score, Decimal('77.50'))
        self.assertEqual(ResultSubjectLine.objects.count(), 2)


class RankingTests(GradebookTestCase):
    """Tests for class ranking."""

    def test_competition_ranking(self):
        positions = assign_positions([
            ('a', Decimal('90')), ('b', Decimal('80')), ('c', Decimal('80')), ('d', Decimal('60')),
        ])
        self.assertEqual(positions, {'a': 1, 'b': 2, 'c': 2, 'd': 4})

    def test_null_average_is_unranked(self):
        positions = assign_positions([('a', None), ('b', Decimal('50')), ('c', Decimal('70'))])
        self.assertEqual(positions, {'a': None, 'b': 2, 'c': 1})

    def test_compute_statistics(self):
        statistics = compute_statistics([Decimal('90'), Decimal('80'), None, Decimal('75.5')], total_students=4)
        self.assertEqual(statistics.highest_score, Decimal('90.00'))
        self.assertEqual(statistics.lowest_score, Decimal('75.50'))
        self.assertEqual(statistics.class_average, Decimal('81.83'))
        self.assertEqual(statistics.total_students, 4)

    def test_compute_statistics_empty(self):
        statistics = compute_statistics([None], total_students=1)
        self.assertIsNone(statistics.class_average)
        self.assertEqual(statistics.total_students, 1)

    def test_rank_persists_positions_and_statistics(self):
        averages = [Decimal('90'), Decimal('80'), Decimal('80'), Decimal('60'), None]
        results = []
        for number, average in enumerate(averages, 1):
            results.append(Result.objects.create(
                student=self._student(number),
                class_assigned=self.class_obj,
                term=self.term,
                academic_session=self.session,
                average_score=average,
            ))

        statistics = rank(self.class_obj, self.term, self.session)

        positions = [Result.objects.get(pk=result.pk).position for result in results]
        self.assertEqual(positions, [1, 2, 2, 4, None])
        stored = ClassResultStatistics.objects.get(
            class_assigned=self.class_obj, term=self.term, academic_session=self.session
        )
        self.assertEqual(stored.highest_score, Decimal('90.00'))
        self.assertEqual(stored.lowest_score, Decimal('60.00'))
        self.assertEqual(stored.class_average, Decimal('77.50'))
        self.assertEqual(stored.total_students, 5)
        self.assertIsNotNone(stored.ranked_at)
        self.assertEqual(statistics.class_average, Decimal('77.50'))

    def test_rank_is_repeatable(self):
        Result.objects.create(
            student=self._student(1), class_assigned=self.class_obj, term=self.term,
            academic_session=self.session, average_score=Decimal('70'),
        )
        first = rank(self.class_obj, self.term, self.session)
        second = rank(self.class_obj, self.term, self.session)
        self.assertEqual(first, second)
        self.assertEqual(ClassResultStatistics.objects.count(), 1)


class GenerationTests(GradebookTestCase):
    """Tests for single-student and class-wide result generation."""

    def _class_of_ten(self):
        """Ten students on one approved sheet; the last has no exam score."""
        students = [self._student(number) for number in range(1, 11)]
        rows = [
            {'student_id': student.pk, 'ca_score': 20 + index, 'exam_score': 50}
            for index, student in enumerate(students[:9])
        ]
        rows.append({'student_id': students[9].pk, 'ca_score': 25})
        self._approved_sheet(self.math, rows)
        return students

    def test_generate_for_class(self):
        """One student without data does not stop the other nine."""
        students = self._class_of_ten()

        summary = generate_for_class(self.class_obj, self.term, self.session)

        self.assertEqual(len(summary.succeeded), 9)
        self.assertEqual(summary.failed_ids, [students[9].pk])
        self.assertFalse(summary.cancelled)
        self.assertEqual(summary.statistics.total_students, 9)
        self.assertEqual(summary.statistics.highest_score, Decimal('78.00'))
        top = Result.objects.get(student=students[8])
        self.assertEqual(top.position, 1)
        self.assertEqual(Result.objects.get(student=students[0]).position, 9)
        self.assertFalse(Result.objects.filter(student=students[9]).exists())

    def test_term_from_another_session_is_refused(self):
        """A term outside the session is rejected before any work starts."""
        self._class_of_ten()
        other_session = AcademicSession.objects.create(
            name='2025/2026', start_date=date(2025, 9, 1), end_date=date(2026, 7, 31)
        )
        other_term = Term.objects.create(
            academic_session=other_session,
            name='First Term',
            term_number=1,
            start_date=date(2025, 9, 1),
            end_date=date(2025, 12, 19),
        )

        with self.assertRaises(ValidationError) as ctx:
            generate_for_class(self.class_obj, other_term, self.session)
        self.assertEqual(ctx.exception.field, 'term')
        self.assertFalse(ClassResultStatistics.objects.exists())
        self.assertFalse(Result.objects.exists())
        self.assertFalse(is_locked(self.class_obj.pk, other_term.pk, self.session.pk))

    def test_summary_to_dict(self):
        students = self._class_of_ten()
        data = generate_for_class(self.class_obj, self.term, self.session).to_dict()
        self.assertEqual(data['succeeded'], 9)
        self.assertEqual(data['failed'], [students[9].pk])
        self.assertFalse(data['cancelled'])
        self.assertEqual(data['statistics']['total_students'], 9)

    def test_regenerating_a_class_replaces_results(self):
        self._class_of_ten()
        generate_for_class(self.class_obj, self.term, self.session)
        ids = set(Result.objects.values_list('pk', flat=True))
        generate_for_class(self.class_obj, self.term, self.session)

        self.assertEqual(set(Result.objects.values_list('pk', flat=True)), ids)
        self.assertEqual(ResultSubjectLine.objects.count(), 9)

    def test_tied_students_share_position(self):
        students = [self._student(number) for number in range(1, 5)]
        self._approved_sheet(self.math, [
            {'student_id': students[0].pk, 'ca_score': 30, 'exam_score': 60},
            {'student_id': students[1].pk, 'ca_score': 20, 'exam_score': 60},
            {'student_id': students[2].pk, 'ca_score': 20, 'exam_score': 60},
            {'student_id': students[3].pk, 'ca_score': 10, 'exam_score': 50},
        ])

        generate_for_class(self.class_obj, self.term, self.session)

        positions = [Result.objects.get(student=student).position for student in students]
        self.assertEqual(positions, [1, 2, 2, 4])

    def test_empty_class(self):
        summary = generate_for_class(self.class_obj, self.term, self.session)
        self.assertEqual(summary.succeeded, [])
        self.assertEqual(summary.statistics.total_students, 0)

    def test_cancelled_run_skips_ranking(self):
        self._class_of_ten()
        cancel_event = threading.Event()
        cancel_event.set()

        summary = generate_for_class(self.class_obj, self.term, self.session, cancel_event=cancel_event)

        self.assertTrue(summary.cancelled)
        self.assertIsNone(summary.statistics)
        self.assertFalse(Result.objects.exists())
        self.assertFalse(ClassResultStatistics.objects.exists())

    def test_unexpected_error_aborts_before_ranking(self):
        students = self._class_of_ten()

        def flaky(student, *args):
            if student.pk == students[3].pk:
                raise RuntimeError('database went away')
            return aggregate(student, *args)

        with mock.patch('gradebook.generation.aggregate', side_effect=flaky):
            with self.assertRaises(ResultGenerationError) as ctx:
                generate_for_class(self.class_obj, self.term, self.session)

        self.assertEqual(ctx.exception.student_id, students[3].pk)
        self.assertIsInstance(ctx.exception.__cause__, RuntimeError)
        self.assertFalse(ClassResultStatistics.objects.exists())
        self.assertFalse(Result.objects.filter(position__isnull=False).exists())

    def test_class_run_waits_for_cohort_lock(self):
        self._class_of_ten()
        with cohort_lock(self.class_obj.pk, self.term.pk, self.session.pk):
            with override_settings(GRADEBOOK_COHORT_LOCK_TIMEOUT=0.05):
                with self.assertRaises(CohortLockTimeout):
                    generate_for_class(self.class_obj, self.term, self.session)

    def test_generate_for_student(self):
        first, second = self._student(1), self._student(2)
        self._approved_sheet(self.math, [
            {'student_id': first.pk, 'ca_score': 20, 'exam_score': 50},
            {'student_id': second.pk, 'ca_score': 30, 'exam_score': 60},
        ])
        generate_for_student(second, self.term, self.session)
        result = generate_for_student(first, self.term, self.session)

        self.assertEqual(result.average_score, Decimal('70.00'))
        self.assertEqual(result.position, 2)
        self.assertEqual(Result.objects.get(student=second).position, 1)

    def test_generate_for_student_without_data(self):
        student = self._student(1)
        with self.assertRaises(InsufficientDataError):
            generate_for_student(student, self.term, self.session)

    def test_resolve_student_class(self):
        enrolled = self._student(1)
        self.assertEqual(resolve_student_class(enrolled, self.session), self.class_obj)

        other_class = Class.objects.create(name='JHS1-B')
        unenrolled = self._student(2, enroll=False)
        unenrolled.current_class = other_class
        unenrolled.save()
        self.assertEqual(resolve_student_class(unenrolled, self.session), other_class)

        orphan = self._student(3, enroll=False)
        with self.assertRaises(NotFoundError):
            resolve_student_class(orphan, self.session)


class FanOutTests(TestCase):
    """Tests for bounded parallel execution of per-student work."""

    def test_parallelism_is_bounded(self):
        lock = threading.Lock()
        state = {'running': 0, 'peak': 0}

        def work(item):
            with lock:
                state['running'] += 1
                state['peak'] = max(state['peak'], state['running'])
            time.sleep(0.01)
            with lock:
                state['running'] -= 1

        succeeded, failed, cancelled = _fan_out(range(20), work, max_workers=3, timeout=10)

        self.assertEqual(sorted(succeeded), list(range(20)))
        self.assertEqual(failed, [])
        self.assertFalse(cancelled)
        self.assertLessEqual(state['peak'], 3)

    def test_insufficient_data_is_collected(self):
        def work(item):
            if item % 2:
                raise InsufficientDataError(item)

        succeeded, failed, cancelled = _fan_out(range(6), work, max_workers=2, timeout=10)

        self.assertEqual(sorted(succeeded), [0, 2, 4])
        self.assertEqual(sorted(failure.student_id for failure in failed), [1, 3, 5])

    def test_other_errors_abort(self):
        def work(item):
            if item == 2:
                raise KeyError(item)

        with self.assertRaises(ResultGenerationError) as ctx:
            _fan_out(range(5), work, max_workers=2, timeout=10)
        self.assertIsInstance(ctx.exception.__cause__, KeyError)

    def test_cancellation_stops_scheduling(self):
        cancel_event = threading.Event()
        started = []

        def work(item):
            started.append(item)
            cancel_event.set()

        succeeded, failed, cancelled = _fan_out(
            range(50), work, max_workers=2, timeout=10, cancel_event=cancel_event
        )

        self.assertTrue(cancelled)
        self.assertLess(len(started), 50)
        self.assertEqual(sorted(succeeded), sorted(started))

    def test_batch_timeout(self):
        with self.assertRaises(ResultGenerationTimeout):
            _fan_out(range(4), lambda item: time.sleep(0.3), max_workers=2, timeout=0.05)

    def test_timeout_holds_cohort_until_running_work_finishes(self):
        """Nothing new starts after the deadline and running work is waited for."""
        started = []
        finished = []

        def work(item):
            started.append(item)
            time.sleep(0.3)
            finished.append(item)

        with cohort_lock(9, 9, 9):
            with self.assertRaises(ResultGenerationTimeout):
                _fan_out(range(5), work, max_workers=2, timeout=0.05)
            self.assertEqual(sorted(finished), [0, 1])
            self.assertEqual(sorted(started), [0, 1])
            self.assertTrue(is_locked(9, 9, 9))
        self.assertFalse(is_locked(9, 9, 9))

    def test_inline_batch_timeout(self):
        with self.assertRaises(ResultGenerationTimeout):
            _fan_out(range(4), lambda item: time.sleep(0.05), max_workers=1, timeout=0.01)


class CohortLockTests(TestCase):
    """Tests for the per-cohort mutex."""

    def test_second_holder_times_out(self):
        errors = []

        def contender():
            try:
                with cohort_lock(1, 1, 1, timeout=0.05):
                    pass
            except CohortLockTimeout as e:
                errors.append(e)

        with cohort_lock(1, 1, 1):
            thread = threading.Thread(target=contender)
            thread.start()
            thread.join()

        self.assertEqual(len(errors), 1)
        self.assertEqual(errors[0].cohort_key, '1:1:1')

    def test_different_cohorts_do_not_block(self):
        with cohort_lock(1, 1, 1):
            with cohort_lock(2, 1, 1, timeout=0.05):
                self.assertTrue(is_locked(2, 1, 1))

    def test_lock_is_released(self):
        with cohort_lock(1, 1, 1):
            self.assertTrue(is_locked(1, 1, 1))
        self.assertFalse(is_locked(1, 1, 1))
        with cohort_lock(1, 1, 1, timeout=0.05):
            pass


class ApprovalRegenerationTests(GradebookTestCase):
    """Approving a sheet regenerates the class results after commit."""

    def setUp(self):
        super().setUp()
        self.student = self._student(1)
        self.submission = self._draft(self.math)
        upsert_grades(self.submission.pk, [{'student_id': self.student.pk, 'ca_score': 25, 'exam_score': 55}])
        submit(self.submission.pk)

    def test_results_regenerated_on_commit(self):
        with self.captureOnCommitCallbacks(execute=True) as callbacks:
            approve(self.submission.pk, self.reviewer)

        self.assertEqual(len(callbacks), 1)
        result = Result.objects.get(student=self.student)
        self.assertEqual(result.average_score, Decimal('80.00'))
        self.assertEqual(result.position, 1)

    def test_nothing_runs_before_commit(self):
        with self.captureOnCommitCallbacks(execute=False) as callbacks:
            approve(self.submission.pk, self.reviewer)

        self.assertEqual(len(callbacks), 1)
        self.assertFalse(Result.objects.exists())

    def test_reject_does_not_regenerate(self):
        with self.captureOnCommitCallbacks(execute=True) as callbacks:
            reject(self.submission.pk, self.reviewer, 'Recheck')

        self.assertEqual(callbacks, [])
        self.assertFalse(Result.objects.exists())

    @override_settings(GRADEBOOK_RESULT_GENERATION_ASYNC=True)
    def test_async_dispatch_queues_task(self):
        with mock.patch('gradebook.tasks.generate_class_results.delay') as delay:
            with self.captureOnCommitCallbacks(execute=True):
                approve(self.submission.pk, self.reviewer)

        delay.assert_called_once_with(self.class_obj.pk, self.term.pk, self.session.pk)
        self.assertFalse(Result.objects.exists())

    def test_inline_dispatch_logs_failures(self):
        with cohort_lock(self.class_obj.pk, self.term.pk, self.session.pk):
            with override_settings(GRADEBOOK_COHORT_LOCK_TIMEOUT=0.05):
                with self.assertLogs('gradebook.tasks', level='ERROR'):
                    outcome = dispatch_result_generation(self.class_obj.pk, self.term.pk, self.session.pk)
        self.assertIsNone(outcome)


class TaskTests(GradebookTestCase):
    """Tests for the Celery task bodies, called directly."""

    def test_generate_class_results(self):
        student = self._student(1)
        self._approved_sheet(self.math, [{'student_id': student.pk, 'ca_score': 25, 'exam_score': 55}])

        outcome = generate_class_results(self.class_obj.pk, self.term.pk, self.session.pk)

        self.assertTrue(outcome['success'])
        self.assertEqual(outcome['succeeded'], 1)
        self.assertEqual(outcome['statistics']['class_average'], '80.00')

    def test_generate_class_results_unknown_class(self):
        outcome = generate_class_results(999999, self.term.pk, self.session.pk)
        self.assertFalse(outcome['success'])

    def test_generate_student_result(self):
        student = self._student(1)
        self._approved_sheet(self.math, [{'student_id': student.pk, 'ca_score': 25, 'exam_score': 55}])

        outcome = generate_student_result(student.pk, self.term.pk, self.session.pk)

        self.assertTrue(outcome['success'])
        self.assertEqual(outcome['result']['average_score'], '80.00')
        self.assertEqual(outcome['result']['position'], 1)

    def test_generate_student_result_without_data(self):
        student = self._student(1)
        outcome = generate_student_result(student.pk, self.term.pk, self.session.pk)
        self.assertFalse(outcome['success'])


class ReadHelperTests(GradebookTestCase):
    """Tests for result read helpers."""

    def setUp(self):
        super().setUp()
        self.first, self.second, self.third = self._student(1), self._student(2), self._student(3)
        self._approved_sheet(self.math, [
            {'student_id': self.first.pk, 'ca_score': 20, 'exam_score': 50},
            {'student_id': self.second.pk, 'ca_score': 30, 'exam_score': 60, 'comment': 'Top of class'},
            {'student_id': self.third.pk, 'ca_score': 20},
        ])
        generate_for_class(self.class_obj, self.term, self.session)

    def test_get_result(self):
        result = Result.objects.get(student=self.second)
        fetched = get_result(result.pk)
        self.assertEqual(fetched.pk, result.pk)
        with self.assertRaises(NotFoundError):
            get_result(uuid.uuid4())

    def test_get_student_results(self):
        results = get_student_results(self.first, term=self.term)
        self.assertEqual(len(results), 1)
        self.assertEqual(get_student_results(self.third).count(), 0)

    def test_get_class_results_ordered_by_position(self):
        results, statistics = get_class_results(self.class_obj, self.term, self.session)
        self.assertEqual([result.student for result in results], [self.second, self.first])
        self.assertEqual(statistics.total_students, 2)

    def test_serialize_result(self):
        data = serialize_result(Result.objects.get(student=self.second))
        self.assertEqual(data['average_score'], '90.00')
        self.assertEqual(data['grade_letter'], 'A')
        self.assertEqual(data['position'], 1)
        self.assertEqual(data['subjects'], [{
            'subject_id': self.math.pk,
            'subject': 'Mathematics',
            'ca_score': '30.00',
            'exam_score': '60.00',
            'total_score': '90.00',
            'grade_letter': 'A',
            'remark': 'Top of class',
        }])
