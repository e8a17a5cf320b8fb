from datetime import date

from django.test import TestCase
from django.contrib.auth import get_user_model

from academics.models import Class, Subject
from core.models import AcademicSession, Term
from gradebook.submissions import approve, create_draft, submit, upsert_grades
from students.models import Student
from teachers.models import Teacher

User = get_user_model()


class UserManagerTests(TestCase):
    """Tests for the custom UserManager."""

    def test_create_user(self):
        """Test creating a regular user with email."""
        user = User.objects.create_user(
            email='test@example.com',
            password='testpass123'
        )
        self.assertEqual(user.email, 'test@example.com')
        self.assertTrue(user.check_password('testpass123'))
        self.assertFalse(user.is_staff)
        self.assertFalse(user.is_superuser)

    def test_create_user_without_email_raises_error(self):
        with self.assertRaises(ValueError):
            User.objects.create_user(email='', password='testpass123')

    def test_create_user_normalizes_email(self):
        user = User.objects.create_user(email='test@EXAMPLE.COM', password='testpass123')
        self.assertEqual(user.email, 'test@example.com')

    def test_create_superuser(self):
        user = User.objects.create_superuser(email='admin@example.com', password='adminpass123')
        self.assertTrue(user.is_staff)
        self.assertTrue(user.is_superuser)

    def test_create_superuser_without_is_superuser_raises_error(self):
        with self.assertRaises(ValueError):
            User.objects.create_superuser(
                email='admin@example.com',
                password='adminpass123',
                is_superuser=False
            )


class UserModelTests(TestCase):
    """Tests for the User model."""

    def test_user_str_returns_email(self):
        user = User.objects.create_user(email='test@example.com', password='testpass123')
        self.assertEqual(str(user), 'test@example.com')

    def test_username_field_is_email(self):
        self.assertEqual(User.USERNAME_FIELD, 'email')

    def test_reviewer_sees_reviewed_sheets(self):
        """Approving a sheet links it back to the reviewing user."""
        session = AcademicSession.objects.create(
            name='2024/2025', start_date=date(2024, 9, 1), end_date=date(2025, 7, 31)
        )
        term = Term.objects.create(
            academic_session=session, name='First Term', term_number=1,
            start_date=date(2024, 9, 1), end_date=date(2024, 12, 20),
        )
        class_obj = Class.objects.create(name='JHS1-A')
        student = Student.objects.create(
            first_name='Kofi', last_name='Mensah', admission_number='STU-001', current_class=class_obj
        )
        teacher = Teacher.objects.create(first_name='Ama', last_name='Owusu', staff_id='TCH-001')
        reviewer = User.objects.create_user(email='head@school.com', password='pass')

        submission = create_draft(teacher, class_obj, Subject.objects.create(name='Mathematics'), term, session)
        upsert_grades(submission.pk, [{'student_id': student.pk, 'ca_score': 30, 'exam_score': 50}])
        submit(submission.pk)
        with self.captureOnCommitCallbacks():
            approve(submission.pk, reviewer)

        self.assertEqual(list(reviewer.reviewed_grade_submissions.all()), [submission])
