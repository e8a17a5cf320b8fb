from datetime import date

from django.test import TestCase

from academics.models import Class
from core.models import AcademicSession
from students.models import Enrollment, Student


class EnrollmentTestCase(TestCase):
    """Shared fixtures for enrollment tests."""

    def setUp(self):
        self.session = AcademicSession.objects.create(
            name='2024/2025',
            start_date=date(2024, 9, 1),
            end_date=date(2025, 7, 31),
            is_current=True,
        )
        self.previous_session = AcademicSession.objects.create(
            name='2023/2024',
            start_date=date(2023, 9, 1),
            end_date=date(2024, 7, 31),
        )
        self.class_a = Class.objects.create(name='JHS1-A')
        self.class_b = Class.objects.create(name='JHS1-B')

    def _student(self, admission_number, last_name, **kwargs):
        return Student.objects.create(
            first_name='Kofi',
            last_name=last_name,
            admission_number=admission_number,
            **kwargs
        )


class StudentModelTests(EnrollmentTestCase):
    """Tests for the Student model."""

    def test_full_name_with_other_names(self):
        student = self._student('STU001', 'Mensah', other_names='Yaw')
        self.assertEqual(student.full_name, 'Kofi Yaw Mensah')

    def test_str(self):
        student = self._student('STU001', 'Mensah')
        self.assertEqual(str(student), 'Kofi Mensah (STU001)')

    def test_get_enrollment_for_session(self):
        student = self._student('STU001', 'Mensah')
        Enrollment.objects.create(student=student, academic_session=self.previous_session, class_assigned=self.class_b)
        Enrollment.objects.create(student=student, academic_session=self.session, class_assigned=self.class_a)

        self.assertEqual(student.get_enrollment(self.session).class_assigned, self.class_a)
        self.assertEqual(student.get_enrollment(self.previous_session).class_assigned, self.class_b)

    def test_get_enrollment_ignores_inactive(self):
        student = self._student('STU001', 'Mensah')
        Enrollment.objects.create(
            student=student,
            academic_session=self.session,
            class_assigned=self.class_a,
            status=Enrollment.Status.WITHDRAWN,
        )
        self.assertIsNone(student.get_enrollment(self.session))


class EnrollmentModelTests(EnrollmentTestCase):
    """Tests for the Enrollment model."""

    def test_current_session_enrollment_updates_current_class(self):
        student = self._student('STU001', 'Mensah')
        Enrollment.objects.create(student=student, academic_session=self.session, class_assigned=self.class_a)
        student.refresh_from_db()
        self.assertEqual(student.current_class, self.class_a)

    def test_past_session_enrollment_keeps_current_class(self):
        student = self._student('STU001', 'Mensah', current_class=self.class_a)
        Enrollment.objects.create(student=student, academic_session=self.previous_session, class_assigned=self.class_b)
        student.refresh_from_db()
        self.assertEqual(student.current_class, self.class_a)

    def test_enrolled_student_ids_ordered_by_surname(self):
        owusu = self._student('STU002', 'Owusu')
        addo = self._student('STU001', 'Addo')
        for student in (owusu, addo):
            Enrollment.objects.create(student=student, academic_session=self.session, class_assigned=self.class_a)

        ids = Enrollment.enrolled_student_ids(self.class_a, self.session)
        self.assertEqual(ids, [addo.pk, owusu.pk])

    def test_enrolled_student_ids_excludes_other_classes_and_inactive(self):
        active = self._student('STU001', 'Addo')
        withdrawn = self._student('STU002', 'Boateng')
        inactive = self._student('STU003', 'Darko', is_active=False)
        elsewhere = self._student('STU004', 'Owusu')
        Enrollment.objects.create(student=active, academic_session=self.session, class_assigned=self.class_a)
        Enrollment.objects.create(
            student=withdrawn, academic_session=self.session, class_assigned=self.class_a,
            status=Enrollment.Status.WITHDRAWN,
        )
        Enrollment.objects.create(student=inactive, academic_session=self.session, class_assigned=self.class_a)
        Enrollment.objects.create(student=elsewhere, academic_session=self.session, class_assigned=self.class_b)

        self.assertEqual(Enrollment.enrolled_student_ids(self.class_a, self.session), [active.pk])
