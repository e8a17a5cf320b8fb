from django.contrib.auth import get_user_model
from django.db import IntegrityError
from django.test import TestCase

from teachers.models import Teacher

User = get_user_model()


class TeacherModelTests(TestCase):
    """Tests for the Teacher model."""

    def _create_teacher(self, **kwargs):
        defaults = {
            'first_name': 'Kwame',
            'last_name': 'Asante',
            'staff_id': 'TCH-001',
        }
        defaults.update(kwargs)
        return Teacher.objects.create(**defaults)

    def test_str_includes_staff_id(self):
        teacher = self._create_teacher(middle_name='Kwesi')
        self.assertEqual(str(teacher), 'Kwame Kwesi Asante (TCH-001)')

    def test_unique_staff_id(self):
        self._create_teacher()
        with self.assertRaises(IntegrityError):
            self._create_teacher(first_name='Ama')

    def test_user_link(self):
        user = User.objects.create_user(email='kwame@school.com', password='pass')
        teacher = self._create_teacher(user=user)
        self.assertEqual(user.teacher_profile, teacher)
