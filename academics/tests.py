from django.db import IntegrityError
from django.test import TestCase

from academics.models import Class, Subject


class ClassModelTests(TestCase):

    def test_str_is_name(self):
        class_obj = Class.objects.create(name='JHS1-A')
        self.assertEqual(str(class_obj), 'JHS1-A')

    def test_unique_name(self):
        Class.objects.create(name='JHS1-A')
        with self.assertRaises(IntegrityError):
            Class.objects.create(name='JHS1-A')


class SubjectModelTests(TestCase):

    def test_ordered_by_name(self):
        Subject.objects.create(name='Mathematics')
        Subject.objects.create(name='English Language')
        self.assertEqual(
            list(Subject.objects.values_list('name', flat=True)),
            ['English Language', 'Mathematics'],
        )

    def test_unique_name(self):
        Subject.objects.create(name='Mathematics')
        with self.assertRaises(IntegrityError):
            Subject.objects.create(name='Mathematics', code='MATH')
