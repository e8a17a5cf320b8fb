from datetime import date

from django.db import IntegrityError
from django.test import TestCase

from core.models import AcademicSession, Term


class AcademicSessionModelTests(TestCase):
    """Tests for the AcademicSession model."""

    def _create_session(self, **kwargs):
        defaults = {
            'name': '2024/2025 Academic Session',
            'start_date': date(2024, 9, 1),
            'end_date': date(2025, 7, 31),
            'is_current': False,
        }
        defaults.update(kwargs)
        return AcademicSession.objects.create(**defaults)

    def test_create_academic_session(self):
        session = self._create_session()
        self.assertEqual(str(session), '2024/2025 Academic Session')

    def test_only_one_current(self):
        first = self._create_session(is_current=True)
        second = self._create_session(
            name='2025/2026',
            start_date=date(2025, 9, 1),
            end_date=date(2026, 7, 31),
            is_current=True,
        )
        first.refresh_from_db()
        self.assertFalse(first.is_current)
        self.assertTrue(second.is_current)

    def test_get_current(self):
        self._create_session(is_current=True)
        current = AcademicSession.get_current()
        self.assertIsNotNone(current)
        self.assertTrue(current.is_current)

    def test_get_current_none(self):
        self._create_session()
        self.assertIsNone(AcademicSession.get_current())


class TermModelTests(TestCase):
    """Tests for the Term model."""

    def setUp(self):
        self.session = AcademicSession.objects.create(
            name='2024/2025',
            start_date=date(2024, 9, 1),
            end_date=date(2025, 7, 31),
            is_current=True,
        )

    def _create_term(self, **kwargs):
        defaults = {
            'academic_session': self.session,
            'name': 'First Term',
            'term_number': 1,
            'start_date': date(2024, 9, 1),
            'end_date': date(2024, 12, 20),
            'is_current': False,
        }
        defaults.update(kwargs)
        return Term.objects.create(**defaults)

    def test_create_term(self):
        term = self._create_term()
        self.assertEqual(str(term), 'First Term - 2024/2025')

    def test_only_one_current_term(self):
        t1 = self._create_term(is_current=True)
        t2 = self._create_term(
            name='Second Term',
            term_number=2,
            start_date=date(2025, 1, 6),
            end_date=date(2025, 4, 15),
            is_current=True,
        )
        t1.refresh_from_db()
        self.assertFalse(t1.is_current)
        self.assertTrue(t2.is_current)

    def test_get_current(self):
        self._create_term(is_current=True)
        current = Term.get_current()
        self.assertIsNotNone(current)
        self.assertEqual(current.academic_session, self.session)

    def test_belongs_to(self):
        """A term only belongs to the session it was created in."""
        term = self._create_term()
        other = AcademicSession.objects.create(
            name='2025/2026',
            start_date=date(2025, 9, 1),
            end_date=date(2026, 7, 31),
        )
        self.assertTrue(term.belongs_to(self.session))
        self.assertFalse(term.belongs_to(other))

    def test_unique_together_academic_session_term_number(self):
        self._create_term(term_number=1)
        with self.assertRaises(IntegrityError):
            self._create_term(name='Another First Term', term_number=1)
