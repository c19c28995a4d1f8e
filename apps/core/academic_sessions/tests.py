from django.db import IntegrityError, transaction
from django.test import SimpleTestCase, TestCase

from apps.core.academic_sessions.models import AcademicYear
from apps.core.academic_sessions.services import activate_academic_year, get_active_academic_year
from apps.core.test_runner import project_test_labels


class AcademicYearLifecycleTests(TestCase):
    def setUp(self):
        self.year_one = AcademicYear.objects.create(
            name='2024-2025',
            start_date='2024-08-01',
            end_date='2025-05-31',
            is_active=True,
        )
        self.year_two = AcademicYear.objects.create(
            name='2025-2026',
            start_date='2025-08-01',
            end_date='2026-05-31',
            is_active=False,
        )

    def test_active_year_lookup_returns_single_active_row(self):
        self.assertEqual(get_active_academic_year(), self.year_one)

    def test_activate_switches_active_year(self):
        activate_academic_year(academic_year=self.year_two)

        self.year_one.refresh_from_db()
        self.year_two.refresh_from_db()
        self.assertFalse(self.year_one.is_active)
        self.assertTrue(self.year_two.is_active)
        self.assertEqual(get_active_academic_year(), self.year_two)

    def test_database_rejects_second_active_year(self):
        with self.assertRaises(IntegrityError):
            with transaction.atomic():
                AcademicYear.objects.create(
                    name='2026-2027',
                    start_date='2026-08-01',
                    end_date='2027-05-31',
                    is_active=True,
                )

    def test_no_active_year_returns_none(self):
        AcademicYear.objects.update(is_active=False)
        self.assertIsNone(get_active_academic_year())


class ProjectTestLabelsTests(SimpleTestCase):
    def test_labels_cover_only_project_apps(self):
        labels = project_test_labels()
        self.assertEqual(
            labels,
            ['apps.core.academic_sessions', 'apps.core.fees', 'apps.core.students'],
        )
        self.assertNotIn('django.contrib.admin', labels)
