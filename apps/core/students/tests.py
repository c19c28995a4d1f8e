from django.core.exceptions import ValidationError
from django.test import TestCase

from .models import Student


class StudentModelTests(TestCase):
    def test_delete_archives_instead_of_removing(self):
        student = Student.objects.create(
            student_number='LRN-0001',
            first_name='Juan',
            last_name='Dela Cruz',
            grade_level='Grade 1',
        )

        student.delete()

        student.refresh_from_db()
        self.assertTrue(student.is_archived)
        self.assertIsNotNone(student.archived_at)

    def test_grade_level_is_required(self):
        student = Student(student_number='LRN-0002', first_name='Ana', grade_level='   ')
        with self.assertRaises(ValidationError):
            student.full_clean()

    def test_full_name_strips_missing_last_name(self):
        student = Student(student_number='LRN-0003', first_name='Ana', grade_level='Kinder 1')
        self.assertEqual(student.full_name, 'Ana')
