from django.db import models


class StudentYearQuerySet(models.QuerySet):
    def for_academic_year(self, academic_year):
        return self.filter(academic_year=academic_year)

    def for_student_year(self, student, academic_year):
        return self.filter(student=student, academic_year=academic_year)


class StudentYearManager(models.Manager):
    def get_queryset(self):
        return StudentYearQuerySet(self.model, using=self._db)

    def for_academic_year(self, academic_year):
        return self.get_queryset().for_academic_year(academic_year)

    def for_student_year(self, student, academic_year):
        return self.get_queryset().for_student_year(student, academic_year)
