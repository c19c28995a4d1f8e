from django.core.exceptions import ValidationError
from django.db import models
from django.utils import timezone


class Student(models.Model):
    student_number = models.CharField(max_length=50, unique=True)  # LRN or admission number
    first_name = models.CharField(max_length=100)
    last_name = models.CharField(max_length=100, blank=True)
    grade_level = models.CharField(max_length=40)  # e.g. Kinder 1, Grade 7
    is_archived = models.BooleanField(default=False)
    archived_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['last_name', 'first_name', 'id']
        indexes = [
            models.Index(fields=['grade_level', 'is_archived']),
        ]

    @property
    def full_name(self):
        return f"{self.first_name} {self.last_name}".strip()

    def clean(self):
        super().clean()
        if self.student_number:
            self.student_number = self.student_number.strip()
        if not self.student_number:
            raise ValidationError({'student_number': 'Student number is required.'})
        if self.grade_level:
            self.grade_level = self.grade_level.strip()
        if not self.grade_level:
            raise ValidationError({'grade_level': 'Grade level is required.'})

    def delete(self, *args, **kwargs):
        if self.is_archived:
            return
        self.is_archived = True
        self.archived_at = timezone.now()
        self.save(update_fields=['is_archived', 'archived_at'])

    def __str__(self):
        return f"{self.student_number} - {self.full_name}"
