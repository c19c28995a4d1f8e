from django.core.exceptions import ValidationError
from django.db import models
from django.db.models import F, Q


class AcademicYear(models.Model):
    name = models.CharField(max_length=20, unique=True)  # e.g. 2025-2026
    start_date = models.DateField()
    end_date = models.DateField()
    is_active = models.BooleanField(default=False)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['-start_date', '-id']
        constraints = [
            models.UniqueConstraint(
                fields=['is_active'],
                condition=Q(is_active=True),
                name='unique_active_academic_year',
            ),
            models.CheckConstraint(
                condition=Q(end_date__gt=F('start_date')),
                name='academic_year_end_after_start',
            ),
        ]
        indexes = [
            models.Index(fields=['is_active']),
            models.Index(fields=['start_date']),
        ]

    def clean(self):
        super().clean()
        if self.name:
            self.name = self.name.strip()
        if not self.name:
            raise ValidationError({'name': 'Academic year name is required.'})
        if self.start_date and self.end_date and self.end_date <= self.start_date:
            raise ValidationError({'end_date': 'End date must be after start date.'})

    def __str__(self):
        return self.name
