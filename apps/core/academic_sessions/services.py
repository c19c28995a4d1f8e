from django.db import transaction

from apps.core.academic_sessions.models import AcademicYear


def get_active_academic_year():
    """Resolve the active year once; ledger calls take it as an explicit argument."""
    return AcademicYear.objects.filter(is_active=True).first()


def activate_academic_year(*, academic_year: AcademicYear):
    with transaction.atomic():
        AcademicYear.objects.filter(
            is_active=True,
        ).exclude(pk=academic_year.pk).update(is_active=False)

        if not academic_year.is_active:
            academic_year.is_active = True
            academic_year.save(update_fields=['is_active'])

    return academic_year
