from django.apps import AppConfig


class AcademicSessionsConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'apps.core.academic_sessions'
    label = 'academic_sessions'
