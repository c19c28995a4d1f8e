from django.contrib import admin

from .models import Student


@admin.register(Student)
class StudentAdmin(admin.ModelAdmin):
    list_display = ('student_number', 'first_name', 'last_name', 'grade_level', 'is_archived')
    list_filter = ('grade_level', 'is_archived')
    search_fields = ('student_number', 'first_name', 'last_name')
