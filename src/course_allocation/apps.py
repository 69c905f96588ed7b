"""Django app configuration for django-course-allocation."""

from django.apps import AppConfig


class CourseAllocationConfig(AppConfig):
    """App configuration for django-course-allocation."""

    name = 'course_allocation'
    verbose_name = 'Course Allocation'
    default_auto_field = 'django.db.models.BigAutoField'
