from django.db import models


class Class(models.Model):
    """
    A cohort of students graded and ranked together.

    Grade sheets, results and class statistics are all scoped to a class
    for one term of an academic session.
    """
    name = models.CharField(max_length=20, unique=True, help_text="e.g., JHS1-A")
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['name']
        verbose_name = "Class"
        verbose_name_plural = "Classes"

    def __str__(self):
        return self.name


class Subject(models.Model):
    """A subject that appears as one line on a term result."""
    name = models.CharField(max_length=100, unique=True)
    code = models.CharField(max_length=20, blank=True)

    class Meta:
        ordering = ['name']

    def __str__(self):
        return self.name
