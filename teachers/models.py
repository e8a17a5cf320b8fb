import uuid

from django.conf import settings
from django.db import models
from core.models import Person


class Teacher(Person):
    """
    Staff profile that owns grade sheets.

    The linked user account is recorded as the actor on a sheet's audit
    events when the teacher creates or submits it.
    """
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    user = models.OneToOneField(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='teacher_profile',
        help_text="Associated user account for login"
    )
    staff_id = models.CharField(max_length=20, unique=True, help_text="Unique Employee ID")
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['last_name', 'first_name']

    def __str__(self):
        return f"{super().__str__()} ({self.staff_id})"
