import uuid
from django.db import models
from django.utils.translation import gettext_lazy as _


class Student(models.Model):
    """
    Represents a student enrolled in the school.
    """
    class Gender(models.TextChoices):
        MALE = 'M', _('Male')
        FEMALE = 'F', _('Female')

    class Status(models.TextChoices):
        ACTIVE = 'active', _('Active')
        GRADUATED = 'graduated', _('Graduated')
        WITHDRAWN = 'withdrawn', _('Withdrawn')
        SUSPENDED = 'suspended', _('Suspended')
        TRANSFERRED = 'transferred', _('Transferred')

    # Personal Information
    first_name = models.CharField(max_length=100)
    last_name = models.CharField(max_length=100)
    other_names = models.CharField(max_length=100, blank=True)
    gender = models.CharField(max_length=1, choices=Gender.choices, default=Gender.MALE)

    # Admission Details
    admission_number = models.CharField(
        max_length=50,
        unique=True,
        help_text="Unique student ID/admission number"
    )

    # Enrollment
    current_class = models.ForeignKey(
        'academics.Class',
        on_delete=models.PROTECT,
        related_name='students',
        null=True,
        blank=True
    )

    # Status
    status = models.CharField(
        max_length=20,
        choices=Status.choices,
        default=Status.ACTIVE
    )

    # Metadata
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['last_name', 'first_name']
        verbose_name = "Student"
        verbose_name_plural = "Students"

    def __str__(self):
        return f"{self.full_name} ({self.admission_number})"

    @property
    def full_name(self):
        """Return full name of student."""
        names = [self.first_name]
        if self.other_names:
            names.append(self.other_names)
        names.append(self.last_name)
        return ' '.join(names)

    def get_enrollment(self, academic_session):
        """Return the active enrollment for the given academic session, if any."""
        return self.enrollments.filter(
            academic_session=academic_session,
            status=Enrollment.Status.ACTIVE
        ).select_related('class_assigned').first()


class Enrollment(models.Model):
    """
    Tracks a student's enrollment in a class for a specific academic session.
    This provides historical record of student progression through classes.
    """
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    class Status(models.TextChoices):
        ACTIVE = 'active', _('Active')
        PROMOTED = 'promoted', _('Promoted')
        REPEATED = 'repeated', _('Repeated')
        WITHDRAWN = 'withdrawn', _('Withdrawn')
        TRANSFERRED = 'transferred', _('Transferred')
        GRADUATED = 'graduated', _('Graduated')

    student = models.ForeignKey(
        Student,
        on_delete=models.CASCADE,
        related_name='enrollments'
    )
    academic_session = models.ForeignKey(
        'core.AcademicSession',
        on_delete=models.PROTECT,
        related_name='enrollments'
    )
    class_assigned = models.ForeignKey(
        'academics.Class',
        on_delete=models.PROTECT,
        related_name='enrollments'
    )
    enrolled_on = models.DateField(auto_now_add=True)
    status = models.CharField(
        max_length=20,
        choices=Status.choices,
        default=Status.ACTIVE
    )
    remarks = models.TextField(blank=True, help_text="Notes about this enrollment")

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['-academic_session__start_date', 'student__last_name']
        unique_together = ['student', 'academic_session']
        verbose_name = "Enrollment"
        verbose_name_plural = "Enrollments"

    def __str__(self):
        return f"{self.student.full_name} - {self.class_assigned.name} ({self.academic_session})"

    def save(self, *args, **kwargs):
        super().save(*args, **kwargs)
        # Update student's current_class if this is an active enrollment
        if self.status == self.Status.ACTIVE:
            from core.models import AcademicSession
            current_session = AcademicSession.get_current()
            if current_session and self.academic_session_id == current_session.pk:
                Student.objects.filter(pk=self.student_id).update(
                    current_class=self.class_assigned
                )

    @classmethod
    def enrolled_student_ids(cls, class_obj, academic_session):
        """
        IDs of students actively enrolled in a class for an academic session.

        Ordered by surname so batch runs process students deterministically.
        """
        return list(cls.objects.filter(
            class_assigned=class_obj,
            academic_session=academic_session,
            status=cls.Status.ACTIVE,
            student__is_active=True,
        ).order_by('student__last_name', 'student__first_name', 'student_id').values_list(
            'student_id', flat=True
        ))
