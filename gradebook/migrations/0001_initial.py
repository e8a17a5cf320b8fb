import django.core.validators
import django.db.models.deletion
import uuid
from decimal import Decimal
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ('academics', '0001_initial'),
        ('core', '0001_initial'),
        ('students', '0001_initial'),
        ('teachers', '0001_initial'),
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name='GradeSubmission',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('status', models.CharField(choices=[('DRAFT', 'Draft'), ('SUBMITTED', 'Submitted'), ('APPROVED', 'Approved'), ('REJECTED', 'Rejected')], db_index=True, default='DRAFT', max_length=10)),
                ('submitted_at', models.DateTimeField(blank=True, null=True)),
                ('reviewed_at', models.DateTimeField(blank=True, null=True)),
                ('rejection_reason', models.CharField(blank=True, max_length=255)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('academic_session', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='grade_submissions', to='core.academicsession')),
                ('class_assigned', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='grade_submissions', to='academics.class')),
                ('reviewed_by', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='reviewed_grade_submissions', to=settings.AUTH_USER_MODEL)),
                ('subject', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='grade_submissions', to='academics.subject')),
                ('teacher', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='grade_submissions', to='teachers.teacher')),
                ('term', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='grade_submissions', to='core.term')),
            ],
            options={
                'verbose_name': 'Grade Submission',
                'verbose_name_plural': 'Grade Submissions',
                'db_table': 'grade_submission',
                'ordering': ['-created_at'],
                'indexes': [models.Index(fields=['class_assigned', 'term', 'academic_session', 'status'], name='grade_sub_cohort_status_idx')],
                'constraints': [models.UniqueConstraint(condition=models.Q(('status', 'REJECTED'), _negated=True), fields=('class_assigned', 'subject', 'term', 'academic_session'), name='unique_active_grade_submission')],
            },
        ),
        migrations.CreateModel(
            name='GradeSubmissionEvent',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('from_status', models.CharField(blank=True, max_length=10)),
                ('to_status', models.CharField(max_length=10)),
                ('note', models.CharField(blank=True, max_length=255)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('actor', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='grade_submission_events', to=settings.AUTH_USER_MODEL)),
                ('submission', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='events', to='gradebook.gradesubmission')),
            ],
            options={
                'verbose_name': 'Grade Submission Event',
                'verbose_name_plural': 'Grade Submission Events',
                'db_table': 'grade_submission_event',
                'ordering': ['created_at'],
            },
        ),
        migrations.CreateModel(
            name='SubjectGrade',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('ca_score', models.DecimalField(blank=True, decimal_places=2, help_text='Continuous assessment score', max_digits=5, null=True, validators=[django.core.validators.MinValueValidator(Decimal('0'))])),
                ('exam_score', models.DecimalField(blank=True, decimal_places=2, help_text='Examination score', max_digits=5, null=True, validators=[django.core.validators.MinValueValidator(Decimal('0'))])),
                ('total_score', models.DecimalField(blank=True, decimal_places=2, help_text='CA + exam, only when both are recorded', max_digits=5, null=True, validators=[django.core.validators.MinValueValidator(Decimal('0')), django.core.validators.MaxValueValidator(Decimal('100'))])),
                ('grade_letter', models.CharField(blank=True, max_length=2)),
                ('comment', models.CharField(blank=True, max_length=200)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('student', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='subject_grades', to='students.student')),
                ('submission', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='grades', to='gradebook.gradesubmission')),
            ],
            options={
                'verbose_name': 'Subject Grade',
                'verbose_name_plural': 'Subject Grades',
                'db_table': 'subject_grade',
                'ordering': ['submission', 'student'],
                'indexes': [models.Index(fields=['student', 'submission'], name='subject_grade_student_idx')],
                'unique_together': {('submission', 'student')},
            },
        ),
        migrations.CreateModel(
            name='Result',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('total_score', models.DecimalField(blank=True, decimal_places=2, help_text='Sum of all subject totals', max_digits=8, null=True)),
                ('average_score', models.DecimalField(blank=True, decimal_places=2, help_text='Average across graded subjects', max_digits=5, null=True)),
                ('grade_letter', models.CharField(blank=True, max_length=2)),
                ('position', models.PositiveSmallIntegerField(blank=True, help_text='Overall class position', null=True)),
                ('remark', models.CharField(blank=True, max_length=255)),
                ('subject_count', models.PositiveSmallIntegerField(default=0)),
                ('generated_at', models.DateTimeField(blank=True, null=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('academic_session', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='results', to='core.academicsession')),
                ('class_assigned', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='results', to='academics.class')),
                ('student', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='results', to='students.student')),
                ('term', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='results', to='core.term')),
            ],
            options={
                'verbose_name': 'Result',
                'verbose_name_plural': 'Results',
                'db_table': 'result',
                'ordering': ['term', 'position'],
                'indexes': [models.Index(fields=['class_assigned', 'term', 'academic_session'], name='result_cohort_idx')],
                'constraints': [models.UniqueConstraint(fields=('student', 'class_assigned', 'term', 'academic_session'), name='unique_student_result')],
            },
        ),
        migrations.CreateModel(
            name='ResultSubjectLine',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('ca_score', models.DecimalField(blank=True, decimal_places=2, max_digits=5, null=True)),
                ('exam_score', models.DecimalField(blank=True, decimal_places=2, max_digits=5, null=True)),
                ('total_score', models.DecimalField(blank=True, decimal_places=2, max_digits=5, null=True)),
                ('grade_letter', models.CharField(blank=True, max_length=2)),
                ('remark', models.CharField(blank=True, max_length=200)),
                ('result', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='subject_lines', to='gradebook.result')),
                ('subject', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='result_lines', to='academics.subject')),
            ],
            options={
                'verbose_name': 'Result Subject Line',
                'verbose_name_plural': 'Result Subject Lines',
                'db_table': 'result_subject_line',
                'ordering': ['result', 'subject__name'],
                'unique_together': {('result', 'subject')},
            },
        ),
        migrations.CreateModel(
            name='ClassResultStatistics',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('highest_score', models.DecimalField(blank=True, decimal_places=2, max_digits=5, null=True)),
                ('lowest_score', models.DecimalField(blank=True, decimal_places=2, max_digits=5, null=True)),
                ('class_average', models.DecimalField(blank=True, decimal_places=2, max_digits=5, null=True)),
                ('total_students', models.PositiveIntegerField(default=0)),
                ('ranked_at', models.DateTimeField(blank=True, null=True)),
                ('academic_session', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='result_statistics', to='core.academicsession')),
                ('class_assigned', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='result_statistics', to='academics.class')),
                ('term', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='result_statistics', to='core.term')),
            ],
            options={
                'verbose_name': 'Class Result Statistics',
                'verbose_name_plural': 'Class Result Statistics',
                'db_table': 'class_result_statistics',
                'constraints': [models.UniqueConstraint(fields=('class_assigned', 'term', 'academic_session'), name='unique_cohort_statistics')],
            },
        ),
    ]
