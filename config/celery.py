"""
Celery application for the project.

Workers are started with:
    celery -A config worker -l info
"""
import os

from celery import Celery

os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'config.settings')

app = Celery('config')

# All CELERY_* settings in config/settings.py configure the app
app.config_from_object('django.conf:settings', namespace='CELERY')

# Picks up tasks.py in every installed app
app.autodiscover_tasks()
