"""
Celery application for background page revalidation.

Run a worker and the beat scheduler next to the web process::

    celery -A website worker -B
"""
import os

from celery import Celery

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "website.settings")

app = Celery("website")

# every CELERY_* Django setting, including the beat schedule
app.config_from_object("django.conf:settings", namespace="CELERY")

# picks up content.tasks
app.autodiscover_tasks()
