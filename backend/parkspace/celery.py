import os

from celery import Celery

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "parkspace.settings.dev")
app = Celery("parkspace")
app.config_from_object("django.conf:settings", namespace="CELERY")
app.autodiscover_tasks()
