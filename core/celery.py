import os

from celery import Celery

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "core.settings")

app = Celery("osinthub")

# Broker URL, result backend and eager mode come from the CELERY_* settings
app.config_from_object("django.conf:settings", namespace="CELERY")

# billing.tasks: captures for orders approved through the PayPal webhook
app.autodiscover_tasks()
