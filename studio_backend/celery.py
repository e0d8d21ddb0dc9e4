"""
Celery configuration for the studio back office
Handles async tasks: signing links, OTP delivery and outcome notices
"""
import os
from celery import Celery

# Set default Django settings
os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'studio_backend.settings')

app = Celery('studio_backend')

# Load config from Django settings with CELERY_ prefix
app.config_from_object('django.conf:settings', namespace='CELERY')

# Auto-discover tasks in all installed apps
app.autodiscover_tasks()
