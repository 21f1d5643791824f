# celery_worker.py
from celery.schedules import crontab
from app import create_app
from celery_config import create_celery_app
from logging_config import get_logger

logger = get_logger(__name__)

# Create Celery instance with shared configuration
celery = create_celery_app(__name__)

# Tasks run inside this app's context
flask_app = create_app()


class ContextTask(celery.Task):
    def __call__(self, *args, **kwargs):
        with flask_app.app_context():
            return self.run(*args, **kwargs)


celery.Task = ContextTask

# --- Celery Beat Schedule ---
celery.conf.beat_schedule = {
    'retry-failed-sms-invitations': {
        'task': 'tasks.notification_tasks.retry_failed_notifications_task',
        'schedule': 900.0,  # 15 minutes
        'kwargs': {'channel': 'sms'}
    },
    'retry-failed-email-invitations': {
        'task': 'tasks.notification_tasks.retry_failed_notifications_task',
        'schedule': 900.0,  # 15 minutes
        'kwargs': {'channel': 'email'}
    },
    'expire-temporary-passwords': {
        'task': 'tasks.notification_tasks.expire_temporary_passwords_task',
        'schedule': crontab(minute=5),
    },
}
celery.conf.timezone = 'UTC'

# Register tasks once the Flask app exists
with flask_app.app_context():
    import tasks.notification_tasks  # noqa: F401

logger.info("Celery tasks registered", tasks=sorted(name for name in celery.tasks if name.startswith('tasks.')))
