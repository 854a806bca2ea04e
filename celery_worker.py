# celery_worker.py
from app import create_app
from celery_config import create_celery_app

# Create the Flask app instance. This is still needed to provide context for tasks when they run.
flask_app = create_app()

# Create Celery instance with shared configuration
celery = create_celery_app(__name__, flask_app.config)


# Set the custom Task class to ensure tasks run within the Flask app context.
class ContextTask(celery.Task):
    def __call__(self, *args, **kwargs):
        with flask_app.app_context():
            return self.run(*args, **kwargs)


celery.Task = ContextTask

# --- Celery Beat Schedule ---
celery.conf.beat_schedule = {
    'check-scheduled-campaigns': {
        'task': 'tasks.campaign_tasks.check_scheduled_campaigns',
        # Starts campaigns whose scheduled time has passed
        'schedule': flask_app.config.get('SCHEDULED_CAMPAIGN_CHECK_SECONDS', 60.0),
    },
    'mark-completed-campaigns': {
        'task': 'tasks.campaign_tasks.mark_completed_campaigns',
        # Completes running campaigns with nothing left in flight
        'schedule': flask_app.config.get('COMPLETION_SWEEP_SECONDS', 300.0),
    },
}
celery.conf.timezone = 'UTC'

# Import tasks so they register with this Celery instance
with flask_app.app_context():
    import tasks.campaign_tasks  # noqa: E402,F401
