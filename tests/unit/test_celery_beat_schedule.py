"""
Celery Beat Schedule Configuration Tests

The beat schedule drives the two periodic campaign sweeps: starting
scheduled campaigns once they are due and completing campaigns that have
nothing left in flight.
"""

import pytest

from services.job_queue import JOB_TASKS


@pytest.fixture
def beat_schedule():
    from celery_worker import celery
    return celery.conf.beat_schedule


class TestCeleryBeatSchedule:
    """Test that Celery beat schedule includes all required tasks"""

    def test_schedule_has_exactly_the_campaign_sweeps(self, beat_schedule):
        assert set(beat_schedule) == {'check-scheduled-campaigns', 'mark-completed-campaigns'}

    def test_scheduled_campaign_check_runs_every_minute(self, beat_schedule):
        entry = beat_schedule['check-scheduled-campaigns']

        assert entry['task'] == 'tasks.campaign_tasks.check_scheduled_campaigns'
        assert entry['schedule'] == 60.0

    def test_completion_sweep_runs_every_five_minutes(self, beat_schedule):
        entry = beat_schedule['mark-completed-campaigns']

        assert entry['task'] == 'tasks.campaign_tasks.mark_completed_campaigns'
        assert entry['schedule'] == 300.0

    def test_scheduled_tasks_are_registered(self, beat_schedule):
        from celery_worker import celery

        for entry in beat_schedule.values():
            assert entry['task'] in celery.tasks

    def test_job_queue_tasks_are_registered(self):
        from celery_worker import celery

        for task_name in JOB_TASKS.values():
            assert task_name in celery.tasks

    def test_timezone_is_utc(self):
        from celery_worker import celery

        assert celery.conf.timezone == 'UTC'
