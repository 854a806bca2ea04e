"""
Unit tests for CampaignService with mocked repositories and job queue
"""

import pytest
from datetime import timedelta
from types import SimpleNamespace
from unittest.mock import Mock, patch
from sqlalchemy.exc import OperationalError

from repositories.campaign_execution_repository import CampaignExecutionRepository
from repositories.campaign_repository import CampaignRepository
from services.campaign_service import CampaignService
from services.campaign_targeting_service import CampaignTargetingService
from services.campaign_throttle import VariantSelector
from services.common.result import ErrorCode
from services.exceptions import NotFoundError
from services.job_queue import EXECUTE_CAMPAIGN, SEND_MESSAGE, JobQueue
from utils.datetime_utils import naive_utc
from tests.conftest import TENANT_ID


def make_campaign(**overrides):
    data = {
        'id': 5,
        'tenant_id': TENANT_ID,
        'name': 'Autumn sale',
        'status': 'draft',
        'primary_channel': 'whatsapp',
        'content': {'templateName': 'autumn', 'templateVariables': {'1': 'friend'}},
        'targeting': {'contactIds': [1, 2, 3]},
        'schedule': None,
        'throttle': None,
        'stats': {},
        'is_ab_test': False,
        'variants': [],
        'scheduled_at': None,
        'started_at': None,
    }
    data.update(overrides)
    return SimpleNamespace(**data)


@pytest.fixture
def campaign_repository():
    return Mock(spec=CampaignRepository)


@pytest.fixture
def execution_repository():
    repository = Mock(spec=CampaignExecutionRepository)
    repository.get_contact_ids_for_campaign.return_value = set()
    repository.aggregate_stats.return_value = {'totalTargeted': 0}
    repository.create.side_effect = lambda **kwargs: SimpleNamespace(id=1000 + kwargs['contact_id'], **kwargs)
    return repository


@pytest.fixture
def targeting_service():
    service = Mock(spec=CampaignTargetingService)
    service.resolve_recipients.return_value = [1, 2, 3]
    return service


@pytest.fixture
def job_queue():
    return Mock(spec=JobQueue)


@pytest.fixture
def service(campaign_repository, execution_repository, targeting_service, job_queue):
    return CampaignService(
        campaign_repository=campaign_repository,
        execution_repository=execution_repository,
        targeting_service=targeting_service,
        job_queue=job_queue,
        variant_selector=VariantSelector(rng=lambda: 0.7),
    )


class TestCampaignCrud:

    def test_create_requires_name(self, service, campaign_repository):
        result = service.create(TENANT_ID, {'name': ''})

        assert result.code == ErrorCode.VALIDATION_ERROR
        campaign_repository.create.assert_not_called()

    def test_create_rejects_unknown_channel(self, service):
        result = service.create(TENANT_ID, {'name': 'Pigeons', 'primaryChannel': 'pigeon'})

        assert result.code == ErrorCode.VALIDATION_ERROR
        assert 'primaryChannel' in result.error

    def test_create_ab_test_adds_variants(self, service, campaign_repository):
        # Arrange
        campaign = make_campaign(is_ab_test=True)
        campaign_repository.create.return_value = campaign
        variants = [{'name': 'A', 'percentage': 50}, {'name': 'B', 'percentage': 50}]

        # Act
        result = service.create(TENANT_ID, {'name': 'Split', 'isAbTest': True, 'variants': variants})

        # Assert
        assert result.is_success
        assert campaign_repository.add_variant.call_count == 2
        create_kwargs = campaign_repository.create.call_args.kwargs
        assert create_kwargs['status'] == 'draft'
        assert create_kwargs['is_ab_test'] is True
        campaign_repository.commit.assert_called_once()

    def test_update_running_campaign_is_rejected(self, service, campaign_repository):
        campaign_repository.get_for_tenant.return_value = make_campaign(status='running')

        result = service.update(TENANT_ID, 5, {'name': 'New name'})

        assert result.code == ErrorCode.INVALID_STATE
        campaign_repository.update.assert_not_called()

    def test_delete_running_campaign_is_rejected(self, service, campaign_repository):
        campaign_repository.get_for_tenant.return_value = make_campaign(status='running')

        result = service.delete(TENANT_ID, 5)

        assert result.code == ErrorCode.INVALID_STATE
        campaign_repository.delete.assert_not_called()

    def test_missing_campaign_is_not_found(self, service, campaign_repository):
        campaign_repository.get_for_tenant.return_value = None

        for result in (service.find_by_id(TENANT_ID, 1), service.update(TENANT_ID, 1, {}),
                       service.delete(TENANT_ID, 1), service.schedule(TENANT_ID, 1),
                       service.pause(TENANT_ID, 1), service.cancel(TENANT_ID, 1)):
            assert result.code == ErrorCode.NOT_FOUND


class TestCampaignLifecycle:

    def test_schedule_in_future_enqueues_with_delay(self, service, campaign_repository, job_queue):
        # Arrange
        campaign = make_campaign()
        campaign_repository.get_for_tenant.return_value = campaign
        run_at = naive_utc() + timedelta(hours=1)

        # Act
        result = service.schedule(TENANT_ID, 5, run_at.isoformat() + 'Z')

        # Assert
        assert result.is_success
        changes = campaign_repository.update.call_args.kwargs
        assert changes['status'] == 'scheduled'
        assert changes['schedule']['type'] == 'scheduled'
        job_name, payload, delay_ms = job_queue.enqueue.call_args.args
        assert job_name == EXECUTE_CAMPAIGN
        assert payload == {'campaign_id': 5, 'tenant_id': TENANT_ID}
        assert 3_590_000 < delay_ms <= 3_600_000

    def test_schedule_immediately(self, service, campaign_repository, job_queue):
        campaign_repository.get_for_tenant.return_value = make_campaign()

        service.schedule(TENANT_ID, 5)

        changes = campaign_repository.update.call_args.kwargs
        assert changes['schedule']['type'] == 'immediate'
        assert changes['scheduled_at'] is not None
        assert job_queue.enqueue.call_args.args[2] == 0

    def test_schedule_running_campaign_is_rejected(self, service, campaign_repository, job_queue):
        campaign_repository.get_for_tenant.return_value = make_campaign(status='running')

        result = service.schedule(TENANT_ID, 5)

        assert result.code == ErrorCode.INVALID_STATE
        job_queue.enqueue.assert_not_called()

    def test_schedule_rejects_bad_timestamp(self, service, campaign_repository):
        campaign_repository.get_for_tenant.return_value = make_campaign()

        result = service.schedule(TENANT_ID, 5, 'next tuesday')

        assert result.code == ErrorCode.VALIDATION_ERROR

    def test_schedule_survives_enqueue_failure(self, service, campaign_repository, job_queue):
        campaign_repository.get_for_tenant.return_value = make_campaign()
        job_queue.enqueue.side_effect = ConnectionError("broker down")

        result = service.schedule(TENANT_ID, 5)

        assert result.is_success

    def test_pause_draft_is_rejected(self, service, campaign_repository):
        campaign_repository.get_for_tenant.return_value = make_campaign(status='draft')

        assert service.pause(TENANT_ID, 5).code == ErrorCode.INVALID_STATE

    def test_pause_running(self, service, campaign_repository):
        campaign_repository.get_for_tenant.return_value = make_campaign(status='running')

        result = service.pause(TENANT_ID, 5)

        assert result.is_success
        assert campaign_repository.update.call_args.kwargs == {'status': 'paused'}

    def test_resume_started_campaign_runs_again(self, service, campaign_repository, job_queue):
        campaign_repository.get_for_tenant.return_value = make_campaign(status='paused', started_at=naive_utc())

        result = service.resume(TENANT_ID, 5)

        assert result.is_success
        assert campaign_repository.update.call_args.kwargs == {'status': 'running'}
        job_queue.enqueue.assert_not_called()

    def test_resume_never_started_campaign_is_rescheduled(self, service, campaign_repository, job_queue):
        campaign_repository.get_for_tenant.return_value = make_campaign(status='paused')

        result = service.resume(TENANT_ID, 5)

        assert result.is_success
        assert campaign_repository.update.call_args.kwargs['status'] == 'scheduled'
        assert job_queue.enqueue.call_args.args[0] == EXECUTE_CAMPAIGN

    @pytest.mark.parametrize('status', ['completed', 'cancelled'])
    def test_cancel_finished_campaign_is_rejected(self, service, campaign_repository, status):
        campaign_repository.get_for_tenant.return_value = make_campaign(status=status)

        assert service.cancel(TENANT_ID, 5).code == ErrorCode.INVALID_STATE

    @pytest.mark.parametrize('status', ['draft', 'scheduled', 'running', 'paused'])
    def test_cancel_unfinished_campaign(self, service, campaign_repository, status):
        campaign_repository.get_for_tenant.return_value = make_campaign(status=status)

        assert service.cancel(TENANT_ID, 5).is_success


class TestStartExecution:

    def test_missing_campaign_raises(self, service, campaign_repository):
        campaign_repository.get_by_id.return_value = None

        with pytest.raises(NotFoundError):
            service.start_execution(5)

    @pytest.mark.parametrize('status', ['cancelled', 'paused', 'running', 'completed'])
    def test_not_startable_is_a_no_op(self, service, campaign_repository, targeting_service, status):
        campaign_repository.get_by_id.return_value = make_campaign(status=status)

        summary = service.start_execution(5)

        assert summary['started'] is False
        targeting_service.resolve_recipients.assert_not_called()
        campaign_repository.update.assert_not_called()

    def test_scheduled_campaign_not_yet_due_is_not_started(self, service, campaign_repository,
                                                           targeting_service):
        campaign_repository.get_by_id.return_value = make_campaign(
            status='scheduled', scheduled_at=naive_utc() + timedelta(minutes=10)
        )

        summary = service.start_execution(5)

        assert summary['started'] is False
        targeting_service.resolve_recipients.assert_not_called()

    def test_fan_out_enqueues_throttled_sends(self, service, campaign_repository, execution_repository,
                                             job_queue):
        # Arrange
        campaign = make_campaign(status='scheduled', throttle={'enabled': True, 'messagesPerMinute': 60})
        campaign_repository.get_by_id.return_value = campaign

        # Act
        summary = service.start_execution(5)

        # Assert
        assert summary == {'campaignId': 5, 'started': True, 'targeted': 3,
                           'queued': 3, 'failed': 0, 'skipped': 0}
        calls = job_queue.enqueue.call_args_list
        assert [c.args[0] for c in calls] == [SEND_MESSAGE] * 3
        assert [c.args[2] for c in calls] == [0, 1000, 2000]
        first_payload = calls[0].args[1]
        assert first_payload['execution_id'] == 1001
        assert first_payload['contact_id'] == 1
        assert first_payload['content']['templateName'] == 'autumn'
        assert first_payload['content']['channel'] == 'whatsapp'
        campaign_repository.update.assert_called_once()
        changes = campaign_repository.update.call_args.kwargs
        assert changes['status'] == 'running'
        assert changes['stats']['totalTargeted'] == 3

    def test_running_status_commits_with_pending_executions(self, service, campaign_repository,
                                                            execution_repository, targeting_service):
        # Arrange
        calls = Mock()
        calls.attach_mock(campaign_repository.update, 'update_campaign')
        calls.attach_mock(campaign_repository.commit, 'commit_campaign')
        calls.attach_mock(execution_repository.create, 'create_execution')
        calls.attach_mock(execution_repository.commit, 'commit')
        calls.attach_mock(targeting_service.resolve_recipients, 'resolve_recipients')
        campaign_repository.get_by_id.return_value = make_campaign(status='scheduled')

        # Act
        service.start_execution(5)

        # Assert
        names = [name for name, _, _ in calls.mock_calls]
        assert names[:6] == ['resolve_recipients', 'update_campaign', 'create_execution',
                             'create_execution', 'create_execution', 'commit']
        assert 'commit_campaign' not in names

    def test_recipient_lookup_failure_leaves_campaign_startable(self, service, campaign_repository,
                                                                execution_repository, targeting_service,
                                                                job_queue):
        campaign = make_campaign(status='scheduled')
        campaign_repository.get_by_id.return_value = campaign
        targeting_service.resolve_recipients.side_effect = OperationalError('SELECT', {}, Exception('gone'))

        with pytest.raises(OperationalError):
            service.start_execution(5)

        campaign_repository.update.assert_not_called()
        execution_repository.create.assert_not_called()
        job_queue.enqueue.assert_not_called()

    def test_enqueue_failure_is_isolated(self, service, campaign_repository, execution_repository, job_queue):
        # Arrange
        campaign_repository.get_by_id.return_value = make_campaign(status='scheduled')
        job_queue.enqueue.side_effect = [None, ConnectionError("redis down"), None]

        # Act
        summary = service.start_execution(5)

        # Assert
        assert summary['queued'] == 2
        assert summary['failed'] == 1
        failed_execution, = [c for c in execution_repository.update.call_args_list
                             if c.kwargs.get('status') == 'failed']
        assert failed_execution.args[0].contact_id == 2
        assert failed_execution.kwargs['error_message'] == 'Failed to enqueue: redis down'
        execution_repository.aggregate_stats.assert_called_with(5)

    def test_existing_executions_are_skipped(self, service, campaign_repository, execution_repository,
                                             job_queue):
        campaign_repository.get_by_id.return_value = make_campaign(status='draft')
        execution_repository.get_contact_ids_for_campaign.return_value = {2}

        summary = service.start_execution(5)

        assert summary['skipped'] == 1
        assert [c.args[1]['contact_id'] for c in job_queue.enqueue.call_args_list] == [1, 3]

    def test_throttle_slots_count_only_new_executions(self, service, campaign_repository,
                                                     execution_repository, job_queue):
        campaign_repository.get_by_id.return_value = make_campaign(
            status='draft', throttle={'enabled': True, 'messagesPerMinute': 60}
        )
        execution_repository.get_contact_ids_for_campaign.return_value = {1}

        service.start_execution(5)

        assert [c.args[2] for c in job_queue.enqueue.call_args_list] == [0, 1000]

    def test_ab_variant_content_overrides_campaign_content(self, service, campaign_repository,
                                                          execution_repository, job_queue):
        variants = [
            SimpleNamespace(id=11, percentage=50, content={'templateName': 'variant_a'}),
            SimpleNamespace(id=12, percentage=50, content={'templateName': 'variant_b'}),
        ]
        campaign_repository.get_by_id.return_value = make_campaign(status='draft', is_ab_test=True,
                                                                   variants=variants)

        service.start_execution(5)

        # rng 0.7 draws 70, which lands in the second variant
        assert execution_repository.create.call_args.kwargs['variant_id'] == 12
        content = job_queue.enqueue.call_args.args[1]['content']
        assert content['templateName'] == 'variant_b'
        assert content['templateVariables'] == {'1': 'friend'}


class TestExecutionStatus:

    def test_unknown_execution(self, service, execution_repository):
        execution_repository.get_by_id.return_value = None

        assert service.update_execution_status(9, 'sent').code == ErrorCode.NOT_FOUND

    def test_unknown_status(self, service, execution_repository):
        execution_repository.get_by_id.return_value = SimpleNamespace(id=9, status='queued', campaign_id=5)

        assert service.update_execution_status(9, 'teleported').code == ErrorCode.VALIDATION_ERROR

    def test_backwards_transition_is_rejected(self, service, execution_repository):
        execution_repository.get_by_id.return_value = SimpleNamespace(id=9, status='delivered', campaign_id=5)

        result = service.update_execution_status(9, 'sent')

        assert result.code == ErrorCode.INVALID_STATE
        execution_repository.update.assert_not_called()

    def test_failed_defaults_error_message(self, service, execution_repository, campaign_repository):
        execution = SimpleNamespace(id=9, status='queued', campaign_id=5)
        execution_repository.get_by_id.return_value = execution
        campaign_repository.get_by_id.return_value = make_campaign()

        result = service.update_execution_status(9, 'failed')

        assert result.is_success
        changes = execution_repository.update.call_args.kwargs
        assert changes['status'] == 'failed'
        assert changes['error_message'] == 'Unknown error'

    def test_sent_records_timestamp_and_external_id(self, service, execution_repository, campaign_repository):
        execution_repository.get_by_id.return_value = SimpleNamespace(id=9, status='queued', campaign_id=5)
        campaign_repository.get_by_id.return_value = make_campaign()

        service.update_execution_status(9, 'sent', external_message_id='wamid.1')

        changes = execution_repository.update.call_args.kwargs
        assert changes['sent_at'] is not None
        assert changes['external_message_id'] == 'wamid.1'
        campaign_repository.update.assert_called_once()


class TestPeriodicTicks:

    def test_check_scheduled_campaigns_isolates_failures(self, service, campaign_repository):
        campaign_repository.find_scheduled_campaigns_ready_to_run.return_value = [
            SimpleNamespace(id=1), SimpleNamespace(id=2), SimpleNamespace(id=3),
        ]

        def start(campaign_id):
            if campaign_id == 2:
                raise RuntimeError("targeting exploded")
            return {'started': True}

        with patch.object(service, 'start_execution', side_effect=start):
            results = service.check_scheduled_campaigns()

        assert results['due'] == 3
        assert results['started'] == [1, 3]
        assert results['errors'] == [{'campaignId': 2, 'error': 'targeting exploded'}]
        campaign_repository.rollback.assert_called_once()

    def test_mark_completed_skips_campaigns_with_work_in_flight(self, service, campaign_repository,
                                                               execution_repository):
        done = make_campaign(id=1, status='running')
        busy = make_campaign(id=2, status='running')
        campaign_repository.find_running_campaigns.return_value = [done, busy]
        campaign_repository.get_by_id.return_value = done
        execution_repository.count_in_flight.side_effect = lambda campaign_id: 0 if campaign_id == 1 else 4

        completed = service.mark_completed_campaigns()

        assert completed == [1]
        complete_call = campaign_repository.update.call_args_list[0]
        assert complete_call.args[0] is done
        assert complete_call.kwargs['status'] == 'completed'
        assert complete_call.kwargs['completed_at'] is not None


class TestReporting:

    def test_get_stats_rates(self, service, campaign_repository):
        campaign_repository.find_by_tenant.return_value = [
            make_campaign(status='running', stats={'totalSent': 10, 'totalDelivered': 8, 'totalOpened': 4,
                                                   'totalClicked': 1, 'totalConverted': 1,
                                                   'conversionValue': 20.0}),
            make_campaign(status='completed', stats={'totalSent': 10, 'totalDelivered': 8, 'totalOpened': 4,
                                                     'totalClicked': 3, 'totalConverted': 0,
                                                     'conversionValue': 0}),
            make_campaign(status='draft', stats={}),
        ]

        stats = service.get_stats(TENANT_ID).data

        assert stats['totalCampaigns'] == 3
        assert stats['activeCampaigns'] == 1
        assert stats['completedCampaigns'] == 1
        assert stats['avgDeliveryRate'] == 80
        assert stats['avgOpenRate'] == 50
        assert stats['avgClickRate'] == 50
        assert stats['totalConversionValue'] == 20.0

    def test_get_stats_without_sends(self, service, campaign_repository):
        campaign_repository.find_by_tenant.return_value = []

        stats = service.get_stats(TENANT_ID).data

        assert stats['avgDeliveryRate'] == 0
        assert stats['avgOpenRate'] == 0
        assert stats['avgClickRate'] == 0
