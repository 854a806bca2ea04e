"""
CampaignService - campaign lifecycle, execution fan-out and statistics

A campaign moves DRAFT -> SCHEDULED -> RUNNING -> COMPLETED, and can be
paused or cancelled along the way. Starting a campaign creates one pending
execution per recipient and enqueues a throttled send job for each. Jobs
re-check the campaign status when they run, which is how pause and cancel
take effect on work that is already queued.
"""

from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm.exc import StaleDataError

from repositories.base_repository import PaginationParams
from repositories.campaign_execution_repository import CampaignExecutionRepository
from repositories.campaign_repository import CampaignRepository
from services.campaign_targeting_service import CampaignTargetingService
from services.campaign_throttle import CampaignThrottle, VariantSelector
from services.common.result import ErrorCode, PagedResult, Result
from services.enums import (
    AbTestWinnerMetric,
    CampaignChannel,
    CampaignStatus,
    CampaignType,
    ExecutionStatus,
    ScheduleType,
    ensure_execution_transition,
)
from services.exceptions import InvalidStateError, NotFoundError
from services.job_queue import EXECUTE_CAMPAIGN, SEND_MESSAGE, JobQueue
from utils.datetime_utils import format_utc_iso, naive_utc, parse_utc_iso
import logging

logger = logging.getLogger(__name__)

# API field name -> model attribute
CAMPAIGN_FIELDS = {
    'name': 'name',
    'description': 'description',
    'type': 'type',
    'primaryChannel': 'primary_channel',
    'content': 'content',
    'targeting': 'targeting',
    'schedule': 'schedule',
    'throttle': 'throttle',
    'isAbTest': 'is_ab_test',
    'abTestWinnerMetric': 'ab_test_winner_metric',
    'abTestSampleSize': 'ab_test_sample_size',
}

# Execution status -> timestamp column set on entering it
STATUS_TIMESTAMPS = {
    ExecutionStatus.QUEUED.value: 'queued_at',
    ExecutionStatus.SENT.value: 'sent_at',
    ExecutionStatus.DELIVERED.value: 'delivered_at',
    ExecutionStatus.OPENED.value: 'opened_at',
    ExecutionStatus.CLICKED.value: 'clicked_at',
    ExecutionStatus.REPLIED.value: 'replied_at',
}

SCHEDULABLE_STATUSES = (CampaignStatus.DRAFT.value, CampaignStatus.PAUSED.value, CampaignStatus.SCHEDULED.value)
PAUSABLE_STATUSES = (CampaignStatus.RUNNING.value, CampaignStatus.SCHEDULED.value)
NOT_STARTABLE_STATUSES = (
    CampaignStatus.CANCELLED.value,
    CampaignStatus.PAUSED.value,
    CampaignStatus.RUNNING.value,
    CampaignStatus.COMPLETED.value,
)

# Allowed early arrival of a delayed execute job
SCHEDULE_TOLERANCE = timedelta(seconds=5)

STATS_RETRIES = 3


class CampaignService:
    """Service for campaign management and execution"""

    def __init__(self,
                 campaign_repository: CampaignRepository,
                 execution_repository: CampaignExecutionRepository,
                 targeting_service: CampaignTargetingService,
                 job_queue: JobQueue,
                 throttle: Optional[CampaignThrottle] = None,
                 variant_selector: Optional[VariantSelector] = None,
                 page_size: int = 20):
        """
        Args:
            campaign_repository: Campaign and variant data access
            execution_repository: Execution data access
            targeting_service: Resolves recipients
            job_queue: Queue for execute and send jobs
            throttle: Per-recipient delay calculator
            variant_selector: A/B variant chooser
            page_size: Default execution page size
        """
        self.campaign_repository = campaign_repository
        self.execution_repository = execution_repository
        self.targeting_service = targeting_service
        self.job_queue = job_queue
        self.throttle = throttle or CampaignThrottle()
        self.variant_selector = variant_selector or VariantSelector()
        self.page_size = page_size

    # CRUD

    def _validate(self, data: Dict[str, Any]) -> Optional[str]:
        if 'name' in data and not (data.get('name') or '').strip():
            return "Campaign name is required"
        checks = (
            ('type', CampaignType),
            ('primaryChannel', CampaignChannel),
            ('abTestWinnerMetric', AbTestWinnerMetric),
        )
        for key, enum_cls in checks:
            value = data.get(key)
            if value is not None:
                try:
                    enum_cls(value)
                except ValueError:
                    return f"Invalid {key}: {value}"
        for variant in data.get('variants') or []:
            try:
                float(variant.get('percentage') or 0)
            except (TypeError, ValueError):
                return f"Invalid variant percentage: {variant.get('percentage')}"
        return None

    def create(self, tenant_id: str, data: Dict[str, Any]) -> Result:
        """
        Create a draft campaign, with variants when it is an A/B test.

        Args:
            tenant_id: Owning tenant
            data: Campaign fields in API naming

        Returns:
            Result with the created Campaign
        """
        if not (data.get('name') or '').strip():
            return Result.failure("Campaign name is required", code=ErrorCode.VALIDATION_ERROR)
        error = self._validate(data)
        if error:
            return Result.failure(error, code=ErrorCode.VALIDATION_ERROR)

        fields = {attr: data[key] for key, attr in CAMPAIGN_FIELDS.items() if key in data}
        fields['is_ab_test'] = bool(fields.get('is_ab_test'))

        try:
            campaign = self.campaign_repository.create(
                tenant_id=tenant_id,
                status=CampaignStatus.DRAFT.value,
                **fields
            )
            if campaign.is_ab_test and data.get('variants'):
                for variant in data['variants']:
                    self.campaign_repository.add_variant(campaign, variant)
                self.variant_selector.check_percentages(campaign.variants, campaign.id)
            self.campaign_repository.commit()
        except SQLAlchemyError as e:
            logger.error(f"Failed to create campaign: {str(e)}")
            return Result.failure(f"Failed to create campaign: {str(e)}", code=ErrorCode.INTERNAL_ERROR)

        logger.info(f"Created campaign: {campaign.id} - {campaign.name}")
        return Result.success(campaign)

    def find_all(self, tenant_id: str, status: Optional[str] = None, campaign_type: Optional[str] = None) -> Result:
        return Result.success(self.campaign_repository.find_by_tenant(tenant_id, status, campaign_type))

    def find_by_id(self, tenant_id: str, campaign_id: int) -> Result:
        campaign = self.campaign_repository.get_for_tenant(tenant_id, campaign_id)
        if campaign is None:
            return Result.failure(f"Campaign {campaign_id} not found", code=ErrorCode.NOT_FOUND)
        return Result.success(campaign)

    def update(self, tenant_id: str, campaign_id: int, updates: Dict[str, Any]) -> Result:
        """
        Update campaign fields. Running campaigns cannot be edited.

        Status is never changed here; use schedule, pause, resume or cancel.
        """
        campaign = self.campaign_repository.get_for_tenant(tenant_id, campaign_id)
        if campaign is None:
            return Result.failure(f"Campaign {campaign_id} not found", code=ErrorCode.NOT_FOUND)
        if campaign.status == CampaignStatus.RUNNING.value:
            return Result.failure("Cannot update a running campaign", code=ErrorCode.INVALID_STATE)

        error = self._validate(updates)
        if error:
            return Result.failure(error, code=ErrorCode.VALIDATION_ERROR)

        changes = {attr: updates[key] for key, attr in CAMPAIGN_FIELDS.items() if key in updates}
        try:
            self.campaign_repository.update(campaign, **changes)
            if 'variants' in updates:
                self.campaign_repository.replace_variants(campaign, updates.get('variants') or [])
                self.variant_selector.check_percentages(campaign.variants, campaign.id)
            self.campaign_repository.commit()
        except StaleDataError:
            return Result.failure(f"Campaign {campaign_id} was modified concurrently", code=ErrorCode.CONFLICT)
        except SQLAlchemyError as e:
            logger.error(f"Failed to update campaign {campaign_id}: {e}")
            return Result.failure(f"Failed to update campaign: {e}", code=ErrorCode.INTERNAL_ERROR)

        return Result.success(campaign)

    def delete(self, tenant_id: str, campaign_id: int) -> Result:
        """Delete a campaign with its variants and executions"""
        campaign = self.campaign_repository.get_for_tenant(tenant_id, campaign_id)
        if campaign is None:
            return Result.failure(f"Campaign {campaign_id} not found", code=ErrorCode.NOT_FOUND)
        if campaign.status == CampaignStatus.RUNNING.value:
            return Result.failure("Cannot delete a running campaign", code=ErrorCode.INVALID_STATE)

        try:
            self.campaign_repository.delete(campaign)
            self.campaign_repository.commit()
        except SQLAlchemyError as e:
            return Result.failure(f"Failed to delete campaign: {e}", code=ErrorCode.INTERNAL_ERROR)

        logger.info(f"Deleted campaign {campaign_id}")
        return Result.success(True)

    # Lifecycle

    def schedule(self, tenant_id: str, campaign_id: int, scheduled_at=None) -> Result:
        """
        Schedule a campaign to run at ``scheduled_at``, or right away.

        The execute job is enqueued with the remaining delay. The periodic
        scheduled-campaign check also picks the campaign up once it is due,
        so a lost job only delays the start.

        Args:
            tenant_id: Owning tenant
            campaign_id: Campaign ID
            scheduled_at: datetime or ISO 8601 string; None for immediate

        Returns:
            Result with the scheduled Campaign
        """
        campaign = self.campaign_repository.get_for_tenant(tenant_id, campaign_id)
        if campaign is None:
            return Result.failure(f"Campaign {campaign_id} not found", code=ErrorCode.NOT_FOUND)
        if campaign.status not in SCHEDULABLE_STATUSES:
            return Result.failure(f"Cannot schedule a {campaign.status} campaign", code=ErrorCode.INVALID_STATE)

        try:
            at = parse_utc_iso(scheduled_at) if isinstance(scheduled_at, str) else scheduled_at
        except ValueError:
            return Result.failure(f"Invalid scheduledAt: {scheduled_at}", code=ErrorCode.VALIDATION_ERROR)

        now = naive_utc()
        schedule = dict(campaign.schedule or {})
        if at is not None:
            run_at = naive_utc(at)
            schedule.update({'type': ScheduleType.SCHEDULED.value, 'scheduledAt': format_utc_iso(at)})
        else:
            run_at = now
            schedule.update({'type': ScheduleType.IMMEDIATE.value})
            schedule.pop('scheduledAt', None)

        try:
            self.campaign_repository.update(
                campaign,
                status=CampaignStatus.SCHEDULED.value,
                schedule=schedule,
                scheduled_at=run_at,
            )
            self.campaign_repository.commit()
        except StaleDataError:
            return Result.failure(f"Campaign {campaign_id} was modified concurrently", code=ErrorCode.CONFLICT)

        delay_ms = max(0.0, (run_at - now).total_seconds() * 1000)
        try:
            self.job_queue.enqueue(EXECUTE_CAMPAIGN, {'campaign_id': campaign.id, 'tenant_id': tenant_id}, delay_ms)
        except Exception as e:
            # The scheduled-campaign check starts it once due
            logger.error(f"Failed to enqueue execution for campaign {campaign.id}: {e}")

        logger.info(f"Campaign scheduled: {campaign.name} at {run_at.isoformat()}")
        return Result.success(campaign)

    def _transition(self, tenant_id: str, campaign_id: int, allowed, target: CampaignStatus,
                    **extra) -> Result:
        campaign = self.campaign_repository.get_for_tenant(tenant_id, campaign_id)
        if campaign is None:
            return Result.failure(f"Campaign {campaign_id} not found", code=ErrorCode.NOT_FOUND)
        if campaign.status not in allowed:
            return Result.failure(
                f"Cannot move campaign from {campaign.status} to {target.value}", code=ErrorCode.INVALID_STATE
            )
        try:
            self.campaign_repository.update(campaign, status=target.value, **extra)
            self.campaign_repository.commit()
        except StaleDataError:
            return Result.failure(f"Campaign {campaign_id} was modified concurrently", code=ErrorCode.CONFLICT)

        logger.info(f"Campaign {campaign_id} is now {target.value}")
        return Result.success(campaign)

    def pause(self, tenant_id: str, campaign_id: int) -> Result:
        """Pause a running or scheduled campaign. Queued jobs see the pause when they run."""
        return self._transition(tenant_id, campaign_id, PAUSABLE_STATUSES, CampaignStatus.PAUSED)

    def resume(self, tenant_id: str, campaign_id: int) -> Result:
        """
        Resume a paused campaign.

        A campaign paused before it ever started goes back to SCHEDULED and
        is re-enqueued. Executions that already failed with "Campaign not
        running" while paused are not re-sent.
        """
        campaign = self.campaign_repository.get_for_tenant(tenant_id, campaign_id)
        if campaign is not None and campaign.status == CampaignStatus.PAUSED.value and campaign.started_at is None:
            return self.schedule(tenant_id, campaign_id, _future_or_none(campaign.scheduled_at))
        return self._transition(tenant_id, campaign_id, (CampaignStatus.PAUSED.value,), CampaignStatus.RUNNING)

    def cancel(self, tenant_id: str, campaign_id: int) -> Result:
        """Cancel any campaign that has not finished"""
        allowed = [status.value for status in CampaignStatus if not status.is_terminal]
        return self._transition(tenant_id, campaign_id, allowed, CampaignStatus.CANCELLED)

    # Execution

    def start_execution(self, campaign_id: int) -> Dict[str, Any]:
        """
        Start sending a campaign.

        Does nothing when the campaign is cancelled, paused, already running
        or completed, or when a scheduled campaign is not due yet. This makes
        duplicate or stale execute jobs harmless.

        Recipients that already have an execution are skipped. A failure to
        enqueue one recipient marks that execution failed and the rest carry on.

        Args:
            campaign_id: Campaign ID

        Returns:
            Summary with targeted, queued, failed and skipped counts

        Raises:
            NotFoundError: If the campaign does not exist
        """
        campaign = self.campaign_repository.get_by_id(campaign_id)
        if campaign is None:
            raise NotFoundError('Campaign', campaign_id)

        summary = {'campaignId': campaign_id, 'started': False, 'targeted': 0, 'queued': 0, 'failed': 0, 'skipped': 0}

        if campaign.status in NOT_STARTABLE_STATUSES:
            logger.info(f"Campaign {campaign_id} is {campaign.status}, not starting")
            return summary
        now = naive_utc()
        if (campaign.status == CampaignStatus.SCHEDULED.value and campaign.scheduled_at
                and campaign.scheduled_at > now + SCHEDULE_TOLERANCE):
            logger.info(f"Campaign {campaign_id} is scheduled for {campaign.scheduled_at.isoformat()}, not starting yet")
            return summary

        # Nothing is written until recipients are resolved
        recipients = self.targeting_service.resolve_recipients(campaign)
        variants = list(campaign.variants) if campaign.is_ab_test else []
        if variants:
            self.variant_selector.check_percentages(variants, campaign.id)

        stats = dict(campaign.stats or {})
        stats['totalTargeted'] = len(recipients)
        self.campaign_repository.update(campaign, status=CampaignStatus.RUNNING.value, started_at=now, stats=stats)

        # Status flip and pending executions commit together
        existing = self.execution_repository.get_contact_ids_for_campaign(campaign.id)
        planned = []
        for contact_id in recipients:
            if contact_id in existing:
                summary['skipped'] += 1
                continue
            variant = self.variant_selector.select(variants) if variants else None
            execution = self.execution_repository.create(
                campaign_id=campaign.id,
                variant_id=variant.id if variant else None,
                contact_id=contact_id,
                channel=campaign.primary_channel,
                status=ExecutionStatus.PENDING.value,
            )
            planned.append((len(planned), execution, variant))
        self.execution_repository.commit()

        summary.update(started=True, targeted=len(recipients))
        logger.info(f"Campaign {campaign.name} started with {len(recipients)} contacts")

        for index, execution, variant in planned:
            payload = {
                'execution_id': execution.id,
                'campaign_id': campaign.id,
                'contact_id': execution.contact_id,
                'tenant_id': campaign.tenant_id,
                'content': self.message_content(campaign, variant),
            }
            try:
                self.job_queue.enqueue(SEND_MESSAGE, payload, self.throttle.delay_for(campaign, index))
                summary['queued'] += 1
            except Exception as e:
                logger.error(f"Failed to enqueue execution {execution.id} for contact {execution.contact_id}: {e}")
                self.execution_repository.update(
                    execution,
                    status=ExecutionStatus.FAILED.value,
                    error_message=f"Failed to enqueue: {e}",
                )
                summary['failed'] += 1
        self.execution_repository.commit()

        if summary['failed']:
            self.update_campaign_stats(campaign.id)

        logger.info(f"Campaign {campaign_id} fan-out complete: {summary}")
        return summary

    @staticmethod
    def message_content(campaign, variant=None) -> Dict[str, Any]:
        content = dict(campaign.content or {})
        if variant is not None:
            content.update(variant.content or {})
        content['channel'] = campaign.primary_channel
        return content

    def update_execution_status(self,
                                execution_id: int,
                                status: str,
                                external_message_id: Optional[str] = None,
                                error_message: Optional[str] = None) -> Result:
        """
        Move an execution to a new status and refresh campaign stats.

        Transitions only move forward; failed and bounced are final.
        Rejected transitions are logged and change nothing.

        Args:
            execution_id: Execution ID
            status: Target ExecutionStatus value
            external_message_id: Provider message id, if known
            error_message: Failure reason; defaults to "Unknown error" for failed

        Returns:
            Result with the execution
        """
        execution = self.execution_repository.get_by_id(execution_id)
        if execution is None:
            logger.warning(f"Execution {execution_id} not found")
            return Result.failure(f"Execution {execution_id} not found", code=ErrorCode.NOT_FOUND)

        try:
            target = ExecutionStatus(status)
        except ValueError:
            return Result.failure(f"Unknown execution status: {status}", code=ErrorCode.VALIDATION_ERROR)

        try:
            ensure_execution_transition(execution.status, target.value)
        except InvalidStateError as e:
            logger.warning(f"Rejected execution {execution_id} transition: {e}")
            return Result.from_exception(e)

        changes: Dict[str, Any] = {'status': target.value}
        timestamp_field = STATUS_TIMESTAMPS.get(target.value)
        if timestamp_field:
            changes[timestamp_field] = naive_utc()
        if target == ExecutionStatus.FAILED:
            changes['error_message'] = error_message or 'Unknown error'
        if external_message_id:
            changes['external_message_id'] = external_message_id

        self.execution_repository.update(execution, **changes)
        self.execution_repository.commit()

        self.update_campaign_stats(execution.campaign_id)
        return Result.success(execution)

    def record_conversion(self, execution_id: int, value, order_id: Optional[str] = None) -> Result:
        """Attribute an order to an execution and refresh stats"""
        execution = self.execution_repository.get_by_id(execution_id)
        if execution is None:
            return Result.failure(f"Execution {execution_id} not found", code=ErrorCode.NOT_FOUND)

        self.execution_repository.update(
            execution,
            converted=True,
            conversion_value=value,
            conversion_order_id=order_id,
        )
        self.execution_repository.commit()
        self.update_campaign_stats(execution.campaign_id)
        return Result.success(execution)

    def update_campaign_stats(self, campaign_id: int) -> Optional[Dict[str, Any]]:
        """
        Recompute campaign and variant stats from the execution rows.

        The result depends only on the rows, so running it again is a no-op.
        A concurrent write to the campaign makes the save stale; the stats
        are then recomputed on fresh state.

        Returns:
            The campaign stats, or None if the campaign does not exist
        """
        for attempt in range(1, STATS_RETRIES + 1):
            campaign = self.campaign_repository.get_by_id(campaign_id)
            if campaign is None:
                return None
            stats = self.execution_repository.aggregate_stats(campaign_id)
            try:
                self.campaign_repository.update(campaign, stats=stats)
                for variant in campaign.variants:
                    variant.stats = self.execution_repository.aggregate_stats(campaign_id, variant.id)
                self.campaign_repository.commit()
                return stats
            except StaleDataError:
                logger.warning(f"Stale stats write for campaign {campaign_id} (attempt {attempt})")
                if attempt == STATS_RETRIES:
                    raise
        return None

    # Periodic ticks

    def get_campaigns_ready_to_run(self, now: Optional[datetime] = None) -> List[Any]:
        return self.campaign_repository.find_scheduled_campaigns_ready_to_run(naive_utc(now))

    def check_scheduled_campaigns(self) -> Dict[str, Any]:
        """
        Start every scheduled campaign that is due.

        One campaign failing to start does not stop the others.
        """
        due = self.get_campaigns_ready_to_run()
        results = {'due': len(due), 'started': [], 'errors': []}
        if due:
            logger.info(f"Found {len(due)} campaigns due for execution")

        for campaign in due:
            campaign_id = campaign.id
            try:
                summary = self.start_execution(campaign_id)
                if summary['started']:
                    results['started'].append(campaign_id)
            except Exception as e:
                logger.error(f"Failed to start scheduled campaign {campaign_id}: {e}")
                self.campaign_repository.rollback()
                results['errors'].append({'campaignId': campaign_id, 'error': str(e)})
        return results

    def mark_completed_campaigns(self) -> List[int]:
        """
        Complete running campaigns that have nothing pending or queued.

        Returns:
            Ids of the campaigns that were completed
        """
        completed = []
        for campaign in self.campaign_repository.find_running_campaigns():
            if self.execution_repository.count_in_flight(campaign.id) > 0:
                continue
            try:
                self.campaign_repository.update(
                    campaign,
                    status=CampaignStatus.COMPLETED.value,
                    completed_at=naive_utc(),
                )
                self.campaign_repository.commit()
            except StaleDataError:
                logger.warning(f"Campaign {campaign.id} changed while completing; retrying next sweep")
                continue
            self.update_campaign_stats(campaign.id)
            completed.append(campaign.id)
            logger.info(f"Campaign completed: {campaign.name}")
        return completed

    # Reporting

    def get_stats(self, tenant_id: str) -> Result:
        """Totals and average rates across a tenant's campaigns"""
        campaigns = self.campaign_repository.find_by_tenant(tenant_id)
        totals = {key: 0 for key in ('totalSent', 'totalDelivered', 'totalOpened',
                                     'totalClicked', 'totalConverted', 'conversionValue')}
        for campaign in campaigns:
            stats = campaign.stats or {}
            for key in totals:
                totals[key] += stats.get(key) or 0

        return Result.success({
            'totalCampaigns': len(campaigns),
            'activeCampaigns': sum(1 for c in campaigns if c.status == CampaignStatus.RUNNING.value),
            'completedCampaigns': sum(1 for c in campaigns if c.status == CampaignStatus.COMPLETED.value),
            'totalSent': totals['totalSent'],
            'totalDelivered': totals['totalDelivered'],
            'avgDeliveryRate': _rate(totals['totalDelivered'], totals['totalSent']),
            'avgOpenRate': _rate(totals['totalOpened'], totals['totalDelivered']),
            'avgClickRate': _rate(totals['totalClicked'], totals['totalOpened']),
            'totalConversions': totals['totalConverted'],
            'totalConversionValue': totals['conversionValue'],
        })

    def get_executions(self,
                       tenant_id: str,
                       campaign_id: int,
                       page: int = 1,
                       per_page: Optional[int] = None,
                       status: Optional[str] = None) -> Result:
        """Page through a campaign's executions, newest first"""
        campaign = self.campaign_repository.get_for_tenant(tenant_id, campaign_id)
        if campaign is None:
            return Result.failure(f"Campaign {campaign_id} not found", code=ErrorCode.NOT_FOUND)

        pagination = PaginationParams(page=page, per_page=per_page or self.page_size)
        paged = self.execution_repository.get_paginated_for_campaign(campaign_id, pagination, status)
        return PagedResult.paginated(paged.items, paged.total, paged.page, paged.per_page)


def _rate(numerator, denominator) -> float:
    return (numerator / denominator) * 100 if denominator > 0 else 0


def _future_or_none(moment: Optional[datetime]) -> Optional[datetime]:
    if moment is None or moment <= naive_utc():
        return None
    return moment
