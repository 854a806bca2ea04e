"""
Celery tasks for campaign execution
Fans campaigns out to recipients, sends throttled messages and runs the
periodic scheduling and completion sweeps
"""

from typing import Any, Dict, Optional

from utils.datetime_utils import utc_now
from celery_worker import celery
from app import create_app
from services.exceptions import NotFoundError
from logging_config import get_logger

logger = get_logger(__name__)

MAX_RETRIES = 3


def _backoff(retries: int) -> int:
    return 60 * (2 ** retries)


@celery.task(name='tasks.campaign_tasks.execute_campaign', bind=True, max_retries=MAX_RETRIES)
def execute_campaign(self, campaign_id: int, tenant_id: Optional[str] = None) -> Dict[str, Any]:
    """
    Start a campaign: resolve recipients, create executions and enqueue sends.

    Args:
        campaign_id: ID of campaign to execute
        tenant_id: Owning tenant, for log context

    Returns:
        Dict with the fan-out summary
    """
    app = create_app()

    with app.app_context():
        try:
            campaign_service = app.services.get('campaign')
            summary = campaign_service.start_execution(campaign_id)

            logger.info("Campaign execution processed",
                        campaign_id=campaign_id, tenant_id=tenant_id, summary=summary)
            return {
                'success': True,
                'campaign_id': campaign_id,
                'summary': summary,
                'timestamp': utc_now().isoformat()
            }

        except NotFoundError as e:
            # Deleted before its job ran; nothing to retry
            logger.warning("Campaign not found for execution", campaign_id=campaign_id, error=str(e))
            return {
                'success': False,
                'campaign_id': campaign_id,
                'error': str(e),
                'timestamp': utc_now().isoformat()
            }

        except Exception as e:
            logger.error("Campaign execution failed", campaign_id=campaign_id, error=str(e))
            raise self.retry(exc=e, countdown=_backoff(self.request.retries))


@celery.task(name='tasks.campaign_tasks.send_message', bind=True, max_retries=MAX_RETRIES)
def send_message(self,
                 execution_id: int,
                 campaign_id: int,
                 contact_id: int,
                 tenant_id: Optional[str] = None,
                 content: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """
    Send one campaign message.

    Delivery failures are recorded on the execution by the delivery service
    and are not retried here. Only unexpected errors, such as a lost database
    connection, trigger a retry.
    """
    app = create_app()

    with app.app_context():
        try:
            delivery_service = app.services.get('campaign_delivery')
            status = delivery_service.deliver(execution_id, campaign_id, contact_id, content)

            return {
                'success': status is not None,
                'execution_id': execution_id,
                'campaign_id': campaign_id,
                'tenant_id': tenant_id,
                'status': status,
                'timestamp': utc_now().isoformat()
            }

        except Exception as e:
            logger.error("Campaign message task failed",
                         execution_id=execution_id, campaign_id=campaign_id,
                         contact_id=contact_id, error=str(e))
            raise self.retry(exc=e, countdown=_backoff(self.request.retries))


@celery.task(name='tasks.campaign_tasks.check_scheduled_campaigns', bind=True)
def check_scheduled_campaigns(self) -> Dict[str, Any]:
    """Start scheduled campaigns whose time has come (runs every minute)"""
    app = create_app()

    with app.app_context():
        try:
            campaign_service = app.services.get('campaign')
            results = campaign_service.check_scheduled_campaigns()

            if results['due']:
                logger.info("Scheduled campaigns checked", results=results)
            return {
                'success': True,
                'campaigns_found': results['due'],
                'campaigns_started': len(results['started']),
                'errors': results['errors'],
                'timestamp': utc_now().isoformat()
            }

        except Exception as e:
            logger.error("Scheduled campaign check failed", error=str(e))
            # The next beat tick tries again
            return {
                'success': False,
                'error': str(e),
                'timestamp': utc_now().isoformat()
            }


@celery.task(name='tasks.campaign_tasks.mark_completed_campaigns', bind=True)
def mark_completed_campaigns(self) -> Dict[str, Any]:
    """Complete running campaigns with no work left in flight (runs every 5 minutes)"""
    app = create_app()

    with app.app_context():
        try:
            campaign_service = app.services.get('campaign')
            completed = campaign_service.mark_completed_campaigns()

            if completed:
                logger.info("Campaigns completed", campaign_ids=completed)
            return {
                'success': True,
                'completed': completed,
                'timestamp': utc_now().isoformat()
            }

        except Exception as e:
            logger.error("Completion sweep failed", error=str(e))
            return {
                'success': False,
                'error': str(e),
                'timestamp': utc_now().isoformat()
            }
