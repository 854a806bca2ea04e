"""
CampaignDeliveryService - consumer for per-recipient send jobs

Runs once per execution when its throttled send job fires. The campaign
status is checked at that moment, so a pause or cancel issued after the job
was enqueued still stops the send.
"""

from typing import Any, Dict, Optional

from repositories.campaign_execution_repository import CampaignExecutionRepository
from repositories.campaign_repository import CampaignRepository
from repositories.contact_repository import ContactRepository
from services.campaign_service import CampaignService
from services.channel_delivery_service import ChannelDeliveryService
from services.enums import CampaignStatus, ExecutionStatus, EXECUTION_PROGRESS_ORDER
from services.exceptions import DeliveryError
from logging_config import get_logger

logger = get_logger(__name__)

_QUEUED_INDEX = EXECUTION_PROGRESS_ORDER.index(ExecutionStatus.QUEUED)


def _already_dispatched(status: str) -> bool:
    current = ExecutionStatus(status)
    if current.is_terminal_failure:
        return True
    return EXECUTION_PROGRESS_ORDER.index(current) > _QUEUED_INDEX


class CampaignDeliveryService:
    """Delivers one campaign execution"""

    def __init__(self,
                 campaign_repository: CampaignRepository,
                 execution_repository: CampaignExecutionRepository,
                 contact_repository: ContactRepository,
                 campaign_service: CampaignService,
                 channel_delivery: ChannelDeliveryService):
        self.campaign_repository = campaign_repository
        self.execution_repository = execution_repository
        self.contact_repository = contact_repository
        self.campaign_service = campaign_service
        self.channel_delivery = channel_delivery

    def deliver(self,
                execution_id: int,
                campaign_id: int,
                contact_id: int,
                content: Optional[Dict[str, Any]] = None) -> Optional[str]:
        """
        Send the message for one execution and record the outcome.

        Args:
            execution_id: Execution ID
            campaign_id: Campaign ID
            contact_id: Recipient contact ID
            content: Message content captured when the job was enqueued

        Returns:
            The execution's final status, or None when there was nothing to do
        """
        execution = self.execution_repository.get_by_id(execution_id)
        if execution is None:
            logger.warning("Execution not found", execution_id=execution_id)
            return None

        campaign = self.campaign_repository.get_by_id(campaign_id)
        if campaign is None or campaign.status != CampaignStatus.RUNNING.value:
            logger.info("Campaign not running, skipping message", execution_id=execution_id, campaign_id=campaign_id)
            return self._fail(execution_id, 'Campaign not running')

        contact = self.contact_repository.get_for_tenant(campaign.tenant_id, contact_id)
        if contact is None:
            logger.warning("Contact not found", execution_id=execution_id, contact_id=contact_id)
            return self._fail(execution_id, 'Contact not found')

        if _already_dispatched(execution.status):
            logger.info("Execution already dispatched, ignoring redelivery",
                        execution_id=execution_id, status=execution.status)
            return None

        if execution.status == ExecutionStatus.PENDING.value:
            self.campaign_service.update_execution_status(execution_id, ExecutionStatus.QUEUED.value)

        content = dict(content or self.campaign_service.message_content(campaign))
        channel = content.get('channel') or execution.channel

        try:
            message_id = self.channel_delivery.send(channel, contact, content)
        except Exception as e:
            logger.error(
                "Failed to send message",
                execution_id=execution_id,
                contact_id=contact_id,
                error=str(e),
                delivery_error=isinstance(e, DeliveryError),
            )
            return self._fail(execution_id, str(e))

        self.campaign_service.update_execution_status(
            execution_id, ExecutionStatus.SENT.value, external_message_id=message_id
        )
        logger.info("Campaign message sent", execution_id=execution_id, channel=channel, message_id=message_id)
        return ExecutionStatus.SENT.value

    def _fail(self, execution_id: int, reason: str) -> Optional[str]:
        result = self.campaign_service.update_execution_status(
            execution_id, ExecutionStatus.FAILED.value, error_message=reason
        )
        # A redelivered job for an already-sent execution cannot fail it
        return ExecutionStatus.FAILED.value if result.is_success else None
