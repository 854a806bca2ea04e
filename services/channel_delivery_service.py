"""
ChannelDeliveryService - sends one campaign message over its channel
"""

from typing import Any, Dict, List, Optional

from services.email_service import EmailMessage, EmailService
from services.enums import CampaignChannel
from services.exceptions import DeliveryError
from services.whatsapp_api_client import WhatsAppAPIClient
from logging_config import get_logger

logger = get_logger(__name__)


def build_template_components(template_variables: Optional[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """
    Turn template variables into WhatsApp body parameters.

    Parameters are positional, so the variables' insertion order decides
    which placeholder each value fills.
    """
    if not template_variables:
        return []
    return [{
        'type': 'body',
        'parameters': [{'type': 'text', 'text': str(value)} for value in template_variables.values()],
    }]


class ChannelDeliveryService:
    """Dispatches campaign content to the channel clients"""

    def __init__(self, whatsapp_client: WhatsAppAPIClient, email_service: EmailService):
        self.whatsapp_client = whatsapp_client
        self.email_service = email_service

    def send(self, channel: str, contact, content: Dict[str, Any]) -> Optional[str]:
        """
        Send campaign content to one contact.

        Args:
            channel: Campaign channel value
            contact: Recipient contact
            content: Campaign or variant content document

        Returns:
            External message id

        Raises:
            DeliveryError: If the contact cannot be reached on the channel
                or the provider rejects the message
        """
        if channel == CampaignChannel.WHATSAPP.value:
            return self.send_whatsapp(contact, content)
        if channel == CampaignChannel.EMAIL.value:
            return self.send_email(contact, content)
        raise DeliveryError(f"Unsupported channel: {channel}")

    def send_whatsapp(self, contact, content: Dict[str, Any]) -> Optional[str]:
        if not contact.phone:
            raise DeliveryError("Contact has no phone number")

        message_id = self.whatsapp_client.send_template_message(
            to=contact.phone,
            template_name=content.get('templateName') or content.get('templateId') or '',
            language_code=content.get('languageCode'),
            components=build_template_components(content.get('templateVariables')),
        )
        logger.info("WhatsApp message sent", contact_id=contact.id, message_id=message_id)
        return message_id

    def send_email(self, contact, content: Dict[str, Any]) -> Optional[str]:
        if not contact.email:
            raise DeliveryError("Contact has no email address")

        success, detail = self.email_service.send_email(EmailMessage(
            subject=content.get('emailSubject') or '',
            recipients=[contact.email],
            body_text=content.get('emailBody') or '',
            body_html=content.get('emailHtml'),
        ))
        if not success:
            raise DeliveryError(detail)
        return detail
