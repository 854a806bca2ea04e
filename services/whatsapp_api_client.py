"""
WhatsApp Cloud API Client

Handles direct API communication with the Meta Graph API messages endpoint:
- Authentication
- Rate limit retries with exponential backoff
- Error translation into DeliveryError
"""

import logging
import time
from typing import Dict, Any, List, Optional
import requests
from flask import current_app

from logging_config import performance_logger
from services.exceptions import DeliveryError

logger = logging.getLogger(__name__)


class WhatsAppAPIClient:
    """Client for sending WhatsApp template messages"""

    def __init__(self,
                 access_token: Optional[str] = None,
                 phone_number_id: Optional[str] = None,
                 base_url: Optional[str] = None,
                 default_language: Optional[str] = None):
        """
        Initialize WhatsApp API client.

        Args:
            access_token: Graph API token (read from config if not provided)
            phone_number_id: Sending phone number id (read from config if not provided)
            base_url: Graph API base URL
            default_language: Template language code used when none is given
        """
        config = current_app.config
        self.access_token = access_token or config.get('WHATSAPP_ACCESS_TOKEN')
        self.phone_number_id = phone_number_id or config.get('WHATSAPP_PHONE_NUMBER_ID')
        self.base_url = (base_url or config.get('WHATSAPP_API_URL') or 'https://graph.facebook.com/v18.0').rstrip('/')
        self.default_language = default_language or config.get('WHATSAPP_DEFAULT_LANGUAGE') or 'en'
        self.timeout = (5, 30)  # Connection timeout, read timeout
        self.max_retries = 3
        self.retry_delay = 1  # Initial retry delay in seconds

    def is_configured(self) -> bool:
        return bool(self.access_token and self.phone_number_id)

    def _post(self, payload: Dict[str, Any], retry_count: int = 0) -> Dict[str, Any]:
        """
        POST to the messages endpoint, retrying rate limits and server errors.

        Raises:
            DeliveryError: On API errors after retries are exhausted
        """
        url = f"{self.base_url}/{self.phone_number_id}/messages"
        headers = {
            "Authorization": f"Bearer {self.access_token}",
            "Content-Type": "application/json"
        }

        started = time.perf_counter()
        try:
            response = requests.post(url, headers=headers, json=payload, timeout=self.timeout)
        except requests.exceptions.Timeout as e:
            logger.error(f"WhatsApp request timed out (attempt {retry_count + 1}): {e}")
            if retry_count < self.max_retries:
                time.sleep(self.retry_delay * (2 ** retry_count))
                return self._post(payload, retry_count + 1)
            raise DeliveryError(f"WhatsApp request timed out after {self.max_retries} retries")
        except requests.exceptions.RequestException as e:
            logger.error(f"WhatsApp request failed: {e}")
            raise DeliveryError(f"WhatsApp request failed: {e}")

        performance_logger.log_api_call(
            'whatsapp', 'messages', round((time.perf_counter() - started) * 1000, 2), response.status_code
        )

        if response.status_code == 429 or response.status_code >= 500:
            if retry_count < self.max_retries:
                delay = self.retry_delay * (2 ** retry_count)
                logger.warning(f"WhatsApp API returned {response.status_code}, retrying after {delay} seconds")
                time.sleep(delay)
                return self._post(payload, retry_count + 1)
            raise DeliveryError(f"WhatsApp API error {response.status_code} after {self.max_retries} retries")

        if response.status_code >= 400:
            raise DeliveryError(f"WhatsApp API error {response.status_code}: {_error_message(response)}")

        return response.json()

    def send_template_message(self,
                              to: str,
                              template_name: str,
                              language_code: Optional[str] = None,
                              components: Optional[List[Dict[str, Any]]] = None) -> Optional[str]:
        """
        Send an approved template message.

        Args:
            to: Recipient phone number
            template_name: Approved template name
            language_code: Template language (defaults to configured language)
            components: Template components such as body parameters

        Returns:
            The message id assigned by WhatsApp

        Raises:
            DeliveryError: If the client is not configured or the API rejects the message
        """
        if not self.is_configured():
            raise DeliveryError("WhatsApp channel not configured")

        template: Dict[str, Any] = {
            'name': template_name,
            'language': {'code': language_code or self.default_language},
        }
        if components:
            template['components'] = components

        data = self._post({
            'messaging_product': 'whatsapp',
            'recipient_type': 'individual',
            'to': to,
            'type': 'template',
            'template': template,
        })

        messages = data.get('messages') or [{}]
        return messages[0].get('id')


def _error_message(response) -> str:
    try:
        return response.json().get('error', {}).get('message') or response.text
    except ValueError:
        return response.text
