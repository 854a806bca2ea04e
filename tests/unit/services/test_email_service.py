"""
Unit tests for EmailService
Tests email functionality in complete isolation using mocks
"""

import pytest
from unittest.mock import MagicMock, Mock, patch
from services.email_service import EmailService, EmailConfig, EmailMessage


class TestEmailService:
    """Test suite for EmailService"""

    @pytest.fixture
    def email_config(self):
        return EmailConfig(
            server="smtp.test.com",
            port=587,
            use_tls=True,
            username="test@test.com",
            default_sender="noreply@test.com"
        )

    @pytest.fixture
    def mock_mail_client(self):
        mock = MagicMock()
        mock.send = MagicMock()
        return mock

    @pytest.fixture
    def service(self, mock_mail_client, email_config):
        return EmailService(mail_client=mock_mail_client, config=email_config)

    @pytest.fixture
    def sample_message(self):
        return EmailMessage(
            subject="Autumn sale",
            recipients=["buyer@test.com"],
            body_text="Everything is 20% off",
            body_html="<p>Everything is 20% off</p>"
        )

    def test_is_configured(self, service):
        assert service.is_configured() is True

    def test_is_configured_false_without_server(self, mock_mail_client):
        service = EmailService(mail_client=mock_mail_client, config=EmailConfig(server=None))

        assert service.is_configured() is False

    @patch('services.email_service.Message')
    def test_send_email_success(self, mock_message_class, service, sample_message, mock_mail_client):
        """Successful sends return the message id"""
        mock_msg = MagicMock(msgId='<abc@test.com>')
        mock_message_class.return_value = mock_msg

        success, detail = service.send_email(sample_message)

        assert success is True
        assert detail == '<abc@test.com>'
        mock_message_class.assert_called_once_with(
            subject="Autumn sale",
            recipients=["buyer@test.com"],
            body="Everything is 20% off",
            html="<p>Everything is 20% off</p>",
            sender="noreply@test.com",
            reply_to=None
        )
        mock_mail_client.send.assert_called_once_with(mock_msg)

    def test_send_email_not_configured(self, sample_message):
        success, detail = EmailService().send_email(sample_message)

        assert success is False
        assert detail == "Email service not configured"

    @patch('services.email_service.Message')
    def test_send_email_smtp_failure(self, mock_message_class, service, sample_message, mock_mail_client):
        mock_mail_client.send.side_effect = ConnectionRefusedError("SMTP down")

        success, detail = service.send_email(sample_message)

        assert success is False
        assert detail == "Failed to send email: SMTP down"

    def test_from_app_reads_mail_config(self, mock_mail_client):
        app = Mock(config={'MAIL_SERVER': 'smtp.example.com', 'MAIL_PORT': 2525,
                           'MAIL_DEFAULT_SENDER': 'shop@example.com'})

        service = EmailService.from_app(app, mock_mail_client)

        assert service.config.server == 'smtp.example.com'
        assert service.config.port == 2525
        assert service.config.default_sender == 'shop@example.com'
        assert service.is_configured() is True
