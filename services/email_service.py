"""
EmailService - Abstraction for email functionality
Sends campaign emails through Flask-Mail
"""

from typing import Optional, List, Tuple
from dataclasses import dataclass
from flask_mail import Mail, Message
from logging_config import get_logger

logger = get_logger(__name__)


@dataclass
class EmailConfig:
    """Email configuration container"""
    server: Optional[str]
    port: int = 587
    use_tls: bool = True
    username: Optional[str] = None
    default_sender: str = "noreply@example.com"


@dataclass
class EmailMessage:
    """Email message data structure"""
    subject: str
    recipients: List[str]
    body_text: str
    body_html: Optional[str] = None
    sender: Optional[str] = None
    reply_to: Optional[str] = None


class EmailService:
    """Service for handling email operations"""

    def __init__(self, mail_client: Optional[Mail] = None, config: Optional[EmailConfig] = None):
        """
        Args:
            mail_client: Flask-Mail instance already bound to the app
            config: Email configuration
        """
        self.mail_client = mail_client
        self.config = config

    @classmethod
    def from_app(cls, app, mail_client: Mail) -> 'EmailService':
        """Build the service from Flask config"""
        config = EmailConfig(
            server=app.config.get('MAIL_SERVER'),
            port=app.config.get('MAIL_PORT', 587),
            use_tls=app.config.get('MAIL_USE_TLS', True),
            username=app.config.get('MAIL_USERNAME'),
            default_sender=app.config.get('MAIL_DEFAULT_SENDER') or 'noreply@example.com'
        )
        if not config.server:
            logger.warning("Email service not configured - MAIL_SERVER not set")
        return cls(mail_client=mail_client, config=config)

    def is_configured(self) -> bool:
        return bool(self.mail_client and self.config and self.config.server)

    def send_email(self, message: EmailMessage) -> Tuple[bool, str]:
        """
        Send an email message

        Returns:
            Tuple of (success, message id or error text)
        """
        if not self.is_configured():
            logger.warning("Attempted to send email but service not configured")
            return False, "Email service not configured"

        msg = Message(
            subject=message.subject,
            recipients=message.recipients,
            body=message.body_text,
            html=message.body_html,
            sender=message.sender or self.config.default_sender,
            reply_to=message.reply_to
        )

        try:
            self.mail_client.send(msg)
        except Exception as e:
            logger.error(
                "Failed to send email",
                error=str(e),
                subject=message.subject,
                recipients=message.recipients
            )
            return False, f"Failed to send email: {str(e)}"

        logger.info("Email sent successfully", subject=message.subject, recipients=message.recipients)
        return True, msg.msgId
