"""
EmailService - Flask-Mail transport for invitation emails
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
    default_sender: str = "noreply@svmpc.coop"
    suppress_send: bool = False

    @classmethod
    def from_app_config(cls, app_config) -> 'EmailConfig':
        return cls(
            server=app_config.get('MAIL_SERVER'),
            port=app_config.get('MAIL_PORT', 587),
            use_tls=app_config.get('MAIL_USE_TLS', True),
            username=app_config.get('MAIL_USERNAME'),
            default_sender=app_config.get('MAIL_DEFAULT_SENDER', 'noreply@svmpc.coop'),
            suppress_send=bool(app_config.get('MAIL_SUPPRESS_SEND', False)),
        )


@dataclass
class EmailMessage:
    """Email message data structure"""
    subject: str
    recipients: List[str]
    body_text: str
    body_html: Optional[str] = None
    sender: Optional[str] = None


class EmailService:
    """Sends email through an initialised Flask-Mail client"""

    def __init__(self, mail_client: Mail, config: EmailConfig):
        """
        Args:
            mail_client: Flask-Mail instance already bound to the app
            config: Email configuration
        """
        self.mail_client = mail_client
        self.config = config

    def is_configured(self) -> bool:
        # Suppressed sending (development, tests) needs no SMTP server
        return self.config.suppress_send or bool(self.config.server)

    def send_email(self, message: EmailMessage) -> Tuple[bool, str]:
        """
        Returns:
            Tuple of (success, message)
        """
        if not self.is_configured():
            logger.warning("Attempted to send email but service not configured")
            return False, "Email service not configured"

        try:
            msg = Message(
                subject=message.subject,
                recipients=message.recipients,
                body=message.body_text,
                html=message.body_html,
                sender=message.sender or self.config.default_sender
            )
            self.mail_client.send(msg)
            logger.info("Email sent", subject=message.subject, recipient_count=len(message.recipients))
            return True, "Email sent successfully"

        except Exception as e:
            # SMTP and socket errors surface as many unrelated types
            logger.error("Failed to send email", error=str(e), subject=message.subject)
            return False, f"Failed to send email: {str(e)}"
