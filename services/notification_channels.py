"""
Notification channel adapters

Each adapter formats an invitation for one delivery channel and hands it to an
injected transport. Adapters never raise for delivery problems: the outcome is
always a ChannelSendResult.
"""

import hashlib
import secrets
from dataclasses import dataclass
from typing import Optional
from urllib.parse import urlencode
from services.email_service import EmailService, EmailMessage
from services.enums import NotificationChannel
from utils.datetime_utils import utc_now
from logging_config import get_logger

logger = get_logger(__name__)


@dataclass
class ChannelSendResult:
    success: bool
    channel_message_id: Optional[str] = None
    error: Optional[str] = None
    activation_token: Optional[str] = None


@dataclass
class InvitationTemplate:
    """Everything a channel needs to build an invitation message"""
    member_id: str
    member_name: str
    temporary_password: Optional[str] = None


def hash_activation_token(token: str) -> str:
    return hashlib.sha256(token.encode('utf-8')).hexdigest()


class SMSChannel:
    channel = NotificationChannel.SMS

    def __init__(self, transport, cooperative_name: str, cooperative_phone: str, ttl_hours: int = 24):
        """
        Args:
            transport: Object with send_sms(to_number, body) -> (data, error)
        """
        self.transport = transport
        self.cooperative_name = cooperative_name
        self.cooperative_phone = cooperative_phone
        self.ttl_hours = ttl_hours

    def format_message(self, template: InvitationTemplate) -> str:
        return (
            f"Hello {template.member_name},\n\n"
            f"Welcome to {self.cooperative_name}! Your account has been created.\n\n"
            f"Temporary Password: {template.temporary_password}\n"
            f"This password expires in {self.ttl_hours} hours.\n\n"
            "To log in and vote:\n"
            "1. Visit the voting portal\n"
            "2. Enter your Member ID and temporary password\n"
            "3. Set a permanent password from your profile\n\n"
            f"For assistance, contact: {self.cooperative_phone}\n\n"
            "Thank you!"
        )

    def send(self, target: str, template: InvitationTemplate) -> ChannelSendResult:
        if not template.temporary_password:
            return ChannelSendResult(success=False, error="No temporary password to deliver")
        try:
            data, error = self.transport.send_sms(target, self.format_message(template))
        except Exception as e:
            # Transports are third-party code; any escape is a failed delivery
            logger.error("SMS transport raised", member_id=template.member_id, error=str(e))
            return ChannelSendResult(success=False, error=str(e))

        if error:
            return ChannelSendResult(success=False, error=error)
        message_id = None
        if isinstance(data, dict):
            message_id = (data.get('data') or {}).get('id') or data.get('id')
        return ChannelSendResult(success=True, channel_message_id=message_id)


class EmailChannel:
    channel = NotificationChannel.EMAIL

    def __init__(self, email_service: EmailService, frontend_url: str, cooperative_name: str,
                 cooperative_phone: str, ttl_hours: int = 24):
        self.email_service = email_service
        self.frontend_url = frontend_url.rstrip('/')
        self.cooperative_name = cooperative_name
        self.cooperative_phone = cooperative_phone
        self.ttl_hours = ttl_hours

    def generate_token(self, member_id) -> str:
        """Token bound to the member, the issue time in ms, and 128 bits of entropy"""
        issued_ms = int(utc_now().timestamp() * 1000)
        return f"{member_id}_{issued_ms}_{secrets.token_urlsafe(16)}"

    def activation_link(self, token: str) -> str:
        return f"{self.frontend_url}/activate?{urlencode({'token': token})}"

    def subject(self) -> str:
        return f"{self.cooperative_name} - Activate Your Account"

    def format_text(self, template: InvitationTemplate, link: str) -> str:
        return (
            f"Hello {template.member_name},\n\n"
            f"Welcome to {self.cooperative_name}! Your account has been created.\n\n"
            "To activate your account and set your password, please open the link below:\n"
            f"{link}\n\n"
            f"This link will expire in {self.ttl_hours} hours.\n\n"
            "Instructions:\n"
            "1. Open the activation link above\n"
            "2. Set a permanent password (minimum 8 characters with uppercase, lowercase and a number)\n"
            "3. Log in to the voting portal\n\n"
            "If you did not receive an SMS with a temporary password, you can use this link to "
            "activate your account.\n\n"
            f"For assistance, contact: {self.cooperative_phone}\n\n"
            "Thank you!"
        )

    def format_html(self, template: InvitationTemplate, link: str) -> str:
        return f"""
        <h2>{self.cooperative_name}</h2>
        <p>Hello {template.member_name},</p>
        <p>Welcome to {self.cooperative_name}! Your account has been created.</p>
        <p>To activate your account and set your password, click the button below:</p>
        <p><a href="{link}" style="background-color: #3498db; color: white; padding: 12px 30px; text-decoration: none; border-radius: 5px; display: inline-block;">Activate Your Account</a></p>
        <p><strong>This link will expire in {self.ttl_hours} hours.</strong></p>
        <p>If you did not receive an SMS with a temporary password, you can use this link to activate your account.</p>
        <p>If the button doesn't work, paste this link into your browser:<br><a href="{link}">{link}</a></p>
        <p>For assistance, contact: {self.cooperative_phone}</p>
        """

    def send(self, target: str, template: InvitationTemplate) -> ChannelSendResult:
        token = self.generate_token(template.member_id)
        link = self.activation_link(token)
        message = EmailMessage(
            subject=self.subject(),
            recipients=[target],
            body_text=self.format_text(template, link),
            body_html=self.format_html(template, link),
        )
        try:
            sent, detail = self.email_service.send_email(message)
        except Exception as e:
            logger.error("Email transport raised", member_id=template.member_id, error=str(e))
            return ChannelSendResult(success=False, error=str(e))

        if not sent:
            return ChannelSendResult(success=False, error=detail)
        return ChannelSendResult(
            success=True,
            channel_message_id=f"email-{secrets.token_hex(8)}",
            activation_token=token,
        )
