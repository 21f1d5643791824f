"""
Service layer enums
These enums mirror the string values stored on the models so services can
reason about state without importing database models
"""

from enum import Enum
from typing import Dict, FrozenSet, Union


class UserRole(str, Enum):
    """Account roles"""
    ADMIN = 'admin'
    OFFICER = 'officer'
    MEMBER = 'member'


class NotificationChannel(str, Enum):
    """Invitation delivery channels, also used as the activation method"""
    SMS = 'sms'
    EMAIL = 'email'

    @classmethod
    def parse(cls, value: Union[str, 'NotificationChannel', None]) -> 'NotificationChannel':
        """Parse a channel name, raising ValueError for anything unknown"""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise ValueError(f'Invalid delivery method "{value}". Must be "sms" or "email"') from None


class ImportStatus(str, Enum):
    """Lifecycle of an ImportOperation record"""
    PENDING = 'pending'
    COMPLETED = 'completed'
    FAILED = 'failed'


class InvalidStatusTransition(Exception):
    """Raised when an activation status change is not in the transition table"""

    def __init__(self, current: 'ActivationStatus', requested: 'ActivationStatus'):
        super().__init__(
            f'Cannot change activation status from "{current.value}" to "{requested.value}"'
        )
        self.current = current
        self.requested = requested


class ActivationStatus(str, Enum):
    """Where a member is in the account activation lifecycle"""
    PENDING_ACTIVATION = 'pending_activation'
    ACTIVATED = 'activated'
    SMS_FAILED = 'sms_failed'
    EMAIL_FAILED = 'email_failed'
    TOKEN_EXPIRED = 'token_expired'

    @classmethod
    def failed_for(cls, channel: NotificationChannel) -> 'ActivationStatus':
        """The failure state for a delivery channel"""
        return cls.SMS_FAILED if NotificationChannel(channel) == NotificationChannel.SMS else cls.EMAIL_FAILED

    @property
    def is_notification_failure(self) -> bool:
        return self in (ActivationStatus.SMS_FAILED, ActivationStatus.EMAIL_FAILED)

    def can_transition_to(self, target: 'ActivationStatus') -> bool:
        """Staying in the same state is always allowed"""
        target = ActivationStatus(target)
        return target == self or target in ALLOWED_TRANSITIONS[self]

    def validate_transition(self, target: 'ActivationStatus') -> 'ActivationStatus':
        target = ActivationStatus(target)
        if not self.can_transition_to(target):
            raise InvalidStatusTransition(self, target)
        return target


# activated is terminal. A failed channel never blocks activation through the other one.
ALLOWED_TRANSITIONS: Dict[ActivationStatus, FrozenSet[ActivationStatus]] = {
    ActivationStatus.PENDING_ACTIVATION: frozenset({
        ActivationStatus.ACTIVATED,
        ActivationStatus.SMS_FAILED,
        ActivationStatus.EMAIL_FAILED,
        ActivationStatus.TOKEN_EXPIRED,
    }),
    ActivationStatus.SMS_FAILED: frozenset({
        ActivationStatus.PENDING_ACTIVATION,
        ActivationStatus.ACTIVATED,
        ActivationStatus.EMAIL_FAILED,
        ActivationStatus.TOKEN_EXPIRED,
    }),
    ActivationStatus.EMAIL_FAILED: frozenset({
        ActivationStatus.PENDING_ACTIVATION,
        ActivationStatus.ACTIVATED,
        ActivationStatus.SMS_FAILED,
        ActivationStatus.TOKEN_EXPIRED,
    }),
    ActivationStatus.TOKEN_EXPIRED: frozenset({
        ActivationStatus.PENDING_ACTIVATION,
    }),
    ActivationStatus.ACTIVATED: frozenset(),
}


class ActivityAction(str, Enum):
    """Action tags written to the audit log"""
    BULK_IMPORT = 'BULK_IMPORT'
    SMS_SENT = 'SMS_SENT'
    SMS_FAILED = 'SMS_FAILED'
    EMAIL_SENT = 'EMAIL_SENT'
    EMAIL_FAILED = 'EMAIL_FAILED'
    SMS_RETRY_SUCCESS = 'SMS_RETRY_SUCCESS'
    SMS_RETRY_FAILED = 'SMS_RETRY_FAILED'
    EMAIL_RETRY_SUCCESS = 'EMAIL_RETRY_SUCCESS'
    EMAIL_RETRY_FAILED = 'EMAIL_RETRY_FAILED'
    RESEND_INVITATION = 'RESEND_INVITATION'
    BULK_RESEND_INVITATIONS = 'BULK_RESEND_INVITATIONS'
    BULK_RETRY_NOTIFICATIONS = 'BULK_RETRY_NOTIFICATIONS'
    IMPORT_RETRY = 'IMPORT_RETRY'
    IMPORT_ERROR = 'IMPORT_ERROR'
    PASSWORD_CHANGE = 'PASSWORD_CHANGE'
    TOKEN_EXPIRED = 'TOKEN_EXPIRED'

    @classmethod
    def sent(cls, channel: NotificationChannel) -> 'ActivityAction':
        return cls.SMS_SENT if NotificationChannel(channel) == NotificationChannel.SMS else cls.EMAIL_SENT

    @classmethod
    def failed(cls, channel: NotificationChannel) -> 'ActivityAction':
        return cls.SMS_FAILED if NotificationChannel(channel) == NotificationChannel.SMS else cls.EMAIL_FAILED

    @classmethod
    def retry_success(cls, channel: NotificationChannel) -> 'ActivityAction':
        if NotificationChannel(channel) == NotificationChannel.SMS:
            return cls.SMS_RETRY_SUCCESS
        return cls.EMAIL_RETRY_SUCCESS

    @classmethod
    def retry_failed(cls, channel: NotificationChannel) -> 'ActivityAction':
        if NotificationChannel(channel) == NotificationChannel.SMS:
            return cls.SMS_RETRY_FAILED
        return cls.EMAIL_RETRY_FAILED
