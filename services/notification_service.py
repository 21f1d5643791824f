"""
NotificationService - dispatches invitations and records their outcome

send_and_log wraps a channel adapter: on success the member's sent timestamp,
the owning import's sent counter and the audit trail are updated; on failure
the member moves to the channel's failure state, the failure counter is bumped
and the failure is audited. Missing members and missing contact details are
reported before any transport is attempted.
"""

from typing import Optional, Dict, Any
from sqlalchemy.exc import SQLAlchemyError
from repositories.user_repository import UserRepository
from repositories.import_operation_repository import ImportOperationRepository
from services.audit_log_service import AuditLogService
from services.common.result import Result
from services.enums import NotificationChannel, ActivityAction
from services.import_error_service import ImportErrorService, ErrorCode, format_error
from services.notification_channels import ChannelSendResult, InvitationTemplate, hash_activation_token
from utils.datetime_utils import utc_now, format_utc_iso
from logging_config import get_logger

logger = get_logger(__name__)


class NotificationService:
    """Sends SMS and email invitations to imported members"""

    def __init__(self,
                 user_repository: UserRepository,
                 import_operation_repository: ImportOperationRepository,
                 audit_log: AuditLogService,
                 error_service: ImportErrorService,
                 sms_channel,
                 email_channel):
        self.user_repository = user_repository
        self.import_operation_repository = import_operation_repository
        self.audit_log = audit_log
        self.error_service = error_service
        self.channels = {
            NotificationChannel.SMS: sms_channel,
            NotificationChannel.EMAIL: email_channel,
        }

    def send_sms_and_log(self, member_id: str, actor_id: Optional[int], temporary_password: str,
                         counter_import_id: Optional[int] = None) -> Result[Dict[str, Any]]:
        return self.send_and_log(NotificationChannel.SMS, member_id, actor_id,
                                 temporary_password=temporary_password, counter_import_id=counter_import_id)

    def send_email_and_log(self, member_id: str, actor_id: Optional[int],
                           temporary_password: Optional[str] = None,
                           counter_import_id: Optional[int] = None) -> Result[Dict[str, Any]]:
        return self.send_and_log(NotificationChannel.EMAIL, member_id, actor_id,
                                 temporary_password=temporary_password, counter_import_id=counter_import_id)

    def send_and_log(self,
                     channel: NotificationChannel,
                     member_id: str,
                     actor_id: Optional[int],
                     temporary_password: Optional[str] = None,
                     counter_import_id: Optional[int] = None) -> Result[Dict[str, Any]]:
        """
        Send one invitation and record the outcome.

        Args:
            channel: sms or email
            member_id: External cooperative member id
            actor_id: Admin performing the action (None for scheduled work)
            temporary_password: Plaintext credential, required for SMS
            counter_import_id: Import whose sent/failed counters are updated,
                defaults to the import that created the member

        Returns:
            Result with {success, message, timestamp, channel, member_id,
            channel_message_id}. Failures carry metadata['transport_attempted'].
        """
        channel = NotificationChannel(channel)
        member = self.user_repository.find_by_member_id(member_id)
        if member is None:
            return self._precondition_failure(ErrorCode.MEMBER_NOT_FOUND, member_id, channel)

        target = self._contact_for(member, channel)
        if not target:
            code = ErrorCode.NO_PHONE_NUMBER if channel == NotificationChannel.SMS else ErrorCode.NO_EMAIL_ADDRESS
            return self._precondition_failure(code, member.member_id, channel)

        template = InvitationTemplate(
            member_id=member.member_id,
            member_name=member.full_name,
            temporary_password=temporary_password,
        )
        outcome: ChannelSendResult = self.channels[channel].send(target, template)
        sent_at = utc_now()
        import_id = counter_import_id if counter_import_id is not None else member.import_id

        if outcome.success:
            self._record_success(member, channel, outcome, sent_at)
            self._bump_counter(import_id, f'{channel.value}_sent_count')
            self.audit_log.record(
                actor_id,
                ActivityAction.sent(channel),
                f'{channel.value.upper()} invitation sent to member {member.member_id}',
                {'member_id': member.member_id, 'channel_message_id': outcome.channel_message_id,
                 'import_id': import_id},
            )
            logger.info("Invitation sent", channel=channel.value, member_id=member.member_id,
                        phone_last4=member.phone_number[-4:] if member.phone_number else None)
            return Result.success({
                'success': True,
                'message': f'{channel.value.upper()} sent successfully',
                'timestamp': format_utc_iso(sent_at),
                'channel': channel.value,
                'member_id': member.member_id,
                'channel_message_id': outcome.channel_message_id,
            })

        formatted = self.error_service.handle_notification_error(outcome.error, channel, member.member_id)
        self.audit_log.record(
            actor_id,
            ActivityAction.failed(channel),
            formatted['message'],
            {'member_id': member.member_id, 'error': outcome.error, 'import_id': import_id},
        )
        self.error_service.mark_member_notification_failed(member, channel)
        self._bump_counter(import_id, f'{channel.value}_failed_count')
        logger.warning("Invitation failed", channel=channel.value, member_id=member.member_id, error=outcome.error)
        return Result.from_error(formatted, {
            'transport_attempted': True,
            'timestamp': format_utc_iso(sent_at),
        })

    def _contact_for(self, member, channel: NotificationChannel) -> Optional[str]:
        if channel == NotificationChannel.SMS:
            return member.phone_number or None
        # Placeholder addresses cannot receive mail
        return member.email if member.has_real_email and member.email else None

    def _precondition_failure(self, code: ErrorCode, member_id: str,
                              channel: NotificationChannel) -> Result[Dict[str, Any]]:
        formatted = format_error(code, {'member_id': member_id, 'channel': channel.value})
        return Result.from_error(formatted, {'transport_attempted': False})

    def _record_success(self, member, channel: NotificationChannel, outcome: ChannelSendResult, sent_at) -> None:
        session = self.user_repository.session
        try:
            with session.begin_nested():
                setattr(member, f'{channel.value}_sent_at', sent_at)
                if outcome.activation_token:
                    member.activation_token_hash = hash_activation_token(outcome.activation_token)
        except SQLAlchemyError as e:
            logger.warning("Could not stamp sent time", member_id=member.member_id, error=str(e))

    def _bump_counter(self, import_id: Optional[int], counter: str) -> None:
        if import_id is None:
            return
        session = self.import_operation_repository.session
        try:
            with session.begin_nested():
                self.import_operation_repository.increment_counters(import_id, **{counter: 1})
        except SQLAlchemyError as e:
            logger.warning("Import counter not updated", import_id=import_id, counter=counter, error=str(e))
