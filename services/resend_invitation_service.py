"""
ResendInvitationService - reissue credentials to imported members still pending activation
"""

from typing import List, Optional, Dict, Any
from repositories.user_repository import UserRepository
from services.audit_log_service import AuditLogService
from services.common.result import Result
from services.enums import ActivationStatus, ActivityAction, NotificationChannel
from services.import_error_service import ErrorCode, format_error
from services.notification_service import NotificationService
from services.temporary_password_service import TemporaryPasswordService
from utils.datetime_utils import format_utc_iso
from logging_config import get_logger

logger = get_logger(__name__)


class ResendInvitationService:
    """
    Resend regenerates the temporary password before dispatch and keeps the
    new hash even when delivery fails, so an old credential never outlives a
    resend.
    """

    def __init__(self,
                 user_repository: UserRepository,
                 audit_log: AuditLogService,
                 password_service: TemporaryPasswordService,
                 notification_service: NotificationService):
        self.user_repository = user_repository
        self.audit_log = audit_log
        self.password_service = password_service
        self.notification_service = notification_service

    @property
    def session(self):
        return self.user_repository.session

    def resend(self, member_id: str, actor_id: Optional[int], channel='sms') -> Result[Dict[str, Any]]:
        """
        Returns:
            Result with {success, member_id, channel, expires_at}. Failures
            raised before dispatch carry metadata['precondition'] = True.
        """
        try:
            channel = NotificationChannel.parse(channel)
        except ValueError:
            return self._ineligible(ErrorCode.INVALID_DELIVERY_METHOD, {'channel': channel})

        member = self.user_repository.find_by_member_id(member_id)
        if member is None:
            return self._ineligible(ErrorCode.MEMBER_NOT_FOUND, {'member_id': member_id})
        if not member.is_imported:
            return self._ineligible(ErrorCode.NOT_IMPORTED_MEMBER, {'member_id': member.member_id})
        if member.status != ActivationStatus.PENDING_ACTIVATION:
            return self._ineligible(ErrorCode.INVALID_ACTIVATION_STATUS, {
                'member_id': member.member_id,
                'status': member.activation_status,
                'expected_status': ActivationStatus.PENDING_ACTIVATION.value,
            })
        if channel == NotificationChannel.SMS and not member.phone_number:
            return self._ineligible(ErrorCode.NO_PHONE_NUMBER, {'member_id': member.member_id})
        if channel == NotificationChannel.EMAIL and not member.has_real_email:
            return self._ineligible(ErrorCode.NO_EMAIL_ADDRESS, {'member_id': member.member_id})

        temporary_password = self.password_service.generate()
        expires_at = self.password_service.new_expiry()
        self.user_repository.update(
            member,
            temporary_password_hash=self.password_service.hash(temporary_password),
            temporary_password_expires=expires_at,
            activation_token_hash=None,
            sms_sent_at=None,
            email_sent_at=None,
        )
        self.session.commit()

        sent = self.notification_service.send_and_log(
            channel, member.member_id, actor_id, temporary_password=temporary_password
        )
        if sent.is_failure:
            self.session.commit()
            logger.warning("Resend dispatch failed", member_id=member.member_id, channel=channel.value,
                           code=sent.error_code)
            return Result.failure(sent.error, code=sent.error_code, metadata={
                'member_id': member.member_id,
                'channel': channel.value,
                'precondition': False,
                'expires_at': format_utc_iso(expires_at),
            })

        self.audit_log.record(
            actor_id,
            ActivityAction.RESEND_INVITATION,
            f'Resent {channel.value.upper()} invitation to member {member.member_id}',
            {'member_id': member.member_id, 'delivery_method': channel.value,
             'import_id': member.import_id, 'expires_at': format_utc_iso(expires_at)},
        )
        self.session.commit()
        logger.info("Invitation resent", member_id=member.member_id, channel=channel.value)
        return Result.success({
            'success': True,
            'member_id': member.member_id,
            'channel': channel.value,
            'expires_at': format_utc_iso(expires_at),
            'message': f'Invitation resent via {channel.value.upper()}',
        })

    def bulk_resend(self, member_ids: List[str], actor_id: Optional[int], channel='sms') -> Result[Dict[str, Any]]:
        """Sequential resend. Ineligible members are skipped, dispatch failures are failed."""
        try:
            channel = NotificationChannel.parse(channel)
        except ValueError:
            return Result.from_error(format_error(ErrorCode.INVALID_DELIVERY_METHOD, {'channel': channel}))

        summary = {'total': len(member_ids), 'successful': 0, 'failed': 0, 'skipped': 0, 'details': []}
        for member_id in member_ids:
            try:
                result = self.resend(member_id, actor_id, channel)
            except Exception as e:
                logger.exception("Unexpected error during bulk resend", member_id=member_id)
                self.session.rollback()
                summary['failed'] += 1
                summary['details'].append({'member_id': member_id, 'success': False,
                                           'message': f'Unexpected error: {e}'})
                continue

            if result.is_success:
                summary['successful'] += 1
                summary['details'].append(result.data)
            elif result.meta('precondition'):
                summary['skipped'] += 1
                summary['details'].append({'member_id': member_id, 'success': False, 'skipped': True,
                                           'message': result.error, 'code': result.error_code})
            else:
                summary['failed'] += 1
                summary['details'].append({'member_id': member_id, 'success': False,
                                           'message': result.error, 'code': result.error_code})

        self.audit_log.record(
            actor_id,
            ActivityAction.BULK_RESEND_INVITATIONS,
            f'Bulk resend of {channel.value} invitations to {summary["total"]} members. '
            f'Success: {summary["successful"]}, Failed: {summary["failed"]}, Skipped: {summary["skipped"]}',
            {'delivery_method': channel.value, 'total': summary['total'], 'successful': summary['successful'],
             'failed': summary['failed'], 'skipped': summary['skipped']},
        )
        self.session.commit()
        return Result.success(summary)

    @staticmethod
    def _ineligible(code: ErrorCode, details: Dict[str, Any]) -> Result[Dict[str, Any]]:
        return Result.from_error(format_error(code, details), {'precondition': True})
