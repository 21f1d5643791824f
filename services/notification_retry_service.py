"""
NotificationRetryService - retries failed invitations with exponential backoff

Retry counters are kept per channel on the member. A channel gets at most
max_retries failed retry attempts; between automatic attempts the engine
waits min(initial * multiplier^n, max) milliseconds, n being the number of
failed attempts so far. Manual retries skip the wait but not the ceiling.
"""

import math
import time
from dataclasses import dataclass
from datetime import timedelta
from typing import List, Optional, Dict, Any, Callable
from sqlalchemy.exc import SQLAlchemyError
from repositories.user_repository import UserRepository
from services.audit_log_service import AuditLogService
from services.common.result import Result
from services.enums import ActivationStatus, ActivityAction, NotificationChannel
from services.import_error_service import ImportErrorService, ErrorCode, format_error
from services.notification_service import NotificationService
from services.temporary_password_service import TemporaryPasswordService
from utils.datetime_utils import utc_now, ensure_utc, milliseconds_since, format_utc_iso
from logging_config import get_logger

logger = get_logger(__name__)


@dataclass
class RetryPolicy:
    max_retries: int = 3
    initial_delay_ms: int = 1000
    max_delay_ms: int = 60000
    backoff_multiplier: int = 2

    @classmethod
    def from_config(cls, app_config) -> 'RetryPolicy':
        return cls(
            max_retries=app_config.get('NOTIFICATION_MAX_RETRIES', 3),
            initial_delay_ms=app_config.get('NOTIFICATION_INITIAL_DELAY_MS', 1000),
            max_delay_ms=app_config.get('NOTIFICATION_MAX_DELAY_MS', 60000),
            backoff_multiplier=app_config.get('NOTIFICATION_BACKOFF_MULTIPLIER', 2),
        )

    def backoff_delay(self, retry_count: int) -> int:
        """Delay in ms required after `retry_count` failed attempts"""
        delay = self.initial_delay_ms * (self.backoff_multiplier ** max(retry_count, 0))
        return min(delay, self.max_delay_ms)


class NotificationRetryService:
    """Single-member and batch retry of SMS and email invitations"""

    def __init__(self,
                 user_repository: UserRepository,
                 audit_log: AuditLogService,
                 error_service: ImportErrorService,
                 password_service: TemporaryPasswordService,
                 notification_service: NotificationService,
                 policy: Optional[RetryPolicy] = None,
                 bulk_delay_seconds: float = 0.1,
                 sleep: Callable[[float], None] = time.sleep):
        self.user_repository = user_repository
        self.audit_log = audit_log
        self.error_service = error_service
        self.password_service = password_service
        self.notification_service = notification_service
        self.policy = policy or RetryPolicy()
        self.bulk_delay_seconds = bulk_delay_seconds
        self._sleep = sleep

    @property
    def session(self):
        return self.user_repository.session

    def calculate_backoff_delay(self, retry_count: int) -> int:
        return self.policy.backoff_delay(retry_count)

    def retry_sms(self, member_id: str, actor_id: Optional[int], credential: Optional[str] = None,
                  is_manual_retry: bool = False, counter_import_id: Optional[int] = None) -> Result[Dict[str, Any]]:
        return self.retry(NotificationChannel.SMS, member_id, actor_id, credential,
                          is_manual_retry=is_manual_retry, counter_import_id=counter_import_id)

    def retry_email(self, member_id: str, actor_id: Optional[int], is_manual_retry: bool = False,
                    counter_import_id: Optional[int] = None) -> Result[Dict[str, Any]]:
        return self.retry(NotificationChannel.EMAIL, member_id, actor_id, None,
                          is_manual_retry=is_manual_retry, counter_import_id=counter_import_id)

    def retry(self,
              channel,
              member_id: str,
              actor_id: Optional[int],
              credential: Optional[str] = None,
              is_manual_retry: bool = False,
              counter_import_id: Optional[int] = None) -> Result[Dict[str, Any]]:
        """
        Retry one member's invitation on one channel.

        Args:
            channel: 'sms' or 'email'
            member_id: External cooperative member id
            actor_id: Admin triggering the retry, None for scheduled runs
            credential: Temporary password to send by SMS. When omitted a new
                one is generated and the stored hash and expiry replaced.
            is_manual_retry: Skip the backoff wait
            counter_import_id: Import whose sent/failed counters are updated

        Returns:
            Result with {success, message, member_id, channel, retry_count}.
            Failures carry retry_count plus one of max_retries_exceeded,
            backoff_active (with wait_time_ms) or next_retry_delay_ms.
        """
        try:
            channel = NotificationChannel.parse(channel)
        except ValueError:
            return Result.from_error(format_error(ErrorCode.INVALID_DELIVERY_METHOD, {'channel': channel}))

        member = self.user_repository.find_by_member_id(member_id)
        if member is None:
            return Result.from_error(format_error(ErrorCode.MEMBER_NOT_FOUND, {'member_id': member_id}))

        if member.status == ActivationStatus.ACTIVATED:
            return Result.from_error(format_error(ErrorCode.INVALID_ACTIVATION_STATUS, {
                'member_id': member.member_id,
                'status': member.activation_status,
                'expected_status': ActivationStatus.failed_for(channel).value,
            }))

        retry_count = getattr(member, f'{channel.value}_retry_count') or 0
        if retry_count >= self.policy.max_retries:
            formatted = format_error(ErrorCode.MAX_RETRIES_EXCEEDED, {
                'member_id': member.member_id,
                'channel': channel.value.upper(),
                'max_retries': self.policy.max_retries,
            })
            return Result.from_error(formatted, {'retry_count': retry_count, 'max_retries_exceeded': True})

        last_retry_at = getattr(member, f'{channel.value}_last_retry_at')
        if not is_manual_retry and last_retry_at is not None:
            required_ms = self.calculate_backoff_delay(retry_count)
            elapsed_ms = milliseconds_since(last_retry_at)
            if elapsed_ms < required_ms:
                wait_ms = required_ms - elapsed_ms
                formatted = format_error(ErrorCode.BACKOFF_ACTIVE, {
                    'member_id': member.member_id,
                    'channel': channel.value.upper(),
                    'wait_seconds': math.ceil(wait_ms / 1000),
                })
                return Result.from_error(formatted, {
                    'retry_count': retry_count,
                    'backoff_active': True,
                    'wait_time_ms': wait_ms,
                })

        if channel == NotificationChannel.SMS and credential is None:
            credential = self._regenerate_credential(member)

        sent = self.notification_service.send_and_log(
            channel, member.member_id, actor_id,
            temporary_password=credential, counter_import_id=counter_import_id
        )

        if sent.is_success:
            return self._on_success(member, channel, actor_id, retry_count, is_manual_retry, sent)

        if not sent.meta('transport_attempted', False):
            # Nothing was sent, so this is not a retry attempt
            self.session.commit()
            return sent

        return self._on_failure(member, channel, actor_id, is_manual_retry, sent)

    def retry_failed_notifications(self,
                                   member_ids: List[str],
                                   channel,
                                   actor_id: Optional[int]) -> Result[Dict[str, Any]]:
        """
        Automatic retry across a list of member ids, in the order given.

        Unknown ids and backoff-blocked members are skipped; the three counts
        always add up to the number of ids.
        """
        try:
            channel = NotificationChannel.parse(channel)
        except ValueError:
            return Result.from_error(format_error(ErrorCode.INVALID_DELIVERY_METHOD, {'channel': channel}))

        summary = {'total': len(member_ids), 'successful': 0, 'failed': 0, 'skipped': 0, 'details': []}

        for index, member_id in enumerate(member_ids):
            if index and self.bulk_delay_seconds:
                self._sleep(self.bulk_delay_seconds)
            try:
                if self.user_repository.find_by_member_id(member_id) is None:
                    summary['skipped'] += 1
                    summary['details'].append({
                        'member_id': member_id, 'success': False, 'skipped': True,
                        'message': f'Member {member_id} not found',
                    })
                    continue

                result = self.retry(channel, member_id, actor_id, is_manual_retry=False)
                if result.is_success:
                    summary['successful'] += 1
                    summary['details'].append({'member_id': member_id, **result.data})
                elif result.meta('backoff_active'):
                    summary['skipped'] += 1
                    summary['details'].append(self._detail(member_id, result, skipped=True))
                else:
                    summary['failed'] += 1
                    summary['details'].append(self._detail(member_id, result))
            except Exception as e:
                logger.exception("Unexpected error during batch retry", member_id=member_id)
                self.session.rollback()
                summary['failed'] += 1
                summary['details'].append({
                    'member_id': member_id, 'success': False,
                    'message': f'Unexpected error: {e}', 'error': str(e),
                })

        counts = {key: summary[key] for key in ('total', 'successful', 'failed', 'skipped')}
        self.audit_log.record(
            actor_id,
            ActivityAction.BULK_RETRY_NOTIFICATIONS,
            f'Bulk {channel.value.upper()} retry: {summary["successful"]} successful, '
            f'{summary["failed"]} failed, {summary["skipped"]} skipped of {summary["total"]}',
            dict(counts, channel=channel.value),
        )
        self.session.commit()
        logger.info("Batch retry finished", channel=channel.value, **counts)
        return Result.success(summary)

    def find_members_due_for_retry(self, channel, limit: int = 100) -> List[str]:
        """Member ids in the channel's failure state that still have attempts left"""
        channel = NotificationChannel.parse(channel)
        members = self.user_repository.find_failed_notifications(channel, self.policy.max_retries, limit=limit)
        return [member.member_id for member in members]

    def get_retry_status(self, member_id: str) -> Result[Dict[str, Any]]:
        member = self.user_repository.find_by_member_id(member_id)
        if member is None:
            return Result.from_error(format_error(ErrorCode.MEMBER_NOT_FOUND, {'member_id': member_id}))

        status = {
            'member_id': member.member_id,
            'activation_status': member.activation_status,
        }
        for channel in NotificationChannel:
            count = getattr(member, f'{channel.value}_retry_count') or 0
            last = getattr(member, f'{channel.value}_last_retry_at')
            next_at = None
            if last is not None:
                next_at = ensure_utc(last) + timedelta(milliseconds=self.calculate_backoff_delay(count))
            status[channel.value] = {
                'retry_count': count,
                'last_retry_at': format_utc_iso(last),
                'sent_at': format_utc_iso(getattr(member, f'{channel.value}_sent_at')),
                'max_retries': self.policy.max_retries,
                'can_retry': count < self.policy.max_retries and member.status != ActivationStatus.ACTIVATED,
                'next_retry_available_at': format_utc_iso(next_at),
            }
        return Result.success(status)

    def _regenerate_credential(self, member) -> str:
        """New temporary password; the previous one and any emailed link stop working immediately"""
        password = self.password_service.generate()
        self.user_repository.update(
            member,
            temporary_password_hash=self.password_service.hash(password),
            temporary_password_expires=self.password_service.new_expiry(),
            activation_token_hash=None,
        )
        self.session.commit()
        return password

    def _on_success(self, member, channel: NotificationChannel, actor_id, previous_attempts: int,
                    is_manual_retry: bool, sent: Result) -> Result[Dict[str, Any]]:
        self.user_repository.reset_retry_state(member, channel)
        self.user_repository.restore_pending(member)
        self.audit_log.record(
            actor_id,
            ActivityAction.retry_success(channel),
            f'{channel.value.upper()} retry successful for member {member.member_id} '
            f'after {previous_attempts} previous attempts',
            {'member_id': member.member_id, 'retry_count': previous_attempts,
             'is_manual_retry': is_manual_retry, 'import_id': member.import_id},
        )
        self.session.commit()
        logger.info("Notification retry succeeded", channel=channel.value, member_id=member.member_id,
                    previous_attempts=previous_attempts, manual=is_manual_retry)
        return Result.success({
            'success': True,
            'message': f'{channel.value.upper()} retry successful',
            'member_id': member.member_id,
            'channel': channel.value,
            'retry_count': 0,
            'channel_message_id': sent.data.get('channel_message_id'),
        })

    def _on_failure(self, member, channel: NotificationChannel, actor_id, is_manual_retry: bool,
                    sent: Result) -> Result[Dict[str, Any]]:
        try:
            new_count = self.user_repository.record_retry_attempt(member, channel, utc_now())
        except SQLAlchemyError as e:
            logger.error("Retry attempt not recorded", member_id=member.member_id, error=str(e))
            self.session.rollback()
            new_count = getattr(member, f'{channel.value}_retry_count') or 0

        self.audit_log.record(
            actor_id,
            ActivityAction.retry_failed(channel),
            f'{channel.value.upper()} retry failed for member {member.member_id}. '
            f'Attempt {new_count} of {self.policy.max_retries}',
            {'member_id': member.member_id, 'retry_count': new_count, 'max_retries': self.policy.max_retries,
             'error': sent.error, 'is_manual_retry': is_manual_retry, 'import_id': member.import_id},
        )
        self.session.commit()

        next_delay = self.calculate_backoff_delay(new_count)
        logger.warning("Notification retry failed", channel=channel.value, member_id=member.member_id,
                       attempt=new_count, next_retry_delay_ms=next_delay)
        return Result.failure(
            f'{channel.value.upper()} retry failed. Attempt {new_count} of {self.policy.max_retries}',
            code=sent.error_code,
            metadata={
                'member_id': member.member_id,
                'retry_count': new_count,
                'error': sent.error,
                'next_retry_delay_ms': next_delay,
                'next_retry_delay_seconds': math.ceil(next_delay / 1000),
            },
        )

    @staticmethod
    def _detail(member_id: str, result: Result, skipped: bool = False) -> Dict[str, Any]:
        detail = {'member_id': member_id, 'success': False, 'message': result.error, 'code': result.error_code}
        detail.update({k: v for k, v in (result.metadata or {}).items() if k != 'member_id'})
        if skipped:
            detail['skipped'] = True
        return detail
