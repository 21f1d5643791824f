"""
Integration tests for NotificationRetryService
"""

from datetime import timedelta

import pytest

from services.enums import ActivationStatus
from services.notification_channels import hash_activation_token
from tests.fixtures.delivery import undelivered, activity_actions, DEFAULT_TEMPORARY_PASSWORD
from utils.datetime_utils import utc_now


@pytest.fixture
def retry_service(services):
    return services.get('notification_retry')


class TestRetrySingleMember:

    def test_max_retries_never_calls_transport(self, retry_service, member_factory, sms_channel):
        member_factory('M1', status=ActivationStatus.SMS_FAILED, sms_retry_count=3)

        result = retry_service.retry_sms('M1', 1, is_manual_retry=True)

        assert result.error_code == 'MAX_RETRIES_EXCEEDED'
        assert result.error == 'Maximum SMS retry attempts (3) exceeded for member "M1"'
        assert result.meta('max_retries_exceeded') is True
        assert result.meta('retry_count') == 3
        sms_channel.send.assert_not_called()

    def test_automatic_retry_waits_for_backoff(self, retry_service, member_factory, sms_channel):
        member_factory('M1', status=ActivationStatus.SMS_FAILED, sms_retry_count=1,
                       sms_last_retry_at=utc_now())

        result = retry_service.retry_sms('M1', None, is_manual_retry=False)

        assert result.error_code == 'BACKOFF_ACTIVE'
        assert result.meta('backoff_active') is True
        assert 0 < result.meta('wait_time_ms') <= 2000
        sms_channel.send.assert_not_called()

    def test_automatic_retry_after_backoff_elapsed(self, retry_service, member_factory, sms_channel):
        member_factory('M1', status=ActivationStatus.SMS_FAILED, sms_retry_count=1,
                       sms_last_retry_at=utc_now() - timedelta(seconds=3))

        result = retry_service.retry_sms('M1', None)

        assert result.is_success
        sms_channel.send.assert_called_once()

    def test_manual_retry_bypasses_backoff_and_resets_state(self, retry_service, member_factory, sms_channel,
                                                            password_service, db_session):
        member = member_factory('M1', status=ActivationStatus.SMS_FAILED, sms_retry_count=2,
                                sms_last_retry_at=utc_now())

        result = retry_service.retry_sms('M1', 1, is_manual_retry=True)

        assert result.is_success
        assert result.data['retry_count'] == 0
        assert result.data['channel_message_id'] == 'sms-msg-1'
        assert member.activation_status == ActivationStatus.PENDING_ACTIVATION.value
        assert member.sms_retry_count == 0
        assert member.sms_last_retry_at is None
        assert activity_actions(db_session) == ['SMS_SENT', 'SMS_RETRY_SUCCESS']

    def test_retry_issues_a_new_credential(self, retry_service, member_factory, sms_channel, password_service):
        member = member_factory('M1', status=ActivationStatus.SMS_FAILED)

        retry_service.retry_sms('M1', 1, is_manual_retry=True)

        sent_password = sms_channel.send.call_args[0][1].temporary_password
        assert password_service.verify(sent_password, member.temporary_password_hash)
        assert not password_service.verify(DEFAULT_TEMPORARY_PASSWORD, member.temporary_password_hash)

    def test_sms_retry_revokes_previous_activation_link(self, retry_service, services, member_factory):
        member = member_factory('M1', status=ActivationStatus.SMS_FAILED,
                                activation_token_hash=hash_activation_token('M1_1_old'))

        assert retry_service.retry_sms('M1', 1, is_manual_retry=True).is_success

        assert member.activation_token_hash is None
        result = services.get('member_activation').activate_with_token('M1_1_old', 'NewPass123')
        assert result.error_code == 'INVALID_CREDENTIALS'

    def test_failed_attempt_is_counted(self, retry_service, member_factory, sms_channel, db_session):
        member = member_factory('M1', status=ActivationStatus.SMS_FAILED, sms_retry_count=1)
        sms_channel.send.return_value = undelivered('Request timeout')

        result = retry_service.retry_sms('M1', 1, is_manual_retry=True)

        assert result.is_failure
        assert result.error == 'SMS retry failed. Attempt 2 of 3'
        assert result.error_code == 'SMS_SEND_FAILED'
        assert result.meta('retry_count') == 2
        assert result.meta('next_retry_delay_ms') == 4000
        assert member.sms_retry_count == 2
        assert member.sms_last_retry_at is not None
        assert member.activation_status == ActivationStatus.SMS_FAILED.value
        assert activity_actions(db_session) == ['SMS_FAILED', 'SMS_RETRY_FAILED']

    def test_precondition_failure_is_not_an_attempt(self, retry_service, member_factory, email_channel):
        member = member_factory('M1', status=ActivationStatus.EMAIL_FAILED,
                                email='member_M1@members.invalid', has_real_email=False)

        result = retry_service.retry_email('M1', 1, is_manual_retry=True)

        assert result.error_code == 'NO_EMAIL_ADDRESS'
        assert member.email_retry_count == 0
        email_channel.send.assert_not_called()

    def test_channels_keep_separate_counters(self, retry_service, member_factory, email_channel):
        member = member_factory('M1', status=ActivationStatus.EMAIL_FAILED, sms_retry_count=3)
        email_channel.send.return_value = undelivered()

        result = retry_service.retry_email('M1', 1, is_manual_retry=True)

        assert result.meta('retry_count') == 1
        assert member.email_retry_count == 1
        assert member.sms_retry_count == 3

    def test_activated_member_is_rejected(self, retry_service, member_factory, sms_channel):
        member_factory('M1', status=ActivationStatus.ACTIVATED)

        result = retry_service.retry_sms('M1', 1, is_manual_retry=True)

        assert result.error_code == 'INVALID_ACTIVATION_STATUS'
        sms_channel.send.assert_not_called()

    def test_unknown_member_and_channel(self, retry_service):
        assert retry_service.retry_sms('NOPE', 1).error_code == 'MEMBER_NOT_FOUND'
        assert retry_service.retry('fax', 'M1', 1).error_code == 'INVALID_DELIVERY_METHOD'


class TestBatchRetry:

    def test_counts_add_up(self, retry_service, member_factory, db_session):
        member_factory('M1', status=ActivationStatus.SMS_FAILED)
        member_factory('M2', status=ActivationStatus.SMS_FAILED, sms_retry_count=1, sms_last_retry_at=utc_now())
        member_factory('M3', status=ActivationStatus.SMS_FAILED, sms_retry_count=3)

        result = retry_service.retry_failed_notifications(['M1', 'UNKNOWN', 'M2', 'M3'], 'sms', 1)

        summary = result.data
        assert summary['total'] == 4
        assert summary['successful'] == 1
        assert summary['skipped'] == 2
        assert summary['failed'] == 1
        assert [d['member_id'] for d in summary['details']] == ['M1', 'UNKNOWN', 'M2', 'M3']
        assert summary['details'][1]['skipped'] is True
        assert summary['details'][3]['code'] == 'MAX_RETRIES_EXCEEDED'
        assert activity_actions(db_session)[-1] == 'BULK_RETRY_NOTIFICATIONS'

    def test_invalid_channel(self, retry_service):
        result = retry_service.retry_failed_notifications(['M1'], 'pigeon', 1)
        assert result.error_code == 'INVALID_DELIVERY_METHOD'

    def test_find_members_due_for_retry(self, retry_service, member_factory):
        member_factory('M1', status=ActivationStatus.SMS_FAILED)
        member_factory('M2', status=ActivationStatus.SMS_FAILED, sms_retry_count=3)
        member_factory('M3', status=ActivationStatus.PENDING_ACTIVATION)
        member_factory('M4', status=ActivationStatus.EMAIL_FAILED)
        member_factory('M5', status=ActivationStatus.SMS_FAILED, imported=False)

        assert retry_service.find_members_due_for_retry('sms') == ['M1']
        assert retry_service.find_members_due_for_retry('email') == ['M4']


class TestRetryStatus:

    def test_reports_both_channels(self, retry_service, member_factory):
        member_factory('M1', status=ActivationStatus.SMS_FAILED, sms_retry_count=2, sms_last_retry_at=utc_now())

        status = retry_service.get_retry_status('M1').data

        assert status['activation_status'] == 'sms_failed'
        assert status['sms']['retry_count'] == 2
        assert status['sms']['can_retry'] is True
        assert status['sms']['next_retry_available_at'] is not None
        assert status['email']['retry_count'] == 0
        assert status['email']['next_retry_available_at'] is None

    def test_unknown_member(self, retry_service):
        assert retry_service.get_retry_status('NOPE').error_code == 'MEMBER_NOT_FOUND'
