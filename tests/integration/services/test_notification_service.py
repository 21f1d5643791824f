"""
Integration tests for NotificationService.send_and_log
"""

import pytest

from coop_database import ImportOperation
from services.enums import ActivationStatus, NotificationChannel
from services.notification_channels import hash_activation_token
from tests.fixtures.delivery import undelivered, activity_actions


@pytest.fixture
def notification(services):
    return services.get('notification')


class TestSendSms:

    def test_success_stamps_member_and_counts(self, notification, member_factory, sms_channel, db_session,
                                              import_operation):
        member = member_factory('M1')

        result = notification.send_sms_and_log('M1', 7, 'Temp#Pass1')
        db_session.commit()

        assert result.is_success
        assert result.data['success'] is True
        assert result.data['channel'] == 'sms'
        assert result.data['member_id'] == 'M1'
        assert result.data['channel_message_id'] == 'sms-msg-1'
        assert result.data['timestamp'].endswith('+00:00')

        target, template = sms_channel.send.call_args[0]
        assert target == member.phone_number
        assert template.member_name == member.full_name
        assert template.temporary_password == 'Temp#Pass1'

        assert member.sms_sent_at is not None
        assert db_session.get(ImportOperation, import_operation.id).sms_sent_count == 1
        assert activity_actions(db_session) == ['SMS_SENT']

    def test_transport_failure_marks_member_failed(self, notification, member_factory, sms_channel, db_session,
                                                   import_operation):
        member = member_factory('M1')
        sms_channel.send.return_value = undelivered('Request timeout')

        result = notification.send_sms_and_log('M1', 7, 'Temp#Pass1')
        db_session.commit()

        assert result.is_failure
        assert result.error_code == 'SMS_SEND_FAILED'
        assert result.error == 'Failed to send SMS to member "M1": Request timeout'
        assert result.meta('transport_attempted') is True
        assert member.activation_status == ActivationStatus.SMS_FAILED.value
        assert member.sms_sent_at is None
        assert db_session.get(ImportOperation, import_operation.id).sms_failed_count == 1
        assert activity_actions(db_session) == ['SMS_FAILED']

    def test_failure_never_moves_an_activated_member(self, notification, member_factory, sms_channel, db_session):
        member = member_factory('M1', status=ActivationStatus.ACTIVATED)
        sms_channel.send.return_value = undelivered()

        notification.send_sms_and_log('M1', 7, 'Temp#Pass1')
        db_session.commit()

        assert member.activation_status == ActivationStatus.ACTIVATED.value

    def test_unknown_member_is_not_attempted(self, notification, sms_channel, db_session):
        result = notification.send_sms_and_log('NOPE', 7, 'Temp#Pass1')

        assert result.error_code == 'MEMBER_NOT_FOUND'
        assert result.meta('transport_attempted') is False
        sms_channel.send.assert_not_called()
        assert activity_actions(db_session) == []

    def test_member_without_phone_is_not_attempted(self, notification, member_factory, sms_channel):
        member_factory('M1', phone_number=None)

        result = notification.send_sms_and_log('M1', 7, 'Temp#Pass1')

        assert result.error_code == 'NO_PHONE_NUMBER'
        assert result.meta('transport_attempted') is False
        sms_channel.send.assert_not_called()

    def test_counter_import_override(self, notification, member_factory, db_session, import_operation):
        member_factory('M1')
        other = ImportOperation(csv_file_name='members.csv (Retry)', total_rows=1, status='pending')
        db_session.add(other)
        db_session.commit()

        notification.send_sms_and_log('M1', 7, 'Temp#Pass1', counter_import_id=other.id)
        db_session.commit()

        assert db_session.get(ImportOperation, other.id).sms_sent_count == 1
        assert db_session.get(ImportOperation, import_operation.id).sms_sent_count == 0


class TestSendEmail:

    def test_success_stores_activation_token_hash(self, notification, member_factory, email_channel,
                                                  db_session):
        member = member_factory('M1')

        result = notification.send_email_and_log('M1', 7)
        db_session.commit()

        assert result.is_success
        assert result.data['channel'] == 'email'
        assert email_channel.send.call_args[0][0] == member.email
        assert member.email_sent_at is not None
        assert member.activation_token_hash == hash_activation_token('activation-token-123')
        assert activity_actions(db_session) == ['EMAIL_SENT']

    def test_placeholder_address_is_not_attempted(self, notification, member_factory, email_channel):
        member_factory('M1', email='member_M1@members.invalid', has_real_email=False)

        result = notification.send_and_log(NotificationChannel.EMAIL, 'M1', 7)

        assert result.error_code == 'NO_EMAIL_ADDRESS'
        assert result.meta('transport_attempted') is False
        email_channel.send.assert_not_called()

    def test_email_failure_moves_to_email_failed(self, notification, member_factory, email_channel, db_session):
        member = member_factory('M1')
        email_channel.send.return_value = undelivered('smtp down')

        result = notification.send_email_and_log('M1', 7)
        db_session.commit()

        assert result.error_code == 'EMAIL_SEND_FAILED'
        assert member.activation_status == ActivationStatus.EMAIL_FAILED.value
        assert member.activation_token_hash is None
