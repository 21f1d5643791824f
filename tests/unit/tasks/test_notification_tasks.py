"""
Tests for the invitation maintenance Celery tasks and the beat schedule
"""

from datetime import timedelta
from unittest.mock import patch

import pytest
from celery.exceptions import Retry
from celery.schedules import crontab
from sqlalchemy.exc import OperationalError

from services.enums import ActivationStatus
from tests.fixtures.delivery import undelivered
from utils.datetime_utils import utc_now


class TestRetryFailedNotificationsTask:

    def test_sweeps_members_due_for_retry(self, app, member_factory, sms_channel):
        from tasks.notification_tasks import retry_failed_notifications_task
        member_factory('M1', status=ActivationStatus.SMS_FAILED)
        member_factory('M2', status=ActivationStatus.SMS_FAILED, sms_retry_count=3)
        member_factory('M3')

        result = retry_failed_notifications_task.run(channel='sms')

        assert result == {'status': 'success', 'channel': 'sms', 'total': 1, 'successful': 1,
                          'failed': 0, 'skipped': 0}
        sms_channel.send.assert_called_once()

    def test_explicit_member_ids(self, app, member_factory, email_channel):
        from tasks.notification_tasks import retry_failed_notifications_task
        member_factory('M1', status=ActivationStatus.EMAIL_FAILED)
        email_channel.send.return_value = undelivered()

        result = retry_failed_notifications_task.run(channel='email', member_ids=['M1', 'NOPE'])

        assert (result['total'], result['failed'], result['skipped']) == (2, 1, 1)

    def test_nothing_to_retry(self, app, sms_channel):
        from tasks.notification_tasks import retry_failed_notifications_task

        result = retry_failed_notifications_task.run(channel='sms')

        assert result['total'] == 0
        sms_channel.send.assert_not_called()

    def test_invalid_channel_is_reported(self, app):
        from tasks.notification_tasks import retry_failed_notifications_task

        result = retry_failed_notifications_task.run(channel='fax', member_ids=['M1'])

        assert result['status'] == 'error'
        assert result['error_code'] == 'INVALID_DELIVERY_METHOD'

    def test_database_error_schedules_a_task_retry(self, app, services):
        from tasks.notification_tasks import retry_failed_notifications_task
        error = OperationalError('SELECT', {}, Exception('database is locked'))
        retry_service = services.get('notification_retry')

        with patch.object(retry_service, 'find_members_due_for_retry', side_effect=error), \
                patch.object(retry_failed_notifications_task, 'retry', side_effect=Retry()) as task_retry:
            with pytest.raises(Retry):
                retry_failed_notifications_task.run(channel='sms')

        task_retry.assert_called_once_with(exc=error, countdown=60)


class TestExpireTemporaryPasswordsTask:

    def test_expires_lapsed_credentials(self, app, member_factory):
        from tasks.notification_tasks import expire_temporary_passwords_task
        member = member_factory('M1', temporary_password_expires=utc_now() - timedelta(hours=1))

        result = expire_temporary_passwords_task.run()

        assert result == {'status': 'success', 'expired': 1, 'member_ids': ['M1']}
        assert member.activation_status == ActivationStatus.TOKEN_EXPIRED.value


def test_beat_schedule(app):
    from celery_worker import celery

    schedule = celery.conf.beat_schedule
    assert schedule['retry-failed-sms-invitations']['kwargs'] == {'channel': 'sms'}
    assert schedule['retry-failed-email-invitations']['kwargs'] == {'channel': 'email'}
    assert schedule['retry-failed-sms-invitations']['task'] == \
        'tasks.notification_tasks.retry_failed_notifications_task'
    assert schedule['expire-temporary-passwords']['schedule'] == crontab(minute=5)
