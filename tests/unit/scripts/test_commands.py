"""
Tests for the operator CLI commands
"""

from datetime import timedelta

import pytest

from coop_database import User
from scripts.commands import create_admin, expire_credentials, retry_notifications
from services.enums import ActivationStatus, UserRole
from utils.datetime_utils import utc_now


@pytest.fixture
def runner(app):
    return app.test_cli_runner()


class TestCreateAdmin:

    ARGS = ['--username', 'root', '--full-name', 'Coop Admin', '--email', 'Root@Coop.test',
            '--password', 'AdminPass1']

    def test_creates_admin(self, runner, db_session, password_service):
        result = runner.invoke(create_admin, self.ARGS)

        assert 'Admin user created successfully: root' in result.output
        admin = db_session.query(User).filter_by(username='root').one()
        assert admin.role == UserRole.ADMIN.value
        assert admin.email == 'root@coop.test'
        assert admin.activation_status == ActivationStatus.ACTIVATED.value
        assert password_service.verify('AdminPass1', admin.password_hash)

    def test_only_one_admin(self, runner, admin_user, db_session):
        result = runner.invoke(create_admin, self.ARGS)

        assert 'An admin user already exists.' in result.output
        assert db_session.query(User).filter_by(username='root').count() == 0

    def test_weak_password(self, runner, db_session):
        args = self.ARGS[:-1] + ['weak']

        result = runner.invoke(create_admin, args)

        assert 'Password needs' in result.output
        assert db_session.query(User).count() == 0


def test_expire_credentials(runner, member_factory):
    member_factory('M1', temporary_password_expires=utc_now() - timedelta(hours=1))

    result = runner.invoke(expire_credentials)

    assert 'Expired 1 temporary password(s)' in result.output


def test_retry_notifications(runner, member_factory):
    member_factory('M1', status=ActivationStatus.SMS_FAILED)

    result = runner.invoke(retry_notifications, ['--channel', 'sms'])

    assert '1 successful, 0 failed, 0 skipped of 1' in result.output


def test_retry_notifications_with_nothing_due(runner):
    result = runner.invoke(retry_notifications, ['--channel', 'email'])

    assert 'No failed email notifications to retry' in result.output
