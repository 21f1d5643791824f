# tests/conftest.py
"""
Shared fixtures for the pytest suite.

Every test function gets its own application backed by a fresh in-memory
SQLite database. The SMS and email channels registered on the app are
Mocks, so no message leaves the process; tests flip their return values
to simulate delivery failures.
"""
import os

os.environ['FLASK_ENV'] = 'testing'

import pytest
from unittest.mock import Mock

from app import create_app
from extensions import db
from coop_database import User, ImportOperation
from services.enums import ActivationStatus, ImportStatus, UserRole
from tests.fixtures.delivery import delivered, DEFAULT_TEMPORARY_PASSWORD
from utils.datetime_utils import utc_hours_from_now


@pytest.fixture
def sms_channel():
    channel = Mock()
    channel.send.return_value = delivered('sms-msg-1')
    return channel


@pytest.fixture
def email_channel():
    channel = Mock()
    channel.send.return_value = delivered('email-msg-1', activation_token='activation-token-123')
    return channel


@pytest.fixture
def app(sms_channel, email_channel):
    """
    A fresh application per test. The fixture keeps an application context
    pushed for the whole test so the test, the services and the test client
    all share one db.session.
    """
    app = create_app(config_name='testing')
    app.services.register('sms_channel', sms_channel)
    app.services.register('email_channel', email_channel)

    with app.app_context():
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def db_session(app):
    return db.session


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def services(app):
    return app.services


@pytest.fixture
def password_service(services):
    return services.get('password')


@pytest.fixture
def admin_user(db_session, password_service):
    admin = User(
        username='admin',
        full_name='Coop Admin',
        email='admin@coop.test',
        role=UserRole.ADMIN.value,
        password_hash=password_service.hash('AdminPass1'),
        activation_status=ActivationStatus.ACTIVATED.value,
    )
    db_session.add(admin)
    db_session.commit()
    return admin


@pytest.fixture
def import_operation(db_session):
    operation = ImportOperation(
        csv_file_name='members.csv',
        admin_id=1,
        admin_name='Coop Admin',
        total_rows=0,
        status=ImportStatus.COMPLETED.value,
    )
    db_session.add(operation)
    db_session.commit()
    return operation


@pytest.fixture
def member_factory(db_session, password_service, import_operation):
    """
    Create imported members directly in the store.

    Usage:
        member = member_factory('M1', status=ActivationStatus.SMS_FAILED, sms_retry_count=2)
    """
    sequence = {'n': 0}

    def create(member_id=None, status=ActivationStatus.PENDING_ACTIVATION,
               temporary_password=DEFAULT_TEMPORARY_PASSWORD, imported=True, **overrides):
        sequence['n'] += 1
        n = sequence['n']
        member_id = member_id or f'M{1000 + n}'
        fields = {
            'member_id': member_id,
            'username': f'member_{member_id}',
            'full_name': f'Member {n}',
            'phone_number': f'+1-555-{n:04d}',
            'email': f'member{n}@example.com',
            'has_real_email': True,
            'role': UserRole.MEMBER.value,
            'password_hash': password_service.hash('Throwaway-99'),
            'activation_status': ActivationStatus(status).value,
            'temporary_password_hash': password_service.hash(temporary_password) if temporary_password else None,
            'temporary_password_expires': utc_hours_from_now(24),
            'import_id': import_operation.id if imported else None,
        }
        fields.update(overrides)
        member = User(**fields)
        db_session.add(member)
        db_session.commit()
        return member

    return create
