"""
Integration tests for the /api/imports blueprint
"""

import io

import pytest

from services.enums import ActivationStatus, UserRole
from tests.fixtures.delivery import undelivered

HEADER = b'member_id,name,phone_number,email\n'


def csv_file(content, filename='members.csv'):
    return {'file': (io.BytesIO(content), filename)}


class TestUploadAndConfirm:

    def test_upload_returns_preview(self, client):
        response = client.post('/api/imports/upload', data=csv_file(HEADER + b'M1,Ana,+1-555-0001,\n'),
                               content_type='multipart/form-data')

        assert response.status_code == 200
        body = response.get_json()
        assert body['success'] is True
        assert body['data']['valid_rows'] == 1
        assert body['data']['preview_data'][0]['member_id'] == 'M1'

    def test_upload_without_file(self, client):
        response = client.post('/api/imports/upload', data={}, content_type='multipart/form-data')

        assert response.status_code == 400
        assert response.get_json()['error']['code'] == 'CSV_FILE_NOT_PROVIDED'

    def test_upload_wrong_type(self, client):
        response = client.post('/api/imports/upload', data=csv_file(b'x', 'members.txt'),
                               content_type='multipart/form-data')

        assert response.status_code == 400
        assert response.get_json()['error']['code'] == 'CSV_INVALID_FORMAT'

    def test_upload_missing_columns(self, client):
        response = client.post('/api/imports/upload', data=csv_file(b'member_id\nM1\n'),
                               content_type='multipart/form-data')

        body = response.get_json()
        assert response.status_code == 400
        assert body['error']['code'] == 'CSV_MISSING_COLUMNS'
        assert body['error']['details']['missing_columns'] == ['name', 'phone_number']

    def test_confirm_creates_accounts(self, client, sms_channel):
        response = client.post('/api/imports/confirm',
                               data=csv_file(HEADER + b'M1,Ana,+1-555-0001,\nM2,Ben,+1-555-0002,ben@example.com\n'),
                               content_type='multipart/form-data')

        assert response.status_code == 201
        data = response.get_json()['data']
        assert data['statistics']['successful_imports'] == 2
        assert data['import_operation']['status'] == 'completed'
        assert data['import_operation']['admin_id'] == 1
        assert sms_channel.send.call_count == 2

    def test_confirm_with_no_valid_rows(self, client):
        response = client.post('/api/imports/confirm',
                               data=csv_file(HEADER + b'M1,A,+1-555-0001,\nM1,B,+1-555-0002,\n'),
                               content_type='multipart/form-data')

        assert response.status_code == 400
        assert response.get_json()['error']['code'] == 'CSV_INVALID_DATA'


class TestMembers:

    def test_list_is_masked_and_paginated(self, client, member_factory):
        member_factory('M12345')
        member_factory('M22222')

        response = client.get('/api/imports/members?per_page=1&sort_by=member_id&sort_order=asc')

        body = response.get_json()
        assert response.status_code == 200
        assert body['data'][0]['member_id'] == 'M****5'
        assert body['pagination']['total'] == 2
        assert body['pagination']['has_next'] is True
        assert body['meta']['status_counts'] == {'pending_activation': 2}

    def test_detail(self, client, member_factory):
        member_factory('M12345')

        assert client.get('/api/imports/members/M12345').get_json()['data']['member_id'] == 'M12345'
        assert client.get('/api/imports/members/NOPE').status_code == 404


class TestRetryAndResend:

    def test_manual_sms_retry(self, client, member_factory):
        member_factory('M1', status=ActivationStatus.SMS_FAILED)

        response = client.post('/api/imports/retry-sms/M1')

        assert response.status_code == 200
        assert response.get_json()['data']['retry_count'] == 0

    def test_max_retries_is_a_conflict(self, client, member_factory):
        member_factory('M1', status=ActivationStatus.SMS_FAILED, sms_retry_count=3)

        response = client.post('/api/imports/retry-sms/M1')

        assert response.status_code == 409
        error = response.get_json()['error']
        assert error['code'] == 'MAX_RETRIES_EXCEEDED'
        assert error['details']['max_retries_exceeded'] is True

    def test_email_retry(self, client, member_factory, email_channel):
        member_factory('M1', status=ActivationStatus.EMAIL_FAILED)

        response = client.post('/api/imports/retry-email/M1')

        assert response.status_code == 200
        email_channel.send.assert_called_once()

    def test_bulk_retry(self, client, member_factory):
        member_factory('M1', status=ActivationStatus.SMS_FAILED)

        response = client.post('/api/imports/bulk-retry',
                               json={'member_ids': ['M1', 'NOPE'], 'notification_type': 'sms'})

        data = response.get_json()['data']
        assert response.status_code == 200
        assert (data['total'], data['successful'], data['skipped']) == (2, 1, 1)

    def test_bulk_retry_requires_member_ids(self, client):
        response = client.post('/api/imports/bulk-retry', json={'notification_type': 'sms'})
        assert response.status_code == 400

    def test_retry_status(self, client, member_factory):
        member_factory('M1', status=ActivationStatus.SMS_FAILED, sms_retry_count=1)

        data = client.get('/api/imports/retry-status/M1').get_json()['data']

        assert data['sms']['retry_count'] == 1

    def test_resend(self, client, member_factory):
        member_factory('M1')

        response = client.post('/api/imports/resend-invitation/M1', json={'delivery_method': 'sms'})

        assert response.status_code == 200
        assert response.get_json()['data']['channel'] == 'sms'

    def test_resend_to_activated_member(self, client, member_factory):
        member_factory('M1', status=ActivationStatus.ACTIVATED)

        response = client.post('/api/imports/resend-invitation/M1', json={})

        assert response.status_code == 409
        assert response.get_json()['error']['code'] == 'INVALID_ACTIVATION_STATUS'

    def test_bulk_resend(self, client, member_factory, sms_channel):
        member_factory('M1')
        member_factory('M2')
        sms_channel.send.side_effect = [sms_channel.send.return_value, undelivered()]

        data = client.post('/api/imports/bulk-resend-invitations',
                           json={'member_ids': ['M1', 'M2']}).get_json()['data']

        assert (data['successful'], data['failed'], data['skipped']) == (1, 1, 0)


class TestHistoryAndRecovery:

    def test_history(self, client, import_operation):
        body = client.get('/api/imports/history').get_json()

        assert body['pagination']['total'] == 1
        assert body['data'][0]['csv_file_name'] == 'members.csv'

    def test_history_detail_and_members(self, client, member_factory, import_operation):
        member_factory('M1')

        detail = client.get(f'/api/imports/history/{import_operation.id}').get_json()['data']
        members = client.get(f'/api/imports/history/{import_operation.id}/members').get_json()

        assert detail['member_status_counts'] == {'pending_activation': 1}
        assert members['pagination']['total'] == 1
        assert client.get('/api/imports/history/999').status_code == 404

    def test_recovery_info(self, client, member_factory, import_operation):
        member_factory('M1', status=ActivationStatus.SMS_FAILED)

        data = client.get(f'/api/imports/recovery/{import_operation.id}').get_json()['data']

        assert data['recovery']['can_recover'] is True
        assert data['successful_members'][0]['member_id'] == 'M1'

    def test_retry_import(self, client, member_factory, import_operation):
        member_factory('M1', status=ActivationStatus.SMS_FAILED)

        response = client.post(f'/api/imports/retry/{import_operation.id}')

        assert response.status_code == 201
        assert response.get_json()['data']['import_operation']['csv_file_name'] == 'members.csv (Retry)'

    def test_retry_clean_import_is_a_conflict(self, client, member_factory, import_operation):
        member_factory('M1')
        assert client.post(f'/api/imports/retry/{import_operation.id}').status_code == 409


class TestAccessControl:

    @pytest.fixture
    def login_enforced(self, app):
        app.config['LOGIN_DISABLED'] = False
        return app

    def login_as(self, client, user):
        with client.session_transaction() as session:
            session['_user_id'] = str(user.id)
            session['_fresh'] = True

    def test_anonymous_gets_401(self, login_enforced, client):
        response = client.get('/api/imports/members')

        assert response.status_code == 401
        assert response.get_json()['error']['code'] == 'UNAUTHORIZED'

    def test_member_gets_403(self, login_enforced, client, member_factory):
        member = member_factory('M1', status=ActivationStatus.ACTIVATED, role=UserRole.MEMBER.value)
        self.login_as(client, member)

        response = client.post('/api/imports/retry-sms/M1')

        assert response.status_code == 403
        assert response.get_json()['error']['code'] == 'FORBIDDEN'

    def test_admin_is_allowed(self, login_enforced, client, admin_user):
        self.login_as(client, admin_user)

        assert client.get('/api/imports/history').status_code == 200


def test_health(client):
    response = client.get('/health')

    assert response.status_code == 200
    assert response.get_json()['database'] == 'connected'


def test_unknown_route_is_json_404(client):
    response = client.get('/api/nowhere')

    assert response.status_code == 404
    assert response.get_json()['error']['code'] == 'NOT_FOUND'
