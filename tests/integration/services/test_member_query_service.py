"""
Integration tests for MemberQueryService
"""

import pytest

from services.enums import ActivationStatus


@pytest.fixture
def member_query(services):
    return services.get('member_query')


class TestImportedMembers:

    def test_list_is_masked_and_excludes_non_imported_accounts(self, member_query, member_factory, admin_user):
        member_factory('M12345', phone_number='+1-555-123-4567', email='juan@example.com')
        member_factory('M99', imported=False)

        result = member_query.get_imported_members()

        assert result.total == 1
        item = result.data[0]
        assert item['member_id'] == 'M****5'
        assert item['phone_number'] == '+*-***-***-4567'
        assert item['email'] == 'j***@example.com'

    def test_status_filter_and_counts(self, member_query, member_factory):
        member_factory('M1')
        member_factory('M2', status=ActivationStatus.SMS_FAILED)
        member_factory('M3', status=ActivationStatus.SMS_FAILED)

        result = member_query.get_imported_members(status='sms_failed')

        assert result.total == 2
        assert result.metadata['status_counts'] == {'pending_activation': 1, 'sms_failed': 2}

    def test_invalid_status(self, member_query):
        result = member_query.get_imported_members(status='sleeping')

        assert result.is_failure
        assert result.error_code == 'INVALID_ACTIVATION_STATUS'
        assert 'activated' in result.meta('allowed')

    def test_search_is_case_insensitive(self, member_query, member_factory):
        member_factory('M1', full_name='Juan Dela Cruz')
        member_factory('M2', full_name='Maria Santos')

        result = member_query.get_imported_members(search='dela')

        assert result.total == 1
        assert result.data[0]['full_name'] == 'Juan Dela Cruz'

    def test_pagination_and_sorting(self, member_query, member_factory):
        for n in range(5):
            member_factory(f'M{n}', full_name=f'Member {chr(ord("E") - n)}')

        first = member_query.get_imported_members(sort_by='full_name', sort_order='asc', page=1, per_page=2)
        last = member_query.get_imported_members(sort_by='full_name', sort_order='asc', page=3, per_page=2)

        assert [m['full_name'] for m in first.data] == ['Member A', 'Member B']
        assert [m['full_name'] for m in last.data] == ['Member E']
        assert first.pagination()['total_pages'] == 3
        assert first.pagination()['has_next'] is True
        assert last.pagination()['has_next'] is False

    def test_unknown_sort_field_falls_back(self, member_query, member_factory):
        member_factory('M1')
        assert member_query.get_imported_members(sort_by='password_hash').is_success


class TestDetailAndHistory:

    def test_detail_is_not_masked(self, member_query, member_factory):
        member_factory('M12345', phone_number='+1-555-123-4567')

        data = member_query.get_member_detail('M12345').data

        assert data['member_id'] == 'M12345'
        assert data['phone_number'] == '+1-555-123-4567'
        assert data['has_temporary_password'] is True
        assert 'temporary_password_hash' not in data
        assert 'password_hash' not in data

    def test_detail_unknown_member(self, member_query):
        assert member_query.get_member_detail('NOPE').error_code == 'MEMBER_NOT_FOUND'

    def test_history_and_details(self, member_query, member_factory, import_operation):
        member_factory('M1')
        member_factory('M2', status=ActivationStatus.ACTIVATED)

        history = member_query.get_import_history()
        details = member_query.get_import_details(import_operation.id).data

        assert history.total == 1
        assert 'import_errors' not in history.data[0]
        assert details['csv_file_name'] == 'members.csv'
        assert details['import_errors'] == []
        assert details['member_status_counts'] == {'pending_activation': 1, 'activated': 1}

    def test_import_members(self, member_query, member_factory, import_operation):
        member_factory('M1')
        member_factory('M2', imported=False)

        result = member_query.get_import_members(import_operation.id)

        assert result.total == 1
        assert member_query.get_import_members(999).error_code == 'IMPORT_NOT_FOUND'
        assert member_query.get_import_details(999).error_code == 'IMPORT_NOT_FOUND'
