"""
Tests for ServiceRegistry lazy resolution and the Result types
"""

import pytest
from unittest.mock import Mock

from services.registry import ServiceRegistry, ServiceLifecycle
from services.common.result import Result, PagedResult
from services.import_error_service import ErrorCode, format_error


class TestServiceRegistry:

    @pytest.fixture
    def registry(self):
        return ServiceRegistry()

    def test_factories_are_resolved_lazily_with_dependencies(self, registry):
        """Factories run on first get and receive their dependencies by name"""
        factory = Mock(return_value='repository')
        registry.register_factory('db_session', lambda: 'session')
        registry.register_factory('user_repository', factory, dependencies=['db_session'])

        factory.assert_not_called()
        assert registry.get('user_repository') == 'repository'
        factory.assert_called_once_with(db_session='session')

    def test_singletons_are_cached(self, registry):
        registry.register_factory('password', lambda: object())
        assert registry.get('password') is registry.get('password')

    def test_transient_services_are_rebuilt(self, registry):
        registry.register_factory('token', lambda: object(), lifecycle=ServiceLifecycle.TRANSIENT)
        assert registry.get('token') is not registry.get('token')

    def test_register_replaces_factory(self, registry):
        """Tests swap in fakes by registering an instance under the same name"""
        registry.register_factory('sms_channel', lambda: 'real')
        fake = Mock()
        registry.register('sms_channel', fake)
        assert registry.get('sms_channel') is fake

    def test_unknown_service_raises(self, registry):
        with pytest.raises(ValueError, match='not registered'):
            registry.get('missing')

    def test_circular_dependency_is_detected(self, registry):
        registry.register_factory('a', lambda b: b, dependencies=['b'])
        registry.register_factory('b', lambda a: a, dependencies=['a'])

        with pytest.raises(RuntimeError, match='Circular dependency'):
            registry.get('a')

    def test_validate_dependencies_reports_unregistered_names(self, registry):
        registry.register_factory('notification', lambda sms_channel: None, dependencies=['sms_channel'])

        errors = registry.validate_dependencies()

        assert errors == ["Service 'notification' depends on unregistered service 'sms_channel'"]

    def test_reset_service_forces_rebuild(self, registry):
        registry.register_factory('thing', lambda: object())
        first = registry.get('thing')
        registry.reset_service('thing')
        assert registry.get('thing') is not first

    def test_application_registry_is_complete(self, app):
        """Every dependency declared by the application wiring is registered"""
        assert app.services.validate_dependencies() == []
        for name in ('csv_import', 'member_query', 'notification_retry', 'resend_invitation',
                     'import_recovery', 'import_error', 'member_activation'):
            assert app.services.has(name)


class TestResult:

    def test_failure_accepts_enum_codes(self):
        result = Result.failure('Nope', code=ErrorCode.MEMBER_NOT_FOUND)
        assert result.error_code == 'MEMBER_NOT_FOUND'
        assert not result

    def test_from_error_merges_details_into_metadata(self):
        formatted = format_error(ErrorCode.MEMBER_NOT_FOUND, {'member_id': 'M1'})

        result = Result.from_error(formatted, {'transport_attempted': False})

        assert result.error == 'Member "M1" not found'
        assert result.metadata == {'member_id': 'M1', 'transport_attempted': False}
        assert result.to_error_dict() == {
            'code': 'MEMBER_NOT_FOUND',
            'message': 'Member "M1" not found',
            'details': {'member_id': 'M1', 'transport_attempted': False},
        }

    def test_unwrap(self):
        assert Result.success({'a': 1}).unwrap() == {'a': 1}
        with pytest.raises(ValueError):
            Result.failure('broken').unwrap()

    def test_paged_result_pagination(self):
        result = PagedResult.paginated(['a', 'b'], total=45, page=2, per_page=20)

        assert result.pagination() == {
            'total': 45,
            'page': 2,
            'per_page': 20,
            'total_pages': 3,
            'has_next': True,
            'has_prev': True,
        }
