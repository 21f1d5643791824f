"""
Tests for Result and PagedResult
"""

import pytest

from services.common.result import Result, PagedResult
from services.import_error_service import ErrorCode


class TestResult:

    def test_success(self):
        result = Result.success({'member_id': 'M1'})

        assert result.is_success
        assert not result.is_failure
        assert bool(result) is True
        assert result.unwrap() == {'member_id': 'M1'}
        assert result.error_code is None

    def test_failure_accepts_enum_codes(self):
        result = Result.failure('Member M1 not found', code=ErrorCode.MEMBER_NOT_FOUND)

        assert result.is_failure
        assert bool(result) is False
        assert result.error_code == 'MEMBER_NOT_FOUND'
        with pytest.raises(ValueError, match='Member M1 not found'):
            result.unwrap()

    def test_from_error_merges_details_and_metadata(self):
        formatted = {
            'code': 'MAX_RETRIES_EXCEEDED',
            'message': 'Maximum retry attempts reached',
            'details': {'retry_count': 3},
        }

        result = Result.from_error(formatted, {'max_retries_exceeded': True})

        assert result.error == 'Maximum retry attempts reached'
        assert result.metadata == {'retry_count': 3, 'max_retries_exceeded': True}
        assert result.meta('retry_count') == 3
        assert result.meta('missing', 'fallback') == 'fallback'

    def test_error_dict(self):
        result = Result.failure('Bad file', code='CSV_INVALID_FORMAT')

        assert result.to_error_dict() == {'code': 'CSV_INVALID_FORMAT', 'message': 'Bad file', 'details': {}}

    def test_repr(self):
        assert repr(Result.failure('x', code='Y')) == "Result.failure(error='x', code='Y')"


class TestPagedResult:

    @pytest.mark.parametrize('total,page,per_page,pages,has_next,has_prev', [
        (45, 1, 20, 3, True, False),
        (45, 3, 20, 3, False, True),
        (0, 1, 20, 0, False, False),
        (20, 1, 20, 1, False, False),
    ])
    def test_pagination(self, total, page, per_page, pages, has_next, has_prev):
        result = PagedResult.paginated([], total=total, page=page, per_page=per_page)

        pagination = result.pagination()
        assert pagination['total_pages'] == pages
        assert pagination['has_next'] is has_next
        assert pagination['has_prev'] is has_prev

    def test_carries_metadata(self):
        result = PagedResult.paginated(['a'], total=1, page=1, per_page=10,
                                       metadata={'status_counts': {'activated': 1}})

        assert result.is_success
        assert result.meta('status_counts') == {'activated': 1}
