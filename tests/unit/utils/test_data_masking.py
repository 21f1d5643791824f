"""
Tests for list-view masking and the UTC datetime helpers
"""

from datetime import datetime, timedelta, timezone

import pytest

from utils.data_masking import mask_member_id, mask_phone_number, mask_email, mask_member_record
from utils.datetime_utils import ensure_utc, milliseconds_since, format_utc_iso


class TestMasking:

    @pytest.mark.parametrize('value,expected', [
        ('M12345', 'M****5'),
        ('AB', 'AB'),
        ('', ''),
        (None, None),
    ])
    def test_mask_member_id(self, value, expected):
        assert mask_member_id(value) == expected

    def test_mask_phone_keeps_last_four_digits_and_separators(self):
        assert mask_phone_number('+1-555-123-4567') == '+*-***-***-4567'
        assert mask_phone_number('09171234567') == '*******4567'

    def test_mask_email(self):
        assert mask_email('juan@example.com') == 'j***@example.com'
        assert mask_email('not-an-email') == 'not-an-email'
        assert mask_email(None) is None

    def test_mask_member_record_does_not_mutate_input(self):
        record = {'member_id': 'M12345', 'phone_number': '+1-555-0001', 'email': None, 'full_name': 'Ana'}

        masked = mask_member_record(record)

        assert masked == {'member_id': 'M****5', 'phone_number': '+*-***-0001', 'email': None, 'full_name': 'Ana'}
        assert record['member_id'] == 'M12345'


class TestDatetimeUtils:

    def test_ensure_utc_treats_naive_values_as_utc(self):
        naive = datetime(2025, 1, 1, 12, 0)
        assert ensure_utc(naive) == datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)

    def test_ensure_utc_converts_other_zones(self):
        manila = timezone(timedelta(hours=8))
        assert ensure_utc(datetime(2025, 1, 1, 20, 0, tzinfo=manila)) == \
            datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)

    def test_milliseconds_since(self):
        now = datetime(2025, 1, 1, 12, 0, 5, tzinfo=timezone.utc)
        assert milliseconds_since(datetime(2025, 1, 1, 12, 0, 0), now=now) == 5000
        assert milliseconds_since(datetime(2025, 1, 1, 12, 0, 10), now=now) == -5000

    def test_format_utc_iso(self):
        assert format_utc_iso(datetime(2025, 1, 1, 12, 0)) == '2025-01-01T12:00:00+00:00'
        assert format_utc_iso(None) is None
