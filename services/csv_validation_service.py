"""
CSV Validation Service - file, header and row validation for member import files

Validation never raises. Every check returns a structured outcome so the
preview can show all problems at once before anything is persisted.
"""

import os
import re
from dataclasses import dataclass, field
from typing import List, Dict, Optional, Any, Iterable, Set

REQUIRED_COLUMNS = ('member_id', 'name', 'phone_number')
OPTIONAL_COLUMNS = ('email',)

PHONE_REGEX = re.compile(r'^[\d\s\-\+\(\)]{7,}$')
EMAIL_REGEX = re.compile(r'^[^\s@]+@[^\s@]+\.[^\s@]+$')

# Header is file row 1, so the first data row is row 2
FIRST_DATA_ROW = 2


@dataclass
class MemberRow:
    """One validated CSV row ready for account creation"""
    member_id: str
    name: str
    phone_number: str
    row_number: int
    email: Optional[str] = None

    @classmethod
    def from_raw(cls, raw: Dict[str, Any], row_number: int, has_email_column: bool) -> 'MemberRow':
        email = _cell(raw, 'email') if has_email_column else ''
        return cls(
            member_id=_cell(raw, 'member_id'),
            name=_cell(raw, 'name'),
            phone_number=_cell(raw, 'phone_number'),
            row_number=row_number,
            email=email or None,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'row_number': self.row_number,
            'member_id': self.member_id,
            'name': self.name,
            'phone_number': self.phone_number,
            'email': self.email,
        }


@dataclass
class HeaderValidation:
    is_valid: bool
    missing_columns: List[str] = field(default_factory=list)
    unexpected_columns: List[str] = field(default_factory=list)
    has_email_column: bool = False

    @property
    def errors(self) -> List[str]:
        if not self.missing_columns:
            return []
        return [f"Missing required columns: {', '.join(self.missing_columns)}"]

    @property
    def warnings(self) -> List[str]:
        if not self.unexpected_columns:
            return []
        return [f"Unexpected columns (ignored): {', '.join(self.unexpected_columns)}"]


@dataclass
class RowValidationReport:
    """Outcome of validating every data row of a file"""
    valid_rows: List[MemberRow] = field(default_factory=list)
    invalid_rows: List[Dict[str, Any]] = field(default_factory=list)
    file_level_errors: List[str] = field(default_factory=list)
    has_email_column: bool = False

    @property
    def is_valid(self) -> bool:
        return not self.invalid_rows and not self.file_level_errors

    @property
    def total_rows(self) -> int:
        return len(self.valid_rows) + len(self.invalid_rows)


class CsvValidationService:
    """Pure validation of member CSV files"""

    def validate_file(self, filename: Optional[str]) -> bool:
        """Only .csv files are accepted (extension is case-insensitive)"""
        if not filename:
            return False
        return os.path.splitext(filename)[1].lower() == '.csv'

    def validate_headers(self, headers: Iterable[str]) -> HeaderValidation:
        normalized = [h.strip() for h in headers if h is not None]
        present = set(normalized)
        missing = [col for col in REQUIRED_COLUMNS if col not in present]
        known = set(REQUIRED_COLUMNS) | set(OPTIONAL_COLUMNS)
        unexpected = [h for h in normalized if h and h not in known]
        return HeaderValidation(
            is_valid=not missing,
            missing_columns=missing,
            unexpected_columns=unexpected,
            has_email_column='email' in present,
        )

    def is_valid_phone_number(self, phone_number: Optional[str]) -> bool:
        if not phone_number or not isinstance(phone_number, str):
            return False
        return PHONE_REGEX.match(phone_number.strip()) is not None

    def is_valid_email(self, email: Optional[str]) -> bool:
        if not email or not isinstance(email, str):
            return False
        return EMAIL_REGEX.match(email.strip()) is not None

    def validate_row(self, row: Dict[str, Any], row_number: int, has_email_column: bool) -> List[str]:
        """
        Validate one raw row.

        Returns:
            List of error messages, empty when the row is valid
        """
        errors = []
        for column in REQUIRED_COLUMNS:
            if not _cell(row, column):
                errors.append(f"Row {row_number}: {column} is required and cannot be empty")

        phone = _cell(row, 'phone_number')
        if phone and not self.is_valid_phone_number(phone):
            errors.append(f'Row {row_number}: invalid phone number format "{row.get("phone_number")}"')

        if has_email_column:
            email = _cell(row, 'email')
            if email and not self.is_valid_email(email):
                errors.append(f'Row {row_number}: invalid email format "{row.get("email")}"')

        return errors

    def detect_duplicate_member_ids(self, rows: Iterable[Dict[str, Any]]) -> List[str]:
        """member_ids (trimmed, case-sensitive) appearing more than once, in first-seen order"""
        seen: Set[str] = set()
        duplicates: List[str] = []
        for row in rows:
            member_id = _cell(row, 'member_id')
            if not member_id:
                continue
            if member_id in seen:
                if member_id not in duplicates:
                    duplicates.append(member_id)
            else:
                seen.add(member_id)
        return duplicates

    def validate_all_rows(self, rows: List[Dict[str, Any]], has_email_column: bool) -> RowValidationReport:
        """
        Validate every row and split them into valid and invalid sets.

        Every occurrence of a duplicated member_id is rejected, even when the
        row is otherwise valid. Persisted accounts are not consulted here.
        """
        report = RowValidationReport(has_email_column=has_email_column)
        duplicate_list = self.detect_duplicate_member_ids(rows)
        duplicates = set(duplicate_list)
        if duplicate_list:
            report.file_level_errors.append(f"Duplicate member_ids found: {', '.join(duplicate_list)}")

        for index, row in enumerate(rows):
            row_number = index + FIRST_DATA_ROW
            errors = self.validate_row(row, row_number, has_email_column)
            member_id = _cell(row, 'member_id')
            if member_id in duplicates:
                errors.append(f'Row {row_number}: duplicate member_id "{row.get("member_id")}"')

            if errors:
                report.invalid_rows.append({
                    'row_number': row_number,
                    'member_id': member_id or None,
                    'errors': errors,
                })
            else:
                report.valid_rows.append(MemberRow.from_raw(row, row_number, has_email_column))

        return report


def _cell(row: Dict[str, Any], column: str) -> str:
    value = row.get(column)
    if value is None:
        return ''
    return str(value).strip()
