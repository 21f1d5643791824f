"""
CSV Import Service - upload handling, preview and confirmation of member imports
"""

import csv
import os
from typing import List, Dict, Optional, Any
from werkzeug.datastructures import FileStorage
from werkzeug.utils import secure_filename
from services.bulk_account_service import BulkAccountService
from services.common.result import Result
from services.csv_validation_service import CsvValidationService
from services.import_error_service import ImportErrorService, ErrorCode, format_error
from utils.datetime_utils import utc_now
from logging_config import get_logger

logger = get_logger(__name__)


class CsvImportService:
    """
    Two-step import: the preview validates without touching any account,
    confirmation re-validates the same file and creates accounts from the
    valid rows only.
    """

    def __init__(self,
                 validator: CsvValidationService,
                 bulk_account_service: BulkAccountService,
                 error_service: ImportErrorService,
                 upload_folder: str,
                 max_size_mb: int = 10,
                 preview_row_limit: int = 10):
        self.validator = validator
        self.bulk_account_service = bulk_account_service
        self.error_service = error_service
        self.upload_folder = upload_folder
        self.max_size_mb = max_size_mb
        self.preview_row_limit = preview_row_limit

    def save_upload(self, file: Optional[FileStorage]) -> Result[Dict[str, str]]:
        """
        Store an uploaded file under a timestamped, sanitised name.

        Returns:
            Result with {path, file_name}
        """
        if file is None or not file.filename:
            return Result.from_error(format_error(ErrorCode.CSV_FILE_NOT_PROVIDED))

        file_name = file.filename
        if not self.validator.validate_file(file_name):
            return Result.from_error(format_error(ErrorCode.CSV_INVALID_FORMAT, {'file_name': file_name}))

        if self.calculate_file_size(file) > self.max_size_mb * 1024 * 1024:
            return Result.from_error(format_error(ErrorCode.CSV_FILE_TOO_LARGE, {'max_size_mb': self.max_size_mb}))

        stored_name = f"{utc_now().strftime('%Y%m%d%H%M%S%f')}_{secure_filename(file_name) or 'upload.csv'}"
        path = os.path.join(self.upload_folder, stored_name)
        try:
            os.makedirs(self.upload_folder, exist_ok=True)
            file.save(path)
        except OSError as e:
            return Result.from_error(self.error_service.handle_csv_upload_error(e, file_name))

        logger.info("CSV upload stored", file_name=file_name, stored_name=stored_name)
        return Result.success({'path': path, 'file_name': file_name})

    def calculate_file_size(self, file: FileStorage) -> int:
        """Size in bytes. The stream is left at position 0."""
        stream = file.stream
        stream.seek(0, os.SEEK_END)
        size = stream.tell()
        stream.seek(0)
        return size

    def discard_upload(self, path: Optional[str]) -> None:
        if path and os.path.exists(path):
            try:
                os.remove(path)
            except OSError as e:
                logger.warning("Could not remove stored upload", path=path, error=str(e))

    def parse_csv(self, path: str) -> Result[Dict[str, Any]]:
        """
        Returns:
            Result with {headers, rows} where rows are dicts keyed by trimmed header
        """
        try:
            # utf-8-sig drops the BOM spreadsheet tools like to add
            with open(path, mode='r', encoding='utf-8-sig', newline='') as csvfile:
                reader = csv.DictReader(csvfile)
                if not reader.fieldnames:
                    return Result.from_error(format_error(ErrorCode.CSV_PARSE_ERROR, {
                        'reason': 'CSV file is empty or has no headers'
                    }))
                headers = [(name or '').strip() for name in reader.fieldnames]
                reader.fieldnames = headers
                rows = [
                    {key: value for key, value in row.items() if key is not None}
                    for row in reader
                    if any((value or '').strip() for key, value in row.items() if key is not None)
                ]
        except (UnicodeDecodeError, csv.Error, OSError) as e:
            return Result.from_error(self.error_service.handle_csv_upload_error(e, os.path.basename(path)))

        return Result.success({'headers': headers, 'rows': rows})

    def generate_preview(self, path: str, file_name: str) -> Result[Dict[str, Any]]:
        """Validate the file and summarise what confirming it would do"""
        parsed = self.parse_csv(path)
        if parsed.is_failure:
            return parsed

        headers = parsed.data['headers']
        rows = parsed.data['rows']
        header_check = self.validator.validate_headers(headers)
        if not header_check.is_valid:
            formatted = format_error(ErrorCode.CSV_MISSING_COLUMNS, {
                'missing_columns': ', '.join(header_check.missing_columns)
            })
            return Result.from_error(formatted, {
                'missing_columns': header_check.missing_columns,
                'headers': headers,
            })

        report = self.validator.validate_all_rows(rows, header_check.has_email_column)
        preview = {
            'success': True,
            'file_name': file_name,
            'total_rows': len(rows),
            'valid_rows': len(report.valid_rows),
            'invalid_rows': len(report.invalid_rows),
            'headers': headers,
            'has_email_column': report.has_email_column,
            'can_import': bool(report.valid_rows),
            'preview_data': [row.to_dict() for row in report.valid_rows[:self.preview_row_limit]],
            'errors': {
                'file_errors': report.file_level_errors,
                'header_errors': header_check.warnings,
                'data_errors': [error for row in report.invalid_rows for error in row['errors']],
                'invalid_row_details': report.invalid_rows,
            },
        }
        logger.info("CSV preview generated", file_name=file_name, total_rows=len(rows),
                    valid_rows=preview['valid_rows'], invalid_rows=preview['invalid_rows'])
        return Result.success(preview)

    def parse_and_validate(self, path: str) -> Result[Dict[str, Any]]:
        """
        Returns:
            Result with {rows (MemberRow list), has_email_column, report}
        """
        parsed = self.parse_csv(path)
        if parsed.is_failure:
            return parsed

        header_check = self.validator.validate_headers(parsed.data['headers'])
        if not header_check.is_valid:
            return Result.from_error(format_error(ErrorCode.CSV_MISSING_COLUMNS, {
                'missing_columns': ', '.join(header_check.missing_columns)
            }), {'missing_columns': header_check.missing_columns})

        report = self.validator.validate_all_rows(parsed.data['rows'], header_check.has_email_column)
        return Result.success({
            'rows': report.valid_rows,
            'has_email_column': report.has_email_column,
            'report': report,
        })

    def confirm_import(self, path: str, file_name: str, admin_id: Optional[int],
                       admin_name: Optional[str]) -> Result[Dict[str, Any]]:
        validated = self.parse_and_validate(path)
        if validated.is_failure:
            return validated

        report = validated.data['report']
        rows: List = validated.data['rows']
        if not rows:
            formatted = format_error(ErrorCode.CSV_INVALID_DATA, {'invalid_count': len(report.invalid_rows)})
            return Result.from_error(formatted, {'invalid_row_details': report.invalid_rows,
                                                 'file_errors': report.file_level_errors})

        result = self.bulk_account_service.create_accounts(rows, file_name, admin_id, admin_name)
        if result.is_success:
            result.data['validation'] = {
                'invalid_rows': len(report.invalid_rows),
                'invalid_row_details': report.invalid_rows,
            }
        return result
