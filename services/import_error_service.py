"""
ImportErrorService - error taxonomy and failure bookkeeping for the import pipeline

Every failure in the import, notification, retry and resend services is turned
into a {code, message, details} triple here. Recording a failure (audit log,
import error list, member status) is best effort and never raises.
"""

import csv
from enum import Enum
from typing import Optional, Dict, Any, Union
from sqlalchemy.exc import IntegrityError, SQLAlchemyError, OperationalError
from werkzeug.exceptions import RequestEntityTooLarge
from repositories.import_operation_repository import ImportOperationRepository
from repositories.user_repository import UserRepository
from services.audit_log_service import AuditLogService
from services.enums import ActivationStatus, ActivityAction, NotificationChannel, InvalidStatusTransition
from logging_config import get_logger

logger = get_logger(__name__)


class ErrorCode(str, Enum):
    """Stable error codes returned to API clients"""
    # File level
    CSV_FILE_NOT_PROVIDED = 'CSV_FILE_NOT_PROVIDED'
    CSV_INVALID_FORMAT = 'CSV_INVALID_FORMAT'
    CSV_PARSE_ERROR = 'CSV_PARSE_ERROR'
    CSV_FILE_TOO_LARGE = 'CSV_FILE_TOO_LARGE'
    CSV_READ_ERROR = 'CSV_READ_ERROR'
    # Header and row level
    CSV_MISSING_COLUMNS = 'CSV_MISSING_COLUMNS'
    CSV_DUPLICATE_MEMBER_IDS = 'CSV_DUPLICATE_MEMBER_IDS'
    CSV_INVALID_DATA = 'CSV_INVALID_DATA'
    # Account creation
    ACCOUNT_CREATION_FAILED = 'ACCOUNT_CREATION_FAILED'
    DUPLICATE_MEMBER_ID = 'DUPLICATE_MEMBER_ID'
    DUPLICATE_PHONE_NUMBER = 'DUPLICATE_PHONE_NUMBER'
    DUPLICATE_EMAIL = 'DUPLICATE_EMAIL'
    INVALID_MEMBER_DATA = 'INVALID_MEMBER_DATA'
    USER_SAVE_ERROR = 'USER_SAVE_ERROR'
    PASSWORD_GENERATION_ERROR = 'PASSWORD_GENERATION_ERROR'
    # Notifications
    SMS_SEND_FAILED = 'SMS_SEND_FAILED'
    EMAIL_SEND_FAILED = 'EMAIL_SEND_FAILED'
    NO_PHONE_NUMBER = 'NO_PHONE_NUMBER'
    NO_EMAIL_ADDRESS = 'NO_EMAIL_ADDRESS'
    MAX_RETRIES_EXCEEDED = 'MAX_RETRIES_EXCEEDED'
    BACKOFF_ACTIVE = 'BACKOFF_ACTIVE'
    # Member eligibility
    MEMBER_NOT_FOUND = 'MEMBER_NOT_FOUND'
    NOT_IMPORTED_MEMBER = 'NOT_IMPORTED_MEMBER'
    INVALID_ACTIVATION_STATUS = 'INVALID_ACTIVATION_STATUS'
    INVALID_DELIVERY_METHOD = 'INVALID_DELIVERY_METHOD'
    TOKEN_EXPIRED = 'TOKEN_EXPIRED'
    INVALID_CREDENTIALS = 'INVALID_CREDENTIALS'
    WEAK_PASSWORD = 'WEAK_PASSWORD'
    # Import records and recovery
    IMPORT_NOT_FOUND = 'IMPORT_NOT_FOUND'
    RECOVERY_NOT_POSSIBLE = 'RECOVERY_NOT_POSSIBLE'
    IMPORT_OPERATION_ERROR = 'IMPORT_OPERATION_ERROR'
    # Infrastructure
    DATABASE_ERROR = 'DATABASE_ERROR'
    TRANSACTION_ROLLBACK = 'TRANSACTION_ROLLBACK'
    OPERATION_INTERRUPTED = 'OPERATION_INTERRUPTED'
    UNAUTHORIZED = 'UNAUTHORIZED'
    FORBIDDEN = 'FORBIDDEN'
    UNKNOWN_ERROR = 'UNKNOWN_ERROR'


ERROR_MESSAGES: Dict[ErrorCode, str] = {
    ErrorCode.CSV_FILE_NOT_PROVIDED: 'No CSV file was provided. Please select a file to upload.',
    ErrorCode.CSV_INVALID_FORMAT: 'Invalid file format "{file_name}". Only .csv files are accepted.',
    ErrorCode.CSV_PARSE_ERROR: 'Unable to parse the CSV file: {reason}',
    ErrorCode.CSV_FILE_TOO_LARGE: 'The CSV file exceeds the maximum allowed size of {max_size_mb}MB.',
    ErrorCode.CSV_READ_ERROR: 'Unable to read the CSV file: {reason}',
    ErrorCode.CSV_MISSING_COLUMNS: 'Missing required columns: {missing_columns}',
    ErrorCode.CSV_DUPLICATE_MEMBER_IDS: 'Duplicate member_ids found: {duplicate_ids}',
    ErrorCode.CSV_INVALID_DATA: (
        'The CSV file has no importable rows ({invalid_count} invalid). '
        'Please correct the file and upload it again.'
    ),
    ErrorCode.ACCOUNT_CREATION_FAILED: 'Failed to create account for member "{member_id}": {reason}',
    ErrorCode.DUPLICATE_MEMBER_ID: 'Duplicate member_id "{member_id}" already exists in the system',
    ErrorCode.DUPLICATE_PHONE_NUMBER: 'Duplicate phone_number "{phone_number}" already exists in the system',
    ErrorCode.DUPLICATE_EMAIL: 'Duplicate email "{email}" already exists in the system',
    ErrorCode.INVALID_MEMBER_DATA: 'Invalid data for member "{member_id}": {reason}',
    ErrorCode.USER_SAVE_ERROR: 'Failed to save account for member "{member_id}": {reason}',
    ErrorCode.PASSWORD_GENERATION_ERROR: 'Failed to generate a temporary password for member "{member_id}"',
    ErrorCode.SMS_SEND_FAILED: 'Failed to send SMS to member "{member_id}": {reason}',
    ErrorCode.EMAIL_SEND_FAILED: 'Failed to send email to member "{member_id}": {reason}',
    ErrorCode.NO_PHONE_NUMBER: 'Member "{member_id}" has no phone number on file',
    ErrorCode.NO_EMAIL_ADDRESS: 'Member "{member_id}" has no email address on file',
    ErrorCode.MAX_RETRIES_EXCEEDED: (
        'Maximum {channel} retry attempts ({max_retries}) exceeded for member "{member_id}"'
    ),
    ErrorCode.BACKOFF_ACTIVE: '{channel} retry in progress. Please wait {wait_seconds} seconds before retrying.',
    ErrorCode.MEMBER_NOT_FOUND: 'Member "{member_id}" not found',
    ErrorCode.NOT_IMPORTED_MEMBER: 'Member "{member_id}" was not created by a bulk import',
    ErrorCode.INVALID_ACTIVATION_STATUS: 'Member "{member_id}" has status "{status}", not "{expected_status}"',
    ErrorCode.INVALID_DELIVERY_METHOD: 'Invalid delivery method "{channel}". Must be "sms" or "email"',
    ErrorCode.TOKEN_EXPIRED: 'The temporary password for member "{member_id}" has expired',
    ErrorCode.INVALID_CREDENTIALS: 'Invalid member ID or password',
    ErrorCode.WEAK_PASSWORD: 'Password does not meet requirements: {reason}',
    ErrorCode.IMPORT_NOT_FOUND: 'Import operation {import_id} not found',
    ErrorCode.RECOVERY_NOT_POSSIBLE: 'Import operation {import_id} cannot be recovered: {reason}',
    ErrorCode.IMPORT_OPERATION_ERROR: 'Failed to record the import operation: {reason}',
    ErrorCode.DATABASE_ERROR: 'A database error occurred during {operation}: {reason}',
    ErrorCode.TRANSACTION_ROLLBACK: 'The {operation} transaction was rolled back: {reason}',
    ErrorCode.OPERATION_INTERRUPTED: 'Operation {operation} was interrupted after {processed} of {total} rows',
    ErrorCode.UNAUTHORIZED: 'Authentication required',
    ErrorCode.FORBIDDEN: 'Administrator access required',
    ErrorCode.UNKNOWN_ERROR: 'An unexpected error occurred: {reason}',
}

# Unique constraint column -> duplicate code. username is derived from member_id.
_UNIQUE_COLUMN_CODES = (
    ('member_id', ErrorCode.DUPLICATE_MEMBER_ID),
    ('username', ErrorCode.DUPLICATE_MEMBER_ID),
    ('phone_number', ErrorCode.DUPLICATE_PHONE_NUMBER),
    ('email', ErrorCode.DUPLICATE_EMAIL),
)


class _KeepMissing(dict):
    def __missing__(self, key):
        return '{' + key + '}'


def format_error(code: Union[ErrorCode, str], details: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """
    Build the {code, message, details} triple for an error code.

    Placeholders without a matching detail are left as-is so a missing
    detail never turns into a formatting exception.
    """
    try:
        code = ErrorCode(code)
    except ValueError:
        code = ErrorCode.UNKNOWN_ERROR
    details = dict(details or {})
    template = ERROR_MESSAGES.get(code, ERROR_MESSAGES[ErrorCode.UNKNOWN_ERROR])
    return {
        'code': code.value,
        'message': template.format_map(_KeepMissing(details)),
        'details': details,
    }


def is_duplicate_code(code: Union[ErrorCode, str]) -> bool:
    return code in (
        ErrorCode.DUPLICATE_MEMBER_ID.value,
        ErrorCode.DUPLICATE_PHONE_NUMBER.value,
        ErrorCode.DUPLICATE_EMAIL.value,
    )


class ImportErrorService:
    """Classifies failures and records them without interrupting the caller"""

    def __init__(self,
                 audit_log: AuditLogService,
                 import_operation_repository: ImportOperationRepository,
                 user_repository: UserRepository,
                 max_csv_size_mb: int = 10):
        self.audit_log = audit_log
        self.import_operation_repository = import_operation_repository
        self.user_repository = user_repository
        self.max_csv_size_mb = max_csv_size_mb

    format_error = staticmethod(format_error)

    # Classifiers

    def handle_csv_upload_error(self, error: Exception, file_name: Optional[str] = None) -> Dict[str, Any]:
        """Map an exception raised while receiving or reading an upload"""
        if isinstance(error, RequestEntityTooLarge):
            return format_error(ErrorCode.CSV_FILE_TOO_LARGE, {'max_size_mb': self.max_csv_size_mb})
        if isinstance(error, UnicodeDecodeError):
            return format_error(ErrorCode.CSV_READ_ERROR, {
                'file_name': file_name, 'reason': 'file is not valid UTF-8 text'
            })
        if isinstance(error, csv.Error):
            return format_error(ErrorCode.CSV_PARSE_ERROR, {'file_name': file_name, 'reason': str(error)})
        if isinstance(error, OSError):
            return format_error(ErrorCode.CSV_READ_ERROR, {'file_name': file_name, 'reason': str(error)})
        return format_error(ErrorCode.UNKNOWN_ERROR, {'file_name': file_name, 'reason': str(error)})

    def handle_account_creation_error(self, error: Exception, member_id: Optional[str],
                                      phone_number: Optional[str] = None,
                                      email: Optional[str] = None) -> Dict[str, Any]:
        """
        Map a failure while persisting a member. A unique constraint violation
        from the store is reported the same way as a duplicate found up front.
        """
        details = {'member_id': member_id, 'phone_number': phone_number, 'email': email}
        if isinstance(error, IntegrityError):
            text = str(getattr(error, 'orig', error)).lower()
            if 'unique' in text or 'duplicate' in text:
                for column, code in _UNIQUE_COLUMN_CODES:
                    if column in text:
                        return format_error(code, details)
            return format_error(ErrorCode.USER_SAVE_ERROR, {**details, 'reason': 'constraint violation'})
        if isinstance(error, SQLAlchemyError):
            return format_error(ErrorCode.USER_SAVE_ERROR, {**details, 'reason': str(error)})
        return format_error(ErrorCode.ACCOUNT_CREATION_FAILED, {**details, 'reason': str(error)})

    def handle_notification_error(self, error: Union[Exception, str], channel: NotificationChannel,
                                  member_id: Optional[str]) -> Dict[str, Any]:
        channel = NotificationChannel(channel)
        code = ErrorCode.SMS_SEND_FAILED if channel == NotificationChannel.SMS else ErrorCode.EMAIL_SEND_FAILED
        return format_error(code, {'member_id': member_id, 'channel': channel.value, 'reason': str(error)})

    def handle_database_error(self, error: Exception, operation: str) -> Dict[str, Any]:
        if isinstance(error, IntegrityError):
            return format_error(ErrorCode.TRANSACTION_ROLLBACK, {'operation': operation, 'reason': str(error.orig)})
        if isinstance(error, OperationalError):
            return format_error(ErrorCode.DATABASE_ERROR, {'operation': operation, 'reason': 'database unavailable'})
        return format_error(ErrorCode.DATABASE_ERROR, {'operation': operation, 'reason': str(error)})

    # Fire-and-forget recording

    def log_error(self, actor_id: Optional[int], formatted: Dict[str, Any],
                  context: Optional[Dict[str, Any]] = None) -> bool:
        """Write an IMPORT_ERROR audit record for a formatted error"""
        metadata = {'error_code': formatted['code'], 'details': _json_safe(formatted.get('details'))}
        metadata.update(_json_safe(context or {}))
        return self.audit_log.record(actor_id, ActivityAction.IMPORT_ERROR, formatted['message'], metadata)

    def record_import_error(self, import_id: Optional[int], formatted: Dict[str, Any],
                            row_number: Optional[int] = None, member_id: Optional[str] = None) -> bool:
        """Append a formatted error to an import's error list"""
        if import_id is None:
            return False
        session = self.import_operation_repository.session
        try:
            with session.begin_nested():
                self.import_operation_repository.append_error(
                    import_id,
                    error_code=formatted['code'],
                    error_message=formatted['message'],
                    row_number=row_number,
                    member_id=member_id,
                )
            return True
        except SQLAlchemyError as e:
            logger.warning("Import error entry dropped", import_id=import_id, code=formatted['code'], error=str(e))
            return False

    def mark_member_notification_failed(self, member, channel: NotificationChannel) -> bool:
        """Move a member into the channel's failure state if the transition table allows it"""
        target = ActivationStatus.failed_for(channel)
        session = self.user_repository.session
        try:
            with session.begin_nested():
                self.user_repository.transition_status(member, target)
            return True
        except InvalidStatusTransition as e:
            logger.info("Failure status not applied", member_id=member.member_id, reason=str(e))
            return False
        except SQLAlchemyError as e:
            logger.warning("Could not mark member notification failure",
                           member_id=member.member_id, channel=NotificationChannel(channel).value, error=str(e))
            return False


def _json_safe(value: Any) -> Any:
    """Coerce values destined for the JSON audit metadata column"""
    if isinstance(value, dict):
        return {str(k): _json_safe(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [_json_safe(v) for v in value]
    if isinstance(value, Enum):
        return value.value
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    return str(value)
