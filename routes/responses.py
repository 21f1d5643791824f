"""
JSON response helpers shared by the API blueprints
"""

from flask import jsonify
from services.common.result import Result, PagedResult
from services.import_error_service import ErrorCode

NOT_FOUND_CODES = {ErrorCode.MEMBER_NOT_FOUND.value, ErrorCode.IMPORT_NOT_FOUND.value}
UNAUTHORIZED_CODES = {ErrorCode.INVALID_CREDENTIALS.value, ErrorCode.TOKEN_EXPIRED.value}
CONFLICT_CODES = {
    ErrorCode.DUPLICATE_MEMBER_ID.value,
    ErrorCode.DUPLICATE_PHONE_NUMBER.value,
    ErrorCode.DUPLICATE_EMAIL.value,
    ErrorCode.NOT_IMPORTED_MEMBER.value,
    ErrorCode.INVALID_ACTIVATION_STATUS.value,
    ErrorCode.MAX_RETRIES_EXCEEDED.value,
    ErrorCode.BACKOFF_ACTIVE.value,
    ErrorCode.RECOVERY_NOT_POSSIBLE.value,
}
SERVER_ERROR_CODES = {
    ErrorCode.DATABASE_ERROR.value,
    ErrorCode.TRANSACTION_ROLLBACK.value,
    ErrorCode.IMPORT_OPERATION_ERROR.value,
    ErrorCode.OPERATION_INTERRUPTED.value,
    ErrorCode.UNKNOWN_ERROR.value,
}


def status_for(code):
    if code in UNAUTHORIZED_CODES:
        return 401
    if code in NOT_FOUND_CODES:
        return 404
    if code in CONFLICT_CODES:
        return 409
    if code in SERVER_ERROR_CODES:
        return 500
    return 400


def respond(result: Result, success_status: int = 200):
    if result.is_failure:
        return jsonify({'success': False, 'error': result.to_error_dict()}), status_for(result.error_code)
    body = {'success': True, 'data': result.data}
    if isinstance(result, PagedResult):
        body['pagination'] = result.pagination()
        if result.metadata:
            body['meta'] = result.metadata
    return jsonify(body), success_status


def bad_request(message, code=ErrorCode.INVALID_MEMBER_DATA.value, details=None):
    return jsonify({'success': False, 'error': {'code': code, 'message': message, 'details': details or {}}}), 400
