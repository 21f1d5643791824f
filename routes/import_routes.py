"""
Import routes - JSON API for bulk member import, invitations and recovery
"""

from flask import Blueprint, jsonify, request, current_app
from werkzeug.exceptions import HTTPException, RequestEntityTooLarge
from auth_utils import admin_required, get_current_user
from routes.responses import respond, bad_request
from services.import_error_service import ErrorCode
from logging_config import get_logger

logger = get_logger(__name__)

imports_bp = Blueprint('imports', __name__, url_prefix='/api/imports')


def _actor():
    user = get_current_user()
    return user.id, getattr(user, 'full_name', None)


def _int_arg(name, default):
    try:
        return int(request.args.get(name, default))
    except (TypeError, ValueError):
        return default


def _member_id_list(payload):
    member_ids = payload.get('member_ids')
    if not isinstance(member_ids, list) or not member_ids:
        return None
    return [str(member_id).strip() for member_id in member_ids if str(member_id).strip()]


@imports_bp.errorhandler(Exception)
def handle_unexpected_error(error):
    if isinstance(error, RequestEntityTooLarge):
        formatted = current_app.services.get('import_error').handle_csv_upload_error(error)
        return jsonify({'success': False, 'error': formatted}), 400
    if isinstance(error, HTTPException):
        return error
    logger.exception("Unhandled error in import API", error=str(error))
    return jsonify({'success': False, 'error': {
        'code': ErrorCode.UNKNOWN_ERROR.value,
        'message': 'An unexpected error occurred',
        'details': {},
    }}), 500


# CSV upload

@imports_bp.route('/upload', methods=['POST'])
@admin_required
def upload_csv_preview():
    """Validate an uploaded CSV and return a preview. Nothing is persisted."""
    service = current_app.services.get('csv_import')
    saved = service.save_upload(request.files.get('file'))
    if saved.is_failure:
        return respond(saved)
    try:
        return respond(service.generate_preview(saved.data['path'], saved.data['file_name']))
    finally:
        service.discard_upload(saved.data['path'])


@imports_bp.route('/confirm', methods=['POST'])
@admin_required
def confirm_import():
    """Re-validate the CSV and create accounts for its valid rows"""
    service = current_app.services.get('csv_import')
    saved = service.save_upload(request.files.get('file'))
    if saved.is_failure:
        return respond(saved)
    admin_id, admin_name = _actor()
    try:
        result = service.confirm_import(saved.data['path'], saved.data['file_name'], admin_id, admin_name)
    finally:
        service.discard_upload(saved.data['path'])
    return respond(result, success_status=201)


# Imported members

@imports_bp.route('/members', methods=['GET'])
@admin_required
def get_imported_members():
    service = current_app.services.get('member_query')
    import_id = request.args.get('import_id', type=int)
    return respond(service.get_imported_members(
        status=request.args.get('status'),
        search=request.args.get('search'),
        sort_by=request.args.get('sort_by', 'created_at'),
        sort_order=request.args.get('sort_order', 'desc'),
        page=_int_arg('page', 1),
        per_page=_int_arg('per_page', 20),
        import_id=import_id,
    ))


@imports_bp.route('/members/<member_id>', methods=['GET'])
@admin_required
def get_member_detail(member_id):
    return respond(current_app.services.get('member_query').get_member_detail(member_id))


# Notification retry

@imports_bp.route('/retry-sms/<member_id>', methods=['POST'])
@admin_required
def retry_sms(member_id):
    payload = request.get_json(silent=True) or {}
    admin_id, _ = _actor()
    result = current_app.services.get('notification_retry').retry_sms(
        member_id, admin_id, credential=payload.get('temporary_password'), is_manual_retry=True
    )
    return respond(result)


@imports_bp.route('/retry-email/<member_id>', methods=['POST'])
@admin_required
def retry_email(member_id):
    admin_id, _ = _actor()
    result = current_app.services.get('notification_retry').retry_email(member_id, admin_id, is_manual_retry=True)
    return respond(result)


@imports_bp.route('/bulk-retry', methods=['POST'])
@admin_required
def bulk_retry_notifications():
    payload = request.get_json(silent=True) or {}
    member_ids = _member_id_list(payload)
    if not member_ids:
        return bad_request('member_ids must be a non-empty list')
    admin_id, _ = _actor()
    channel = payload.get('notification_type') or payload.get('channel')
    return respond(current_app.services.get('notification_retry').retry_failed_notifications(
        member_ids, channel, admin_id
    ))


@imports_bp.route('/retry-status/<member_id>', methods=['GET'])
@admin_required
def get_retry_status(member_id):
    return respond(current_app.services.get('notification_retry').get_retry_status(member_id))


# Resend

@imports_bp.route('/resend-invitation/<member_id>', methods=['POST'])
@admin_required
def resend_invitation(member_id):
    payload = request.get_json(silent=True) or {}
    admin_id, _ = _actor()
    return respond(current_app.services.get('resend_invitation').resend(
        member_id, admin_id, payload.get('delivery_method', 'sms')
    ))


@imports_bp.route('/bulk-resend-invitations', methods=['POST'])
@admin_required
def bulk_resend_invitations():
    payload = request.get_json(silent=True) or {}
    member_ids = _member_id_list(payload)
    if not member_ids:
        return bad_request('member_ids must be a non-empty list')
    admin_id, _ = _actor()
    return respond(current_app.services.get('resend_invitation').bulk_resend(
        member_ids, admin_id, payload.get('delivery_method', 'sms')
    ))


# Import history and recovery

@imports_bp.route('/history', methods=['GET'])
@admin_required
def get_import_history():
    return respond(current_app.services.get('member_query').get_import_history(
        page=_int_arg('page', 1), per_page=_int_arg('per_page', 20), status=request.args.get('status')
    ))


@imports_bp.route('/history/<int:import_id>', methods=['GET'])
@admin_required
def get_import_details(import_id):
    return respond(current_app.services.get('member_query').get_import_details(import_id))


@imports_bp.route('/history/<int:import_id>/members', methods=['GET'])
@admin_required
def get_import_members(import_id):
    return respond(current_app.services.get('member_query').get_import_members(
        import_id, status=request.args.get('status'),
        page=_int_arg('page', 1), per_page=_int_arg('per_page', 20)
    ))


@imports_bp.route('/recovery/<int:import_id>', methods=['GET'])
@admin_required
def get_import_recovery_info(import_id):
    service = current_app.services.get('import_recovery')
    result = service.get_partial_import_recovery(import_id)
    if result.is_success:
        result.data['recovery'] = service.validate_recovery_possible(import_id)
    return respond(result)


@imports_bp.route('/retry/<int:import_id>', methods=['POST'])
@admin_required
def retry_failed_import(import_id):
    admin_id, admin_name = _actor()
    return respond(
        current_app.services.get('import_recovery').retry_failed_import(import_id, admin_id, admin_name),
        success_status=201,
    )
