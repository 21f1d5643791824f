# routes/auth.py

from flask import Blueprint, jsonify, request, current_app
from flask_login import login_user, logout_user, login_required
from routes.responses import respond, bad_request
from logging_config import get_logger

logger = get_logger(__name__)

auth_bp = Blueprint('auth', __name__, url_prefix='/api/auth')


def _payload():
    return request.get_json(silent=True) or request.form.to_dict()


@auth_bp.route('/login', methods=['POST'])
def login():
    """Permanent-password login for activated members and administrators"""
    payload = _payload()
    result = current_app.services.get('member_activation').authenticate(
        payload.get('username', ''), payload.get('password', '')
    )
    if result.is_failure:
        return respond(result)

    user = result.data
    login_user(user, remember=bool(payload.get('remember')))
    logger.info("User logged in", user_id=user.id)
    return jsonify({'success': True, 'data': {
        'id': user.id,
        'member_id': user.member_id,
        'full_name': user.full_name,
        'role': user.role,
    }}), 200


@auth_bp.route('/logout', methods=['POST'])
@login_required
def logout():
    logout_user()
    return jsonify({'success': True, 'data': {}}), 200


@auth_bp.route('/activate', methods=['POST'])
def activate():
    """Exchange the SMS temporary password for a permanent one"""
    payload = _payload()
    missing = [key for key in ('member_id', 'temporary_password', 'new_password') if not payload.get(key)]
    if missing:
        return bad_request('Missing required fields', details={'missing': missing})

    return respond(current_app.services.get('member_activation').complete_activation(
        payload['member_id'].strip(),
        payload['temporary_password'],
        payload['new_password'],
        method=payload.get('method', 'sms'),
    ))


@auth_bp.route('/activate-token', methods=['POST'])
def activate_with_token():
    """Activation from the emailed link"""
    payload = _payload()
    if not payload.get('token') or not payload.get('new_password'):
        return bad_request('token and new_password are required')

    return respond(current_app.services.get('member_activation').activate_with_token(
        payload['token'], payload['new_password']
    ))
