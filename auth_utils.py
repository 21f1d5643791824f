# auth_utils.py
"""
Authentication helpers for the JSON API
"""

from functools import wraps
from flask import current_app, g, jsonify
from flask_login import current_user as flask_current_user


class _TestingAdmin:
    """Stand-in admin used when LOGIN_DISABLED is set"""
    id = 1
    full_name = 'Test Admin'
    username = 'test_admin'
    role = 'admin'
    is_admin = True
    is_active = True
    is_authenticated = True
    is_anonymous = False

    def get_id(self):
        return str(self.id)


def get_current_user():
    """Current user, respecting LOGIN_DISABLED for tests"""
    if current_app.config.get('LOGIN_DISABLED', False):
        if not hasattr(g, 'mock_user'):
            g.mock_user = _TestingAdmin()
        return g.mock_user
    return flask_current_user


def _auth_error(code: str, message: str, status: int):
    return jsonify({'success': False, 'error': {'code': code, 'message': message, 'details': {}}}), status


def admin_required(f):
    """401 when not logged in, 403 when logged in without the admin role"""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        user = get_current_user()
        if not user or not user.is_authenticated:
            return _auth_error('UNAUTHORIZED', 'Authentication required', 401)
        if not user.is_admin:
            return _auth_error('FORBIDDEN', 'Administrator access required', 403)
        g.user_id = user.id
        return f(*args, **kwargs)
    return decorated_function
