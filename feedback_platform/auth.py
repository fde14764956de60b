"""Session-cookie authentication and role checks."""

import functools
import logging

from flask import g, session

from feedback_platform.errors import Forbidden, Unauthorized
from feedback_platform.storage import get_storage

logger = logging.getLogger(__name__)


def authenticate(username, password):
    user = get_storage().get_user_by_username(username)
    if user is None or not user.check_password(password):
        logger.warning("Failed login for %s", username)
        return None
    return user


def login_user(user):
    session.clear()
    session['user_id'] = user.id
    session['role'] = user.role
    session['username'] = user.username
    g.current_user = user
    logger.info("User %s logged in", user.username)


def logout_user():
    if 'username' in session:
        logger.info("User %s logged out", session['username'])
    session.clear()
    g.pop('current_user', None)


def current_user():
    if 'current_user' not in g:
        user_id = session.get('user_id')
        g.current_user = get_storage().get_user(user_id) if user_id else None
    return g.current_user


def _require(roles=None):
    def decorator(view):
        @functools.wraps(view)
        def wrapped(*args, **kwargs):
            user = current_user()
            if user is None:
                raise Unauthorized("Unauthorized")
            if roles is not None and user.role not in roles:
                raise Forbidden("Forbidden")
            return view(*args, **kwargs)
        return wrapped
    return decorator


login_required = _require()
admin_required = _require(('admin',))
# Admins can do everything an assessor can
assessor_required = _require(('assessor', 'admin'))
