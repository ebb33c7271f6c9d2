"""
Authorization decorators for route-level access control.

Used together with Flask-Login's ``@login_required``::

    @bp.route("/<int:return_id>/validate", methods=["POST"])
    @login_required
    @role_required("admin", "rh")
    def validate(return_id):
        ...
"""

import logging
from functools import wraps

from flask import abort, request
from flask_login import current_user

logger = logging.getLogger(__name__)


def role_required(*role_names: str):
    """
    Decorator that restricts access to users with one of the specified roles.

    Args:
        role_names: One or more role names (``admin``, ``it``, ``rh``, ``viewer``).
    """

    def decorator(func):
        @wraps(func)
        def wrapper(*args, **kwargs):
            # current_user is guaranteed authenticated by @login_required.
            if not current_user.is_authenticated:
                abort(401)
            if not current_user.has_role(*role_names):
                logger.warning(
                    "Access denied: user %d (%s) with role '%s' "
                    "attempted %s %s (requires one of: %s)",
                    current_user.id,
                    current_user.email,
                    current_user.role_name,
                    request.method,
                    request.path,
                    ", ".join(role_names),
                )
                abort(403)
            return func(*args, **kwargs)

        return wrapper

    return decorator
