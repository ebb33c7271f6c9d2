"""
Routes for the auth blueprint: login, logout, and OAuth2 callback.

The login flow redirects to Microsoft Entra ID for authentication.
After successful auth, the callback route exchanges the authorization
code for tokens and logs the user in via Flask-Login.

``/dev-login`` bypasses OAuth2 and signs in as a seeded local user.
It only answers when ``DEV_LOGIN_ENABLED`` is set.
"""

import logging
import uuid

from flask import abort, current_app, jsonify, redirect, request, session
from flask_login import current_user, login_required, login_user, logout_user
from flask_wtf.csrf import generate_csrf

from dotation.blueprints.auth import bp
from dotation.models.user import User
from dotation.services import auth_service

logger = logging.getLogger(__name__)


@bp.route("/login")
def login():
    """
    Initiate the OAuth2 login flow.

    Generates a state token and redirects to the Microsoft login page.
    """
    if current_user.is_authenticated:
        return jsonify({"user": current_user.to_dict()})

    # Random state token to prevent CSRF on the callback.
    state = str(uuid.uuid4())
    session["oauth_state"] = state

    return redirect(auth_service.get_auth_url(state=state))


@bp.route("/callback")
def callback():
    """
    Handle the OAuth2 redirect from Microsoft Entra ID.

    Validates the state parameter, exchanges the authorization code
    for tokens and logs the user in.
    """
    if request.args.get("state") != session.pop("oauth_state", None):
        return _auth_failed("invalid state parameter")

    if "error" in request.args:
        return _auth_failed(request.args.get("error_description", "Unknown error"))

    auth_code = request.args.get("code")
    if not auth_code:
        return _auth_failed("no authorization code received")

    try:
        token_result = auth_service.acquire_token_by_code(auth_code)
        user = auth_service.process_login(token_result)
    except ValueError as exc:
        return _auth_failed(str(exc))

    login_user(user)
    return jsonify({"user": user.to_dict()})


@bp.route("/logout")
@login_required
def logout():
    """Clear the Flask session and the Flask-Login session."""
    auth_service.process_logout(current_user.id)
    logout_user()
    return jsonify({"message": "Signed out."})


@bp.route("/me")
@login_required
def me():
    """Return the signed-in user."""
    return jsonify({"user": current_user.to_dict()})


@bp.route("/csrf-token")
def csrf_token():
    """Hand out a CSRF token for the ``X-CSRFToken`` header."""
    return jsonify({"csrf_token": generate_csrf()})


# =========================================================================
# Development-Only Routes
# =========================================================================


@bp.route("/dev-login")
def dev_login():
    """
    Development-only login bypass.

    Query Parameters:
        user_id (int): Specific user to sign in as.  Wins over ``role``.
        role (str):    First active user with this role.  Defaults to
                       ``admin``.

    Seed the users first with ``flask seed-dev-users``.
    """
    if not current_app.config.get("DEV_LOGIN_ENABLED"):
        abort(404)

    user_id_param = request.args.get("user_id", type=int)
    role_param = request.args.get("role", "admin").strip().lower()

    query = User.query.filter(User.is_active == True)  # pylint: disable=singleton-comparison
    if user_id_param is not None:
        target_user = query.filter(User.id == user_id_param).first()
    else:
        target_user = query.filter(User.role_name == role_param).order_by(User.id).first()

    if target_user is None:
        return (
            jsonify(
                {
                    "error": "NOT_FOUND",
                    "message": "No matching active user. Run: flask seed-dev-users",
                    "details": {"user_id": user_id_param, "role": role_param},
                }
            ),
            404,
        )

    auth_service.complete_login(target_user)
    login_user(target_user)
    logger.info("Dev login as %s (%s)", target_user.email, target_user.role_name)
    return jsonify({"user": target_user.to_dict()})


def _auth_failed(reason: str):
    logger.warning("Authentication failed: %s", reason)
    return (
        jsonify(
            {
                "error": "UNAUTHORIZED",
                "message": f"Authentication failed: {reason}",
                "details": {},
            }
        ),
        401,
    )
