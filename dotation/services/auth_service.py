"""
Auth service: MSAL (Microsoft Authentication Library) integration.

Handles OAuth2/OIDC flow with Entra ID: building auth URLs, exchanging
authorization codes for tokens, extracting user identity, and
auto-provisioning new users on first login.
"""

import logging

import msal
from flask import current_app, session

from dotation.extensions import db
from dotation.services import audit_service, user_service

logger = logging.getLogger(__name__)


def _build_msal_app(cache=None) -> msal.ConfidentialClientApplication:
    """
    Create a configured MSAL ConfidentialClientApplication.

    Args:
        cache: Optional MSAL token cache for session-based caching.

    Returns:
        A configured MSAL application instance.
    """
    return msal.ConfidentialClientApplication(
        client_id=current_app.config["AZURE_CLIENT_ID"],
        client_credential=current_app.config["AZURE_CLIENT_SECRET"],
        authority=current_app.config["AZURE_AUTHORITY"],
        token_cache=cache,
    )


def get_auth_url(state: str | None = None) -> str:
    """
    Generate the Microsoft login URL for OAuth2 authorization code flow.

    Args:
        state: Optional CSRF state parameter to include in the redirect.

    Returns:
        The full Microsoft authorization URL the client should be sent to.
    """
    app = _build_msal_app()
    return app.get_authorization_request_url(
        scopes=current_app.config["AZURE_SCOPES"],
        redirect_uri=current_app.config["AZURE_REDIRECT_URI"],
        state=state,
    )


def acquire_token_by_code(auth_code: str) -> dict:
    """
    Exchange an authorization code for access and ID tokens.

    Raises:
        ValueError: If the token exchange fails.
    """
    app = _build_msal_app()
    result = app.acquire_token_by_authorization_code(
        code=auth_code,
        scopes=current_app.config["AZURE_SCOPES"],
        redirect_uri=current_app.config["AZURE_REDIRECT_URI"],
    )

    if "error" in result:
        error_desc = result.get("error_description", result["error"])
        logger.error("Token acquisition failed: %s", error_desc)
        raise ValueError(f"Authentication failed: {error_desc}")

    return result


def process_login(token_result: dict):
    """
    Process a successful OAuth2 token exchange.

    Extracts user identity from the ID token claims, looks up or
    auto-creates the local user record, records the login, and
    returns the User object for Flask-Login.

    Args:
        token_result: The dict returned by ``acquire_token_by_code``.

    Returns:
        The User model instance (existing or newly created).

    Raises:
        ValueError: If required claims are missing from the token, or
                    the matching local user is deactivated.
    """
    claims = token_result.get("id_token_claims", {})

    entra_object_id = claims.get("oid")
    email = claims.get("preferred_username") or claims.get("email")

    if not entra_object_id or not email:
        raise ValueError("ID token missing required claims (oid, preferred_username).")

    user = user_service.get_user_by_entra_id(entra_object_id)

    if user is None:
        # Check if the user was pre-provisioned by email (no Entra ID yet).
        user = user_service.get_user_by_email(email)
        if user is not None:
            user.entra_object_id = entra_object_id
            logger.info(
                "Linked pre-provisioned user %s to Entra ID %s",
                email,
                entra_object_id,
            )
        else:
            user = user_service.provision_user(
                email=email,
                display_name=claims.get("name") or email.split("@")[0],
                entra_object_id=entra_object_id,
                given_name=claims.get("given_name"),
                surname=claims.get("family_name"),
            )
            logger.info("Auto-provisioned new user: %s", email)

    if not user.is_active:
        logger.warning("Login refused for deactivated user %s", email)
        raise ValueError("This account has been deactivated.")

    return complete_login(user, claims)


def complete_login(user, claims: dict | None = None):
    """
    Record a login for an already identified user and fill the session.

    Shared by the OAuth2 callback and the development login bypass.
    """
    user_service.record_login(user, claims)
    audit_service.log_login(user.id)
    db.session.commit()

    session["user_id"] = user.id
    session["user_email"] = user.email
    session["user_role"] = user.role_name

    return user


def process_logout(user_id: int) -> None:
    """Audit the logout and clear application session keys."""
    audit_service.log_logout(user_id)
    db.session.commit()
    clear_session()


def clear_session() -> None:
    """Remove application-specific keys from the Flask session on logout."""
    for key in ("user_id", "user_email", "user_role", "oauth_state"):
        session.pop(key, None)
