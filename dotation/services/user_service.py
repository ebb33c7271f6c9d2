"""
User service: directory lookup and provisioning.

The allocation engine consumes the directory only through
``get_user_by_id`` and ``get_user_by_email``.  Authentication is
handled by Entra ID; this service manages the local user records that
carry the role name and the profile snapshot.
"""

import logging
from datetime import datetime, timezone

from dotation.errors import ConflictError, ValidationError
from dotation.extensions import db
from dotation.models.user import ROLE_NAMES, ROLE_VIEWER, User
from dotation.services import audit_service

logger = logging.getLogger(__name__)


# -- User lookup -----------------------------------------------------------


def get_user_by_id(user_id: int) -> User | None:
    """Return a user by primary key, or None if not found."""
    return db.session.get(User, user_id)


def get_user_by_email(email: str) -> User | None:
    """Return a user by email address (case-insensitive)."""
    if not email:
        return None
    return User.query.filter(User.email.ilike(email.strip())).first()


def get_user_by_entra_id(entra_object_id: str) -> User | None:
    """Return a user by their Entra ID object ID."""
    return User.query.filter_by(entra_object_id=entra_object_id).first()


# -- User creation and provisioning ----------------------------------------


def provision_user(
    email: str,
    display_name: str,
    role_name: str = ROLE_VIEWER,
    provisioned_by: int | None = None,
    entra_object_id: str | None = None,
    **profile,
) -> User:
    """
    Create a new user with the specified role.

    Used by the seed command to pre-provision users before their first
    login, or by the auth service to auto-create users on first OAuth
    login.

    Args:
        email:            User's email address.
        display_name:     Full display name.
        role_name:        Role to assign (defaults to viewer).
        provisioned_by:   ID of the admin who created the user, or None.
        entra_object_id:  Entra object ID if known.
        **profile:        Optional profile fields (given_name, surname,
                          department, job_title, office_location).

    Returns:
        The newly created User record.

    Raises:
        ValidationError: If the role name is unknown.
        ConflictError:   If the email is already taken.
    """
    if role_name not in ROLE_NAMES:
        raise ValidationError(
            f"Role '{role_name}' is not valid.",
            errors=[{"field": "role_name", "value": role_name}],
        )
    if get_user_by_email(email) is not None:
        raise ConflictError(f"User {email} already exists.", {"email": email})

    allowed = {"given_name", "surname", "department", "job_title", "office_location"}
    user = User(
        email=email,
        display_name=display_name,
        role_name=role_name,
        entra_object_id=entra_object_id,
        **{key: value for key, value in profile.items() if key in allowed},
    )
    db.session.add(user)
    db.session.flush()  # Get the user ID for audit logging.

    audit_service.log_change(
        user_id=provisioned_by,
        action_type="CREATE",
        entity_type="user",
        entity_id=user.id,
        new_value={"email": email, "display_name": display_name, "role": role_name},
    )
    db.session.commit()

    logger.info("Provisioned user %s with role %s", email, role_name)
    return user


def record_login(user: User, claims: dict | None = None) -> User:
    """
    Stamp ``last_login`` and refresh the profile snapshot from token claims.

    Only claims that are present overwrite the stored profile.  The
    caller commits.
    """
    user.last_login = datetime.now(timezone.utc)
    claims = claims or {}
    for claim, attr in (
        ("name", "display_name"),
        ("given_name", "given_name"),
        ("family_name", "surname"),
        ("department", "department"),
        ("jobTitle", "job_title"),
        ("officeLocation", "office_location"),
    ):
        if claims.get(claim):
            setattr(user, attr, claims[claim])
    return user
