"""
Audit service: records data changes.

Every create, update, transition and sign operation passes through
this service so that a complete audit trail is maintained.
``log_change`` is called by other services right before they commit,
so the audit row lands in the same transaction as the change.
"""

import json
import logging
from typing import Any

from flask import request

from dotation.extensions import db
from dotation.models.audit import AuditLog

logger = logging.getLogger(__name__)


# -- Write audit entries ---------------------------------------------------


def log_change(
    user_id: int | None,
    action_type: str,
    entity_type: str,
    entity_id: int | None,
    previous_value: dict[str, Any] | None = None,
    new_value: dict[str, Any] | None = None,
) -> AuditLog:
    """
    Record a data change in the audit log.

    Args:
        user_id:        ID of the user who made the change, or None for
                        system actions (e.g., asset sync from the CLI).
        action_type:    One of CREATE, UPDATE, ASSIGN, RELEASE, SIGN,
                        VALIDATE, LOGIN, LOGOUT, SYNC.
        entity_type:    Entity name (e.g., 'equipment', 'allocation').
        entity_id:      Primary key of the affected record.
        previous_value: Dict of the record state before the change.
        new_value:      Dict of the record state after the change.

    Returns:
        The newly created AuditLog record.
    """
    # Capture request metadata when available (inside a request context).
    ip_address = None
    user_agent = None
    try:
        ip_address = request.remote_addr
        user_agent = str(request.user_agent)[:500]
    except RuntimeError:
        # Outside of a request context (e.g., CLI command).
        pass

    entry = AuditLog(
        user_id=user_id,
        action_type=action_type,
        entity_type=entity_type,
        entity_id=entity_id,
        previous_value=(
            json.dumps(previous_value, default=str) if previous_value else None
        ),
        new_value=json.dumps(new_value, default=str) if new_value else None,
        ip_address=ip_address,
        user_agent=user_agent,
    )
    db.session.add(entry)
    db.session.flush()

    logger.info(
        "Audit: %s %s:%s by user %s",
        action_type,
        entity_type,
        entity_id,
        user_id,
    )
    return entry


def log_login(user_id: int) -> AuditLog:
    """Record a successful user login."""
    return log_change(
        user_id=user_id,
        action_type="LOGIN",
        entity_type="user",
        entity_id=user_id,
    )


def log_logout(user_id: int) -> AuditLog:
    """Record a user logout."""
    return log_change(
        user_id=user_id,
        action_type="LOGOUT",
        entity_type="user",
        entity_id=user_id,
    )
