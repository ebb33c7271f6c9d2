"""
Fixtures for route tests.

Rows are created inside a short-lived app context and only their IDs
leave it; requests run without an outer context so Flask-Login loads
the user fresh on every call.
"""

import pytest

from dotation.extensions import db
from dotation.models.user import User


@pytest.fixture()
def users(app):
    """One active user per role, as ``{role_name: user_id}``."""
    ids = {}
    with app.app_context():
        for role_name in ("admin", "it", "rh", "viewer"):
            user = User(
                email=f"{role_name}@example.com",
                display_name=f"{role_name.capitalize()} User",
                role_name=role_name,
            )
            db.session.add(user)
            db.session.commit()
            ids[role_name] = user.id
    return ids


@pytest.fixture()
def signed_in(client, login_as, users):
    """Sign the client in as one role and return it."""

    def _sign_in(role_name):
        login_as(client, users[role_name])
        return client

    return _sign_in
