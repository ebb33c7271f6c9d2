"""
Pytest configuration and shared fixtures.

Provides a test application backed by in-memory SQLite, a database
session, a test client, and fakes for the external asset system.  The
``testing`` configuration blanks every asset-system credential, so
nothing in the suite reaches the network.
"""

import json

import pytest

from dotation import create_app
from dotation.extensions import db as _db
from dotation.models.equipment import Equipment
from dotation.models.user import User
from dotation.services.sync_port import ExternalSyncPort


class FakeSyncPort(ExternalSyncPort):
    """Records every status push instead of calling the asset system."""

    def __init__(self):
        self.pushed = []
        self.succeed = True

    def push_status(self, equipment, status_attributes=None) -> bool:
        self.pushed.append((equipment.serial_number, equipment.status, status_attributes))
        return self.succeed


class FakeAssetsClient:
    """
    Stands in for ``AssetsApiClient``.

    ``objects`` maps object ID to the raw object dict.  ``fail_updates``
    makes ``update_object`` raise ``SyncError``.
    """

    def __init__(self, objects=None, fail_updates=False):
        self.objects = {str(k): v for k, v in (objects or {}).items()}
        self.fail_updates = fail_updates
        self.updates = []
        self.created = []
        self.queries = []
        self.next_id = 9000

    def get_object(self, object_id, bulk=False):
        from dotation.errors import NotFoundError  # pylint: disable=import-outside-toplevel

        if str(object_id) not in self.objects:
            raise NotFoundError("External asset", object_id)
        return self.objects[str(object_id)]

    def query(self, ql_query, page_size=None, limit=None, bulk=True):
        self.queries.append(ql_query)
        found = [{"id": key} for key in self.objects]
        return found[:limit] if limit is not None else found

    def update_object(self, object_id, attributes):
        from dotation.errors import SyncError  # pylint: disable=import-outside-toplevel

        if self.fail_updates:
            raise SyncError("Asset API returned status 503", status=503)
        self.updates.append((str(object_id), attributes))
        return {"id": object_id}

    def create_object(self, object_type_id, attributes):
        self.next_id += 1
        self.created.append((object_type_id, attributes))
        return {"id": str(self.next_id)}


class FakeResponse:
    def __init__(self, status=200, payload=None, data=None):
        self.status = status
        if data is not None:
            self.data = data
        else:
            self.data = json.dumps(payload).encode("utf-8") if payload is not None else b""


class FakeHttp:
    """Mimics ``urllib3.PoolManager.request``; replays queued responses."""

    def __init__(self, responses=None):
        self.responses = list(responses or [])
        self.calls = []

    def request(self, method, url, headers=None, body=None, timeout=None):
        self.calls.append(
            {
                "method": method,
                "url": url,
                "headers": headers,
                "body": json.loads(body) if body else None,
                "timeout": timeout,
            }
        )
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


@pytest.fixture()
def app():
    """
    Create a fresh application and schema for each test.

    The fake sync port is installed so engines never build a real
    asset client.
    """
    app = create_app("testing", sync_port=FakeSyncPort())
    with app.app_context():
        _db.create_all()

    yield app

    with app.app_context():
        _db.session.remove()
        _db.drop_all()


@pytest.fixture()
def db_session(app):  # pylint: disable=redefined-outer-name
    """Push an app context and hand out the scoped session."""
    with app.app_context():
        yield _db.session
        _db.session.remove()


@pytest.fixture()
def client(app):  # pylint: disable=redefined-outer-name
    """Flask test client.  Do not combine with an open ``db_session``."""
    return app.test_client()


@pytest.fixture()
def sync_port(app):  # pylint: disable=redefined-outer-name
    return app.extensions["dotation.sync_port"]


@pytest.fixture()
def login_as():
    """Sign the test client in as a user ID through the session cookie."""

    def _login(test_client, user_id):
        with test_client.session_transaction() as sess:
            sess["_user_id"] = str(user_id)
            sess["_fresh"] = True

    return _login


# -- Factories -------------------------------------------------------------


@pytest.fixture()
def make_user(db_session):  # pylint: disable=redefined-outer-name
    """Factory for committed users."""

    def _make(email="jane.doe@example.com", role_name="viewer", **kwargs):
        display_name = kwargs.pop(
            "display_name", email.split("@")[0].replace(".", " ").title()
        )
        user = User(email=email, display_name=display_name, role_name=role_name, **kwargs)
        db_session.add(user)
        db_session.commit()
        return user

    return _make


@pytest.fixture()
def make_equipment(db_session):  # pylint: disable=redefined-outer-name
    """Factory for committed equipment rows (available unless told otherwise)."""

    def _make(serial_number, **kwargs):
        equipment = Equipment(serial_number=serial_number, **kwargs)
        db_session.add(equipment)
        db_session.commit()
        return equipment

    return _make


@pytest.fixture()
def fake_assets_client():
    return FakeAssetsClient


@pytest.fixture()
def fake_http():
    return FakeHttp


@pytest.fixture()
def fake_response():
    return FakeResponse
