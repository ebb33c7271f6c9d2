"""
Tests for the asset API client's URL building, paging and error mapping.
"""

import pytest
import urllib3

from dotation.errors import NotFoundError, SyncError
from dotation.services.assets_client import AssetsApiClient, build_type_query

BASE = "https://api.atlassian.com/jsm/assets/workspace/test-workspace/v1"


@pytest.fixture()
def make_client(db_session, fake_http):
    def _make(*responses):
        http = fake_http(responses)
        return AssetsApiClient(http=http), http

    return _make


class TestGetObject:
    def test_fetches_object(self, make_client, fake_response):
        client, http = make_client(fake_response(200, {"id": "100", "attributes": []}))

        obj = client.get_object("100")

        assert obj == {"id": "100", "attributes": []}
        call = http.calls[0]
        assert call["method"] == "GET"
        assert call["url"] == f"{BASE}/object/100"
        assert call["headers"]["Accept"] == "application/json"
        assert call["timeout"].read_timeout == 30

    def test_bulk_uses_long_timeout(self, make_client, fake_response):
        client, http = make_client(fake_response(200, {"id": "100"}))
        client.get_object("100", bulk=True)
        assert http.calls[0]["timeout"].read_timeout == 300

    def test_404_is_not_found(self, make_client, fake_response):
        client, _ = make_client(fake_response(404, {"errorMessages": ["gone"]}))
        with pytest.raises(NotFoundError):
            client.get_object("100")

    def test_server_error_carries_status_and_id(self, make_client, fake_response):
        client, _ = make_client(fake_response(500))
        with pytest.raises(SyncError) as excinfo:
            client.get_object("100")
        assert excinfo.value.status == 500
        assert excinfo.value.external_asset_id == "100"

    def test_transport_error(self, make_client):
        client, _ = make_client(urllib3.exceptions.MaxRetryError(None, "/", "refused"))
        with pytest.raises(SyncError, match="unreachable"):
            client.get_object("100")

    def test_invalid_json(self, make_client, fake_response):
        client, _ = make_client(fake_response(200, data=b"<html>"))
        with pytest.raises(SyncError, match="Invalid JSON"):
            client.get_object("100")


class TestWrites:
    def test_update_object_sends_attributes(self, make_client, fake_response):
        client, http = make_client(fake_response(200, {"id": "100"}))
        attributes = [
            {"objectTypeAttributeId": "7", "objectAttributeValues": [{"value": "affecté"}]}
        ]

        client.update_object("100", attributes)

        call = http.calls[0]
        assert call["method"] == "PUT"
        assert call["url"] == f"{BASE}/object/100"
        assert call["body"] == {"attributes": attributes}

    def test_update_failure_names_attributes(self, make_client, fake_response):
        client, _ = make_client(fake_response(503))
        with pytest.raises(SyncError) as excinfo:
            client.update_object("100", [{"objectTypeAttributeId": "7"}])
        assert excinfo.value.attribute_ids == ["7"]
        assert excinfo.value.status == 503

    def test_empty_body_returns_none(self, make_client, fake_response):
        client, _ = make_client(fake_response(204))
        assert client.update_object("100", []) is None

    def test_create_object(self, make_client, fake_response):
        client, http = make_client(fake_response(201, {"id": "555"}))
        created = client.create_object("23", [])
        assert created == {"id": "555"}
        assert http.calls[0]["url"] == f"{BASE}/object/create"
        assert http.calls[0]["body"] == {"objectTypeId": "23", "attributes": []}


class TestQuery:
    def test_collects_pages_until_total(self, make_client, fake_response):
        client, http = make_client(
            fake_response(200, {"values": [{"id": "1"}, {"id": "2"}], "total": 3}),
            fake_response(200, {"values": [{"id": "3"}], "total": 3}),
        )

        objects = client.query("objectTypeId = 23", page_size=2)

        assert [o["id"] for o in objects] == ["1", "2", "3"]
        assert http.calls[0]["url"] == f"{BASE}/object/aql?startAt=0&maxResults=2"
        assert http.calls[1]["url"] == f"{BASE}/object/aql?startAt=2&maxResults=2"
        assert http.calls[0]["body"] == {"qlQuery": "objectTypeId = 23"}

    def test_stops_at_limit(self, make_client, fake_response):
        client, http = make_client(
            fake_response(200, {"values": [{"id": "1"}, {"id": "2"}], "total": 10}),
        )
        objects = client.query("objectTypeId = 23", page_size=2, limit=1)
        assert objects == [{"id": "1"}]
        assert len(http.calls) == 1

    def test_short_page_ends_paging(self, make_client, fake_response):
        client, http = make_client(fake_response(200, {"values": [{"id": "1"}]}))
        assert client.query("objectTypeId = 23", page_size=50) == [{"id": "1"}]
        assert len(http.calls) == 1

    def test_find_objects_by_names(self, make_client, fake_response):
        client, http = make_client(fake_response(200, {"values": []}))
        client.find_objects(schema_name="Parc Informatique", object_type_name="Laptop")
        assert http.calls[0]["body"] == {
            "qlQuery": 'objectSchema = "Parc Informatique" AND objectType = "Laptop"'
        }


class TestBuildTypeQuery:
    def test_id_wins(self):
        assert build_type_query("23", "Parc", "Laptop") == "objectTypeId = 23"

    def test_requires_a_selector(self):
        with pytest.raises(ValueError):
            build_type_query(schema_name="Parc")
