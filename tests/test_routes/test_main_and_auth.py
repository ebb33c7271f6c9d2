"""
Tests for the health check, dev login and role enforcement.
"""


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.get_json() == {"status": "healthy", "database": "connected"}


class TestDevLogin:
    def test_sign_in_by_role(self, client, users):
        response = client.get("/auth/dev-login?role=it")

        assert response.status_code == 200
        assert response.get_json()["user"]["id"] == users["it"]

        me = client.get("/auth/me")
        assert me.status_code == 200
        assert me.get_json()["user"]["role_name"] == "it"

    def test_sign_in_by_id(self, client, users):
        response = client.get(f"/auth/dev-login?user_id={users['rh']}")
        assert response.get_json()["user"]["email"] == "rh@example.com"

    def test_unknown_role(self, client, users):
        response = client.get("/auth/dev-login?role=nobody")
        assert response.status_code == 404
        assert response.get_json()["error"] == "NOT_FOUND"

    def test_disabled(self, app, client, users):
        app.config["DEV_LOGIN_ENABLED"] = False
        assert client.get("/auth/dev-login").status_code == 404

    def test_logout(self, client, users):
        client.get("/auth/dev-login?role=admin")

        assert client.get("/auth/logout").status_code == 200
        assert client.get("/auth/me").status_code == 401


class TestAccessControl:
    def test_anonymous_gets_json_401(self, client):
        response = client.get("/equipment/")
        assert response.status_code == 401
        assert response.get_json()["error"] == "UNAUTHORIZED"

    def test_viewer_can_read_but_not_write(self, signed_in):
        client = signed_in("viewer")

        assert client.get("/equipment/").status_code == 200
        response = client.post("/equipment/", json={"serial_number": "AB12CD"})
        assert response.status_code == 403
        assert response.get_json()["error"] == "FORBIDDEN"

    def test_it_cannot_validate_returns(self, signed_in):
        client = signed_in("it")
        assert client.post("/returns/1/validate", json={}).status_code == 403

    def test_assets_endpoints_need_it_or_admin(self, signed_in):
        client = signed_in("rh")
        assert client.get("/assets/pending").status_code == 403
