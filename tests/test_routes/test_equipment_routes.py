"""
Tests for the equipment registry endpoints.
"""


class TestEquipmentRoutes:
    def test_create_and_read(self, signed_in):
        client = signed_in("it")

        created = client.post(
            "/equipment/",
            json={"serial_number": "5CG1234XYZ", "type": "laptop", "brand": "Dell"},
        )
        assert created.status_code == 201
        equipment_id = created.get_json()["id"]

        detail = client.get(f"/equipment/{equipment_id}")
        assert detail.status_code == 200
        assert detail.get_json()["brand"] == "Dell"

        listing = client.get("/equipment/?q=5CG")
        assert listing.get_json()["total"] == 1
        assert listing.get_json()["equipment"][0]["serial_number"] == "5CG1234XYZ"

    def test_duplicate_serial_is_conflict(self, signed_in):
        client = signed_in("admin")
        client.post("/equipment/", json={"serial_number": "5CG1234XYZ"})

        response = client.post("/equipment/", json={"serial_number": "5CG1234XYZ"})

        assert response.status_code == 409
        assert response.get_json()["error"] == "CONFLICT"

    def test_invalid_payload(self, signed_in):
        client = signed_in("admin")
        response = client.post("/equipment/", json={"type": "toaster"})
        assert response.status_code == 400
        fields = [e["field"] for e in response.get_json()["details"]["errors"]]
        assert fields == ["serial_number", "type"]

    def test_non_object_body(self, signed_in):
        client = signed_in("admin")
        response = client.post("/equipment/", json=["5CG1234XYZ"])
        assert response.status_code == 400

    def test_assign_and_release(self, signed_in, users):
        client = signed_in("it")
        equipment_id = client.post("/equipment/", json={"serial_number": "5CG1234XYZ"}).get_json()[
            "id"
        ]

        assigned = client.post(
            f"/equipment/{equipment_id}/assign", json={"user_id": users["viewer"]}
        )
        assert assigned.status_code == 200
        assert assigned.get_json()["status"] == "assigned"
        assert client.get("/equipment/available").get_json()["equipment"] == []

        released = client.post(f"/equipment/{equipment_id}/release")
        assert released.get_json()["status"] == "available"
        assert released.get_json()["assigned_user_id"] is None

    def test_assign_requires_user(self, signed_in):
        client = signed_in("it")
        equipment_id = client.post("/equipment/", json={"serial_number": "5CG1234XYZ"}).get_json()[
            "id"
        ]
        response = client.post(f"/equipment/{equipment_id}/assign", json={})
        assert response.status_code == 400

    def test_missing_item(self, signed_in):
        client = signed_in("viewer")
        response = client.get("/equipment/404")
        assert response.status_code == 404
        assert response.get_json()["error"] == "NOT_FOUND"

    def test_delete_free_item(self, signed_in):
        client = signed_in("it")
        equipment_id = client.post("/equipment/", json={"serial_number": "5CG1234XYZ"}).get_json()[
            "id"
        ]

        response = client.delete(f"/equipment/{equipment_id}")

        assert response.status_code == 204
        assert client.get(f"/equipment/{equipment_id}").status_code == 404

    def test_delete_assigned_item_is_conflict(self, signed_in, users):
        client = signed_in("it")
        equipment_id = client.post("/equipment/", json={"serial_number": "5CG1234XYZ"}).get_json()[
            "id"
        ]
        client.post(f"/equipment/{equipment_id}/assign", json={"user_id": users["viewer"]})

        response = client.delete(f"/equipment/{equipment_id}")

        assert response.status_code == 409
        assert client.get(f"/equipment/{equipment_id}").get_json()["status"] == "assigned"

    def test_delete_requires_it_role(self, signed_in):
        client = signed_in("it")
        equipment_id = client.post("/equipment/", json={"serial_number": "5CG1234XYZ"}).get_json()[
            "id"
        ]

        response = signed_in("viewer").delete(f"/equipment/{equipment_id}")

        assert response.status_code == 403
