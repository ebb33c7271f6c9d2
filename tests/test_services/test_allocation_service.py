"""
Tests for the allocation engine.
"""

from datetime import date

import pytest

from dotation.errors import ConflictError, NotFoundError, ValidationError
from dotation.models.allocation import Allocation
from dotation.models.equipment import Equipment
from dotation.services import allocation_service


@pytest.fixture()
def employee(make_user):
    return make_user("jane.doe@example.com", display_name="Jane Doe")


class TestCreateAllocation:
    def test_allocates_batch(self, db_session, employee, make_equipment, app):
        laptop = make_equipment("5CG1234XYZ", type="laptop", internal_id="PI-12")
        phone = make_equipment("IMEI998877", type="mobile")

        result = allocation_service.create_allocation(
            employee.id,
            [
                {"equipmentId": laptop.id, "condition": "new"},
                {"serialNumber": "IMEI998877"},
            ],
            delivery_date="2024-03-01",
            accessories=["Dock"],
        )

        allocation = result.allocation
        assert result.warnings == []
        assert allocation.status == "in_progress"
        assert allocation.user_name == "Jane Doe"
        assert allocation.user_email == "jane.doe@example.com"
        assert allocation.delivery_date == date(2024, 3, 1)
        assert allocation.standard_software == app.config["STANDARD_SOFTWARE"]
        assert [item.serial_number for item in allocation.items] == [
            "5CG1234XYZ",
            "IMEI998877",
        ]
        assert allocation.items[0].condition == "new"
        assert allocation.items[0].internal_id == "PI-12"
        assert allocation.items[1].condition == "good"
        for equipment_id in (laptop.id, phone.id):
            row = db_session.get(Equipment, equipment_id)
            assert row.status == "assigned"
            assert row.assigned_user_id == employee.id

    def test_unknown_user(self, db_session, make_equipment):
        laptop = make_equipment("5CG1234XYZ")
        with pytest.raises(NotFoundError):
            allocation_service.create_allocation(404, [{"equipmentId": laptop.id}])

    def test_empty_batch(self, db_session, employee):
        with pytest.raises(ValidationError):
            allocation_service.create_allocation(employee.id, [])

    def test_unresolved_reference_fails_whole_batch(
        self, db_session, employee, make_equipment
    ):
        laptop = make_equipment("5CG1234XYZ")
        with pytest.raises(ValidationError) as excinfo:
            allocation_service.create_allocation(
                employee.id, [{"equipmentId": laptop.id}, {"serialNumber": "NOPE"}]
            )
        assert excinfo.value.details["errors"][0]["index"] == 1
        assert Allocation.query.count() == 0
        assert db_session.get(Equipment, laptop.id).status == "available"

    def test_missing_canonical_id(self, db_session, employee):
        with pytest.raises(ValidationError) as excinfo:
            allocation_service.create_allocation(employee.id, [{"equipmentId": 404}])
        assert excinfo.value.details["errors"] == [
            {"equipment_id": 404, "reason": "not found"}
        ]

    def test_unavailable_items_are_named(
        self, db_session, employee, make_user, make_equipment
    ):
        other = make_user("other@example.com")
        taken = make_equipment("TAKEN001")
        free = make_equipment("FREE0001")
        allocation_service.create_allocation(other.id, [{"equipmentId": taken.id}])

        with pytest.raises(ValidationError) as excinfo:
            allocation_service.create_allocation(
                employee.id, [{"equipmentId": free.id}, {"equipmentId": taken.id}]
            )

        assert "TAKEN001" in excinfo.value.message
        assert db_session.get(Equipment, free.id).status == "available"
        assert Allocation.query.count() == 1

    def test_invalid_condition(self, db_session, employee, make_equipment):
        laptop = make_equipment("5CG1234XYZ")
        with pytest.raises(ValidationError):
            allocation_service.create_allocation(
                employee.id, [{"equipmentId": laptop.id, "condition": "broken"}]
            )
        assert Allocation.query.count() == 0

    def test_pushes_linked_items(self, db_session, sync_port, employee, make_equipment):
        linked = make_equipment("5CG1234XYZ", external_asset_id="100")
        unlinked = make_equipment("IMEI998877")

        allocation_service.create_allocation(
            employee.id,
            [{"equipmentId": linked.id}, {"equipmentId": unlinked.id}],
            status_attributes={"statusAttrId": "42"},
        )

        assert sync_port.pushed == [("5CG1234XYZ", "assigned", {"statusAttrId": "42"})]

    def test_failed_push_is_a_warning(self, db_session, sync_port, employee, make_equipment):
        sync_port.succeed = False
        linked = make_equipment("5CG1234XYZ", external_asset_id="100")

        result = allocation_service.create_allocation(employee.id, [{"equipmentId": linked.id}])

        assert result.allocation.id is not None
        assert result.warnings[0]["code"] == "SYNC_DEFERRED"
        assert result.warnings[0]["serial_numbers"] == ["5CG1234XYZ"]
        assert db_session.get(Equipment, linked.id).status == "assigned"


class TestSignAllocation:
    @pytest.fixture()
    def allocation(self, db_session, employee, make_equipment):
        laptop = make_equipment("5CG1234XYZ")
        return allocation_service.create_allocation(
            employee.id, [{"equipmentId": laptop.id}]
        ).allocation

    def test_sign_completes(self, db_session, allocation):
        signed = allocation_service.sign_allocation(allocation.id, "Jane Doe", "data:image/png;base64,AAA")
        assert signed.status == "completed"
        assert signed.signer_name == "Jane Doe"
        assert signed.signed_at is not None

    def test_second_signature_conflicts(self, db_session, allocation):
        allocation_service.sign_allocation(allocation.id, "Jane Doe", "img")
        with pytest.raises(ConflictError):
            allocation_service.sign_allocation(allocation.id, "Someone Else", "img2")
        assert allocation_service.get_allocation(allocation.id).signer_name == "Jane Doe"

    def test_missing_fields(self, db_session, allocation):
        with pytest.raises(ValidationError) as excinfo:
            allocation_service.sign_allocation(allocation.id, "", None)
        assert len(excinfo.value.details["errors"]) == 2

    def test_update_before_signature(self, db_session, allocation):
        updated = allocation_service.update_allocation(
            allocation.id, {"notes": "Bring charger", "services": ["VPN"]}
        )
        assert updated.notes == "Bring charger"
        assert updated.services == ["VPN"]

    def test_update_after_signature_conflicts(self, db_session, allocation):
        allocation_service.sign_allocation(allocation.id, "Jane Doe", "img")
        with pytest.raises(ConflictError):
            allocation_service.update_allocation(allocation.id, {"notes": "late"})

    def test_update_rejects_items(self, db_session, allocation):
        with pytest.raises(ValidationError):
            allocation_service.update_allocation(allocation.id, {"items": []})


class TestQueries:
    def test_search_and_stats(self, db_session, employee, make_equipment):
        laptop = make_equipment("5CG1234XYZ")
        allocation_service.create_allocation(employee.id, [{"equipmentId": laptop.id}])

        page = allocation_service.search_allocations(search="jane")
        assert page.total == 1
        assert allocation_service.get_allocations_for_user(employee.id)[0].user_id == employee.id

        stats = allocation_service.get_allocation_stats()
        assert stats["total"] == 1
        assert stats["by_status"]["in_progress"] == 1
        assert stats["by_month"][0]["count"] == 1

    def test_parse_date_rejects_garbage(self):
        with pytest.raises(ValidationError):
            allocation_service.parse_date("not-a-date", "delivery_date")
