"""
Tests for the return engine: creation, signatures and HR validation.
"""

import pytest

from dotation.errors import ConflictError, NotFoundError, ValidationError
from dotation.models.equipment import Equipment
from dotation.models.restitution import EquipmentReturn
from dotation.services import allocation_service, equipment_service, return_service


@pytest.fixture()
def allocation(db_session, make_user, make_equipment):
    employee = make_user("jane.doe@example.com", display_name="Jane Doe")
    make_equipment("5CG1234XYZ", external_asset_id="100")
    make_equipment("IMEI998877")
    return allocation_service.create_allocation(
        employee.id, [{"serialNumber": "5CG1234XYZ"}, {"serialNumber": "IMEI998877"}]
    ).allocation


class TestCreateReturn:
    def test_returns_items_and_completes_allocation(self, db_session, sync_port, allocation):
        sync_port.pushed.clear()

        equipment_return = return_service.create_return(
            allocation.id,
            [
                {"serialNumber": "5CG1234XYZ", "condition": "degraded", "notes": "Scratched"},
                {"serialNumber": "IMEI998877"},
            ],
            return_date="2024-06-30",
            removed_software=["Visio"],
        )

        assert equipment_return.user_name == "Jane Doe"
        assert equipment_return.removed_software == ["Visio"]
        assert [item.condition for item in equipment_return.items] == ["degraded", "good"]
        assert equipment_return.items[0].notes == "Scratched"
        for serial in ("5CG1234XYZ", "IMEI998877"):
            row = Equipment.query.filter_by(serial_number=serial).one()
            assert row.status == "returned"
            assert row.assigned_user_id is None
        assert allocation_service.get_allocation(allocation.id).status == "completed"
        assert sync_port.pushed == [("5CG1234XYZ", "returned", None)]

    def test_partial_return(self, db_session, allocation):
        return_service.create_return(allocation.id, [{"serialNumber": "IMEI998877"}])
        laptop = Equipment.query.filter_by(serial_number="5CG1234XYZ").one()
        assert laptop.status == "assigned"

    def test_foreign_item_rejected(self, db_session, allocation, make_equipment):
        stranger = make_equipment("STRANGER1")
        with pytest.raises(ValidationError) as excinfo:
            return_service.create_return(
                allocation.id, [{"serialNumber": "5CG1234XYZ"}, {"equipmentId": stranger.id}]
            )
        assert excinfo.value.details["errors"] == [
            {"equipment_id": stranger.id, "reason": "not in allocation"}
        ]
        assert EquipmentReturn.query.count() == 0
        laptop = Equipment.query.filter_by(serial_number="5CG1234XYZ").one()
        assert laptop.status == "assigned"

    def test_stale_return_after_reallocation_conflicts(
        self, db_session, sync_port, allocation, make_user
    ):
        laptop = Equipment.query.filter_by(serial_number="5CG1234XYZ").one()
        return_service.create_return(allocation.id, [{"equipmentId": laptop.id}])
        equipment_service.release(laptop.id)
        newcomer = make_user("john.smith@example.com")
        second = allocation_service.create_allocation(
            newcomer.id, [{"equipmentId": laptop.id}]
        ).allocation

        with pytest.raises(ConflictError) as excinfo:
            return_service.create_return(allocation.id, [{"equipmentId": laptop.id}])

        assert excinfo.value.details["errors"][0]["reason"] == "not on loan"
        reloaded = db_session.get(Equipment, laptop.id)
        assert reloaded.status == "assigned"
        assert reloaded.assigned_user_id == newcomer.id
        assert allocation_service.get_allocation(second.id).status == "in_progress"
        assert len(return_service.get_returns_for_allocation(allocation.id)) == 1

    def test_unknown_allocation(self, db_session):
        with pytest.raises(NotFoundError):
            return_service.create_return(404, [{"serialNumber": "5CG1234XYZ"}])

    def test_empty_list(self, db_session, allocation):
        with pytest.raises(ValidationError):
            return_service.create_return(allocation.id, [])

    def test_invalid_condition(self, db_session, allocation):
        with pytest.raises(ValidationError):
            return_service.create_return(
                allocation.id, [{"serialNumber": "5CG1234XYZ", "condition": "new"}]
            )
        assert EquipmentReturn.query.count() == 0


class TestSignaturesAndValidation:
    @pytest.fixture()
    def equipment_return(self, db_session, allocation):
        return return_service.create_return(allocation.id, [{"serialNumber": "5CG1234XYZ"}])

    def test_sign_slots(self, db_session, equipment_return):
        signed = return_service.sign_return(equipment_return.id, "employee", "Jane Doe", "img")
        assert signed.employee_signer_name == "Jane Doe"
        assert signed.employee_signed_at is not None
        assert signed.it_signature is None

    def test_slot_is_first_write_wins(self, db_session, equipment_return):
        return_service.sign_return(equipment_return.id, "it", "Tech One", "img1")
        with pytest.raises(ConflictError):
            return_service.sign_return(equipment_return.id, "it", "Tech Two", "img2")
        assert return_service.get_return(equipment_return.id).it_signer_name == "Tech One"

    def test_unknown_role(self, db_session, equipment_return):
        with pytest.raises(ValidationError):
            return_service.sign_return(equipment_return.id, "manager", "Boss", "img")

    def test_validation_needs_employee_then_it(self, db_session, equipment_return, make_user):
        hr = make_user("hr@example.com", role_name="rh")

        with pytest.raises(ValidationError) as excinfo:
            return_service.validate_by_hr(equipment_return.id, hr.id)
        assert excinfo.value.details["errors"][0]["field"] == "employee_signature"

        return_service.sign_return(equipment_return.id, "employee", "Jane Doe", "img")
        with pytest.raises(ValidationError) as excinfo:
            return_service.validate_by_hr(equipment_return.id, hr.id)
        assert excinfo.value.details["errors"][0]["field"] == "it_signature"

    def test_validation_completes_once(self, db_session, equipment_return, make_user):
        hr = make_user("hr@example.com", role_name="rh")
        return_service.sign_return(equipment_return.id, "employee", "Jane Doe", "img")
        return_service.sign_return(equipment_return.id, "it", "Tech One", "img")

        validated = return_service.validate_by_hr(equipment_return.id, hr.id, full_settlement=True)

        assert validated.validated_by == hr.id
        assert validated.full_settlement is True
        assert validated.completed_at is not None
        with pytest.raises(ConflictError):
            return_service.validate_by_hr(equipment_return.id, hr.id)

        stats = return_service.get_return_stats()
        assert stats["completed"] == 1
        assert stats["pending_hr_validation"] == 0
        assert stats["full_settlement"] == 1

    def test_no_signature_after_validation(self, db_session, equipment_return, make_user):
        hr = make_user("hr@example.com", role_name="rh")
        return_service.sign_return(equipment_return.id, "employee", "Jane Doe", "img")
        return_service.sign_return(equipment_return.id, "it", "Tech One", "img")
        return_service.validate_by_hr(equipment_return.id, hr.id)

        with pytest.raises(ConflictError) as excinfo:
            return_service.sign_return(equipment_return.id, "rh", "Late Signer", "img")

        assert "validated" in excinfo.value.message
        reloaded = return_service.get_return(equipment_return.id)
        assert reloaded.rh_signature is None
        assert reloaded.rh_signer_name is None

    def test_lookup_by_allocation(self, db_session, equipment_return, allocation):
        returns = return_service.get_returns_for_allocation(allocation.id)
        assert [r.id for r in returns] == [equipment_return.id]

    def test_lookup_by_user(self, db_session, equipment_return, allocation, make_user):
        other = make_user("john.smith@example.com")
        returns = return_service.get_returns_for_user(allocation.user_id)
        assert [r.id for r in returns] == [equipment_return.id]
        assert return_service.get_returns_for_user(other.id) == []
