"""
Tests for the equipment registry: creation, updates, the assignment
transitions and the inbound upsert.
"""

import pytest

from dotation.errors import ConflictError, NotFoundError, ValidationError
from dotation.models.audit import AuditLog, PendingSync
from dotation.models.equipment import Equipment
from dotation.services import allocation_service, equipment_service


class TestCreateEquipment:
    """Registering new items."""

    def test_creates_available_item_with_defaults(self, db_session):
        equipment = equipment_service.create_equipment({"serial_number": " 5CG1234XYZ "})

        assert equipment.id is not None
        assert equipment.serial_number == "5CG1234XYZ"
        assert equipment.status == "available"
        assert equipment.assigned_user_id is None
        assert equipment.brand == "Unknown"

    def test_writes_audit_entry(self, db_session):
        equipment = equipment_service.create_equipment({"serial_number": "AB12CD"}, user_id=None)
        entry = AuditLog.query.filter_by(entity_type="equipment", entity_id=equipment.id).one()
        assert entry.action_type == "CREATE"

    def test_rejects_missing_serial(self, db_session):
        with pytest.raises(ValidationError) as excinfo:
            equipment_service.create_equipment({"brand": "Dell"})
        assert excinfo.value.details["errors"][0]["field"] == "serial_number"

    def test_rejects_assigned_status(self, db_session):
        with pytest.raises(ValidationError):
            equipment_service.create_equipment(
                {"serial_number": "AB12CD", "status": "assigned"}
            )

    def test_rejects_unknown_type(self, db_session):
        with pytest.raises(ValidationError):
            equipment_service.create_equipment({"serial_number": "AB12CD", "type": "toaster"})

    def test_duplicate_serial_conflicts(self, db_session, make_equipment):
        make_equipment("AB12CD")
        with pytest.raises(ConflictError):
            equipment_service.create_equipment({"serial_number": "AB12CD"})

    def test_duplicate_external_id_conflicts(self, db_session, make_equipment):
        make_equipment("AB12CD", external_asset_id="100")
        with pytest.raises(ConflictError):
            equipment_service.create_equipment(
                {"serial_number": "ZZ99ZZ", "external_asset_id": "100"}
            )


class TestUpdateEquipment:
    """Descriptive updates never touch status or owner."""

    def test_updates_descriptive_fields(self, db_session, make_equipment):
        equipment = make_equipment("AB12CD")
        updated = equipment_service.update_equipment(
            equipment.id, {"brand": "Lenovo", "location": "Lyon"}
        )
        assert updated.brand == "Lenovo"
        assert updated.location == "Lyon"

    def test_refuses_status_change(self, db_session, make_equipment):
        equipment = make_equipment("AB12CD")
        with pytest.raises(ValidationError):
            equipment_service.update_equipment(equipment.id, {"status": "lost"})

    def test_refuses_unknown_field(self, db_session, make_equipment):
        equipment = make_equipment("AB12CD")
        with pytest.raises(ValidationError):
            equipment_service.update_equipment(equipment.id, {"colour": "black"})

    def test_unknown_equipment(self, db_session):
        with pytest.raises(NotFoundError):
            equipment_service.update_equipment(404, {"brand": "Dell"})


class TestDeleteEquipment:
    """Only free, unreferenced items can leave the registry."""

    def test_deletes_item_and_queued_pushes(self, db_session, make_equipment):
        equipment = make_equipment("AB12CD", external_asset_id="100")
        db_session.add(
            PendingSync(
                equipment_id=equipment.id,
                serial_number="AB12CD",
                external_asset_id="100",
                attribute_ids={},
            )
        )
        db_session.commit()
        equipment_id = equipment.id

        equipment_service.delete_equipment(equipment_id)

        assert db_session.get(Equipment, equipment_id) is None
        assert PendingSync.query.count() == 0
        entry = AuditLog.query.filter_by(action_type="DELETE").one()
        assert entry.entity_id == equipment_id

    def test_assigned_item_conflicts(self, db_session, make_user, make_equipment):
        user = make_user()
        equipment = make_equipment("AB12CD")
        equipment_service.transition_to_assigned(equipment.id, user.id)

        with pytest.raises(ConflictError):
            equipment_service.delete_equipment(equipment.id)

        assert db_session.get(Equipment, equipment.id) is not None

    def test_item_on_paperwork_conflicts(self, db_session, make_user, make_equipment):
        user = make_user()
        equipment = make_equipment("AB12CD")
        allocation_service.create_allocation(user.id, [{"equipmentId": equipment.id}])
        equipment_service.release(equipment.id)

        with pytest.raises(ConflictError) as excinfo:
            equipment_service.delete_equipment(equipment.id)

        assert excinfo.value.details["allocation_items"] == 1

    def test_unknown_equipment(self, db_session):
        with pytest.raises(NotFoundError):
            equipment_service.delete_equipment(404)


class TestTransitions:
    """The conditional assignment and the unowned transitions."""

    def test_assign_available_item(self, db_session, make_user, make_equipment):
        user = make_user()
        equipment = make_equipment("AB12CD")

        result = equipment_service.transition_to_assigned(equipment.id, user.id)

        assert result.status == "assigned"
        assert result.assigned_user_id == user.id

    def test_second_assign_conflicts(self, db_session, make_user, make_equipment):
        first = make_user("first@example.com")
        second = make_user("second@example.com")
        equipment = make_equipment("AB12CD")
        equipment_service.transition_to_assigned(equipment.id, first.id)

        with pytest.raises(ConflictError):
            equipment_service.transition_to_assigned(equipment.id, second.id)

        reloaded = db_session.get(Equipment, equipment.id)
        assert reloaded.assigned_user_id == first.id

    def test_assign_item_in_repair_conflicts(self, db_session, make_user, make_equipment):
        user = make_user()
        equipment = make_equipment("AB12CD", status="in_repair")
        with pytest.raises(ConflictError):
            equipment_service.transition_to_assigned(equipment.id, user.id)

    def test_assign_missing_item(self, db_session, make_user):
        user = make_user()
        with pytest.raises(NotFoundError):
            equipment_service.transition_to_assigned(404, user.id)

    def test_release_clears_owner(self, db_session, make_user, make_equipment):
        user = make_user()
        equipment = make_equipment("AB12CD")
        equipment_service.transition_to_assigned(equipment.id, user.id)

        released = equipment_service.transition_to_released(equipment.id)

        assert released.status == "available"
        assert released.assigned_user_id is None

    def test_release_is_idempotent(self, db_session, make_equipment):
        equipment = make_equipment("AB12CD")
        equipment_service.transition_to_released(equipment.id)
        actions = AuditLog.query.filter_by(action_type="RELEASE").count()
        assert actions == 0

    def test_returned_clears_owner(self, db_session, make_user, make_equipment):
        user = make_user()
        equipment = make_equipment("AB12CD")
        equipment_service.transition_to_assigned(equipment.id, user.id)

        returned = equipment_service.transition_to_returned(equipment.id)

        assert returned.status == "returned"
        assert returned.assigned_user_id is None


class TestAssignAndRelease:
    """Public single-item operations push through the sync port."""

    def test_assign_pushes_status(self, db_session, sync_port, make_user, make_equipment):
        user = make_user()
        equipment = make_equipment("AB12CD", external_asset_id="100")

        equipment_service.assign_to_user(equipment.id, user.id)

        assert sync_port.pushed == [("AB12CD", "assigned", None)]

    def test_unlinked_item_is_not_pushed(self, db_session, sync_port, make_user, make_equipment):
        user = make_user()
        equipment = make_equipment("AB12CD")
        equipment_service.assign_to_user(equipment.id, user.id)
        assert sync_port.pushed == []

    def test_failed_push_does_not_undo_assignment(
        self, db_session, sync_port, make_user, make_equipment
    ):
        sync_port.succeed = False
        user = make_user()
        equipment = make_equipment("AB12CD", external_asset_id="100")

        result = equipment_service.assign_to_user(equipment.id, user.id)

        assert result.status == "assigned"

    def test_assign_to_unknown_user(self, db_session, make_equipment):
        equipment = make_equipment("AB12CD")
        with pytest.raises(NotFoundError):
            equipment_service.assign_to_user(equipment.id, 404)

    def test_release_pushes_status(self, db_session, sync_port, make_user, make_equipment):
        user = make_user()
        equipment = make_equipment("AB12CD", external_asset_id="100")
        equipment_service.assign_to_user(equipment.id, user.id)

        equipment_service.release(equipment.id, status_attributes={"statusAttrId": "7"})

        assert sync_port.pushed[-1] == ("AB12CD", "available", {"statusAttrId": "7"})


class TestUpsertFromExternal:
    """Merging asset-system data keeps the owner/status invariant."""

    def test_creates_new_row(self, db_session):
        equipment, created = equipment_service.upsert_from_external(
            {"serial_number": "AB12CD", "external_asset_id": "100", "brand": "Dell"}
        )
        assert created is True
        assert equipment.status == "available"
        assert equipment.brand == "Dell"
        assert equipment.type == "other"
        assert equipment.last_synced_at is not None

    def test_matches_by_external_id_and_keeps_serial(self, db_session, make_equipment):
        make_equipment("AB12CD", external_asset_id="100")
        equipment, created = equipment_service.upsert_from_external(
            {"serial_number": "OTHER1", "external_asset_id": "100"}
        )
        assert created is False
        assert equipment.serial_number == "AB12CD"

    def test_matches_by_serial_and_links_external_id(self, db_session, make_equipment):
        make_equipment("AB12CD")
        equipment, created = equipment_service.upsert_from_external(
            {"serial_number": "AB12CD", "external_asset_id": "100"}
        )
        assert created is False
        assert equipment.external_asset_id == "100"

    def test_owner_forces_assigned(self, db_session, make_user):
        user = make_user()
        equipment, _ = equipment_service.upsert_from_external(
            {"serial_number": "AB12CD", "assigned_user_id": user.id}
        )
        assert equipment.status == "assigned"
        assert equipment.assigned_user_id == user.id

    def test_non_assigned_status_drops_owner(self, db_session, make_user):
        user = make_user()
        equipment, _ = equipment_service.upsert_from_external(
            {"serial_number": "AB12CD", "assigned_user_id": user.id, "status": "in_repair"}
        )
        assert equipment.status == "in_repair"
        assert equipment.assigned_user_id is None

    def test_assigned_without_owner_falls_back_to_available(self, db_session):
        equipment, _ = equipment_service.upsert_from_external(
            {"serial_number": "AB12CD", "status": "assigned"}
        )
        assert equipment.status == "available"
        assert equipment.assigned_user_id is None

    def test_assigned_without_owner_keeps_local_owner(
        self, db_session, make_user, make_equipment
    ):
        user = make_user()
        equipment = make_equipment("AB12CD")
        equipment_service.transition_to_assigned(equipment.id, user.id)

        merged, _ = equipment_service.upsert_from_external(
            {"serial_number": "AB12CD", "status": "assigned"}
        )
        assert merged.assigned_user_id == user.id

    def test_rejects_empty_serial(self, db_session):
        with pytest.raises(ValidationError):
            equipment_service.upsert_from_external({"serial_number": "  "})


class TestQueries:
    def test_search_and_stats(self, db_session, make_equipment):
        make_equipment("AB12CD", brand="Dell", type="laptop")
        make_equipment("EF34GH", brand="Apple", type="mobile", status="lost")

        page = equipment_service.search_equipment(search="dell")
        assert [item.serial_number for item in page.items] == ["AB12CD"]

        stats = equipment_service.get_equipment_stats()
        assert stats["total"] == 2
        assert stats["by_status"]["lost"] == 1
        assert stats["by_type"]["laptop"] == 1

    def test_find_available(self, db_session, make_equipment):
        make_equipment("AB12CD")
        make_equipment("EF34GH", status="in_repair")
        assert [e.serial_number for e in equipment_service.find_available()] == ["AB12CD"]
