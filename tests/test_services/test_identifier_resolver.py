"""
Tests for the identifier resolver.
"""

import pytest

from dotation.errors import ValidationError
from dotation.services.identifier_resolver import (
    STRATEGY_CANONICAL,
    STRATEGY_EXTERNAL,
    STRATEGY_SERIAL,
    resolve_equipment_refs,
)


@pytest.fixture()
def registry(make_equipment):
    return {
        "laptop": make_equipment("5CG1234XYZ", external_asset_id="100"),
        "phone": make_equipment("IMEI998877"),
    }


class TestResolveEquipmentRefs:
    def test_canonical_id_wins(self, db_session, registry):
        result = resolve_equipment_refs(
            [{"equipmentId": registry["laptop"].id, "serialNumber": "IMEI998877"}]
        )
        assert result.ok
        assert result.resolved[0].strategy == STRATEGY_CANONICAL
        assert result.equipment_ids == [registry["laptop"].id]

    def test_digit_string_is_a_canonical_id(self, db_session, registry):
        result = resolve_equipment_refs([{"id": str(registry["phone"].id)}])
        assert result.equipment_ids == [registry["phone"].id]

    def test_external_id_then_serial(self, db_session, registry):
        result = resolve_equipment_refs(
            [{"jiraAssetId": "100"}, {"serial_number": "IMEI998877"}]
        )
        assert [ref.strategy for ref in result.resolved] == [STRATEGY_EXTERNAL, STRATEGY_SERIAL]
        assert result.equipment_ids == [registry["laptop"].id, registry["phone"].id]

    def test_invalid_canonical_id_falls_through(self, db_session, registry):
        result = resolve_equipment_refs([{"id": "not-an-id", "serialNumber": "IMEI998877"}])
        assert result.resolved[0].strategy == STRATEGY_SERIAL

    def test_unknown_external_id_falls_back_to_serial(self, db_session, registry):
        result = resolve_equipment_refs(
            [{"externalAssetId": "999", "serialNumber": "5CG1234XYZ"}]
        )
        assert result.equipment_ids == [registry["laptop"].id]

    def test_collects_every_failure(self, db_session, registry):
        result = resolve_equipment_refs(
            [{"serialNumber": "NOPE"}, {"serialNumber": "5CG1234XYZ"}, "junk", {}]
        )
        assert not result.ok
        assert [failure.index for failure in result.errors] == [0, 2, 3]
        assert result.errors[0].criteria == {"serialNumber": "NOPE"}
        assert len(result.resolved) + len(result.errors) == 4

    def test_duplicates_are_rejected(self, db_session, registry):
        result = resolve_equipment_refs(
            [{"serialNumber": "5CG1234XYZ"}, {"externalAssetId": "100"}]
        )
        assert result.equipment_ids == [registry["laptop"].id]
        assert result.errors[0].index == 1
        assert "index 0" in result.errors[0].reason

    def test_raise_for_errors_lists_all(self, db_session, registry):
        result = resolve_equipment_refs([{"serialNumber": "A1"}, {"serialNumber": "B2"}])
        with pytest.raises(ValidationError) as excinfo:
            result.raise_for_errors()
        assert len(excinfo.value.details["errors"]) == 2

    def test_boolean_is_not_an_id(self, db_session, registry):
        result = resolve_equipment_refs([{"id": True}])
        assert not result.ok
