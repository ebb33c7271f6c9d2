"""
Tests for attribute auto-detection and the AttributeMapping wire format.
"""

from dotation.services.attribute_detector import AttributeMapping, detect_attribute_mapping


def _attr(attr_id, **value):
    return {"objectTypeAttributeId": attr_id, "objectAttributeValues": [value]}


def _reference(attr_id, type_name, name):
    return _attr(
        attr_id,
        referencedObject={"name": name, "objectType": {"name": type_name}},
        displayValue=name,
    )


SAMPLE_OBJECT = {
    "id": "100",
    "attributes": [
        _attr("1", value="Laptop-100 label with spaces"),
        _attr("10", value="5CG1234XYZ"),
        _reference("11", "Constructeurs", "Dell"),
        _attr("12", value="Latitude 5440"),
        _attr("13", status={"name": "En service"}, displayValue="En service"),
        _attr("14", value="PI-0042"),
        _reference("15", "Utilisateurs", "Jane Doe"),
    ],
}


class TestDetectAttributeMapping:
    def test_detects_every_category(self):
        result = detect_attribute_mapping(SAMPLE_OBJECT)

        assert result.mapping == AttributeMapping(
            serial_number="10",
            brand="11",
            model="12",
            status="13",
            internal_id="14",
            assigned_user="15",
        )
        assert result.warnings == []

    def test_detection_evidence(self):
        result = detect_attribute_mapping(SAMPLE_OBJECT)
        by_category = {d.category: d for d in result.detections}

        assert by_category["brand"].sample_value == "Dell"
        assert by_category["brand"].confidence == "high"
        assert by_category["model"].confidence == "medium"
        assert by_category["status"].sample_value == "En service"

    def test_first_match_wins(self):
        result = detect_attribute_mapping(
            {"attributes": [_attr("20", value="SERIAL01"), _attr("21", value="SERIAL02")]}
        )
        assert result.mapping.serial_number == "20"

    def test_missing_serial_warns(self):
        result = detect_attribute_mapping(
            {"attributes": [_reference("11", "Brand", "Lenovo")]}
        )

        assert result.mapping.serial_number is None
        assert result.mapping.brand == "11"
        assert result.warnings[0].startswith("Serial number attribute not detected")
        assert "model attribute not detected." in result.warnings

    def test_empty_values_are_ignored(self):
        result = detect_attribute_mapping(
            {"attributes": [{"objectTypeAttributeId": "10", "objectAttributeValues": []}]}
        )
        assert result.mapping.to_dict() == {}
        assert result.detections == []

    def test_to_dict_uses_wire_keys(self):
        data = detect_attribute_mapping(SAMPLE_OBJECT).to_dict()
        assert data["mapping"]["serialNumberAttrId"] == "10"
        assert data["mapping"]["assignedUserAttrId"] == "15"


class TestAttributeMapping:
    def test_from_dict_accepts_both_spellings(self):
        mapping = AttributeMapping.from_dict(
            {"statusAttrId": "7", "serial_number_attr_id": "10", "brand": ""}
        )
        assert mapping.status == "7"
        assert mapping.serial_number == "10"
        assert mapping.brand is None

    def test_merged_with_keeps_explicit_values(self):
        explicit = AttributeMapping(status="7")
        detected = AttributeMapping(status="13", serial_number="10")

        merged = explicit.merged_with(detected)

        assert merged.status == "7"
        assert merged.serial_number == "10"

    def test_missing_lists_wire_keys(self):
        mapping = AttributeMapping(serial_number="10")
        assert mapping.missing("serial_number", "brand", "status") == [
            "brandAttrId",
            "statusAttrId",
        ]

    def test_coerce(self):
        mapping = AttributeMapping(status="7")
        assert AttributeMapping.coerce(mapping) is mapping
        assert AttributeMapping.coerce(None) == AttributeMapping()
