"""
Attribute auto-detector: guesses which asset-system attributes hold the
serial number, brand, model, status, internal ID and assigned user.

The asset system identifies attributes by opaque per-workspace IDs.
Given one sample object, ``detect_attribute_mapping`` inspects the first
value of each attribute and proposes a partial ``AttributeMapping``
together with the evidence for every guess, so an operator can review
it before a bulk import.  Pure function; no I/O.
"""

import re
from dataclasses import asdict, dataclass, field, fields
from typing import Any

SERIAL_PATTERN = re.compile(r"^[A-Z0-9]{4,20}$", re.IGNORECASE)
MODEL_PATTERN = re.compile(
    r"^(Precision|Latitude|ThinkPad|MacBook|Surface|EliteBook|ProBook)",
    re.IGNORECASE,
)
INTERNAL_ID_PATTERN = re.compile(r"^PI-\d+$", re.IGNORECASE)

BRAND_TYPE_KEYWORDS = ("constructeur", "brand", "manufacturer")
USER_TYPE_KEYWORDS = ("user", "utilisateur", "employee")

CONFIDENCE_HIGH = "high"
CONFIDENCE_MEDIUM = "medium"


@dataclass
class AttributeMapping:
    """
    Attribute IDs of one object type in the asset system.

    Every field is optional.  ``to_dict``/``from_dict`` use the
    camelCase keys the HTTP API and the sync log exchange
    (``serialNumberAttrId``, ``statusAttrId``, ...).
    """

    serial_number: str | None = None
    brand: str | None = None
    model: str | None = None
    type: str | None = None
    status: str | None = None
    internal_id: str | None = None
    assigned_user: str | None = None

    _WIRE_KEYS = {
        "serial_number": "serialNumberAttrId",
        "brand": "brandAttrId",
        "model": "modelAttrId",
        "type": "typeAttrId",
        "status": "statusAttrId",
        "internal_id": "internalIdAttrId",
        "assigned_user": "assignedUserAttrId",
    }

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "AttributeMapping":
        """
        Build a mapping from camelCase or snake_case keys.

        ``statusAttrId``, ``status_attr_id`` and ``status`` all fill the
        ``status`` field.  Blank values are ignored.
        """
        data = data or {}
        values: dict[str, str] = {}
        for name, wire_key in cls._WIRE_KEYS.items():
            for key in (wire_key, f"{name}_attr_id", name):
                raw = data.get(key)
                if raw not in (None, ""):
                    values[name] = str(raw)
                    break
        return cls(**values)

    @classmethod
    def coerce(cls, value: "AttributeMapping | dict | None") -> "AttributeMapping":
        """Accept an existing mapping, a dict, or None."""
        if isinstance(value, AttributeMapping):
            return value
        return cls.from_dict(value)

    def to_dict(self) -> dict[str, str]:
        """Return the camelCase dict, omitting unset attributes."""
        return {
            self._WIRE_KEYS[name]: value
            for name, value in asdict(self).items()
            if value is not None
        }

    def merged_with(self, other: "AttributeMapping") -> "AttributeMapping":
        """Fill unset fields from ``other``; fields already set win."""
        return AttributeMapping(
            **{
                f.name: getattr(self, f.name) or getattr(other, f.name)
                for f in fields(self)
            }
        )

    def missing(self, *names: str) -> list[str]:
        """Return the wire keys of the named fields that are unset."""
        return [self._WIRE_KEYS[name] for name in names if not getattr(self, name)]


@dataclass
class Detection:
    """Evidence for one detected attribute."""

    category: str
    attribute_id: str
    sample_value: str | None
    rule: str
    confidence: str


@dataclass
class DetectionResult:
    mapping: AttributeMapping
    detections: list[Detection] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "mapping": self.mapping.to_dict(),
            "detections": [asdict(d) for d in self.detections],
            "warnings": list(self.warnings),
        }


# =========================================================================
# Attribute value helpers (shared with the sync service)
# =========================================================================


def first_attribute_value(attribute: dict[str, Any]) -> dict[str, Any] | None:
    """Return the first entry of ``objectAttributeValues``, or None."""
    values = attribute.get("objectAttributeValues") or []
    return values[0] if values else None


def referenced_type_name(value: dict[str, Any]) -> str:
    """Lower-cased object type name of a reference value, or ''."""
    referenced = value.get("referencedObject") or {}
    object_type = referenced.get("objectType") or {}
    return str(object_type.get("name") or "").lower()


# =========================================================================
# Detection
# =========================================================================


def detect_attribute_mapping(external_object: dict[str, Any]) -> DetectionResult:
    """
    Propose an attribute mapping from one sample object.

    Categories are tried in order (serial, brand, model, status,
    internal ID, assigned user) and the first rule that fires claims
    the attribute.  A category already filled by an earlier attribute
    is skipped.

    Args:
        external_object: A raw object as returned by the asset API,
                         with an ``attributes`` list.

    Returns:
        A DetectionResult; ``warnings`` names every category that was
        not detected.
    """
    mapping = AttributeMapping()
    detections: list[Detection] = []

    for attribute in external_object.get("attributes") or []:
        attr_id = attribute.get("objectTypeAttributeId")
        value = first_attribute_value(attribute)
        if attr_id is None or not value:
            continue
        attr_id = str(attr_id)
        raw = value.get("value")
        text = raw if isinstance(raw, str) else None
        ref_type = referenced_type_name(value)

        # 1. Serial number: short alphanumeric token.
        if not mapping.serial_number and text and SERIAL_PATTERN.match(text):
            mapping.serial_number = attr_id
            detections.append(
                Detection("serial_number", attr_id, text, "serial_pattern", CONFIDENCE_MEDIUM)
            )
            continue

        # 2. Brand: reference to a manufacturer object.
        if (
            not mapping.brand
            and value.get("referencedObject")
            and any(keyword in ref_type for keyword in BRAND_TYPE_KEYWORDS)
        ):
            mapping.brand = attr_id
            detections.append(
                Detection(
                    "brand",
                    attr_id,
                    _reference_label(value),
                    "manufacturer_reference",
                    CONFIDENCE_HIGH,
                )
            )
            continue

        # 3. Model: known product line prefix.
        if not mapping.model and text and len(text) > 2 and MODEL_PATTERN.match(text):
            mapping.model = attr_id
            detections.append(
                Detection("model", attr_id, text, "model_prefix", CONFIDENCE_MEDIUM)
            )
            continue

        # 4. Status: value carries a status object.
        if not mapping.status and value.get("status"):
            mapping.status = attr_id
            status_name = (value.get("status") or {}).get("name")
            detections.append(
                Detection("status", attr_id, status_name, "status_shape", CONFIDENCE_HIGH)
            )
            continue

        # 5. Internal ID: PI-<digits>.
        if not mapping.internal_id and text and INTERNAL_ID_PATTERN.match(text):
            mapping.internal_id = attr_id
            detections.append(
                Detection(
                    "internal_id", attr_id, text, "internal_id_pattern", CONFIDENCE_MEDIUM
                )
            )
            continue

        # 6. Assigned user: reference to a user/employee object.
        if (
            not mapping.assigned_user
            and value.get("referencedObject")
            and any(keyword in ref_type for keyword in USER_TYPE_KEYWORDS)
        ):
            mapping.assigned_user = attr_id
            detections.append(
                Detection(
                    "assigned_user",
                    attr_id,
                    _reference_label(value),
                    "user_reference",
                    CONFIDENCE_HIGH,
                )
            )
            continue

    warnings = []
    if not mapping.serial_number:
        warnings.append(
            "Serial number attribute not detected; objects cannot be "
            "imported without it."
        )
    for name in ("brand", "model", "status", "internal_id", "assigned_user"):
        if not getattr(mapping, name):
            warnings.append(f"{name} attribute not detected.")

    return DetectionResult(mapping=mapping, detections=detections, warnings=warnings)


def _reference_label(value: dict[str, Any]) -> str | None:
    referenced = value.get("referencedObject") or {}
    return referenced.get("name") or referenced.get("label") or value.get("displayValue")
