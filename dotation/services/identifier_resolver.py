"""
Identifier resolver: turns loosely-typed equipment references into
canonical equipment IDs.

Clients refer to equipment in whatever form they have at hand: the
local ID, the asset-system object ID, or the serial number printed on
the device.  Each reference is a dict; the first strategy that matches
wins:

  1. canonical ID   (``equipmentId``, ``equipment_id``, ``id``, ``_id``)
  2. external ID    (``externalAssetId``, ``external_asset_id``, ``jiraAssetId``)
  3. serial number  (``serialNumber``, ``serial_number``)

A canonical ID is accepted as-is when it has a valid shape; existence
is checked later by the engines so that one missing row produces the
same "does not exist" error whichever way it was referenced.

Resolution never stops at the first failure: the result lists every
reference that could not be resolved so the caller can fix the whole
batch at once.
"""

import logging
from dataclasses import dataclass, field
from typing import Any

from dotation.errors import ValidationError
from dotation.services import equipment_service

logger = logging.getLogger(__name__)

CANONICAL_ID_KEYS = ("equipmentId", "equipment_id", "id", "_id")
EXTERNAL_ID_KEYS = ("externalAssetId", "external_asset_id", "jiraAssetId")
SERIAL_NUMBER_KEYS = ("serialNumber", "serial_number")

STRATEGY_CANONICAL = "canonical_id"
STRATEGY_EXTERNAL = "external_asset_id"
STRATEGY_SERIAL = "serial_number"


@dataclass
class ResolvedReference:
    index: int
    equipment_id: int
    strategy: str
    reference: dict[str, Any]


@dataclass
class ResolutionFailure:
    index: int
    criteria: dict[str, Any]
    reason: str

    def to_dict(self) -> dict[str, Any]:
        return {"index": self.index, "criteria": self.criteria, "reason": self.reason}


@dataclass
class ResolutionResult:
    """Outcome of resolving one batch; ``resolved`` keeps input order."""

    resolved: list[ResolvedReference] = field(default_factory=list)
    errors: list[ResolutionFailure] = field(default_factory=list)

    @property
    def equipment_ids(self) -> list[int]:
        return [ref.equipment_id for ref in self.resolved]

    @property
    def ok(self) -> bool:
        return not self.errors

    def raise_for_errors(self) -> None:
        """
        Raise one ValidationError listing every failed reference.

        Raises:
            ValidationError: If any reference did not resolve.
        """
        if self.errors:
            raise ValidationError(
                f"{len(self.errors)} equipment reference(s) could not be resolved.",
                errors=[failure.to_dict() for failure in self.errors],
            )


def resolve_equipment_refs(refs: list[dict[str, Any]]) -> ResolutionResult:
    """
    Resolve a batch of equipment references.

    Args:
        refs: One dict per reference.  Keys other than the identifier
              aliases (e.g. ``condition``) are ignored here and kept in
              ``ResolvedReference.reference`` for the caller.

    Returns:
        A ResolutionResult.  ``len(resolved) + len(errors) == len(refs)``.
    """
    result = ResolutionResult()
    seen: dict[int, int] = {}

    for index, ref in enumerate(refs or []):
        if not isinstance(ref, dict):
            result.errors.append(
                ResolutionFailure(index, {"value": ref}, "reference must be an object")
            )
            continue

        equipment_id, strategy, criteria = _resolve_one(ref)

        if equipment_id is None:
            result.errors.append(
                ResolutionFailure(index, criteria, "no equipment matches this reference")
            )
            continue

        if equipment_id in seen:
            result.errors.append(
                ResolutionFailure(
                    index,
                    criteria,
                    f"duplicate of reference at index {seen[equipment_id]}",
                )
            )
            continue

        seen[equipment_id] = index
        result.resolved.append(ResolvedReference(index, equipment_id, strategy, ref))

    if result.errors:
        logger.warning(
            "Resolved %d of %d equipment references; failures at indexes %s",
            len(result.resolved),
            len(refs or []),
            [failure.index for failure in result.errors],
        )
    return result


def _resolve_one(ref: dict[str, Any]) -> tuple[int | None, str | None, dict[str, Any]]:
    """Return ``(equipment_id, strategy, criteria_tried)`` for one reference."""
    criteria: dict[str, Any] = {}

    # 1. Canonical ID with a valid shape.
    canonical_key, canonical = _first_present(ref, CANONICAL_ID_KEYS)
    if canonical_key is not None:
        equipment_id = _parse_canonical_id(canonical)
        if equipment_id is not None:
            return equipment_id, STRATEGY_CANONICAL, {canonical_key: canonical}
        criteria[canonical_key] = canonical
        criteria["invalid_id"] = True

    # 2. External asset ID.
    external_key, external = _first_present(ref, EXTERNAL_ID_KEYS)
    if external_key is not None:
        criteria[external_key] = external
        equipment = equipment_service.get_by_external_asset_id(str(external))
        if equipment is not None:
            return equipment.id, STRATEGY_EXTERNAL, criteria

    # 3. Serial number.
    serial_key, serial = _first_present(ref, SERIAL_NUMBER_KEYS)
    if serial_key is not None:
        criteria[serial_key] = serial
        equipment = equipment_service.get_by_serial_number(str(serial))
        if equipment is not None:
            return equipment.id, STRATEGY_SERIAL, criteria

    return None, None, criteria


def _first_present(ref: dict[str, Any], keys: tuple[str, ...]) -> tuple[str | None, Any]:
    for key in keys:
        value = ref.get(key)
        if value is not None and str(value).strip() != "":
            return key, value
    return None, None


def _parse_canonical_id(value: Any) -> int | None:
    """Accept positive ints and digit strings; anything else is invalid."""
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value if value > 0 else None
    if isinstance(value, str) and value.strip().isdigit():
        parsed = int(value.strip())
        return parsed if parsed > 0 else None
    return None
