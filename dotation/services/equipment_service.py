"""
Equipment service: the equipment registry.

Owns every change to ``Equipment.status`` and
``Equipment.assigned_user_id``.  The pair must satisfy
``assigned_user_id IS NOT NULL <=> status = 'assigned'`` after every
operation, so callers never set those columns themselves; they go
through the ``transition_to_*`` functions below.

``transition_to_assigned`` is a single conditional UPDATE: the
availability check and the write happen in one statement, so two
requests racing for the same item cannot both win.

Public single-item operations (``assign_to_user``, ``release``) run
the transition and then push the new status through the external sync
port, best effort.
"""

import logging
from datetime import datetime, timezone
from typing import Any

import sqlalchemy as sa

from dotation.errors import ConflictError, NotFoundError, ValidationError
from dotation.extensions import db
from dotation.models.allocation import AllocationItem
from dotation.models.audit import PendingSync
from dotation.models.equipment import (
    EQUIPMENT_STATUSES,
    EQUIPMENT_TYPES,
    STATUS_ASSIGNED,
    STATUS_AVAILABLE,
    STATUS_RETURNED,
    TYPE_OTHER,
    Equipment,
)
from dotation.models.restitution import ReturnedItem
from dotation.services import audit_service, user_service
from dotation.services.sync_port import get_sync_port

logger = logging.getLogger(__name__)

# Descriptive columns that create/update/upsert may write.
_DESCRIPTIVE_FIELDS = (
    "internal_id",
    "type",
    "brand",
    "model",
    "imei",
    "phone_line",
    "location",
    "notes",
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# =========================================================================
# Lookup
# =========================================================================


def get_equipment(equipment_id: int) -> Equipment:
    """
    Return one equipment row.

    Raises:
        NotFoundError: If no row has this ID.
    """
    equipment = db.session.get(Equipment, equipment_id)
    if equipment is None:
        raise NotFoundError("Equipment", equipment_id)
    return equipment


def get_by_serial_number(serial_number: str) -> Equipment | None:
    """Return the row with this serial number, or None."""
    if not serial_number:
        return None
    return Equipment.query.filter_by(serial_number=serial_number.strip()).first()


def get_by_external_asset_id(external_asset_id: str) -> Equipment | None:
    """Return the row linked to this asset-system object, or None."""
    if not external_asset_id:
        return None
    return Equipment.query.filter_by(
        external_asset_id=str(external_asset_id).strip()
    ).first()


def find_available() -> list[Equipment]:
    """Return every item that can be allocated right now."""
    return (
        Equipment.query.filter(
            Equipment.status == STATUS_AVAILABLE,
            Equipment.assigned_user_id.is_(None),
        )
        .order_by(Equipment.type, Equipment.serial_number)
        .all()
    )


def search_equipment(
    search: str | None = None,
    equipment_type: str | None = None,
    status: str | None = None,
    brand: str | None = None,
    location: str | None = None,
    user_id: int | None = None,
    page: int = 1,
    per_page: int = 50,
):
    """
    Search the registry with optional filters and pagination.

    Args:
        search:         Free text matched against serial number, internal
                        ID, brand, model and location.
        equipment_type: Filter by type (laptop, mobile, ...).
        status:         Filter by status.
        brand:          Case-insensitive brand filter.
        location:       Case-insensitive location substring.
        user_id:        Only items assigned to this user.
        page:           Page number (1-indexed).
        per_page:       Records per page.

    Returns:
        A SQLAlchemy pagination object.
    """
    query = Equipment.query.order_by(Equipment.serial_number)

    if search:
        pattern = f"%{search.strip()}%"
        query = query.filter(
            sa.or_(
                Equipment.serial_number.ilike(pattern),
                Equipment.internal_id.ilike(pattern),
                Equipment.brand.ilike(pattern),
                Equipment.model.ilike(pattern),
                Equipment.location.ilike(pattern),
            )
        )
    if equipment_type:
        query = query.filter(Equipment.type == equipment_type)
    if status:
        query = query.filter(Equipment.status == status)
    if brand:
        query = query.filter(Equipment.brand.ilike(brand.strip()))
    if location:
        query = query.filter(Equipment.location.ilike(f"%{location.strip()}%"))
    if user_id is not None:
        query = query.filter(Equipment.assigned_user_id == user_id)

    return query.paginate(page=page, per_page=per_page, error_out=False)


def get_equipment_stats() -> dict[str, Any]:
    """Return counts by status, by type, and the ten most common brands."""
    by_status = dict(
        db.session.query(Equipment.status, sa.func.count(Equipment.id))
        .group_by(Equipment.status)
        .all()
    )
    by_type = dict(
        db.session.query(Equipment.type, sa.func.count(Equipment.id))
        .group_by(Equipment.type)
        .all()
    )
    brand_count = sa.func.count(Equipment.id)
    top_brands = (
        db.session.query(Equipment.brand, brand_count)
        .group_by(Equipment.brand)
        .order_by(brand_count.desc(), Equipment.brand)
        .limit(10)
        .all()
    )
    return {
        "total": sum(by_status.values()),
        "by_status": {status: by_status.get(status, 0) for status in EQUIPMENT_STATUSES},
        "by_type": {kind: by_type.get(kind, 0) for kind in EQUIPMENT_TYPES},
        "top_brands": [{"brand": brand, "count": count} for brand, count in top_brands],
    }


# =========================================================================
# Create / update
# =========================================================================


def create_equipment(data: dict[str, Any], user_id: int | None = None) -> Equipment:
    """
    Register a new item.

    Args:
        data:    serial_number (required), external_asset_id, type,
                 brand, model, internal_id, imei, phone_line, location,
                 notes, status (anything but ``assigned``).
        user_id: ID of the user creating the record.

    Raises:
        ValidationError: Missing serial, unknown type or status.
        ConflictError:   Serial number or external ID already registered.
    """
    serial_number = (data.get("serial_number") or "").strip()
    external_asset_id = (str(data.get("external_asset_id") or "")).strip() or None
    status = data.get("status") or STATUS_AVAILABLE

    errors = []
    if not serial_number:
        errors.append({"field": "serial_number", "reason": "required"})
    if data.get("type") and data["type"] not in EQUIPMENT_TYPES:
        errors.append({"field": "type", "reason": "invalid", "value": data["type"]})
    if status not in EQUIPMENT_STATUSES:
        errors.append({"field": "status", "reason": "invalid", "value": status})
    elif status == STATUS_ASSIGNED:
        errors.append(
            {
                "field": "status",
                "reason": "use an allocation or the assign operation",
                "value": status,
            }
        )
    if errors:
        raise ValidationError("Invalid equipment data.", errors=errors)

    if get_by_serial_number(serial_number) is not None:
        raise ConflictError(
            f"Serial number {serial_number} is already registered.",
            {"serial_number": serial_number},
        )
    if external_asset_id and get_by_external_asset_id(external_asset_id) is not None:
        raise ConflictError(
            f"External asset {external_asset_id} is already linked.",
            {"external_asset_id": external_asset_id},
        )

    equipment = Equipment(
        serial_number=serial_number,
        external_asset_id=external_asset_id,
        status=status,
    )
    for name in _DESCRIPTIVE_FIELDS:
        if data.get(name) is not None:
            setattr(equipment, name, data[name])
    db.session.add(equipment)
    db.session.flush()

    audit_service.log_change(
        user_id=user_id,
        action_type="CREATE",
        entity_type="equipment",
        entity_id=equipment.id,
        new_value=equipment.to_dict(),
    )
    db.session.commit()

    logger.info("Created equipment %s (%s)", serial_number, equipment.type)
    return equipment


def update_equipment(
    equipment_id: int,
    changes: dict[str, Any],
    user_id: int | None = None,
) -> Equipment:
    """
    Update descriptive fields of an item.

    Status and owner cannot be changed here; allocations, returns,
    ``assign_to_user`` and ``release`` do that.

    Raises:
        NotFoundError:   Unknown equipment.
        ValidationError: Attempt to set status/owner, or unknown fields.
        ConflictError:   New serial or external ID already in use.
    """
    equipment = get_equipment(equipment_id)

    allowed = set(_DESCRIPTIVE_FIELDS) | {"serial_number", "external_asset_id"}
    errors = [
        {"field": key, "reason": "managed by the assignment transitions"}
        for key in changes
        if key in ("status", "assigned_user_id")
    ]
    errors += [
        {"field": key, "reason": "unknown field"}
        for key in changes
        if key not in allowed and key not in ("status", "assigned_user_id")
    ]
    if changes.get("type") and changes["type"] not in EQUIPMENT_TYPES:
        errors.append({"field": "type", "reason": "invalid", "value": changes["type"]})
    if "serial_number" in changes and not (changes["serial_number"] or "").strip():
        errors.append({"field": "serial_number", "reason": "required"})
    if errors:
        raise ValidationError("Invalid equipment update.", errors=errors)

    new_serial = (changes.get("serial_number") or equipment.serial_number).strip()
    if new_serial != equipment.serial_number:
        if get_by_serial_number(new_serial) is not None:
            raise ConflictError(
                f"Serial number {new_serial} is already registered.",
                {"serial_number": new_serial},
            )
    if "external_asset_id" in changes:
        new_external = str(changes["external_asset_id"] or "").strip() or None
        other = get_by_external_asset_id(new_external) if new_external else None
        if other is not None and other.id != equipment.id:
            raise ConflictError(
                f"External asset {new_external} is already linked.",
                {"external_asset_id": new_external},
            )
        changes = {**changes, "external_asset_id": new_external}

    previous = {}
    updated = {}
    for key, value in {**changes, "serial_number": new_serial}.items():
        if getattr(equipment, key) != value:
            previous[key] = getattr(equipment, key)
            updated[key] = value
            setattr(equipment, key, value)

    if updated:
        audit_service.log_change(
            user_id=user_id,
            action_type="UPDATE",
            entity_type="equipment",
            entity_id=equipment.id,
            previous_value=previous,
            new_value=updated,
        )
        db.session.commit()
        logger.info("Updated equipment %s: %s", equipment.serial_number, list(updated))

    return equipment


def delete_equipment(equipment_id: int, user_id: int | None = None) -> None:
    """
    Remove an item from the registry.

    This is a hard delete; the audit entry keeps the last known state.
    The item's pending-sync rows are dropped with it.

    Raises:
        NotFoundError: Unknown equipment.
        ConflictError: The item is on loan (release it first) or appears
                       on allocation or return paperwork.
    """
    equipment = get_equipment(equipment_id)

    if equipment.assigned_user_id is not None or equipment.status == STATUS_ASSIGNED:
        raise ConflictError(
            f"Equipment {equipment.serial_number} is assigned; release it first.",
            {
                "equipment_id": equipment.id,
                "assigned_user_id": equipment.assigned_user_id,
            },
        )

    allocation_lines = AllocationItem.query.filter_by(equipment_id=equipment.id).count()
    return_lines = ReturnedItem.query.filter_by(equipment_id=equipment.id).count()
    if allocation_lines or return_lines:
        raise ConflictError(
            f"Equipment {equipment.serial_number} appears on dotation paperwork.",
            {
                "equipment_id": equipment.id,
                "allocation_items": allocation_lines,
                "returned_items": return_lines,
            },
        )

    audit_service.log_change(
        user_id=user_id,
        action_type="DELETE",
        entity_type="equipment",
        entity_id=equipment.id,
        previous_value=equipment.to_dict(),
    )

    PendingSync.query.filter_by(equipment_id=equipment.id).delete()
    db.session.delete(equipment)
    db.session.commit()

    logger.info("Deleted equipment %s", equipment.serial_number)


# =========================================================================
# State transitions
# =========================================================================


def transition_to_assigned(
    equipment_id: int, user_id: int, actor_id: int | None = None
) -> Equipment:
    """
    Assign an available item to a user in one conditional UPDATE.

    The UPDATE only matches when the row is still available with no
    owner; zero affected rows means someone else got there first.

    Raises:
        NotFoundError: The row does not exist.
        ConflictError: The row is not available (or already has an owner).
    """
    result = db.session.execute(
        sa.update(Equipment)
        .where(
            Equipment.id == equipment_id,
            Equipment.status == STATUS_AVAILABLE,
            Equipment.assigned_user_id.is_(None),
        )
        .values(status=STATUS_ASSIGNED, assigned_user_id=user_id)
        .execution_options(synchronize_session=False)
    )

    if result.rowcount != 1:
        db.session.rollback()
        current = db.session.get(Equipment, equipment_id)
        if current is None:
            raise NotFoundError("Equipment", equipment_id)
        raise ConflictError(
            f"Equipment {current.serial_number} is not available "
            f"(status {current.status}).",
            {
                "equipment_id": equipment_id,
                "serial_number": current.serial_number,
                "status": current.status,
            },
        )

    audit_service.log_change(
        user_id=actor_id,
        action_type="ASSIGN",
        entity_type="equipment",
        entity_id=equipment_id,
        previous_value={"status": STATUS_AVAILABLE, "assigned_user_id": None},
        new_value={"status": STATUS_ASSIGNED, "assigned_user_id": user_id},
    )
    db.session.commit()

    equipment = db.session.get(Equipment, equipment_id)
    logger.info("Equipment %s assigned to user %d", equipment.serial_number, user_id)
    return equipment


def transition_to_released(
    equipment_id: int, actor_id: int | None = None
) -> Equipment:
    """
    Make an item available again and clear its owner.

    Idempotent: an item that is already available is returned as-is
    without a write.

    Raises:
        NotFoundError: The row does not exist.
    """
    return _transition_to_unowned(equipment_id, STATUS_AVAILABLE, "RELEASE", actor_id)


def transition_to_returned(
    equipment_id: int, actor_id: int | None = None
) -> Equipment:
    """Mark an item as handed back by its user and clear its owner."""
    return _transition_to_unowned(equipment_id, STATUS_RETURNED, "RETURN", actor_id)


def _transition_to_unowned(
    equipment_id: int, target_status: str, action_type: str, actor_id: int | None
) -> Equipment:
    equipment = get_equipment(equipment_id)
    if equipment.status == target_status and equipment.assigned_user_id is None:
        logger.debug(
            "Equipment %s already %s; nothing to do",
            equipment.serial_number,
            target_status,
        )
        return equipment

    previous = {
        "status": equipment.status,
        "assigned_user_id": equipment.assigned_user_id,
    }
    db.session.execute(
        sa.update(Equipment)
        .where(Equipment.id == equipment_id)
        .values(status=target_status, assigned_user_id=None)
        .execution_options(synchronize_session=False)
    )
    audit_service.log_change(
        user_id=actor_id,
        action_type=action_type,
        entity_type="equipment",
        entity_id=equipment_id,
        previous_value=previous,
        new_value={"status": target_status, "assigned_user_id": None},
    )
    db.session.commit()

    equipment = db.session.get(Equipment, equipment_id)
    logger.info(
        "Equipment %s moved %s -> %s",
        equipment.serial_number,
        previous["status"],
        target_status,
    )
    return equipment


# =========================================================================
# Public single-item operations
# =========================================================================


def assign_to_user(
    equipment_id: int,
    user_id: int,
    status_attributes=None,
    actor_id: int | None = None,
) -> Equipment:
    """
    Assign one item to a user outside of an allocation, then mirror
    the new status to the asset system (best effort).

    Raises:
        NotFoundError: Unknown user or equipment.
        ConflictError: The item is not available.
    """
    if user_service.get_user_by_id(user_id) is None:
        raise NotFoundError("User", user_id)

    equipment = transition_to_assigned(equipment_id, user_id, actor_id=actor_id)
    get_sync_port().push_many([equipment], status_attributes)
    return equipment


def release(
    equipment_id: int,
    status_attributes=None,
    actor_id: int | None = None,
) -> Equipment:
    """Release one item back to the pool, then mirror the status."""
    equipment = transition_to_released(equipment_id, actor_id=actor_id)
    get_sync_port().push_many([equipment], status_attributes)
    return equipment


# =========================================================================
# Inbound sync
# =========================================================================


def upsert_from_external(
    fields: dict[str, Any], user_id: int | None = None
) -> tuple[Equipment, bool]:
    """
    Merge an item described by the asset system into the registry.

    The row is matched by ``external_asset_id`` first, then by
    ``serial_number``.  Identity fields of an existing row are kept;
    ``external_asset_id`` is only filled when it was empty.

    Status and owner are normalised so the registry invariant holds:
      - a status other than ``assigned`` clears the owner;
      - ``assigned`` without an owner keeps the current local owner,
        or falls back to ``available`` when there is none;
      - no status at all keeps the current status, or ``assigned``
        when an owner is supplied.

    Args:
        fields:  serial_number (required), external_asset_id, status,
                 assigned_user_id, and any descriptive column.
        user_id: ID of the user triggering the sync, for the audit log.

    Returns:
        ``(equipment, created)``.

    Raises:
        ValidationError: Empty serial number or unknown status.
    """
    serial_number = str(fields.get("serial_number") or "").strip()
    if not serial_number:
        raise ValidationError(
            "A serial number is required to import equipment.",
            errors=[{"field": "serial_number", "reason": "required"}],
        )
    external_asset_id = str(fields.get("external_asset_id") or "").strip() or None
    status = fields.get("status")
    if status is not None and status not in EQUIPMENT_STATUSES:
        raise ValidationError(
            f"Unknown equipment status {status}.",
            errors=[{"field": "status", "reason": "invalid", "value": status}],
        )
    owner_id = fields.get("assigned_user_id")

    equipment = get_by_external_asset_id(external_asset_id) if external_asset_id else None
    if equipment is None:
        equipment = get_by_serial_number(serial_number)
    created = equipment is None

    if created:
        equipment = Equipment(
            serial_number=serial_number,
            external_asset_id=external_asset_id,
            type=TYPE_OTHER,
        )
        db.session.add(equipment)
        previous = None
    else:
        previous = equipment.to_dict()
        if external_asset_id and not equipment.external_asset_id:
            equipment.external_asset_id = external_asset_id
        elif external_asset_id and equipment.external_asset_id != external_asset_id:
            logger.warning(
                "Equipment %s is linked to external asset %s; ignoring %s",
                serial_number,
                equipment.external_asset_id,
                external_asset_id,
            )
        if equipment.serial_number != serial_number:
            logger.warning(
                "External asset %s reports serial %s but the registry has %s; "
                "keeping the registry value",
                external_asset_id,
                serial_number,
                equipment.serial_number,
            )

    for name in _DESCRIPTIVE_FIELDS:
        value = fields.get(name)
        if value is not None and value != "":
            setattr(equipment, name, value)
    if equipment.type not in EQUIPMENT_TYPES:
        equipment.type = TYPE_OTHER

    # -- Normalise the status/owner pair -----------------------------------
    current_status = None if created else equipment.status
    current_owner = None if created else equipment.assigned_user_id
    if status is None:
        status = STATUS_ASSIGNED if owner_id else (current_status or STATUS_AVAILABLE)

    if status == STATUS_ASSIGNED:
        owner_id = owner_id or current_owner
        if owner_id is None:
            logger.warning(
                "Equipment %s is assigned externally but has no known user; "
                "importing it as available",
                serial_number,
            )
            status = STATUS_AVAILABLE
    else:
        owner_id = None

    equipment.status = status
    equipment.assigned_user_id = owner_id
    equipment.last_synced_at = _utcnow()
    db.session.flush()

    audit_service.log_change(
        user_id=user_id,
        action_type="SYNC",
        entity_type="equipment",
        entity_id=equipment.id,
        previous_value=previous,
        new_value={
            "serial_number": equipment.serial_number,
            "external_asset_id": equipment.external_asset_id,
            "status": equipment.status,
            "assigned_user_id": equipment.assigned_user_id,
        },
    )
    db.session.commit()

    logger.info(
        "%s equipment %s from the asset system",
        "Created" if created else "Updated",
        equipment.serial_number,
    )
    return equipment, created
