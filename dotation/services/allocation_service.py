"""
Allocation service: hands equipment to employees.

``create_allocation`` is all-or-nothing up to the point where the
allocation row is committed: an unknown user, an empty batch, an
unresolvable reference, a missing row or an unavailable item all fail
the call before anything is written.  After the commit each item is
moved to ``assigned`` with its own conditional UPDATE; an item that
lost a race meanwhile becomes a warning on the result rather than a
rollback.  Finally the new statuses are pushed to the asset system,
best effort.

Signed allocations are immutable.
"""

import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any

import sqlalchemy as sa
from flask import current_app

from dotation.errors import ConflictError, NotFoundError, ValidationError
from dotation.extensions import db
from dotation.models.allocation import (
    ALLOCATION_COMPLETED,
    ALLOCATION_IN_PROGRESS,
    ALLOCATION_STATUSES,
    CONDITION_GOOD,
    DELIVERY_CONDITIONS,
    Allocation,
    AllocationItem,
)
from dotation.models.equipment import Equipment
from dotation.services import audit_service, equipment_service, user_service
from dotation.services.identifier_resolver import resolve_equipment_refs
from dotation.services.sync_port import get_sync_port

logger = logging.getLogger(__name__)

# Fields ``update_allocation`` accepts.
UPDATABLE_FIELDS = (
    "notes",
    "accessories",
    "additional_software",
    "services",
    "delivery_date",
)


@dataclass
class AllocationResult:
    """The persisted allocation plus any post-commit warnings."""

    allocation: Allocation
    warnings: list[dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {"allocation": self.allocation.to_dict(), "warnings": self.warnings}


def parse_date(value: Any, field_name: str) -> date | None:
    """
    Accept a ``date``, a ``datetime`` or an ISO-8601 string.

    Raises:
        ValidationError: If a string cannot be parsed.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError as exc:
        raise ValidationError(
            f"{field_name} is not a valid date.",
            errors=[{"field": field_name, "value": value}],
        ) from exc


def _string_list(value: Any, field_name: str) -> list[str]:
    if value is None:
        return []
    if not isinstance(value, (list, tuple)):
        raise ValidationError(
            f"{field_name} must be a list.",
            errors=[{"field": field_name, "reason": "expected a list"}],
        )
    return [str(item) for item in value]


# =========================================================================
# Lookup
# =========================================================================


def get_allocation(allocation_id: int) -> Allocation:
    """
    Return one allocation.

    Raises:
        NotFoundError: If no allocation has this ID.
    """
    allocation = db.session.get(Allocation, allocation_id)
    if allocation is None:
        raise NotFoundError("Allocation", allocation_id)
    return allocation


def get_allocations_for_user(user_id: int) -> list[Allocation]:
    """Return a user's allocations, most recent delivery first."""
    return (
        Allocation.query.filter_by(user_id=user_id)
        .order_by(Allocation.delivery_date.desc(), Allocation.id.desc())
        .all()
    )


def search_allocations(
    search: str | None = None,
    user_id: int | None = None,
    status: str | None = None,
    start_date: date | None = None,
    end_date: date | None = None,
    page: int = 1,
    per_page: int = 20,
):
    """
    Query allocations with optional filters and pagination.

    Args:
        search:     Matched against the user name and email snapshots.
        user_id:    Only this user's allocations.
        status:     Filter by allocation status.
        start_date: Delivery date on or after.
        end_date:   Delivery date on or before.
        page:       Page number (1-indexed).
        per_page:   Records per page.

    Returns:
        A SQLAlchemy pagination object.
    """
    query = Allocation.query.order_by(
        Allocation.delivery_date.desc(), Allocation.id.desc()
    )

    if search:
        pattern = f"%{search.strip()}%"
        query = query.filter(
            sa.or_(
                Allocation.user_name.ilike(pattern),
                Allocation.user_email.ilike(pattern),
            )
        )
    if user_id is not None:
        query = query.filter(Allocation.user_id == user_id)
    if status:
        query = query.filter(Allocation.status == status)
    if start_date:
        query = query.filter(Allocation.delivery_date >= start_date)
    if end_date:
        query = query.filter(Allocation.delivery_date <= end_date)

    return query.paginate(page=page, per_page=per_page, error_out=False)


def get_allocation_stats() -> dict[str, Any]:
    """Return counts by status and by delivery month over the last year."""
    by_status = dict(
        db.session.query(Allocation.status, sa.func.count(Allocation.id))
        .group_by(Allocation.status)
        .all()
    )

    today = date.today()
    year, month = today.year, today.month - 11
    if month <= 0:
        year, month = year - 1, month + 12
    cutoff = date(year, month, 1)
    months = Counter(
        delivery.strftime("%Y-%m")
        for (delivery,) in db.session.query(Allocation.delivery_date)
        .filter(Allocation.delivery_date >= cutoff)
        .all()
    )

    return {
        "total": sum(by_status.values()),
        "by_status": {
            status: by_status.get(status, 0) for status in ALLOCATION_STATUSES
        },
        "by_month": [
            {"month": month, "count": months[month]} for month in sorted(months)
        ],
    }


# =========================================================================
# Create
# =========================================================================


def create_allocation(
    user_id: int,
    equipment_refs: list[dict[str, Any]],
    delivery_date: Any = None,
    accessories: list[str] | None = None,
    additional_software: list[str] | None = None,
    services: list[str] | None = None,
    notes: str | None = None,
    created_by: int | None = None,
    status_attributes=None,
) -> AllocationResult:
    """
    Allocate a batch of equipment to one user.

    Args:
        user_id:             The receiving user.
        equipment_refs:      One reference dict per item (see
                             ``identifier_resolver``); may also carry
                             ``condition`` and ``delivered_at``.
        delivery_date:       Defaults to today.
        accessories:         Free-form accessory names.
        additional_software: Software installed on top of the standard set.
        services:            Services enabled for the user.
        notes:               Free text.
        created_by:          ID of the IT user recording the allocation.
        status_attributes:   Optional attribute IDs for the status push.

    Returns:
        AllocationResult with the persisted allocation and warnings for
        items that could not be moved to ``assigned`` after the commit.

    Raises:
        NotFoundError:   Unknown user.
        ValidationError: Empty batch, unresolvable references, missing
                         or unavailable equipment, bad item fields.
    """
    # 1. The user must exist.
    user = user_service.get_user_by_id(user_id)
    if user is None:
        raise NotFoundError("User", user_id)

    # 2. At least one item.
    if not equipment_refs:
        raise ValidationError(
            "At least one equipment item is required.",
            errors=[{"field": "equipment", "reason": "empty"}],
        )

    # 3. Resolve every reference; any failure fails the whole batch.
    resolution = resolve_equipment_refs(equipment_refs)
    resolution.raise_for_errors()

    # 4. Every row exists and is available.
    equipment_ids = resolution.equipment_ids
    rows = {
        row.id: row
        for row in Equipment.query.filter(Equipment.id.in_(equipment_ids)).all()
    }
    missing = [eid for eid in equipment_ids if eid not in rows]
    if missing:
        raise ValidationError(
            "One or more equipment items do not exist.",
            errors=[{"equipment_id": eid, "reason": "not found"} for eid in missing],
        )
    unavailable = [rows[eid] for eid in equipment_ids if not rows[eid].is_available]
    if unavailable:
        serials = ", ".join(row.serial_number for row in unavailable)
        raise ValidationError(
            f"The following equipment is not available: {serials}",
            errors=[
                {
                    "equipment_id": row.id,
                    "serial_number": row.serial_number,
                    "status": row.status,
                    "reason": "not available",
                }
                for row in unavailable
            ],
        )

    delivery = parse_date(delivery_date, "delivery_date") or date.today()
    item_errors = []
    items = []
    for position, ref in enumerate(resolution.resolved):
        equipment = rows[ref.equipment_id]
        condition = ref.reference.get("condition") or CONDITION_GOOD
        if condition not in DELIVERY_CONDITIONS:
            item_errors.append(
                {"index": ref.index, "field": "condition", "value": condition}
            )
            continue
        delivered_at = (
            parse_date(
                ref.reference.get("delivered_at") or ref.reference.get("deliveredDate"),
                "delivered_at",
            )
            or delivery
        )
        items.append(
            AllocationItem(
                position=position,
                equipment_id=equipment.id,
                internal_id=equipment.internal_id,
                equipment_type=equipment.type,
                serial_number=equipment.serial_number,
                delivered_at=delivered_at,
                condition=condition,
            )
        )
    if item_errors:
        raise ValidationError("Invalid equipment item fields.", errors=item_errors)

    # 5. Persist the allocation.
    allocation = Allocation(
        user_id=user.id,
        user_name=user.display_name,
        user_email=user.email,
        delivery_date=delivery,
        status=ALLOCATION_IN_PROGRESS,
        accessories=_string_list(accessories, "accessories"),
        additional_software=_string_list(additional_software, "additional_software"),
        standard_software=list(current_app.config.get("STANDARD_SOFTWARE", [])),
        services=_string_list(services, "services"),
        notes=notes,
        created_by=created_by,
        items=items,
    )
    db.session.add(allocation)
    db.session.flush()

    audit_service.log_change(
        user_id=created_by,
        action_type="CREATE",
        entity_type="allocation",
        entity_id=allocation.id,
        new_value={
            "user_id": user.id,
            "equipment": [item.serial_number for item in items],
            "delivery_date": delivery.isoformat(),
        },
    )
    db.session.commit()
    allocation_id = allocation.id

    logger.info(
        "Allocation %d created for %s with %d item(s)",
        allocation_id,
        user.email,
        len(items),
    )

    # 6. Assign each item.  Losing a race here is reported, not rolled back.
    result = AllocationResult(allocation=allocation)
    assigned = []
    for equipment_id in equipment_ids:
        try:
            assigned.append(
                equipment_service.transition_to_assigned(
                    equipment_id, user.id, actor_id=created_by
                )
            )
        except (ConflictError, NotFoundError) as exc:
            logger.warning(
                "Allocation %d: could not assign equipment %d: %s",
                allocation_id,
                equipment_id,
                exc.message,
            )
            result.warnings.append(
                {"equipment_id": equipment_id, "code": exc.code, "message": exc.message}
            )

    # 7. Mirror statuses to the asset system.
    failed = get_sync_port().push_many(assigned, status_attributes)
    if failed:
        result.warnings.append(
            {
                "code": "SYNC_DEFERRED",
                "message": "Status push to the asset system did not complete.",
                "serial_numbers": failed,
            }
        )

    result.allocation = get_allocation(allocation_id)
    return result


# =========================================================================
# Sign / update
# =========================================================================


def sign_allocation(
    allocation_id: int,
    signer_name: str,
    signature_image: str,
    user_id: int | None = None,
) -> Allocation:
    """
    Record the employee's signature and complete the allocation.

    Raises:
        NotFoundError:   Unknown allocation.
        ValidationError: Missing signer name or image.
        ConflictError:   Already signed.
    """
    if not signer_name or not signature_image:
        raise ValidationError(
            "Signer name and signature image are required.",
            errors=[
                {"field": name, "reason": "required"}
                for name, value in (
                    ("signer_name", signer_name),
                    ("signature_image", signature_image),
                )
                if not value
            ],
        )

    allocation = get_allocation(allocation_id)
    if allocation.is_signed:
        raise ConflictError(
            f"Allocation {allocation_id} is already signed.",
            {"allocation_id": allocation_id},
        )

    signed_at = datetime.now(timezone.utc)
    result = db.session.execute(
        sa.update(Allocation)
        .where(Allocation.id == allocation_id, Allocation.signed_at.is_(None))
        .values(
            signer_name=signer_name,
            signature_image=signature_image,
            signed_at=signed_at,
            status=ALLOCATION_COMPLETED,
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        db.session.rollback()
        raise ConflictError(
            f"Allocation {allocation_id} is already signed.",
            {"allocation_id": allocation_id},
        )

    audit_service.log_change(
        user_id=user_id,
        action_type="SIGN",
        entity_type="allocation",
        entity_id=allocation_id,
        new_value={"signer_name": signer_name, "status": ALLOCATION_COMPLETED},
    )
    db.session.commit()

    logger.info("Allocation %d signed by %s", allocation_id, signer_name)
    return get_allocation(allocation_id)


def update_allocation(
    allocation_id: int,
    patch: dict[str, Any],
    user_id: int | None = None,
) -> Allocation:
    """
    Update the free-form fields of an unsigned allocation.

    Raises:
        NotFoundError:   Unknown allocation.
        ConflictError:   The allocation is signed.
        ValidationError: Unknown or malformed fields.
    """
    allocation = get_allocation(allocation_id)
    if allocation.is_signed:
        raise ConflictError(
            f"Allocation {allocation_id} is signed and can no longer be modified.",
            {"allocation_id": allocation_id},
        )

    unknown = [key for key in patch if key not in UPDATABLE_FIELDS]
    if unknown:
        raise ValidationError(
            "Only notes, accessories, software, services and delivery date "
            "can be updated.",
            errors=[{"field": key, "reason": "not updatable"} for key in unknown],
        )

    values: dict[str, Any] = {}
    for key, value in patch.items():
        if key == "delivery_date":
            values[key] = parse_date(value, key) or allocation.delivery_date
        elif key == "notes":
            values[key] = value
        else:
            values[key] = _string_list(value, key)

    previous = {key: getattr(allocation, key) for key in values}
    for key, value in values.items():
        setattr(allocation, key, value)

    audit_service.log_change(
        user_id=user_id,
        action_type="UPDATE",
        entity_type="allocation",
        entity_id=allocation.id,
        previous_value=previous,
        new_value=values,
    )
    db.session.commit()

    logger.info("Updated allocation %d: %s", allocation_id, list(values))
    return allocation
