"""
Return service: records equipment handed back against an allocation.

A return is only accepted for items that belong to the allocation it
closes and are still on loan to its user.  Once persisted, every
returned item moves to ``returned`` with no owner and the allocation
is marked completed.  The new statuses are then pushed to the asset
system, best effort.

Paperwork has three signature slots (employee, IT, HR).  A slot is
filled once: the write is a conditional UPDATE guarded by the slot
being empty, so concurrent signers cannot overwrite each other.  HR
validation requires the employee and IT signatures.
"""

import logging
from collections import Counter
from datetime import date, datetime, timezone
from typing import Any

import sqlalchemy as sa

from dotation.errors import ConflictError, NotFoundError, ValidationError
from dotation.extensions import db
from dotation.models.allocation import ALLOCATION_COMPLETED
from dotation.models.equipment import STATUS_ASSIGNED, Equipment
from dotation.models.restitution import (
    RETURN_CONDITIONS,
    RETURN_GOOD,
    SIGNER_ROLES,
    EquipmentReturn,
    ReturnedItem,
)
from dotation.services import allocation_service, audit_service, equipment_service
from dotation.services.allocation_service import parse_date
from dotation.services.identifier_resolver import resolve_equipment_refs
from dotation.services.sync_port import get_sync_port

logger = logging.getLogger(__name__)


# =========================================================================
# Lookup
# =========================================================================


def get_return(return_id: int) -> EquipmentReturn:
    """
    Return one return record.

    Raises:
        NotFoundError: If no return has this ID.
    """
    equipment_return = db.session.get(EquipmentReturn, return_id)
    if equipment_return is None:
        raise NotFoundError("Return", return_id)
    return equipment_return


def get_returns_for_allocation(allocation_id: int) -> list[EquipmentReturn]:
    """Return every return recorded against an allocation, newest first."""
    return (
        EquipmentReturn.query.filter_by(allocation_id=allocation_id)
        .order_by(EquipmentReturn.return_date.desc(), EquipmentReturn.id.desc())
        .all()
    )


def get_returns_for_user(user_id: int) -> list[EquipmentReturn]:
    """Return a user's returns, newest first."""
    return (
        EquipmentReturn.query.filter_by(user_id=user_id)
        .order_by(EquipmentReturn.return_date.desc(), EquipmentReturn.id.desc())
        .all()
    )


def search_returns(
    search: str | None = None,
    user_id: int | None = None,
    allocation_id: int | None = None,
    start_date: date | None = None,
    end_date: date | None = None,
    full_settlement: bool | None = None,
    page: int = 1,
    per_page: int = 20,
):
    """
    Query returns with optional filters and pagination.

    Args:
        search:          Matched against the user name snapshot.
        user_id:         Only this user's returns.
        allocation_id:   Only returns of this allocation.
        start_date:      Return date on or after.
        end_date:        Return date on or before.
        full_settlement: Filter on the HR full-settlement flag.
        page:            Page number (1-indexed).
        per_page:        Records per page.

    Returns:
        A SQLAlchemy pagination object.
    """
    query = EquipmentReturn.query.order_by(
        EquipmentReturn.return_date.desc(), EquipmentReturn.id.desc()
    )

    if search:
        query = query.filter(EquipmentReturn.user_name.ilike(f"%{search.strip()}%"))
    if user_id is not None:
        query = query.filter(EquipmentReturn.user_id == user_id)
    if allocation_id is not None:
        query = query.filter(EquipmentReturn.allocation_id == allocation_id)
    if start_date:
        query = query.filter(EquipmentReturn.return_date >= start_date)
    if end_date:
        query = query.filter(EquipmentReturn.return_date <= end_date)
    if full_settlement is not None:
        query = query.filter(EquipmentReturn.full_settlement == full_settlement)

    return query.paginate(page=page, per_page=per_page, error_out=False)


def get_return_stats() -> dict[str, Any]:
    """Return totals, HR validation backlog, and counts by month."""
    total = db.session.query(sa.func.count(EquipmentReturn.id)).scalar() or 0
    completed = (
        db.session.query(sa.func.count(EquipmentReturn.id))
        .filter(EquipmentReturn.validated_at.isnot(None))
        .scalar()
        or 0
    )
    full_settlement = (
        db.session.query(sa.func.count(EquipmentReturn.id))
        .filter(EquipmentReturn.full_settlement.is_(True))
        .scalar()
        or 0
    )
    months = Counter(
        returned.strftime("%Y-%m")
        for (returned,) in db.session.query(EquipmentReturn.return_date).all()
    )
    return {
        "total": total,
        "pending_hr_validation": total - completed,
        "completed": completed,
        "full_settlement": full_settlement,
        "by_month": [
            {"month": month, "count": months[month]} for month in sorted(months)
        ],
    }


# =========================================================================
# Create
# =========================================================================


def create_return(
    allocation_id: int,
    returned_items: list[dict[str, Any]],
    return_date: Any = None,
    removed_software: list[str] | None = None,
    created_by: int | None = None,
    status_attributes=None,
) -> EquipmentReturn:
    """
    Record equipment handed back against an allocation.

    Args:
        allocation_id:     The allocation being closed.
        returned_items:    One reference dict per item (see
                           ``identifier_resolver``); may also carry
                           ``condition``, ``notes``, ``photos`` and
                           ``returned_at``.
        return_date:       Defaults to today.
        removed_software:  Software uninstalled during the return.
        created_by:        ID of the IT user recording the return.
        status_attributes: Optional attribute IDs for the status push.

    Raises:
        NotFoundError:   Unknown allocation.
        ValidationError: Empty list, unresolvable references, items not
                         in the allocation, missing rows, bad conditions.
        ConflictError:   Items no longer on loan to the allocation's user.
    """
    # 1. The allocation must exist.
    allocation = allocation_service.get_allocation(allocation_id)

    if not returned_items:
        raise ValidationError(
            "At least one returned item is required.",
            errors=[{"field": "returned_items", "reason": "empty"}],
        )

    # 2. Resolve references and check they belong to the allocation.
    resolution = resolve_equipment_refs(returned_items)
    resolution.raise_for_errors()

    allocated = set(allocation.equipment_ids)
    foreign = [eid for eid in resolution.equipment_ids if eid not in allocated]
    if foreign:
        raise ValidationError(
            "The following equipment does not belong to allocation "
            f"{allocation_id}: {', '.join(str(eid) for eid in foreign)}",
            errors=[
                {"equipment_id": eid, "reason": "not in allocation"} for eid in foreign
            ],
        )

    # 3. Every row must still exist.
    rows = {
        row.id: row
        for row in Equipment.query.filter(
            Equipment.id.in_(resolution.equipment_ids)
        ).all()
    }
    missing = [eid for eid in resolution.equipment_ids if eid not in rows]
    if missing:
        raise ValidationError(
            "One or more equipment items do not exist.",
            errors=[{"equipment_id": eid, "reason": "not found"} for eid in missing],
        )

    # 4. Every item must still be on loan to the allocation's user.
    not_on_loan = [
        rows[eid]
        for eid in resolution.equipment_ids
        if rows[eid].status != STATUS_ASSIGNED
        or rows[eid].assigned_user_id != allocation.user_id
    ]
    if not_on_loan:
        serials = ", ".join(row.serial_number for row in not_on_loan)
        raise ConflictError(
            f"The following equipment is no longer on loan under allocation "
            f"{allocation_id}: {serials}",
            {
                "errors": [
                    {
                        "equipment_id": row.id,
                        "serial_number": row.serial_number,
                        "status": row.status,
                        "reason": "not on loan",
                    }
                    for row in not_on_loan
                ]
            },
        )

    returned_on = parse_date(return_date, "return_date") or date.today()
    items = []
    item_errors = []
    for position, ref in enumerate(resolution.resolved):
        equipment = rows[ref.equipment_id]
        condition = ref.reference.get("condition") or RETURN_GOOD
        if condition not in RETURN_CONDITIONS:
            item_errors.append(
                {"index": ref.index, "field": "condition", "value": condition}
            )
            continue
        photos = ref.reference.get("photos") or []
        items.append(
            ReturnedItem(
                position=position,
                equipment_id=equipment.id,
                serial_number=equipment.serial_number,
                internal_id=equipment.internal_id,
                returned_at=parse_date(ref.reference.get("returned_at"), "returned_at")
                or returned_on,
                condition=condition,
                notes=ref.reference.get("notes"),
                photos=[str(photo) for photo in photos],
            )
        )
    if item_errors:
        raise ValidationError("Invalid returned item fields.", errors=item_errors)

    # 5. Persist the return.
    equipment_return = EquipmentReturn(
        allocation_id=allocation.id,
        user_id=allocation.user_id,
        user_name=allocation.user_name,
        return_date=returned_on,
        removed_software=[str(name) for name in (removed_software or [])],
        created_by=created_by,
        items=items,
    )
    db.session.add(equipment_return)
    db.session.flush()

    audit_service.log_change(
        user_id=created_by,
        action_type="CREATE",
        entity_type="equipment_return",
        entity_id=equipment_return.id,
        new_value={
            "allocation_id": allocation.id,
            "equipment": [item.serial_number for item in items],
            "return_date": returned_on.isoformat(),
        },
    )
    db.session.commit()
    return_id = equipment_return.id

    logger.info(
        "Return %d recorded for allocation %d with %d item(s)",
        return_id,
        allocation_id,
        len(items),
    )

    # 6. Every returned item goes back to stock as returned.
    returned_rows = [
        equipment_service.transition_to_returned(eid, actor_id=created_by)
        for eid in resolution.equipment_ids
    ]

    # 7. The allocation is closed.
    allocation = allocation_service.get_allocation(allocation_id)
    if allocation.status != ALLOCATION_COMPLETED:
        previous_status = allocation.status
        allocation.status = ALLOCATION_COMPLETED
        audit_service.log_change(
            user_id=created_by,
            action_type="UPDATE",
            entity_type="allocation",
            entity_id=allocation.id,
            previous_value={"status": previous_status},
            new_value={"status": ALLOCATION_COMPLETED},
        )
        db.session.commit()

    get_sync_port().push_many(returned_rows, status_attributes)
    return get_return(return_id)


# =========================================================================
# Signatures and HR validation
# =========================================================================


def sign_return(
    return_id: int,
    role: str,
    signer_name: str,
    signature_image: str,
    user_id: int | None = None,
) -> EquipmentReturn:
    """
    Fill one signature slot.

    Args:
        return_id:       The return being signed.
        role:            ``employee``, ``it`` or ``rh``.
        signer_name:     Name printed under the signature.
        signature_image: Encoded signature image.
        user_id:         ID of the user submitting the signature.

    Raises:
        NotFoundError:   Unknown return.
        ValidationError: Unknown role, missing name or image.
        ConflictError:   The slot is already signed, or HR has already
                         validated the return.
    """
    if role not in SIGNER_ROLES:
        raise ValidationError(
            f"Unknown signer role '{role}'.",
            errors=[{"field": "role", "value": role, "allowed": list(SIGNER_ROLES)}],
        )
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

    get_return(return_id)

    signature_column = getattr(EquipmentReturn, f"{role}_signature")
    signed_at = datetime.now(timezone.utc)
    result = db.session.execute(
        sa.update(EquipmentReturn)
        .where(
            EquipmentReturn.id == return_id,
            signature_column.is_(None),
            EquipmentReturn.validated_at.is_(None),
        )
        .values(
            {
                f"{role}_signer_name": signer_name,
                f"{role}_signature": signature_image,
                f"{role}_signed_at": signed_at,
                "signed_at": signed_at,
            }
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        db.session.rollback()
        if get_return(return_id).is_validated:
            raise ConflictError(
                f"Return {return_id} is already validated by HR.",
                {"return_id": return_id, "role": role},
            )
        raise ConflictError(
            f"Return {return_id} is already signed by {role}.",
            {"return_id": return_id, "role": role},
        )

    audit_service.log_change(
        user_id=user_id,
        action_type="SIGN",
        entity_type="equipment_return",
        entity_id=return_id,
        new_value={"role": role, "signer_name": signer_name},
    )
    db.session.commit()

    logger.info("Return %d signed by %s (%s)", return_id, signer_name, role)
    return get_return(return_id)


def validate_by_hr(
    return_id: int,
    validated_by: int,
    full_settlement: bool = False,
) -> EquipmentReturn:
    """
    Record HR validation of a signed return.

    Raises:
        NotFoundError:   Unknown return.
        ValidationError: Employee or IT signature missing.
        ConflictError:   Already validated.
    """
    equipment_return = get_return(return_id)

    if equipment_return.employee_signature is None:
        raise ValidationError(
            "The employee signature is required before HR validation.",
            errors=[{"field": "employee_signature", "reason": "required"}],
        )
    if equipment_return.it_signature is None:
        raise ValidationError(
            "The IT signature is required before HR validation.",
            errors=[{"field": "it_signature", "reason": "required"}],
        )
    if equipment_return.is_validated:
        raise ConflictError(
            f"Return {return_id} is already validated.",
            {"return_id": return_id},
        )

    now = datetime.now(timezone.utc)
    equipment_return.validated_by = validated_by
    equipment_return.validated_at = now
    equipment_return.full_settlement = bool(full_settlement)
    equipment_return.completed_at = now

    audit_service.log_change(
        user_id=validated_by,
        action_type="VALIDATE",
        entity_type="equipment_return",
        entity_id=return_id,
        new_value={"full_settlement": bool(full_settlement)},
    )
    db.session.commit()

    logger.info(
        "Return %d validated by HR user %d (full settlement: %s)",
        return_id,
        validated_by,
        full_settlement,
    )
    return equipment_return
