"""
Asset sync service: keeps the registry and the asset system roughly
in step, in both directions.

Inbound (asset system -> registry):
  - ``sync_equipment_from_external`` pulls one object.
  - ``sync_all_from_external`` pulls every object of one type, in
    batches, and records an ``AssetSyncLog``.

Outbound (registry -> asset system):
  - ``sync_equipment_to_external`` creates or updates the full object.
  - ``update_status_only`` mirrors status and owner after an
    allocation, return, assignment or release.  It never raises; a
    failed push is written to the ``PendingSync`` outbox and replayed by
    ``retry_pending_syncs`` (``flask assets-retry-pending``).

The asset system is advisory.  Nothing here is allowed to fail an
allocation or a return.
"""

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from dotation.errors import (
    ConflictError,
    DotationError,
    SyncError,
    ValidationError,
)
from dotation.extensions import db
from dotation.models.audit import (
    OPERATION_STATUS_UPDATE,
    SYNC_COMPLETED,
    SYNC_FAILED,
    SYNC_STARTED,
    AssetSyncLog,
    PendingSync,
)
from dotation.models.equipment import (
    STATUS_ASSIGNED,
    STATUS_AVAILABLE,
    STATUS_DESTROYED,
    STATUS_IN_REPAIR,
    STATUS_LOST,
    STATUS_RETURNED,
    TYPE_DESKTOP,
    TYPE_IP_PHONE,
    TYPE_LAPTOP,
    TYPE_MOBILE,
    TYPE_MONITOR,
    TYPE_OTHER,
    TYPE_TABLET,
    Equipment,
)
from dotation.services import audit_service, equipment_service, user_service
from dotation.services.assets_client import AssetsApiClient, build_type_query
from dotation.services.attribute_detector import (
    AttributeMapping,
    detect_attribute_mapping,
    first_attribute_value,
)

logger = logging.getLogger(__name__)


# =========================================================================
# Vocabulary
# =========================================================================

# Checked in order; the first keyword found in the lower-cased external
# status wins.
_INBOUND_STATUS_KEYWORDS: tuple[tuple[tuple[str, ...], str], ...] = (
    (("disponible", "available"), STATUS_AVAILABLE),
    (("affecté", "affecte", "assigned"), STATUS_ASSIGNED),
    (("réparation", "reparation", "repair", "maintenance"), STATUS_IN_REPAIR),
    (("restitué", "restitue", "returned"), STATUS_RETURNED),
    (("perdu", "lost"), STATUS_LOST),
    (("détruit", "detruit", "destroyed"), STATUS_DESTROYED),
)

OUTBOUND_STATUS = {
    STATUS_AVAILABLE: "disponible",
    STATUS_ASSIGNED: "affecté",
    STATUS_IN_REPAIR: "en_reparation",
    STATUS_RETURNED: "restitue",
    STATUS_LOST: "perdu",
    STATUS_DESTROYED: "detruit",
}

# "pc_portable" must be tested before "pc_fixe"; "ip" phones before mobiles.
_INBOUND_TYPE_KEYWORDS: tuple[tuple[tuple[str, ...], str], ...] = (
    (("portable", "laptop", "notebook"), TYPE_LAPTOP),
    (("fixe", "desktop", "workstation"), TYPE_DESKTOP),
    (("telephone_ip", "téléphone ip", "telephone ip", "ip phone", "voip"), TYPE_IP_PHONE),
    (("mobile", "smartphone", "iphone", "téléphone", "telephone"), TYPE_MOBILE),
    (("ecran", "écran", "monitor", "screen"), TYPE_MONITOR),
    (("tablette", "tablet", "ipad"), TYPE_TABLET),
)


def map_inbound_status(value: str | None) -> str | None:
    """Translate an external status label; None when it is unknown."""
    if not value:
        return None
    lowered = value.lower()
    for keywords, status in _INBOUND_STATUS_KEYWORDS:
        if any(keyword in lowered for keyword in keywords):
            return status
    return None


def map_outbound_status(status: str) -> str:
    return OUTBOUND_STATUS.get(status, status)


def map_inbound_type(value: str | None, default_type: str | None = None) -> str:
    """Translate an external type label, falling back to ``default_type``."""
    if value:
        lowered = value.lower()
        for keywords, equipment_type in _INBOUND_TYPE_KEYWORDS:
            if any(keyword in lowered for keyword in keywords):
                return equipment_type
    return default_type or TYPE_OTHER


def extract_attribute_value(external_object: dict[str, Any], attr_id: str | None) -> str | None:
    """
    Return the display value of one attribute of a raw object.

    References resolve to the referenced object's name (or label),
    status-shaped values to the status name.
    """
    if not attr_id:
        return None
    for attribute in external_object.get("attributes") or []:
        if str(attribute.get("objectTypeAttributeId")) != str(attr_id):
            continue
        value = first_attribute_value(attribute)
        if not value:
            return None
        referenced = value.get("referencedObject")
        if referenced:
            return referenced.get("name") or referenced.get("label") or value.get("displayValue")
        status = value.get("status")
        if status:
            return status.get("name") or value.get("displayValue")
        raw = value.get("value")
        if raw is not None and str(raw).strip() != "":
            return str(raw).strip()
        return value.get("displayValue")
    return None


# =========================================================================
# Inbound
# =========================================================================


@dataclass
class SyncOutcome:
    equipment: Equipment
    created: bool

    def to_dict(self) -> dict[str, Any]:
        return {"equipment": self.equipment.to_dict(), "created": self.created}


def sync_equipment_from_external(
    object_id: str,
    mapping,
    default_type: str | None = None,
    client=None,
    user_id: int | None = None,
) -> SyncOutcome:
    """
    Pull one object from the asset system into the registry.

    Args:
        object_id:    Asset-system object ID.
        mapping:      ``AttributeMapping`` or camelCase dict.
        default_type: Equipment type when the object has none we know.
        client:       Optional ``AssetsApiClient`` (tests pass a fake).
        user_id:      ID of the user triggering the sync.

    Raises:
        NotFoundError:   The object does not exist in the asset system.
        ValidationError: The object has no serial number.
        SyncError:       The asset system could not be reached.
    """
    client = client or AssetsApiClient()
    external_object = client.get_object(object_id)
    fields = _fields_from_object(
        external_object, AttributeMapping.coerce(mapping), default_type, object_id
    )
    equipment, created = equipment_service.upsert_from_external(fields, user_id=user_id)
    return SyncOutcome(equipment=equipment, created=created)


def _fields_from_object(
    external_object: dict[str, Any],
    mapping: AttributeMapping,
    default_type: str | None,
    object_id: str | None = None,
) -> dict[str, Any]:
    """Translate a raw object into ``upsert_from_external`` fields."""
    external_asset_id = str(external_object.get("id") or object_id or "")
    serial_number = extract_attribute_value(external_object, mapping.serial_number)
    if not serial_number:
        raise ValidationError(
            f"External asset {external_asset_id} has no serial number.",
            errors=[
                {
                    "external_asset_id": external_asset_id,
                    "attribute_id": mapping.serial_number,
                    "reason": "missing serial number",
                }
            ],
        )

    raw_status = extract_attribute_value(external_object, mapping.status)
    status = map_inbound_status(raw_status)
    if raw_status and status is None:
        logger.debug("Unknown external status %r for %s", raw_status, serial_number)

    fields: dict[str, Any] = {
        "serial_number": serial_number,
        "external_asset_id": external_asset_id or None,
        "brand": extract_attribute_value(external_object, mapping.brand),
        "model": extract_attribute_value(external_object, mapping.model),
        "internal_id": extract_attribute_value(external_object, mapping.internal_id),
        "status": status,
    }
    raw_type = extract_attribute_value(external_object, mapping.type)
    if raw_type or default_type:
        fields["type"] = map_inbound_type(raw_type, default_type)

    # Owner: only a local user found by email counts.
    email = extract_attribute_value(external_object, mapping.assigned_user)
    if email:
        owner = user_service.get_user_by_email(email)
        if owner is None:
            logger.warning(
                "Asset %s is assigned to %s in the asset system but no such "
                "local user exists",
                serial_number,
                email,
            )
        elif status in (None, STATUS_AVAILABLE, STATUS_ASSIGNED):
            fields["assigned_user_id"] = owner.id
            fields["status"] = STATUS_ASSIGNED
        else:
            logger.info(
                "Asset %s is %s externally; ignoring assigned user %s",
                serial_number,
                status,
                email,
            )

    return fields


def sync_all_from_external(
    object_type_id: str | None = None,
    schema_name: str | None = None,
    object_type_name: str | None = None,
    mapping=None,
    auto_detect: bool = True,
    limit: int = 1000,
    default_type: str | None = None,
    user_id: int | None = None,
    client=None,
) -> AssetSyncLog:
    """
    Pull every object of one type from the asset system.

    Objects are processed in batches of ``ASSETS_SYNC_BATCH_SIZE``.
    Within a batch the full objects are fetched concurrently (at most
    ``ASSETS_MAX_CONCURRENT_REQUESTS`` at a time); the database upserts
    then run one by one on the calling thread.  One bad object never
    stops the run.

    Args:
        object_type_id:   Select by object type ID, or
        schema_name:      select by schema name and
        object_type_name: object type name (defaults from config).
        mapping:          Attribute mapping; detected when missing.
        auto_detect:      Fill unset mapping fields from the first object.
        limit:            Maximum number of objects to process.
        default_type:     Equipment type for objects without a known type.
        user_id:          ID of the user who triggered the sync.
        client:           Optional ``AssetsApiClient``.

    Returns:
        The AssetSyncLog record with the run's counts.
    """
    if not object_type_id and not (schema_name and object_type_name):
        schema_name = schema_name or current_app.config["ASSETS_DEFAULT_SCHEMA"]
        object_type_name = (
            object_type_name or current_app.config["ASSETS_DEFAULT_OBJECT_TYPE"]
        )
    ql_query = build_type_query(object_type_id, schema_name, object_type_name)
    mapping = AttributeMapping.coerce(mapping)

    sync_log = _create_sync_log(ql_query, user_id)

    try:
        client = client or AssetsApiClient()
        objects = client.query(ql_query, limit=limit, bulk=True)
        logger.info("Asset sync: %d object(s) match %s", len(objects), ql_query)

        if auto_detect and objects:
            mapping = _auto_detect(client, objects[0], mapping)

        stats = _new_stats()
        if not mapping.serial_number:
            logger.warning(
                "Asset sync: no serial number attribute in the mapping; "
                "skipping all %d object(s)",
                len(objects),
            )
            stats["processed"] = stats["skipped"] = len(objects)
        else:
            batch_size = max(1, current_app.config.get("ASSETS_SYNC_BATCH_SIZE", 50))
            max_workers = max(
                1, current_app.config.get("ASSETS_MAX_CONCURRENT_REQUESTS", 5)
            )
            for start in range(0, len(objects), batch_size):
                batch = objects[start : start + batch_size]
                _sync_batch(client, batch, mapping, default_type, user_id, max_workers, stats)
                logger.info(
                    "Asset sync: %d/%d processed (%d created, %d updated, "
                    "%d skipped, %d errors)",
                    stats["processed"],
                    len(objects),
                    stats["created"],
                    stats["updated"],
                    stats["skipped"],
                    stats["errors"],
                )

        _complete_sync_log(sync_log, stats, mapping)

        audit_service.log_change(
            user_id=user_id,
            action_type="SYNC",
            entity_type="asset_sync",
            entity_id=sync_log.id,
            new_value={"query": ql_query, **stats},
        )
        db.session.commit()

        logger.info(
            "Asset sync completed: %d processed, %d created, %d updated, "
            "%d skipped, %d errors",
            stats["processed"],
            stats["created"],
            stats["updated"],
            stats["skipped"],
            stats["errors"],
        )

    except Exception as exc:  # pylint: disable=broad-exception-caught
        db.session.rollback()
        _fail_sync_log(sync_log, str(exc))
        logger.error("Asset sync failed: %s", exc, exc_info=True)

    return sync_log


def _auto_detect(client, sample: dict[str, Any], mapping: AttributeMapping) -> AttributeMapping:
    """Fill unset mapping fields from one sample object."""
    if not sample.get("attributes") and sample.get("id") is not None:
        sample = client.get_object(str(sample["id"]), bulk=True)
    detection = detect_attribute_mapping(sample)
    for warning in detection.warnings:
        logger.warning("Attribute detection: %s", warning)
    merged = mapping.merged_with(detection.mapping)
    logger.info("Asset sync using attribute mapping %s", merged.to_dict())
    return merged


def _sync_batch(
    client,
    batch: list[dict[str, Any]],
    mapping: AttributeMapping,
    default_type: str | None,
    user_id: int | None,
    max_workers: int,
    stats: dict,
) -> None:
    """Fetch one batch concurrently, then upsert it sequentially."""
    object_ids = [str(obj.get("id")) for obj in batch if obj.get("id") is not None]
    stats["skipped"] += len(batch) - len(object_ids)
    stats["processed"] += len(batch) - len(object_ids)

    details: dict[str, dict[str, Any] | None] = {}
    with ThreadPoolExecutor(max_workers=max_workers) as executor:
        future_to_id = {
            executor.submit(client.get_object, object_id, True): object_id
            for object_id in object_ids
        }
        for future in as_completed(future_to_id):
            object_id = future_to_id[future]
            try:
                details[object_id] = future.result()
            except Exception as exc:  # pylint: disable=broad-exception-caught
                logger.error("Asset sync: fetching object %s failed: %s", object_id, exc)
                details[object_id] = None

    # Upserts keep the order the query returned.
    for object_id in object_ids:
        stats["processed"] += 1
        external_object = details.get(object_id)
        if external_object is None:
            stats["errors"] += 1
            continue
        try:
            fields = _fields_from_object(external_object, mapping, default_type, object_id)
        except ValidationError as exc:
            logger.warning("Asset sync: skipping object %s: %s", object_id, exc.message)
            stats["skipped"] += 1
            continue
        try:
            _, created = equipment_service.upsert_from_external(fields, user_id=user_id)
        except (DotationError, SQLAlchemyError) as exc:
            db.session.rollback()
            logger.error(
                "Asset sync: upsert of object %s (serial %s) failed: %s",
                object_id,
                fields.get("serial_number"),
                exc,
            )
            stats["errors"] += 1
            continue
        stats["created" if created else "updated"] += 1


# =========================================================================
# Outbound
# =========================================================================


def sync_equipment_to_external(
    equipment_id: int,
    mapping,
    object_type_id: str | None = None,
    client=None,
    user_id: int | None = None,
) -> Equipment:
    """
    Create or update the full asset-system object for one item.

    Updates when the item already has an ``external_asset_id``,
    otherwise creates an object of ``object_type_id`` and stores the
    returned ID.

    Raises:
        NotFoundError:   Unknown equipment.
        ValidationError: Serial, brand, model or status attribute ID
                         missing; no object type for a create.
        ConflictError:   The created object ID is already linked elsewhere.
        SyncError:       The asset system rejected or dropped the call.
    """
    mapping = AttributeMapping.coerce(mapping)
    missing = mapping.missing("serial_number", "brand", "model", "status")
    if missing:
        raise ValidationError(
            "Attribute IDs are required to push equipment.",
            errors=[{"field": key, "reason": "required"} for key in missing],
        )

    equipment = equipment_service.get_equipment(equipment_id)
    if not equipment.external_asset_id and not object_type_id:
        raise ValidationError(
            "object_type_id is required to create the asset.",
            errors=[{"field": "object_type_id", "reason": "required"}],
        )

    attributes = [
        _attribute(mapping.serial_number, equipment.serial_number),
        _attribute(mapping.brand, equipment.brand),
        _attribute(mapping.model, equipment.model),
        _attribute(mapping.status, map_outbound_status(equipment.status)),
    ]
    if mapping.type:
        attributes.append(_attribute(mapping.type, equipment.type))
    if mapping.internal_id and equipment.internal_id:
        attributes.append(_attribute(mapping.internal_id, equipment.internal_id))
    if mapping.assigned_user:
        attributes.append(_owner_attribute(mapping.assigned_user, equipment))

    client = client or AssetsApiClient()
    try:
        if equipment.external_asset_id:
            client.update_object(equipment.external_asset_id, attributes)
            action = "updated"
        else:
            created = client.create_object(str(object_type_id), attributes) or {}
            new_id = str(created.get("id") or "")
            if not new_id:
                raise SyncError(
                    "Asset system did not return an object ID.",
                    serial_number=equipment.serial_number,
                )
            other = equipment_service.get_by_external_asset_id(new_id)
            if other is not None and other.id != equipment.id:
                raise ConflictError(
                    f"External asset {new_id} is already linked to "
                    f"{other.serial_number}.",
                    {"external_asset_id": new_id},
                )
            equipment.external_asset_id = new_id
            action = "created"
    except SyncError as exc:
        logger.error(
            "Push of %s to the asset system failed (external %s, attributes %s): %s",
            equipment.serial_number,
            equipment.external_asset_id,
            [a["objectTypeAttributeId"] for a in attributes],
            exc.message,
        )
        raise exc.with_context(
            serial_number=equipment.serial_number,
            external_asset_id=equipment.external_asset_id,
            attribute_ids=[a["objectTypeAttributeId"] for a in attributes],
        ) from exc

    equipment.last_synced_at = datetime.now(timezone.utc)
    audit_service.log_change(
        user_id=user_id,
        action_type="SYNC",
        entity_type="equipment",
        entity_id=equipment.id,
        new_value={"external_asset_id": equipment.external_asset_id, "direction": "push"},
    )
    db.session.commit()

    logger.info(
        "Asset %s %s in the asset system as %s",
        equipment.serial_number,
        action,
        equipment.external_asset_id,
    )
    return equipment


def update_status_only(
    equipment_id: int,
    status_attr_id: str,
    assigned_user_attr_id: str | None = None,
    client=None,
) -> bool:
    """
    Mirror status (and owner) of one item to the asset system.

    Never raises.  Failures are logged with the serial, the external ID
    and the attempted attribute IDs, and recorded in the pending-sync
    outbox.

    Returns:
        True when the asset system acknowledged the update.
    """
    equipment = db.session.get(Equipment, equipment_id)
    if equipment is None:
        logger.warning("Status push skipped: equipment %s not found", equipment_id)
        return False
    if not equipment.external_asset_id:
        logger.info(
            "Status push skipped: %s is not linked to the asset system",
            equipment.serial_number,
        )
        return False

    attribute_ids = {"statusAttrId": status_attr_id}
    if assigned_user_attr_id:
        attribute_ids["assignedUserAttrId"] = assigned_user_attr_id

    try:
        _push_status(equipment, status_attr_id, assigned_user_attr_id, client)
    except Exception as exc:  # pylint: disable=broad-exception-caught
        message = exc.message if isinstance(exc, DotationError) else str(exc)
        logger.error(
            "Status push failed for %s (external %s, attributes %s): %s",
            equipment.serial_number,
            equipment.external_asset_id,
            sorted(attribute_ids.values()),
            message,
        )
        _record_pending(equipment_id, attribute_ids, message)
        return False

    try:
        now = datetime.now(timezone.utc)
        equipment.last_synced_at = now
        # A successful push supersedes any queued one.
        PendingSync.query.filter(
            PendingSync.equipment_id == equipment_id,
            PendingSync.resolved_at.is_(None),
        ).update({"resolved_at": now}, synchronize_session=False)
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.error("Could not stamp sync time for %s: %s", equipment.serial_number, exc)

    logger.info(
        "Status of %s pushed to the asset system (%s)",
        equipment.serial_number,
        equipment.status,
    )
    return True


def retry_pending_syncs(limit: int = 100, client=None) -> dict[str, int]:
    """
    Replay open outbox rows, oldest first.

    Each row pushes the item's *current* status.  Rows that succeed are
    resolved; rows that fail again get ``attempts`` incremented.

    Returns:
        Counts: processed, resolved, failed.
    """
    stats = {"processed": 0, "resolved": 0, "failed": 0}
    rows = (
        PendingSync.query.filter(PendingSync.resolved_at.is_(None))
        .order_by(PendingSync.created_at, PendingSync.id)
        .limit(limit)
        .all()
    )
    if rows and client is None:
        client = AssetsApiClient()

    for row in rows:
        stats["processed"] += 1
        now = datetime.now(timezone.utc)
        row.last_attempt_at = now
        equipment = row.equipment
        attrs = AttributeMapping.coerce(row.attribute_ids)

        if equipment is None or not equipment.external_asset_id or not attrs.status:
            row.resolved_at = now
            row.last_error = "Equipment is no longer linked to the asset system."
            db.session.commit()
            stats["resolved"] += 1
            continue

        try:
            _push_status(equipment, attrs.status, attrs.assigned_user, client)
        except Exception as exc:  # pylint: disable=broad-exception-caught
            row.attempts += 1
            row.last_error = (exc.message if isinstance(exc, DotationError) else str(exc))[:4000]
            db.session.commit()
            stats["failed"] += 1
            logger.warning(
                "Retry %d for %s failed: %s", row.attempts, row.serial_number, row.last_error
            )
            continue

        row.resolved_at = now
        equipment.last_synced_at = now
        db.session.commit()
        stats["resolved"] += 1
        logger.info("Queued status push for %s delivered", row.serial_number)

    logger.info(
        "Pending sync retry: %d processed, %d resolved, %d failed",
        stats["processed"],
        stats["resolved"],
        stats["failed"],
    )
    return stats


def preview_detection(object_id: str, client=None):
    """
    Run attribute detection on one live object without syncing anything.

    Returns:
        The DetectionResult, so an operator can review the mapping
        before a bulk sync.
    """
    client = client or AssetsApiClient()
    return detect_attribute_mapping(client.get_object(object_id))


def get_pending_syncs(include_resolved: bool = False, page: int = 1, per_page: int = 50):
    """Return outbox rows, open ones only unless asked otherwise."""
    query = PendingSync.query.order_by(PendingSync.created_at.desc(), PendingSync.id.desc())
    if not include_resolved:
        query = query.filter(PendingSync.resolved_at.is_(None))
    return query.paginate(page=page, per_page=per_page, error_out=False)


def get_sync_logs(page: int = 1, per_page: int = 20):
    """
    Return paginated sync log entries, most recent first.

    Returns:
        Flask-SQLAlchemy pagination object.
    """
    return AssetSyncLog.query.order_by(
        AssetSyncLog.started_at.desc(), AssetSyncLog.id.desc()
    ).paginate(page=page, per_page=per_page, error_out=False)


# =========================================================================
# Internal helpers
# =========================================================================


def _attribute(attr_id: str, value: Any) -> dict[str, Any]:
    return {
        "objectTypeAttributeId": str(attr_id),
        "objectAttributeValues": [{"value": value}],
    }


def _owner_attribute(attr_id: str, equipment: Equipment) -> dict[str, Any]:
    owner = equipment.assigned_user
    return {
        "objectTypeAttributeId": str(attr_id),
        "objectAttributeValues": [{"value": owner.email}] if owner else [],
    }


def _push_status(
    equipment: Equipment,
    status_attr_id: str,
    assigned_user_attr_id: str | None,
    client,
) -> None:
    """Send the status (and owner) attributes; raises on failure."""
    attributes = [_attribute(status_attr_id, map_outbound_status(equipment.status))]
    if assigned_user_attr_id:
        attributes.append(_owner_attribute(assigned_user_attr_id, equipment))
    client = client or AssetsApiClient()
    client.update_object(equipment.external_asset_id, attributes)


def _record_pending(equipment_id: int, attribute_ids: dict[str, str], error: str) -> None:
    """Add or refresh the open outbox row for one item.  Never raises."""
    try:
        db.session.rollback()
        equipment = db.session.get(Equipment, equipment_id)
        now = datetime.now(timezone.utc)
        row = PendingSync.query.filter(
            PendingSync.equipment_id == equipment_id,
            PendingSync.operation == OPERATION_STATUS_UPDATE,
            PendingSync.resolved_at.is_(None),
        ).first()
        if row is None:
            row = PendingSync(
                equipment_id=equipment_id,
                serial_number=equipment.serial_number,
                external_asset_id=equipment.external_asset_id,
                operation=OPERATION_STATUS_UPDATE,
                attempts=1,
            )
            db.session.add(row)
        else:
            row.attempts += 1
        row.attribute_ids = attribute_ids
        row.last_error = error[:4000]
        row.last_attempt_at = now
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.error(
            "Could not record pending sync for equipment %s: %s", equipment_id, exc
        )


def _create_sync_log(ql_query: str, user_id: int | None) -> AssetSyncLog:
    """Create a new sync log entry with 'started' status."""
    sync_log = AssetSyncLog(
        triggered_by=user_id,
        ql_query=ql_query[:500],
        status=SYNC_STARTED,
        started_at=datetime.now(timezone.utc),
    )
    db.session.add(sync_log)
    # Committed before the run so _fail_sync_log can still update it
    # after a rollback.
    db.session.commit()
    return sync_log


def _complete_sync_log(sync_log: AssetSyncLog, stats: dict, mapping: AttributeMapping) -> None:
    """Mark a sync log as completed with summary statistics."""
    sync_log.status = SYNC_COMPLETED
    sync_log.completed_at = datetime.now(timezone.utc)
    sync_log.attribute_mapping = mapping.to_dict()
    sync_log.records_processed = stats["processed"]
    sync_log.records_created = stats["created"]
    sync_log.records_updated = stats["updated"]
    sync_log.records_skipped = stats["skipped"]
    sync_log.records_errors = stats["errors"]
    db.session.flush()


def _fail_sync_log(sync_log: AssetSyncLog, error_message: str) -> None:
    """Mark a sync log as failed with an error message."""
    sync_log.status = SYNC_FAILED
    sync_log.error_message = error_message[:4000]
    sync_log.completed_at = datetime.now(timezone.utc)
    # Runs after rollback(); the row itself was committed up front.
    db.session.commit()


def _new_stats() -> dict:
    return {"processed": 0, "created": 0, "updated": 0, "skipped": 0, "errors": 0}
