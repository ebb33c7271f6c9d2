"""
Routes for the assets blueprint: manual triggers for the external
asset system sync.

Restricted to admin and IT roles.  Transport failures surface as 502
here because the sync itself is the requested operation.
"""

import logging

from flask import current_app, jsonify, request
from flask_login import current_user, login_required

from dotation.api import json_body, page_args, paginated, pick
from dotation.blueprints.assets import bp
from dotation.decorators import role_required
from dotation.errors import ValidationError
from dotation.services import asset_sync_service

logger = logging.getLogger(__name__)


@bp.route("/pull/<object_id>", methods=["POST"])
@login_required
@role_required("admin", "it")
def asset_pull(object_id):
    """Pull one object into the registry.  Body: mapping, default_type."""
    data = json_body()
    outcome = asset_sync_service.sync_equipment_from_external(
        object_id,
        pick(data, "mapping", default={}),
        default_type=pick(data, "default_type", "defaultType"),
        user_id=current_user.id,
    )
    return jsonify(outcome.to_dict()), 201 if outcome.created else 200


@bp.route("/push/<int:equipment_id>", methods=["POST"])
@login_required
@role_required("admin", "it")
def asset_push(equipment_id):
    """Create or update the full object.  Body: mapping, object_type_id."""
    data = json_body()
    equipment = asset_sync_service.sync_equipment_to_external(
        equipment_id,
        pick(data, "mapping", default={}),
        object_type_id=pick(data, "object_type_id", "objectTypeId"),
        user_id=current_user.id,
    )
    return jsonify(equipment.to_dict())


@bp.route("/status/<int:equipment_id>", methods=["POST"])
@login_required
@role_required("admin", "it")
def asset_push_status(equipment_id):
    """
    Mirror status and owner of one item.

    Falls back to the configured attribute IDs.  Always answers 200;
    ``pushed`` is false when the push was skipped or queued.
    """
    data = json_body()
    status_attr_id = pick(
        data, "status_attr_id", "statusAttrId",
        default=current_app.config.get("ASSETS_STATUS_ATTR_ID"),
    )
    if not status_attr_id:
        raise ValidationError(
            "A status attribute ID is required.",
            errors=[{"field": "status_attr_id", "reason": "required"}],
        )
    pushed = asset_sync_service.update_status_only(
        equipment_id,
        status_attr_id=str(status_attr_id),
        assigned_user_attr_id=pick(
            data, "assigned_user_attr_id", "assignedUserAttrId",
            default=current_app.config.get("ASSETS_ASSIGNED_USER_ATTR_ID"),
        ),
    )
    return jsonify({"equipment_id": equipment_id, "pushed": pushed})


@bp.route("/sync", methods=["POST"])
@login_required
@role_required("admin", "it")
def asset_sync_all():
    """
    Bulk pull by object type ID, or by schema and object type name.

    Body: object_type_id | (schema_name, object_type_name), mapping,
    auto_detect (default true), limit, default_type.
    """
    data = json_body()
    limit = pick(data, "limit", default=1000)
    if isinstance(limit, bool) or not isinstance(limit, int) or limit < 1:
        raise ValidationError(
            "limit must be a positive integer.",
            errors=[{"field": "limit", "value": limit}],
        )
    sync_log = asset_sync_service.sync_all_from_external(
        object_type_id=pick(data, "object_type_id", "objectTypeId"),
        schema_name=pick(data, "schema_name", "schemaName"),
        object_type_name=pick(data, "object_type_name", "objectTypeName"),
        mapping=pick(data, "mapping"),
        auto_detect=bool(pick(data, "auto_detect", "autoDetect", default=True)),
        limit=limit,
        default_type=pick(data, "default_type", "defaultType"),
        user_id=current_user.id,
    )
    return jsonify(sync_log.to_dict())


@bp.route("/detect/<object_id>")
@login_required
@role_required("admin", "it")
def asset_detect(object_id):
    """Preview the attribute mapping detected on one object."""
    return jsonify(asset_sync_service.preview_detection(object_id).to_dict())


@bp.route("/pending")
@login_required
@role_required("admin", "it")
def pending_list():
    """Outbox of failed status pushes.  ``include_resolved=1`` shows all."""
    page, per_page = page_args()
    pagination = asset_sync_service.get_pending_syncs(
        include_resolved=request.args.get("include_resolved") in ("1", "true"),
        page=page,
        per_page=per_page,
    )
    return jsonify(paginated(pagination, "pending"))


@bp.route("/pending/retry", methods=["POST"])
@login_required
@role_required("admin", "it")
def pending_retry():
    data = json_body()
    limit = pick(data, "limit", default=100)
    if isinstance(limit, bool) or not isinstance(limit, int) or limit < 1:
        raise ValidationError(
            "limit must be a positive integer.",
            errors=[{"field": "limit", "value": limit}],
        )
    return jsonify(asset_sync_service.retry_pending_syncs(limit=limit))


@bp.route("/sync-logs")
@login_required
@role_required("admin", "it")
def sync_log_list():
    page, per_page = page_args(default_per_page=20)
    return jsonify(paginated(asset_sync_service.get_sync_logs(page, per_page), "logs"))
