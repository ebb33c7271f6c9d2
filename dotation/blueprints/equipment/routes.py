"""
Routes for the equipment blueprint.

Reads are open to any signed-in user.  Changes are restricted to admin
and IT roles and are audit-logged by the equipment service.
"""

import logging

from flask import jsonify, request
from flask_login import current_user, login_required

from dotation.api import (
    json_body,
    page_args,
    paginated,
    required_int,
    status_attributes,
)
from dotation.blueprints.equipment import bp
from dotation.decorators import role_required
from dotation.services import equipment_service

logger = logging.getLogger(__name__)


# =========================================================================
# Reads
# =========================================================================


@bp.route("/")
@login_required
def equipment_list():
    """Search the registry. Filters: q, type, status, brand, location, user_id."""
    page, per_page = page_args()
    pagination = equipment_service.search_equipment(
        search=request.args.get("q"),
        equipment_type=request.args.get("type"),
        status=request.args.get("status"),
        brand=request.args.get("brand"),
        location=request.args.get("location"),
        user_id=request.args.get("user_id", type=int),
        page=page,
        per_page=per_page,
    )
    return jsonify(paginated(pagination, "equipment"))


@bp.route("/stats")
@login_required
def equipment_stats():
    return jsonify(equipment_service.get_equipment_stats())


@bp.route("/available")
@login_required
def equipment_available():
    """Items that can be allocated right now."""
    return jsonify(
        {"equipment": [item.to_dict() for item in equipment_service.find_available()]}
    )


@bp.route("/<int:equipment_id>")
@login_required
def equipment_detail(equipment_id):
    return jsonify(equipment_service.get_equipment(equipment_id).to_dict())


# =========================================================================
# Changes
# =========================================================================


@bp.route("/", methods=["POST"])
@login_required
@role_required("admin", "it")
def equipment_create():
    """Register a new item."""
    equipment = equipment_service.create_equipment(json_body(), user_id=current_user.id)
    return jsonify(equipment.to_dict()), 201


@bp.route("/<int:equipment_id>", methods=["PATCH"])
@login_required
@role_required("admin", "it")
def equipment_update(equipment_id):
    """Update descriptive fields.  Status and owner change through assign/release."""
    equipment = equipment_service.update_equipment(
        equipment_id, json_body(), user_id=current_user.id
    )
    return jsonify(equipment.to_dict())


@bp.route("/<int:equipment_id>", methods=["DELETE"])
@login_required
@role_required("admin", "it")
def equipment_delete(equipment_id):
    """Remove an item that is neither on loan nor on any paperwork."""
    equipment_service.delete_equipment(equipment_id, user_id=current_user.id)
    return "", 204


@bp.route("/<int:equipment_id>/assign", methods=["POST"])
@login_required
@role_required("admin", "it")
def equipment_assign(equipment_id):
    """Assign one available item to a user outside of an allocation."""
    data = json_body()
    user_id = required_int(data, "user_id", "userId")
    equipment = equipment_service.assign_to_user(
        equipment_id,
        user_id,
        status_attributes=status_attributes(data),
        actor_id=current_user.id,
    )
    return jsonify(equipment.to_dict())


@bp.route("/<int:equipment_id>/release", methods=["POST"])
@login_required
@role_required("admin", "it")
def equipment_release(equipment_id):
    """Put an item back into the available pool."""
    data = json_body()
    equipment = equipment_service.release(
        equipment_id,
        status_attributes=status_attributes(data),
        actor_id=current_user.id,
    )
    return jsonify(equipment.to_dict())
