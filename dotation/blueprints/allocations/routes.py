"""
Routes for the allocations blueprint.

Creating, updating and signing an allocation is restricted to admin
and IT roles.  The allocation service moves the items to ``assigned``
and mirrors their status to the asset system after its own commit.
"""

import logging

from flask import jsonify, request
from flask_login import current_user, login_required

from dotation.api import (
    json_body,
    page_args,
    paginated,
    pick,
    required_int,
    status_attributes,
)
from dotation.blueprints.allocations import bp
from dotation.decorators import role_required
from dotation.services import allocation_service

logger = logging.getLogger(__name__)


@bp.route("/")
@login_required
def allocation_list():
    """Search allocations. Filters: q, user_id, status, start_date, end_date."""
    page, per_page = page_args(default_per_page=20)
    pagination = allocation_service.search_allocations(
        search=request.args.get("q"),
        user_id=request.args.get("user_id", type=int),
        status=request.args.get("status"),
        start_date=allocation_service.parse_date(request.args.get("start_date"), "start_date"),
        end_date=allocation_service.parse_date(request.args.get("end_date"), "end_date"),
        page=page,
        per_page=per_page,
    )
    return jsonify(paginated(pagination, "allocations"))


@bp.route("/stats")
@login_required
def allocation_stats():
    return jsonify(allocation_service.get_allocation_stats())


@bp.route("/user/<int:user_id>")
@login_required
def allocation_for_user(user_id):
    allocations = allocation_service.get_allocations_for_user(user_id)
    return jsonify({"allocations": [allocation.to_dict() for allocation in allocations]})


@bp.route("/<int:allocation_id>")
@login_required
def allocation_detail(allocation_id):
    return jsonify(allocation_service.get_allocation(allocation_id).to_dict())


@bp.route("/", methods=["POST"])
@login_required
@role_required("admin", "it")
def allocation_create():
    """
    Allocate a batch of equipment to one user.

    Body::

        {"user_id": 7,
         "equipment": [{"serialNumber": "5CG1234XYZ", "condition": "new"}],
         "delivery_date": "2024-03-01", "accessories": ["Dock"]}

    Answers 201 with the allocation and any post-commit warnings.
    """
    data = json_body()
    result = allocation_service.create_allocation(
        user_id=required_int(data, "user_id", "userId"),
        equipment_refs=pick(data, "equipment", "items", default=[]),
        delivery_date=pick(data, "delivery_date", "deliveryDate"),
        accessories=pick(data, "accessories"),
        additional_software=pick(data, "additional_software", "additionalSoftware"),
        services=pick(data, "services"),
        notes=pick(data, "notes"),
        created_by=current_user.id,
        status_attributes=status_attributes(data),
    )
    return jsonify(result.to_dict()), 201


@bp.route("/<int:allocation_id>", methods=["PATCH"])
@login_required
@role_required("admin", "it")
def allocation_update(allocation_id):
    """Change notes, lists or the delivery date of an unsigned allocation."""
    allocation = allocation_service.update_allocation(
        allocation_id, json_body(), user_id=current_user.id
    )
    return jsonify(allocation.to_dict())


@bp.route("/<int:allocation_id>/sign", methods=["POST"])
@login_required
@role_required("admin", "it")
def allocation_sign(allocation_id):
    """Record the employee's signature; the allocation becomes completed."""
    data = json_body()
    allocation = allocation_service.sign_allocation(
        allocation_id,
        signer_name=pick(data, "signer_name", "signerName"),
        signature_image=pick(data, "signature_image", "signature"),
        user_id=current_user.id,
    )
    return jsonify(allocation.to_dict())
