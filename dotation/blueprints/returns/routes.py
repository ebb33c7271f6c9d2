"""
Routes for the returns blueprint.

IT records the return and collects the signatures; HR validates it.
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
from dotation.blueprints.returns import bp
from dotation.decorators import role_required
from dotation.services import return_service
from dotation.services.allocation_service import parse_date

logger = logging.getLogger(__name__)


@bp.route("/")
@login_required
def return_list():
    """
    Search returns.

    Filters: q, user_id, allocation_id, start_date, end_date and
    full_settlement (``1``/``0``).
    """
    page, per_page = page_args(default_per_page=20)
    settlement = request.args.get("full_settlement")
    pagination = return_service.search_returns(
        search=request.args.get("q"),
        user_id=request.args.get("user_id", type=int),
        allocation_id=request.args.get("allocation_id", type=int),
        start_date=parse_date(request.args.get("start_date"), "start_date"),
        end_date=parse_date(request.args.get("end_date"), "end_date"),
        full_settlement=None if settlement is None else settlement in ("1", "true"),
        page=page,
        per_page=per_page,
    )
    return jsonify(paginated(pagination, "returns"))


@bp.route("/stats")
@login_required
def return_stats():
    return jsonify(return_service.get_return_stats())


@bp.route("/allocation/<int:allocation_id>")
@login_required
def return_for_allocation(allocation_id):
    returns = return_service.get_returns_for_allocation(allocation_id)
    return jsonify({"returns": [item.to_dict() for item in returns]})


@bp.route("/user/<int:user_id>")
@login_required
def return_for_user(user_id):
    returns = return_service.get_returns_for_user(user_id)
    return jsonify({"returns": [item.to_dict() for item in returns]})


@bp.route("/<int:return_id>")
@login_required
def return_detail(return_id):
    return jsonify(return_service.get_return(return_id).to_dict())


@bp.route("/", methods=["POST"])
@login_required
@role_required("admin", "it")
def return_create():
    """
    Record the return of items from one allocation.

    Body::

        {"allocation_id": 12,
         "items": [{"serialNumber": "5CG1234XYZ", "condition": "good"}],
         "return_date": "2024-06-30", "removed_software": ["Visio"]}
    """
    data = json_body()
    equipment_return = return_service.create_return(
        allocation_id=required_int(data, "allocation_id", "allocationId"),
        returned_items=pick(data, "items", "equipment", default=[]),
        return_date=pick(data, "return_date", "returnDate"),
        removed_software=pick(data, "removed_software", "removedSoftware"),
        created_by=current_user.id,
        status_attributes=status_attributes(data),
    )
    return jsonify(equipment_return.to_dict()), 201


@bp.route("/<int:return_id>/sign/<role>", methods=["POST"])
@login_required
@role_required("admin", "it", "rh")
def return_sign(return_id, role):
    """Fill one signature slot: employee, it or rh.  First signature wins."""
    data = json_body()
    equipment_return = return_service.sign_return(
        return_id,
        role,
        signer_name=pick(data, "signer_name", "signerName"),
        signature_image=pick(data, "signature_image", "signature"),
        user_id=current_user.id,
    )
    return jsonify(equipment_return.to_dict())


@bp.route("/<int:return_id>/validate", methods=["POST"])
@login_required
@role_required("admin", "rh")
def return_validate(return_id):
    """HR validation; needs the employee and IT signatures."""
    data = json_body()
    equipment_return = return_service.validate_by_hr(
        return_id,
        validated_by=current_user.id,
        full_settlement=bool(pick(data, "full_settlement", "fullSettlement", default=False)),
    )
    return jsonify(equipment_return.to_dict())
