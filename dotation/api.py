"""
Small helpers shared by the JSON blueprints.
"""

from typing import Any

from flask import request

from dotation.errors import ValidationError


def json_body() -> dict[str, Any]:
    """
    Return the request's JSON object.

    Raises:
        ValidationError: If the body is missing or not a JSON object.
    """
    data = request.get_json(silent=True)
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object.")
    return data


def status_attributes(data: dict[str, Any]):
    """Per-request attribute IDs for the status push, if the client sent any."""
    return data.get("statusAttributes") or data.get("status_attributes")


def page_args(default_per_page: int = 50) -> tuple[int, int]:
    page = request.args.get("page", 1, type=int) or 1
    per_page = request.args.get("per_page", default_per_page, type=int) or default_per_page
    return max(page, 1), min(max(per_page, 1), 200)


def paginated(pagination, key: str = "items") -> dict[str, Any]:
    """Serialise a Flask-SQLAlchemy pagination object."""
    return {
        key: [item.to_dict() for item in pagination.items],
        "page": pagination.page,
        "per_page": pagination.per_page,
        "total": pagination.total,
        "pages": pagination.pages,
    }


def pick(data: dict[str, Any], *keys: str, default: Any = None) -> Any:
    """First present key wins; lets clients send snake_case or camelCase."""
    for key in keys:
        if key in data and data[key] is not None:
            return data[key]
    return default


def required_int(data: dict[str, Any], *keys: str) -> int:
    """
    Raises:
        ValidationError: If none of ``keys`` holds an integer.
    """
    value = pick(data, *keys)
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(
            f"{keys[0]} is required.",
            errors=[{"field": keys[0], "reason": "required integer"}],
        )
    return value
