"""
Equipment blueprint: registry CRUD, search and single-item assignment.
"""

from flask import Blueprint

bp = Blueprint("equipment", __name__)

from dotation.blueprints.equipment import routes  # noqa: E402, F401
