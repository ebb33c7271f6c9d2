"""
Allocations blueprint: equipment handovers (dotations) and their signature.
"""

from flask import Blueprint

bp = Blueprint("allocations", __name__)

from dotation.blueprints.allocations import routes  # noqa: E402, F401
