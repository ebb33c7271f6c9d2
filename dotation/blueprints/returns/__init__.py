"""
Returns blueprint: equipment restitutions, signatures and HR validation.
"""

from flask import Blueprint

bp = Blueprint("returns", __name__)

from dotation.blueprints.returns import routes  # noqa: E402, F401
