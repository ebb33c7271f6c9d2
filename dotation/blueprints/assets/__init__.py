"""
Assets blueprint: manual triggers for the external asset system sync.
"""

from flask import Blueprint

bp = Blueprint("assets", __name__)

from dotation.blueprints.assets import routes  # noqa: E402, F401
