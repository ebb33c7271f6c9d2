"""
Model package: imports all models so Alembic and SQLAlchemy can
discover them automatically when ``flask db`` commands are run.

  - user.py        -> directory users and roles
  - equipment.py   -> equipment registry
  - allocation.py  -> allocations and their delivered items
  - restitution.py -> returns and their returned items
  - audit.py       -> audit log, asset sync log, pending-sync outbox
"""

from dotation.models.user import User  # noqa: F401
from dotation.models.equipment import Equipment  # noqa: F401
from dotation.models.allocation import Allocation, AllocationItem  # noqa: F401
from dotation.models.restitution import EquipmentReturn, ReturnedItem  # noqa: F401
from dotation.models.audit import AssetSyncLog, AuditLog, PendingSync  # noqa: F401
