"""
Equipment registry model.

One row per physical item (laptop, phone, monitor, ...).  The surrogate
``id`` is the canonical equipment ID used everywhere inside the
application.  ``serial_number`` is the natural key and
``external_asset_id`` links the row to its object in the asset system.

The pair (``status``, ``assigned_user_id``) is guarded by a CHECK
constraint: an owner is present exactly when the status is
``assigned``.  Only ``equipment_service`` transitions may change it.
"""

from dotation.extensions import db

# -- Equipment types -------------------------------------------------------
TYPE_LAPTOP = "laptop"
TYPE_DESKTOP = "desktop"
TYPE_MOBILE = "mobile"
TYPE_IP_PHONE = "ip_phone"
TYPE_MONITOR = "monitor"
TYPE_TABLET = "tablet"
TYPE_OTHER = "other"
EQUIPMENT_TYPES = (
    TYPE_LAPTOP,
    TYPE_DESKTOP,
    TYPE_MOBILE,
    TYPE_IP_PHONE,
    TYPE_MONITOR,
    TYPE_TABLET,
    TYPE_OTHER,
)

# -- Equipment statuses ----------------------------------------------------
STATUS_AVAILABLE = "available"
STATUS_ASSIGNED = "assigned"
STATUS_IN_REPAIR = "in_repair"
STATUS_RETURNED = "returned"
STATUS_LOST = "lost"
STATUS_DESTROYED = "destroyed"
EQUIPMENT_STATUSES = (
    STATUS_AVAILABLE,
    STATUS_ASSIGNED,
    STATUS_IN_REPAIR,
    STATUS_RETURNED,
    STATUS_LOST,
    STATUS_DESTROYED,
)


class Equipment(db.Model):
    """
    A tracked physical item.

    ``brand`` and ``model`` default to ``Unknown`` when the asset system
    does not provide them.  ``imei`` and ``phone_line`` are only
    meaningful for mobiles and IP phones.
    """

    __tablename__ = "equipment"
    __table_args__ = (
        db.CheckConstraint(
            "(status = 'assigned' AND assigned_user_id IS NOT NULL) "
            "OR (status <> 'assigned' AND assigned_user_id IS NULL)",
            name="CK_equipment_assignment",
        ),
        db.CheckConstraint(
            "type IN ('laptop', 'desktop', 'mobile', 'ip_phone', "
            "'monitor', 'tablet', 'other')",
            name="CK_equipment_type",
        ),
        db.CheckConstraint(
            "status IN ('available', 'assigned', 'in_repair', "
            "'returned', 'lost', 'destroyed')",
            name="CK_equipment_status",
        ),
    )

    id = db.Column(db.Integer, primary_key=True, autoincrement=True)
    serial_number = db.Column(db.String(100), unique=True, nullable=False, index=True)
    external_asset_id = db.Column(db.String(100), unique=True, nullable=True, index=True)
    internal_id = db.Column(db.String(100), nullable=True)
    type = db.Column(db.String(20), nullable=False, default=TYPE_LAPTOP)
    brand = db.Column(db.String(100), nullable=False, default="Unknown")
    model = db.Column(db.String(200), nullable=False, default="Unknown")
    imei = db.Column(db.String(50), nullable=True)
    phone_line = db.Column(db.String(50), nullable=True)
    location = db.Column(db.String(200), nullable=True)
    notes = db.Column(db.Text, nullable=True)
    status = db.Column(
        db.String(20), nullable=False, default=STATUS_AVAILABLE, index=True
    )
    assigned_user_id = db.Column(
        db.Integer, db.ForeignKey("app_user.id"), nullable=True, index=True
    )
    last_synced_at = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime,
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    # -- Relationships -----------------------------------------------------
    assigned_user = db.relationship("User", back_populates="equipment")
    pending_syncs = db.relationship(
        "PendingSync", back_populates="equipment", lazy="dynamic"
    )

    @property
    def is_available(self) -> bool:
        """True when the item can be handed out right now."""
        return self.status == STATUS_AVAILABLE and self.assigned_user_id is None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "serial_number": self.serial_number,
            "external_asset_id": self.external_asset_id,
            "internal_id": self.internal_id,
            "type": self.type,
            "brand": self.brand,
            "model": self.model,
            "imei": self.imei,
            "phone_line": self.phone_line,
            "location": self.location,
            "notes": self.notes,
            "status": self.status,
            "assigned_user_id": self.assigned_user_id,
            "assigned_user_email": (
                self.assigned_user.email if self.assigned_user else None
            ),
            "last_synced_at": (
                self.last_synced_at.isoformat() if self.last_synced_at else None
            ),
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self) -> str:
        return f"<Equipment {self.serial_number} status={self.status}>"
