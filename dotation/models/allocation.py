"""
Allocation (dotation) records.

An allocation hands one or more items to one employee.  The lines keep
snapshots of the equipment identity at delivery time so the signed
paperwork stays readable even if the equipment row changes later.
Once ``signed_at`` is set the allocation is immutable.
"""

from dotation.extensions import db

# -- Allocation statuses ---------------------------------------------------
ALLOCATION_IN_PROGRESS = "in_progress"
ALLOCATION_COMPLETED = "completed"
# Declared for reporting; nothing transitions into these yet.
ALLOCATION_OVERDUE = "overdue"
ALLOCATION_CANCELLED = "cancelled"
ALLOCATION_STATUSES = (
    ALLOCATION_IN_PROGRESS,
    ALLOCATION_COMPLETED,
    ALLOCATION_OVERDUE,
    ALLOCATION_CANCELLED,
)

# -- Delivered item conditions ---------------------------------------------
CONDITION_NEW = "new"
CONDITION_GOOD = "good"
CONDITION_NORMAL_WEAR = "normal_wear"
DELIVERY_CONDITIONS = (CONDITION_NEW, CONDITION_GOOD, CONDITION_NORMAL_WEAR)


class Allocation(db.Model):
    """
    One delivery of equipment to one employee.

    ``user_name`` and ``user_email`` are snapshots taken at creation.
    ``standard_software`` is copied from configuration so the record
    shows what was installed at the time.
    """

    __tablename__ = "allocation"
    __table_args__ = (
        db.CheckConstraint(
            "status IN ('in_progress', 'completed', 'overdue', 'cancelled')",
            name="CK_allocation_status",
        ),
    )

    id = db.Column(db.Integer, primary_key=True, autoincrement=True)
    user_id = db.Column(
        db.Integer, db.ForeignKey("app_user.id"), nullable=False, index=True
    )
    user_name = db.Column(db.String(200), nullable=False)
    user_email = db.Column(db.String(200), nullable=False)
    delivery_date = db.Column(db.Date, nullable=False)
    status = db.Column(
        db.String(20), nullable=False, default=ALLOCATION_IN_PROGRESS, index=True
    )
    accessories = db.Column(db.JSON, nullable=False, default=list)
    standard_software = db.Column(db.JSON, nullable=False, default=list)
    additional_software = db.Column(db.JSON, nullable=False, default=list)
    services = db.Column(db.JSON, nullable=False, default=list)
    notes = db.Column(db.Text, nullable=True)

    # -- Signature block ---------------------------------------------------
    signer_name = db.Column(db.String(200), nullable=True)
    signature_image = db.Column(db.Text, nullable=True)
    signed_at = db.Column(db.DateTime, nullable=True)

    created_by = db.Column(db.Integer, db.ForeignKey("app_user.id"), nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime,
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    # -- Relationships -----------------------------------------------------
    user = db.relationship("User", foreign_keys=[user_id])
    creator = db.relationship("User", foreign_keys=[created_by])
    items = db.relationship(
        "AllocationItem",
        back_populates="allocation",
        order_by="AllocationItem.position",
        cascade="all, delete-orphan",
    )
    returns = db.relationship(
        "EquipmentReturn", back_populates="allocation", lazy="dynamic"
    )

    @property
    def is_signed(self) -> bool:
        return self.signed_at is not None

    @property
    def equipment_ids(self) -> list[int]:
        """Canonical IDs of every item in this allocation, in order."""
        return [item.equipment_id for item in self.items]

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "user_name": self.user_name,
            "user_email": self.user_email,
            "delivery_date": (
                self.delivery_date.isoformat() if self.delivery_date else None
            ),
            "status": self.status,
            "items": [item.to_dict() for item in self.items],
            "accessories": self.accessories or [],
            "standard_software": self.standard_software or [],
            "additional_software": self.additional_software or [],
            "services": self.services or [],
            "notes": self.notes,
            "signer_name": self.signer_name,
            "signed_at": self.signed_at.isoformat() if self.signed_at else None,
            "has_signature": self.signature_image is not None,
            "created_by": self.created_by,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self) -> str:
        return f"<Allocation {self.id} user={self.user_id} status={self.status}>"


class AllocationItem(db.Model):
    """
    One delivered item on an allocation.

    The snapshot columns (``internal_id``, ``equipment_type``,
    ``serial_number``) are historical and never refreshed.
    """

    __tablename__ = "allocation_item"
    __table_args__ = (
        db.UniqueConstraint(
            "allocation_id",
            "equipment_id",
            name="UQ_allocation_item_allocation_equipment",
        ),
        db.CheckConstraint(
            "condition IN ('new', 'good', 'normal_wear')",
            name="CK_allocation_item_condition",
        ),
    )

    id = db.Column(db.Integer, primary_key=True, autoincrement=True)
    allocation_id = db.Column(
        db.Integer, db.ForeignKey("allocation.id"), nullable=False, index=True
    )
    position = db.Column(db.Integer, nullable=False, default=0)
    equipment_id = db.Column(
        db.Integer, db.ForeignKey("equipment.id"), nullable=False, index=True
    )
    internal_id = db.Column(db.String(100), nullable=True)
    equipment_type = db.Column(db.String(20), nullable=False)
    serial_number = db.Column(db.String(100), nullable=False)
    delivered_at = db.Column(db.Date, nullable=False)
    condition = db.Column(db.String(20), nullable=False, default=CONDITION_GOOD)

    # -- Relationships -----------------------------------------------------
    allocation = db.relationship("Allocation", back_populates="items")
    equipment = db.relationship("Equipment")

    def to_dict(self) -> dict:
        return {
            "equipment_id": self.equipment_id,
            "internal_id": self.internal_id,
            "type": self.equipment_type,
            "serial_number": self.serial_number,
            "delivered_at": (
                self.delivered_at.isoformat() if self.delivered_at else None
            ),
            "condition": self.condition,
        }

    def __repr__(self) -> str:
        return (
            f"<AllocationItem allocation={self.allocation_id} "
            f"equipment={self.equipment_id}>"
        )
