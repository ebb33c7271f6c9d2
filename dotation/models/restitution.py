"""
Return (restitution) records.

A return closes an allocation, fully or in part.  It carries three
independent signature slots (employee, IT, HR) and an HR validation
block.  Signing fills one slot at a time; the HR validation needs the
employee and IT slots to be filled first.
"""

from dotation.extensions import db

# -- Returned item conditions ----------------------------------------------
RETURN_GOOD = "good"
RETURN_DEGRADED = "degraded"
RETURN_DAMAGED = "damaged"
RETURN_MISSING = "missing"
RETURN_DESTROYED = "destroyed"
RETURN_CONDITIONS = (
    RETURN_GOOD,
    RETURN_DEGRADED,
    RETURN_DAMAGED,
    RETURN_MISSING,
    RETURN_DESTROYED,
)

# -- Signer roles ----------------------------------------------------------
SIGNER_EMPLOYEE = "employee"
SIGNER_IT = "it"
SIGNER_RH = "rh"
SIGNER_ROLES = (SIGNER_EMPLOYEE, SIGNER_IT, SIGNER_RH)


class EquipmentReturn(db.Model):
    """
    Paperwork for equipment handed back by an employee.

    Each signature slot is a (name, image, timestamp) triple;
    ``signed_at`` mirrors the most recent slot that was filled.
    """

    __tablename__ = "equipment_return"

    id = db.Column(db.Integer, primary_key=True, autoincrement=True)
    allocation_id = db.Column(
        db.Integer, db.ForeignKey("allocation.id"), nullable=False, index=True
    )
    user_id = db.Column(
        db.Integer, db.ForeignKey("app_user.id"), nullable=False, index=True
    )
    user_name = db.Column(db.String(200), nullable=False)
    return_date = db.Column(db.Date, nullable=False)
    removed_software = db.Column(db.JSON, nullable=False, default=list)

    # -- Signature slots ---------------------------------------------------
    employee_signer_name = db.Column(db.String(200), nullable=True)
    employee_signature = db.Column(db.Text, nullable=True)
    employee_signed_at = db.Column(db.DateTime, nullable=True)
    it_signer_name = db.Column(db.String(200), nullable=True)
    it_signature = db.Column(db.Text, nullable=True)
    it_signed_at = db.Column(db.DateTime, nullable=True)
    rh_signer_name = db.Column(db.String(200), nullable=True)
    rh_signature = db.Column(db.Text, nullable=True)
    rh_signed_at = db.Column(db.DateTime, nullable=True)
    signed_at = db.Column(db.DateTime, nullable=True)

    # -- HR validation -----------------------------------------------------
    validated_by = db.Column(db.Integer, db.ForeignKey("app_user.id"), nullable=True)
    validated_at = db.Column(db.DateTime, nullable=True)
    full_settlement = db.Column(db.Boolean, nullable=False, default=False)
    completed_at = db.Column(db.DateTime, nullable=True)

    created_by = db.Column(db.Integer, db.ForeignKey("app_user.id"), nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime,
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    # -- Relationships -----------------------------------------------------
    allocation = db.relationship("Allocation", back_populates="returns")
    user = db.relationship("User", foreign_keys=[user_id])
    validator = db.relationship("User", foreign_keys=[validated_by])
    creator = db.relationship("User", foreign_keys=[created_by])
    items = db.relationship(
        "ReturnedItem",
        back_populates="equipment_return",
        order_by="ReturnedItem.position",
        cascade="all, delete-orphan",
    )

    def signature_slot(self, role: str) -> dict:
        """Return the (name, signed, timestamp) view of one slot."""
        signed_at = getattr(self, f"{role}_signed_at")
        return {
            "signer_name": getattr(self, f"{role}_signer_name"),
            "signed": getattr(self, f"{role}_signature") is not None,
            "signed_at": signed_at.isoformat() if signed_at else None,
        }

    @property
    def is_validated(self) -> bool:
        return self.validated_at is not None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "allocation_id": self.allocation_id,
            "user_id": self.user_id,
            "user_name": self.user_name,
            "return_date": self.return_date.isoformat() if self.return_date else None,
            "items": [item.to_dict() for item in self.items],
            "removed_software": self.removed_software or [],
            "signatures": {
                SIGNER_EMPLOYEE: self.signature_slot(SIGNER_EMPLOYEE),
                SIGNER_IT: self.signature_slot(SIGNER_IT),
                SIGNER_RH: self.signature_slot(SIGNER_RH),
            },
            "signed_at": self.signed_at.isoformat() if self.signed_at else None,
            "validated_by": self.validated_by,
            "validated_at": (
                self.validated_at.isoformat() if self.validated_at else None
            ),
            "full_settlement": self.full_settlement,
            "completed_at": (
                self.completed_at.isoformat() if self.completed_at else None
            ),
            "created_by": self.created_by,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self) -> str:
        return f"<EquipmentReturn {self.id} allocation={self.allocation_id}>"


class ReturnedItem(db.Model):
    """One line of a return, with the condition the item came back in."""

    __tablename__ = "returned_item"
    __table_args__ = (
        db.CheckConstraint(
            "condition IN ('good', 'degraded', 'damaged', 'missing', 'destroyed')",
            name="CK_returned_item_condition",
        ),
    )

    id = db.Column(db.Integer, primary_key=True, autoincrement=True)
    return_id = db.Column(
        db.Integer, db.ForeignKey("equipment_return.id"), nullable=False, index=True
    )
    position = db.Column(db.Integer, nullable=False, default=0)
    equipment_id = db.Column(
        db.Integer, db.ForeignKey("equipment.id"), nullable=False, index=True
    )
    serial_number = db.Column(db.String(100), nullable=False)
    internal_id = db.Column(db.String(100), nullable=True)
    returned_at = db.Column(db.Date, nullable=False)
    condition = db.Column(db.String(20), nullable=False, default=RETURN_GOOD)
    notes = db.Column(db.Text, nullable=True)
    photos = db.Column(db.JSON, nullable=False, default=list)

    # -- Relationships -----------------------------------------------------
    equipment_return = db.relationship("EquipmentReturn", back_populates="items")
    equipment = db.relationship("Equipment")

    def to_dict(self) -> dict:
        return {
            "equipment_id": self.equipment_id,
            "serial_number": self.serial_number,
            "internal_id": self.internal_id,
            "returned_at": self.returned_at.isoformat() if self.returned_at else None,
            "condition": self.condition,
            "notes": self.notes,
            "photos": self.photos or [],
        }

    def __repr__(self) -> str:
        return f"<ReturnedItem return={self.return_id} equipment={self.equipment_id}>"
