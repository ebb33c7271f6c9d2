"""
Audit logging and asset sync tracking models.

``AuditLog`` records all data changes in the application.
``AssetSyncLog`` tracks each bulk pull from the asset system.
``PendingSync`` is the outbox of status pushes that failed and are
waiting for ``flask assets-retry-pending``.
"""

from dotation.extensions import db

# -- Sync log statuses -----------------------------------------------------
SYNC_STARTED = "started"
SYNC_COMPLETED = "completed"
SYNC_FAILED = "failed"

# -- Outbox operations -----------------------------------------------------
OPERATION_STATUS_UPDATE = "status_update"


class AuditLog(db.Model):
    """
    Records all data changes in the application.

    ``action_type`` values: CREATE, UPDATE, ASSIGN, RELEASE, SIGN,
    VALIDATE, LOGIN, LOGOUT, SYNC.

    JSON conventions for ``previous_value`` / ``new_value``:
      - CREATE: previous_value is NULL, new_value has full record.
      - UPDATE: both contain only the changed fields.
    """

    __tablename__ = "audit_log"

    id = db.Column(db.Integer, primary_key=True, autoincrement=True)
    user_id = db.Column(db.Integer, db.ForeignKey("app_user.id"), nullable=True)
    action_type = db.Column(db.String(50), nullable=False)
    entity_type = db.Column(db.String(100), nullable=False)
    entity_id = db.Column(db.Integer, nullable=True)
    previous_value = db.Column(db.Text, nullable=True)
    new_value = db.Column(db.Text, nullable=True)
    ip_address = db.Column(db.String(45), nullable=True)
    user_agent = db.Column(db.String(500), nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, server_default=db.func.now())

    # -- Relationships -----------------------------------------------------
    user = db.relationship("User")

    def __repr__(self) -> str:
        return f"<AuditLog {self.action_type} {self.entity_type}:{self.entity_id}>"


class AssetSyncLog(db.Model):
    """
    Tracks each bulk pull from the asset system: what was queried, how
    many objects were affected, and whether the run succeeded.

    ``attribute_mapping`` stores the mapping actually used, which is the
    auto-detected one when the caller supplied none.
    """

    __tablename__ = "asset_sync_log"

    id = db.Column(db.Integer, primary_key=True, autoincrement=True)
    triggered_by = db.Column(db.Integer, db.ForeignKey("app_user.id"), nullable=True)
    # Column is named "query"; the attribute must not shadow Model.query.
    ql_query = db.Column("query", db.String(500), nullable=True)
    attribute_mapping = db.Column(db.JSON, nullable=True)
    records_processed = db.Column(db.Integer, nullable=False, default=0)
    records_created = db.Column(db.Integer, nullable=False, default=0)
    records_updated = db.Column(db.Integer, nullable=False, default=0)
    records_skipped = db.Column(db.Integer, nullable=False, default=0)
    records_errors = db.Column(db.Integer, nullable=False, default=0)
    status = db.Column(db.String(20), nullable=False)
    error_message = db.Column(db.Text, nullable=True)
    started_at = db.Column(db.DateTime, nullable=False)
    completed_at = db.Column(db.DateTime, nullable=True)

    # -- Relationships -----------------------------------------------------
    triggered_by_user = db.relationship("User", foreign_keys=[triggered_by])

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "triggered_by": self.triggered_by,
            "query": self.ql_query,
            "attribute_mapping": self.attribute_mapping,
            "processed": self.records_processed,
            "created": self.records_created,
            "updated": self.records_updated,
            "skipped": self.records_skipped,
            "errors": self.records_errors,
            "status": self.status,
            "error_message": self.error_message,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": (
                self.completed_at.isoformat() if self.completed_at else None
            ),
        }

    def __repr__(self) -> str:
        return f"<AssetSyncLog {self.id} status={self.status}>"


class PendingSync(db.Model):
    """
    A status push that could not reach the asset system.

    Rows stay open (``resolved_at`` NULL) until a retry succeeds.  The
    serial and external ID are snapshots so an operator can act on the
    row even if the equipment changes meanwhile.
    """

    __tablename__ = "pending_sync"

    id = db.Column(db.Integer, primary_key=True, autoincrement=True)
    equipment_id = db.Column(
        db.Integer, db.ForeignKey("equipment.id"), nullable=False, index=True
    )
    serial_number = db.Column(db.String(100), nullable=False)
    external_asset_id = db.Column(db.String(100), nullable=True)
    operation = db.Column(
        db.String(50), nullable=False, default=OPERATION_STATUS_UPDATE
    )
    attribute_ids = db.Column(db.JSON, nullable=False, default=dict)
    last_error = db.Column(db.Text, nullable=True)
    attempts = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime, nullable=False, server_default=db.func.now())
    last_attempt_at = db.Column(db.DateTime, nullable=True)
    resolved_at = db.Column(db.DateTime, nullable=True, index=True)

    # -- Relationships -----------------------------------------------------
    equipment = db.relationship("Equipment", back_populates="pending_syncs")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "equipment_id": self.equipment_id,
            "serial_number": self.serial_number,
            "external_asset_id": self.external_asset_id,
            "operation": self.operation,
            "attribute_ids": self.attribute_ids or {},
            "last_error": self.last_error,
            "attempts": self.attempts,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "last_attempt_at": (
                self.last_attempt_at.isoformat() if self.last_attempt_at else None
            ),
            "resolved_at": self.resolved_at.isoformat() if self.resolved_at else None,
        }

    def __repr__(self) -> str:
        return f"<PendingSync {self.serial_number} attempts={self.attempts}>"
