"""
Directory users and application roles.

Authentication is handled entirely by Entra ID (OAuth2/OIDC). No
passwords are stored.  The allocation engine only needs a user to
exist and to be findable by email; the profile fields are snapshots
taken from the identity token on each login.

Role names:
  - ``admin``:  everything.
  - ``it``:     equipment, allocations, returns, sync triggers.
  - ``rh``:     HR validation of returns, read access.
  - ``viewer``: read access only.  Default for auto-provisioned users.
"""

from flask_login import UserMixin

from dotation.extensions import db

ROLE_ADMIN = "admin"
ROLE_IT = "it"
ROLE_RH = "rh"
ROLE_VIEWER = "viewer"
ROLE_NAMES = (ROLE_ADMIN, ROLE_IT, ROLE_RH, ROLE_VIEWER)


class User(UserMixin, db.Model):
    """
    Employee record authenticated via Entra ID.

    Can be pre-provisioned by an admin or the seed command
    (``entra_object_id`` is NULL until first OAuth login) or
    auto-created on first login with the ``viewer`` role.

    Inherits from ``UserMixin`` to satisfy Flask-Login requirements
    (``is_authenticated``, ``is_active``, ``get_id``).
    """

    __tablename__ = "app_user"
    __table_args__ = (
        db.CheckConstraint(
            "role_name IN ('admin', 'it', 'rh', 'viewer')",
            name="CK_app_user_role_name",
        ),
    )

    id = db.Column(db.Integer, primary_key=True, autoincrement=True)
    entra_object_id = db.Column(db.String(100), nullable=True, unique=True)
    email = db.Column(db.String(200), unique=True, nullable=False, index=True)
    display_name = db.Column(db.String(200), nullable=False)
    given_name = db.Column(db.String(100), nullable=True)
    surname = db.Column(db.String(100), nullable=True)
    department = db.Column(db.String(200), nullable=True)
    job_title = db.Column(db.String(200), nullable=True)
    office_location = db.Column(db.String(200), nullable=True)
    role_name = db.Column(db.String(20), nullable=False, default=ROLE_VIEWER)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    last_login = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime,
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    # -- Relationships -----------------------------------------------------
    equipment = db.relationship(
        "Equipment", back_populates="assigned_user", lazy="dynamic"
    )

    # ---- Role checks -----------------------------------------------------

    def has_role(self, *role_names: str) -> bool:
        """Check if the user has any of the given role names."""
        return self.role_name in role_names

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "email": self.email,
            "display_name": self.display_name,
            "given_name": self.given_name,
            "surname": self.surname,
            "department": self.department,
            "job_title": self.job_title,
            "office_location": self.office_location,
            "role_name": self.role_name,
            "is_active": self.is_active,
            "last_login": self.last_login.isoformat() if self.last_login else None,
        }

    def __repr__(self) -> str:
        return f"<User {self.email} role={self.role_name}>"
