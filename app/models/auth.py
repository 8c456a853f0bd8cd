"""
Concept Paper Approval Workflow
Identity model.

Models:
    - User: an actor in the approval chain, gated by a single role.

Login, passwords and sessions live outside this package; the workflow only
needs to know who acted, which role they hold and whether they are active.
"""

import enum
from datetime import datetime, timezone

from app.models import db


class Role(str, enum.Enum):
    """Roles that can own a workflow stage (plus the two non-stage roles)."""

    REQUISITIONER = "requisitioner"
    SPS = "sps"
    VP_ACAD = "vp_acad"
    AUDITOR = "auditor"
    SENIOR_VP = "senior_vp"
    ACCOUNTING = "accounting"
    ADMIN = "admin"


VALID_ROLES = frozenset(r.value for r in Role)


class User(db.Model):
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    email = db.Column(db.String(200), nullable=False, unique=True)
    role = db.Column(
        db.String(30), nullable=False, default=Role.REQUISITIONER.value,
        comment="requisitioner | sps | vp_acad | auditor | senior_vp | accounting | admin",
    )
    department = db.Column(db.String(150), nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        db.Index("ix_users_role_active", "role", "is_active"),
    )

    def has_role(self, role) -> bool:
        return self.role == Role(role).value

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN.value

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "role": self.role,
            "department": self.department,
            "is_active": self.is_active,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<User {self.id}: {self.email} [{self.role}]>"
