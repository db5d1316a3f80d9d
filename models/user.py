from datetime import datetime
from models.db import db
from security.rbac import ADMIN, PATIENT, SUPER_ADMIN, THERAPIST

user_roles = db.Table(
    "user_roles",
    db.Column("user_id", db.Integer, db.ForeignKey("users.id"), primary_key=True),
    db.Column("role_id", db.Integer, db.ForeignKey("roles.id"), primary_key=True),
)

DEFAULT_ROLES = (PATIENT, THERAPIST, ADMIN, SUPER_ADMIN)

class User(db.Model):
    """Patients, therapists and staff share one account table; roles tell them apart."""
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)

    email = db.Column(db.String(255), unique=True, nullable=False, index=True)
    password_hash = db.Column(db.String(255), nullable=False)
    full_name = db.Column(db.String(120), nullable=True)

    # therapist tier, 2 = senior (higher payout share)
    level = db.Column(db.Integer, default=1, nullable=False)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    roles = db.relationship("Role", secondary=user_roles, back_populates="users")

    @staticmethod
    def normalize_email(email) -> str:
        return (email or "").strip().lower()

    @classmethod
    def by_email(cls, email):
        return cls.query.filter_by(email=cls.normalize_email(email)).first()

    @property
    def role_names(self) -> list:
        return sorted(r.name for r in self.roles)

    def has_role(self, *names) -> bool:
        return any(r.name in names for r in self.roles)

    def grant(self, role_name: str) -> bool:
        """Attach a role, creating it if missing. False when already held."""
        if self.has_role(role_name):
            return False
        role = Role.query.filter_by(name=role_name).first() or Role(name=role_name)
        self.roles.append(role)
        return True

class Role(db.Model):
    __tablename__ = "roles"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(50), unique=True, nullable=False)

    users = db.relationship("User", secondary=user_roles, back_populates="roles")

    @classmethod
    def ensure_defaults(cls):
        existing = {r.name for r in cls.query.all()}
        for name in DEFAULT_ROLES:
            if name not in existing:
                db.session.add(cls(name=name))
        db.session.commit()
