"""
Principal model: one table for customers and administrators.

A token resolves to exactly one row here; the `role` column decides
whether the caller is an admin, so there is no second lookup against a
separate admin collection.
"""

from sqlalchemy import Column, Integer, String, Boolean, CheckConstraint

from carrental.db.base import Base, TimestampMixin

ROLE_USER = "user"
ROLE_ADMIN = "admin"


class User(Base, TimestampMixin):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(255), unique=True, index=True, nullable=False)
    name = Column(String(100), nullable=False)
    phone = Column(String(30), nullable=True)
    hashed_password = Column(String(255), nullable=False)
    role = Column(String(10), nullable=False, default=ROLE_USER)
    is_active = Column(Boolean, default=True, nullable=False)
    is_blocked = Column(Boolean, default=False, nullable=False)

    __table_args__ = (
        CheckConstraint("role IN ('user', 'admin')", name="check_user_role"),
    )

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN

    def __repr__(self) -> str:
        return f"<User(id={self.id}, email={self.email}, role={self.role})>"
