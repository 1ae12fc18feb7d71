from datetime import datetime, timezone

from sqlalchemy import Column, Integer, String, Text, ForeignKey, DateTime, select
from sqlalchemy.orm import relationship

from .db import Base

# Roles
ADMIN = "admin"
DONOR = "donor"
FOODBANK = "foodbank"
RECIPIENT = "recipient"
ROLES = (ADMIN, DONOR, FOODBANK, RECIPIENT)

# Donation statuses
PENDING = "pending"
ASSIGNED = "assigned"
COMPLETED = "completed"
DONATION_STATUSES = (PENDING, ASSIGNED, COMPLETED)

# Request statuses
OPEN = "open"
FULFILLED = "fulfilled"
REQUEST_STATUSES = (OPEN, FULFILLED)

# Largest quantity that fits a 32-bit signed INTEGER column
MAX_QUANTITY = 2**31 - 1

# Older clients used pending/assigned/delivered for requests; accepted on input only
LEGACY_REQUEST_STATUSES = {
    "pending": OPEN,
    "assigned": FULFILLED,
    "delivered": FULFILLED,
}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TimestampMixin:
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)
    # soft delete tombstone; default queries filter on IS NULL
    deleted_at = Column(DateTime(timezone=True), nullable=True, index=True)

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    def soft_delete(self) -> None:
        self.deleted_at = utcnow()

    @classmethod
    def live(cls):
        """SELECT over rows that have not been soft-deleted."""
        return select(cls).where(cls.deleted_at.is_(None))


class User(TimestampMixin, Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False, index=True)
    email = Column(String(255), nullable=False, unique=True, index=True)
    password_hash = Column(String, nullable=False)
    role = Column(String(20), nullable=False, index=True)

    phone = Column(String(15), nullable=True)
    location = Column(String(255), nullable=True)
    address = Column(String(255), nullable=True)
    organization_name = Column(String(255), nullable=True)
    recipient_type = Column(String(20), nullable=True)
    donor_type = Column(String(255), nullable=True)
    notes = Column(Text, nullable=True)

    def has_role(self, role: str) -> bool:
        return self.role == role


class Request(TimestampMixin, Base):
    __tablename__ = "requests"

    id = Column(Integer, primary_key=True, index=True)
    foodbank_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    type = Column(String(255), nullable=False, index=True)
    quantity = Column(Integer, nullable=False)
    status = Column(String(20), nullable=False, default=OPEN, index=True)
    version = Column(Integer, nullable=False)

    foodbank = relationship("User", foreign_keys=[foodbank_id])
    donations = relationship("Donation", back_populates="assigned_request")

    __mapper_args__ = {"version_id_col": version}


class Donation(TimestampMixin, Base):
    __tablename__ = "donations"

    id = Column(Integer, primary_key=True, index=True)
    donor_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    foodbank_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    recipient_id = Column(Integer, ForeignKey("users.id"), nullable=True, index=True)
    type = Column(String(255), nullable=False, index=True)
    quantity = Column(Integer, nullable=False)
    status = Column(String(20), nullable=False, default=PENDING, index=True)
    assigned_request_id = Column(Integer, ForeignKey("requests.id"), nullable=True, index=True)
    version = Column(Integer, nullable=False)

    # Not filtered on deleted_at: historical display still resolves removed users
    donor = relationship("User", foreign_keys=[donor_id])
    foodbank = relationship("User", foreign_keys=[foodbank_id])
    recipient = relationship("User", foreign_keys=[recipient_id])
    assigned_request = relationship("Request", back_populates="donations")

    __mapper_args__ = {"version_id_col": version}


class Feedback(TimestampMixin, Base):
    __tablename__ = "feedbacks"

    id = Column(Integer, primary_key=True, index=True)
    recipient_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    foodbank_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    thank_you_note = Column(Text, nullable=False)
    rating = Column(Integer, nullable=False, default=5)

    recipient = relationship("User", foreign_keys=[recipient_id])
    foodbank = relationship("User", foreign_keys=[foodbank_id])
