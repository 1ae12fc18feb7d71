"""Per-role summary counts for the dashboard endpoint."""
from typing import Dict

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from . import models
from .policy import Principal


def _counts(db: Session, column, *criteria) -> Dict[str, int]:
    model = column.class_
    stmt = (
        select(column, func.count())
        .where(model.deleted_at.is_(None), *criteria)
        .group_by(column)
    )
    return {key: count for key, count in db.execute(stmt).all()}


def _by_status(db: Session, model, statuses, *criteria) -> Dict[str, int]:
    counts = _counts(db, model.status, *criteria)
    return {status: counts.get(status, 0) for status in statuses}


def summary(db: Session, principal: Principal) -> dict:
    data = {"role": principal.role}
    if principal.role == models.ADMIN:
        users = _counts(db, models.User.role)
        data["users"] = {role: users.get(role, 0) for role in models.ROLES}
        data["donations"] = _by_status(db, models.Donation, models.DONATION_STATUSES)
        data["requests"] = _by_status(db, models.Request, models.REQUEST_STATUSES)
    elif principal.role == models.DONOR:
        data["donations"] = _by_status(
            db, models.Donation, models.DONATION_STATUSES, models.Donation.donor_id == principal.id
        )
    elif principal.role == models.FOODBANK:
        data["requests"] = _by_status(
            db, models.Request, models.REQUEST_STATUSES, models.Request.foodbank_id == principal.id
        )
        data["donations"] = _by_status(
            db, models.Donation, models.DONATION_STATUSES, models.Donation.foodbank_id == principal.id
        )
    elif principal.role == models.RECIPIENT:
        data["donations"] = _by_status(
            db, models.Donation, models.DONATION_STATUSES, models.Donation.recipient_id == principal.id
        )
        data["feedback_given"] = db.execute(
            select(func.count())
            .select_from(models.Feedback)
            .where(models.Feedback.deleted_at.is_(None), models.Feedback.recipient_id == principal.id)
        ).scalar()
    return data
