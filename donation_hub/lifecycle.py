"""Donation and request lifecycles.

Donations move pending -> assigned -> completed; requests move
open -> fulfilled, and only as the side effect of a matching donation being
assigned to them. Every operation authorizes the caller before it changes
anything, and each call commits exactly once.
"""
import logging
from typing import Optional

from sqlalchemy.orm import Session

from . import models, schemas
from .crud import check_role, commit, get_live, like
from .errors import (
    InvalidStateError,
    MatchMismatchError,
    NotFoundError,
    ValidationError,
)
from .pagination import paginate
from .policy import (
    ASSIGN_DONATION,
    ASSIGN_RECIPIENT,
    COMPLETE_DONATION,
    CREATE_DONATION,
    CREATE_REQUEST,
    DELETE_DONATION,
    DELETE_REQUEST,
    LIST_REQUESTS,
    UPDATE_DONATION,
    UPDATE_REQUEST,
    Principal,
    require,
)
from .utils import clean_text

logger = logging.getLogger(__name__)


def _check_quantity(quantity: Optional[int], errors: dict) -> None:
    if quantity is not None and quantity < 1:
        errors.setdefault("quantity", []).append("The quantity must be at least 1.")
    elif quantity is not None and quantity > models.MAX_QUANTITY:
        errors.setdefault("quantity", []).append(f"The quantity may not be greater than {models.MAX_QUANTITY}.")


def _check_type(value: Optional[str], errors: dict) -> Optional[str]:
    if value is None:
        return None
    cleaned = clean_text(value)
    if not cleaned:
        errors.setdefault("type", []).append("The type field is required.")
    return cleaned


def _raise_if(errors: dict, action: str) -> None:
    if errors:
        logger.warning("Validation failed while %s: %s", action, errors)
        raise ValidationError(errors)


# -------------------- donations --------------------

def create_donation(db: Session, principal: Principal, payload: schemas.DonationCreate) -> models.Donation:
    require(principal, CREATE_DONATION, payload.donor_id)

    errors: dict = {}
    _check_quantity(payload.quantity, errors)
    donation_type = _check_type(payload.type, errors)
    check_role(db, payload.donor_id, models.DONOR, "donor_id", errors)
    check_role(db, payload.foodbank_id, models.FOODBANK, "foodbank_id", errors)
    check_role(db, payload.recipient_id, models.RECIPIENT, "recipient_id", errors)
    _raise_if(errors, "creating donation")

    donation = models.Donation(
        donor_id=payload.donor_id,
        foodbank_id=payload.foodbank_id,
        recipient_id=payload.recipient_id,
        type=donation_type,
        quantity=payload.quantity,
        status=models.ASSIGNED if payload.recipient_id is not None else models.PENDING,
    )
    db.add(donation)
    commit(db, "create donation")
    db.refresh(donation)
    logger.info("Donation %s created by donor %s (%s)", donation.id, donation.donor_id, donation.status)
    return donation


def list_donations(
    db: Session,
    type: Optional[str] = None,
    donor_id: Optional[int] = None,
    foodbank_id: Optional[int] = None,
    recipient_id: Optional[int] = None,
    status: Optional[str] = None,
    page: int = 1,
    per_page: Optional[int] = None,
) -> dict:
    if status is not None and status not in models.DONATION_STATUSES:
        raise ValidationError.for_field("status", f"The status must be one of: {', '.join(models.DONATION_STATUSES)}.")
    query = models.Donation.live()
    if type:
        query = query.where(models.Donation.type == type)
    if donor_id is not None:
        query = query.where(models.Donation.donor_id == donor_id)
    if foodbank_id is not None:
        query = query.where(models.Donation.foodbank_id == foodbank_id)
    if recipient_id is not None:
        query = query.where(models.Donation.recipient_id == recipient_id)
    if status is not None:
        query = query.where(models.Donation.status == status)
    return paginate(db, query.order_by(models.Donation.id), page, per_page)


def get_donation(db: Session, donation_id: int) -> models.Donation:
    return get_live(db, models.Donation, donation_id, "donation")


def update_donation(db: Session, principal: Principal, donation_id: int, payload: schemas.DonationUpdate) -> models.Donation:
    donation = get_live(db, models.Donation, donation_id, "donation")
    require(principal, UPDATE_DONATION, donation.donor_id)
    if donation.status != models.PENDING:
        raise InvalidStateError(f"Donation {donation_id} is {donation.status} and can no longer be edited")

    errors: dict = {}
    _check_quantity(payload.quantity, errors)
    donation_type = _check_type(payload.type, errors)
    _raise_if(errors, f"updating donation {donation_id}")

    if donation_type is not None:
        donation.type = donation_type
    if payload.quantity is not None:
        donation.quantity = payload.quantity
    commit(db, "update donation")
    db.refresh(donation)
    logger.info("Donation %s updated", donation_id)
    return donation


def delete_donation(db: Session, principal: Principal, donation_id: int) -> None:
    donation = get_live(db, models.Donation, donation_id, "donation")
    require(principal, DELETE_DONATION, donation.donor_id)
    donation.soft_delete()
    commit(db, "delete donation")
    logger.info("Donation %s deleted", donation_id)


def assign_recipient(db: Session, principal: Principal, donation_id: int, recipient_id: int) -> models.Donation:
    donation = get_live(db, models.Donation, donation_id, "donation")
    require(principal, ASSIGN_RECIPIENT, donation.foodbank_id)

    recipient = get_live(db, models.User, recipient_id, "recipient")
    if not recipient.has_role(models.RECIPIENT):
        raise ValidationError.for_field("recipient_id", "The selected recipient_id must reference a recipient.")
    if donation.status == models.COMPLETED:
        raise InvalidStateError(f"Donation {donation_id} is already completed")

    donation.recipient_id = recipient.id
    donation.status = models.ASSIGNED
    commit(db, "assign recipient")
    db.refresh(donation)
    logger.info("Donation %s assigned to recipient %s", donation_id, recipient_id)
    return donation


def complete_donation(db: Session, principal: Principal, donation_id: int) -> models.Donation:
    donation = get_live(db, models.Donation, donation_id, "donation")
    require(principal, COMPLETE_DONATION, donation.foodbank_id)
    if donation.status == models.COMPLETED:
        logger.warning("Donation %s is already completed", donation_id)
        raise InvalidStateError("Donation is already completed")

    donation.status = models.COMPLETED
    commit(db, "mark donation as completed")
    db.refresh(donation)
    logger.info("Donation %s marked as completed", donation_id)
    return donation


def assign_to_request(db: Session, principal: Principal, donation_id: int, request_id: int):
    """Link a donation to a request and fulfil the request, atomically.

    Both rows are read FOR UPDATE where the backend supports it, and both
    carry a version counter, so the single commit below either updates the
    two rows together or fails without touching either.
    """
    request = db.execute(
        models.Request.live().where(models.Request.id == request_id).with_for_update()
    ).scalar_one_or_none()
    if request is None:
        raise NotFoundError("request", request_id)
    require(principal, ASSIGN_DONATION, request.foodbank_id)

    donation = db.execute(
        models.Donation.live().where(models.Donation.id == donation_id).with_for_update()
    ).scalar_one_or_none()
    if donation is None:
        raise NotFoundError("donation", donation_id)
    # the donation must also be addressed to the caller's foodbank
    require(principal, ASSIGN_DONATION, donation.foodbank_id)

    if request.status == models.FULFILLED:
        raise InvalidStateError(f"Request {request_id} is already fulfilled")
    if donation.status == models.COMPLETED:
        raise InvalidStateError(f"Donation {donation_id} is already completed")
    if donation.assigned_request_id is not None:
        raise InvalidStateError(f"Donation {donation_id} is already assigned to request {donation.assigned_request_id}")

    if donation.type != request.type:
        logger.warning("Donation %s type %r does not match request %s type %r",
                       donation_id, donation.type, request_id, request.type)
        raise MatchMismatchError(
            f"Donation type '{donation.type}' does not match request type '{request.type}'"
        )
    if donation.quantity < request.quantity:
        logger.warning("Donation %s quantity %d is below request %s quantity %d",
                       donation_id, donation.quantity, request_id, request.quantity)
        raise MatchMismatchError(
            f"Donation quantity {donation.quantity} is less than requested quantity {request.quantity}"
        )

    request.status = models.FULFILLED
    donation.status = models.ASSIGNED
    donation.assigned_request_id = request.id
    commit(db, "assign donation to request")
    db.refresh(request)
    db.refresh(donation)
    logger.info("Donation %s assigned to request %s; request fulfilled", donation_id, request_id)
    return request, donation


# -------------------- requests --------------------

def normalize_request_status(status: Optional[str]) -> Optional[str]:
    if status is None:
        return None
    if status in models.REQUEST_STATUSES:
        return status
    if status in models.LEGACY_REQUEST_STATUSES:
        return models.LEGACY_REQUEST_STATUSES[status]
    raise ValidationError.for_field("status", f"The status must be one of: {', '.join(models.REQUEST_STATUSES)}.")


def _request_scope(principal: Principal):
    require(principal, LIST_REQUESTS)
    query = models.Request.live()
    if not principal.is_admin:
        query = query.where(models.Request.foodbank_id == principal.id)
    return query


def create_request(db: Session, principal: Principal, payload: schemas.RequestCreate) -> models.Request:
    foodbank_id = payload.foodbank_id
    if foodbank_id is None and principal.role == models.FOODBANK:
        foodbank_id = principal.id
    require(principal, CREATE_REQUEST, foodbank_id)

    errors: dict = {}
    if foodbank_id is None:
        errors["foodbank_id"] = ["The foodbank_id field is required."]
    check_role(db, foodbank_id, models.FOODBANK, "foodbank_id", errors)
    _check_quantity(payload.quantity, errors)
    request_type = _check_type(payload.type, errors)
    _raise_if(errors, "creating request")

    request = models.Request(
        foodbank_id=foodbank_id,
        type=request_type,
        quantity=payload.quantity,
        status=models.OPEN,
    )
    db.add(request)
    commit(db, "create request")
    db.refresh(request)
    logger.info("Request %s created for foodbank %s", request.id, foodbank_id)
    return request


def list_requests(
    db: Session,
    principal: Principal,
    type: Optional[str] = None,
    quantity: Optional[int] = None,
    status: Optional[str] = None,
    foodbank_id: Optional[int] = None,
    page: int = 1,
    per_page: Optional[int] = None,
) -> dict:
    query = _request_scope(principal)
    status = normalize_request_status(status)
    if type:
        query = query.where(models.Request.type.like(like(type), escape="\\"))
    if quantity is not None:
        query = query.where(models.Request.quantity == quantity)
    if status is not None:
        query = query.where(models.Request.status == status)
    if foodbank_id is not None:
        query = query.where(models.Request.foodbank_id == foodbank_id)
    return paginate(db, query.order_by(models.Request.id), page, per_page)


def get_request(db: Session, principal: Principal, request_id: int) -> models.Request:
    # Out-of-scope requests read as missing rather than forbidden
    query = _request_scope(principal).where(models.Request.id == request_id)
    request = db.execute(query).scalar_one_or_none()
    if request is None:
        raise NotFoundError("request", request_id)
    return request


def update_request(db: Session, principal: Principal, request_id: int, payload: schemas.RequestUpdate) -> models.Request:
    request = get_live(db, models.Request, request_id, "request")
    require(principal, UPDATE_REQUEST, request.foodbank_id)
    if request.status == models.FULFILLED:
        raise InvalidStateError(f"Request {request_id} is already fulfilled")

    errors: dict = {}
    _check_quantity(payload.quantity, errors)
    request_type = _check_type(payload.type, errors)
    _raise_if(errors, f"updating request {request_id}")

    if request_type is not None:
        request.type = request_type
    if payload.quantity is not None:
        request.quantity = payload.quantity
    commit(db, "update request")
    db.refresh(request)
    logger.info("Request %s updated", request_id)
    return request


def delete_request(db: Session, principal: Principal, request_id: int) -> None:
    request = get_live(db, models.Request, request_id, "request")
    require(principal, DELETE_REQUEST, request.foodbank_id)
    request.soft_delete()
    commit(db, "delete request")
    logger.info("Request %s deleted", request_id)
