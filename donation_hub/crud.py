import logging
from typing import Optional, Type, TypeVar

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from . import models, schemas
from .auth import hash_password, verify_password
from .errors import (
    AuthenticationError,
    InvalidStateError,
    NotFoundError,
    PersistenceError,
    ValidationError,
)
from .pagination import paginate
from .policy import (
    CREATE_FEEDBACK,
    DELETE_FEEDBACK,
    LIST_FEEDBACK,
    MANAGE_PROFILE,
    MANAGE_USERS,
    UPDATE_FEEDBACK,
    Principal,
    require,
)
from .utils import clean_text, normalize_phone, sanitize_input

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=models.Base)

_PROFILE_TEXT_FIELDS = ("location", "address", "organization_name", "donor_type", "notes")


# -------------------- shared helpers --------------------

def get_live(db: Session, model: Type[M], obj_id: int, resource: str) -> M:
    obj = db.get(model, obj_id)
    if obj is None or obj.is_deleted:
        raise NotFoundError(resource, obj_id)
    return obj


def check_role(db: Session, user_id: Optional[int], role: str, field: str, errors: dict) -> Optional[models.User]:
    """Record a field error unless user_id is a live user with the given role."""
    if user_id is None:
        return None
    user = db.get(models.User, user_id)
    if user is None or user.is_deleted:
        errors.setdefault(field, []).append(f"The selected {field} is invalid.")
        return None
    if not user.has_role(role):
        errors.setdefault(field, []).append(f"The selected {field} must reference a {role}.")
        return None
    return user


def commit(db: Session, action: str) -> None:
    """Commit the unit of work; on failure roll back everything it touched."""
    try:
        db.commit()
    except StaleDataError as e:
        db.rollback()
        logger.warning("Concurrent modification during %s", action)
        raise InvalidStateError(f"Failed to {action}: the record was modified concurrently") from e
    except SQLAlchemyError as e:
        db.rollback()
        logger.exception("Failed to %s", action)
        raise PersistenceError(f"Failed to {action}") from e


def like(term: str) -> str:
    return f"%{sanitize_input(term)}%"


# -------------------- users --------------------

def _check_unique(db: Session, errors: dict, email: Optional[str], phone: Optional[str], exclude_id: Optional[int] = None):
    # Soft-deleted rows still hold their email and phone
    if email is not None:
        stmt = select(models.User.id).where(models.User.email == email)
        if exclude_id is not None:
            stmt = stmt.where(models.User.id != exclude_id)
        if db.execute(stmt).first():
            errors.setdefault("email", []).append("The email has already been taken.")
    if phone is not None:
        stmt = select(models.User.id).where(models.User.phone == phone)
        if exclude_id is not None:
            stmt = stmt.where(models.User.id != exclude_id)
        if db.execute(stmt).first():
            errors.setdefault("phone", []).append("The phone has already been taken.")


def _insert_user(db: Session, payload: schemas.UserCreate) -> models.User:
    email = payload.email.lower()
    phone = normalize_phone(payload.phone)
    errors: dict = {}
    _check_unique(db, errors, email, phone)
    if errors:
        logger.warning("Validation failed while creating user: %s", errors)
        raise ValidationError(errors)

    user = models.User(
        name=clean_text(payload.name),
        email=email,
        password_hash=hash_password(payload.password),
        role=payload.role,
        phone=phone,
        recipient_type=payload.recipient_type,
        **{f: clean_text(getattr(payload, f)) for f in _PROFILE_TEXT_FIELDS},
    )
    db.add(user)
    commit(db, "create user")
    db.refresh(user)
    logger.info("User %s created with role %s", user.id, user.role)
    return user


def register_user(db: Session, payload: schemas.UserRegister) -> models.User:
    return _insert_user(db, payload)


def create_user(db: Session, principal: Principal, payload: schemas.UserCreate) -> models.User:
    require(principal, MANAGE_USERS)
    return _insert_user(db, payload)


def authenticate(db: Session, email: str, password: str) -> models.User:
    user = db.execute(
        models.User.live().where(models.User.email == email.lower())
    ).scalar_one_or_none()
    if user is None or not verify_password(password, user.password_hash):
        logger.warning("Failed login for %s", email)
        raise AuthenticationError("Invalid credentials")
    return user


def list_users(
    db: Session,
    principal: Principal,
    name: Optional[str] = None,
    email: Optional[str] = None,
    role: Optional[str] = None,
    page: int = 1,
    per_page: Optional[int] = None,
) -> dict:
    require(principal, MANAGE_USERS)
    query = models.User.live()
    if name:
        query = query.where(models.User.name.like(like(name), escape="\\"))
    if email:
        query = query.where(models.User.email.like(like(email), escape="\\"))
    if role:
        query = query.where(models.User.role == role)
    return paginate(db, query.order_by(models.User.id), page, per_page)


def get_user(db: Session, principal: Principal, user_id: int) -> models.User:
    require(principal, MANAGE_PROFILE, user_id)
    return get_live(db, models.User, user_id, "user")


def update_user(db: Session, principal: Principal, user_id: int, payload: schemas.UserUpdate) -> models.User:
    require(principal, MANAGE_PROFILE, user_id)
    user = get_live(db, models.User, user_id, "user")

    fields = payload.model_dump(exclude_unset=True, exclude={"password", "password_confirmation"})
    # name and email are required columns; an explicit null leaves them as they are
    for required in ("name", "email"):
        if fields.get(required, "") is None:
            del fields[required]
    if "email" in fields:
        fields["email"] = fields["email"].lower()
    if "phone" in fields:
        fields["phone"] = normalize_phone(fields["phone"])

    errors: dict = {}
    _check_unique(db, errors, fields.get("email"), fields.get("phone"), exclude_id=user.id)
    if errors:
        logger.warning("Validation failed while updating user %s: %s", user_id, errors)
        raise ValidationError(errors)

    for key, value in fields.items():
        if key == "name" or key in _PROFILE_TEXT_FIELDS:
            value = clean_text(value)
        setattr(user, key, value)
    if payload.password is not None:
        user.password_hash = hash_password(payload.password)

    commit(db, "update user")
    db.refresh(user)
    logger.info("User %s updated", user.id)
    return user


def delete_user(db: Session, principal: Principal, user_id: int) -> None:
    require(principal, MANAGE_USERS)
    user = get_live(db, models.User, user_id, "user")
    user.soft_delete()
    commit(db, "delete user")
    logger.info("User %s deleted", user_id)


# -------------------- feedback --------------------

def _feedback_scope(principal: Principal):
    require(principal, LIST_FEEDBACK)
    query = models.Feedback.live()
    if principal.role == models.RECIPIENT:
        query = query.where(models.Feedback.recipient_id == principal.id)
    elif principal.role == models.FOODBANK:
        query = query.where(models.Feedback.foodbank_id == principal.id)
    return query


def create_feedback(db: Session, principal: Principal, payload: schemas.FeedbackCreate) -> models.Feedback:
    recipient_id = payload.recipient_id
    if recipient_id is None and principal.role == models.RECIPIENT:
        recipient_id = principal.id
    require(principal, CREATE_FEEDBACK, recipient_id)

    errors: dict = {}
    if recipient_id is None:
        errors["recipient_id"] = ["The recipient_id field is required."]
    check_role(db, recipient_id, models.RECIPIENT, "recipient_id", errors)
    check_role(db, payload.foodbank_id, models.FOODBANK, "foodbank_id", errors)
    if errors:
        logger.warning("Validation failed while creating feedback: %s", errors)
        raise ValidationError(errors)

    feedback = models.Feedback(
        recipient_id=recipient_id,
        foodbank_id=payload.foodbank_id,
        thank_you_note=clean_text(payload.thank_you_note),
        rating=payload.rating,
    )
    db.add(feedback)
    commit(db, "create feedback")
    db.refresh(feedback)
    logger.info("Feedback %s created for foodbank %s", feedback.id, feedback.foodbank_id)
    return feedback


def list_feedback(
    db: Session,
    principal: Principal,
    recipient_id: Optional[int] = None,
    foodbank_id: Optional[int] = None,
    rating: Optional[int] = None,
    page: int = 1,
    per_page: Optional[int] = None,
) -> dict:
    query = _feedback_scope(principal)
    if recipient_id is not None:
        query = query.where(models.Feedback.recipient_id == recipient_id)
    if foodbank_id is not None:
        query = query.where(models.Feedback.foodbank_id == foodbank_id)
    if rating is not None:
        query = query.where(models.Feedback.rating == rating)
    return paginate(db, query.order_by(models.Feedback.id), page, per_page)


def get_feedback(db: Session, principal: Principal, feedback_id: int) -> models.Feedback:
    query = _feedback_scope(principal).where(models.Feedback.id == feedback_id)
    feedback = db.execute(query).scalar_one_or_none()
    if feedback is None:
        raise NotFoundError("feedback", feedback_id)
    return feedback


def update_feedback(db: Session, principal: Principal, feedback_id: int, payload: schemas.FeedbackUpdate) -> models.Feedback:
    feedback = get_live(db, models.Feedback, feedback_id, "feedback")
    require(principal, UPDATE_FEEDBACK, feedback.recipient_id)

    if payload.thank_you_note is not None:
        feedback.thank_you_note = clean_text(payload.thank_you_note)
    if payload.rating is not None:
        feedback.rating = payload.rating
    commit(db, "update feedback")
    db.refresh(feedback)
    logger.info("Feedback %s updated", feedback_id)
    return feedback


def delete_feedback(db: Session, principal: Principal, feedback_id: int) -> None:
    feedback = get_live(db, models.Feedback, feedback_id, "feedback")
    require(principal, DELETE_FEEDBACK, feedback.recipient_id)
    feedback.soft_delete()
    commit(db, "delete feedback")
    logger.info("Feedback %s deleted", feedback_id)
