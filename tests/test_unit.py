import pydantic
import pytest
from sqlalchemy.orm.exc import StaleDataError

from donation_hub import crud, dashboard, lifecycle, schemas
from donation_hub.auth import verify_password
from donation_hub.errors import (
    AuthenticationError,
    AuthorizationError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)


def _register(db_session, **overrides):
    data = {
        "name": "Fran",
        "email": "Fran@Example.com",
        "password": "longenough",
        "password_confirmation": "longenough",
        "role": "donor",
    }
    data.update(overrides)
    return crud.register_user(db_session, schemas.UserRegister(**data))


def test_register_hashes_password_and_lowercases_email(db_session):
    user = _register(db_session, phone="(555) 010-2030-4")
    assert user.email == "fran@example.com"
    assert user.password_hash != "longenough"
    assert verify_password("longenough", user.password_hash)
    assert user.phone == "55501020304"


def test_register_strips_markup(db_session):
    user = _register(db_session, name="<b>Fran</b>", notes="<script>x</script>hello")
    assert user.name == "Fran"
    assert "<script>" not in user.notes


def test_duplicate_email_is_a_validation_error(db_session):
    _register(db_session)
    with pytest.raises(ValidationError) as exc:
        _register(db_session, email="fran@example.com")
    assert "email" in exc.value.errors


def test_registration_cannot_create_admins():
    with pytest.raises(pydantic.ValidationError):
        schemas.UserRegister(
            name="Eve", email="eve@example.com", password="longenough",
            password_confirmation="longenough", role="admin",
        )


def test_password_confirmation_must_match():
    with pytest.raises(pydantic.ValidationError):
        schemas.UserCreate(
            name="Eve", email="eve@example.com", password="longenough",
            password_confirmation="different", role="donor",
        )


def test_authenticate(db_session):
    _register(db_session)
    assert crud.authenticate(db_session, "FRAN@example.com", "longenough").name == "Fran"
    with pytest.raises(AuthenticationError):
        crud.authenticate(db_session, "fran@example.com", "wrong-password")


def test_deleted_user_cannot_authenticate(db_session, admin, as_principal):
    user = _register(db_session)
    crud.delete_user(db_session, as_principal(admin), user.id)
    with pytest.raises(AuthenticationError):
        crud.authenticate(db_session, "fran@example.com", "longenough")


def test_user_management_requires_admin(db_session, donor, foodbank, as_principal):
    payload = schemas.UserCreate(
        name="New", email="new@example.com", password="longenough",
        password_confirmation="longenough", role="admin",
    )
    with pytest.raises(AuthorizationError):
        crud.create_user(db_session, as_principal(donor), payload)
    with pytest.raises(AuthorizationError):
        crud.list_users(db_session, as_principal(donor))
    with pytest.raises(AuthorizationError):
        crud.delete_user(db_session, as_principal(donor), foodbank.id)


def test_users_see_and_edit_only_themselves(db_session, donor, foodbank, as_principal):
    me = crud.update_user(db_session, as_principal(donor), donor.id, schemas.UserUpdate(location="Leeds"))
    assert me.location == "Leeds"
    with pytest.raises(AuthorizationError):
        crud.get_user(db_session, as_principal(donor), foodbank.id)
    with pytest.raises(AuthorizationError):
        crud.update_user(db_session, as_principal(donor), foodbank.id, schemas.UserUpdate(name="Hacked"))


def test_role_is_not_updatable():
    with pytest.raises(pydantic.ValidationError):
        schemas.UserUpdate(role="admin")


def test_list_users_filters_and_skips_deleted(db_session, admin, donor, foodbank, recipient, as_principal):
    crud.delete_user(db_session, as_principal(admin), recipient.id)
    page = crud.list_users(db_session, as_principal(admin))
    assert {u.id for u in page["items"]} == {admin.id, donor.id, foodbank.id}

    page = crud.list_users(db_session, as_principal(admin), role="foodbank")
    assert [u.id for u in page["items"]] == [foodbank.id]

    page = crud.list_users(db_session, as_principal(admin), name="donor")
    assert [u.id for u in page["items"]] == [donor.id]

    with pytest.raises(NotFoundError):
        crud.get_user(db_session, as_principal(admin), recipient.id)


def test_feedback_lifecycle(db_session, recipient, foodbank, other_foodbank, as_principal):
    feedback = crud.create_feedback(
        db_session,
        as_principal(recipient),
        schemas.FeedbackCreate(foodbank_id=foodbank.id, thank_you_note="Thank you!", rating=5),
    )
    assert feedback.recipient_id == recipient.id

    updated = crud.update_feedback(
        db_session, as_principal(recipient), feedback.id, schemas.FeedbackUpdate(rating=4)
    )
    assert updated.rating == 4

    # the foodbank it was addressed to can read it; another cannot
    assert crud.get_feedback(db_session, as_principal(foodbank), feedback.id).id == feedback.id
    with pytest.raises(NotFoundError):
        crud.get_feedback(db_session, as_principal(other_foodbank), feedback.id)
    with pytest.raises(AuthorizationError):
        crud.update_feedback(db_session, as_principal(foodbank), feedback.id, schemas.FeedbackUpdate(rating=1))

    crud.delete_feedback(db_session, as_principal(recipient), feedback.id)
    assert crud.list_feedback(db_session, as_principal(recipient))["total"] == 0


def test_feedback_must_target_a_foodbank(db_session, recipient, donor, as_principal):
    with pytest.raises(ValidationError) as exc:
        crud.create_feedback(
            db_session,
            as_principal(recipient),
            schemas.FeedbackCreate(foodbank_id=donor.id, thank_you_note="Thanks", rating=3),
        )
    assert "foodbank_id" in exc.value.errors


def test_donors_cannot_leave_or_read_feedback(db_session, donor, foodbank, as_principal):
    with pytest.raises(AuthorizationError):
        crud.create_feedback(
            db_session,
            as_principal(donor),
            schemas.FeedbackCreate(recipient_id=donor.id, foodbank_id=foodbank.id, thank_you_note="x", rating=3),
        )
    with pytest.raises(AuthorizationError):
        crud.list_feedback(db_session, as_principal(donor))


def test_commit_maps_version_conflicts_to_invalid_state(db_session, monkeypatch):
    def stale():
        raise StaleDataError("version mismatch")

    monkeypatch.setattr(db_session, "commit", stale)
    with pytest.raises(InvalidStateError):
        crud.commit(db_session, "update request")


def test_dashboard_summaries(db_session, admin, donor, foodbank, recipient, as_principal):
    lifecycle.create_donation(
        db_session,
        as_principal(donor),
        schemas.DonationCreate(donor_id=donor.id, foodbank_id=foodbank.id, type="food", quantity=3),
    )
    lifecycle.create_donation(
        db_session,
        as_principal(donor),
        schemas.DonationCreate(
            donor_id=donor.id, foodbank_id=foodbank.id, recipient_id=recipient.id, type="food", quantity=3
        ),
    )
    lifecycle.create_request(db_session, as_principal(foodbank), schemas.RequestCreate(type="food", quantity=1))

    admin_view = dashboard.summary(db_session, as_principal(admin))
    assert admin_view["users"] == {"admin": 1, "donor": 1, "foodbank": 1, "recipient": 1}
    assert admin_view["donations"] == {"pending": 1, "assigned": 1, "completed": 0}
    assert admin_view["requests"] == {"open": 1, "fulfilled": 0}

    assert dashboard.summary(db_session, as_principal(donor))["donations"]["pending"] == 1
    assert dashboard.summary(db_session, as_principal(foodbank))["requests"]["open"] == 1
    recipient_view = dashboard.summary(db_session, as_principal(recipient))
    assert recipient_view["donations"]["assigned"] == 1
    assert recipient_view["feedback_given"] == 0
