import logging
import time
import uuid
from typing import Optional

import jwt
from fastapi import Depends, FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session
from starlette.exceptions import HTTPException as StarletteHTTPException

from . import crud, dashboard, lifecycle, models, schemas
from .auth import create_access_token, decode_access_token
from .db import get_db, init_db
from .errors import AuthenticationError, DonationHubError
from .logging_config import configure_logging
from .policy import Principal

configure_logging()
logger = logging.getLogger(__name__)

# Create tables if not existing. Schema changes are out of scope for this service.
init_db()

app = FastAPI(title="Donation Hub")

bearer = HTTPBearer(auto_error=False)

# Endpoints excluded from request logs
_SKIP_LOG = frozenset({"/health"})


# -------------------- Error mapping --------------------

@app.exception_handler(DonationHubError)
async def donation_hub_error_handler(request: Request, exc: DonationHubError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def request_validation_error_handler(request: Request, exc: RequestValidationError):
    # Render like ValidationError: {"errors": {field: [messages]}}
    errors: dict = {}
    for err in exc.errors():
        loc = [str(part) for part in err.get("loc", ()) if part not in ("body", "query", "path")]
        field = ".".join(loc) or "body"
        errors.setdefault(field, []).append(err.get("msg", "Invalid value"))
    logger.warning("Request validation failed for %s %s: %s", request.method, request.url.path, errors)
    return JSONResponse(status_code=422, content={"errors": errors})


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": "HTTP error", "message": str(exc.detail)},
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content={"error": "Internal server error", "message": "An unexpected error occurred"},
    )


# -------------------- Request timing --------------------

@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    request_id = request.headers.get("X-Request-ID", uuid.uuid4().hex[:12])
    response = await call_next(request)
    duration_ms = (time.perf_counter() - start) * 1000
    response.headers["X-Request-ID"] = request_id
    response.headers["X-Request-Duration-Ms"] = f"{duration_ms:.1f}"

    if request.url.path not in _SKIP_LOG:
        extra = {
            "method": request.method,
            "path": request.url.path,
            "status": response.status_code,
            "duration_ms": duration_ms,
            "request_id": request_id,
        }
        if response.status_code >= 500:
            logger.error("Server error: %s %s %d", request.method, request.url.path,
                         response.status_code, extra=extra)
        else:
            logger.info("%s %s %d", request.method, request.url.path,
                        response.status_code, extra=extra)
    return response


# -------------------- Principal --------------------

def get_principal(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer),
    db: Session = Depends(get_db),
) -> Principal:
    """Resolve the caller from a bearer token.

    The stored role is authoritative; the token's role claim is informational
    only, so a role change or soft delete takes effect immediately.
    """
    if credentials is None:
        raise AuthenticationError("Missing bearer token")
    try:
        payload = decode_access_token(credentials.credentials)
        user_id = int(payload["sub"])
    except (jwt.PyJWTError, ValueError):
        raise AuthenticationError("Invalid token")
    user = db.get(models.User, user_id)
    if user is None or user.is_deleted:
        raise AuthenticationError("Unknown user")
    return Principal(id=user.id, role=user.role)


@app.get("/health")
def health():
    return {"status": "ok"}


# -------------------- Auth --------------------

@app.post("/auth/register", response_model=schemas.UserRead, status_code=201)
def register(payload: schemas.UserRegister, db: Session = Depends(get_db)):
    return crud.register_user(db, payload)


@app.post("/auth/login", response_model=schemas.Token)
def login(payload: schemas.LoginRequest, db: Session = Depends(get_db)):
    user = crud.authenticate(db, payload.email, payload.password)
    return {"access_token": create_access_token(user.id, user.role), "token_type": "bearer"}


@app.get("/auth/me", response_model=schemas.UserRead)
def me(principal: Principal = Depends(get_principal), db: Session = Depends(get_db)):
    return crud.get_user(db, principal, principal.id)


# -------------------- Users --------------------

@app.get("/users", response_model=schemas.UserPage)
def list_users(
    name: Optional[str] = Query(None, max_length=255),
    email: Optional[str] = Query(None, max_length=255),
    role: Optional[schemas.Role] = None,
    page: int = Query(1, ge=1),
    per_page: Optional[int] = Query(None, ge=1, le=100),
    principal: Principal = Depends(get_principal),
    db: Session = Depends(get_db),
):
    return crud.list_users(db, principal, name=name, email=email, role=role, page=page, per_page=per_page)


@app.post("/users", response_model=schemas.UserRead, status_code=201)
def create_user(payload: schemas.UserCreate, principal: Principal = Depends(get_principal), db: Session = Depends(get_db)):
    return crud.create_user(db, principal, payload)


@app.get("/users/{user_id}", response_model=schemas.UserRead)
def get_user(user_id: int, principal: Principal = Depends(get_principal), db: Session = Depends(get_db)):
    return crud.get_user(db, principal, user_id)


@app.put("/users/{user_id}", response_model=schemas.UserRead)
def update_user(user_id: int, payload: schemas.UserUpdate, principal: Principal = Depends(get_principal), db: Session = Depends(get_db)):
    return crud.update_user(db, principal, user_id, payload)


@app.delete("/users/{user_id}")
def delete_user(user_id: int, principal: Principal = Depends(get_principal), db: Session = Depends(get_db)):
    crud.delete_user(db, principal, user_id)
    return {"message": "User deleted successfully", "deleted": user_id}


# -------------------- Donations --------------------

@app.get("/donations", response_model=schemas.DonationPage)
def list_donations(
    type: Optional[str] = Query(None, max_length=255),
    donor_id: Optional[int] = None,
    foodbank_id: Optional[int] = None,
    recipient_id: Optional[int] = None,
    status: Optional[str] = None,
    page: int = Query(1, ge=1),
    per_page: Optional[int] = Query(None, ge=1, le=100),
    principal: Principal = Depends(get_principal),
    db: Session = Depends(get_db),
):
    return lifecycle.list_donations(
        db, type=type, donor_id=donor_id, foodbank_id=foodbank_id,
        recipient_id=recipient_id, status=status, page=page, per_page=per_page,
    )


@app.post("/donations", response_model=schemas.DonationRead, status_code=201)
def create_donation(payload: schemas.DonationCreate, principal: Principal = Depends(get_principal), db: Session = Depends(get_db)):
    return lifecycle.create_donation(db, principal, payload)


@app.get("/donations/{donation_id}", response_model=schemas.DonationRead)
def get_donation(donation_id: int, principal: Principal = Depends(get_principal), db: Session = Depends(get_db)):
    return lifecycle.get_donation(db, donation_id)


@app.put("/donations/{donation_id}", response_model=schemas.DonationRead)
def update_donation(donation_id: int, payload: schemas.DonationUpdate, principal: Principal = Depends(get_principal), db: Session = Depends(get_db)):
    return lifecycle.update_donation(db, principal, donation_id, payload)


@app.delete("/donations/{donation_id}")
def delete_donation(donation_id: int, principal: Principal = Depends(get_principal), db: Session = Depends(get_db)):
    lifecycle.delete_donation(db, principal, donation_id)
    return {"message": "Donation deleted successfully", "deleted": donation_id}


@app.post("/donations/{donation_id}/assign/{recipient_id}", response_model=schemas.DonationRead)
def assign_recipient(donation_id: int, recipient_id: int, principal: Principal = Depends(get_principal), db: Session = Depends(get_db)):
    return lifecycle.assign_recipient(db, principal, donation_id, recipient_id)


@app.post("/donations/{donation_id}/complete", response_model=schemas.DonationRead)
def complete_donation(donation_id: int, principal: Principal = Depends(get_principal), db: Session = Depends(get_db)):
    return lifecycle.complete_donation(db, principal, donation_id)


# -------------------- Requests --------------------

@app.get("/requests", response_model=schemas.RequestPage)
def list_requests(
    type: Optional[str] = Query(None, max_length=255),
    quantity: Optional[int] = None,
    status: Optional[str] = None,
    foodbank_id: Optional[int] = None,
    page: int = Query(1, ge=1),
    per_page: Optional[int] = Query(None, ge=1, le=100),
    principal: Principal = Depends(get_principal),
    db: Session = Depends(get_db),
):
    return lifecycle.list_requests(
        db, principal, type=type, quantity=quantity, status=status,
        foodbank_id=foodbank_id, page=page, per_page=per_page,
    )


@app.post("/requests", response_model=schemas.RequestRead, status_code=201)
def create_request(payload: schemas.RequestCreate, principal: Principal = Depends(get_principal), db: Session = Depends(get_db)):
    return lifecycle.create_request(db, principal, payload)


@app.get("/requests/{request_id}", response_model=schemas.RequestRead)
def get_request(request_id: int, principal: Principal = Depends(get_principal), db: Session = Depends(get_db)):
    return lifecycle.get_request(db, principal, request_id)


@app.put("/requests/{request_id}", response_model=schemas.RequestRead)
def update_request(request_id: int, payload: schemas.RequestUpdate, principal: Principal = Depends(get_principal), db: Session = Depends(get_db)):
    return lifecycle.update_request(db, principal, request_id, payload)


@app.delete("/requests/{request_id}")
def delete_request(request_id: int, principal: Principal = Depends(get_principal), db: Session = Depends(get_db)):
    lifecycle.delete_request(db, principal, request_id)
    return {"message": "Request deleted successfully", "deleted": request_id}


@app.post("/requests/{request_id}/assign/{donation_id}", response_model=schemas.AssignmentRead)
def assign_donation_to_request(request_id: int, donation_id: int, principal: Principal = Depends(get_principal), db: Session = Depends(get_db)):
    request, donation = lifecycle.assign_to_request(db, principal, donation_id, request_id)
    return {"request": request, "donation": donation}


# -------------------- Feedback --------------------

@app.get("/feedbacks", response_model=schemas.FeedbackPage)
def list_feedback(
    recipient_id: Optional[int] = None,
    foodbank_id: Optional[int] = None,
    rating: Optional[int] = Query(None, ge=1, le=5),
    page: int = Query(1, ge=1),
    per_page: Optional[int] = Query(None, ge=1, le=100),
    principal: Principal = Depends(get_principal),
    db: Session = Depends(get_db),
):
    return crud.list_feedback(
        db, principal, recipient_id=recipient_id, foodbank_id=foodbank_id,
        rating=rating, page=page, per_page=per_page,
    )


@app.post("/feedbacks", response_model=schemas.FeedbackRead, status_code=201)
def create_feedback(payload: schemas.FeedbackCreate, principal: Principal = Depends(get_principal), db: Session = Depends(get_db)):
    return crud.create_feedback(db, principal, payload)


@app.get("/feedbacks/{feedback_id}", response_model=schemas.FeedbackRead)
def get_feedback(feedback_id: int, principal: Principal = Depends(get_principal), db: Session = Depends(get_db)):
    return crud.get_feedback(db, principal, feedback_id)


@app.put("/feedbacks/{feedback_id}", response_model=schemas.FeedbackRead)
def update_feedback(feedback_id: int, payload: schemas.FeedbackUpdate, principal: Principal = Depends(get_principal), db: Session = Depends(get_db)):
    return crud.update_feedback(db, principal, feedback_id, payload)


@app.delete("/feedbacks/{feedback_id}")
def delete_feedback(feedback_id: int, principal: Principal = Depends(get_principal), db: Session = Depends(get_db)):
    crud.delete_feedback(db, principal, feedback_id)
    return {"message": "Feedback deleted successfully", "deleted": feedback_id}


# -------------------- Dashboard --------------------

@app.get("/dashboard")
def get_dashboard(principal: Principal = Depends(get_principal), db: Session = Depends(get_db)):
    return dashboard.summary(db, principal)
