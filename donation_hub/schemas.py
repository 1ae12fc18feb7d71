from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, EmailStr, Field, PositiveInt, field_validator, model_validator
from pydantic.config import ConfigDict

from . import models

Role = Literal["admin", "donor", "foodbank", "recipient"]
RecipientType = Literal["individual", "organization"]


# -------------------- Users --------------------

class UserProfile(BaseModel):
    phone: Optional[str] = Field(default=None, max_length=32)
    location: Optional[str] = Field(default=None, max_length=255)
    address: Optional[str] = Field(default=None, max_length=255)
    organization_name: Optional[str] = Field(default=None, max_length=255)
    recipient_type: Optional[RecipientType] = None
    donor_type: Optional[str] = Field(default=None, max_length=255)
    notes: Optional[str] = None

    @field_validator("phone")
    def phone_digits(cls, v: Optional[str]):
        if v is None:
            return v
        digits = "".join(ch for ch in v if ch.isdigit())
        if not 10 <= len(digits) <= 15:
            raise ValueError("phone must contain between 10 and 15 digits")
        return v


class UserCreate(UserProfile):
    model_config = ConfigDict(extra="forbid")

    name: str = Field(..., min_length=1, max_length=255)
    email: EmailStr
    password: str = Field(..., min_length=8)
    password_confirmation: str
    role: Role

    @model_validator(mode="after")
    def passwords_match(self):
        if self.password != self.password_confirmation:
            raise ValueError("password confirmation does not match")
        return self


class UserRegister(UserCreate):
    # Admin accounts are only created by other admins
    role: Literal["donor", "foodbank", "recipient"]


class UserUpdate(UserProfile):
    """Partial profile update. Role is deliberately absent and rejected."""

    model_config = ConfigDict(extra="forbid")

    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    email: Optional[EmailStr] = None
    password: Optional[str] = Field(default=None, min_length=8)
    password_confirmation: Optional[str] = None

    @model_validator(mode="after")
    def passwords_match(self):
        if self.password is not None and self.password != self.password_confirmation:
            raise ValueError("password confirmation does not match")
        return self


class UserRead(BaseModel):
    id: int
    name: str
    email: str
    role: str
    phone: Optional[str] = None
    location: Optional[str] = None
    address: Optional[str] = None
    organization_name: Optional[str] = None
    recipient_type: Optional[str] = None
    donor_type: Optional[str] = None
    notes: Optional[str] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class UserSummary(BaseModel):
    """Compact user reference embedded in donations and feedback."""

    id: int
    name: str
    role: str
    deleted: bool = False

    model_config = ConfigDict(from_attributes=True)

    @model_validator(mode="before")
    @classmethod
    def mark_deleted(cls, data):
        if hasattr(data, "deleted_at"):
            return {"id": data.id, "name": data.name, "role": data.role, "deleted": data.deleted_at is not None}
        return data


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"


# -------------------- Donations --------------------

class DonationCreate(BaseModel):
    donor_id: PositiveInt
    foodbank_id: PositiveInt
    recipient_id: Optional[PositiveInt] = None
    type: str = Field(..., min_length=1, max_length=255)
    quantity: int = Field(..., le=models.MAX_QUANTITY)


class DonationUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    type: Optional[str] = Field(default=None, min_length=1, max_length=255)
    quantity: Optional[int] = Field(default=None, le=models.MAX_QUANTITY)


class DonationRead(BaseModel):
    id: int
    donor_id: int
    foodbank_id: int
    recipient_id: Optional[int] = None
    type: str
    quantity: int
    status: str
    assigned_request_id: Optional[int] = None
    created_at: datetime
    updated_at: datetime
    donor: Optional[UserSummary] = None
    foodbank: Optional[UserSummary] = None
    recipient: Optional[UserSummary] = None

    model_config = ConfigDict(from_attributes=True)


# -------------------- Requests --------------------

class RequestCreate(BaseModel):
    # Optional for foodbanks (defaults to the caller); required for admins
    foodbank_id: Optional[PositiveInt] = None
    type: str = Field(..., min_length=1, max_length=255)
    quantity: int = Field(..., le=models.MAX_QUANTITY)


class RequestUpdate(BaseModel):
    """Only type and quantity are editable; status changes come from matching."""

    model_config = ConfigDict(extra="forbid")

    type: Optional[str] = Field(default=None, min_length=1, max_length=255)
    quantity: Optional[int] = Field(default=None, le=models.MAX_QUANTITY)


class RequestRead(BaseModel):
    id: int
    foodbank_id: int
    type: str
    quantity: int
    status: str
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class AssignmentRead(BaseModel):
    request: RequestRead
    donation: DonationRead


# -------------------- Feedback --------------------

class FeedbackCreate(BaseModel):
    # Optional for recipients (defaults to the caller); required for admins
    recipient_id: Optional[PositiveInt] = None
    foodbank_id: PositiveInt
    thank_you_note: str = Field(..., min_length=1, max_length=1000)
    rating: int = Field(..., ge=1, le=5)


class FeedbackUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    thank_you_note: Optional[str] = Field(default=None, min_length=1, max_length=1000)
    rating: Optional[int] = Field(default=None, ge=1, le=5)


class FeedbackRead(BaseModel):
    id: int
    recipient_id: int
    foodbank_id: int
    thank_you_note: str
    rating: int
    created_at: datetime
    recipient: Optional[UserSummary] = None
    foodbank: Optional[UserSummary] = None

    model_config = ConfigDict(from_attributes=True)


# -------------------- Pages --------------------

class Page(BaseModel):
    total: int
    page: int
    page_size: int
    total_pages: int
    has_next: bool
    has_previous: bool


class UserPage(Page):
    items: List[UserRead]


class DonationPage(Page):
    items: List[DonationRead]


class RequestPage(Page):
    items: List[RequestRead]


class FeedbackPage(Page):
    items: List[FeedbackRead]
