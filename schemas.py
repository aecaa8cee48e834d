from datetime import date, datetime
from typing import List, Literal, Optional

from pydantic import (
    BaseModel,
    ConfigDict,
    EmailStr,
    Field,
    ValidationError,
    field_validator,
)

import config
from models import CATEGORIES, CONDITIONS
from validation import (
    sanitize_text,
    validate_description,
    validate_phone,
    validate_price,
    validate_title,
)


def first_error(exc: ValidationError) -> str:
    """Human-readable message for the first failing field."""
    err = exc.errors()[0]
    ctx_error = (err.get("ctx") or {}).get("error")
    if ctx_error is not None:
        return str(ctx_error)
    field = ".".join(str(part) for part in err.get("loc", ()))
    return f"{field}: {err['msg']}" if field else err["msg"]


class UserCreate(BaseModel):
    email: EmailStr
    password: str = Field(min_length=6)
    full_name: Optional[str] = None
    section: Optional[str] = None
    course: Optional[str] = None
    intake_month: Optional[str] = None
    phone: Optional[str] = None
    campus_id: Optional[str] = None

    @field_validator("phone")
    @classmethod
    def check_phone(cls, value):
        message = validate_phone(value)
        if message:
            raise ValueError(message)
        return value


class LoginData(BaseModel):
    email: EmailStr
    password: str


class MagicLinkRequest(BaseModel):
    email: EmailStr


class ProfileUpdate(BaseModel):
    full_name: str = Field(min_length=1)
    section: str = Field(min_length=1)
    intake_month: str = Field(min_length=1)
    phone: str = Field(min_length=1)
    dob: date
    campus_id: str = Field(min_length=1)
    course: str = Field(min_length=1)

    @field_validator("full_name", "section", "intake_month", "campus_id", "course", mode="before")
    @classmethod
    def strip_text(cls, value):
        return value.strip() if isinstance(value, str) else value

    @field_validator("phone")
    @classmethod
    def check_phone(cls, value):
        message = validate_phone(value)
        if message:
            raise ValueError(message)
        return value.strip()


class UserRead(BaseModel):
    id: int
    email: EmailStr
    full_name: Optional[str]
    section: Optional[str]
    course: Optional[str]
    intake_month: Optional[str]
    phone: Optional[str]
    dob: Optional[date]
    campus_id: Optional[str]
    is_admin: bool
    is_suspended: bool
    suspended_at: Optional[datetime]
    is_onboarded: bool
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


def _raise_if(message: Optional[str]) -> None:
    if message:
        raise ValueError(message)


def clean_name(value: str) -> str:
    _raise_if(validate_title(value))
    return sanitize_text(value)


def clean_description(value: str) -> str:
    _raise_if(validate_description(value))
    return sanitize_text(value)


def clean_price(value):
    _raise_if(validate_price(value))
    return value


def clean_category(value: str) -> str:
    if value not in CATEGORIES:
        raise ValueError(f"Unknown category: {value}")
    return value


def clean_condition(value: str) -> str:
    if value not in CONDITIONS:
        raise ValueError(f"Unknown condition: {value}")
    return value


def clean_phone(value: Optional[str]) -> Optional[str]:
    _raise_if(validate_phone(value))
    return value.strip() if value else None


class ItemCreate(BaseModel):
    name: str
    description: str
    price: float = 0
    category: str = "General"
    condition: str = "Good"
    location: str = ""
    whatsapp_number: Optional[str] = None

    @field_validator("name")
    @classmethod
    def check_name(cls, value):
        return clean_name(value)

    @field_validator("description")
    @classmethod
    def check_description(cls, value):
        return clean_description(value)

    @field_validator("price", mode="before")
    @classmethod
    def check_price(cls, value):
        return clean_price(value)

    @field_validator("category")
    @classmethod
    def check_category(cls, value):
        return clean_category(value)

    @field_validator("condition")
    @classmethod
    def check_condition(cls, value):
        return clean_condition(value)

    @field_validator("location")
    @classmethod
    def check_location(cls, value):
        return sanitize_text(value) or config.DEFAULT_LOCATION

    @field_validator("whatsapp_number")
    @classmethod
    def check_whatsapp(cls, value):
        return clean_phone(value)


class ItemUpdate(BaseModel):
    """Partial edit; omitted fields keep their stored value."""

    name: Optional[str] = None
    description: Optional[str] = None
    price: Optional[float] = None
    category: Optional[str] = None
    condition: Optional[str] = None
    location: Optional[str] = None
    whatsapp_number: Optional[str] = None

    @field_validator("name")
    @classmethod
    def check_name(cls, value):
        return None if value is None else clean_name(value)

    @field_validator("description")
    @classmethod
    def check_description(cls, value):
        return None if value is None else clean_description(value)

    @field_validator("price", mode="before")
    @classmethod
    def check_price(cls, value):
        return None if value in (None, "") else clean_price(value)

    @field_validator("category")
    @classmethod
    def check_category(cls, value):
        return None if value is None else clean_category(value)

    @field_validator("condition")
    @classmethod
    def check_condition(cls, value):
        return None if value is None else clean_condition(value)

    @field_validator("location")
    @classmethod
    def check_location(cls, value):
        return None if value is None else sanitize_text(value) or config.DEFAULT_LOCATION

    @field_validator("whatsapp_number")
    @classmethod
    def check_whatsapp(cls, value):
        return clean_phone(value)


class ItemRead(BaseModel):
    id: int
    posted_by: int
    name: str
    description: str
    price: float
    category: str
    condition: str
    location: str
    whatsapp_number: Optional[str]
    image: Optional[str]
    created_at: datetime
    expiry_date: datetime
    is_donated: bool
    donated_at: Optional[datetime]
    is_flagged: bool
    status: str
    is_free: bool
    is_expired: bool
    days_until_expiry: int

    model_config = ConfigDict(from_attributes=True)


class PublicProfile(BaseModel):
    id: int
    full_name: Optional[str]
    section: Optional[str]
    course: Optional[str]
    created_at: datetime
    items: List[ItemRead]


class UserStats(BaseModel):
    items_posted: int
    items_donated: int
    active_items: int
    requests_made: int


class RequestCreate(BaseModel):
    item_id: int


class RequestStatusUpdate(BaseModel):
    status: str = Field(pattern="^(approved|rejected)$")


class RequestRead(BaseModel):
    id: int
    item_id: int
    requester_id: int
    requester_name: str
    requester_email: str
    status: str
    created_at: datetime
    last_status_change: datetime
    read_by_poster: bool
    read_by_requester: bool

    model_config = ConfigDict(from_attributes=True)


class RequestWithItem(RequestRead):
    item: Optional[ItemRead] = None
    contact_url: Optional[str] = None


class IncomingRequests(BaseModel):
    requests: List[RequestWithItem]
    counts: dict


ReportReason = Literal[
    "suspicious",
    "inappropriate_content",
    "spam",
    "scam",
    "already_sold",
    "misleading",
    "other",
]
ReportStatus = Literal["pending", "reviewed", "resolved", "rejected"]


class ReportCreate(BaseModel):
    item_id: int
    reason: ReportReason
    description: Optional[str] = Field(default=None, max_length=500)

    @field_validator("description")
    @classmethod
    def check_description(cls, value):
        cleaned = sanitize_text(value)
        return cleaned or None


class ReportStatusUpdate(BaseModel):
    status: ReportStatus


class ReportRead(BaseModel):
    id: int
    item_id: int
    reporter_id: int
    reporter_email: Optional[str]
    reason: str
    description: Optional[str]
    status: str
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class CommentCreate(BaseModel):
    comment: str = Field(min_length=1, max_length=1000)
    page: str = "about"

    @field_validator("comment")
    @classmethod
    def check_comment(cls, value):
        cleaned = sanitize_text(value)
        if not cleaned:
            raise ValueError("Please write a comment")
        return cleaned


class CommentRead(BaseModel):
    id: int
    page: str
    user_name: str
    comment: str
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)
