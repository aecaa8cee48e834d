import math
from datetime import date, datetime, timedelta, timezone
from typing import Optional

from sqlalchemy import DateTime, UniqueConstraint
from sqlalchemy.types import TypeDecorator
from sqlmodel import Field, SQLModel

import config


def utcnow() -> datetime:
    """Timezone-aware UTC timestamp, the format every column in this schema uses."""
    return datetime.now(timezone.utc)


class UTCDateTime(TypeDecorator):
    """Aware UTC datetimes in and out, whatever the backend keeps.

    SQLite drops the offset on write and hands back naive values; those are
    UTC by construction, so the offset is put back on read.
    """

    impl = DateTime
    cache_ok = True

    def __init__(self):
        super().__init__(timezone=True)

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


REQUEST_PENDING = "pending"
REQUEST_APPROVED = "approved"
REQUEST_REJECTED = "rejected"

REPORT_STATUSES = ("pending", "reviewed", "resolved", "rejected")
REPORT_REASONS = {
    "suspicious": "Seems fishy / suspicious",
    "inappropriate_content": "Inappropriate Content",
    "spam": "Spam",
    "scam": "Scam/Fraud",
    "already_sold": "Already Sold",
    "misleading": "Misleading Information",
    "other": "Other",
}

CATEGORIES = (
    "General",
    "Books",
    "Electronics",
    "Furniture",
    "Clothing",
    "Accessories",
    "Sports",
    "Other",
)
CONDITIONS = ("New", "Like New", "Good", "Fair", "Poor")


class User(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    email: str = Field(index=True, unique=True)
    full_name: Optional[str] = None
    password_hash: Optional[str] = None

    section: Optional[str] = None
    course: Optional[str] = None
    intake_month: Optional[str] = None
    phone: Optional[str] = None
    dob: Optional[date] = None
    campus_id: Optional[str] = None

    is_admin: bool = False
    is_suspended: bool = False
    suspended_at: Optional[datetime] = Field(default=None, sa_type=UTCDateTime)
    last_sign_in_at: Optional[datetime] = Field(default=None, sa_type=UTCDateTime)
    created_at: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime)

    @property
    def is_onboarded(self) -> bool:
        return bool(self.full_name and self.section)

    @property
    def display_name(self) -> str:
        return self.full_name or self.email.split("@")[0] or "Anonymous"


class Item(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    posted_by: int = Field(foreign_key="user.id", index=True)

    name: str
    description: str
    price: float = 0
    category: str = "General"
    condition: str = "Good"
    location: str = config.DEFAULT_LOCATION
    whatsapp_number: Optional[str] = None
    image: Optional[str] = None
    image_name: Optional[str] = None

    created_at: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime)
    expiry_date: datetime = Field(
        default_factory=lambda: utcnow() + timedelta(days=config.ITEM_LIFETIME_DAYS),
        sa_type=UTCDateTime,
    )
    is_donated: bool = False
    donated_at: Optional[datetime] = Field(default=None, sa_type=UTCDateTime)
    is_flagged: bool = False
    status: str = "active"

    @property
    def is_free(self) -> bool:
        return not self.price

    @property
    def is_expired(self) -> bool:
        return self.expiry_date < utcnow()

    @property
    def days_until_expiry(self) -> int:
        seconds = (self.expiry_date - utcnow()).total_seconds()
        return max(0, math.ceil(seconds / 86400))


class Request(SQLModel, table=True):
    __table_args__ = (
        UniqueConstraint("item_id", "requester_id", name="uq_request_item_requester"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    item_id: int = Field(foreign_key="item.id", index=True)
    requester_id: int = Field(foreign_key="user.id", index=True)
    requester_name: str
    requester_email: str

    status: str = REQUEST_PENDING  # pending | approved | rejected
    created_at: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime)
    last_status_change: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime)
    read_by_poster: bool = False
    read_by_requester: bool = False


class Report(SQLModel, table=True):
    __table_args__ = (
        UniqueConstraint("item_id", "reporter_id", name="uq_report_item_reporter"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    item_id: int = Field(foreign_key="item.id", index=True)
    reporter_id: int = Field(foreign_key="user.id")
    reporter_email: Optional[str] = None

    reason: str
    description: Optional[str] = Field(default=None, max_length=500)
    status: str = "pending"  # pending | reviewed | resolved | rejected
    created_at: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime)


class Comment(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    page: str = "about"
    user_id: Optional[int] = Field(default=None, foreign_key="user.id")
    user_name: str
    comment: str
    created_at: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime)
