"""Form validators and text sanitizers shared by the JSON and form endpoints.

Every validator returns ``None`` when the value is acceptable and a
human-readable message otherwise, so callers can collect messages the same
way the HTML forms do.
"""
import re
from typing import Optional

_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
_SCRIPT_RE = re.compile(r"<script|javascript:", re.IGNORECASE)
_PHONE_RE = re.compile(r"^[\d\s+\-()]+$")

MAX_TITLE_LENGTH = 100
MAX_DESCRIPTION_LENGTH = 2000
MAX_PRICE = 100000


def _blank(value) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def validate_email(value: Optional[str]) -> Optional[str]:
    if _blank(value):
        return "Email is required"
    if not _EMAIL_RE.match(value):
        return "Please enter a valid email address"
    return None


def validate_title(value: Optional[str]) -> Optional[str]:
    if _blank(value):
        return "Title is required"
    if len(value) > MAX_TITLE_LENGTH:
        return f"Title must be less than {MAX_TITLE_LENGTH} characters"
    if _SCRIPT_RE.search(value):
        return "Invalid characters in title"
    return None


def validate_description(value: Optional[str]) -> Optional[str]:
    if _blank(value):
        return "Description is required"
    if len(value) > MAX_DESCRIPTION_LENGTH:
        return f"Description must be less than {MAX_DESCRIPTION_LENGTH} characters"
    if _SCRIPT_RE.search(value):
        return "Invalid characters in description"
    return None


def validate_price(value) -> Optional[str]:
    if value is None or value == "":
        return "Price is required"
    try:
        number = float(value)
    except (TypeError, ValueError):
        return "Price must be a number"
    if number != number:  # NaN
        return "Price must be a number"
    if number < 0:
        return "Price cannot be negative"
    if number > MAX_PRICE:
        return "Price seems unreasonably high"
    return None


def validate_phone(value: Optional[str]) -> Optional[str]:
    if not value:
        return None
    if not _PHONE_RE.match(value):
        return "Please enter a valid phone number"
    if len(re.sub(r"\D", "", value)) < 8:
        return "Phone number is too short"
    return None


def validate_required(value, field_name: str = "This field") -> Optional[str]:
    if _blank(value):
        return f"{field_name} is required"
    return None


def sanitize_text(text: Optional[str]) -> str:
    """Strip markup and script vectors from free text."""
    if not text or not isinstance(text, str):
        return ""
    text = text.strip()
    text = re.sub(r"[<>]", "", text)
    text = re.sub(r"javascript:", "", text, flags=re.IGNORECASE)
    text = re.sub(r"on\w+\s*=", "", text, flags=re.IGNORECASE)
    text = re.sub(r"data:", "", text, flags=re.IGNORECASE)
    return text


def sanitize_file_name(file_name: Optional[str]) -> str:
    if not file_name:
        return ""
    cleaned = re.sub(r"[^a-zA-Z0-9._-]", "_", file_name)
    cleaned = re.sub(r"\.{2,}", ".", cleaned)
    return cleaned[:255]


def email_in_domain(email: str, domain: str) -> bool:
    return email.strip().lower().endswith("@" + domain.lower())
