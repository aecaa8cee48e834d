"""Interest-request state machine and the contact permission derived from it.

    pending  -> approved | rejected
    approved -> rejected
    rejected -> approved

Deletion is allowed from any state, by either the requester or the owner.
"""
import re
from typing import Optional
from urllib.parse import quote

from fastapi import HTTPException, status
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from models import (
    REQUEST_APPROVED,
    REQUEST_PENDING,
    REQUEST_REJECTED,
    Item,
    Request,
    User,
    utcnow,
)

ALREADY_REQUESTED = "You have already requested this item."

TRANSITIONS = {
    REQUEST_PENDING: {REQUEST_APPROVED, REQUEST_REJECTED},
    REQUEST_APPROVED: {REQUEST_REJECTED},
    REQUEST_REJECTED: {REQUEST_APPROVED},
}

# older rows were written with "accepted"
CONTACT_STATUSES = {REQUEST_APPROVED, "accepted"}


def can_transition(current: str, new: str) -> bool:
    return new in TRANSITIONS.get(current, set())


def can_contact(viewer: Optional[User], item: Item, request: Optional[Request]) -> bool:
    if viewer is None:
        return False
    if item.posted_by == viewer.id:
        return True
    if request is None or request.requester_id != viewer.id or request.item_id != item.id:
        return False
    return request.status in CONTACT_STATUSES


def whatsapp_link(item: Item) -> Optional[str]:
    if not item.whatsapp_number:
        return None
    number = re.sub(r"\D", "", item.whatsapp_number)
    message = (
        f'Hi! I\'m interested in your "{item.name}" from Free Stuff Niels Brock! '
        f"Is it still available?\nLocation: {item.location or 'TBD'}\n\nThanks!"
    )
    return f"https://wa.me/{number}?text={quote(message)}"


def find_request(session: Session, item_id: int, requester_id: int) -> Optional[Request]:
    return session.exec(
        select(Request).where(
            Request.item_id == item_id,
            Request.requester_id == requester_id,
        )
    ).first()


def create_request(session: Session, item: Item, requester: User) -> Request:
    if item.posted_by == requester.id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="You cannot request your own item.",
        )
    if item.is_expired:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="This item has expired.",
        )
    if item.is_donated:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="This item has already been donated.",
        )

    new_request = Request(
        item_id=item.id,
        requester_id=requester.id,
        requester_name=requester.display_name,
        requester_email=requester.email,
        status=REQUEST_PENDING,
    )
    session.add(new_request)
    try:
        session.commit()
    except IntegrityError:
        session.rollback()
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=ALREADY_REQUESTED)
    session.refresh(new_request)
    return new_request


def change_status(session: Session, db_request: Request, new_status: str) -> Request:
    if not can_transition(db_request.status, new_status):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Cannot change a {db_request.status} request to {new_status}.",
        )
    db_request.status = new_status
    db_request.last_status_change = utcnow()
    # every decision is news to the requester, even a reversal they already saw
    db_request.read_by_requester = False
    session.add(db_request)
    session.commit()
    session.refresh(db_request)
    return db_request
