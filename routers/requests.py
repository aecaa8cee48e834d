import logging
from collections import Counter
from typing import List, Optional

from fastapi import APIRouter, HTTPException, Response
from sqlmodel import Session, col, select

import workflow
from db import SessionDep
from models import Item, Request, User
from schemas import (
    IncomingRequests,
    ItemRead,
    RequestCreate,
    RequestRead,
    RequestStatusUpdate,
    RequestWithItem,
)
from .auth import CurrentUserRoleDep
from .items import get_item_or_404

logger = logging.getLogger(__name__)

router = APIRouter(tags=["requests"])


def get_request_or_404(session: Session, request_id: int) -> Request:
    req = session.get(Request, request_id)
    if req is None:
        raise HTTPException(status_code=404, detail="Request not found")
    return req


def _with_item(req: Request, item: Optional[Item], viewer: User) -> RequestWithItem:
    contact_url = None
    if item is not None and workflow.can_contact(viewer, item, req):
        contact_url = workflow.whatsapp_link(item)
    return RequestWithItem(
        **RequestRead.model_validate(req).model_dump(),
        item=ItemRead.model_validate(item) if item is not None else None,
        contact_url=contact_url,
    )


@router.post("/", response_model=RequestRead, status_code=201)
def create_request(request_data: RequestCreate, session: SessionDep, current: CurrentUserRoleDep):
    """Mark interest in an item. One request per item and requester."""
    user = current["user"]
    item = get_item_or_404(session, request_data.item_id)
    new_request = workflow.create_request(session, item, user)
    logger.info("User %s requested item %s", user.id, item.id)
    return new_request


@router.get("/mine", response_model=List[RequestWithItem])
def my_requests(session: SessionDep, current: CurrentUserRoleDep):
    """Requests I made, with the item and, once approved, the contact link."""
    user = current["user"]
    rows = session.exec(
        select(Request, Item)
        .join(Item, Item.id == Request.item_id)
        .where(Request.requester_id == user.id)
        .order_by(col(Request.created_at).desc(), col(Request.id).desc())
    ).all()
    return [_with_item(req, item, user) for req, item in rows]


@router.get("/incoming", response_model=IncomingRequests)
def incoming_requests(
    session: SessionDep,
    current: CurrentUserRoleDep,
    status: Optional[str] = None,
):
    """Requests on my items, optionally filtered by status, with per-status counts."""
    user = current["user"]
    rows = session.exec(
        select(Request, Item)
        .join(Item, Item.id == Request.item_id)
        .where(Item.posted_by == user.id)
        .order_by(col(Request.created_at).desc(), col(Request.id).desc())
    ).all()

    by_status = Counter(req.status for req, _ in rows)
    counts = {
        "all": len(rows),
        "pending": by_status["pending"],
        "approved": by_status["approved"],
        "rejected": by_status["rejected"],
    }
    if status and status != "all":
        rows = [(req, item) for req, item in rows if req.status == status]
    return IncomingRequests(
        requests=[_with_item(req, item, user) for req, item in rows],
        counts=counts,
    )


@router.get("/{request_id}", response_model=RequestRead)
def get_request(request_id: int, session: SessionDep, current: CurrentUserRoleDep):
    user = current["user"]
    req = get_request_or_404(session, request_id)
    item = session.get(Item, req.item_id)
    if req.requester_id != user.id and (item is None or item.posted_by != user.id):
        raise HTTPException(status_code=403, detail="You can only view your own requests.")
    return req


@router.patch("/{request_id}", response_model=RequestRead)
def update_request_status(
    request_id: int,
    update: RequestStatusUpdate,
    session: SessionDep,
    current: CurrentUserRoleDep,
):
    """Approve or reject a request; the owner may reverse an earlier decision."""
    user = current["user"]
    db_request = get_request_or_404(session, request_id)
    item = session.get(Item, db_request.item_id)
    if item is None:
        raise HTTPException(
            status_code=400,
            detail="Associated item not found",
        )
    if item.posted_by != user.id:
        raise HTTPException(
            status_code=403,
            detail="You can only manage requests for your own items.",
        )
    updated = workflow.change_status(session, db_request, update.status)
    logger.info("Request %s is now %s", updated.id, updated.status)
    return updated


@router.delete("/item/{item_id}", status_code=204)
def cancel_interest(item_id: int, session: SessionDep, current: CurrentUserRoleDep):
    """Withdraw my request for an item."""
    user = current["user"]
    req = workflow.find_request(session, item_id, user.id)
    if req is None:
        raise HTTPException(status_code=404, detail="Request not found")
    session.delete(req)
    session.commit()
    return Response(status_code=204)


@router.delete("/{request_id}", status_code=204)
def delete_request(
    request_id: int,
    session: SessionDep,
    current: CurrentUserRoleDep,
):
    user = current["user"]
    req = get_request_or_404(session, request_id)
    item = session.get(Item, req.item_id)
    is_owner = item is not None and item.posted_by == user.id
    if req.requester_id != user.id and not is_owner:
        raise HTTPException(
            status_code=403,
            detail="You can only delete your own requests or requests for your items.",
        )
    session.delete(req)
    session.commit()
    return Response(status_code=204)
