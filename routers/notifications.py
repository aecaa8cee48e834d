from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException

from db import SessionDep
from notifications import NotificationInbox
from .auth import CurrentUserRoleDep

router = APIRouter(tags=["notifications"])


def get_inbox(session: SessionDep, current: CurrentUserRoleDep) -> NotificationInbox:
    return NotificationInbox(session, current["user"])


InboxDep = Annotated[NotificationInbox, Depends(get_inbox)]


@router.get("/")
def notification_summary(inbox: InboxDep):
    """Both inboxes with their unread counts. Clients re-poll after ``refresh_seconds``."""
    return inbox.summary()


@router.post("/incoming/read-all")
def mark_all_incoming_read(inbox: InboxDep):
    marked = inbox.mark_all_incoming_read()
    return {"marked": marked or 0, "incoming_count": inbox.incoming_count()}


@router.post("/incoming/{request_id}/read")
def mark_incoming_read(request_id: int, inbox: InboxDep):
    marked = inbox.mark_incoming_read(request_id)
    if marked is False:
        raise HTTPException(status_code=404, detail="No unread request with that id")
    # a failed write was logged; the count shows nothing changed
    return {"marked": int(bool(marked)), "incoming_count": inbox.incoming_count()}


@router.post("/updates/read-all")
def mark_all_updates_read(inbox: InboxDep):
    marked = inbox.mark_all_updates_read()
    return {"marked": marked or 0, "updates_count": inbox.updates_count()}


@router.post("/updates/{request_id}/read")
def mark_update_read(request_id: int, inbox: InboxDep):
    marked = inbox.mark_update_read(request_id)
    if marked is False:
        raise HTTPException(status_code=404, detail="No unread update with that id")
    return {"marked": int(bool(marked)), "updates_count": inbox.updates_count()}
