import json
from typing import Optional

from fastapi import APIRouter, HTTPException, Request, status
from fastapi.responses import HTMLResponse
from fastapi.templating import Jinja2Templates

import config
import workflow
from db import SessionDep
from models import REQUEST_APPROVED, REQUEST_REJECTED, Item
from notifications import NotificationInbox
from .auth import CurrentUserRoleDep
from .notifications import InboxDep
from .requests import get_request_or_404

router = APIRouter(prefix="/ui", tags=["ui"])
templates = Jinja2Templates(directory=str(config.BASE_DIR / "templates"))


FLASH_SUCCESS = "success"
FLASH_ERROR = "error"


def _render_notifications(
    request: Request,
    inbox: NotificationInbox,
    flash_message: Optional[dict] = None,
    status_code: int = status.HTTP_200_OK,
) -> HTMLResponse:
    response = templates.TemplateResponse(
        request,
        "fragments/notifications.html",
        {
            **inbox.summary(),
            "flash_message": flash_message,
        },
    )
    response.status_code = status_code
    return response


@router.get("/notifications", response_class=HTMLResponse)
def notifications_fragment(request: Request, inbox: InboxDep):
    """Dropdown fragment; it polls itself again every 30 seconds."""
    return _render_notifications(request, inbox)


@router.post("/notifications/incoming/read-all", response_class=HTMLResponse)
def read_all_incoming(request: Request, inbox: InboxDep):
    inbox.mark_all_incoming_read()
    return _render_notifications(request, inbox)


@router.post("/notifications/incoming/{request_id}/read", response_class=HTMLResponse)
def read_incoming(request_id: int, request: Request, inbox: InboxDep):
    inbox.mark_incoming_read(request_id)
    return _render_notifications(request, inbox)


@router.post("/notifications/updates/read-all", response_class=HTMLResponse)
def read_all_updates(request: Request, inbox: InboxDep):
    inbox.mark_all_updates_read()
    return _render_notifications(request, inbox)


@router.post("/notifications/updates/{request_id}/read", response_class=HTMLResponse)
def read_update(request_id: int, request: Request, inbox: InboxDep):
    inbox.mark_update_read(request_id)
    return _render_notifications(request, inbox)


@router.post("/requests/{request_id}/status", response_class=HTMLResponse)
async def owner_update_request_status(
    request_id: int,
    http_request: Request,
    session: SessionDep,
    current: CurrentUserRoleDep,
    inbox: InboxDep,
):
    """Approve/reject straight from the dropdown, then re-render it."""
    user = current["user"]
    form = await http_request.form()
    new_status = (form.get("status") or "").strip()

    try:
        if new_status not in (REQUEST_APPROVED, REQUEST_REJECTED):
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid status value.")
        db_request = get_request_or_404(session, request_id)
        item = session.get(Item, db_request.item_id)
        if item is None or item.posted_by != user.id:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="You can only manage requests for your own items.",
            )
        workflow.change_status(session, db_request, new_status)
    except HTTPException as exc:
        session.rollback()
        return _render_notifications(
            http_request,
            inbox,
            {"kind": FLASH_ERROR, "text": exc.detail},
            status_code=exc.status_code,
        )

    inbox.mark_incoming_read(request_id)
    response = _render_notifications(
        http_request,
        inbox,
        {"kind": FLASH_SUCCESS, "text": f"Request {new_status} successfully."},
    )
    response.headers["HX-Trigger"] = json.dumps({"requests-refresh": True})
    return response
