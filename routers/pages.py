# routers/pages.py
from typing import List

from fastapi import APIRouter, HTTPException, Request, status
from fastapi.responses import HTMLResponse, RedirectResponse
from fastapi.templating import Jinja2Templates
from pydantic import ValidationError
from sqlmodel import col, select

import config
from db import SessionDep
from models import Comment, User
from schemas import CommentCreate, CommentRead, ProfileUpdate, first_error
from validation import validate_required
from workflow import can_contact, find_request, whatsapp_link
from .auth import CurrentUserRoleDep, OptionalUserRoleDep
from .items import get_item_or_404

router = APIRouter(tags=["pages"])
templates = Jinja2Templates(directory=str(config.BASE_DIR / "templates"))

TESTIMONIAL_LIMIT = 6
ONBOARDING_FIELDS = {
    "full_name": "Full name",
    "section": "Section",
    "intake_month": "Intake month",
    "phone": "Phone number",
    "dob": "Date of birth",
    "campus_id": "Student ID",
    "course": "Course",
}


def _page_context(current) -> dict:
    return {
        "current_user": current["user"] if current else None,
        "current_role": current["role"] if current else None,
        "refresh_seconds": config.NOTIFICATION_REFRESH_SECONDS,
    }


@router.get("/", response_class=HTMLResponse)
def home(request: Request, session: SessionDep, current: OptionalUserRoleDep):
    """Landing page with the latest community comments as testimonials."""
    comments = session.exec(
        select(Comment)
        .order_by(col(Comment.created_at).desc(), col(Comment.id).desc())
        .limit(TESTIMONIAL_LIMIT)
    ).all()
    return templates.TemplateResponse(
        request,
        "home.html",
        {**_page_context(current), "testimonials": comments},
    )


@router.get("/comments", response_model=List[CommentRead])
def list_comments(session: SessionDep, page: str = "about"):
    return session.exec(
        select(Comment)
        .where(Comment.page == page)
        .order_by(col(Comment.created_at).desc(), col(Comment.id).desc())
    ).all()


@router.post("/comments", response_model=CommentRead, status_code=201)
def post_comment(comment_in: CommentCreate, session: SessionDep, current: CurrentUserRoleDep):
    user = current["user"]
    comment = Comment(
        page=comment_in.page,
        user_id=user.id,
        user_name=user.display_name,
        comment=comment_in.comment,
    )
    session.add(comment)
    session.commit()
    session.refresh(comment)
    return comment


@router.get("/onboarding", response_class=HTMLResponse)
def onboarding_page(request: Request, current: OptionalUserRoleDep):
    if not current:
        return RedirectResponse(url="/", status_code=status.HTTP_303_SEE_OTHER)
    user: User = current["user"]
    form_data = {field: getattr(user, field) or "" for field in ONBOARDING_FIELDS}
    return templates.TemplateResponse(
        request,
        "onboarding.html",
        {**_page_context(current), "form_data": form_data, "errors": []},
    )


@router.post("/onboarding", response_class=HTMLResponse)
async def onboarding_submit(request: Request, session: SessionDep, current: CurrentUserRoleDep):
    user: User = current["user"]
    form = await request.form()
    form_data = {field: (form.get(field) or "").strip() for field in ONBOARDING_FIELDS}

    errors = []
    for field, label in ONBOARDING_FIELDS.items():
        message = validate_required(form_data[field], label)
        if message:
            errors.append(message)
    profile = None
    if not errors:
        try:
            profile = ProfileUpdate(**form_data)
        except ValidationError as exc:
            errors.append(first_error(exc))

    if errors:
        response = templates.TemplateResponse(
            request,
            "onboarding.html",
            {**_page_context(current), "form_data": form_data, "errors": errors},
        )
        response.status_code = status.HTTP_400_BAD_REQUEST
        return response

    for field, value in profile.model_dump().items():
        setattr(user, field, value)
    session.add(user)
    session.commit()
    return RedirectResponse(url="/", status_code=status.HTTP_303_SEE_OTHER)


@router.get("/listing/{item_id}", response_class=HTMLResponse)
def item_detail_page(
    item_id: int,
    request: Request,
    session: SessionDep,
    current: OptionalUserRoleDep,
):
    """
    Item detail page. Expired items are labelled and cannot be requested;
    the WhatsApp button only shows for the owner or an approved requester.
    """
    item = get_item_or_404(session, item_id)
    viewer = current["user"] if current else None
    if item.is_flagged and (not current or current["role"] != "admin") and (
        viewer is None or viewer.id != item.posted_by
    ):
        raise HTTPException(status_code=404, detail="Item not found")

    own_request = find_request(session, item.id, viewer.id) if viewer else None
    contact_allowed = can_contact(viewer, item, own_request)
    poster = session.get(User, item.posted_by)

    return templates.TemplateResponse(
        request,
        "item_detail.html",
        {
            **_page_context(current),
            "item": item,
            "poster": poster,
            "is_owner": viewer is not None and viewer.id == item.posted_by,
            "request_status": own_request.status if own_request else None,
            "can_request": viewer is not None
            and viewer.id != item.posted_by
            and not item.is_expired
            and not item.is_donated,
            "contact_url": whatsapp_link(item) if contact_allowed else None,
        },
    )
