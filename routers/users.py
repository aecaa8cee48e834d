# routers/users.py
from fastapi import APIRouter, HTTPException, Response
from sqlalchemy import func
from sqlmodel import Session, col, select

from db import SessionDep
from models import Comment, Item, Report, Request, User
from schemas import ItemRead, ProfileUpdate, PublicProfile, UserRead, UserStats
from storage import ImageStore, ImageStoreDep
from .auth import CurrentUserRoleDep

router = APIRouter(tags=["users"])


def delete_item_cascade(session: Session, item: Item, images: ImageStore) -> None:
    """Remove an item with its requests, reports and image. Caller commits."""
    for req in session.exec(select(Request).where(Request.item_id == item.id)).all():
        session.delete(req)
    for report in session.exec(select(Report).where(Report.item_id == item.id)).all():
        session.delete(report)
    images.delete(item.image_name)
    session.delete(item)


def purge_user(session: Session, user: User, images: ImageStore) -> None:
    # 1) Requests *made by* this user
    for req in session.exec(select(Request).where(Request.requester_id == user.id)).all():
        session.delete(req)

    # 2) Reports filed by this user
    for report in session.exec(select(Report).where(Report.reporter_id == user.id)).all():
        session.delete(report)

    # 3) Items *posted by* this user, with everything hanging off them
    for item in session.exec(select(Item).where(Item.posted_by == user.id)).all():
        delete_item_cascade(session, item, images)

    # 4) Comments stay on the page, detached from the account
    for comment in session.exec(select(Comment).where(Comment.user_id == user.id)).all():
        comment.user_id = None
        session.add(comment)

    session.flush()
    session.delete(user)
    session.commit()


def _count(session: Session, statement) -> int:
    return session.exec(statement).one()


@router.get("/me", response_model=UserRead)
def get_me(current: CurrentUserRoleDep):
    return current["user"]


@router.put("/me/profile", response_model=UserRead)
def update_profile(profile: ProfileUpdate, session: SessionDep, current: CurrentUserRoleDep):
    """Onboarding form: every field is required."""
    user = current["user"]
    for field, value in profile.model_dump().items():
        setattr(user, field, value)
    session.add(user)
    session.commit()
    session.refresh(user)
    return user


@router.get("/me/stats", response_model=UserStats)
def my_stats(session: SessionDep, current: CurrentUserRoleDep):
    user = current["user"]
    mine = select(func.count()).select_from(Item).where(Item.posted_by == user.id)
    return UserStats(
        items_posted=_count(session, mine),
        # is_donated is a flag, so marking twice never counts twice
        items_donated=_count(session, mine.where(Item.is_donated == True)),  # noqa: E712
        active_items=_count(
            session,
            mine.where(Item.is_donated == False, Item.status == "active"),  # noqa: E712
        ),
        requests_made=_count(
            session,
            select(func.count()).select_from(Request).where(Request.requester_id == user.id),
        ),
    )


@router.delete("/me", status_code=204)
def delete_own_account(
    session: SessionDep,
    current: CurrentUserRoleDep,
    images: ImageStoreDep,
):
    purge_user(session, current["user"], images)
    return Response(status_code=204)


@router.get("/{user_id}", response_model=PublicProfile)
def get_public_profile(user_id: int, session: SessionDep):
    """
    Public profile with the user's listings.
    """
    user = session.get(User, user_id)
    if user is None or user.is_suspended:
        raise HTTPException(status_code=404, detail="User not found")
    items = session.exec(
        select(Item)
        .where(Item.posted_by == user.id, Item.is_flagged == False)  # noqa: E712
        .order_by(col(Item.created_at).desc())
    ).all()
    return PublicProfile(
        id=user.id,
        full_name=user.full_name,
        section=user.section,
        course=user.course,
        created_at=user.created_at,
        items=[ItemRead.model_validate(item) for item in items],
    )
