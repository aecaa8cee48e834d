import logging
from typing import Annotated, List, Literal, Optional

from fastapi import APIRouter, HTTPException, Query, Response
from fastapi.responses import PlainTextResponse
from sqlalchemy import func, or_
from sqlmodel import Session, col, select

import analytics
from db import SessionDep
from models import REPORT_STATUSES, Comment, Item, Report, Request, User, utcnow
from realtime import DELETE, UPDATE, ItemFeedDep
from schemas import ItemRead, ReportRead, ReportStatusUpdate, UserRead
from storage import ImageStoreDep
from .auth import AdminDep
from .users import delete_item_cascade, purge_user

logger = logging.getLogger(__name__)

router = APIRouter(tags=["admin"])


def _count(session: Session, model, *conditions) -> int:
    return session.exec(select(func.count()).select_from(model).where(*conditions)).one()


def _get_or_404(session: Session, model, row_id: int, label: str):
    row = session.get(model, row_id)
    if row is None:
        raise HTTPException(status_code=404, detail=f"{label} not found")
    return row


def _not_self(admin: User, user: User, action: str) -> None:
    if admin.id == user.id:
        raise HTTPException(status_code=400, detail=f"You cannot {action} your own account.")


@router.get("/stats")
def dashboard_stats(session: SessionDep, admin: AdminDep):
    return {
        "users": _count(session, User),
        "items": _count(session, Item),
        "requests": _count(session, Request),
        "flagged_items": _count(session, Item, Item.is_flagged == True),  # noqa: E712
        "pending_reports": _count(session, Report, Report.status == "pending"),
    }


# ---- users ------------------------------------------------------------


@router.get("/users", response_model=List[UserRead])
def list_users(
    session: SessionDep,
    admin: AdminDep,
    search: Optional[str] = None,
    status: Literal["all", "active", "suspended"] = "all",
):
    query = select(User).order_by(col(User.created_at).desc(), col(User.id).desc())
    if search:
        pattern = f"%{search.strip()}%"
        query = query.where(or_(col(User.email).ilike(pattern), col(User.full_name).ilike(pattern)))
    if status == "active":
        query = query.where(User.is_suspended == False)  # noqa: E712
    elif status == "suspended":
        query = query.where(User.is_suspended == True)  # noqa: E712
    return session.exec(query).all()


@router.post("/users/{user_id}/suspend", response_model=UserRead)
def suspend_user(user_id: int, session: SessionDep, admin: AdminDep):
    user = _get_or_404(session, User, user_id, "User")
    _not_self(admin["user"], user, "suspend")
    user.is_suspended = True
    user.suspended_at = utcnow()
    session.add(user)
    session.commit()
    session.refresh(user)
    logger.info("Admin %s suspended user %s", admin["user"].id, user.id)
    return user


@router.post("/users/{user_id}/unsuspend", response_model=UserRead)
def unsuspend_user(user_id: int, session: SessionDep, admin: AdminDep):
    user = _get_or_404(session, User, user_id, "User")
    user.is_suspended = False
    user.suspended_at = None
    session.add(user)
    session.commit()
    session.refresh(user)
    logger.info("Admin %s unsuspended user %s", admin["user"].id, user.id)
    return user


@router.delete("/users/{user_id}", status_code=204)
def delete_user(user_id: int, session: SessionDep, admin: AdminDep, images: ImageStoreDep):
    user = _get_or_404(session, User, user_id, "User")
    _not_self(admin["user"], user, "delete")
    purge_user(session, user, images)
    logger.info("Admin %s deleted user %s", admin["user"].id, user_id)
    return Response(status_code=204)


# ---- items ------------------------------------------------------------


@router.get("/items", response_model=List[ItemRead])
def list_all_items(
    session: SessionDep,
    admin: AdminDep,
    search: Optional[str] = None,
    category: Optional[str] = None,
    flagged: Optional[bool] = None,
):
    query = select(Item).order_by(col(Item.created_at).desc(), col(Item.id).desc())
    if search:
        pattern = f"%{search.strip()}%"
        query = query.where(
            or_(col(Item.name).ilike(pattern), col(Item.description).ilike(pattern))
        )
    if category and category != "All":
        query = query.where(Item.category == category)
    if flagged is not None:
        query = query.where(Item.is_flagged == flagged)
    return session.exec(query).all()


@router.post("/items/{item_id}/flag", response_model=ItemRead)
def toggle_flag(item_id: int, session: SessionDep, admin: AdminDep, feed: ItemFeedDep):
    item = _get_or_404(session, Item, item_id, "Item")
    item.is_flagged = not item.is_flagged
    session.add(item)
    session.commit()
    session.refresh(item)
    feed.publish(UPDATE, item.id)
    return item


@router.delete("/items/{item_id}", status_code=204)
def delete_any_item(
    item_id: int,
    session: SessionDep,
    admin: AdminDep,
    images: ImageStoreDep,
    feed: ItemFeedDep,
):
    item = _get_or_404(session, Item, item_id, "Item")
    delete_item_cascade(session, item, images)
    session.commit()
    feed.publish(DELETE, item_id)
    logger.info("Admin %s deleted item %s", admin["user"].id, item_id)
    return Response(status_code=204)


# ---- reports ----------------------------------------------------------


@router.get("/reports", response_model=List[ReportRead])
def list_reports(
    session: SessionDep,
    admin: AdminDep,
    status: Optional[str] = None,
    item_id: Optional[int] = None,
):
    if status and status != "all" and status not in REPORT_STATUSES:
        raise HTTPException(status_code=400, detail=f"Unknown report status: {status}")
    query = select(Report).order_by(col(Report.created_at).desc(), col(Report.id).desc())
    if status and status != "all":
        query = query.where(Report.status == status)
    if item_id is not None:
        query = query.where(Report.item_id == item_id)
    return session.exec(query).all()


@router.patch("/reports/{report_id}", response_model=ReportRead)
def update_report_status(
    report_id: int,
    update: ReportStatusUpdate,
    session: SessionDep,
    admin: AdminDep,
):
    report = _get_or_404(session, Report, report_id, "Report")
    report.status = update.status
    session.add(report)
    session.commit()
    session.refresh(report)
    return report


@router.delete("/reports/{report_id}", status_code=204)
def delete_report(report_id: int, session: SessionDep, admin: AdminDep):
    report = _get_or_404(session, Report, report_id, "Report")
    session.delete(report)
    session.commit()
    return Response(status_code=204)


# ---- security analytics -----------------------------------------------


# lookback window in days
LookbackDays = Annotated[int, Query(ge=1, le=3650)]


def _load_everything(session: Session):
    return (
        session.exec(select(User)).all(),
        session.exec(select(Item)).all(),
        session.exec(select(Report)).all(),
        session.exec(select(Request)).all(),
        session.exec(select(Comment)).all(),
    )


@router.get("/security")
def security_overview(session: SessionDep, admin: AdminDep, days: LookbackDays = 7):
    users, items, reports, requests, comments = _load_everything(session)
    now = utcnow()
    suspicious = analytics.suspicious_users(
        users, items, reports, requests, comments, days=days, now=now
    )
    metrics = analytics.security_metrics(
        users, items, reports, requests, comments, days=days, now=now
    )
    metrics["suspicious_accounts"] = len(suspicious)
    return {"metrics": metrics, "suspicious_users": suspicious}


@router.get("/security.csv", response_class=PlainTextResponse)
def security_export(session: SessionDep, admin: AdminDep, days: LookbackDays = 7):
    users, items, reports, requests, comments = _load_everything(session)
    now = utcnow()
    suspicious = analytics.suspicious_users(
        users, items, reports, requests, comments, days=days, now=now
    )
    metrics = analytics.security_metrics(
        users, items, reports, requests, comments, days=days, now=now
    )
    return PlainTextResponse(
        analytics.metrics_csv(metrics, suspicious, now=now),
        media_type="text/csv",
        headers={
            "Content-Disposition": f'attachment; filename="security-analytics-{now:%Y-%m-%d}.csv"'
        },
    )
