import logging

from fastapi import APIRouter, HTTPException
from sqlalchemy.exc import IntegrityError

from db import SessionDep
from models import REPORT_REASONS, Report
from schemas import ReportCreate, ReportRead
from .auth import CurrentUserRoleDep
from .items import get_item_or_404

logger = logging.getLogger(__name__)

router = APIRouter(tags=["reports"])

ALREADY_REPORTED = "You have already reported this item."


@router.get("/reasons")
def report_reasons():
    """Choices for the report dropdown."""
    return [{"value": value, "label": label} for value, label in REPORT_REASONS.items()]


@router.post("/", response_model=ReportRead, status_code=201)
def create_report(report_in: ReportCreate, session: SessionDep, current: CurrentUserRoleDep):
    user = current["user"]
    item = get_item_or_404(session, report_in.item_id)
    if item.posted_by == user.id:
        raise HTTPException(status_code=400, detail="You cannot report your own item.")

    report = Report(
        item_id=item.id,
        reporter_id=user.id,
        reporter_email=user.email,
        reason=report_in.reason,
        description=report_in.description,
        status="pending",
    )
    session.add(report)
    try:
        session.commit()
    except IntegrityError:
        session.rollback()
        raise HTTPException(status_code=409, detail=ALREADY_REPORTED)
    session.refresh(report)

    logger.info("User %s reported item %s (%s)", user.id, item.id, report.reason)
    return report
