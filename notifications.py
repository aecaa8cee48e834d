import logging
from typing import List, Optional

from sqlalchemy import func, update
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, col, select

import config
from models import REQUEST_APPROVED, REQUEST_REJECTED, Item, Request, User

logger = logging.getLogger(__name__)

UPDATE_STATUSES = (REQUEST_APPROVED, REQUEST_REJECTED)


class NotificationInbox:
    """Two unread inboxes for one user.

    *incoming*: requests on items the user posted that the poster has not
    read yet. *updates*: the user's own requests that were approved or
    rejected and not read by the requester yet.

    Lists are capped for the dropdown, counts are not. Marking read never
    raises; a failed write is logged and returns None, which is
    distinct from "nothing matched" (False or 0).
    """

    def __init__(self, session: Session, user: User, limit: int = config.NOTIFICATION_INBOX_LIMIT):
        self.session = session
        self.user = user
        self.limit = limit

    def _owned_item_ids(self):
        return select(Item.id).where(Item.posted_by == self.user.id)

    def _incoming_filter(self):
        return (
            col(Request.item_id).in_(self._owned_item_ids()),
            Request.read_by_poster == False,  # noqa: E712
        )

    def _updates_filter(self):
        return (
            Request.requester_id == self.user.id,
            Request.read_by_requester == False,  # noqa: E712
            col(Request.status).in_(UPDATE_STATUSES),
        )

    def incoming(self) -> List[dict]:
        rows = self.session.exec(
            select(Request, Item)
            .join(Item, Item.id == Request.item_id)
            .where(*self._incoming_filter())
            .order_by(col(Request.created_at).desc(), col(Request.id).desc())
            .limit(self.limit)
        ).all()
        return [self._entry(req, item) for req, item in rows]

    def updates(self) -> List[dict]:
        rows = self.session.exec(
            select(Request, Item)
            .join(Item, Item.id == Request.item_id)
            .where(*self._updates_filter())
            .order_by(col(Request.last_status_change).desc(), col(Request.id).desc())
            .limit(self.limit)
        ).all()
        return [self._entry(req, item) for req, item in rows]

    @staticmethod
    def _entry(req: Request, item: Item) -> dict:
        return {
            "id": req.id,
            "item_id": req.item_id,
            "item_name": item.name,
            "item_image": item.image,
            "requester_name": req.requester_name,
            "requester_email": req.requester_email,
            "status": req.status,
            "created_at": req.created_at,
            "last_status_change": req.last_status_change,
        }

    def incoming_count(self) -> int:
        return self.session.exec(
            select(func.count()).select_from(Request).where(*self._incoming_filter())
        ).one()

    def updates_count(self) -> int:
        return self.session.exec(
            select(func.count()).select_from(Request).where(*self._updates_filter())
        ).one()

    def summary(self) -> dict:
        return {
            "incoming": self.incoming(),
            "updates": self.updates(),
            "incoming_count": self.incoming_count(),
            "updates_count": self.updates_count(),
            "refresh_seconds": config.NOTIFICATION_REFRESH_SECONDS,
        }

    def _mark(self, statement, what: str) -> Optional[int]:
        """Rows marked, or None when the write failed (logged, not raised)."""
        try:
            result = self.session.exec(statement)
            self.session.commit()
        except SQLAlchemyError as exc:
            self.session.rollback()
            logger.error("Error marking %s as read for user %s: %s", what, self.user.id, exc)
            return None
        return result.rowcount

    @staticmethod
    def _marked_one(count: Optional[int]) -> Optional[bool]:
        return None if count is None else count > 0

    def mark_incoming_read(self, request_id: int) -> Optional[bool]:
        statement = (
            update(Request)
            .where(Request.id == request_id, *self._incoming_filter())
            .values(read_by_poster=True)
            .execution_options(synchronize_session=False)
        )
        return self._marked_one(self._mark(statement, f"incoming request {request_id}"))

    def mark_all_incoming_read(self) -> Optional[int]:
        statement = (
            update(Request)
            .where(*self._incoming_filter())
            .values(read_by_poster=True)
            .execution_options(synchronize_session=False)
        )
        return self._mark(statement, "all incoming requests")

    def mark_update_read(self, request_id: int) -> Optional[bool]:
        statement = (
            update(Request)
            .where(Request.id == request_id, *self._updates_filter())
            .values(read_by_requester=True)
            .execution_options(synchronize_session=False)
        )
        return self._marked_one(self._mark(statement, f"request update {request_id}"))

    def mark_all_updates_read(self) -> Optional[int]:
        statement = (
            update(Request)
            .where(*self._updates_filter())
            .values(read_by_requester=True)
            .execution_options(synchronize_session=False)
        )
        return self._mark(statement, "all request updates")
