"""Security analytics for the admin console.

Everything here is recomputed on demand from rows already loaded; nothing
is persisted. The thresholds are triage heuristics, not policy.
"""
import csv
import io
from collections import Counter
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Sequence

from models import Comment, Item, Report, Request, User, utcnow

NEW_ACCOUNT_DAYS = 7

RAPID_POSTING_THRESHOLD = 8
REPORTS_AGAINST_THRESHOLD = 2
REQUESTS_THRESHOLD = 15
RAPID_REPORTING_THRESHOLD = 4

RAPID_POSTING_WEIGHT = 3
REPORTED_WEIGHT = 2
NEW_EMPTY_ACCOUNT_WEIGHT = 1
HEAVY_REQUESTER_WEIGHT = 2

TOP_LIMIT = 10


@dataclass
class SuspiciousUser:
    user_id: int
    email: str
    name: Optional[str]
    suspicion_score: int
    item_count: int
    report_count: int
    request_count: int
    comment_count: int
    account_age_days: int
    severity: str


def severity(score: int) -> str:
    if score >= 5:
        return "danger"
    if score >= 3:
        return "warning"
    return "info"


def suspicion_score(
    user: User,
    items: Sequence[Item],
    reports: Sequence[Report],
    requests: Sequence[Request],
    since: datetime,
    now: Optional[datetime] = None,
) -> int:
    """Weighted rule score for one user. ``items`` may hold everybody's items."""
    now = now or utcnow()
    week_ago = now - timedelta(days=NEW_ACCOUNT_DAYS)

    user_items = [i for i in items if i.posted_by == user.id]
    user_item_ids = {i.id for i in user_items}
    recent_items = [i for i in user_items if i.created_at > since]
    reports_against = [r for r in reports if r.item_id in user_item_ids]
    user_requests = [r for r in requests if r.requester_id == user.id]

    score = 0
    if len(recent_items) > RAPID_POSTING_THRESHOLD:
        score += RAPID_POSTING_WEIGHT
    if len(reports_against) > REPORTS_AGAINST_THRESHOLD:
        score += REPORTED_WEIGHT
    if not user_items and user.created_at > week_ago:
        score += NEW_EMPTY_ACCOUNT_WEIGHT
    if len(user_requests) > REQUESTS_THRESHOLD:
        score += HEAVY_REQUESTER_WEIGHT
    return score


def suspicious_users(
    users: Sequence[User],
    items: Sequence[Item],
    reports: Sequence[Report],
    requests: Sequence[Request],
    comments: Sequence[Comment] = (),
    days: int = 7,
    now: Optional[datetime] = None,
    limit: int = TOP_LIMIT,
) -> List[SuspiciousUser]:
    now = now or utcnow()
    since = now - timedelta(days=days)

    items_by_owner = Counter(i.posted_by for i in items)
    owner_by_item = {i.id: i.posted_by for i in items}
    reports_by_owner = Counter(owner_by_item.get(r.item_id) for r in reports)
    requests_by_user = Counter(r.requester_id for r in requests)
    comments_by_user = Counter(c.user_id for c in comments)

    flagged = []
    for user in users:
        if user.is_suspended:
            continue
        score = suspicion_score(user, items, reports, requests, since, now)
        if score <= 0:
            continue
        flagged.append(
            SuspiciousUser(
                user_id=user.id,
                email=user.email,
                name=user.full_name,
                suspicion_score=score,
                item_count=items_by_owner[user.id],
                report_count=reports_by_owner[user.id],
                request_count=requests_by_user[user.id],
                comment_count=comments_by_user[user.id],
                account_age_days=(now - user.created_at).days,
                severity=severity(score),
            )
        )
    flagged.sort(key=lambda entry: entry.suspicion_score, reverse=True)
    return flagged[:limit]


def security_metrics(
    users: Sequence[User],
    items: Sequence[Item],
    reports: Sequence[Report],
    requests: Sequence[Request],
    comments: Sequence[Comment],
    days: int = 7,
    now: Optional[datetime] = None,
) -> Dict:
    now = now or utcnow()
    since = now - timedelta(days=days)
    week_ago = now - timedelta(days=NEW_ACCOUNT_DAYS)
    users_by_id = {u.id: u for u in users}
    items_by_id = {i.id: i for i in items}
    owners = {i.posted_by for i in items}

    accounts_without_items = sum(
        1
        for u in users
        if u.id not in owners and u.created_at > week_ago and not u.is_suspended
    )

    recent_posts = Counter(i.posted_by for i in items if i.created_at > since)
    rapid_posting = sorted(
        (
            {
                "user_id": u.id,
                "email": u.email,
                "name": u.full_name,
                "item_count": recent_posts[u.id],
            }
            for u in users
            if not u.is_suspended and recent_posts[u.id] > RAPID_POSTING_THRESHOLD
        ),
        key=lambda row: row["item_count"],
        reverse=True,
    )

    recent_reports = Counter(r.reporter_id for r in reports if r.created_at > since)
    rapid_reporting = sorted(
        (
            {
                "user_id": reporter_id,
                "email": users_by_id[reporter_id].email if reporter_id in users_by_id else "Unknown",
                "name": users_by_id[reporter_id].full_name if reporter_id in users_by_id else "Unknown",
                "report_count": count,
            }
            for reporter_id, count in recent_reports.items()
            if count > RAPID_REPORTING_THRESHOLD
        ),
        key=lambda row: row["report_count"],
        reverse=True,
    )

    reported_users = {
        items_by_id[r.item_id].posted_by for r in reports if r.item_id in items_by_id
    }

    per_item = Counter(r.item_id for r in reports)
    top_reported_items = [
        {
            "item_id": item_id,
            "title": items_by_id[item_id].name if item_id in items_by_id else "Unknown Item",
            "report_count": count,
            "user_id": items_by_id[item_id].posted_by if item_id in items_by_id else None,
        }
        for item_id, count in per_item.most_common()
        if count > 1
    ][:TOP_LIMIT]

    recent_activity = []
    for report in sorted(
        (r for r in reports if r.created_at > since),
        key=lambda r: r.created_at,
        reverse=True,
    )[:TOP_LIMIT]:
        reporter = users_by_id.get(report.reporter_id)
        item = items_by_id.get(report.item_id)
        recent_activity.append(
            {
                "type": "report",
                "description": f"{reporter.email if reporter else 'User'} reported: "
                f"{item.name if item else 'item'}",
                "reason": report.reason or "unknown",
                "time": report.created_at,
                "status": report.status or "pending",
            }
        )

    today = now.date()
    return {
        "days": days,
        "total_users": len(users),
        "new_users_today": sum(1 for u in users if u.created_at.date() == today),
        "new_users_this_week": sum(1 for u in users if u.created_at > week_ago),
        "suspended_users": sum(1 for u in users if u.is_suspended),
        "accounts_without_items": accounts_without_items,
        "total_reports": len(reports),
        "pending_reports": sum(1 for r in reports if r.status == "pending"),
        "reported_users": len(reported_users),
        "rapid_item_posting": rapid_posting,
        "rapid_reporting": rapid_reporting,
        "rate_limit_violations": len(rapid_posting) + len(rapid_reporting),
        "top_reported_items": top_reported_items,
        "total_comments": len(comments),
        "expired_items": sum(
            1 for i in items if i.expiry_date < now and i.status == "active"
        ),
        "unread_requests": sum(
            1 for r in requests if not r.read_by_poster or not r.read_by_requester
        ),
        "recent_activity": recent_activity,
    }


def metrics_csv(metrics: Dict, suspicious: Sequence[SuspiciousUser], now: Optional[datetime] = None) -> str:
    now = now or utcnow()
    total_users = metrics["total_users"] or 1
    activity_score = round(
        (metrics["total_comments"] + metrics["total_reports"]) / total_users, 1
    )

    buffer = io.StringIO()
    writer = csv.writer(buffer)
    writer.writerow(["Security Analytics Report", f"Generated: {now:%Y-%m-%d %H:%M:%S}"])
    writer.writerow([])
    writer.writerow(["Metric", "Value"])
    writer.writerow(["Total Users", metrics["total_users"]])
    writer.writerow(["New Users Today", metrics["new_users_today"]])
    writer.writerow(["New Users This Week", metrics["new_users_this_week"]])
    writer.writerow(["Suspicious Accounts", len(suspicious)])
    writer.writerow(["Total Reports", metrics["total_reports"]])
    writer.writerow(["Pending Reports", metrics["pending_reports"]])
    writer.writerow(["Rate Limit Violations", metrics["rate_limit_violations"]])
    writer.writerow(["Expired Items", metrics["expired_items"]])
    writer.writerow(["Total Comments", metrics["total_comments"]])
    writer.writerow(["Activity Score", activity_score])
    writer.writerow([])
    writer.writerow(["Suspicious Users"])
    writer.writerow(["Email", "Name", "Suspicion Score", "Items", "Reports", "Requests"])
    for entry in suspicious:
        row = asdict(entry)
        writer.writerow(
            [
                row["email"],
                row["name"] or "",
                row["suspicion_score"],
                row["item_count"],
                row["report_count"],
                row["request_count"],
            ]
        )
    return buffer.getvalue()
