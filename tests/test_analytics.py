from datetime import datetime, timedelta, timezone

import analytics
from models import Comment, Item, Report, Request, User

NOW = datetime(2025, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


def _user(user_id, age_days=30, **fields):
    return User(
        id=user_id,
        email=f"user{user_id}@edu.nielsbrock.dk",
        full_name=f"User {user_id}",
        created_at=NOW - timedelta(days=age_days),
        **fields,
    )


def _items(owner_id, count, age_days=1, start_id=1):
    return [
        Item(
            id=start_id + n,
            posted_by=owner_id,
            name=f"Item {n}",
            description="Something",
            created_at=NOW - timedelta(days=age_days),
            expiry_date=NOW + timedelta(days=30),
        )
        for n in range(count)
    ]


def _reports(item_id, count, start_reporter=100):
    return [
        Report(
            id=n + 1,
            item_id=item_id,
            reporter_id=start_reporter + n,
            reason="spam",
            created_at=NOW - timedelta(days=1),
        )
        for n in range(count)
    ]


def _requests(requester_id, count):
    return [
        Request(
            id=n + 1,
            item_id=n + 1,
            requester_id=requester_id,
            requester_name="Someone",
            requester_email="someone@edu.nielsbrock.dk",
        )
        for n in range(count)
    ]


def _score(user, items=(), reports=(), requests=()):
    since = NOW - timedelta(days=7)
    return analytics.suspicion_score(user, items, reports, requests, since, now=NOW)


def test_established_quiet_account_scores_zero():
    assert _score(_user(1, age_days=30)) == 0


def test_new_account_without_items_scores_one():
    assert _score(_user(1, age_days=2)) == 1


def test_new_account_with_an_item_scores_zero():
    assert _score(_user(1, age_days=2), items=_items(1, 1)) == 0


def test_rapid_posting_needs_more_than_eight_recent_items():
    user = _user(1)
    assert _score(user, items=_items(1, 8)) == 0
    assert _score(user, items=_items(1, 9)) == 3
    # old listings do not count as rapid posting
    assert _score(user, items=_items(1, 9, age_days=20)) == 0


def test_reports_against_items():
    user = _user(1)
    items = _items(1, 1)
    assert _score(user, items=items, reports=_reports(1, 2)) == 0
    assert _score(user, items=items, reports=_reports(1, 3)) == 2


def test_heavy_requester():
    user = _user(1)
    assert _score(user, requests=_requests(1, 15)) == 0
    assert _score(user, requests=_requests(1, 16)) == 2


def test_weights_add_up():
    user = _user(1)
    items = _items(1, 9)
    assert _score(user, items=items, reports=_reports(1, 3), requests=_requests(1, 16)) == 7


def test_severity_bands():
    assert analytics.severity(7) == "danger"
    assert analytics.severity(5) == "danger"
    assert analytics.severity(3) == "warning"
    assert analytics.severity(2) == "info"


def test_suspicious_users_sorted_and_filtered():
    quiet = _user(1)
    poster = _user(2)
    newcomer = _user(3, age_days=1)
    suspended = _user(4, age_days=1, is_suspended=True)

    result = analytics.suspicious_users(
        [quiet, poster, newcomer, suspended],
        _items(2, 9),
        [],
        [],
        [Comment(id=1, user_id=2, user_name="User 2", comment="Hi")],
        now=NOW,
    )
    assert [entry.user_id for entry in result] == [2, 3]
    assert result[0].suspicion_score == 3
    assert result[0].item_count == 9
    assert result[0].comment_count == 1
    assert result[1].severity == "info"


def test_suspicious_users_top_ten():
    users = [_user(n, age_days=1) for n in range(1, 15)]
    result = analytics.suspicious_users(users, [], [], [], now=NOW)
    assert len(result) == 10


def test_security_metrics_counts():
    users = [_user(1), _user(2, age_days=0), _user(3, age_days=3, is_suspended=True)]
    items = _items(1, 2)
    reports = _reports(1, 2)
    metrics = analytics.security_metrics(users, items, reports, [], [], now=NOW)

    assert metrics["total_users"] == 3
    assert metrics["new_users_today"] == 1
    assert metrics["new_users_this_week"] == 2
    assert metrics["suspended_users"] == 1
    assert metrics["accounts_without_items"] == 1
    assert metrics["total_reports"] == 2
    assert metrics["reported_users"] == 1
    assert metrics["top_reported_items"][0]["report_count"] == 2
    assert len(metrics["recent_activity"]) == 2


def test_metrics_csv_lists_suspicious_users():
    users = [_user(1, age_days=1)]
    suspicious = analytics.suspicious_users(users, [], [], [], now=NOW)
    metrics = analytics.security_metrics(users, [], [], [], [], now=NOW)

    text = analytics.metrics_csv(metrics, suspicious, now=NOW)
    lines = text.splitlines()
    assert lines[0] == "Security Analytics Report,Generated: 2025-03-01 12:00:00"
    assert "Suspicious Accounts,1" in lines
    assert lines[-1] == "user1@edu.nielsbrock.dk,User 1,1,0,0,0"
