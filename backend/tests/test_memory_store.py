"""Tests for the in-memory issue store."""

from datetime import UTC, datetime, timedelta

import pytest

from app.domain import (
    GeoPoint,
    Issue,
    IssuePriority,
    IssueStatus,
    NotificationChannel,
    NotificationStatus,
    StatusHistoryEntry,
)
from app.domain.errors import ConcurrentModificationError, IssueNotFound
from app.notifications.message import Notification

CREATED = datetime(2026, 3, 1, 9, 0, 0, tzinfo=UTC)


def make_issue(issue_id: str = "issue-1", **fields) -> Issue:
    return Issue(
        id=issue_id,
        title="Overflowing drain",
        description="Drain overflowing onto the footpath",
        category_id="cat-pothole",
        location=GeoPoint(latitude=28.6, longitude=77.2),
        reported_by="citizen-1",
        created_at=CREATED,
        **fields,
    )


class TestIssuePersistence:
    """Tests for add/get/save."""

    @pytest.mark.asyncio
    async def test_add_assigns_number_and_version(self, store):
        """Test sequential human-readable numbers."""
        first = await store.add_issue(make_issue("a"))
        second = await store.add_issue(make_issue("b"))

        assert first.number == "ISS-2026-000001"
        assert second.number == "ISS-2026-000002"
        assert first.version == 1

    @pytest.mark.asyncio
    async def test_add_existing_id_rejected(self, store):
        """Test that ids are unique."""
        await store.add_issue(make_issue())

        with pytest.raises(ValueError):
            await store.add_issue(make_issue())

    @pytest.mark.asyncio
    async def test_reads_are_copies(self, store):
        """Test that mutating a read does not touch stored state."""
        await store.add_issue(make_issue())

        loaded = await store.get_issue("issue-1")
        loaded.title = "Changed"
        loaded.followers.append("someone")

        stored = await store.get_issue("issue-1")
        assert stored.title == "Overflowing drain"
        assert stored.followers == []

    @pytest.mark.asyncio
    async def test_save_bumps_version(self, store):
        """Test that a save increments the version on both sides."""
        await store.add_issue(make_issue())
        issue = await store.get_issue("issue-1")
        issue.share_count = 3

        await store.save_issue(issue)

        assert issue.version == 2
        stored = await store.get_issue("issue-1")
        assert (stored.version, stored.share_count) == (2, 3)

    @pytest.mark.asyncio
    async def test_stale_save_rejected(self, store):
        """Test the optimistic version check."""
        await store.add_issue(make_issue())
        first = await store.get_issue("issue-1")
        second = await store.get_issue("issue-1")
        await store.save_issue(first)

        second.share_count = 10
        with pytest.raises(ConcurrentModificationError):
            await store.save_issue(second)

        assert (await store.get_issue("issue-1")).share_count == 0

    @pytest.mark.asyncio
    async def test_rewritten_history_rejected(self, store):
        """Test that saved history must extend the stored history."""
        entry = StatusHistoryEntry(
            status=IssueStatus.SUBMITTED, changed_by="citizen-1", timestamp=CREATED
        )
        await store.add_issue(make_issue(status_history=[entry]))
        issue = await store.get_issue("issue-1")
        issue.status_history[0].comment = "edited"

        with pytest.raises(ConcurrentModificationError):
            await store.save_issue(issue)

    @pytest.mark.asyncio
    async def test_save_unknown_issue(self, store):
        """Test that saving an unstored issue fails."""
        with pytest.raises(IssueNotFound):
            await store.save_issue(make_issue("ghost"))

    @pytest.mark.asyncio
    async def test_save_issues_is_all_or_nothing(self, store):
        """Test that one stale issue keeps the whole batch from being written."""
        await store.add_issue(make_issue("dup"))
        await store.add_issue(make_issue("orig"))
        duplicate = await store.get_issue("dup")
        original = await store.get_issue("orig")
        await store.save_issue(await store.get_issue("orig"))

        duplicate.status = IssueStatus.DUPLICATE
        original.duplicate_count = 1
        with pytest.raises(ConcurrentModificationError):
            await store.save_issues(duplicate, original)

        assert duplicate.version == 1
        stored = await store.get_issue("dup")
        assert (stored.status, stored.version) == (IssueStatus.SUBMITTED, 1)
        assert (await store.get_issue("orig")).duplicate_count == 0

    @pytest.mark.asyncio
    async def test_save_issues_writes_both(self, store):
        """Test that a clean batch bumps every version."""
        await store.add_issue(make_issue("dup"))
        await store.add_issue(make_issue("orig"))
        duplicate = await store.get_issue("dup")
        original = await store.get_issue("orig")
        original.duplicate_count = 1

        await store.save_issues(duplicate, original)

        assert (duplicate.version, original.version) == (2, 2)
        assert (await store.get_issue("orig")).duplicate_count == 1

    @pytest.mark.asyncio
    async def test_views_do_not_touch_version(self, store):
        """Test that view counting never invalidates a writer's copy."""
        await store.add_issue(make_issue())
        writer = await store.get_issue("issue-1")

        assert await store.increment_view_count("issue-1") == 1
        assert await store.increment_view_count("issue-1") == 2

        writer.share_count = 1
        await store.save_issue(writer)
        stored = await store.get_issue("issue-1")
        assert (stored.view_count, stored.share_count, stored.version) == (2, 1, 2)
        assert writer.view_count == 2

    @pytest.mark.asyncio
    async def test_view_of_unknown_issue(self, store):
        """Test that counting a view needs a stored issue."""
        with pytest.raises(IssueNotFound):
            await store.increment_view_count("ghost")


class TestQueries:
    """Tests for store queries."""

    @pytest.mark.asyncio
    async def test_overdue_candidates(self, store):
        """Test deadline, status, breach marker and archive filters."""
        now = CREATED + timedelta(days=5)
        past = now - timedelta(hours=1)
        await store.add_issue(make_issue("overdue", sla_deadline=past))
        await store.add_issue(make_issue("future", sla_deadline=now + timedelta(hours=1)))
        await store.add_issue(
            make_issue("resolved", sla_deadline=past, status=IssueStatus.RESOLVED)
        )
        await store.add_issue(make_issue("notified", sla_deadline=past, sla_breach_notified_at=past))
        await store.add_issue(make_issue("archived", sla_deadline=past, is_archived=True))
        await store.add_issue(make_issue("unassigned"))

        candidates = await store.find_overdue_candidates(now)

        assert [issue.id for issue in candidates] == ["overdue"]

    @pytest.mark.asyncio
    async def test_statistics(self, store):
        """Test aggregate counts over live issues."""
        await store.add_issue(make_issue("a", urgency_score=40, is_emergency=True))
        await store.add_issue(
            make_issue("b", urgency_score=25, priority=IssuePriority.CRITICAL)
        )
        await store.add_issue(
            make_issue("c", status=IssueStatus.RESOLVED, priority=IssuePriority.HIGH)
        )
        await store.add_issue(make_issue("d", is_archived=True, urgency_score=100))

        stats = await store.issue_statistics()

        assert stats == {
            "total": 3,
            "by_status": {"submitted": 2, "resolved": 1},
            "emergencies": 1,
            "high_priority": 2,
            "average_urgency": 32.5,
        }

    @pytest.mark.asyncio
    async def test_staff_listing(self, store):
        """Test that staff queries skip citizens and inactive accounts."""
        roads = await store.list_department_staff("dept-roads")
        everyone = await store.list_staff()

        assert {user.id for user in roads} == {"staff-roads", "head-roads"}
        assert {user.id for user in everyone} == {"staff-roads", "head-roads", "staff-water"}

    @pytest.mark.asyncio
    async def test_record_notification(self, store):
        """Test the notification audit log."""
        notification = Notification(
            channel=NotificationChannel.EMAIL,
            recipient="asha@example.com",
            subject="Hi",
            body="Body",
        )

        await store.record_notification(notification)

        assert [n.recipient for n in store.notification_log] == ["asha@example.com"]


def inbox_entry(notification_id: str, user_id: str = "citizen-1", minutes: int = 0, **fields):
    fields.setdefault("channel", NotificationChannel.IN_APP)
    fields.setdefault("status", NotificationStatus.SENT)
    return Notification(
        id=notification_id,
        recipient=user_id,
        subject=f"Update {notification_id}",
        body="Body",
        user_id=user_id,
        sent_at=CREATED + timedelta(minutes=minutes),
        **fields,
    )


class TestInbox:
    """Tests for in-app entries read back from the notification log."""

    @pytest.mark.asyncio
    async def test_lists_sent_in_app_entries_newest_first(self, store):
        """Test channel, status and user filters with paging."""
        for entry in [
            inbox_entry("old", minutes=1),
            inbox_entry("new", minutes=5),
            inbox_entry("mid", minutes=3),
            inbox_entry("email", channel=NotificationChannel.EMAIL),
            inbox_entry("failed", status=NotificationStatus.FAILED),
            inbox_entry("other", user_id="citizen-2"),
        ]:
            await store.record_notification(entry)

        page, total = await store.list_inbox("citizen-1", limit=2)
        rest, _ = await store.list_inbox("citizen-1", limit=2, offset=2)

        assert total == 3
        assert [n.id for n in page] == ["new", "mid"]
        assert [n.id for n in rest] == ["old"]

    @pytest.mark.asyncio
    async def test_record_replaces_row_and_keeps_read_marker(self, store):
        """Test that re-recording a notification id updates one row in place."""
        await store.record_notification(inbox_entry("n-1"))
        await store.set_inbox_read("citizen-1", ["n-1"], CREATED)

        await store.record_notification(inbox_entry("n-1", attempts=2))

        assert len(store.notification_log) == 1
        (entry,), _ = await store.list_inbox("citizen-1")
        assert (entry.attempts, entry.read_at) == (2, CREATED)

    @pytest.mark.asyncio
    async def test_read_markers(self, store):
        """Test read, unread, mark-all and the unread count."""
        for name in ("a", "b", "c"):
            await store.record_notification(inbox_entry(name))
        later = CREATED + timedelta(hours=1)

        assert await store.set_inbox_read("citizen-1", ["a"], CREATED) == 1
        # Already read: keeps its first read time
        assert await store.set_inbox_read("citizen-1", ["a"], later) == 0
        assert await store.count_unread("citizen-1") == 2

        assert await store.set_inbox_read("citizen-1", None, later) == 2
        unread, total = await store.list_inbox("citizen-1", unread_only=True)
        assert (unread, total) == ([], 0)

        assert await store.set_inbox_read("citizen-1", ["a", "b"], None) == 2
        assert await store.count_unread("citizen-1") == 2
        (entry,), _ = await store.list_inbox("citizen-1", limit=1, offset=2)
        assert entry.read_at == later

    @pytest.mark.asyncio
    async def test_other_users_entries_untouched(self, store):
        """Test that ids from another inbox are ignored."""
        await store.record_notification(inbox_entry("theirs", user_id="citizen-2"))

        assert await store.set_inbox_read("citizen-1", ["theirs"], CREATED) == 0
        assert await store.count_unread("citizen-2") == 1
