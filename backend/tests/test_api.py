"""Tests for API endpoints."""

import pytest

from app.domain import NotificationChannel, NotificationStatus
from app.domain.errors import DeliveryExhausted, DeliveryFailure
from app.notifications.senders import ChannelRouter, InAppSender

API = "/api/v1"
CITIZEN = {"X-Actor-Id": "citizen-1"}
STAFF = {"X-Actor-Id": "staff-roads"}
HEAD = {"X-Actor-Id": "head-roads"}

NEW_ISSUE = {
    "title": "Deep pothole on Janpath",
    "description": "A large pothole near the bus stop is damaging vehicles.",
    "category_id": "cat-pothole",
    "coordinates": {"latitude": 28.6315, "longitude": 77.2167},
    "address": {"street": "Janpath", "city": "New Delhi"},
    "tags": ["road"],
}


async def create_issue(client, **overrides) -> dict:
    response = await client.post(f"{API}/issues", json={**NEW_ISSUE, **overrides}, headers=CITIZEN)
    assert response.status_code == 201
    return response.json()["issue"]


async def deliver_all(services, sender) -> None:
    """Drain the queue with real in-app delivery and the mock for e-mail."""
    services.queue.sender = ChannelRouter(
        {
            NotificationChannel.EMAIL: sender,
            NotificationChannel.IN_APP: InAppSender(services.store),
        }
    )
    while await services.queue.process_next():
        pass


class TestHealthEndpoint:
    """Tests for health check endpoints."""

    @pytest.mark.asyncio
    async def test_health_reports_queue_and_issues(self, client):
        """Test health endpoint reports worker state and issue counts."""
        await create_issue(client)

        response = await client.get("/health")
        data = response.json()

        assert response.status_code == 200
        assert data["status"] == "degraded"  # Worker not started in tests
        assert data["notification_queue"]["pending"] == 2
        assert data["issues"]["total"] == 1

    @pytest.mark.asyncio
    async def test_ready_endpoint(self, client):
        """Test readiness check returns ready status."""
        response = await client.get("/ready")

        assert response.status_code == 200
        assert response.json() == {"status": "ready"}

    @pytest.mark.asyncio
    async def test_live_endpoint(self, client):
        """Test liveness check returns alive status."""
        response = await client.get("/live")

        assert response.status_code == 200
        assert response.json() == {"status": "alive"}


class TestRootEndpoint:
    """Tests for root endpoint."""

    @pytest.mark.asyncio
    async def test_root_returns_api_info(self, client):
        """Test root endpoint returns API information."""
        response = await client.get("/")

        assert response.status_code == 200
        data = response.json()
        assert data["name"] == "Civic Issues API"
        assert "version" in data
        assert data["docs"] == "/docs"


class TestIssueEndpoints:
    """Tests for issue creation and reads."""

    @pytest.mark.asyncio
    async def test_create_issue(self, client):
        """Test reporting an issue returns it with derived fields."""
        response = await client.post(f"{API}/issues", json=NEW_ISSUE, headers=CITIZEN)

        assert response.status_code == 201
        data = response.json()
        issue = data["issue"]
        assert issue["number"] == "ISS-2026-000001"
        assert issue["status"] == "submitted"
        assert issue["urgency_score"] == 40
        assert issue["is_overdue"] is False
        assert issue["address"]["street"] == "Janpath"
        assert issue["reported_by"] == "citizen-1"
        assert data["duplicates"] == []

    @pytest.mark.asyncio
    async def test_create_returns_duplicate_candidates(self, client):
        """Test that a second nearby report lists the first as a candidate."""
        first = await create_issue(client)

        response = await client.post(
            f"{API}/issues",
            json={**NEW_ISSUE, "coordinates": {"latitude": 28.6318, "longitude": 77.2167}},
            headers=CITIZEN,
        )

        duplicates = response.json()["duplicates"]
        assert [d["issue"]["id"] for d in duplicates] == [first["id"]]
        assert duplicates[0]["is_probable"] is True

    @pytest.mark.asyncio
    async def test_create_requires_actor(self, client):
        """Test that the actor header is required."""
        response = await client.post(f"{API}/issues", json=NEW_ISSUE)

        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_create_validates_coordinates(self, client):
        """Test that out-of-range coordinates are rejected."""
        response = await client.post(
            f"{API}/issues",
            json={**NEW_ISSUE, "coordinates": {"latitude": 95, "longitude": 0}},
            headers=CITIZEN,
        )

        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_create_unknown_category(self, client):
        """Test that an unknown category is a bad request, not a missing issue."""
        response = await client.post(
            f"{API}/issues", json={**NEW_ISSUE, "category_id": "nope"}, headers=CITIZEN
        )

        assert response.status_code == 422
        assert response.json()["error"] == "InvalidIssueOperation"

    @pytest.mark.asyncio
    async def test_get_issue_counts_view(self, client):
        """Test that reading an issue records a view."""
        issue = await create_issue(client)

        response = await client.get(f"{API}/issues/{issue['id']}")

        assert response.status_code == 200
        assert response.json()["view_count"] == 1

    @pytest.mark.asyncio
    async def test_get_missing_issue(self, client):
        """Test 404 for unknown issues."""
        response = await client.get(f"{API}/issues/missing")

        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_anonymous_reporter_hidden(self, client):
        """Test that anonymous reports do not expose the reporter."""
        issue = await create_issue(client, is_anonymous=True)

        assert issue["reported_by"] is None

    @pytest.mark.asyncio
    async def test_nearby(self, client):
        """Test nearby search returns distances."""
        issue = await create_issue(client)

        response = await client.get(
            f"{API}/issues/nearby", params={"lat": 28.6320, "lng": 77.2167, "radius": 200}
        )

        data = response.json()
        assert response.status_code == 200
        assert data["total"] == 1
        assert data["issues"][0]["issue"]["id"] == issue["id"]
        assert 50 < data["issues"][0]["distance_meters"] < 60

    @pytest.mark.asyncio
    async def test_nearby_radius_too_large(self, client):
        """Test that radius above the maximum is rejected."""
        response = await client.get(
            f"{API}/issues/nearby", params={"lat": 28.63, "lng": 77.21, "radius": 100000}
        )

        assert response.status_code == 422


class TestLifecycleEndpoints:
    """Tests for status, assignment, escalation and duplicates."""

    @pytest.mark.asyncio
    async def test_transitions_listing(self, client):
        """Test the available next statuses."""
        issue = await create_issue(client)

        response = await client.get(f"{API}/issues/{issue['id']}/transitions")

        assert response.json()["available_transitions"] == [
            "under_review",
            "assigned",
            "rejected",
            "duplicate",
            "escalated",
        ]

    @pytest.mark.asyncio
    async def test_assign_and_progress(self, client):
        """Test assignment then a valid status change."""
        issue = await create_issue(client)

        assigned = await client.post(
            f"{API}/issues/{issue['id']}/assign",
            json={"department_id": "dept-roads", "user_id": "staff-roads"},
            headers=HEAD,
        )
        assert assigned.status_code == 200
        assert assigned.json()["status"] == "assigned"
        assert assigned.json()["sla_deadline"] is not None

        progressed = await client.post(
            f"{API}/issues/{issue['id']}/status",
            json={"status": "in_progress", "notes": "Crew dispatched"},
            headers=STAFF,
        )
        assert progressed.status_code == 200
        history = progressed.json()["status_history"]
        assert history[-1]["comment"] == "Crew dispatched"
        assert history[-1]["previous_status"] == "assigned"

    @pytest.mark.asyncio
    async def test_invalid_transition_is_422(self, client):
        """Test that a non-adjacent move is rejected."""
        issue = await create_issue(client)

        response = await client.post(
            f"{API}/issues/{issue['id']}/status", json={"status": "resolved"}, headers=STAFF
        )

        assert response.status_code == 422
        assert response.json()["error"] == "InvalidTransition"

    @pytest.mark.asyncio
    async def test_escalate(self, client):
        """Test escalation raises the level."""
        issue = await create_issue(client)

        response = await client.post(
            f"{API}/issues/{issue['id']}/escalate",
            json={"reason": "No response in 3 days"},
            headers=HEAD,
        )

        assert response.json()["escalation_level"] == 1

    @pytest.mark.asyncio
    async def test_mark_duplicate(self, client):
        """Test linking a duplicate and the self-reference guard."""
        original = await create_issue(client)
        duplicate = await create_issue(client)

        response = await client.post(
            f"{API}/issues/{duplicate['id']}/duplicate",
            json={"original_issue_id": original["id"]},
            headers=STAFF,
        )
        assert response.status_code == 200
        assert response.json()["status"] == "duplicate"
        assert response.json()["original_issue_id"] == original["id"]

        self_ref = await client.post(
            f"{API}/issues/{original['id']}/duplicate",
            json={"original_issue_id": original["id"]},
            headers=STAFF,
        )
        assert self_ref.status_code == 422
        assert self_ref.json()["error"] == "SelfReferenceError"

    @pytest.mark.asyncio
    async def test_duplicates_listing(self, client):
        """Test duplicate candidates for a stored issue."""
        first = await create_issue(client)
        second = await create_issue(client)

        response = await client.get(f"{API}/issues/{second['id']}/duplicates")

        assert response.json()["total"] == 1
        assert response.json()["candidates"][0]["issue"]["id"] == first["id"]

    @pytest.mark.asyncio
    async def test_archive(self, client):
        """Test soft-archive and its effect on further engagement."""
        issue = await create_issue(client)

        archived = await client.delete(f"{API}/issues/{issue['id']}", headers=HEAD)
        assert archived.json()["is_archived"] is True

        vote = await client.post(
            f"{API}/issues/{issue['id']}/votes", json={"vote": "up"}, headers=CITIZEN
        )
        assert vote.status_code == 422


class TestEngagementEndpoints:
    """Tests for votes, follows, comments and feedback."""

    @pytest.mark.asyncio
    async def test_vote_and_unvote(self, client):
        """Test voting updates counts."""
        issue = await create_issue(client)

        voted = await client.post(
            f"{API}/issues/{issue['id']}/votes", json={"vote": "up"}, headers=STAFF
        )
        assert (voted.json()["upvotes"], voted.json()["vote_score"]) == (1, 1)

        removed = await client.delete(f"{API}/issues/{issue['id']}/votes", headers=STAFF)
        assert removed.json()["upvotes"] == 0

    @pytest.mark.asyncio
    async def test_follow_comment_share(self, client):
        """Test follow, official comment and share counters."""
        issue = await create_issue(client)

        followed = await client.post(f"{API}/issues/{issue['id']}/follow", headers=STAFF)
        assert followed.json()["followers_count"] == 1

        commented = await client.post(
            f"{API}/issues/{issue['id']}/comments", json={"text": "On it"}, headers=STAFF
        )
        assert commented.status_code == 201
        assert commented.json()["comments"][0]["is_official"] is True

        shared = await client.post(f"{API}/issues/{issue['id']}/share")
        assert shared.json()["share_count"] == 1

    @pytest.mark.asyncio
    async def test_feedback_only_when_resolved(self, client):
        """Test that feedback waits for resolution."""
        issue = await create_issue(client)

        early = await client.post(
            f"{API}/issues/{issue['id']}/feedback", json={"rating": 5}, headers=CITIZEN
        )
        assert early.status_code == 422

        await client.post(
            f"{API}/issues/{issue['id']}/assign", json={"department_id": "dept-roads"}, headers=HEAD
        )
        for status in ("in_progress", "resolved"):
            await client.post(
                f"{API}/issues/{issue['id']}/status", json={"status": status}, headers=STAFF
            )

        rated = await client.post(
            f"{API}/issues/{issue['id']}/feedback",
            json={"rating": 4, "comment": "Fixed fast"},
            headers=CITIZEN,
        )
        assert rated.status_code == 200
        assert rated.json()["feedback"]["rating"] == 4

    @pytest.mark.asyncio
    async def test_priority_update(self, client):
        """Test priority change rescoring."""
        issue = await create_issue(client)

        response = await client.post(
            f"{API}/issues/{issue['id']}/priority", json={"priority": "critical"}, headers=HEAD
        )

        assert response.json()["priority"] == "critical"
        assert response.json()["urgency_score"] == 60


class TestNotificationEndpoints:
    """Tests for queue operator endpoints."""

    @pytest.mark.asyncio
    async def test_queue_stats(self, client):
        """Test queue statistics after a report."""
        await create_issue(client)

        response = await client.get(f"{API}/notifications/queue")

        assert response.status_code == 200
        assert response.json()["pending"] == 2
        assert response.json()["max_retries"] == 3

    @pytest.mark.asyncio
    async def test_failed_and_requeue(self, client, services, sender):
        """Test listing failed notifications and requeueing one."""
        sender.send.side_effect = DeliveryFailure("smtp down")
        services.queue.max_retries = 1
        await create_issue(client)
        for _ in range(2):
            with pytest.raises(DeliveryExhausted):
                await services.queue.process_next()

        failed = await client.get(f"{API}/notifications/failed")
        data = failed.json()
        assert data["total"] == 2
        assert data["notifications"][0]["last_error"] == "smtp down"

        notification_id = data["notifications"][0]["id"]
        requeued = await client.post(
            f"{API}/notifications/{notification_id}/requeue", headers=HEAD
        )
        assert requeued.status_code == 200
        assert requeued.json()["status"] == NotificationStatus.QUEUED

    @pytest.mark.asyncio
    async def test_requeue_unknown(self, client):
        """Test 404 for requeueing a notification that has not failed."""
        response = await client.post(f"{API}/notifications/missing/requeue", headers=HEAD)

        assert response.status_code == 404


class TestInboxEndpoints:
    """Tests for the in-app inbox."""

    @pytest.mark.asyncio
    async def test_delivered_entry_listed(self, client, services, sender):
        """Test that a delivered in-app notification shows up for its user only."""
        issue = await create_issue(client)
        await deliver_all(services, sender)

        response = await client.get(f"{API}/notifications/inbox", headers=CITIZEN)
        other = await client.get(f"{API}/notifications/inbox", headers=STAFF)

        assert response.status_code == 200
        data = response.json()
        assert (data["total"], data["unread_count"]) == (1, 1)
        entry = data["notifications"][0]
        assert entry["issue_id"] == issue["id"]
        assert entry["event_type"] == "issue_created"
        assert entry["body"]
        assert entry["read_at"] is None
        assert other.json()["total"] == 0

    @pytest.mark.asyncio
    async def test_mark_read_and_unread(self, client, services, sender):
        """Test the read marker round trip and the unread filter."""
        await create_issue(client)
        await deliver_all(services, sender)
        inbox = await client.get(f"{API}/notifications/inbox", headers=CITIZEN)
        entry_id = inbox.json()["notifications"][0]["id"]

        read = await client.post(
            f"{API}/notifications/inbox/mark-read",
            json={"notification_ids": [entry_id]},
            headers=CITIZEN,
        )
        assert read.json() == {"updated": 1}
        count = await client.get(f"{API}/notifications/inbox/unread-count", headers=CITIZEN)
        assert count.json() == {"unread_count": 0}
        unread_only = await client.get(
            f"{API}/notifications/inbox", params={"unread_only": True}, headers=CITIZEN
        )
        assert unread_only.json()["total"] == 0

        unread = await client.post(
            f"{API}/notifications/inbox/mark-unread",
            json={"notification_ids": [entry_id]},
            headers=CITIZEN,
        )
        assert unread.json() == {"updated": 1}

        read_all = await client.post(
            f"{API}/notifications/inbox/mark-read", json={"mark_all": True}, headers=CITIZEN
        )
        assert read_all.json() == {"updated": 1}

    @pytest.mark.asyncio
    async def test_cannot_mark_another_users_entry(self, client, services, sender):
        """Test that ids outside the actor's inbox are ignored."""
        await create_issue(client)
        await deliver_all(services, sender)
        inbox = await client.get(f"{API}/notifications/inbox", headers=CITIZEN)
        entry_id = inbox.json()["notifications"][0]["id"]

        response = await client.post(
            f"{API}/notifications/inbox/mark-read",
            json={"notification_ids": [entry_id]},
            headers=STAFF,
        )

        assert response.json() == {"updated": 0}
        count = await client.get(f"{API}/notifications/inbox/unread-count", headers=CITIZEN)
        assert count.json() == {"unread_count": 1}

    @pytest.mark.asyncio
    async def test_mark_read_needs_ids_or_all(self, client):
        """Test 422 for an empty mark-read request."""
        response = await client.post(
            f"{API}/notifications/inbox/mark-read", json={}, headers=CITIZEN
        )

        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_inbox_needs_actor(self, client):
        """Test that the inbox is only served for an identified user."""
        response = await client.get(f"{API}/notifications/inbox")

        assert response.status_code == 422
