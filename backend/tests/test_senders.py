"""Tests for channel senders."""

import json
import smtplib
from datetime import UTC, datetime
from unittest.mock import MagicMock, patch

import httpx
import pytest

from app.domain import NotificationChannel, NotificationStatus
from app.domain.errors import DeliveryFailure
from app.notifications.message import Notification
from app.notifications.senders import (
    ChannelRouter,
    EmailSender,
    HttpGatewaySender,
    InAppSender,
    build_channel_router,
)

ATTEMPTED = datetime(2026, 3, 1, 9, 30, 0, tzinfo=UTC)


def make_notification(
    channel=NotificationChannel.EMAIL, recipient="asha@example.com", user_id=None
):
    return Notification(
        id="n-1",
        channel=channel,
        recipient=recipient,
        subject="Issue Update: ISS-2026-000001",
        body="Your issue is now in progress.",
        issue_id="issue-1",
        user_id=user_id,
        last_attempt=ATTEMPTED,
    )


def gateway(handler) -> HttpGatewaySender:
    return HttpGatewaySender(
        NotificationChannel.SMS,
        "https://sms.test/send",
        transport=httpx.MockTransport(handler),
    )


class TestEmailSender:
    """Tests for SMTP delivery."""

    @pytest.mark.asyncio
    async def test_log_only_without_host(self):
        """Test that an unconfigured sender reports success without SMTP."""
        sender = EmailSender(host=None)

        with patch("app.notifications.senders.smtplib.SMTP") as smtp:
            result = await sender.send(make_notification())

        assert result.message_id is None
        smtp.assert_not_called()

    def test_build_message(self):
        """Test MIME headers."""
        sender = EmailSender(host="smtp.test", from_name="Civic", from_address="civic@test")

        msg = sender.build_message(make_notification())

        assert msg["Subject"] == "Issue Update: ISS-2026-000001"
        assert msg["From"] == "Civic <civic@test>"
        assert msg["To"] == "asha@example.com"

    @pytest.mark.asyncio
    async def test_sends_over_smtp(self):
        """Test TLS, login and send on a configured host."""
        sender = EmailSender(host="smtp.test", username="user", password="secret")

        with patch("app.notifications.senders.smtplib.SMTP") as smtp:
            server = smtp.return_value.__enter__.return_value
            await sender.send(make_notification())

        smtp.assert_called_once_with("smtp.test", 587, timeout=10.0)
        server.starttls.assert_called_once()
        server.login.assert_called_once_with("user", "secret")
        server.send_message.assert_called_once()

    @pytest.mark.asyncio
    async def test_smtp_error_is_delivery_failure(self):
        """Test that SMTP errors are raised as DeliveryFailure."""
        sender = EmailSender(host="smtp.test")

        with patch(
            "app.notifications.senders.smtplib.SMTP",
            side_effect=smtplib.SMTPConnectError(421, "busy"),
        ):
            with pytest.raises(DeliveryFailure, match="^SMTP error:") as excinfo:
                await sender.send(make_notification())

        assert isinstance(excinfo.value.__cause__, smtplib.SMTPConnectError)


class TestHttpGatewaySender:
    """Tests for the SMS/push HTTP gateway."""

    @pytest.mark.asyncio
    async def test_posts_payload(self):
        """Test the request body, auth header and returned message id."""
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(202, json={"id": "gw-123"})

        sender = HttpGatewaySender(
            NotificationChannel.SMS,
            "https://sms.test/send",
            api_key="key",
            transport=httpx.MockTransport(handler),
        )

        result = await sender.send(make_notification(NotificationChannel.SMS, "+911234567890"))

        assert result.message_id == "gw-123"
        (request,) = requests
        assert request.headers["Authorization"] == "Bearer key"
        assert json.loads(request.content) == {
            "to": "+911234567890",
            "title": "Issue Update: ISS-2026-000001",
            "body": "Your issue is now in progress.",
            "reference": "n-1",
            "data": {"issue_id": "issue-1"},
        }

    @pytest.mark.asyncio
    async def test_malformed_json_still_delivered(self):
        """Test that a 2xx with a broken JSON body is not reported as a failure."""
        sender = gateway(
            lambda request: httpx.Response(
                200, content=b"{not json", headers={"content-type": "application/json"}
            )
        )

        result = await sender.send(make_notification(NotificationChannel.SMS, "+91"))

        assert result.message_id is None

    @pytest.mark.asyncio
    async def test_json_array_still_delivered(self):
        """Test that a 2xx with a non-object JSON body is not reported as a failure."""
        sender = gateway(lambda request: httpx.Response(200, json=[{"id": "gw-1"}]))

        result = await sender.send(make_notification(NotificationChannel.SMS, "+91"))

        assert result.message_id is None

    @pytest.mark.asyncio
    async def test_error_status_is_delivery_failure(self):
        """Test that non-2xx responses are raised as DeliveryFailure."""
        sender = HttpGatewaySender(
            NotificationChannel.PUSH,
            "https://push.test/send",
            transport=httpx.MockTransport(lambda request: httpx.Response(503)),
        )

        with pytest.raises(DeliveryFailure, match="^push gateway returned 503$"):
            await sender.send(make_notification(NotificationChannel.PUSH, "token"))

    @pytest.mark.asyncio
    async def test_connection_error_is_delivery_failure(self):
        """Test that transport errors are raised as DeliveryFailure."""

        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(DeliveryFailure, match="refused"):
            await gateway(handler).send(make_notification(NotificationChannel.SMS, "+91"))

    @pytest.mark.asyncio
    async def test_log_only_without_url(self):
        """Test that an unconfigured gateway reports success."""
        sender = HttpGatewaySender(NotificationChannel.SMS, None)

        result = await sender.send(make_notification(NotificationChannel.SMS, "+91"))

        assert result.message_id is None


class TestInAppSender:
    """Tests for delivery into the stored inbox."""

    @pytest.mark.asyncio
    async def test_writes_inbox_entry(self, store):
        """Test that delivery stores a sent entry for the user."""
        sender = InAppSender(store)

        await sender.send(
            make_notification(NotificationChannel.IN_APP, "citizen-1", user_id="citizen-1")
        )

        entries, total = await store.list_inbox("citizen-1")
        assert total == 1
        assert entries[0].id == "n-1"
        assert entries[0].status == NotificationStatus.SENT
        assert entries[0].sent_at == ATTEMPTED
        assert entries[0].read_at is None

    @pytest.mark.asyncio
    async def test_missing_user_is_delivery_failure(self, store):
        """Test that an entry without a user cannot be delivered in-app."""
        with pytest.raises(DeliveryFailure, match="has no user"):
            await InAppSender(store).send(make_notification(NotificationChannel.IN_APP))

        assert store.notification_log == []


class TestChannelRouter:
    """Tests for routing by channel."""

    @pytest.mark.asyncio
    async def test_routes_by_channel(self, store):
        """Test that in-app messages land in the recipient's inbox."""
        router = ChannelRouter({NotificationChannel.IN_APP: InAppSender(store)})

        await router.send(
            make_notification(NotificationChannel.IN_APP, "citizen-1", user_id="citizen-1")
        )

        assert await store.count_unread("citizen-1") == 1

    @pytest.mark.asyncio
    async def test_unknown_channel_fails(self):
        """Test that a channel with no sender is a failed delivery."""
        router = ChannelRouter()

        with pytest.raises(DeliveryFailure, match="^Unknown notification type: email$"):
            await router.send(make_notification())

    def test_build_from_settings(self, test_settings, store):
        """Test that every channel gets a sender."""
        router = build_channel_router(test_settings, store)

        assert set(router.senders) == set(NotificationChannel)
        assert isinstance(router.senders[NotificationChannel.EMAIL], EmailSender)
        assert router.senders[NotificationChannel.IN_APP].store is store

    @pytest.mark.asyncio
    async def test_register(self):
        """Test that registration replaces a channel's sender."""
        router = ChannelRouter()
        replacement = MagicMock()
        router.register(NotificationChannel.EMAIL, replacement)

        assert router.senders[NotificationChannel.EMAIL] is replacement
