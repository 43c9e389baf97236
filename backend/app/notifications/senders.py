"""Channel senders: the transports the notification worker delivers through.

Each sender returns a DeliveryResult within its own timeout or raises
DeliveryFailure; retry policy belongs to the queue, not to the sender.
"""

import asyncio
import dataclasses
import logging
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import formataddr

import httpx

from app.config import Settings
from app.domain import NotificationChannel, NotificationStatus
from app.domain.errors import DeliveryFailure
from app.notifications.message import DeliveryResult, Notification
from app.notifications.queue import ChannelSender
from app.store.base import IssueStore

logger = logging.getLogger(__name__)


class EmailSender:
    """
    SMTP e-mail sender.

    When no SMTP host is configured, messages are logged and reported as
    sent (dev/test mode).
    """

    def __init__(
        self,
        host: str | None,
        port: int = 587,
        username: str | None = None,
        password: str | None = None,
        use_tls: bool = True,
        from_name: str = "Civic Issue Reporter",
        from_address: str = "no-reply@civic-issues.local",
        timeout: float = 10.0,
    ):
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.use_tls = use_tls
        self.from_name = from_name
        self.from_address = from_address
        self.timeout = timeout

    @property
    def is_configured(self) -> bool:
        return bool(self.host)

    def build_message(self, notification: Notification) -> MIMEMultipart:
        msg = MIMEMultipart("alternative")
        msg["Subject"] = notification.subject
        msg["From"] = formataddr((self.from_name, self.from_address))
        msg["To"] = notification.recipient
        msg.attach(MIMEText(notification.body, "plain", "utf-8"))
        return msg

    def _send_smtp(self, msg: MIMEMultipart) -> None:
        with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as server:
            if self.use_tls:
                server.starttls()
            if self.username and self.password:
                server.login(self.username, self.password)
            server.send_message(msg)

    async def send(self, notification: Notification) -> DeliveryResult:
        msg = self.build_message(notification)
        if not self.is_configured:
            logger.info(
                f"Email (log-only): to={notification.recipient} "
                f"subject='{notification.subject}'"
            )
            return DeliveryResult.ok()

        try:
            await asyncio.to_thread(self._send_smtp, msg)
        except (smtplib.SMTPException, OSError) as e:
            raise DeliveryFailure(f"SMTP error: {e}") from e
        return DeliveryResult.ok()


class HttpGatewaySender:
    """
    Sends SMS or push notifications by POSTing to an HTTP gateway.

    Without a gateway URL the message is only logged.
    """

    def __init__(
        self,
        channel: NotificationChannel,
        url: str | None,
        api_key: str | None = None,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.channel = channel
        self.url = url
        self.timeout = timeout
        self.transport = transport

        self.headers: dict[str, str] = {"Accept": "application/json"}
        if api_key:
            self.headers["Authorization"] = f"Bearer {api_key}"

    def build_payload(self, notification: Notification) -> dict:
        payload = {
            "to": notification.recipient,
            "title": notification.subject,
            "body": notification.body,
            "reference": notification.id,
        }
        if notification.issue_id:
            payload["data"] = {"issue_id": notification.issue_id}
        return payload

    async def send(self, notification: Notification) -> DeliveryResult:
        if not self.url:
            logger.info(
                f"{self.channel} (log-only): to={notification.recipient} "
                f"subject='{notification.subject}'"
            )
            return DeliveryResult.ok()

        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, transport=self.transport
            ) as client:
                response = await client.post(
                    self.url, headers=self.headers, json=self.build_payload(notification)
                )
                response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise DeliveryFailure(
                f"{self.channel} gateway returned {e.response.status_code}"
            ) from e
        except httpx.RequestError as e:
            raise DeliveryFailure(f"{self.channel} gateway request error: {e}") from e

        return DeliveryResult.ok(self._message_id(response))

    def _message_id(self, response: httpx.Response) -> str | None:
        # The message is already delivered; an odd body must not fail it
        if not response.headers.get("content-type", "").startswith("application/json"):
            return None
        try:
            data = response.json()
        except ValueError:
            logger.warning(f"{self.channel} gateway returned unparseable JSON")
            return None
        if not isinstance(data, dict):
            return None
        message_id = data.get("id")
        return str(message_id) if message_id is not None else None


class InAppSender:
    """
    Delivers in-app notifications by writing them to the recipient's inbox.

    The inbox is the store's notification log, so entries survive restarts
    and are shared by every process.
    """

    def __init__(self, store: IssueStore):
        self.store = store

    async def send(self, notification: Notification) -> DeliveryResult:
        if not notification.user_id:
            raise DeliveryFailure(f"In-app notification {notification.id} has no user")

        entry = dataclasses.replace(
            notification,
            status=NotificationStatus.SENT,
            sent_at=notification.last_attempt,
            last_error=None,
        )
        await self.store.record_notification(entry)
        logger.debug(f"In-app notification stored for {notification.user_id}")
        return DeliveryResult.ok(notification.id)


class ChannelRouter:
    """Dispatches each notification to the sender registered for its channel."""

    def __init__(self, senders: dict[NotificationChannel, ChannelSender] | None = None):
        self.senders: dict[NotificationChannel, ChannelSender] = dict(senders or {})

    def register(self, channel: NotificationChannel, sender: ChannelSender) -> None:
        self.senders[channel] = sender

    async def send(self, notification: Notification) -> DeliveryResult:
        sender = self.senders.get(notification.channel)
        if sender is None:
            raise DeliveryFailure(f"Unknown notification type: {notification.channel}")
        return await sender.send(notification)


def build_channel_router(settings: Settings, store: IssueStore) -> ChannelRouter:
    """Wire the configured senders for every channel."""
    return ChannelRouter(
        {
            NotificationChannel.EMAIL: EmailSender(
                host=settings.smtp_host,
                port=settings.smtp_port,
                username=settings.smtp_username,
                password=settings.smtp_password,
                use_tls=settings.smtp_use_tls,
                from_name=settings.email_from_name,
                from_address=settings.email_from_address,
                timeout=settings.gateway_timeout_seconds,
            ),
            NotificationChannel.SMS: HttpGatewaySender(
                NotificationChannel.SMS,
                settings.sms_gateway_url,
                settings.gateway_api_key,
                settings.gateway_timeout_seconds,
            ),
            NotificationChannel.PUSH: HttpGatewaySender(
                NotificationChannel.PUSH,
                settings.push_gateway_url,
                settings.gateway_api_key,
                settings.gateway_timeout_seconds,
            ),
            NotificationChannel.IN_APP: InAppSender(store),
        }
    )
