"""Message templates keyed by notification event type.

Bodies are channel-agnostic plain text; senders wrap them for their
transport (MIME for e-mail, JSON payload for the gateways).
"""

from collections.abc import Callable
from dataclasses import dataclass
from datetime import timedelta
from typing import Any

from app.domain import EventType, Issue, User


@dataclass(frozen=True)
class ComposedMessage:
    subject: str
    body: str


def format_overdue_duration(delta: timedelta) -> str:
    """Render an overdue span as 'N day(s)' or, under a day, 'N hour(s)'."""
    total_hours = int(delta.total_seconds() // 3600)
    days = total_hours // 24
    if days > 0:
        return f"{days} day(s)"
    return f"{total_hours} hour(s)"


class NotificationComposer:
    """
    Maps (event type, issue, recipient) to a subject and body.

    Unknown event types compose to None, meaning nobody is notified.
    """

    def __init__(self, frontend_url: str, admin_url: str):
        self.frontend_url = frontend_url.rstrip("/")
        self.admin_url = admin_url.rstrip("/")
        self._templates: dict[
            str, Callable[[Issue | None, User, dict[str, Any]], ComposedMessage]
        ] = {
            EventType.ISSUE_CREATED: self._issue_created,
            EventType.STATUS_UPDATE: self._status_update,
            EventType.ISSUE_ASSIGNED: self._issue_assigned,
            EventType.SLA_BREACH: self._sla_breach,
            EventType.DAILY_DIGEST: self._daily_digest,
        }

    @property
    def event_types(self) -> list[str]:
        return list(self._templates)

    def compose(
        self,
        event_type: str,
        issue: Issue | None,
        recipient: User,
        context: dict[str, Any] | None = None,
    ) -> ComposedMessage | None:
        template = self._templates.get(event_type)
        if template is None:
            return None
        return template(issue, recipient, context or {})

    def _issue_link(self, issue: Issue) -> str:
        return f"{self.frontend_url}/issues/{issue.id}"

    def _admin_link(self, issue: Issue) -> str:
        return f"{self.admin_url}/issues/{issue.id}"

    def _issue_created(self, issue, recipient, context) -> ComposedMessage:
        lines = [
            f"Hi {recipient.full_name},",
            "",
            f"Your issue has been reported successfully and assigned number {issue.number}.",
            "",
            f"Title: {issue.title}",
            f"Category: {context.get('category_name', issue.category_id)}",
            f"Reported: {issue.created_at:%Y-%m-%d %H:%M} UTC",
            "",
            "We'll keep you updated on the progress of your issue.",
            f"Track it at {self._issue_link(issue)}",
        ]
        return ComposedMessage(f"Issue Reported: {issue.number}", "\n".join(lines))

    def _status_update(self, issue, recipient, context) -> ComposedMessage:
        new_status = context.get("new_status", issue.status)
        lines = [
            f"Hi {recipient.full_name},",
            "",
            f"There's an update on issue {issue.number}.",
            "",
            f"Title: {issue.title}",
            f"New Status: {str(new_status).upper()}",
        ]
        if context.get("department_name"):
            lines.append(f"Handled by: {context['department_name']}")
        if context.get("notes"):
            lines.append(f"Notes: {context['notes']}")
        lines += ["", f"View issue details: {self._issue_link(issue)}"]
        return ComposedMessage(f"Issue Update: {issue.number}", "\n".join(lines))

    def _issue_assigned(self, issue, recipient, context) -> ComposedMessage:
        lines = [
            f"Hi {recipient.full_name},",
            "",
            "A new issue has been assigned to you.",
            "",
            f"Number: {issue.number}",
            f"Title: {issue.title}",
            f"Category: {context.get('category_name', issue.category_id)}",
            f"Reported by: {context.get('reporter_name', 'Anonymous')}",
            f"Priority: {issue.priority.upper()}",
        ]
        if issue.sla_deadline:
            lines.append(f"Resolve by: {issue.sla_deadline:%Y-%m-%d %H:%M} UTC")
        lines += ["", f"View issue: {self._admin_link(issue)}"]
        return ComposedMessage(f"New Issue Assigned: {issue.number}", "\n".join(lines))

    def _sla_breach(self, issue, recipient, context) -> ComposedMessage:
        overdue = context.get("overdue_duration", "unknown")
        lines = [
            f"Hi {recipient.full_name},",
            "",
            f"Issue {issue.number} has exceeded its SLA deadline.",
            "",
            f"Title: {issue.title}",
            f"Category: {context.get('category_name', issue.category_id)}",
            f"Status: {issue.status.upper()}",
            f"Overdue by: {overdue}",
            f"Escalation level: {issue.escalation_level}",
            "",
            "Please take immediate action.",
            f"View issue: {self._admin_link(issue)}",
        ]
        return ComposedMessage(f"SLA Breach Alert: {issue.number}", "\n".join(lines))

    def _daily_digest(self, issue, recipient, context) -> ComposedMessage:
        stats = context.get("stats", {})
        date = context.get("date", "")
        lines = [f"Hi {recipient.full_name},", "", "Here is today's issue summary.", ""]
        lines.append(f"Total issues: {stats.get('total', 0)}")
        for status, count in sorted(stats.get("by_status", {}).items()):
            lines.append(f"  {status}: {count}")
        lines += [
            f"Emergencies: {stats.get('emergencies', 0)}",
            f"High priority: {stats.get('high_priority', 0)}",
            f"Average urgency: {stats.get('average_urgency', 0)}",
            "",
            f"Dashboard: {self.admin_url}",
        ]
        return ComposedMessage(f"Daily Digest: {date}".rstrip(": "), "\n".join(lines))
