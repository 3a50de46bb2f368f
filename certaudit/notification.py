"""
Notification system for audit results.

Supports multiple notification channels:
- Email via SendGrid API
- Microsoft Teams via incoming webhook
"""

import html
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, TYPE_CHECKING

import requests

from .logger import get_logger
from .verifier import Verdict

if TYPE_CHECKING:
    from .config_loader import NotificationsConfig, EmailNotificationConfig, TeamsNotificationConfig
    from .report import AuditReport


SENDGRID_URL = "https://api.sendgrid.com/v3/mail/send"


@dataclass
class NotificationContext:
    """Summary of one audit run, as sent to notification channels."""
    tree: str
    root: str
    status: str  # "SUCCESS" or "FAILED"
    total_servers: int
    ok: int
    ng: int
    insufficient: int
    ng_units: List[str] = field(default_factory=list)
    insufficient_units: List[str] = field(default_factory=list)
    global_errors: List[str] = field(default_factory=list)

    @classmethod
    def from_report(cls, report: "AuditReport") -> "NotificationContext":
        """Build a context from a finished AuditReport."""
        return cls(
            tree=report.tree,
            root=str(report.root),
            status="SUCCESS" if report.success else "FAILED",
            total_servers=report.total_servers,
            ok=report.ok_count,
            ng=report.ng_count,
            insufficient=report.insufficient_count,
            ng_units=[s.label for s in report.servers if s.verdict == Verdict.NG],
            insufficient_units=[s.label for s in report.servers if s.verdict == Verdict.INSUFFICIENT],
            global_errors=list(report.global_errors),
        )

    @property
    def title(self) -> str:
        return f"Certificate audit {self.status}: {self.tree} tree ({self.ng} NG / {self.total_servers})"


class NotificationSender(ABC):
    """Abstract base class for notification senders."""

    @abstractmethod
    def send(self, context: NotificationContext) -> bool:
        """
        Send a notification.

        Args:
            context: Audit summary

        Returns:
            True if the notification was sent, False otherwise
        """
        pass


class SendGridNotifier(NotificationSender):
    """Send email notifications via SendGrid API."""

    def __init__(self, config: "EmailNotificationConfig"):
        self.config = config
        self.api_key = os.environ.get("SENDGRID_API_KEY", "")
        self.logger = get_logger()

    def _render_html(self, context: NotificationContext) -> str:
        color = "#28a745" if context.status == "SUCCESS" else "#dc3545"

        def unit_list(title: str, units: List[str]) -> str:
            if not units:
                return ""
            items = "".join(f"<li>{html.escape(u)}</li>" for u in units)
            return f"<h3>{title}</h3><ul>{items}</ul>"

        rows = [
            ("Tree", context.tree),
            ("Root", context.root),
            ("Server units", str(context.total_servers)),
            ("OK", str(context.ok)),
            ("NG", str(context.ng)),
            ("Insufficient data", str(context.insufficient)),
        ]
        table = "".join(
            f"<tr><td><b>{name}</b></td><td>{html.escape(value)}</td></tr>" for name, value in rows
        )

        return (
            "<!DOCTYPE html><html><body style=\"font-family: Arial, sans-serif;\">"
            f"<h2 style=\"color: {color};\">{html.escape(context.title)}</h2>"
            f"<table cellpadding=\"6\" border=\"1\" style=\"border-collapse: collapse;\">{table}</table>"
            f"{unit_list('NG server units', context.ng_units)}"
            f"{unit_list('Insufficient data', context.insufficient_units)}"
            f"{unit_list('Errors', context.global_errors)}"
            "</body></html>"
        )

    def send(self, context: NotificationContext) -> bool:
        """Send email notification via SendGrid."""
        if not self.api_key:
            self.logger.warning("SENDGRID_API_KEY not set, skipping email notification")
            return False

        if not self.config.from_email:
            self.logger.warning("Email from_email not configured, skipping email notification")
            return False

        if not self.config.to_emails:
            self.logger.warning("Email to_emails not configured, skipping email notification")
            return False

        payload = {
            "personalizations": [
                {"to": [{"email": email} for email in self.config.to_emails]}
            ],
            "from": {"email": self.config.from_email},
            "subject": context.title,
            "content": [{"type": "text/html", "value": self._render_html(context)}],
        }

        try:
            response = requests.post(
                SENDGRID_URL,
                json=payload,
                headers={
                    "Authorization": f"Bearer {self.api_key}",
                    "Content-Type": "application/json",
                },
                timeout=30,
            )
        except requests.RequestException as e:
            self.logger.error(f"Failed to send email notification: {e}")
            return False

        if response.status_code in (200, 202):
            self.logger.info(f"Email notification sent for {context.tree} tree")
            return True

        self.logger.error(f"SendGrid API error: {response.status_code} - {response.text}")
        return False


class TeamsWebhookNotifier(NotificationSender):
    """Send notifications to Microsoft Teams via incoming webhook."""

    def __init__(self, config: "TeamsNotificationConfig"):
        self.config = config
        self.logger = get_logger()

    def _webhook_url(self) -> str:
        return self.config.webhook_url or os.environ.get("TEAMS_WEBHOOK_URL", "")

    def _build_card(self, context: NotificationContext) -> Dict[str, Any]:
        facts = [
            {"name": "Tree", "value": context.tree},
            {"name": "Root", "value": context.root},
            {"name": "Server units", "value": str(context.total_servers)},
            {"name": "OK", "value": str(context.ok)},
            {"name": "NG", "value": str(context.ng)},
            {"name": "Insufficient data", "value": str(context.insufficient)},
        ]
        if context.ng_units:
            facts.append({"name": "NG units", "value": ", ".join(context.ng_units)})
        if context.global_errors:
            facts.append({"name": "Errors", "value": "; ".join(context.global_errors)})

        return {
            "@type": "MessageCard",
            "@context": "http://schema.org/extensions",
            "themeColor": "28a745" if context.status == "SUCCESS" else "dc3545",
            "summary": context.title,
            "sections": [
                {
                    "activityTitle": context.title,
                    "facts": facts,
                    "markdown": True,
                }
            ],
        }

    def send(self, context: NotificationContext) -> bool:
        """Send notification to Teams via webhook."""
        webhook_url = self._webhook_url()
        if not webhook_url:
            self.logger.warning("Teams webhook URL not configured, skipping Teams notification")
            return False

        try:
            response = requests.post(
                webhook_url,
                json=self._build_card(context),
                headers={"Content-Type": "application/json"},
                timeout=30,
            )
        except requests.RequestException as e:
            self.logger.error(f"Failed to send Teams notification: {e}")
            return False

        # Teams webhook returns 200 with "1" on success
        if response.status_code == 200:
            self.logger.info(f"Teams notification sent for {context.tree} tree")
            return True

        self.logger.error(f"Teams webhook error: {response.status_code} - {response.text}")
        return False


class NotificationManager:
    """
    Manages all notification channels.

    Notification failures are logged and never interrupt the audit.
    """

    def __init__(self, config: "NotificationsConfig"):
        self.config = config
        self.logger = get_logger()
        self.notifiers: List[NotificationSender] = []

        if config.email.enabled:
            self.notifiers.append(SendGridNotifier(config.email))
            self.logger.debug("Email notifications enabled")

        if config.teams.enabled:
            self.notifiers.append(TeamsWebhookNotifier(config.teams))
            self.logger.debug("Teams notifications enabled")

    def is_enabled(self) -> bool:
        """Check if any notification channel is enabled."""
        return len(self.notifiers) > 0

    def notify(self, context: NotificationContext) -> int:
        """
        Send a notification through all enabled channels.

        Successful audits are only sent when ``notify_on_success`` is set.

        Args:
            context: Audit summary

        Returns:
            Number of channels that accepted the notification
        """
        if not self.notifiers:
            return 0

        if context.status == "SUCCESS" and not self.config.notify_on_success:
            self.logger.debug("Audit succeeded, success notifications disabled")
            return 0

        sent = 0
        for notifier in self.notifiers:
            try:
                if notifier.send(context):
                    sent += 1
            except Exception as e:
                self.logger.error(f"Notification failed ({type(notifier).__name__}): {e}")

        return sent
