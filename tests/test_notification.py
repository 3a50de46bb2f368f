"""Tests for notification channels."""

from unittest.mock import MagicMock, patch

import pytest
import requests

from certaudit.audit import audit_tree
from certaudit.config_loader import (
    EmailNotificationConfig,
    NotificationsConfig,
    Settings,
    TeamsNotificationConfig,
)
from certaudit.notification import (
    NotificationContext,
    NotificationManager,
    SendGridNotifier,
    TeamsWebhookNotifier,
)
from certaudit.probe import CryptoProbe


@pytest.fixture
def failed_context():
    return NotificationContext(
        tree="new",
        root="/srv/certs/new",
        status="FAILED",
        total_servers=3,
        ok=1,
        ng=1,
        insufficient=1,
        ng_units=["acme/<www>"],
        insufficient_units=["beta/(root)"],
    )


def response(status_code, text=""):
    mock = MagicMock()
    mock.status_code = status_code
    mock.text = text
    return mock


class TestSendGrid:

    def test_skips_without_api_key(self, failed_context, monkeypatch):
        monkeypatch.delenv("SENDGRID_API_KEY", raising=False)
        notifier = SendGridNotifier(EmailNotificationConfig(True, "a@example.com", ["b@example.com"]))

        with patch("certaudit.notification.requests.post") as post:
            assert not notifier.send(failed_context)
            post.assert_not_called()

    def test_sends_escaped_html(self, failed_context, monkeypatch):
        monkeypatch.setenv("SENDGRID_API_KEY", "key")
        notifier = SendGridNotifier(EmailNotificationConfig(True, "a@example.com", ["b@example.com"]))

        with patch("certaudit.notification.requests.post", return_value=response(202)) as post:
            assert notifier.send(failed_context)

        payload = post.call_args.kwargs["json"]
        body = payload["content"][0]["value"]
        assert payload["subject"] == failed_context.title
        assert payload["personalizations"][0]["to"] == [{"email": "b@example.com"}]
        assert "acme/&lt;www&gt;" in body
        assert post.call_args.kwargs["headers"]["Authorization"] == "Bearer key"

    def test_api_error(self, failed_context, monkeypatch):
        monkeypatch.setenv("SENDGRID_API_KEY", "key")
        notifier = SendGridNotifier(EmailNotificationConfig(True, "a@example.com", ["b@example.com"]))

        with patch("certaudit.notification.requests.post", return_value=response(401, "denied")):
            assert not notifier.send(failed_context)


class TestTeams:

    def test_posts_message_card(self, failed_context):
        notifier = TeamsWebhookNotifier(TeamsNotificationConfig(True, "https://example.invalid/hook"))

        with patch("certaudit.notification.requests.post", return_value=response(200, "1")) as post:
            assert notifier.send(failed_context)

        assert post.call_args.args[0] == "https://example.invalid/hook"
        card = post.call_args.kwargs["json"]
        facts = {f["name"]: f["value"] for f in card["sections"][0]["facts"]}
        assert card["themeColor"] == "dc3545"
        assert facts["NG units"] == "acme/<www>"

    def test_webhook_from_environment(self, failed_context, monkeypatch):
        monkeypatch.setenv("TEAMS_WEBHOOK_URL", "https://example.invalid/env")
        notifier = TeamsWebhookNotifier(TeamsNotificationConfig(True, None))

        with patch("certaudit.notification.requests.post", return_value=response(200)) as post:
            assert notifier.send(failed_context)

        assert post.call_args.args[0] == "https://example.invalid/env"

    def test_network_error(self, failed_context):
        notifier = TeamsWebhookNotifier(TeamsNotificationConfig(True, "https://example.invalid/hook"))

        with patch("certaudit.notification.requests.post", side_effect=requests.ConnectionError("down")):
            assert not notifier.send(failed_context)


class TestManager:

    def test_disabled_by_default(self):
        assert not NotificationManager(NotificationsConfig()).is_enabled()

    def test_success_is_quiet_unless_requested(self, failed_context):
        config = NotificationsConfig(teams=TeamsNotificationConfig(True, "https://example.invalid/hook"))
        manager = NotificationManager(config)
        failed_context.status = "SUCCESS"

        with patch("certaudit.notification.requests.post", return_value=response(200)) as post:
            assert manager.notify(failed_context) == 0
            post.assert_not_called()

            config.notify_on_success = True
            assert manager.notify(failed_context) == 1

    def test_failure_is_sent_to_every_channel(self, failed_context, monkeypatch):
        monkeypatch.setenv("SENDGRID_API_KEY", "key")
        manager = NotificationManager(NotificationsConfig(
            email=EmailNotificationConfig(True, "a@example.com", ["b@example.com"]),
            teams=TeamsNotificationConfig(True, "https://example.invalid/hook"),
        ))

        with patch("certaudit.notification.requests.post", return_value=response(200)) as post:
            assert manager.notify(failed_context) == 2

        assert post.call_count == 2


def test_context_from_report(tmp_path, server_set, pki):
    pki.write_key(server_set["key"], pki.rsa_key(2))
    report = audit_tree(tmp_path, probe=CryptoProbe(), settings=Settings())

    context = NotificationContext.from_report(report)

    assert context.status == "FAILED"
    assert context.ng_units == ["acme/www"]
    assert "1 NG / 1" in context.title
