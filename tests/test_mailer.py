"""Unit tests for notify/mailer.py. smtplib is patched; no network is used."""

from __future__ import annotations

import smtplib
from unittest.mock import MagicMock, patch

from notify.mailer import Mailer


def _smtp_mock() -> MagicMock:
    server = MagicMock()
    factory = MagicMock()
    factory.return_value.__enter__.return_value = server
    return factory


def test_log_only_mode_reports_success() -> None:
    mailer = Mailer(host="")
    assert mailer.enabled is False
    with patch("notify.mailer.smtplib.SMTP_SSL") as ssl_factory, patch("notify.mailer.smtplib.SMTP") as factory:
        assert mailer.send("a@example.com", "Hi", "body") is True
    ssl_factory.assert_not_called()
    factory.assert_not_called()


def test_port_465_uses_implicit_tls() -> None:
    factory = _smtp_mock()
    mailer = Mailer(host="smtp.example.com", port=465, username="bot@example.com", password="pw")
    with patch("notify.mailer.smtplib.SMTP_SSL", factory):
        assert mailer.send("a@example.com", "Hi", "text", "<p>html</p>") is True
    server = factory.return_value.__enter__.return_value
    server.login.assert_called_once_with("bot@example.com", "pw")
    msg = server.send_message.call_args.args[0]
    assert msg["To"] == "a@example.com"
    assert "bot@example.com" in msg["From"]
    assert msg.is_multipart()


def test_other_port_upgrades_with_starttls() -> None:
    factory = _smtp_mock()
    server = factory.return_value.__enter__.return_value
    server.has_extn.return_value = True
    mailer = Mailer(host="smtp.example.com", port=587)
    with patch("notify.mailer.smtplib.SMTP", factory):
        assert mailer.send("a@example.com", "Hi", "text") is True
    server.starttls.assert_called_once()
    server.login.assert_not_called()
    server.send_message.assert_called_once()


def test_transport_failure_returns_false() -> None:
    factory = MagicMock(side_effect=smtplib.SMTPConnectError(421, "down"))
    mailer = Mailer(host="smtp.example.com", port=465)
    with patch("notify.mailer.smtplib.SMTP_SSL", factory):
        assert mailer.send("a@example.com", "Hi", "text") is False


def test_os_error_returns_false() -> None:
    factory = MagicMock(side_effect=OSError("unreachable"))
    mailer = Mailer(host="smtp.example.com", port=587)
    with patch("notify.mailer.smtplib.SMTP", factory):
        assert mailer.send("a@example.com", "Hi", "text") is False
