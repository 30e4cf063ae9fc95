from __future__ import annotations

import html
import smtplib
import ssl
from email.message import EmailMessage
from typing import Optional, Protocol

from .base import ChannelSender
from .models import Channel, NotificationMessage


class EmailClient(Protocol):
    """Transport-level email client consumed by `EmailSender`."""

    def send(self, to_address: str, subject: str, body: str, html_body: Optional[str] = None) -> None:
        """Send one email. Raise on failure."""


class SmtpEmailClient:
    """
    SMTP-backed email client.

    Opens one connection per message, so instances are safe to share across
    worker threads.

    Args:
      - smtp_host (required)
      - smtp_port (default 587)
      - smtp_user / smtp_password (optional; login only when both are set)
      - sender (required, the From address)
      - use_tls (default True, STARTTLS on a plain connection)
      - use_ssl (default False, implicit TLS, typically port 465)
      - timeout (seconds, default 10)
    """

    thread_safe = True

    def __init__(
        self,
        smtp_host: Optional[str],
        sender: Optional[str],
        smtp_port: int = 587,
        smtp_user: Optional[str] = None,
        smtp_password: Optional[str] = None,
        use_tls: bool = True,
        use_ssl: bool = False,
        timeout: float = 10.0,
    ) -> None:
        if not smtp_host:
            raise ValueError("SMTP_HOST must be configured")
        if not sender:
            raise ValueError("SMTP_FROM must be configured")

        self.smtp_host = smtp_host
        self.smtp_port = smtp_port
        self.smtp_user = smtp_user
        self.smtp_password = smtp_password
        self.sender = sender
        self.use_tls = use_tls
        self.use_ssl = use_ssl
        self.timeout = timeout

    def send(self, to_address: str, subject: str, body: str, html_body: Optional[str] = None) -> None:
        """
        Send an email via SMTP.

        If `html_body` is given the email is multipart/alternative with the
        plain text as primary part.

        Raises:
            smtplib.SMTPException: If SMTP server communication fails.
            OSError: If the server cannot be reached.
        """
        email = EmailMessage()
        email["Subject"] = subject
        email["From"] = self.sender
        email["To"] = to_address
        email.set_content(body)
        if html_body:
            email.add_alternative(html_body, subtype="html")

        if self.use_ssl:
            context = ssl.create_default_context()
            with smtplib.SMTP_SSL(self.smtp_host, self.smtp_port, context=context, timeout=self.timeout) as server:
                self._maybe_login(server)
                server.send_message(email)
        else:
            with smtplib.SMTP(self.smtp_host, self.smtp_port, timeout=self.timeout) as server:
                if self.use_tls:
                    context = ssl.create_default_context()
                    server.starttls(context=context)
                self._maybe_login(server)
                server.send_message(email)

    def _maybe_login(self, server: smtplib.SMTP) -> None:
        # Some relays accept unauthenticated mail from trusted hosts.
        if self.smtp_user and self.smtp_password:
            server.login(self.smtp_user, self.smtp_password)


def render_html(text: str) -> str:
    """Wrap a plain-text body in minimal HTML, escaping it and keeping line breaks."""
    escaped = html.escape(text).replace("\n", "<br/>\n")
    return (
        '<div style="font-family: Arial, sans-serif; line-height: 1.6; color: #333; '
        'max-width: 600px; margin: 0 auto;">\n'
        f"{escaped}\n"
        "</div>"
    )


class EmailSender(ChannelSender):
    """Email variant of `ChannelSender`: subject line plus text and HTML parts."""

    channel = Channel.EMAIL

    def __init__(self, client: EmailClient, include_html: bool = True):
        super().__init__(client)
        self.include_html = include_html

    def _deliver(self, address: str, message: NotificationMessage) -> None:
        html_body = message.html
        if html_body is None and self.include_html:
            html_body = render_html(message.text)
        self.client.send(address, message.subject, message.text, html_body)


__all__ = ["EmailClient", "EmailSender", "SmtpEmailClient", "render_html"]
