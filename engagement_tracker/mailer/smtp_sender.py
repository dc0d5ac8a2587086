"""SMTP-based email sender.

This module provides ``SMTPSender``, a concrete implementation of
``EmailSender`` that uses Python's ``smtplib`` to deliver messages via an
SMTP server.

Environment variables used:

* ``SMTP_HOST`` – hostname of the SMTP server; defaults to ``localhost``.
* ``SMTP_PORT`` – port number; defaults to 587, or 465 with SSL.
* ``SMTP_USERNAME``/``SMTP_PASSWORD`` – credentials, optional.
* ``SMTP_FROM`` – sender address; defaults to the username.
* ``SMTP_USE_SSL`` – when "true"/"1"/"yes", connect with SMTP over SSL
  instead of STARTTLS.
"""

from __future__ import annotations

import logging
import os
import smtplib
from email.message import EmailMessage
from typing import Optional

from engagement_tracker.mailer import EmailSender

LOGGER = logging.getLogger(__name__)

_TRUTHY = {"1", "true", "yes"}


class SMTPSender(EmailSender):
    """SMTP implementation of the ``EmailSender`` interface."""

    def __init__(self) -> None:
        self._host = os.environ.get("SMTP_HOST") or "localhost"
        self._use_ssl = os.environ.get("SMTP_USE_SSL", "false").lower() in _TRUTHY
        self._port = int(
            os.environ.get("SMTP_PORT") or ("465" if self._use_ssl else "587")
        )
        self._username = os.environ.get("SMTP_USERNAME")
        self._password = os.environ.get("SMTP_PASSWORD")
        self._from = os.environ.get("SMTP_FROM") or self._username or ""

    def _connect(self) -> smtplib.SMTP:
        if self._use_ssl:
            return smtplib.SMTP_SSL(self._host, self._port, timeout=30)
        return smtplib.SMTP(self._host, self._port, timeout=30)

    def send_email(
        self,
        recipient: str,
        message_id: str,
        html: str,
        subject: str = "",
        text: Optional[str] = None,
    ) -> None:
        msg = EmailMessage()
        msg["Subject"] = subject
        msg["From"] = self._from
        msg["To"] = recipient
        msg["Message-ID"] = message_id
        if text:
            msg.set_content(text)
            msg.add_alternative(html, subtype="html")
        else:
            msg.set_content(html, subtype="html")

        try:
            with self._connect() as smtp:
                smtp.ehlo()
                if not self._use_ssl:
                    smtp.starttls()
                    smtp.ehlo()
                if self._username and self._password:
                    smtp.login(self._username, self._password)
                smtp.send_message(msg)
        except (smtplib.SMTPException, OSError) as exc:
            raise RuntimeError(
                f"Failed to send email via SMTP server at "
                f"{self._host}:{self._port}: {exc}"
            ) from exc
        LOGGER.debug("Sent %s to %s", message_id, recipient)


__all__ = ["SMTPSender"]
