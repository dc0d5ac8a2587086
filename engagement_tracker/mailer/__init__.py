"""Sending tracked campaign mail.

This subpackage defines a common ``send_email`` interface, an SMTP
implementation of it, and :func:`send_tracked_email`, which rewrites a
message for open/click tracking before handing it to a sender and then
records the send time the bot classifier's speed trap is anchored on.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Optional


class EmailSender(ABC):
    """Abstract base class for email senders."""

    @abstractmethod
    def send_email(
        self,
        recipient: str,
        message_id: str,
        html: str,
        subject: str = "",
        text: Optional[str] = None,
    ) -> None:
        """Send a single email message.

        Args:
            recipient: The target email address.
            message_id: Value of the ``Message-ID`` header.
            html: The HTML content of the message, already tracked.
            subject: The email subject line.
            text: Optional plain-text version.

        Raises:
            Any implementation specific exceptions on failure.
        """
        raise NotImplementedError


__all__ = ["EmailSender"]
