"""
mail_notifier.py
================
Send notification emails for Spiel catalog events (currently: a new Spiel
was created) through a plain SMTP relay.

Delivery is best effort: the calling request has already committed its
data, so a failed delivery is logged and reported as ``False`` instead of
raising.

Configuration
-------------
Keys in ``config.json`` (or the matching ``MAIL_*`` environment variables)::

    "mail_activated": true,
    "mail_host":      "localhost",
    "mail_port":      25,
    "mail_from":      "spiel@acme.com",
    "mail_to":        "admin@acme.com"

Usage
-----
::

    from mail_notifier import MailNotifier

    notifier = MailNotifier(config)
    notifier.send("New Spiel 1000", "The Spiel with name <strong>Alpha</strong> has been created")
"""

from __future__ import annotations

import logging
import smtplib
from email.message import EmailMessage
from typing import Any, Dict

logger = logging.getLogger('spielapi.mail')

_DEFAULT_TIMEOUT = 8  # seconds


class MailNotifier:
    """Send HTML notification mails to the configured recipient.

    Args:
        config:  The application configuration dict.
        timeout: SMTP connection timeout in seconds.
    """

    def __init__(self, config: Dict[str, Any], timeout: int = _DEFAULT_TIMEOUT) -> None:
        self._cfg     = config or {}
        self._timeout = timeout

    @property
    def activated(self) -> bool:
        return bool(self._cfg.get('mail_activated', False))

    # ------------------------------------------------------------------
    # Public interface
    # ------------------------------------------------------------------

    def send(self, subject: str, body: str) -> bool:
        """Send one HTML mail.

        Args:
            subject: Subject line.
            body:    HTML body.

        Returns:
            ``True`` when the SMTP server accepted the mail, ``False`` when
            mailing is disabled or delivery failed.
        """
        if not self.activated:
            logger.info("Mail disabled, not sending: %s", subject)
            return False

        msg = EmailMessage()
        msg['Subject'] = subject
        msg['From'] = self._cfg.get('mail_from', 'spiel@acme.com')
        msg['To'] = self._cfg.get('mail_to', 'admin@acme.com')
        msg.set_content(body, subtype='html')

        host = self._cfg.get('mail_host', 'localhost')
        port = int(self._cfg.get('mail_port', 25))
        try:
            with smtplib.SMTP(host, port, timeout=self._timeout) as smtp:
                smtp.send_message(msg)
        except (smtplib.SMTPException, OSError) as exc:
            logger.warning("Mail delivery failed (%s:%s): %s", host, port, exc)
            return False

        logger.debug("Mail sent to %s: %s", msg['To'], subject)
        return True
