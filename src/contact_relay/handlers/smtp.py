# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""SMTP delivery backend.

Builds an :class:`email.message.EmailMessage` for each submission and sends
it to the tenant's recipients with :func:`aiosmtplib.send`. One connection
is opened per message; contact forms are low volume.

TLS behavior based on port and ``use_tls``:

- Port 465 with use_tls=True: direct TLS (implicit TLS)
- Other ports with use_tls=True: STARTTLS
- use_tls=False: plain SMTP
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from email.headerregistry import Address
from email.message import EmailMessage

import aiosmtplib

from ..dispatch import MessageSendError
from ..logger import get_logger
from ..models import ClientConfiguration, Message


@dataclass(frozen=True)
class SmtpSettings:
    """Connection parameters of the outgoing SMTP server.

    Attributes:
        host: SMTP server hostname.
        port: SMTP server port.
        sender: Envelope and ``From`` address of relayed messages.
        user: Username for authentication, or None.
        password: Password for authentication, or None.
        use_tls: Whether to use TLS (implicit on 465, STARTTLS elsewhere).
        timeout: aiosmtplib timeout in seconds for each network operation.
            The whole send is also bounded by the dispatch handler timeout;
            whichever expires first fails the delivery.
    """

    host: str
    port: int
    sender: str
    user: str | None = None
    password: str | None = None
    use_tls: bool = True
    timeout: float = 10.0


class SmtpHandler:
    """Send submissions as email to ``ClientConfiguration.recipients``.

    The visitor's address goes into ``Reply-To`` so recipients can answer
    directly; ``From`` is always the configured sender.
    """

    name = "smtp"

    def __init__(self, settings: SmtpSettings, logger=None):
        self.settings = settings
        self.logger = logger or get_logger("SmtpHandler")

    def build_email(self, message: Message, client: ClientConfiguration) -> EmailMessage:
        """Build the outgoing email for ``message``.

        Raises:
            MessageSendError: If the tenant has no recipients.
        """
        if not client.recipients:
            raise MessageSendError(f"Client {client.public_key} has no recipients", handler=self.name)
        msg = EmailMessage()
        msg["From"] = self.settings.sender
        msg["To"] = ", ".join(client.recipients)
        # Display name is quoted, never parsed as extra mailboxes
        msg["Reply-To"] = Address(display_name=message.name, addr_spec=message.sender_address)
        msg["Subject"] = client.render_subject(message)
        msg.set_content(
            f"Name: {message.name}\n"
            f"Email: {message.sender_address}\n"
            f"\n"
            f"{message.body}\n"
        )
        return msg

    def _tls_options(self) -> dict[str, bool]:
        if self.settings.use_tls and self.settings.port == 465:
            return {"use_tls": True, "start_tls": False}
        if self.settings.use_tls:
            return {"use_tls": False, "start_tls": True}
        return {"use_tls": False, "start_tls": False}

    async def send(self, message: Message, client: ClientConfiguration) -> None:
        msg = self.build_email(message, client)
        credentials = {}
        if self.settings.user and self.settings.password:
            credentials = {"username": self.settings.user, "password": self.settings.password}
        try:
            await aiosmtplib.send(
                msg,
                hostname=self.settings.host,
                port=self.settings.port,
                timeout=self.settings.timeout,
                **credentials,
                **self._tls_options(),
            )
        except (aiosmtplib.SMTPException, OSError, asyncio.TimeoutError) as exc:
            raise MessageSendError(f"SMTP delivery failed: {exc}", handler=self.name) from exc
        self.logger.info("Relayed message for %s to %d recipient(s)", client.public_key, len(client.recipients))
