# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Bundled delivery backends.

Each backend satisfies :class:`contact_relay.dispatch.MessageHandler`:

- :class:`SmtpHandler`: email to the tenant's recipients via aiosmtplib
- :class:`WebhookHandler`: JSON POST to the tenant's webhook via aiohttp
- :class:`LoggingHandler`: writes the submission to the log
"""

from .log import LoggingHandler
from .smtp import SmtpHandler, SmtpSettings
from .webhook import WebhookHandler

HANDLER_NAMES = ("smtp", "webhook", "log")

__all__ = [
    "HANDLER_NAMES",
    "LoggingHandler",
    "SmtpHandler",
    "SmtpSettings",
    "WebhookHandler",
]
