# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Backend that only logs submissions; useful during development."""

from __future__ import annotations

from ..logger import get_logger
from ..models import ClientConfiguration, Message


class LoggingHandler:
    name = "log"

    def __init__(self, logger=None):
        self.logger = logger or get_logger("LoggingHandler")

    async def send(self, message: Message, client: ClientConfiguration) -> None:
        self.logger.info(
            "Contact message for %s from %s <%s>: %s",
            client.public_key,
            message.name,
            message.sender_address,
            message.body,
        )
