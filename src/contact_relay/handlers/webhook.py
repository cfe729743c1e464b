# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Webhook delivery backend.

POSTs each submission as JSON to the tenant's ``webhook_url``::

    {"realm": "...", "name": "...", "email": "...", "message": "..."}

A ``webhook_token`` is sent as ``Authorization: Bearer <token>``. Tenants
without a webhook URL are skipped.
"""

from __future__ import annotations

import asyncio
from typing import Any

import aiohttp

from ..dispatch import MessageSendError
from ..logger import get_logger
from ..models import ClientConfiguration, Message


class WebhookHandler:
    name = "webhook"

    def __init__(self, timeout: float = 10.0, logger=None):
        self.timeout = timeout
        self.logger = logger or get_logger("WebhookHandler")

    @staticmethod
    def build_payload(message: Message, client: ClientConfiguration) -> dict[str, Any]:
        return {
            "realm": client.public_key,
            "name": message.name,
            "email": message.sender_address,
            "message": message.body,
        }

    async def send(self, message: Message, client: ClientConfiguration) -> None:
        if not client.webhook_url:
            self.logger.debug("Client %s has no webhook configured, skipping", client.public_key)
            return
        headers = {}
        if client.webhook_token:
            headers["Authorization"] = f"Bearer {client.webhook_token}"
        timeout = aiohttp.ClientTimeout(total=self.timeout)
        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.post(
                    client.webhook_url,
                    json=self.build_payload(message, client),
                    headers=headers,
                ) as resp:
                    if resp.status >= 300:
                        text = await resp.text()
                        raise MessageSendError(
                            f"Webhook returned {resp.status}: {text[:200]}",
                            handler=self.name,
                        )
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            raise MessageSendError(f"Webhook request failed: {exc}", handler=self.name) from exc
        self.logger.debug("Webhook delivered for %s", client.public_key)
