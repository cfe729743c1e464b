# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Fan-out of validated messages to delivery backends.

A :class:`MessageHandler` is anything with an async ``send(message, client)``
method. Handlers are kept in a :class:`HandlerSet`, an ordered immutable
tuple that is swapped as a whole whenever handlers are replaced or appended,
so a request that is already dispatching keeps the snapshot it started with.

Dispatch is fail-fast: handlers run one after the other in registration
order and the first failure stops the fan-out. Failures are returned as a
:class:`DispatchResult` rather than raised.

Example:
    Dispatching a message::

        handlers = HandlerSet([SmtpHandler(settings), WebhookHandler()])
        result = await handlers.dispatch(message, client)
        if not result.ok:
            logger.error("Handler %s failed: %s", result.failed_handler, result.error)
"""

from __future__ import annotations

import asyncio
import threading
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

from .logger import get_logger
from .models import ClientConfiguration, Message

DEFAULT_HANDLER_TIMEOUT = 30.0

logger = get_logger("HandlerSet")


class MessageSendError(RuntimeError):
    """Raised by a handler when it could not deliver a message."""

    def __init__(self, message: str = "Message delivery failed", *, handler: str | None = None):
        super().__init__(message)
        self.handler = handler


@runtime_checkable
class MessageHandler(Protocol):
    """Delivery backend contract."""

    async def send(self, message: Message, client: ClientConfiguration) -> None:
        """Deliver ``message`` for ``client``; raise MessageSendError on failure."""
        ...


def handler_name(handler: MessageHandler) -> str:
    """Return a display name for a handler (its ``name`` or class name)."""
    return getattr(handler, "name", None) or type(handler).__name__


@dataclass(frozen=True)
class DispatchResult:
    """Outcome of a fan-out.

    Attributes:
        ok: True when every handler completed.
        delivered: Names of handlers that completed, in order.
        failed_handler: Name of the handler that failed, if any.
        error: Description of the failure, if any.
    """

    ok: bool
    delivered: tuple[str, ...] = ()
    failed_handler: str | None = None
    error: str | None = None


class HandlerSet:
    """Ordered, copy-on-write collection of message handlers.

    Readers take the current tuple reference without locking; writers build
    a new tuple under a lock and publish it with a single assignment.

    Attributes:
        timeout: Seconds each handler may take before counting as failed.
    """

    def __init__(self, handlers: Iterable[MessageHandler] = (), *, timeout: float = DEFAULT_HANDLER_TIMEOUT):
        self._handlers: tuple[MessageHandler, ...] = tuple(handlers)
        self._write_lock = threading.Lock()
        self.timeout = timeout

    @property
    def handlers(self) -> tuple[MessageHandler, ...]:
        """Current snapshot, in dispatch order."""
        return self._handlers

    def names(self) -> list[str]:
        return [handler_name(h) for h in self._handlers]

    def replace(self, handlers: Iterable[MessageHandler]) -> None:
        """Atomically replace every registered handler."""
        new = tuple(handlers)
        with self._write_lock:
            self._handlers = new
        logger.debug("Replaced message handlers: %s", ", ".join(self.names()) or "(none)")

    def append(self, handler: MessageHandler) -> None:
        """Atomically register one more handler at the end of the order."""
        with self._write_lock:
            self._handlers = self._handlers + (handler,)
        logger.debug("Added message handler %s", handler_name(handler))

    def __len__(self) -> int:
        return len(self._handlers)

    async def dispatch(self, message: Message, client: ClientConfiguration) -> DispatchResult:
        """Send ``message`` through every handler, stopping at the first failure.

        A handler fails when it raises (MessageSendError or anything else) or
        when it exceeds :attr:`timeout`. Handlers after a failure never run.

        Args:
            message: The validated message.
            client: The resolved tenant.

        Returns:
            DispatchResult describing which handlers ran and what failed.
        """
        delivered: list[str] = []
        for handler in self._handlers:
            name = handler_name(handler)
            try:
                await asyncio.wait_for(handler.send(message, client), timeout=self.timeout)
            except MessageSendError as exc:
                return DispatchResult(ok=False, delivered=tuple(delivered), failed_handler=name, error=str(exc))
            except asyncio.TimeoutError:
                return DispatchResult(
                    ok=False,
                    delivered=tuple(delivered),
                    failed_handler=name,
                    error=f"timed out after {self.timeout}s",
                )
            except Exception as exc:
                logger.exception("Unexpected error in handler %s", name)
                return DispatchResult(ok=False, delivered=tuple(delivered), failed_handler=name, error=repr(exc))
            logger.debug("Message forwarded to handler %s", name)
            delivered.append(name)
        return DispatchResult(ok=True, delivered=tuple(delivered))
