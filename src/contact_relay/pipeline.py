# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Submission processing pipeline.

This module turns one parsed form submission into an :class:`Outcome`. The
gates run in a fixed order, cheapest first, and each one can end the
request:

1. Required-field presence
2. Honeypot (present and empty)
3. Tenant resolution by realm
4. Message construction and validation
5. Rate limiting on the client IP
6. Fail-fast fan-out to the registered handlers

Rejections before step 5 never touch the rate limiter, so malformed or bot
traffic leaves no state behind.

Example:
    Handling a request::

        pipeline = SubmissionPipeline(registry, rate_limiter, handlers=[SmtpHandler(smtp)])
        outcome = await pipeline.handle(FormRequestContext(fields=form, client_ip=ip))
        response = PlainTextResponse(outcome.body or "", status_code=outcome.status)
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Protocol

from .dispatch import DEFAULT_HANDLER_TIMEOUT, HandlerSet, MessageHandler
from .logger import get_logger
from .models import Message
from .prometheus import ContactMetrics, SubmissionObserver
from .rate_limit import RateLimiter
from .registry import ClientRegistry

NAME_FIELD = "name"
MESSAGE_FIELD = "message"
EMAIL_FIELD = "email"
REALM_FIELD = "realm"
DEFAULT_HONEYPOT_FIELD = "email_h_v"

RATE_LIMIT_BODY = "Rate Limit Exceeded"


class OutcomeKind(str, Enum):
    """Tagged result of handling one submission."""

    ACCEPTED = "accepted"
    MISSING_FIELDS = "missing_fields"
    HONEYPOT = "honeypot"
    UNKNOWN_REALM = "unknown_realm"
    INVALID_MESSAGE = "invalid_message"
    RATE_LIMITED = "rate_limited"
    DISPATCH_FAILED = "dispatch_failed"


STATUS_CODES = {
    OutcomeKind.ACCEPTED: 200,
    OutcomeKind.MISSING_FIELDS: 400,
    OutcomeKind.HONEYPOT: 400,
    OutcomeKind.UNKNOWN_REALM: 400,
    OutcomeKind.INVALID_MESSAGE: 400,
    OutcomeKind.RATE_LIMITED: 429,
    OutcomeKind.DISPATCH_FAILED: 500,
}


@dataclass(frozen=True)
class Outcome:
    """What the transport should answer.

    Attributes:
        kind: Which gate decided the request.
        body: Optional response body.
    """

    kind: OutcomeKind
    body: str | None = None

    @property
    def status(self) -> int:
        return STATUS_CODES[self.kind]

    @property
    def accepted(self) -> bool:
        return self.kind is OutcomeKind.ACCEPTED


class RequestContext(Protocol):
    """Parsed request as seen by the pipeline."""

    @property
    def client_ip(self) -> str | None: ...

    def has_field(self, name: str) -> bool: ...

    def get_field(self, name: str) -> str | None: ...


@dataclass
class FormRequestContext:
    """RequestContext backed by a mapping of form fields."""

    fields: Mapping[str, str] = field(default_factory=dict)
    client_ip: str | None = None

    def has_field(self, name: str) -> bool:
        return name in self.fields

    def get_field(self, name: str) -> str | None:
        return self.fields.get(name)


class SubmissionPipeline:
    """Orchestrates validation, anti-spam, tenant lookup, throttling and dispatch.

    The pipeline holds no per-request state. Its only shared state is the
    rate limiter and the handler set, both safe for concurrent use.

    Attributes:
        registry: Tenant lookup.
        rate_limiter: Per-IP limiter.
        handler_set: Ordered delivery backends.
        observer: Event sink for outcomes (Prometheus metrics by default).
        honeypot_field: Name of the hidden form field that must stay empty.
    """

    def __init__(
        self,
        registry: ClientRegistry,
        rate_limiter: RateLimiter,
        *,
        handlers: Iterable[MessageHandler] = (),
        observer: SubmissionObserver | None = None,
        honeypot_field: str = DEFAULT_HONEYPOT_FIELD,
        handler_timeout: float = DEFAULT_HANDLER_TIMEOUT,
        logger=None,
    ):
        self.registry = registry
        self.rate_limiter = rate_limiter
        self.handler_set = HandlerSet(handlers, timeout=handler_timeout)
        self.observer = observer if observer is not None else ContactMetrics()
        self.honeypot_field = honeypot_field
        self.logger = logger or get_logger("SubmissionPipeline")
        self.logger.info("Loading contact handler")
        self._update_handler_gauge()

    @property
    def required_fields(self) -> tuple[str, ...]:
        return (NAME_FIELD, EMAIL_FIELD, MESSAGE_FIELD, self.honeypot_field, REALM_FIELD)

    # ------------------------------------------------------------- handlers
    def set_message_handlers(self, handlers: Iterable[MessageHandler]) -> None:
        """Replace the current list of message handlers."""
        self.logger.debug("Setting new message handlers")
        self.handler_set.replace(handlers)
        self._update_handler_gauge()

    def add_message_handler(self, handler: MessageHandler) -> None:
        """Append a message handler to the end of the dispatch order."""
        self.handler_set.append(handler)
        self._update_handler_gauge()

    def _update_handler_gauge(self) -> None:
        set_handlers = getattr(self.observer, "set_handlers", None)
        if set_handlers is not None:
            set_handlers(len(self.handler_set))

    # -------------------------------------------------------------- request
    def _finish(self, kind: OutcomeKind, realm: str | None = None, body: str | None = None) -> Outcome:
        self.observer.record(kind.value, realm)
        return Outcome(kind=kind, body=body)

    async def handle(self, ctx: RequestContext) -> Outcome:
        """Process one submission.

        Args:
            ctx: Parsed request exposing form fields and the client IP.

        Returns:
            The Outcome; its ``status`` is the HTTP status to answer with.
        """
        ip = ctx.client_ip
        self.logger.debug("New request from IP %s", ip)

        missing = [name for name in self.required_fields if not ctx.has_field(name)]
        if missing:
            self.logger.debug("Request missing required parameters: %s", ", ".join(missing))
            return self._finish(OutcomeKind.MISSING_FIELDS)

        if ctx.get_field(self.honeypot_field) != "":
            self.logger.warning("Honeypot form field missing or not empty (IP %s)", ip)
            return self._finish(OutcomeKind.HONEYPOT)

        realm = ctx.get_field(REALM_FIELD)
        client = self.registry.resolve(realm)
        if client is None:
            self.logger.debug("No client configured for realm %r", realm)
            return self._finish(OutcomeKind.UNKNOWN_REALM)

        result = Message.build(
            name=ctx.get_field(NAME_FIELD) or "",
            body=ctx.get_field(MESSAGE_FIELD) or "",
            sender_address=ctx.get_field(EMAIL_FIELD) or "",
        )
        if not result.ok:
            self.logger.debug("Request validation failed: %s", result.failure)
            return self._finish(OutcomeKind.INVALID_MESSAGE, client.public_key, str(result.failure))

        if not await self.rate_limiter.should_allow_access(ip):
            self.logger.info("Request from IP %s blocked, rate limit exceeded", ip)
            return self._finish(OutcomeKind.RATE_LIMITED, client.public_key, RATE_LIMIT_BODY)

        dispatch = await self.handler_set.dispatch(result.message, client)
        if not dispatch.ok:
            self.logger.error("Handler %s failed: %s", dispatch.failed_handler, dispatch.error)
            self.observer.record_dispatch_failure(dispatch.failed_handler or "")
            return self._finish(OutcomeKind.DISPATCH_FAILED, client.public_key)

        return self._finish(OutcomeKind.ACCEPTED, client.public_key)
