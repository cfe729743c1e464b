# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Pydantic models for the contact relay.

This module defines the data models shared by the pipeline, the delivery
backends and the configuration loader.

Models:
    - ClientConfiguration: One registered tenant, looked up by public key
    - Message: A validated, sanitized contact submission
    - ValidationFailure: Why a submission could not become a Message
    - MessageResult: Either a Message or a ValidationFailure
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Annotated

from pydantic import BaseModel, ConfigDict, EmailStr, Field, ValidationError, field_validator

DEFAULT_SUBJECT = "New contact message from {name}"

MAX_NAME_LENGTH = 200
MAX_BODY_LENGTH = 10_000
MAX_ADDRESS_LENGTH = 254

# Form field that feeds each Message attribute
FORM_FIELDS = {
    "name": "name",
    "body": "message",
    "sender_address": "email",
}

_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")
_BODY_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b-\x1f\x7f]")


class ClientConfiguration(BaseModel):
    """A registered tenant.

    Only ``public_key`` matters to the pipeline; the remaining settings are
    passed through untouched to the delivery backends.

    Attributes:
        public_key: Realm identifier submitted by the form (exact match).
        name: Human-readable tenant name.
        recipients: Addresses the SMTP backend delivers to.
        subject: Subject line template; ``{name}`` is the sender's name.
        webhook_url: Endpoint the webhook backend posts to.
        webhook_token: Optional bearer token for the webhook.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    public_key: Annotated[
        str,
        Field(min_length=1, max_length=128, description="Realm identifier used for lookup")
    ]
    name: Annotated[
        str | None,
        Field(default=None, max_length=255, description="Human-readable tenant name")
    ]
    recipients: Annotated[
        tuple[EmailStr, ...],
        Field(default=(), description="Delivery addresses for the SMTP backend")
    ]
    subject: Annotated[
        str,
        Field(default=DEFAULT_SUBJECT, description="Subject template, {name} is substituted")
    ]
    webhook_url: Annotated[
        str | None,
        Field(default=None, description="Webhook endpoint for the webhook backend")
    ]
    webhook_token: Annotated[
        str | None,
        Field(default=None, description="Bearer token sent to the webhook")
    ]

    def render_subject(self, message: Message) -> str:
        """Return the subject line for ``message``."""
        return self.subject.replace("{name}", message.name)


def _sanitize_line(value: str) -> str:
    # CR/LF are kept so the field validators can reject header injection.
    return _CONTROL_CHARS.sub("", value).strip()


def _sanitize_body(value: str) -> str:
    value = value.replace("\r\n", "\n").replace("\r", "\n")
    return _BODY_CONTROL_CHARS.sub("", value).strip()


@dataclass(frozen=True)
class ValidationFailure:
    """Reason a submission was refused.

    Attributes:
        field: Form field that failed (``name``, ``message`` or ``email``).
        reason: Human-readable explanation.
    """

    field: str
    reason: str

    def __str__(self) -> str:
        return f"{self.field}: {self.reason}"


@dataclass(frozen=True)
class MessageResult:
    """Outcome of :meth:`Message.build`; exactly one attribute is set."""

    message: Message | None = None
    failure: ValidationFailure | None = None

    @property
    def ok(self) -> bool:
        return self.message is not None


class Message(BaseModel):
    """A validated contact submission.

    Instances are always fully valid. Use :meth:`build` to construct one from
    raw form values; it sanitizes the input and reports the first failing
    field instead of raising.
    """

    model_config = ConfigDict(frozen=True)

    name: Annotated[str, Field(min_length=1, max_length=MAX_NAME_LENGTH)]
    body: Annotated[str, Field(min_length=1, max_length=MAX_BODY_LENGTH)]
    sender_address: EmailStr

    @field_validator("name", "sender_address", mode="before")
    @classmethod
    def single_line(cls, v: object) -> object:
        """Reject line breaks, which would allow header injection."""
        if isinstance(v, str) and ("\n" in v or "\r" in v):
            raise ValueError("must not contain line breaks")
        return v

    @field_validator("sender_address", mode="before")
    @classmethod
    def address_length(cls, v: object) -> object:
        if isinstance(v, str) and len(v) > MAX_ADDRESS_LENGTH:
            raise ValueError(f"must be at most {MAX_ADDRESS_LENGTH} characters")
        return v

    @classmethod
    def build(cls, *, name: str, body: str, sender_address: str) -> MessageResult:
        """Sanitize raw form values and validate them into a Message.

        Fields are checked in the order name, body, sender address and the
        first failure wins, so the reported reason is deterministic.

        Args:
            name: Raw ``name`` form value.
            body: Raw ``message`` form value.
            sender_address: Raw ``email`` form value.

        Returns:
            A MessageResult carrying either the Message or a
            ValidationFailure naming the offending form field.
        """
        try:
            message = cls(
                name=_sanitize_line(name),
                body=_sanitize_body(body),
                sender_address=_sanitize_line(sender_address),
            )
        except ValidationError as exc:
            error = exc.errors()[0]
            attribute = str(error["loc"][0]) if error["loc"] else "name"
            field = FORM_FIELDS.get(attribute, attribute)
            reason = error["msg"].removeprefix("Value error, ")
            return MessageResult(failure=ValidationFailure(field=field, reason=reason))
        return MessageResult(message=message)
