# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Pydantic model for inbound messages.

An inbound payload is a JSON object with optional string fields ``From``,
``Subject`` and ``Body``. Keys are matched case-insensitively, unknown keys
are ignored and ``null`` values leave the field empty. Anything else (not
JSON, not an object, a non-string field) is a parse failure and is turned
into a malformed-message notice by :meth:`InboundMessage.malformed`.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

MALFORMED_SENDER = "Unknown"
MALFORMED_SUBJECT = "claptrap-listen: A malformed message was received"
MALFORMED_PREVIEW_BYTES = 10 * 1024

MESSAGE_TEMPLATE = "Subject: {subject}\n\nFrom: {sender}\n{body}"

_FIELD_KEYS = {"from": "From", "subject": "Subject", "body": "Body"}


class InboundMessage(BaseModel):
    """A message to forward to the mail command.

    Attributes:
        from_addr: Sender display text (JSON key ``From``).
        subject: Subject line (JSON key ``Subject``).
        body: Message body (JSON key ``Body``).
    """

    model_config = ConfigDict(extra="ignore")

    from_addr: str = Field(default="", alias="From")
    subject: str = Field(default="", alias="Subject")
    body: str = Field(default="", alias="Body")

    @model_validator(mode="before")
    @classmethod
    def fold_field_keys(cls, data: Any) -> Any:
        """Accept only objects and map ``from``/``FROM``/... onto the field aliases.

        Keys are applied in document order, so a later spelling overrides an
        earlier one. Any other key, including the Python field names, is dropped.
        """
        if isinstance(data, cls):
            return data
        if not isinstance(data, dict):
            raise ValueError(f"message must be a JSON object, not {type(data).__name__}")
        folded: dict[str, Any] = {}
        for key, value in data.items():
            alias = _FIELD_KEYS.get(key.lower()) if isinstance(key, str) else None
            if alias is not None and value is not None:
                folded[alias] = value
        return folded

    @classmethod
    def malformed(cls, error: str, raw: bytes) -> InboundMessage:
        """Build the notice sent in place of a payload that could not be parsed.

        The body carries the parse error and at most the first
        ``MALFORMED_PREVIEW_BYTES`` bytes of ``raw``. The preview is decoded
        with ``surrogateescape`` so :meth:`encode` gives back the exact bytes.
        """
        preview = bytes(raw[:MALFORMED_PREVIEW_BYTES]).decode("utf-8", errors="surrogateescape")
        return cls(
            From=MALFORMED_SENDER,
            Subject=MALFORMED_SUBJECT,
            Body=f"Error message: {error}\nFirst 10KB: {preview}",
        )

    def render(self) -> str:
        """Format as the text block piped to the mail command."""
        return MESSAGE_TEMPLATE.format(subject=self.subject, sender=self.from_addr, body=self.body)

    def encode(self) -> bytes:
        """Rendered text as bytes, restoring any raw bytes kept by :meth:`malformed`."""
        text = self.render()
        try:
            return text.encode("utf-8", errors="surrogateescape")
        except UnicodeEncodeError:
            # lone surrogates from JSON escapes such as "\ud800"
            return text.encode("utf-8", errors="replace")


def describe_validation_error(exc: ValidationError) -> str:
    """One-line summary of a pydantic validation error."""
    parts = []
    for error in exc.errors(include_url=False):
        location = ".".join(str(part) for part in error.get("loc", ()))
        message = error.get("msg", "invalid value")
        parts.append(f"{location}: {message}" if location else message)
    return "; ".join(parts) or str(exc)
