"""Schema validation for untrusted snapshot text.

Two historical shapes are accepted and resolved once, here, into a
tagged ``ParsedSnapshot``:

* ``EnvelopeSnapshot`` -- ``{"formatVersion", "generatedAt", "payload"}``
  (older files spell these ``version`` / ``timestamp`` / ``data``).
* ``LegacySnapshot`` -- the bare payload object with no wrapper.

Each category present in the payload is validated on its own; absent
categories stay absent.  Nothing downstream inspects the raw shape again.

Usage:
    from opsnap.snapshot.validator import parse_snapshot

    parsed = parse_snapshot(text)
    if parsed.shape == "legacy":
        ...
    tools = parsed.payload.get(Category.TOOLS, [])
"""

import json
from datetime import datetime
from typing import Annotated, Any, Literal, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from opsnap.snapshot.errors import MalformedInput, MissingPayload, SchemaViolation
from opsnap.snapshot.models import Category
from opsnap.snapshot.records import RECORD_MODELS, Payload

_ENVELOPE_KEYS = frozenset({"formatVersion", "generatedAt", "payload", "version", "timestamp", "data"})
_CATEGORY_KEYS = frozenset(c.value for c in Category)


class _EnvelopeShape(BaseModel):
    """Structural match for the wrapped shape; the payload is checked later."""

    model_config = ConfigDict(extra="ignore")

    format_version: str = Field(validation_alias=AliasChoices("formatVersion", "version"))
    generated_at: datetime = Field(validation_alias=AliasChoices("generatedAt", "timestamp"))
    payload: dict[str, Any] = Field(validation_alias=AliasChoices("payload", "data"))


class EnvelopeSnapshot(BaseModel):
    shape: Literal["envelope"] = "envelope"
    format_version: str
    generated_at: datetime
    payload: Payload


class LegacySnapshot(BaseModel):
    shape: Literal["legacy"] = "legacy"
    payload: Payload


ParsedSnapshot = Annotated[Union[EnvelopeSnapshot, LegacySnapshot], Field(discriminator="shape")]


def parse_snapshot(text: str | bytes) -> ParsedSnapshot:
    """Parse and validate snapshot text.

    Raises:
        MalformedInput: The text is not JSON.
        MissingPayload: Neither shape matches.
        SchemaViolation: A present category fails validation.
    """
    try:
        raw = json.loads(text)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise MalformedInput(f"Invalid backup file: {e}") from e

    if not isinstance(raw, dict):
        raise MissingPayload("Backup file is missing data")

    if _ENVELOPE_KEYS & raw.keys():
        try:
            envelope = _EnvelopeShape.model_validate(raw)
        except ValidationError as e:
            raise MissingPayload("Backup file is missing data") from e
        return EnvelopeSnapshot(
            format_version=envelope.format_version,
            generated_at=envelope.generated_at,
            payload=validate_payload(envelope.payload),
        )

    if _CATEGORY_KEYS & raw.keys():
        return LegacySnapshot(payload=validate_payload(raw))

    raise MissingPayload("Backup file is missing data")


def validate_payload(raw: dict[str, Any]) -> Payload:
    """Validate every known category present in ``raw``.

    Unknown keys are ignored so newer snapshots stay readable.

    Raises:
        SchemaViolation: Naming the first failing category and field.
    """
    payload: Payload = {}
    for category in Category:
        if category.value not in raw:
            continue
        records = raw[category.value]
        if records is None:
            continue
        adapter = TypeAdapter(list[RECORD_MODELS[category]])
        try:
            payload[category] = adapter.validate_python(records)
        except ValidationError as e:
            error = e.errors()[0]
            field = ".".join(str(part) for part in error["loc"]) or "(records)"
            raise SchemaViolation(category.value, field, error["msg"]) from e
    return payload
