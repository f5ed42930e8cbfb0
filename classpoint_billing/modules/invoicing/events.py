"""
Queue record decoding.

A record body is either flat, ``{"schoolId": ..., "invoiceId": ...}``, or an
event bus envelope, ``{"detail": ..., "detailType": ..., "source": ...}``,
whose ``detail`` may itself be a JSON string. Bodies are decoded once into a
``FlatEvent`` or ``WrappedEvent`` and then resolved into a trigger.
"""

import json
from enum import StrEnum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field

from classpoint_billing.core.exceptions import MalformedRecordError

INVOICE_GENERATED = "invoice.generated"
OVERDUE_SCAN = "invoice.overdue.scan"
SELECTION_UPDATE = "SELECTION_UPDATE"

# Keys that mark a body as an event bus envelope. "detail-type" is the
# spelling EventBridge uses when it delivers to SQS directly.
_ENVELOPE_KEYS = ("detail", "detailType", "detail-type", "source")


class TriggerKind(StrEnum):
    GENERATED = "GENERATED"
    OVERDUE_SCAN = "OVERDUE_SCAN"
    RECOMPUTE = "RECOMPUTE"


class FlatEvent(BaseModel):
    """Body that is itself the payload."""

    model_config = ConfigDict(frozen=True)

    shape: Literal["flat"] = "flat"
    body: dict[str, Any]

    @property
    def detail(self) -> dict[str, Any]:
        return self.body

    @property
    def detail_type(self) -> str | None:
        return None


class WrappedEvent(BaseModel):
    """Event bus envelope; ``detail`` is already decoded."""

    model_config = ConfigDict(frozen=True)

    shape: Literal["wrapped"] = "wrapped"
    body: dict[str, Any]
    detail: dict[str, Any] = Field(default_factory=dict)
    detail_type: str | None = None
    source: str | None = None


EventEnvelope = Annotated[Union[FlatEvent, WrappedEvent], Field(discriminator="shape")]


class InvoiceTrigger(BaseModel):
    """Request to recompute one invoice."""

    model_config = ConfigDict(frozen=True)

    school_id: str
    invoice_id: str
    kind: TriggerKind = TriggerKind.RECOMPUTE
    detail_type: str | None = None
    reason: str | None = None
    detail: dict[str, Any] = Field(default_factory=dict)
    body: dict[str, Any] = Field(default_factory=dict)

    @property
    def base_detail(self) -> dict[str, Any]:
        """Detail echoed on the processed event; the raw body when the detail is empty."""
        return dict(self.detail or self.body)

    @property
    def notifies_guardian(self) -> bool:
        """Issued-invoice notices go out for generated invoices, except selection toggles."""
        return self.kind == TriggerKind.GENERATED and self.reason != SELECTION_UPDATE


class OverdueScanRequest(BaseModel):
    """Recognized, not acted upon yet."""

    model_config = ConfigDict(frozen=True)

    detail: dict[str, Any] = Field(default_factory=dict)


class TriggerRejection(BaseModel):
    """Record that cannot name an invoice. Skipped, never retried."""

    model_config = ConfigDict(frozen=True)

    reason: str


def _text(value: Any) -> str | None:
    if value is None or value == "":
        return None
    if isinstance(value, (dict, list)):
        return None
    return str(value)


def _decode_detail(raw: Any) -> dict[str, Any]:
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except ValueError:
            return {}
    return raw if isinstance(raw, dict) else {}


def decode_envelope(body: str | bytes | None, message_id: str | None = None) -> EventEnvelope:
    """
    Decode a record body.

    Raises ``MalformedRecordError`` when the body is not JSON or not a JSON
    object; a broken nested ``detail`` string only degrades to ``{}``.
    """
    try:
        payload = json.loads(body or "")
    except ValueError as exc:
        raise MalformedRecordError(f"Record body is not valid JSON: {exc}", message_id) from exc
    if not isinstance(payload, dict):
        raise MalformedRecordError(
            f"Record body must be a JSON object, got {type(payload).__name__}", message_id
        )

    if not any(key in payload for key in _ENVELOPE_KEYS):
        return FlatEvent(body=payload)

    detail = _decode_detail(payload.get("detail"))
    detail_type = _text(payload.get("detailType")) or _text(payload.get("detail-type"))
    return WrappedEvent(
        body=payload,
        detail=detail,
        detail_type=detail_type or _text(detail.get("detailType")),
        source=_text(payload.get("source")) or _text(detail.get("source")),
    )


def trigger_kind(detail_type: str | None) -> TriggerKind:
    if detail_type == INVOICE_GENERATED:
        return TriggerKind.GENERATED
    if detail_type == OVERDUE_SCAN:
        return TriggerKind.OVERDUE_SCAN
    return TriggerKind.RECOMPUTE


def resolve_trigger(
    envelope: EventEnvelope,
) -> InvoiceTrigger | OverdueScanRequest | TriggerRejection:
    """Ids come from the detail first, then from the envelope itself."""
    kind = trigger_kind(envelope.detail_type)
    if kind == TriggerKind.OVERDUE_SCAN:
        return OverdueScanRequest(detail=envelope.detail)

    detail = envelope.detail
    school_id = _text(detail.get("schoolId")) or _text(envelope.body.get("schoolId"))
    invoice_id = _text(detail.get("invoiceId")) or _text(envelope.body.get("invoiceId"))
    if not school_id or not invoice_id:
        return TriggerRejection(reason="Missing schoolId or invoiceId")

    return InvoiceTrigger(
        school_id=school_id,
        invoice_id=invoice_id,
        kind=kind,
        detail_type=envelope.detail_type,
        reason=_text(detail.get("reason")),
        detail=detail,
        body=envelope.body,
    )


def parse_record(
    body: str | bytes | None, message_id: str | None = None
) -> InvoiceTrigger | OverdueScanRequest | TriggerRejection:
    return resolve_trigger(decode_envelope(body, message_id))
