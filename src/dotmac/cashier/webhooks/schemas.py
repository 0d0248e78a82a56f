"""
Webhook envelope and acknowledgement models.
"""

import json
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from dotmac.cashier.exceptions import WebhookError


class WebhookObject(BaseModel):
    """The resource an event is about."""

    model_config = ConfigDict(extra="allow")

    id: str = Field(min_length=1)
    customer: str | None = None


class WebhookData(BaseModel):
    model_config = ConfigDict(extra="allow")

    object: WebhookObject


class WebhookEnvelope(BaseModel):
    """Processor event envelope ``{id, type, data: {object: {id, customer}}}``."""

    model_config = ConfigDict(extra="allow")

    id: str = Field(min_length=1)
    type: str = Field(min_length=1)
    data: WebhookData

    @property
    def object_id(self) -> str:
        return self.data.object.id

    @classmethod
    def parse(cls, payload: bytes | str | dict[str, Any], provider: str | None = None) -> "WebhookEnvelope":
        """Parse raw or decoded payloads, raising ``WebhookError`` when malformed."""
        if isinstance(payload, bytes | str):
            try:
                payload = json.loads(payload)
            except ValueError as exc:
                raise WebhookError(f"Webhook payload is not valid JSON: {exc}", provider=provider) from exc
        if not isinstance(payload, dict):
            raise WebhookError("Webhook payload must be a JSON object", provider=provider)
        try:
            return cls.model_validate(payload)
        except ValidationError as exc:
            raise WebhookError(
                f"Webhook envelope is malformed: {exc.error_count()} validation error(s)",
                webhook_type=payload.get("type") if isinstance(payload.get("type"), str) else None,
                provider=provider,
            ) from exc


class WebhookResult(BaseModel):
    """Outcome of handling one event."""

    event_id: str
    event_type: str
    handled: bool = False
    subscription_id: str | None = None

    def acknowledgement(self) -> dict[str, Any]:
        return {"received": True, **self.model_dump()}
