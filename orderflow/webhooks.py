"""Carrier tracking webhook boundary.

Authenticates raw webhook bodies and normalizes carrier payloads into
``(order_id, ExternalStatusCode)`` pairs. Nothing past this module sees a
carrier-specific format.
"""

from __future__ import annotations

import logging
from typing import Dict, Optional

from pydantic import BaseModel, ValidationError

from .config import WebhookConfig
from .contracts import ExternalStatusCode
from .directory import OrderDirectory
from .errors import InvalidPayload, InvalidSignature
from .security import verify_signature

logger = logging.getLogger(__name__)

# carrier and internal shipment spellings that are not ExternalStatusCode names
STATUS_ALIASES: Dict[str, ExternalStatusCode] = {
    "LABEL_CREATED": ExternalStatusCode.PRE_TRANSIT,
    "IN_TRANSIT": ExternalStatusCode.TRANSIT,
    "OUT_FOR_DELIVERY": ExternalStatusCode.TRANSIT,
    "FAILED": ExternalStatusCode.FAILURE,
    "RETURN_TO_SENDER": ExternalStatusCode.RETURNED,
}


def normalize_status(raw: Optional[str]) -> ExternalStatusCode:
    """Map a carrier status string to ``ExternalStatusCode``; unknown -> UNKNOWN."""
    if not raw:
        return ExternalStatusCode.UNKNOWN
    key = raw.strip().upper().replace("-", "_").replace(" ", "_")
    if key in ExternalStatusCode.__members__:
        return ExternalStatusCode[key]
    return STATUS_ALIASES.get(key, ExternalStatusCode.UNKNOWN)


class TrackingStatus(BaseModel):
    status: Optional[str] = None
    status_details: Optional[str] = None
    status_date: Optional[str] = None


class TrackingData(BaseModel):
    tracking_number: str
    carrier: Optional[str] = None
    tracking_status: TrackingStatus = TrackingStatus()


class CarrierTrackingPayload(BaseModel):
    """``track_updated`` body as sent by the carrier aggregator."""

    event: str = "track_updated"
    data: TrackingData


class TrackingUpdate(BaseModel):
    """A verified, normalized tracking update."""

    tracking_number: str
    order_id: Optional[str] = None
    status_code: ExternalStatusCode


class CarrierWebhookReceiver:
    """Verifies signatures and normalizes tracking payloads."""

    def __init__(self, config: WebhookConfig, directory: OrderDirectory) -> None:
        self._config = config
        self._directory = directory

    async def normalize(
        self, tenant_id: str, body: bytes, signature: Optional[str]
    ) -> TrackingUpdate:
        """Authenticate ``body`` for ``tenant_id`` and extract the update.

        Raises:
            InvalidSignature: If the tenant has no secret or the signature
                does not match.
            InvalidPayload: If the body is not a tracking payload.
        """
        secret = self._config.secret_for(tenant_id)
        if not verify_signature(secret, body, signature):
            logger.warning(f"Rejected carrier webhook for tenant {tenant_id}: bad signature")
            raise InvalidSignature("Invalid carrier webhook signature")

        try:
            payload = CarrierTrackingPayload.model_validate_json(body)
        except ValidationError as exc:
            raise InvalidPayload(f"Unrecognized carrier payload: {exc}") from exc

        order_id = await self._directory.find_order_by_tracking_number(
            payload.data.tracking_number
        )
        return TrackingUpdate(
            tracking_number=payload.data.tracking_number,
            order_id=order_id,
            status_code=normalize_status(payload.data.tracking_status.status),
        )
