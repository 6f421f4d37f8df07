"""FastAPI routes for the Notifications context.

Thin adapters that translate HTTP requests into queue and reconciler
calls. No business logic — just schema→call→response translation.
"""

import structlog
from fastapi import APIRouter, HTTPException, Request
from notifications.api.schemas import (
    CancelNotificationRequest,
    DeliveryOutcomeResponse,
    DeliveryStatusRequest,
    NotificationListResponse,
    NotificationResponse,
    QueueStatsResponse,
    StatusResponse,
)
from notifications.notification.reconciler import DeliveryReceipt
from pydantic import ValidationError as PydanticValidationError

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/notifications", tags=["notifications"])
webhook_router = APIRouter(prefix="/webhooks", tags=["webhooks"])


def _runtime(request: Request):
    return request.app.state.runtime


# ---------------------------------------------------------------------------
# Observability
# ---------------------------------------------------------------------------
@router.get("/stats", response_model=QueueStatsResponse)
async def queue_stats(request: Request) -> QueueStatsResponse:
    """Item counts per status."""
    return QueueStatsResponse(**await _runtime(request).queue.stats())


@router.get("/rides/{ride_id}", response_model=NotificationListResponse)
async def ride_notifications(ride_id: str, request: Request) -> NotificationListResponse:
    """Every notification produced for one ride, oldest first."""
    items = await _runtime(request).queue.history(ride_id)
    return NotificationListResponse(
        items=[NotificationResponse.from_item(item) for item in items],
        total=len(items),
    )


# ---------------------------------------------------------------------------
# Notifications
# ---------------------------------------------------------------------------
@router.get("/{notification_id}", response_model=NotificationResponse)
async def get_notification(notification_id: str, request: Request) -> NotificationResponse:
    item = await _runtime(request).queue.get(notification_id)
    return NotificationResponse.from_item(item)


@router.post("/{notification_id}/cancel", response_model=StatusResponse)
async def cancel_notification(
    notification_id: str, body: CancelNotificationRequest, request: Request
) -> StatusResponse:
    """Cancel a pending or processing notification."""
    queue = _runtime(request).queue
    item = await queue.get(notification_id)

    if not await queue.cancel(notification_id, reason=body.reason):
        raise HTTPException(status_code=409, detail=f"Cannot cancel a {item.status.value} notification")
    return StatusResponse()


# ---------------------------------------------------------------------------
# Provider callbacks
# ---------------------------------------------------------------------------
@webhook_router.post("/delivery-status", response_model=DeliveryOutcomeResponse)
async def delivery_status(request: Request) -> DeliveryOutcomeResponse:
    """Delivery receipt callback (form-encoded or JSON)."""
    if request.headers.get("content-type", "").startswith("application/json"):
        payload = await request.json()
    else:
        payload = dict(await request.form())

    try:
        body = DeliveryStatusRequest.model_validate(payload)
        receipt = DeliveryReceipt.from_provider(body.message_sid, body.message_status, body.error_code)
    except (PydanticValidationError, ValueError) as exc:
        logger.warning("Invalid delivery status callback", error=str(exc))
        raise HTTPException(status_code=422, detail=str(exc))

    outcome = await _runtime(request).reconciler.reconcile(receipt)
    return DeliveryOutcomeResponse(outcome=outcome.value)
