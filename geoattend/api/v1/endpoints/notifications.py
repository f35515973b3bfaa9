"""
Admin-initiated chat notifications: broadcasts and one-off messages.

Delivery failures are reported in the response body, never raised.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends

from geoattend.api.v1.deps import get_services, require_admin
from geoattend.models.user import User
from geoattend.schemas.attendance import (BroadcastRequest, BroadcastResponse,
                                          NotificationRequest,
                                          NotificationResponse)
from geoattend.services.container import Services

router = APIRouter(prefix="/notifications", tags=["notifications"])
logger = logging.getLogger(__name__)


@router.post("/broadcast", response_model=BroadcastResponse)
async def broadcast_message(
    body: BroadcastRequest,
    services: Services = Depends(get_services),
    admin: User = Depends(require_admin),
) -> BroadcastResponse:
    """Send one message to every active employee or every active chat admin."""
    dispatcher = services.dispatcher
    if body.target == "employees":
        result = await dispatcher.notify_employees(
            body.message, parse_mode=body.parse_mode, silent=body.silent
        )
    else:
        result = await dispatcher.notify_admins(
            body.message, kind="broadcast_admins", parse_mode=body.parse_mode, silent=body.silent
        )

    await services.store.append_audit_log(
        "broadcast_message",
        f"Broadcast sent to {body.target} by admin {admin.email}",
        {"target": body.target, "total": result.total, "successful": result.successful},
    )
    logger.info("Broadcast to %s by %s: %d/%d", body.target, admin.email, result.successful, result.total)
    return BroadcastResponse(
        success=result.failed == 0,
        target=body.target,
        total=result.total,
        successful=result.successful,
        failed=result.failed,
    )


@router.post("/send", response_model=NotificationResponse)
async def send_notification(
    body: NotificationRequest,
    services: Services = Depends(get_services),
    admin: User = Depends(require_admin),
) -> NotificationResponse:
    result = await services.dispatcher.send(
        body.recipient_id, body.message, parse_mode=body.parse_mode, silent=body.silent
    )
    await services.store.append_audit_log(
        "custom_notification",
        f"Notification sent to {body.recipient_id} by admin {admin.email}",
        {"recipient_id": body.recipient_id, "success": result.success},
    )
    return NotificationResponse(success=result.success, recipient_id=body.recipient_id, error=result.error)
