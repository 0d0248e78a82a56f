"""
Webhook ingress route.

Any parseable event is acknowledged with 200, handled or not, since the
processor retries anything else. Malformed envelopes and bad signatures are
answered with 400.
"""

from typing import Annotated

import structlog
from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from dotmac.cashier.clock import Clock
from dotmac.cashier.db import get_async_session
from dotmac.cashier.dependencies import get_clock, get_webhook_reconciler
from dotmac.cashier.exceptions import WebhookError
from dotmac.cashier.settings import Settings, get_settings
from dotmac.cashier.webhooks.reconciler import WebhookReconciler
from dotmac.cashier.webhooks.signature import SIGNATURE_HEADER, verify_signature

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/webhooks", tags=["Webhooks"])


@router.post("/processor")
async def receive_processor_webhook(
    request: Request,
    session: Annotated[AsyncSession, Depends(get_async_session)],
    reconciler: Annotated[WebhookReconciler, Depends(get_webhook_reconciler)],
    clock: Annotated[Clock, Depends(get_clock)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> JSONResponse:
    """Receive a processor event and reconcile local subscriptions."""
    payload = await request.body()
    config = settings.processor

    try:
        if config.webhook_secret:
            verify_signature(
                payload,
                request.headers.get(SIGNATURE_HEADER),
                config.webhook_secret,
                config.webhook_tolerance_seconds,
                clock.now(),
            )
        result = await reconciler.handle(session, payload)
    except WebhookError as e:
        logger.warning("Rejected webhook", error=e.message, error_code=e.error_code)
        return JSONResponse(status_code=e.status_code, content=e.to_dict())

    return JSONResponse(content=result.acknowledgement())
