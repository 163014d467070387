"""Inbound webhook endpoint.

`POST /webhooks/{topic}` reads the raw body before anything parses it; the
signature covers the exact bytes sent, so the route declares no body model.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import JSONResponse

from webhook_intake.api.deps import SETTINGS_DEP, get_ingress
from webhook_intake.core.config import Settings
from webhook_intake.core.error_handling import error_payload
from webhook_intake.services.webhooks.ingress import WebhookIngress

router = APIRouter(prefix="/webhooks", tags=["webhooks"])
INGRESS_DEP = Depends(get_ingress)


@router.post("/{topic:path}")
async def receive_webhook(
    topic: str,
    request: Request,
    ingress: WebhookIngress = INGRESS_DEP,
    config: Settings = SETTINGS_DEP,
) -> JSONResponse:
    """Verify and queue one platform delivery (topic taken from the path)."""
    raw_body = await request.body()
    response = await ingress.handle(
        raw_body,
        request.headers.get(config.webhook_signature_header),
        topic,
        request.headers.get(config.webhook_tenant_header),
    )
    content = response.content
    if response.status_code >= 400:
        request_id = getattr(request.state, "request_id", None)
        content = error_payload(detail=content.get("detail"), request_id=request_id)
    return JSONResponse(status_code=response.status_code, content=content)


@router.get("/{topic:path}", include_in_schema=False)
async def reject_webhook_get(topic: str) -> None:
    """Browsers and probes hitting a webhook URL get a clear 405."""
    raise HTTPException(
        status_code=status.HTTP_405_METHOD_NOT_ALLOWED,
        detail="Webhooks only accept POST requests",
        headers={"Allow": "POST"},
    )
