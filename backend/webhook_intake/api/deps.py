"""Shared FastAPI dependencies.

Components live on `app.state`, built once in the application lifespan.
"""

from __future__ import annotations

import hmac

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from webhook_intake.core.config import Settings
from webhook_intake.services.webhooks.ingress import WebhookIngress
from webhook_intake.services.webhooks.queue import QueuedEventStore
from webhook_intake.services.webhooks.worker import BatchWorker

_bearer = HTTPBearer(auto_error=False)
BEARER_DEP = Depends(_bearer)


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_store(request: Request) -> QueuedEventStore:
    return request.app.state.store


def get_ingress(request: Request) -> WebhookIngress:
    return request.app.state.ingress


def get_worker(request: Request) -> BatchWorker:
    return request.app.state.worker


SETTINGS_DEP = Depends(get_settings)


def require_queue_admin(
    credentials: HTTPAuthorizationCredentials | None = BEARER_DEP,
    config: Settings = SETTINGS_DEP,
) -> None:
    """Guard admin routes with a bearer token when one is configured."""
    expected = config.queue_admin_token
    if not expected:
        return
    supplied = credentials.credentials if credentials is not None else ""
    if not hmac.compare_digest(supplied.encode("utf-8"), expected.encode("utf-8")):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing admin token",
            headers={"WWW-Authenticate": "Bearer"},
        )
