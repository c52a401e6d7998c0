"""FastAPI surface: webhook verification and ingestion, admin and workflow callbacks."""

from __future__ import annotations

import sqlite3
from contextlib import asynccontextmanager
from typing import Any, Optional

from botocore.exceptions import BotoCoreError, ClientError
from fastapi import BackgroundTasks, FastAPI, Request
from fastapi.responses import JSONResponse, PlainTextResponse
from pydantic import BaseModel, ConfigDict, Field

from whatsbot.app import WhatsBotApp
from whatsbot.core.errors import WhatsbotError
from whatsbot.log import get_logger
from whatsbot.storage.models import ViralDeal
from whatsbot.transport.models import OutboundPlan
from whatsbot.transport.whatsapp import SIGNATURE_HEADER, verify_handshake

logger = get_logger(__name__)


class CredentialRotation(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    tenant_id: str = Field(default="", alias="tenantId")
    app_secret: Optional[str] = Field(default=None, alias="whatsappAppSecret")
    verify_token: Optional[str] = Field(default=None, alias="verifyToken")
    whatsapp_token: Optional[str] = Field(default=None, alias="whatsappToken")


class PostingStatus(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    deal_id: str = Field(default="", alias="dealId")
    status: str = ""
    platforms_posted: list[str] = Field(default_factory=list, alias="platformsPosted")
    platforms_failed: list[str] = Field(default_factory=list, alias="platformsFailed")
    completed_at: Optional[str] = Field(default=None, alias="completedAt")
    pipeline_id: Optional[str] = Field(default=None, alias="pipelineId")


def _error(message: str, status_code: int) -> JSONResponse:
    return JSONResponse({"status": "error", "message": message}, status_code=status_code)


def posting_update_text(deal: ViralDeal) -> str:
    name = deal.restaurant.get("name") or "your restaurant"
    lines = [f"📣 Update on your deal for {name} (ID: {deal.deal_id})", f"Status: {deal.posting_status}"]
    if deal.platforms_posted:
        lines.append("✅ Live on: " + ", ".join(deal.platforms_posted))
    if deal.platforms_failed:
        lines.append("⚠️ Not posted on: " + ", ".join(deal.platforms_failed) + ". We'll retry these for you.")
    return "\n".join(lines)


async def notify_deal_owner(whatsbot: WhatsBotApp, deal: ViralDeal) -> None:
    try:
        tenant = await whatsbot.config_store.get(deal.tenant_id)
    except WhatsbotError as e:
        logger.error("deal_owner_notify_failed", deal_id=deal.deal_id, error=str(e))
        return
    plan = OutboundPlan()
    plan.text(posting_update_text(deal))
    await whatsbot.sender.send(tenant, plan, deal.restaurant_owner)


def create_app(whatsbot: WhatsBotApp) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await whatsbot.start()
        yield
        await whatsbot.stop()

    app = FastAPI(title="whatsbot", description="Multi-tenant WhatsApp chatbot back-end", lifespan=lifespan)
    app.state.whatsbot = whatsbot

    @app.exception_handler(WhatsbotError)
    async def whatsbot_error_handler(request: Request, exc: WhatsbotError) -> JSONResponse:
        logger.warning("request_rejected", path=request.url.path, status=exc.status_code, error=str(exc))
        return _error(str(exc), exc.status_code)

    @app.get("/webhook")
    async def verify_webhook(request: Request) -> PlainTextResponse:
        params = request.query_params
        accepted = [whatsbot.config.whatsapp.verify_token, *await whatsbot.config_store.verify_tokens()]
        challenge = verify_handshake(
            params.get("hub.mode"), params.get("hub.challenge"), params.get("hub.verify_token"), accepted
        )
        logger.info("webhook_verified")
        return PlainTextResponse(challenge)

    @app.post("/webhook")
    async def receive_webhook(request: Request, background_tasks: BackgroundTasks) -> dict[str, Any]:
        raw_body = await request.body()
        admitted = await whatsbot.dispatcher.ingest(raw_body, request.headers.get(SIGNATURE_HEADER))
        if admitted:
            background_tasks.add_task(whatsbot.dispatcher.dispatch_all, admitted)
        return {"status": "success"}

    @app.post("/test-webhook")
    async def rotate_credentials(body: CredentialRotation) -> JSONResponse:
        if whatsbot.config.is_production:
            return _error("Not found", 404)
        if not body.tenant_id:
            return _error("tenantId is required", 400)
        updates = {
            "whatsappAppSecret": body.app_secret or "",
            "verifyToken": body.verify_token or "",
            "whatsappToken": body.whatsapp_token or "",
        }
        try:
            changed = await whatsbot.config_store.rotate_credentials(body.tenant_id, updates)
        except KeyError:
            return _error(f"Unknown tenant {body.tenant_id}", 404)
        whatsbot.resolver.clear()
        return JSONResponse({"status": "ok", "tenantId": body.tenant_id, "updated": changed})

    @app.get("/api/n8n/status")
    async def posting_status_ping() -> dict[str, Any]:
        return {"status": "ok", "service": "workflow-status"}

    @app.post("/api/n8n/status")
    async def posting_status(body: PostingStatus, background_tasks: BackgroundTasks) -> JSONResponse:
        if not body.deal_id or not body.status:
            return _error("dealId and status are required", 400)
        try:
            deal = await whatsbot.deals.update_posting_status(
                body.deal_id,
                body.status,
                body.platforms_posted,
                body.platforms_failed,
                posted_at=body.completed_at,
                pipeline_id=body.pipeline_id,
            )
        except (sqlite3.Error, BotoCoreError, ClientError) as e:
            logger.error("posting_status_store_failed", deal_id=body.deal_id, error=str(e))
            return _error("Failed to record posting status", 500)
        if deal is None:
            return _error(f"Unknown deal {body.deal_id}", 404)
        logger.info("posting_status_recorded", deal_id=deal.deal_id, status=body.status)
        background_tasks.add_task(notify_deal_owner, whatsbot, deal)
        return JSONResponse({"success": True, "dealId": deal.deal_id, "status": body.status})

    @app.get("/health")
    async def health() -> dict[str, Any]:
        checks = await whatsbot.health()
        return {"status": "ok" if all(checks.values()) else "degraded", "services": checks}

    return app
