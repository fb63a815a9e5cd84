"""
WhatsApp Bridge HTTP Service

FastAPI app that receives provider callbacks and exposes the tenant
operations of the bridge.

Responsibilities:
- Verify Meta webhook subscriptions and signatures
- Validate the Evolution API webhook key
- Hand callbacks to the inbound handler (record, notify, update status)
- Serve conversations, forced connection checks and settings refresh
- Return 200 to providers even on internal errors so they do not retry
"""

import json
import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, HTTPException, Query, Request, Response
from pydantic import BaseModel, Field

from basecore.db import init_db
from basecore.logging import setup_logging
from basecore.settings import Settings, get_settings
from whatsapp_bridge.contracts.event_types import BackendKind
from whatsapp_bridge.providers.evolution.webhook import extract_instance_name, validate_api_key
from whatsapp_bridge.providers.meta_cloud.webhook import validate_signature, verify_challenge
from whatsapp_bridge.service.runtime import BridgeRuntime

logger = logging.getLogger(__name__)

META_OBJECT = "whatsapp_business_account"


class SendMessageRequest(BaseModel):
    backend_kind: BackendKind
    contact_id: str = Field(min_length=1)
    body: str = Field(min_length=1)


def get_runtime(request: Request) -> BridgeRuntime:
    return request.app.state.runtime


def _load_json(body: bytes) -> dict[str, Any]:
    try:
        payload = json.loads(body)
    except json.JSONDecodeError:
        logger.warning("Invalid JSON payload")
        raise HTTPException(status_code=400, detail="Invalid JSON")

    if not isinstance(payload, dict):
        raise HTTPException(status_code=400, detail="Expected a JSON object")
    return payload


def create_app(runtime: BridgeRuntime | None = None, settings: Settings | None = None) -> FastAPI:
    """
    Create the FastAPI application.

    Args:
        runtime: Prebuilt runtime (tests); built from settings on startup when None
        settings: Settings override (tests); process settings when None
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        bridge = runtime
        if bridge is None:
            init_db()
            bridge = BridgeRuntime.build(schedule_polling=settings.BRIDGE_API_RUN_MONITOR)

        app.state.runtime = bridge
        if bridge.schedule_polling:
            await bridge.start_all()
        logger.info("WhatsApp bridge API started", extra={"monitoring": bridge.schedule_polling})

        yield

        await bridge.shutdown()
        logger.info("WhatsApp bridge API stopped")

    app = FastAPI(
        title="WhatsApp Bridge",
        description="Multi-tenant bridge between WhatsApp backends and tenant webhooks",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.settings = settings

    # =========================================================================
    # Health
    # =========================================================================

    @app.get("/health")
    async def health():
        """Health check endpoint."""
        return {"status": "healthy", "service": "whatsapp-bridge"}

    @app.get("/status")
    async def status(request: Request):
        return get_runtime(request).status()

    # =========================================================================
    # Provider callbacks
    # =========================================================================

    @app.get("/webhook/meta")
    async def verify_meta_webhook(
        hub_mode: str = Query(None, alias="hub.mode"),
        hub_verify_token: str = Query(None, alias="hub.verify_token"),
        hub_challenge: str = Query(None, alias="hub.challenge"),
    ):
        """
        Handle Meta webhook verification.

        Meta sends a GET request with hub.mode, hub.verify_token, and hub.challenge.
        We must return hub.challenge if the token matches.
        """
        challenge = verify_challenge(
            mode=hub_mode,
            token=hub_verify_token,
            challenge=hub_challenge,
            verify_token=settings.META_VERIFY_TOKEN,
        )
        if challenge is not None:
            return Response(content=challenge, media_type="text/plain")

        raise HTTPException(status_code=403, detail="Verification failed")

    @app.post("/webhook/meta")
    async def receive_meta_webhook(request: Request):
        """
        Receive a Meta Cloud API callback.

        Flow:
        1. Validate X-Hub-Signature-256 (when META_APP_SECRET is set)
        2. Resolve tenant by phone_number_id
        3. Record inbound messages and notify the tenant webhook
        4. Apply delivery statuses
        """
        body = await request.body()
        payload = _load_json(body)

        if settings.META_APP_SECRET:
            signature = request.headers.get("X-Hub-Signature-256", "")
            if not validate_signature(body, signature, settings.META_APP_SECRET):
                logger.warning("Invalid Meta webhook signature")
                raise HTTPException(status_code=403, detail="Invalid signature")

        if payload.get("object") != META_OBJECT:
            logger.debug(f"Ignoring Meta callback for object {payload.get('object')}")
            return {"status": "ignored", "reason": "unknown_object"}

        try:
            result = await get_runtime(request).inbound.handle_callback(BackendKind.CLOUD, payload)
        except Exception as e:
            logger.error(f"Error processing Meta webhook: {e}", exc_info=True)
            # Still return 200 to prevent Meta from retrying
            return {"status": "error", "message": str(e)}

        return {"status": "accepted", **result.to_dict()}

    @app.post("/webhook/evolution")
    async def receive_evolution_webhook(request: Request):
        """Receive an Evolution API callback (messages, statuses, connection and QR updates)."""
        body = await request.body()
        payload = _load_json(body)

        if settings.EVOLUTION_WEBHOOK_API_KEY:
            if not validate_api_key(dict(request.headers), settings.EVOLUTION_WEBHOOK_API_KEY):
                logger.warning("Invalid Evolution API key")
                raise HTTPException(status_code=403, detail="Invalid API key")

        if not extract_instance_name(payload):
            return {"status": "ignored", "reason": "no_instance"}

        try:
            result = await get_runtime(request).inbound.handle_callback(BackendKind.QR, payload)
        except Exception as e:
            logger.error(f"Error processing Evolution webhook: {e}", exc_info=True)
            return {"status": "error", "message": str(e)}

        return {"status": "accepted", **result.to_dict()}

    # =========================================================================
    # Tenant operations
    # =========================================================================

    @app.get("/tenants/{tenant_id}/conversations/{contact_id}")
    async def get_conversation(tenant_id: int, contact_id: str, request: Request):
        """Unified conversation across both backends, oldest first."""
        entries = get_runtime(request).store.get_conversation(tenant_id, contact_id)
        return {
            "tenantId": tenant_id,
            "contactId": contact_id,
            "messages": [entry.to_dict() for entry in entries],
        }

    @app.get("/tenants/{tenant_id}/contacts")
    async def list_contacts(tenant_id: int, request: Request, limit: int = Query(100, ge=1, le=1000)):
        contacts = get_runtime(request).store.list_contacts(tenant_id, limit=limit)
        return {
            "tenantId": tenant_id,
            "contacts": [
                {
                    "contactId": contact.contact_id,
                    "lastMessageAt": contact.last_message_at.isoformat(),
                    "messageCount": contact.message_count,
                }
                for contact in contacts
            ],
        }

    @app.post("/tenants/{tenant_id}/messages")
    async def send_message(tenant_id: int, message: SendMessageRequest, request: Request):
        outcome = await get_runtime(request).outbound.send_message(
            tenant_id=tenant_id,
            backend_kind=message.backend_kind,
            contact_id=message.contact_id,
            body=message.body,
        )
        if not outcome.sent:
            raise HTTPException(status_code=502, detail=outcome.error or "Send failed")

        return {
            "status": "sent",
            "messageId": str(outcome.message_id),
            "providerMessageId": outcome.provider_message_id,
        }

    @app.post("/tenants/{tenant_id}/connection/check")
    async def force_check(tenant_id: int, request: Request):
        """Poll every backend of the tenant now; events follow the usual change rule."""
        outcomes = await get_runtime(request).force_check(tenant_id)
        if not outcomes:
            raise HTTPException(status_code=404, detail="Tenant has no monitored backend")
        return {"tenantId": tenant_id, "results": [outcome.to_dict() for outcome in outcomes]}

    @app.post("/tenants/{tenant_id}/connection/{backend_kind}/connect")
    async def connect(tenant_id: int, backend_kind: BackendKind, request: Request):
        outcome = await get_runtime(request).connect(tenant_id, backend_kind)
        if outcome.skipped and outcome.error == "not_monitored":
            raise HTTPException(status_code=404, detail="Backend not configured for tenant")
        return outcome.to_dict()

    @app.post("/tenants/{tenant_id}/settings/refresh")
    async def refresh_settings(tenant_id: int, request: Request):
        """Signal that the tenant's settings changed."""
        active = await get_runtime(request).refresh_tenant(tenant_id)
        return {"tenantId": tenant_id, "active": active}

    return app


def main() -> None:
    """Entry point: serve the API with uvicorn."""
    import uvicorn

    setup_logging()
    uvicorn.run(create_app(), host="0.0.0.0", port=8090)


if __name__ == "__main__":
    main()
