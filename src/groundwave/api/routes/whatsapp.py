"""WhatsApp pairing, status and gateway webhook."""

from __future__ import annotations

import json

import structlog
from fastapi import APIRouter, BackgroundTasks, Depends, Request, status
from fastapi.responses import JSONResponse, RedirectResponse

from groundwave.auth.dependencies import require_admin, require_sensitive_access
from groundwave.auth.sessions import add_flash
from groundwave.config import settings
from groundwave.db.models import User, WebSession
from groundwave.errors import StateError
from groundwave.whatsapp.client import WhatsAppClient, get_client
from groundwave.whatsapp.gateway import parse_webhook, verify_webhook_signature

router = APIRouter(prefix="/whatsapp", tags=["whatsapp"])
log = structlog.get_logger()

WEBHOOK_SIGNATURE_HEADER = "x-webhook-hmac"
UNAVAILABLE = "unavailable"


def _back() -> RedirectResponse:
    return RedirectResponse(url="/whatsapp", status_code=status.HTTP_303_SEE_OTHER)


def status_payload(client: WhatsAppClient | None) -> dict:
    if client is None:
        return {"status": UNAVAILABLE, "qrCode": "", "connected": False}
    return {
        "status": str(client.status),
        "qrCode": client.qr_code,
        "connected": client.is_connected,
    }


async def _connect_in_background(client: WhatsAppClient) -> None:
    try:
        await client.connect()
    except StateError as e:
        log.warning("WhatsApp connect failed", error=e.message)


@router.get("")
async def whatsapp_page(_admin: User = Depends(require_admin)) -> dict:
    client = get_client()
    return {
        "enabled": client is not None,
        "paired": client is not None and client.device.id is not None,
        **status_payload(client),
    }


@router.get("/status")
async def whatsapp_status(_admin: User = Depends(require_admin)) -> dict:
    return status_payload(get_client())


@router.post("/connect")
async def whatsapp_connect(
    background: BackgroundTasks,
    _admin: User = Depends(require_admin),
    ws: WebSession = Depends(require_sensitive_access),
) -> RedirectResponse:
    client = get_client()
    if client is None:
        add_flash(ws, "error", "WhatsApp is not configured")
        return _back()
    background.add_task(_connect_in_background, client)
    add_flash(ws, "info", "Connecting to WhatsApp")
    return _back()


@router.post("/disconnect")
async def whatsapp_disconnect(
    _admin: User = Depends(require_admin),
    ws: WebSession = Depends(require_sensitive_access),
) -> RedirectResponse:
    client = get_client()
    if client is None:
        add_flash(ws, "error", "WhatsApp is not configured")
        return _back()
    try:
        await client.logout()
    except StateError as e:
        log.warning("WhatsApp logout failed", error=e.message)
        add_flash(ws, "error", "Failed to disconnect WhatsApp")
        return _back()
    add_flash(ws, "success", "WhatsApp disconnected")
    return _back()


@router.post("/webhook")
async def whatsapp_webhook(request: Request) -> JSONResponse:
    """Events pushed by the WAHA gateway."""
    raw = await request.body()
    if not verify_webhook_signature(
        raw,
        request.headers.get(WEBHOOK_SIGNATURE_HEADER),
        settings.waha_webhook_key.get_secret_value(),
    ):
        log.warning("WhatsApp webhook signature rejected")
        return JSONResponse(status_code=status.HTTP_401_UNAUTHORIZED, content={"error": "bad signature"})

    try:
        body = json.loads(raw)
    except ValueError:
        return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"error": "invalid body"})
    if not isinstance(body, dict):
        return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"error": "invalid body"})

    client = get_client()
    event = parse_webhook(body)
    if client is None or event is None:
        return JSONResponse({"ok": True, "handled": False})
    await client.handle_event(event)
    return JSONResponse({"ok": True, "handled": True})
