"""FastAPI transcript surface for Sona Wallet."""

from __future__ import annotations

import json
import logging
from pathlib import Path

import uvicorn
from fastapi import FastAPI, Query, WebSocket, WebSocketDisconnect

from sona_wallet.core.events import Event
from sona_wallet.core.session import WalletChatSession
from sona_wallet.errors import WalletError

logger = logging.getLogger("sona_wallet.api")

_app = FastAPI(title="Sona Wallet")
_session: WalletChatSession | None = None
_base_path: Path | None = None
_websockets: list[WebSocket] = []


async def _broadcast_ws(event: str, data: dict) -> None:
    """Send an event to all connected WebSocket clients."""
    payload = json.dumps({"event": event, "data": data}, default=str)
    disconnected = []
    for ws in _websockets:
        try:
            await ws.send_text(payload)
        except Exception:
            disconnected.append(ws)
    for ws in disconnected:
        _websockets.remove(ws)


async def _forward_event(event: Event) -> None:
    """Bridge bus events to WebSocket clients."""
    await _broadcast_ws(event.topic, event.data)


@_app.on_event("startup")
async def startup():
    global _session
    _session = await WalletChatSession.load(_base_path)
    _session.bus.subscribe("*", _forward_event)
    logger.info(f"API started for '{_session.config.name}' on {_session.config.chain.rpc_url}")


@_app.on_event("shutdown")
async def shutdown():
    global _session
    if _session:
        await _session.shutdown()
        _session = None


# ------------------------------------------------------------------
# Chat
# ------------------------------------------------------------------


@_app.post("/api/chat")
async def api_chat(body: dict):
    if not _session:
        return {"error": "Session not loaded"}
    try:
        replies = await _session.chat(str(body.get("message", "")))
    except ValueError as e:
        return {"error": str(e)}
    return {"messages": [m.to_dict() for m in replies]}


@_app.get("/api/conversation")
async def api_conversation(limit: int = Query(100)):
    if not _session:
        return []
    return [m.to_dict() for m in _session.transcript.messages()[-limit:]]


# ------------------------------------------------------------------
# Wallet
# ------------------------------------------------------------------


@_app.get("/api/wallet")
async def api_wallet():
    if not _session:
        return {"error": "Session not loaded"}
    return _session.store.snapshot().to_dict()


@_app.post("/api/wallet/connect")
async def api_wallet_connect():
    if not _session:
        return {"error": "Session not loaded"}
    try:
        identity = await _session.connect()
    except WalletError as e:
        return {"error": e.user_message()}
    return {"identity": identity, "wallet": _session.store.snapshot().to_dict()}


@_app.post("/api/wallet/disconnect")
async def api_wallet_disconnect():
    if not _session:
        return {"error": "Session not loaded"}
    await _session.disconnect()
    return {"status": "disconnected"}


@_app.post("/api/wallet/refresh")
async def api_wallet_refresh():
    if not _session:
        return {"error": "Session not loaded"}
    snapshot = await _session.refresh()
    return snapshot.to_dict()


@_app.get("/api/transactions")
async def api_transactions(limit: int = Query(50)):
    if not _session:
        return []
    return await _session.transactions(limit)


@_app.get("/api/status")
async def api_status():
    return _session.status() if _session else {}


# ------------------------------------------------------------------
# WebSocket
# ------------------------------------------------------------------


@_app.websocket("/ws")
async def websocket_endpoint(ws: WebSocket):
    await ws.accept()
    _websockets.append(ws)
    try:
        while True:
            data = await ws.receive_text()
            # Clients may chat over the socket too; replies arrive as chat.message events
            try:
                msg = json.loads(data)
            except json.JSONDecodeError:
                continue
            if msg.get("action") == "chat" and _session and msg.get("message"):
                await _session.chat(str(msg["message"]))
    except WebSocketDisconnect:
        if ws in _websockets:
            _websockets.remove(ws)


# ------------------------------------------------------------------
# Runner
# ------------------------------------------------------------------


def run_server(host: str = "127.0.0.1", port: int = 8420, base_path: Path | None = None) -> None:
    global _base_path
    _base_path = base_path
    uvicorn.run(_app, host=host, port=port, log_level="info")
