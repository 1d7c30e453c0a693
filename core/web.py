"""aiohttp front ends for the bot process and the pairing service."""

from __future__ import annotations

import html
import logging
import time
from pathlib import Path
from typing import Any, Dict, Optional

from aiohttp import web

from .config import BotConfig
from .connection import ConnectionManager
from .pairing import PairingError, PairingOrchestrator, PairingStatus
from .qr import render_svg

log = logging.getLogger(__name__)

PAIRING_PAGE = Path(__file__).with_name("data").joinpath("pairing.html")

manager_key = web.AppKey("manager", ConnectionManager)
config_key = web.AppKey("config", BotConfig)
orchestrator_key = web.AppKey("orchestrator", PairingOrchestrator)
started_key = web.AppKey("started_at", float)

NO_QR_PAGE = (
    "<html><body style=\"background:#111;color:#fff;font-family:sans-serif;display:flex;"
    "align-items:center;justify-content:center;height:100vh;margin:0\">"
    "<p>No QR available. The bot may already be connected, or not started yet. "
    "Refresh in a moment.</p></body></html>"
)

QR_PAGE = """<!DOCTYPE html><html><head><title>{name} · QR</title></head>
<body style="display:flex;justify-content:center;align-items:center;height:100vh;margin:0;background:#030712;font-family:sans-serif">
<div style="text-align:center;color:#e2e8f0">
<h2 style="color:#00ff88;margin-bottom:20px">🤖 {name} · Scan QR Code</h2>
<div style="width:280px;height:280px;margin:auto;background:#fff;border-radius:12px;padding:8px">{svg}</div>
<p style="margin-top:16px;color:#94a3b8;font-size:13px">Open WhatsApp → Linked Devices → Link a Device</p>
<p style="color:#94a3b8;font-size:12px">Refresh page if QR expires</p>
<p style="margin-top:12px"><a href="/" style="color:#00ff88;font-size:13px">Back to pairing site</a></p>
</div></body></html>"""


def _uptime(app: web.Application) -> int:
    return int(time.time() - app[started_key])


def _error(message: str, status: int, /, **extra: Any) -> web.Response:
    payload: Dict[str, Any] = {"success": False, "error": message}
    payload.update(extra)
    return web.json_response(payload, status=status)


async def _read_phone(request: web.Request) -> Optional[str]:
    try:
        body = await request.json()
    except ValueError:
        return None
    if not isinstance(body, dict):
        return None
    phone = body.get("phone")
    return "" if phone is None else str(phone)


def render_pairing_page(
    bot_name: str, *, request_url: str, status_url: str = "", qr_link: str = "", qr_label: str = ""
) -> str:
    page = PAIRING_PAGE.read_text(encoding="utf-8")
    replacements = {
        "__BOT_NAME__": html.escape(bot_name),
        "__REQUEST_URL__": request_url,
        "__STATUS_URL__": status_url,
        "__QR_LINK__": qr_link,
        "__QR_LABEL__": qr_label,
    }
    for marker, value in replacements.items():
        page = page.replace(marker, value)
    return page


# ----- bot process -----
async def bot_index(request: web.Request) -> web.Response:
    config = request.app[config_key]
    page = render_pairing_page(
        config.bot_name, request_url="/api/pair", qr_link="/qr", qr_label="Scan a QR code instead"
    )
    return web.Response(text=page, content_type="text/html")


async def bot_pair(request: web.Request) -> web.Response:
    phone = await _read_phone(request)
    if phone is None:
        return _error("Invalid JSON body.", 400)
    try:
        code = await request.app[manager_key].request_pairing_code(phone)
    except PairingError as exc:
        return _error(exc.message, exc.status)
    return web.json_response({"success": True, "code": code})


async def bot_status(request: web.Request) -> web.Response:
    manager = request.app[manager_key]
    return web.json_response(
        {
            "connected": manager.is_open,
            "state": manager.state.value,
            "botName": request.app[config_key].bot_name,
            "uptime": _uptime(request.app),
        }
    )


async def bot_health(request: web.Request) -> web.Response:
    return web.json_response(
        {
            "status": "ok",
            "service": "whatsapp-bot",
            "connected": request.app[manager_key].is_open,
            "uptime": _uptime(request.app),
        }
    )


async def keep_alive(request: web.Request) -> web.Response:
    return web.json_response({"alive": True, "bot": request.app[config_key].bot_name})


async def bot_qr(request: web.Request) -> web.Response:
    payload = request.app[manager_key].latest_qr
    if not payload:
        return web.Response(text=NO_QR_PAGE, content_type="text/html")
    name = html.escape(request.app[config_key].bot_name)
    return web.Response(text=QR_PAGE.format(name=name, svg=render_svg(payload)), content_type="text/html")


def build_bot_app(
    manager: ConnectionManager, config: BotConfig, *, started_at: Optional[float] = None
) -> web.Application:
    app = web.Application()
    app[manager_key] = manager
    app[config_key] = config
    app[started_key] = time.time() if started_at is None else started_at
    app.router.add_get("/", bot_index)
    app.router.add_post("/api/pair", bot_pair)
    app.router.add_get("/api/status", bot_status)
    app.router.add_get("/health", bot_health)
    app.router.add_get("/keep-alive", keep_alive)
    app.router.add_get("/qr", bot_qr)
    return app


# ----- pairing service -----
async def pairing_index(request: web.Request) -> web.Response:
    page = render_pairing_page(
        "VORTE PRO Session",
        request_url="/api/request-code",
        status_url="/api/session-status/",
        qr_link="/health",
        qr_label="Service status",
    )
    return web.Response(text=page, content_type="text/html")


async def request_code(request: web.Request) -> web.Response:
    phone = await _read_phone(request)
    if phone is None:
        return _error("Invalid JSON body.", 400)
    try:
        token, code = await request.app[orchestrator_key].request_code(phone)
    except PairingError as exc:
        return _error(exc.message, exc.status)
    return web.json_response({"success": True, "code": code, "token": token})


async def session_status(request: web.Request) -> web.Response:
    token = request.match_info["token"]
    try:
        result = await request.app[orchestrator_key].poll_status(token)
    except PairingError as exc:
        return _error(exc.message, exc.status)
    if result.status is PairingStatus.ERROR:
        return _error("Failed to generate session. Try again.", 200, status=result.status.value)
    payload: Dict[str, Any] = {"success": True, "status": result.status.value}
    if result.credential_token:
        payload["sessionId"] = result.credential_token
    return web.json_response(payload)


async def pairing_health(request: web.Request) -> web.Response:
    return web.json_response(
        {
            "status": "ok",
            "activeSessions": len(request.app[orchestrator_key]),
            "uptime": _uptime(request.app),
        }
    )


def build_pairing_app(
    orchestrator: PairingOrchestrator, *, started_at: Optional[float] = None
) -> web.Application:
    app = web.Application()
    app[orchestrator_key] = orchestrator
    app[started_key] = time.time() if started_at is None else started_at
    app.router.add_get("/", pairing_index)
    app.router.add_post("/api/request-code", request_code)
    app.router.add_get("/api/session-status/{token}", session_status)
    app.router.add_get("/health", pairing_health)
    return app


async def start_site(app: web.Application, port: int, host: str = "0.0.0.0") -> web.AppRunner:
    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, host, port)
    await site.start()
    log.info("HTTP server listening on %s:%s", host, port)
    return runner
