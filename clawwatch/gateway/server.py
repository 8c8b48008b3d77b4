"""HTTP API server for the Telegram webhook and the watch app."""

import asyncio
import hmac
import html
from datetime import datetime
from typing import Any, Awaitable, Callable

from aiohttp import web
from loguru import logger

from clawwatch.bot.commands import SetupBot
from clawwatch.channels.base import MessagingGateway
from clawwatch.config.schema import Config
from clawwatch.pairing.errors import DeliveryError, PairingError
from clawwatch.pairing.registry import PairingRegistry
from clawwatch.pairing.session import ConnectionConfig
from clawwatch.pairing.store import PairingStore

SERVICE_NAME = "ClawWatch Setup"
ENDPOINTS = ["/api/webhook", "/api/verify", "/api/send"]
CORS_PATHS = {"/", "/api/verify", "/api/send"}
SECRET_HEADER = "X-Telegram-Bot-Api-Secret-Token"

Handler = Callable[[web.Request], Awaitable[web.StreamResponse]]


def _error(message: str, status: int) -> web.Response:
    return web.json_response({"success": False, "error": message}, status=status)


def format_relay_message(message: str, now: datetime | None = None) -> str:
    """Prefix a watch message with the time it was relayed."""
    time_str = (now or datetime.now()).strftime("%H:%M")
    return f"⌚ [{time_str} via ClawWatch]\n\n{html.escape(message)}"


class GatewayServer:
    """
    HTTP API server for the setup bot and the watch app.

    Provides endpoints for:
    - Telegram webhook updates (POST /api/webhook)
    - Code verification from the watch (POST /api/verify)
    - Message relay from the watch (POST /api/send)
    - Service info (GET /) and health check (GET /health)
    """

    def __init__(
        self,
        config: Config,
        registry: PairingRegistry,
        gateway: MessagingGateway,
        store: PairingStore,
    ):
        """
        Initialize the gateway server.

        Args:
            config: Application configuration.
            registry: Pending setup codes, shared by webhook and verify.
            gateway: Outbound messaging to Telegram.
            store: Record of completed pairings.
        """
        self.config = config
        self.registry = registry
        self.gateway = gateway
        self.store = store
        self.bot = SetupBot(registry, gateway)
        self.host = config.gateway.host
        self.port = config.gateway.port
        self._app: web.Application | None = None
        self._runner: web.AppRunner | None = None
        self._site: web.TCPSite | None = None
        self._sweep_task: asyncio.Task | None = None

    def create_app(self) -> web.Application:
        """Create the aiohttp application."""
        app = web.Application(middlewares=[self._cors_middleware])
        app.router.add_get("/health", self._handle_health)
        app.router.add_route("*", "/", self._handle_root)
        app.router.add_route("*", "/api/webhook", self._handle_webhook)
        app.router.add_route("*", "/api/verify", self._handle_verify)
        app.router.add_route("*", "/api/send", self._handle_send)
        return app

    @web.middleware
    async def _cors_middleware(self, request: web.Request, handler: Handler) -> web.StreamResponse:
        response = await handler(request)
        if request.path in CORS_PATHS:
            response.headers["Access-Control-Allow-Origin"] = self.config.gateway.cors_origin
            response.headers["Access-Control-Allow-Methods"] = "POST, OPTIONS"
            response.headers["Access-Control-Allow-Headers"] = "Content-Type"
        return response

    async def _read_json(self, request: web.Request) -> Any:
        """Parse the request body, or None if it is not JSON."""
        try:
            return await request.json()
        except (ValueError, RecursionError):
            return None

    def _webhook_authorized(self, request: web.Request) -> bool:
        secret = self.config.webhook_secret
        if not secret:
            return True
        provided = request.headers.get(SECRET_HEADER, "")
        return hmac.compare_digest(provided.encode(), secret.encode())

    async def _handle_health(self, request: web.Request) -> web.Response:
        """Health check endpoint."""
        return web.json_response({"status": "ok"})

    async def _handle_info(self, request: web.Request) -> web.Response:
        self.registry.sweep()
        return web.json_response({
            "service": SERVICE_NAME,
            "endpoints": ENDPOINTS,
            "pendingCodes": self.registry.pending_count(),
        })

    async def _handle_preflight(self, request: web.Request) -> web.Response:
        return web.Response(status=200)

    async def _handle_root(self, request: web.Request) -> web.Response:
        if request.method == "POST":
            return await self._handle_dispatch(request)
        if request.method == "OPTIONS":
            return await self._handle_preflight(request)
        return await self._handle_info(request)

    async def _handle_dispatch(self, request: web.Request) -> web.Response:
        """Route a POST to / the way a single-function deployment receives it."""
        data = await self._read_json(request)
        if isinstance(data, dict) and data.get("message") and not data.get("chatId"):
            return await self._webhook(request, data)
        if isinstance(data, dict) and data.get("chatId") and data.get("message"):
            return await self._send(data)
        return await self._verify(data)

    async def _handle_webhook(self, request: web.Request) -> web.Response:
        if request.method != "POST":
            return web.json_response({"error": "Method not allowed"}, status=405)
        return await self._webhook(request, await self._read_json(request))

    async def _handle_verify(self, request: web.Request) -> web.Response:
        if request.method == "OPTIONS":
            return await self._handle_preflight(request)
        if request.method != "POST":
            return _error("Method not allowed", 405)
        return await self._verify(await self._read_json(request))

    async def _handle_send(self, request: web.Request) -> web.Response:
        if request.method == "OPTIONS":
            return await self._handle_preflight(request)
        if request.method != "POST":
            return _error("Method not allowed", 405)
        return await self._send(await self._read_json(request))

    async def _webhook(self, request: web.Request, data: Any) -> web.Response:
        """
        Handle a Telegram update.

        Bodies that are not updates with message text are acknowledged and
        ignored so Telegram does not retry them.
        """
        if not self._webhook_authorized(request):
            logger.warning("Rejected webhook call with a bad secret token")
            return web.json_response({"ok": False}, status=403)

        try:
            await self.bot.handle_update(data)
        except DeliveryError as e:
            logger.error(f"Webhook delivery failed: {e}")
            return web.json_response({"error": "Internal error"}, status=500)
        except Exception:
            logger.exception("Webhook error")
            return web.json_response({"error": "Internal error"}, status=500)

        return web.json_response({"ok": True})

    async def _verify(self, data: Any) -> web.Response:
        """
        Redeem a setup code submitted by the watch.

        Expected JSON body:
        {"code": "482913"}

        Returns:
        {"success": true, "config": {userId, chatId, username, firstName,
                                     apiEndpoint, sessionToken}}
        """
        code = data.get("code") if isinstance(data, dict) else None
        logger.info(f"Verify attempt, pending codes: {self.registry.pending_count()}")

        try:
            pending = self.registry.redeem(code)
            connection = ConnectionConfig.from_pending(
                pending,
                api_endpoint=self.config.api_base_url,
                token_prefix=self.config.pairing.session_token_prefix,
            )
            self.store.record(connection)
        except PairingError as e:
            logger.warning(f"Verify failed ({e.status}): {e.message}")
            return _error(e.message, e.status)
        except Exception:
            logger.exception("Verify error")
            return _error("Server error", 500)

        logger.info(f"Watch connected for user {connection.user_id}")
        return web.json_response({"success": True, "config": connection.to_dict()})

    async def _send(self, data: Any) -> web.Response:
        """
        Relay a message from the watch to the paired chat.

        Expected JSON body:
        {"chatId": 42, "sessionToken": "cw_...", "message": "text"}
        """
        if not isinstance(data, dict):
            data = {}
        chat_id = data.get("chatId")
        message = data.get("message")
        if not chat_id or not isinstance(message, str) or not message.strip():
            return _error("Missing chatId or message", 400)

        try:
            device = self.store.find_session(chat_id, data.get("sessionToken") or "")
            if device is None:
                logger.warning(f"Relay rejected for chat {chat_id}: unknown session")
                return _error("Unknown session", 401)

            await self.gateway.send_message(device.chat_id, format_relay_message(message))
        except DeliveryError as e:
            logger.error(f"Relay to chat {chat_id} failed: {e}")
            return _error("Failed to send", 500)
        except Exception:
            logger.exception("Send error")
            return _error("Server error", 500)

        return web.json_response({"success": True})

    async def _sweep_loop(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            removed = self.registry.sweep()
            if removed:
                logger.debug(f"Background sweep removed {removed} code(s)")

    async def start(self) -> None:
        """Start the HTTP server."""
        await self.gateway.start()
        self._app = self.create_app()
        self._runner = web.AppRunner(self._app)
        await self._runner.setup()
        self._site = web.TCPSite(self._runner, self.host, self.port)
        await self._site.start()

        interval = self.config.pairing.sweep_interval_seconds
        if interval > 0:
            self._sweep_task = asyncio.create_task(self._sweep_loop(interval))

        logger.info(f"Gateway API listening on http://{self.host}:{self.port}")

    async def stop(self) -> None:
        """Stop the HTTP server."""
        if self._sweep_task:
            self._sweep_task.cancel()
            try:
                await self._sweep_task
            except asyncio.CancelledError:
                pass
            self._sweep_task = None
        if self._site:
            await self._site.stop()
        if self._runner:
            await self._runner.cleanup()
        await self.gateway.stop()
        logger.info("Gateway API stopped")
