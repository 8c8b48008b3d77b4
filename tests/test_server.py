"""Tests for the HTTP gateway server."""

import re
from datetime import datetime
from pathlib import Path

import pytest
import pytest_asyncio
from aiohttp import test_utils

from clawwatch.channels.base import MessagingGateway
from clawwatch.config.schema import Config
from clawwatch.gateway.server import GatewayServer, format_relay_message
from clawwatch.pairing.errors import DeliveryError
from clawwatch.pairing.registry import Owner, PairingRegistry
from clawwatch.pairing.store import PairingStore


# ── Helpers ─────────────────────────────────────────────────────────


class FakeGateway(MessagingGateway):
    def __init__(self):
        self.sent: list[tuple[int | str, str]] = []
        self.fail = False

    async def send_message(self, chat_id, text):
        if self.fail:
            raise DeliveryError("boom")
        self.sent.append((chat_id, text))


class FakeClock:
    def __init__(self, now: int = 1_700_000_000_000):
        self.now = now

    def __call__(self) -> int:
        return self.now


OWNER = Owner(id=42, chat_id=42, first_name="Ada", username="ada")
OVERSIZED_INT = "9" * 5000
DEEPLY_NESTED = "[" * 100_000 + "]" * 100_000
JSON_HEADERS = {"Content-Type": "application/json"}


def webhook_update(text, user_id=42, chat_id=42):
    return {
        "update_id": 1,
        "message": {
            "message_id": 1,
            "from": {"id": user_id, "first_name": "Ada", "username": "ada"},
            "chat": {"id": chat_id, "type": "private"},
            "text": text,
        },
    }


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def server(tmp_path: Path, clock):
    config = Config(api_base_url="https://claw.example/v1")
    config.pairing.store_path = str(tmp_path / "pairings.json")
    return GatewayServer(
        config=config,
        registry=PairingRegistry(clock=clock),
        gateway=FakeGateway(),
        store=PairingStore(config.store_path),
    )


@pytest_asyncio.fixture
async def client(server):
    test_client = test_utils.TestClient(test_utils.TestServer(server.create_app()))
    await test_client.start_server()
    yield test_client
    await test_client.close()


# ── Info / health ───────────────────────────────────────────────────


class TestInfo:
    @pytest.mark.asyncio
    async def test_health(self, client):
        resp = await client.get("/health")
        assert resp.status == 200
        assert await resp.json() == {"status": "ok"}

    @pytest.mark.asyncio
    async def test_service_info(self, client, server):
        server.registry.issue(OWNER)
        resp = await client.get("/")
        data = await resp.json()
        assert data["service"] == "ClawWatch Setup"
        assert "/api/verify" in data["endpoints"]
        assert data["pendingCodes"] == 1

    @pytest.mark.asyncio
    async def test_service_info_skips_expired_codes(self, client, server, clock):
        server.registry.issue(OWNER)
        clock.now += 301_000
        resp = await client.get("/")
        assert (await resp.json())["pendingCodes"] == 0
        assert len(server.registry) == 0

    @pytest.mark.asyncio
    @pytest.mark.parametrize("method", ["PUT", "DELETE", "PATCH"])
    async def test_other_methods_get_info_with_cors(self, client, method):
        resp = await client.request(method, "/")
        assert resp.status == 200
        assert (await resp.json())["service"] == "ClawWatch Setup"
        assert resp.headers["Access-Control-Allow-Origin"] == "*"


# ── Verify ──────────────────────────────────────────────────────────


class TestVerify:
    @pytest.mark.asyncio
    async def test_success(self, client, server):
        code = server.registry.issue(OWNER)

        resp = await client.post("/api/verify", json={"code": code})
        assert resp.status == 200
        data = await resp.json()
        assert data["success"] is True
        config = data["config"]
        assert config["userId"] == 42
        assert config["chatId"] == 42
        assert config["username"] == "ada"
        assert config["firstName"] == "Ada"
        assert config["apiEndpoint"] == "https://claw.example/v1"
        assert config["sessionToken"].startswith("cw_")

        device = server.store.find_session(42, config["sessionToken"])
        assert device is not None

    @pytest.mark.asyncio
    async def test_replay_is_not_found(self, client, server):
        code = server.registry.issue(OWNER)
        await client.post("/api/verify", json={"code": code})

        resp = await client.post("/api/verify", json={"code": code})
        assert resp.status == 404
        assert await resp.json() == {"success": False, "error": "Invalid or expired code"}

    @pytest.mark.asyncio
    async def test_numeric_code(self, client, server):
        code = server.registry.issue(OWNER)
        resp = await client.post("/api/verify", json={"code": int(code)})
        assert resp.status == 200

    @pytest.mark.asyncio
    async def test_invalid_format(self, client, server):
        server.registry.issue(OWNER)
        resp = await client.post("/api/verify", json={"code": "12a456"})
        assert resp.status == 400
        assert (await resp.json())["error"] == "Invalid code format"
        assert server.registry.pending_count() == 1

    @pytest.mark.asyncio
    async def test_missing_code(self, client):
        resp = await client.post("/api/verify", json={})
        assert resp.status == 400
        assert (await resp.json())["error"] == "Code is required"

    @pytest.mark.asyncio
    async def test_non_object_body(self, client):
        resp = await client.post("/api/verify", data="not json")
        assert resp.status == 400
        assert (await resp.json())["success"] is False

    @pytest.mark.asyncio
    async def test_unparseable_number_is_missing_code(self, client):
        body = '{"code": ' + OVERSIZED_INT + '}'
        resp = await client.post("/api/verify", data=body, headers=JSON_HEADERS)
        assert resp.status == 400
        assert await resp.json() == {"success": False, "error": "Code is required"}
        assert resp.headers["Access-Control-Allow-Origin"] == "*"

    @pytest.mark.asyncio
    async def test_expired(self, client, server, clock):
        code = server.registry.issue(OWNER)
        clock.now += 301_000

        resp = await client.post("/api/verify", json={"code": code})
        assert resp.status == 410
        assert (await resp.json())["error"] == "Code has expired. Please request a new one."

        clock.now += 1_000
        resp = await client.post("/api/verify", json={"code": code})
        assert resp.status == 404

    @pytest.mark.asyncio
    async def test_store_failure_is_server_error(self, client, server, monkeypatch):
        from clawwatch.pairing.errors import StoreError

        def broken(config):
            raise StoreError("disk full")

        monkeypatch.setattr(server.store, "record", broken)
        code = server.registry.issue(OWNER)
        resp = await client.post("/api/verify", json={"code": code})
        assert resp.status == 500
        assert await resp.json() == {"success": False, "error": "Server error"}

    @pytest.mark.asyncio
    async def test_cors_headers(self, client):
        resp = await client.post("/api/verify", json={"code": "123456"})
        assert resp.headers["Access-Control-Allow-Origin"] == "*"
        assert resp.headers["Access-Control-Allow-Methods"] == "POST, OPTIONS"
        assert resp.headers["Access-Control-Allow-Headers"] == "Content-Type"

    @pytest.mark.asyncio
    async def test_preflight(self, client):
        resp = await client.options("/api/verify")
        assert resp.status == 200
        assert resp.headers["Access-Control-Allow-Origin"] == "*"

    @pytest.mark.asyncio
    async def test_get_not_allowed(self, client):
        resp = await client.get("/api/verify")
        assert resp.status == 405


# ── Webhook ─────────────────────────────────────────────────────────


class TestWebhook:
    @pytest.mark.asyncio
    async def test_connect_then_verify(self, client, server):
        resp = await client.post("/api/webhook", json=webhook_update("/connect"))
        assert resp.status == 200
        assert await resp.json() == {"ok": True}

        chat_id, text = server.gateway.sent[0]
        assert chat_id == 42
        code = re.search(r"<code>(\d{6})</code>", text).group(1)

        resp = await client.post("/api/verify", json={"code": code})
        assert (await resp.json())["config"]["userId"] == 42

    @pytest.mark.asyncio
    @pytest.mark.parametrize("body", ["[1, 2]", "null", "garbage", '{"update_id": 5}'])
    async def test_malformed_body_acknowledged(self, client, server, body):
        resp = await client.post(
            "/api/webhook", data=body, headers={"Content-Type": "application/json"}
        )
        assert resp.status == 200
        assert await resp.json() == {"ok": True}
        assert server.gateway.sent == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("body", [
        '{"message": {"text": "/connect", "n": ' + OVERSIZED_INT + '}}',
        DEEPLY_NESTED,
    ], ids=["oversized-int", "deeply-nested"])
    async def test_unparseable_body_acknowledged(self, client, server, body):
        resp = await client.post("/api/webhook", data=body, headers=JSON_HEADERS)
        assert resp.status == 200
        assert await resp.json() == {"ok": True}
        assert server.gateway.sent == []
        assert server.registry.pending_count() == 0

    @pytest.mark.asyncio
    async def test_delivery_failure(self, client, server):
        server.gateway.fail = True
        resp = await client.post("/api/webhook", json=webhook_update("/connect"))
        assert resp.status == 500
        assert await resp.json() == {"error": "Internal error"}
        # The code was issued and stays redeemable until it expires
        assert server.registry.pending_count() == 1

    @pytest.mark.asyncio
    async def test_secret_token(self, client, server):
        server.config.webhook_secret = "s3cret"

        resp = await client.post("/api/webhook", json=webhook_update("/connect"))
        assert resp.status == 403
        assert server.registry.pending_count() == 0

        resp = await client.post(
            "/api/webhook",
            json=webhook_update("/connect"),
            headers={"X-Telegram-Bot-Api-Secret-Token": "s3cret"},
        )
        assert resp.status == 200
        assert server.registry.pending_count() == 1

    @pytest.mark.asyncio
    async def test_get_not_allowed(self, client):
        resp = await client.get("/api/webhook")
        assert resp.status == 405


# ── Send ────────────────────────────────────────────────────────────


async def _pair(client, server) -> dict:
    code = server.registry.issue(OWNER)
    resp = await client.post("/api/verify", json={"code": code})
    return (await resp.json())["config"]


class TestSend:
    @pytest.mark.asyncio
    async def test_relay(self, client, server):
        config = await _pair(client, server)

        resp = await client.post("/api/send", json={
            "chatId": config["chatId"],
            "sessionToken": config["sessionToken"],
            "message": "Hello <from> watch",
        })
        assert resp.status == 200
        assert await resp.json() == {"success": True}

        chat_id, text = server.gateway.sent[-1]
        assert str(chat_id) == "42"
        assert "via ClawWatch]" in text
        assert text.endswith("Hello &lt;from&gt; watch")

    @pytest.mark.asyncio
    async def test_unknown_session(self, client, server):
        await _pair(client, server)
        resp = await client.post("/api/send", json={
            "chatId": 42, "sessionToken": "cw_forged", "message": "hi",
        })
        assert resp.status == 401
        assert (await resp.json())["error"] == "Unknown session"
        assert server.gateway.sent == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("body", [{}, {"chatId": 42}, {"message": "hi"}, {"chatId": 42, "message": ""}])
    async def test_missing_fields(self, client, body):
        resp = await client.post("/api/send", json=body)
        assert resp.status == 400
        assert (await resp.json())["error"] == "Missing chatId or message"

    @pytest.mark.asyncio
    async def test_delivery_failure(self, client, server):
        config = await _pair(client, server)
        server.gateway.fail = True
        resp = await client.post("/api/send", json={
            "chatId": 42, "sessionToken": config["sessionToken"], "message": "hi",
        })
        assert resp.status == 500
        assert (await resp.json())["error"] == "Failed to send"

    @pytest.mark.asyncio
    async def test_cors_headers(self, client):
        resp = await client.options("/api/send")
        assert resp.status == 200
        assert resp.headers["Access-Control-Allow-Methods"] == "POST, OPTIONS"


# ── Combined dispatcher ─────────────────────────────────────────────


class TestDispatch:
    @pytest.mark.asyncio
    async def test_webhook_body(self, client, server):
        resp = await client.post("/", json=webhook_update("/connect"))
        assert await resp.json() == {"ok": True}
        assert server.registry.pending_count() == 1

    @pytest.mark.asyncio
    async def test_send_body(self, client, server):
        config = await _pair(client, server)
        resp = await client.post("/", json={
            "chatId": 42, "sessionToken": config["sessionToken"], "message": "hi",
        })
        assert await resp.json() == {"success": True}

    @pytest.mark.asyncio
    async def test_verify_body(self, client, server):
        code = server.registry.issue(OWNER)
        resp = await client.post("/", json={"code": code})
        assert (await resp.json())["success"] is True
        assert resp.headers["Access-Control-Allow-Origin"] == "*"

    @pytest.mark.asyncio
    async def test_preflight(self, client):
        resp = await client.options("/")
        assert resp.status == 200
        assert resp.headers["Access-Control-Allow-Methods"] == "POST, OPTIONS"


# ── Relay formatting ────────────────────────────────────────────────


class TestFormatRelayMessage:
    def test_format(self):
        text = format_relay_message("On my way", now=datetime(2026, 1, 1, 9, 5))
        assert text == "⌚ [09:05 via ClawWatch]\n\nOn my way"


# ── Lifecycle ───────────────────────────────────────────────────────


class TestBackgroundSweep:
    @pytest.mark.asyncio
    async def test_sweep_loop_removes_expired(self, server, clock):
        import asyncio

        server.registry.issue(OWNER)
        clock.now += 301_000

        task = asyncio.create_task(server._sweep_loop(0.01))
        await asyncio.sleep(0.05)
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

        assert server.registry.pending_count() == 0
