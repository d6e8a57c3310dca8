"""
Backup client against an in-process server implementing the remote
contract: GET load-backup returns the latest snapshot, POST save-backup
stores one under a timestamped key plus "latest.json".
"""

import pytest
from aiohttp import web
from aiohttp import test_utils

from signal_ledger.backup.client import BackupClient, push_store, restore_store
from signal_ledger.utils.exceptions import BackupAuthError, BackupError
from signal_ledger.utils.logger import sanitize_log_data

TOKEN = "s3cret"
BLOBS = web.AppKey("blobs", dict)


def make_app(token=TOKEN):
    blobs = {}

    def authorized(request):
        return not token or request.headers.get("X-Backup-Token") == token

    async def load(request):
        if not authorized(request):
            return web.Response(status=401, text="Unauthorized")
        key = request.query.get("key", "latest.json")
        if key not in blobs:
            return web.Response(status=404, text="Not Found")
        return web.json_response(blobs[key])

    async def save(request):
        if not authorized(request):
            return web.Response(status=401, text="Unauthorized")
        try:
            payload = await request.json()
        except ValueError:
            return web.Response(status=400, text="Invalid JSON")
        version_key = f"backup-{len(blobs):04d}.json"
        blobs[version_key] = payload
        blobs["latest.json"] = payload
        return web.json_response({"ok": True, "key": version_key})

    app = web.Application()
    app.router.add_get("/fn/load-backup", load)
    app.router.add_post("/fn/save-backup", save)
    app[BLOBS] = blobs
    return app


@pytest.fixture
async def server():
    srv = test_utils.TestServer(make_app())
    await srv.start_server()
    yield srv
    await srv.close()


def base_url(srv):
    return str(srv.make_url("/fn"))


@pytest.mark.asyncio
async def test_push_then_restore_round_trip(server, store, make_store, fast_retries):
    store.save_day("2025-01-01", [10, -5, 0, 2])
    store.add_withdrawal("2025-01-01", 100)

    async with BackupClient(base_url(server), token=TOKEN) as client:
        result = await push_store(store, client)
        assert result["ok"] is True
        assert "latest.json" in server.app[BLOBS]

        target = make_store(None)
        count = await restore_store(target, client)

    assert count == 1
    assert target.current_balance() == 907
    assert target.days() == store.days()


@pytest.mark.asyncio
async def test_fetch_missing_returns_none(server, fast_retries):
    async with BackupClient(base_url(server), token=TOKEN) as client:
        assert await client.fetch_latest() is None
        assert await client.fetch_latest("backup-9999.json") is None


@pytest.mark.asyncio
async def test_restore_without_backup_keeps_state(server, store, fast_retries):
    store.save_day("2025-01-01", [1, 0, 0, 0])
    async with BackupClient(base_url(server), token=TOKEN) as client:
        assert await restore_store(store, client) == 0
    assert store.current_balance() == 1001


@pytest.mark.asyncio
async def test_wrong_token_raises_auth_error(server, store, fast_retries):
    async with BackupClient(base_url(server), token="wrong") as client:
        with pytest.raises(BackupAuthError) as exc:
            await push_store(store, client)
    assert exc.value.status_code == 401


@pytest.mark.asyncio
async def test_unreachable_server_raises_after_retries(fast_retries):
    async with BackupClient("http://127.0.0.1:1/fn", token=TOKEN) as client:
        with pytest.raises(BackupError) as exc:
            await client.fetch_latest()
    assert "after 2 attempts" in str(exc.value)


def test_token_is_redacted_in_logged_headers():
    headers = BackupClient("http://example.invalid", token=TOKEN)._headers()
    assert sanitize_log_data(headers)["X-Backup-Token"] == "***REDACTED***"
    assert sanitize_log_data(headers)["Content-Type"] == "application/json"


@pytest.mark.asyncio
async def test_non_json_body_raises_backup_error(fast_retries):
    async def maintenance(request):
        return web.Response(status=200, text="<html>maintenance</html>", content_type="text/html")

    app = web.Application()
    app.router.add_get("/fn/load-backup", maintenance)
    app.router.add_post("/fn/save-backup", maintenance)
    srv = test_utils.TestServer(app)
    await srv.start_server()
    try:
        async with BackupClient(base_url(srv), token=TOKEN) as client:
            with pytest.raises(BackupError) as exc:
                await client.fetch_latest()
            assert exc.value.status_code == 200
            assert "invalid JSON" in str(exc.value)
            with pytest.raises(BackupError):
                await client.push({"days": {}})
    finally:
        await srv.close()
