from __future__ import annotations

import asyncio
from typing import Any, Optional

import aiohttp
from aiolimiter import AsyncLimiter

from signal_ledger.ledger.store import LedgerStore
from signal_ledger.utils.config import get_settings
from signal_ledger.utils.exceptions import BackupAuthError, BackupError, ImportParseError
from signal_ledger.utils.logger import get_logger, sanitize_log_data

logger = get_logger(__name__)

TOKEN_HEADER = "X-Backup-Token"
LOAD_ENDPOINT = "load-backup"
SAVE_ENDPOINT = "save-backup"


class BackupClient:
    """Client for the remote snapshot store: GET returns the latest snapshot, POST stores one."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        token: Optional[str] = None,
    ) -> None:
        self._settings = get_settings()
        self._base_url = (base_url or self._settings.backup_base_url).rstrip("/")
        self._token = self._settings.backup_token if token is None else token
        self._session: Optional[aiohttp.ClientSession] = None
        self._limiter = AsyncLimiter(self._settings.rate_limit_backup, 1)

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self._settings.backup_timeout),
            )
        return self._session

    async def close(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()

    async def __aenter__(self) -> "BackupClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self._token:
            headers[TOKEN_HEADER] = self._token
        return headers

    async def _request(
        self,
        method: str,
        endpoint: str,
        params: Optional[dict[str, str]] = None,
        payload: Any = None,
    ) -> Optional[Any]:
        settings = self._settings
        url = f"{self._base_url}/{endpoint}"

        logger.debug("backup_request", method=method, url=url, headers=sanitize_log_data(self._headers()))

        last_error: Optional[Exception] = None
        for attempt in range(settings.max_retries):
            try:
                async with self._limiter:
                    session = await self._get_session()
                    async with session.request(
                        method, url, params=params, json=payload, headers=self._headers()
                    ) as response:
                        if response.status in (401, 403):
                            logger.error("backup_auth_failed", endpoint=endpoint, status=response.status)
                            raise BackupAuthError(status_code=response.status)

                        if response.status == 404:
                            return None

                        if response.status >= 500:
                            body = await response.text()
                            raise BackupError(f"Backup server error: {body[:200]}", response.status)

                        if response.status >= 400:
                            body = await response.text()
                            raise BackupError(f"Backup request rejected: {body[:200]}", response.status)

                        try:
                            return await response.json(content_type=None)
                        except ValueError as e:
                            raise BackupError(
                                f"Backup server returned invalid JSON: {e}", response.status
                            ) from e

            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                last_error = e
                wait_time = settings.retry_delay * (2 ** attempt)
                logger.warning(
                    "backup_request_retry",
                    endpoint=endpoint,
                    attempt=attempt + 1,
                    error=str(e),
                )
                if attempt < settings.max_retries - 1:
                    await asyncio.sleep(wait_time)

        raise BackupError(f"Backup request failed after {settings.max_retries} attempts: {last_error}")

    async def fetch_latest(self, key: Optional[str] = None) -> Optional[dict[str, Any]]:
        params = {"key": key} if key else None
        data = await self._request("GET", LOAD_ENDPOINT, params=params)
        if data is None:
            logger.info("backup_not_found", key=key or "latest.json")
            return None
        if not isinstance(data, dict):
            raise BackupError("Backup server returned a non-object snapshot")
        return data

    async def push(self, snapshot: dict[str, Any]) -> dict[str, Any]:
        data = await self._request("POST", SAVE_ENDPOINT, payload=snapshot)
        if not isinstance(data, dict):
            raise BackupError("Backup server returned an unexpected response")
        logger.info("backup_pushed", key=data.get("key"), days=len(snapshot.get("days") or {}))
        return data


async def push_store(store: LedgerStore, client: BackupClient) -> dict[str, Any]:
    return await client.push(store.export_snapshot())


async def restore_store(store: LedgerStore, client: BackupClient, key: Optional[str] = None) -> int:
    """Import the remote snapshot into ``store``. Returns the number of days, or 0 if none exists."""
    snapshot = await client.fetch_latest(key)
    if snapshot is None:
        return 0
    try:
        return store.import_snapshot(snapshot)
    except ImportParseError as e:
        logger.error("backup_restore_failed", error=str(e))
        raise
