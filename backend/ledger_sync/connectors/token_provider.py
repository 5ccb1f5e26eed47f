"""Access token providers for the ledger API."""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional

import httpx
from cryptography.fernet import InvalidToken

from ledger_sync.models.ledger_connection import LedgerConnection
from ledger_sync.utils.encrypt import decrypt_data, encrypt_data
from ledger_sync.utils.timeutils import utcnow

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class AccessToken:
    token: str
    expires_at: datetime


class TokenProvider(ABC):

    @abstractmethod
    async def get_valid_access_token(self, tenant_id: str) -> Optional[AccessToken]:
        """Return a token that is valid for a while yet, or None if unauthenticated."""
        pass


class StaticTokenProvider(TokenProvider):
    """Serves a fixed token. Useful for private apps and tests."""

    def __init__(self, token: Optional[str], expires_at: Optional[datetime] = None):
        self.token = token
        self.expires_at = expires_at or utcnow() + timedelta(hours=1)

    async def get_valid_access_token(self, tenant_id: str) -> Optional[AccessToken]:
        if not self.token:
            return None
        return AccessToken(self.token, self.expires_at)


class StoredTokenProvider(TokenProvider):
    """
    Reads OAuth tokens from ``ledger_connections`` and refreshes them
    proactively once they are within ``refresh_margin_seconds`` of expiry.
    Refreshed tokens are encrypted and persisted before being returned.
    """

    def __init__(
        self,
        session_factory,
        token_url: str,
        client_id: str,
        client_secret: str,
        refresh_margin_seconds: int = 300,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.session_factory = session_factory
        self.token_url = token_url
        self.client_id = client_id
        self.client_secret = client_secret
        self.refresh_margin = timedelta(seconds=refresh_margin_seconds)
        self.transport = transport
        self._cache: Dict[str, AccessToken] = {}
        self._lock = asyncio.Lock()

    def _fresh(self, token: AccessToken) -> bool:
        return token.expires_at - utcnow() > self.refresh_margin

    async def get_valid_access_token(self, tenant_id: str) -> Optional[AccessToken]:
        cached = self._cache.get(tenant_id)
        if cached and self._fresh(cached):
            return cached

        async with self._lock:
            db = self.session_factory()
            try:
                connection = db.query(LedgerConnection).filter(
                    LedgerConnection.tenant_id == tenant_id,
                    LedgerConnection.is_active == True
                ).first()
                if not connection:
                    log.warning(f"No active ledger connection for tenant '{tenant_id}'")
                    return None

                expires_at = connection.expires_at
                if expires_at.tzinfo is None:
                    expires_at = expires_at.replace(tzinfo=timezone.utc)
                try:
                    access_token = decrypt_data(connection.access_token)
                    refresh_token = decrypt_data(connection.refresh_token)
                except (InvalidToken, ValueError) as e:
                    # wrong or rotated ENCRYPTION_KEY, or a corrupted row
                    log.error(f"Stored tokens for tenant '{tenant_id}' cannot be decrypted: {e!r}")
                    self._cache.pop(tenant_id, None)
                    return None
                current = AccessToken(access_token, expires_at)
                if self._fresh(current):
                    self._cache[tenant_id] = current
                    return current

                log.info(f"Access token for tenant '{tenant_id}' expires at {expires_at.isoformat()}, refreshing")
                payload = await self._refresh(refresh_token)
                if payload is None:
                    self._cache.pop(tenant_id, None)
                    return None

                refreshed = AccessToken(
                    payload["access_token"],
                    utcnow() + timedelta(seconds=int(payload.get("expires_in", 1800))),
                )
                connection.access_token = encrypt_data(refreshed.token)
                if payload.get("refresh_token"):
                    connection.refresh_token = encrypt_data(payload["refresh_token"])
                connection.expires_at = refreshed.expires_at
                db.commit()
                self._cache[tenant_id] = refreshed
                log.info(f"Refreshed access token for tenant '{tenant_id}'")
                return refreshed
            finally:
                db.close()

    async def _refresh(self, refresh_token: str) -> Optional[dict]:
        async with httpx.AsyncClient(timeout=30.0, transport=self.transport) as client:
            try:
                response = await client.post(
                    self.token_url,
                    data={"grant_type": "refresh_token", "refresh_token": refresh_token},
                    auth=(self.client_id, self.client_secret),
                )
                response.raise_for_status()
            except httpx.HTTPStatusError as e:
                log.error(f"Token refresh rejected ({e.response.status_code}): {e.response.text}")
                return None
            except httpx.RequestError as e:
                log.error(f"Token refresh failed: {e}")
                return None

        payload = response.json()
        if not payload.get("access_token"):
            log.error("Token refresh response carried no access_token")
            return None
        return payload
