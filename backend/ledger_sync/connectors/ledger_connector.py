import httpx
import logging
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Dict, Optional

from ledger_sync.connectors.base import BaseLedgerConnector
from ledger_sync.connectors.result import Ok, Page, RetryableError, TerminalError, TerminalKind
from ledger_sync.connectors.token_provider import TokenProvider
from ledger_sync.exceptions import MalformedPayloadError
from ledger_sync.schemas.ledger import LEDGER_COLLECTIONS, decode_remote_entity, extract_validation_errors

log = logging.getLogger(__name__)


def parse_retry_after(value: Optional[str]) -> Optional[float]:
    """Parse a Retry-After header given either as seconds or as an HTTP date."""
    if not value:
        return None
    value = value.strip()
    if value.isdigit():
        return float(value)
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        log.warning(f"Ignoring unparseable Retry-After header: {value!r}")
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    return max(0.0, (when - datetime.now(timezone.utc)).total_seconds())


class LedgerConnector(BaseLedgerConnector):
    """
    Connector for a Xero-style accounting ledger.

    - Bearer token fetched from the token provider on every request
    - Tenant selected through the ``Xero-tenant-id`` header
    - Creates with PUT on the collection, updates with POST on the item
    """

    def __init__(self, config: Dict[str, Any], token_provider: TokenProvider, transport: Optional[httpx.AsyncBaseTransport] = None):
        super().__init__(config)
        self.base_url = self.config["base_url"].strip().rstrip("/")
        self.tenant_id = self.config.get("tenant_id", "")
        self.token_provider = token_provider
        self.client = httpx.AsyncClient(
            base_url=self.base_url,
            follow_redirects=True,
            timeout=self.config.get("timeout", 30.0),
            transport=transport,
        )
        log.info(f"Ledger connector initialized with base URL: {self.base_url}")

    async def close(self):
        await self.client.aclose()

    async def _headers(self) -> Optional[Dict[str, str]]:
        token = await self.token_provider.get_valid_access_token(self.tenant_id)
        if not token:
            return None
        return {
            "Authorization": f"Bearer {token.token}",
            "Xero-tenant-id": self.tenant_id,
            "Accept": "application/json",
        }

    async def _request(self, method: str, path: str, **kwargs):
        """Perform an authenticated request and classify the outcome."""
        if not path.startswith("/"):
            path = f"/{path}"

        headers = await self._headers()
        if headers is None:
            return TerminalError(TerminalKind.UNAUTHENTICATED, "No valid access token for ledger tenant")
        headers.update(kwargs.pop("headers", None) or {})

        try:
            log.trace(f"Ledger API {method} {self.base_url}{path}")
            response = await self.client.request(method, path, headers=headers, **kwargs)
            log.trace(f"Ledger API response: {response.status_code}")
        except httpx.TimeoutException as e:
            log.warning(f"Ledger API timeout on {method} {path}: {e}")
            return RetryableError(f"Timeout calling {method} {path}")
        except httpx.RequestError as e:
            log.warning(f"Ledger API network error on {method} {path}: {e}")
            return RetryableError(f"Network error calling {method} {path}: {e}")

        result = self._interpret(response)
        if isinstance(result, TerminalError) and result.kind == TerminalKind.VALIDATION:
            log.error(
                f"Ledger rejected {method} {path}: {result.message} {list(result.details)}\n"
                f"Request body: {kwargs.get('json')}\n"
                f"Response body: {response.text}"
            )
        return result

    def _interpret(self, response: httpx.Response):
        status = response.status_code
        retry_after = parse_retry_after(response.headers.get("Retry-After"))

        if status == 429:
            return RetryableError("Rate limited by ledger", status, retry_after)
        if status >= 500:
            return RetryableError(f"Ledger server error {status}", status, retry_after)
        if status == 304:
            return Ok({})

        try:
            body = response.json() if response.content else {}
        except ValueError:
            body = None

        if status >= 400:
            message = None
            details = ()
            if isinstance(body, dict):
                message = body.get("Message") or body.get("Detail") or body.get("Title")
                details = tuple(extract_validation_errors(body))
            if status in (400, 422):
                return TerminalError(TerminalKind.VALIDATION, message or "Validation failed", status, details)
            if status == 401:
                return TerminalError(TerminalKind.UNAUTHENTICATED, "Access token rejected by ledger (401)", status)
            if status == 403:
                return TerminalError(TerminalKind.FORBIDDEN, message or "Access forbidden (403)", status)
            if status == 404:
                return TerminalError(TerminalKind.NOT_FOUND, message or "Resource not found", status)
            return TerminalError(TerminalKind.OTHER, message or f"Unexpected ledger response {status}", status, details)

        if not isinstance(body, dict):
            return TerminalError(TerminalKind.MALFORMED, "Ledger response is not a JSON object", status)
        return Ok(body)

    def _single_item(self, entity_type: str, body: Dict[str, Any]):
        collection, _ = LEDGER_COLLECTIONS[entity_type]
        items = body.get(collection)
        if not isinstance(items, list):
            return TerminalError(TerminalKind.MALFORMED, f"Response has no '{collection}' list")
        if not items:
            return TerminalError(TerminalKind.NOT_FOUND, f"No {entity_type} returned")
        item = items[0]
        if isinstance(item, dict) and item.get("HasErrors"):
            details = tuple(extract_validation_errors(item))
            return TerminalError(TerminalKind.VALIDATION, "Ledger reported validation errors", 200, details)
        try:
            return Ok(decode_remote_entity(entity_type, item))
        except MalformedPayloadError as e:
            return TerminalError(TerminalKind.MALFORMED, str(e))

    async def list_entities(self, entity_type, page, page_size, modified_since=None):
        collection, _ = LEDGER_COLLECTIONS[entity_type]
        headers = {}
        if modified_since:
            headers["If-Modified-Since"] = modified_since.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S")

        result = await self._request(
            "GET", f"/{collection}", params={"page": page, "pageSize": page_size}, headers=headers
        )
        if not isinstance(result, Ok):
            return result

        body = result.value
        raw_items = body.get(collection, [] if not body else None)
        if not isinstance(raw_items, list):
            return TerminalError(TerminalKind.MALFORMED, f"Response has no '{collection}' list")

        items, rejected = [], []
        for payload in raw_items:
            try:
                items.append(decode_remote_entity(entity_type, payload))
            except MalformedPayloadError as e:
                log.warning(f"Rejected {entity_type} on page {page}: {e}")
                rejected.append(e)

        page_count = (body.get("pagination") or {}).get("pageCount")
        if isinstance(page_count, int):
            has_more = page < page_count
        else:
            has_more = len(raw_items) >= page_size
        log.debug(f"Fetched {entity_type} page {page}: {len(items)} items, {len(rejected)} rejected, has_more={has_more}")
        return Ok(Page(items=items, has_more=has_more, page=page, rejected=rejected))

    async def get_entity(self, entity_type, remote_id):
        collection, _ = LEDGER_COLLECTIONS[entity_type]
        result = await self._request("GET", f"/{collection}/{remote_id}")
        if not isinstance(result, Ok):
            return result
        return self._single_item(entity_type, result.value)

    @staticmethod
    def _write_headers(idempotency_key: Optional[str]) -> Dict[str, str]:
        # The ledger replays the first response for a repeated key
        return {"Idempotency-Key": idempotency_key} if idempotency_key else {}

    async def create_entity(self, entity_type, body, idempotency_key=None):
        collection, _ = LEDGER_COLLECTIONS[entity_type]
        result = await self._request(
            "PUT", f"/{collection}", params={"summarizeErrors": "false"}, json={collection: [body]},
            headers=self._write_headers(idempotency_key),
        )
        if not isinstance(result, Ok):
            return result
        return self._single_item(entity_type, result.value)

    async def update_entity(self, entity_type, remote_id, body, idempotency_key=None):
        collection, _ = LEDGER_COLLECTIONS[entity_type]
        result = await self._request(
            "POST", f"/{collection}/{remote_id}", params={"summarizeErrors": "false"}, json={collection: [body]},
            headers=self._write_headers(idempotency_key),
        )
        if not isinstance(result, Ok):
            return result
        return self._single_item(entity_type, result.value)

    async def validate_connection(self) -> bool:
        result = await self._request("GET", "/Organisation")
        if isinstance(result, Ok):
            log.info("Ledger connection validated")
            return True
        log.error(f"Ledger connection check failed: {result.message}")
        return False
