"""Elasticsearch ``_bulk`` document store client."""

import json
import logging
from typing import Any, Dict, List, Optional, Sequence, Union

import httpx

from alertsynth.core.exceptions import StoreOverflowError, StoreWriteError
from alertsynth.store.base import DocumentStore, ItemError, WriteResult

logger = logging.getLogger(__name__)


RECORD_ID_FIELD = "kibana.alert.uuid"


class ElasticsearchStore(DocumentStore):
    """Writes alert records through the Elasticsearch bulk API.

    Every record becomes a ``create`` action keyed by its record id, so a
    re-sent record is reported as a per-item conflict rather than duplicated.
    """

    def __init__(
        self,
        node: str = "http://localhost:9200",
        api_key: Optional[str] = None,
        username: Optional[str] = None,
        password: Optional[str] = None,
        index_pattern: str = ".alerts-security.alerts-{namespace}",
        timeout_seconds: float = 30.0,
        verify_ssl: Union[bool, str] = True,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        """Initialize the store.

        Args:
            node: Elasticsearch base URL
            api_key: Encoded API key; takes precedence over basic auth
            username: Basic auth user
            password: Basic auth password
            index_pattern: Target index, formatted with ``namespace``
            timeout_seconds: Request timeout
            verify_ssl: SSL verification (True, False, or path to CA bundle)
            http_client: Optional pre-configured HTTP client for testing
        """
        self.node = node.rstrip("/")
        self.index_pattern = index_pattern
        self._api_key = api_key
        self._auth = (username, password) if username and password else None
        self._timeout = timeout_seconds
        self._verify_ssl = verify_ssl
        self._http_client = http_client

    @classmethod
    def from_config(cls, config: Any, http_client: Optional[httpx.AsyncClient] = None) -> "ElasticsearchStore":
        """Create a store from a ``StoreConfig``."""
        return cls(
            node=config.node,
            api_key=config.api_key,
            username=config.username,
            password=config.password,
            index_pattern=config.index_pattern,
            timeout_seconds=config.timeout_seconds,
            verify_ssl=config.verify_ssl,
            http_client=http_client,
        )

    def _get_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            headers = {}
            if self._api_key:
                headers["Authorization"] = f"ApiKey {self._api_key}"
            self._http_client = httpx.AsyncClient(
                timeout=self._timeout,
                verify=self._verify_ssl,
                headers=headers,
                auth=self._auth if not self._api_key else None,
            )
        return self._http_client

    async def close(self) -> None:
        """Clean up resources."""
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None
        logger.debug("ElasticsearchStore closed")

    def index_for(self, namespace: str) -> str:
        return self.index_pattern.format(namespace=namespace)

    def _bulk_body(self, records: Sequence[Dict[str, Any]], index: str) -> str:
        lines = []
        for record in records:
            action: Dict[str, Any] = {"_index": index}
            if record.get(RECORD_ID_FIELD):
                action["_id"] = record[RECORD_ID_FIELD]
            lines.append(json.dumps({"create": action}))
            lines.append(json.dumps(record, default=str))
        return "\n".join(lines) + "\n"

    async def write_batch(
        self,
        records: Sequence[Dict[str, Any]],
        namespace: str,
        refresh: bool = False,
    ) -> WriteResult:
        if not records:
            return WriteResult(accepted=0)

        index = self.index_for(namespace)
        params = {"refresh": "wait_for"} if refresh else {}
        try:
            response = await self._get_client().post(
                f"{self.node}/_bulk",
                content=self._bulk_body(records, index),
                params=params,
                headers={"Content-Type": "application/x-ndjson"},
            )
        except httpx.TimeoutException as e:
            raise StoreWriteError(f"Bulk request timed out: {e}")
        except httpx.HTTPError as e:
            raise StoreWriteError(f"Bulk request failed: {e}")

        if response.status_code == 413:
            raise StoreOverflowError(
                f"Bulk payload of {len(records)} records too large",
                reason=StoreOverflowError.PAYLOAD_TOO_LARGE,
                status_code=413,
            )
        if response.status_code == 429:
            raise StoreOverflowError(
                "Bulk request rate limited",
                reason=StoreOverflowError.RATE_LIMITED,
                retry_after=_retry_after(response),
                status_code=429,
            )
        if response.status_code >= 400:
            raise StoreWriteError(
                f"Bulk request failed with HTTP {response.status_code}: {response.text[:200]}",
                status_code=response.status_code,
            )

        try:
            body = response.json()
        except ValueError as e:
            raise StoreWriteError(f"Unreadable bulk response: {e}", status_code=response.status_code)

        item_errors = analyze_bulk_response(body)
        return WriteResult(accepted=len(records) - len(item_errors), item_errors=item_errors)


def _retry_after(response: httpx.Response) -> Optional[float]:
    value = response.headers.get("Retry-After")
    try:
        return float(value) if value is not None else None
    except ValueError:
        return None


def analyze_bulk_response(body: Dict[str, Any]) -> List[ItemError]:
    """Per-item errors of a bulk response body."""
    if not isinstance(body, dict) or not body.get("errors"):
        return []

    errors = []
    for position, item in enumerate(body.get("items") or []):
        if not isinstance(item, dict) or not item:
            continue
        result = next(iter(item.values()))
        if not isinstance(result, dict) or "error" not in result:
            continue
        error = result["error"]
        if isinstance(error, dict):
            error_type = error.get("type", "unknown")
            reason = error.get("reason", "")
        else:
            error_type, reason = "unknown", str(error)
        errors.append(ItemError(
            position=position,
            record_id=result.get("_id"),
            error_type=error_type,
            reason=reason,
            status=result.get("status"),
        ))
    return errors
