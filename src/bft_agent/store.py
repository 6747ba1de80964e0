"""Boundary to the host platform's record store."""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Protocol

import httpx
import structlog

from .config import Settings
from .errors import ConfigurationError, StoreError

LOGGER = structlog.get_logger(__name__)

Record = Dict[str, Any]


class RecordStore(Protocol):
    """The three verbs the sync pipeline is allowed to use."""

    async def list(
        self,
        model: str,
        *,
        filter: Optional[Dict[str, Any]] = None,
        limit: int = 20,
        page: int = 1,
    ) -> List[Record]: ...

    async def create(self, model: str, fields: Dict[str, Any]) -> Record: ...

    async def update(self, model: str, record_id: str, fields: Dict[str, Any]) -> Record: ...


class HttpRecordStore:
    """Record store backed by the host's instance API."""

    def __init__(
        self,
        base_url: str,
        token: Optional[str] = None,
        *,
        timeout: float = 15.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        headers = {"Authorization": f"Bearer {token}"} if token else {}
        self._client = httpx.AsyncClient(
            base_url=base_url,
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> "HttpRecordStore":
        if not settings.store_base_url:
            raise ConfigurationError("store_base_url", "BFT_AGENT_STORE_BASE_URL is not set")
        token = settings.store_token.get_secret_value() if settings.store_token else None
        return cls(settings.store_base_url, token)

    async def __aenter__(self) -> "HttpRecordStore":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def list(
        self,
        model: str,
        *,
        filter: Optional[Dict[str, Any]] = None,
        limit: int = 20,
        page: int = 1,
    ) -> List[Record]:
        params: Dict[str, Any] = {"limit": limit, "page": page}
        for key, value in (filter or {}).items():
            params[f"filter[{key}]"] = value
        payload = await self._request("GET", f"/models/{model}/records", params=params)
        records = payload.get("data") if isinstance(payload, dict) else payload
        return list(records or [])

    async def create(self, model: str, fields: Dict[str, Any]) -> Record:
        return await self._request("POST", f"/models/{model}/records", json={"fields": fields})

    async def update(self, model: str, record_id: str, fields: Dict[str, Any]) -> Record:
        return await self._request("PATCH", f"/models/{model}/records/{record_id}", json={"fields": fields})

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.TransportError as exc:
            raise StoreError(f"Record store unreachable: {exc}") from exc
        if not response.is_success:
            LOGGER.error(
                "store.request_failed",
                method=method,
                path=path,
                status_code=response.status_code,
                body=response.text[:500],
            )
            raise StoreError(
                f"Record store {method} {path} failed with {response.status_code}",
                status_code=response.status_code,
            )
        if not response.content:
            return {}
        return response.json()
