"""Direct HTTP client for the Hapana widget API."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

import httpx
import structlog
from pydantic import ValidationError
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from .config import Settings
from .errors import UpstreamError
from .models import PackageOffering, Pagination, SessionOccurrence, SessionsPage, SiteSettings

LOGGER = structlog.get_logger(__name__)


class HapanaClient:
    """
    Plain-HTTP access to the widget API once a site identity is known.

    Use as an async context manager so every call of a refresh cycle shares
    one connection pool.
    """

    def __init__(self, settings: Settings, *, transport: Optional[httpx.AsyncBaseTransport] = None):
        self._settings = settings
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def __aenter__(self) -> "HapanaClient":
        self._client = httpx.AsyncClient(
            base_url=self._settings.hapana_base_url,
            timeout=self._settings.http_timeout_seconds,
            transport=self._transport,
        )
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    async def fetch_settings(self, site_id: str) -> SiteSettings:
        """Fetch the site settings (name, currency, timezone, theme)."""
        payload = await self._get_json("/settings", {"siteID": site_id}, label="settings")
        if not isinstance(payload, dict):
            raise UpstreamError("Hapana settings API returned an unexpected payload")
        try:
            settings = SiteSettings.model_validate(payload)
        except ValidationError as exc:
            raise UpstreamError(f"Hapana settings API returned invalid data: {exc}") from exc
        LOGGER.info("hapana.settings", site_name=settings.site_name)
        return settings

    async def fetch_packages(self, site_id: str) -> List[PackageOffering]:
        """Fetch memberships, passes and intro offers."""
        payload = await self._get_json(
            "/packages",
            {"siteID": site_id, "isMultiSignature": "true"},
            label="packages",
        )
        if not isinstance(payload, dict) or payload.get("success") is not True:
            raise UpstreamError("Hapana packages API returned success=false")

        try:
            packages = [PackageOffering.model_validate(item) for item in payload.get("data") or []]
        except ValidationError as exc:
            raise UpstreamError(f"Hapana packages API returned invalid data: {exc}") from exc
        LOGGER.info("hapana.packages", count=len(packages))
        for package in packages:
            LOGGER.debug(
                "hapana.package",
                name=package.name,
                category=package.category,
                amount=package.amount,
                intro_offer=package.intro_offer,
            )
        return packages

    async def fetch_sessions(
        self,
        site_id: str,
        start_date: str,
        end_date: str,
        session_category: str = "classes",
    ) -> SessionsPage:
        """
        Fetch every session in the date range, one page at a time.

        The page count reported by the first page bounds the loop. Pages are
        requested in ascending order only. A page answering ``success=false``,
        or any failure after the first page, ends the loop and the sessions
        gathered so far are returned.
        """
        page_size = self._settings.sessions_page_size
        sessions: List[SessionOccurrence] = []
        pagination = Pagination(pageSize=page_size)
        page_index = 1
        total_pages = 1

        while page_index <= total_pages:
            params = {
                "startDate": start_date,
                "endDate": end_date,
                "sessionCategory": session_category,
                "siteID": site_id,
                "pageIndex": str(page_index),
                "pageSize": str(page_size),
            }
            try:
                payload = await self._get_json("/sessions", params, label="sessions")
            except UpstreamError as exc:
                if page_index == 1:
                    raise
                LOGGER.warning("hapana.sessions.page_failed", page_index=page_index, error=str(exc))
                break

            if not isinstance(payload, dict) or payload.get("success") is not True:
                LOGGER.warning("hapana.sessions.unsuccessful", page_index=page_index)
                break

            records = payload.get("data") or []
            LOGGER.info("hapana.sessions.page", page_index=page_index, records=len(records))
            sessions.extend(self._parse_sessions(records))

            if page_index == 1:
                pagination = Pagination.model_validate(payload.get("pagination") or {})
                total_pages = max(pagination.no_of_pages, 1)
            page_index += 1

        LOGGER.info("hapana.sessions.complete", total=len(sessions), pages=page_index - 1)
        return SessionsPage(sessions=sessions, pagination=pagination)

    async def fetch_class_detail(self, site_id: str, session_id: str, session_date: str) -> str:
        """Return the description of a single session; raises ``UpstreamError`` on any failure."""
        payload = await self._get_json(
            "/session",
            {"siteID": site_id, "sessionID": session_id, "sessionDate": session_date},
            label="session detail",
        )
        if not isinstance(payload, dict) or payload.get("success") is False:
            raise UpstreamError(f"Hapana session detail API returned no data for {session_id}")
        detail = payload.get("data") if isinstance(payload.get("data"), dict) else payload
        return str(detail.get("sessionDescription") or "")

    @staticmethod
    def _parse_sessions(records: List[Any]) -> List[SessionOccurrence]:
        parsed: List[SessionOccurrence] = []
        for record in records:
            try:
                parsed.append(SessionOccurrence.model_validate(record))
            except ValidationError as exc:
                LOGGER.warning("hapana.session_invalid", error=str(exc))
        return parsed

    async def _get_json(self, path: str, params: Dict[str, str], *, label: str) -> Any:
        """GET ``path`` with transport-level retries; non-2xx and bad JSON raise ``UpstreamError``."""
        if not self._client:
            raise RuntimeError("HapanaClient must be used as an async context manager")

        LOGGER.debug("hapana.request", path=path, params=params)
        try:
            async for attempt in AsyncRetrying(
                retry=retry_if_exception_type(httpx.TransportError),
                wait=wait_exponential(multiplier=0.5, min=0.5, max=4),
                stop=stop_after_attempt(3),
                reraise=True,
            ):
                with attempt:
                    response = await self._client.get(path, params=params)
        except httpx.TransportError as exc:
            raise UpstreamError(f"Hapana {label} API unreachable: {exc}") from exc

        if not response.is_success:
            LOGGER.error(
                "hapana.http_error",
                path=path,
                status_code=response.status_code,
                body=response.text[:500],
            )
            raise UpstreamError(
                f"Hapana {label} API error: HTTP {response.status_code}",
                status_code=response.status_code,
            )

        try:
            return response.json()
        except ValueError as exc:
            raise UpstreamError(f"Hapana {label} API returned invalid JSON") from exc
