"""Install and refresh hooks plus the installation state machine."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from enum import Enum
from typing import Dict, Mapping, Optional

import httpx
import structlog
from pydantic import BaseModel

from .config import InstallationEnv, Settings
from .discovery import discover_hapana_data
from .errors import InvalidTransition
from .hapana import HapanaClient
from .models import Schedule, SyncResult
from .normalizer import build_from_discovery, fetch_live_schedule, scrape_site
from .store import RecordStore
from .sync import SyncEngine, SyncOptions

LOGGER = structlog.get_logger(__name__)


class InstallationState(str, Enum):
    UNCONFIGURED = "unconfigured"
    DISCOVERING = "discovering"
    DISCOVERED = "discovered"
    SYNCED = "synced"
    STALE = "stale"


ALLOWED_TRANSITIONS: Dict[InstallationState, frozenset] = {
    InstallationState.UNCONFIGURED: frozenset({InstallationState.DISCOVERING}),
    InstallationState.DISCOVERING: frozenset({InstallationState.DISCOVERED}),
    InstallationState.DISCOVERED: frozenset({InstallationState.SYNCED}),
    InstallationState.SYNCED: frozenset({InstallationState.STALE}),
    InstallationState.STALE: frozenset({InstallationState.SYNCED}),
}


@dataclass
class Installation:
    """One club installation and where it is in its lifecycle."""

    url: str
    site_id: Optional[str] = None
    state: InstallationState = InstallationState.UNCONFIGURED

    @classmethod
    def from_env(cls, env: InstallationEnv) -> "Installation":
        url = env.require_url()
        if env.hapana_site_id:
            return cls(url=url, site_id=env.hapana_site_id, state=InstallationState.DISCOVERED)
        return cls(url=url)

    def transition(self, target: InstallationState) -> None:
        if target not in ALLOWED_TRANSITIONS[self.state]:
            raise InvalidTransition(f"Cannot move installation from {self.state.value} to {target.value}")
        LOGGER.debug("installation.transition", url=self.url, source=self.state.value, target=target.value)
        self.state = target

    def record_discovery(self, site_id: str) -> None:
        """Store the discovered identity; it never changes afterwards."""
        if self.site_id and self.site_id != site_id:
            raise InvalidTransition(f"Installation already bound to site {self.site_id}")
        self.transition(InstallationState.DISCOVERED)
        self.site_id = site_id

    def abort_discovery(self) -> None:
        """Drop back to unconfigured after a failed discovery; nothing partial is kept."""
        if self.state is not InstallationState.DISCOVERING:
            raise InvalidTransition(f"No discovery in progress (state is {self.state.value})")
        self.state = InstallationState.UNCONFIGURED
        self.site_id = None


class InstallResult(BaseModel):
    """Returned to the host so it can persist the discovered identity."""

    env: Dict[str, str]
    sync: Optional[SyncResult] = None


async def install(
    env: Optional[Mapping[str, str]],
    store: RecordStore,
    settings: Optional[Settings] = None,
    *,
    installation: Optional[Installation] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> InstallResult:
    """
    Discover the site identity from the club page, sync the captured data and
    hand the identity back to the host.

    A discovery failure leaves the installation unconfigured and re-raises.
    """
    settings = settings or Settings()
    installation_env = InstallationEnv.from_mapping(env)
    url = installation_env.require_url()
    installation = installation or Installation(url=url)

    LOGGER.info("install.start", url=url)
    installation.transition(InstallationState.DISCOVERING)
    try:
        discovery = await discover_hapana_data(url, settings)
    except Exception:
        installation.abort_discovery()
        LOGGER.error("install.discovery_failed", url=url)
        raise
    installation.record_discovery(discovery.site_id)

    async with HapanaClient(settings, transport=transport) as client:
        data = await build_from_discovery(
            url,
            discovery,
            client=client,
            brand=settings.brand_prefix,
            concurrency=settings.detail_concurrency,
        )
    result = await SyncEngine(store).sync(url, data)
    installation.transition(InstallationState.SYNCED)

    LOGGER.info("install.complete", url=url, site_id=discovery.site_id)
    return InstallResult(
        env=InstallationEnv(bft_url=url, hapana_site_id=discovery.site_id).as_env(),
        sync=result,
    )


async def refresh(
    env: Optional[Mapping[str, str]],
    store: RecordStore,
    settings: Optional[Settings] = None,
    options: SyncOptions = SyncOptions(),
    *,
    installation: Optional[Installation] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    today: Optional[date] = None,
) -> SyncResult:
    """Re-fetch everything through the direct API and sync the selected record types."""
    settings = settings or Settings()
    installation_env = InstallationEnv.from_mapping(env)
    url = installation_env.require_url()
    site_id = installation_env.require_site_id()
    installation = installation or Installation.from_env(installation_env)

    if installation.state is InstallationState.SYNCED:
        installation.transition(InstallationState.STALE)

    LOGGER.info("refresh.start", url=url, site_id=site_id, options=options)
    async with HapanaClient(settings, transport=transport) as client:
        data = await scrape_site(
            url,
            site_id,
            client,
            days_ahead=settings.days_ahead,
            brand=settings.brand_prefix,
            concurrency=settings.detail_concurrency,
            today=today,
        )
    result = await SyncEngine(store).sync(url, data, options)
    installation.transition(InstallationState.SYNCED)
    return result


async def live_schedule(
    env: Optional[Mapping[str, str]],
    settings: Optional[Settings] = None,
    *,
    days_ahead: Optional[int] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    today: Optional[date] = None,
) -> Schedule:
    settings = settings or Settings()
    installation_env = InstallationEnv.from_mapping(env)
    installation_env.require_url()
    site_id = installation_env.require_site_id()

    async with HapanaClient(settings, transport=transport) as client:
        return await fetch_live_schedule(
            site_id,
            client,
            days_ahead=settings.days_ahead if days_ahead is None else days_ahead,
            today=today,
        )
