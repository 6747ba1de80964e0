"""Install-time discovery of the Hapana site identity and first data snapshot."""

from __future__ import annotations

from typing import Any, List, Optional

import structlog
from pydantic import ValidationError

from .config import Settings
from .interception import InterceptionSession, ResponseClassifier
from .models import DiscoveryResult, InterceptionCapture, PackageOffering, SessionOccurrence, SiteSettings

LOGGER = structlog.get_logger(__name__)

SITE_ID_PARAM = "siteID"

HAPANA_CLASSIFIERS = (
    ResponseClassifier(kind="settings", url_fragment="/site/settings"),
    ResponseClassifier(kind="sessions", url_fragment="/site/sessions"),
    ResponseClassifier(kind="packages", url_fragment="/site/packages"),
)


async def discover_hapana_data(url: str, settings: Settings) -> DiscoveryResult:
    """
    Load the club page once and capture the site identity plus the settings,
    sessions and packages the widget fetched on its own.

    The widget only loads the first sessions page, so the returned sessions
    cover whatever the page happened to request.
    """
    LOGGER.info("discovery.start", url=url)
    session = InterceptionSession.from_settings(
        settings,
        identity_param=SITE_ID_PARAM,
        classifiers=HAPANA_CLASSIFIERS,
    )
    capture = await session.run(url)
    result = assemble_discovery(capture)
    LOGGER.info(
        "discovery.complete",
        site_id=result.site_id,
        settings="captured" if result.settings else "missing",
        sessions=len(result.sessions),
        packages=len(result.packages),
    )
    return result


def assemble_discovery(capture: InterceptionCapture) -> DiscoveryResult:
    """Turn raw intercepted payloads into typed Hapana records."""
    if not capture.site_id:
        raise ValueError("capture has no site identity")

    return DiscoveryResult(
        site_id=capture.site_id,
        settings=_latest_settings(capture.of_kind("settings")),
        sessions=_collect_sessions(capture.of_kind("sessions")),
        packages=_latest_packages(capture.of_kind("packages")),
    )


def _latest_settings(payloads: List[Any]) -> Optional[SiteSettings]:
    settings: Optional[SiteSettings] = None
    for payload in payloads:
        if not isinstance(payload, dict):
            continue
        try:
            settings = SiteSettings.model_validate(payload)
        except ValidationError as exc:
            LOGGER.warning("discovery.settings_invalid", error=str(exc))
            continue
        LOGGER.info("discovery.settings", site_name=settings.site_name)
    return settings


def _collect_sessions(payloads: List[Any]) -> List[SessionOccurrence]:
    sessions: List[SessionOccurrence] = []
    for payload in payloads:
        if not _succeeded(payload):
            LOGGER.info("discovery.sessions_skipped", success=_success_flag(payload))
            continue
        for item in payload.get("data") or []:
            try:
                sessions.append(SessionOccurrence.model_validate(item))
            except ValidationError as exc:
                LOGGER.warning("discovery.session_invalid", error=str(exc))
        LOGGER.info("discovery.sessions", total=len(sessions))
    return sessions


def _latest_packages(payloads: List[Any]) -> List[PackageOffering]:
    packages: List[PackageOffering] = []
    for payload in payloads:
        if not _succeeded(payload):
            continue
        parsed: List[PackageOffering] = []
        for item in payload.get("data") or []:
            try:
                parsed.append(PackageOffering.model_validate(item))
            except ValidationError as exc:
                LOGGER.warning("discovery.package_invalid", error=str(exc))
        packages = parsed
    for package in packages:
        LOGGER.info(
            "discovery.package",
            name=package.name,
            category=package.category,
            amount=package.amount,
            intro_offer=package.intro_offer,
        )
    return packages


def _success_flag(payload: Any) -> Optional[bool]:
    return payload.get("success") if isinstance(payload, dict) else None


def _succeeded(payload: Any) -> bool:
    return isinstance(payload, dict) and payload.get("success") is True and isinstance(payload.get("data"), list)
