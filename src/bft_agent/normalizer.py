"""Build canonical BFT records from raw Hapana payloads."""

from __future__ import annotations

import asyncio
from datetime import date
from typing import Dict, List, Optional, Sequence

import httpx
import structlog

from .errors import EnrichmentFailure, UpstreamError
from .hapana import HapanaClient
from .models import (
    BusinessDetails,
    ClassType,
    DiscoveryResult,
    Package,
    PackageOffering,
    Schedule,
    ScheduleEntry,
    ScrapedData,
    SessionOccurrence,
    SiteSettings,
    UniqueClass,
)
from .utils import date_range, format_amount, html_to_text, to_iso_date

LOGGER = structlog.get_logger(__name__)

DEFAULT_CURRENCY_SYMBOL = "$"
CLASS_CATEGORY = "Classes"


def format_price(amount: float, symbol: str = DEFAULT_CURRENCY_SYMBOL, billing_cycle: Optional[str] = None) -> str:
    """``$29.99/month`` when a billing cycle exists, otherwise ``$29.99``."""
    price = f"{symbol}{format_amount(amount)}"
    return f"{price}/{billing_cycle}" if billing_cycle else price


def build_business_details(
    url: str,
    settings: Optional[SiteSettings],
    sessions: Sequence[SessionOccurrence],
    *,
    brand: str = "BFT",
) -> BusinessDetails:
    """
    Derive the club's business details.

    Hapana has no business-address endpoint, so the address comes from the
    first session that carries one. Phone and email are not published by the
    widget and stay blank.
    """
    address = next((session.address for session in sessions if session.address), "")
    if settings:
        name = f"{brand} {settings.site_name}".strip()
        currency = f"{settings.currency_symbol} ({settings.currency_code})"
    else:
        name = f"{brand} Club".strip()
        currency = None

    return BusinessDetails(
        name=name,
        address=address,
        phone="",
        email="",
        website_url=url,
        timezone=settings.timezone if settings else None,
        currency=currency,
    )


def build_packages(offerings: Sequence[PackageOffering], settings: Optional[SiteSettings]) -> List[Package]:
    """Map offerings 1:1; the intro-offer flag alone decides the package type."""
    symbol = settings.currency_symbol if settings and settings.currency_symbol else DEFAULT_CURRENCY_SYMBOL
    return [
        Package(
            name=offering.name,
            description=offering.description,
            price=format_price(offering.amount, symbol, offering.billing_cycle),
            type="intro_offer" if offering.intro_offer else "package",
        )
        for offering in offerings
    ]


def class_key(session: SessionOccurrence) -> str:
    return session.session_template or session.session_name


def dedupe_sessions(sessions: Sequence[SessionOccurrence]) -> List[SessionOccurrence]:
    """Keep the first session of each class template, in first-seen order."""
    seen: set[str] = set()
    unique: List[SessionOccurrence] = []
    for session in sessions:
        key = class_key(session)
        if key in seen:
            continue
        seen.add(key)
        unique.append(session)
    return unique


def extract_unique_classes(sessions: Sequence[SessionOccurrence]) -> List[UniqueClass]:
    return [
        UniqueClass(
            name=session.session_name,
            template=session.session_template,
            duration=session.duration,
            image=session.session_image,
            session_id=session.session_id,
            session_date=session.session_date,
        )
        for session in dedupe_sessions(sessions)
    ]


def map_session(session: SessionOccurrence) -> ScheduleEntry:
    return ScheduleEntry(
        session_id=session.session_id,
        session_name=session.session_name,
        date=to_iso_date(session.session_date),
        start_time=session.start_time,
        end_time=session.end_time,
        duration=session.duration,
        instructor=session.instructor,
        capacity=session.capacity,
        reserved=session.reserved,
        remaining=session.remaining,
        status=session.session_status,
        address=session.address,
        session_template=session.session_template,
    )


def group_schedule(sessions: Sequence[SessionOccurrence]) -> Schedule:
    """Bucket sessions by ISO date; entries keep the vendor's response order."""
    schedule: Dict[str, List[ScheduleEntry]] = {}
    for session in sessions:
        entry = map_session(session)
        schedule.setdefault(entry.date, []).append(entry)
    return schedule


async def build_classes(
    unique_classes: Sequence[UniqueClass],
    *,
    client: Optional[HapanaClient] = None,
    site_id: Optional[str] = None,
    concurrency: int = 4,
) -> List[ClassType]:
    """
    Turn unique classes into canonical records, enriching descriptions from
    the session-detail endpoint when a client is available.

    Lookups run concurrently up to ``concurrency`` at a time and the output
    keeps first-seen order. A failed lookup only affects its own class.
    """
    if client is None or not site_id:
        return [_class_record(cls, cls.fallback_description) for cls in unique_classes]

    LOGGER.info("normalizer.describe_classes", count=len(unique_classes))
    semaphore = asyncio.Semaphore(max(concurrency, 1))

    async def describe(cls: UniqueClass) -> ClassType:
        try:
            raw = await _fetch_description(client, site_id, cls, semaphore)
        except EnrichmentFailure as exc:
            LOGGER.warning("normalizer.description_failed", class_name=cls.name, error=str(exc))
            return _class_record(cls, cls.fallback_description)
        return _class_record(cls, html_to_text(raw) or cls.template or "")

    return list(await asyncio.gather(*(describe(cls) for cls in unique_classes)))


async def _fetch_description(
    client: HapanaClient,
    site_id: str,
    cls: UniqueClass,
    semaphore: asyncio.Semaphore,
) -> str:
    if not cls.session_id:
        raise EnrichmentFailure(f"no session id to look up {cls.name!r}")
    async with semaphore:
        try:
            return await client.fetch_class_detail(site_id, cls.session_id, cls.session_date)
        except (UpstreamError, httpx.HTTPError) as exc:
            raise EnrichmentFailure(f"detail lookup failed for {cls.name!r}: {exc}") from exc


def _class_record(cls: UniqueClass, description: str) -> ClassType:
    return ClassType(
        name=cls.name.strip(),
        description=description,
        duration=cls.duration or None,
        category=CLASS_CATEGORY,
    )


async def build_scraped_data(
    url: str,
    settings: Optional[SiteSettings],
    sessions: Sequence[SessionOccurrence],
    offerings: Sequence[PackageOffering],
    *,
    client: Optional[HapanaClient] = None,
    site_id: Optional[str] = None,
    brand: str = "BFT",
    concurrency: int = 4,
) -> ScrapedData:
    """Assemble business details, packages, classes and schedule from one data set."""
    classes = await build_classes(
        extract_unique_classes(sessions),
        client=client,
        site_id=site_id,
        concurrency=concurrency,
    )
    return ScrapedData(
        business_details=build_business_details(url, settings, sessions, brand=brand),
        packages=build_packages(offerings, settings),
        classes=classes,
        schedule=group_schedule(sessions),
    )


async def build_from_discovery(
    url: str,
    discovery: DiscoveryResult,
    *,
    client: Optional[HapanaClient] = None,
    brand: str = "BFT",
    concurrency: int = 4,
) -> ScrapedData:
    """Normalize the payloads captured at install time without refetching them."""
    LOGGER.info(
        "normalizer.from_discovery",
        sessions=len(discovery.sessions),
        packages=len(discovery.packages),
    )
    return await build_scraped_data(
        url,
        discovery.settings,
        discovery.sessions,
        discovery.packages,
        client=client,
        site_id=discovery.site_id,
        brand=brand,
        concurrency=concurrency,
    )


async def scrape_site(
    url: str,
    site_id: str,
    client: HapanaClient,
    *,
    days_ahead: int = 14,
    brand: str = "BFT",
    concurrency: int = 4,
    today: Optional[date] = None,
) -> ScrapedData:
    """Fetch settings, sessions and packages directly and normalize them."""
    LOGGER.info("normalizer.scrape", url=url, site_id=site_id)
    start_date, end_date = date_range(days_ahead, today)

    settings = await client.fetch_settings(site_id)
    sessions_page = await client.fetch_sessions(site_id, start_date, end_date)
    offerings = await client.fetch_packages(site_id)

    LOGGER.info(
        "normalizer.fetched",
        site_name=settings.site_name,
        sessions=len(sessions_page.sessions),
        packages=len(offerings),
    )
    return await build_scraped_data(
        url,
        settings,
        sessions_page.sessions,
        offerings,
        client=client,
        site_id=site_id,
        brand=brand,
        concurrency=concurrency,
    )


async def fetch_live_schedule(
    site_id: str,
    client: HapanaClient,
    *,
    days_ahead: int = 14,
    today: Optional[date] = None,
) -> Schedule:
    """Schedule-only projection used for live reads; nothing is persisted."""
    start_date, end_date = date_range(days_ahead, today)
    sessions_page = await client.fetch_sessions(site_id, start_date, end_date)
    return group_schedule(sessions_page.sessions)
