"""Playwright session that loads a page and captures the API calls it makes."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Optional, Sequence
from urllib.parse import parse_qs, urlparse

import structlog
from playwright.async_api import Browser, Page, Playwright, Response, async_playwright
from playwright.async_api import Error as PlaywrightError

from .config import Settings
from .errors import DiscoveryFailure
from .models import InterceptionCapture

LOGGER = structlog.get_logger(__name__)


@dataclass(frozen=True)
class ResponseClassifier:
    """Maps responses whose URL contains ``url_fragment`` to a payload kind."""

    kind: str
    url_fragment: str


def identity_from_url(url: str, param: str) -> Optional[str]:
    """Return the first non-empty value of ``param`` in the URL query string."""
    try:
        values = parse_qs(urlparse(url).query).get(param) or []
    except ValueError:
        return None
    for value in values:
        if value.strip():
            return value.strip()
    return None


class InterceptionSession:
    """
    Single-use headless browser run that records responses from one API host.

    The response observer is attached before navigation starts. After the page
    reports ``networkidle`` the session keeps listening for a grace window,
    because widgets often fire follow-up requests after the load settles. Any
    body that is still being read when the window closes is awaited before the
    browser is torn down. The browser is closed on every exit path.
    """

    def __init__(
        self,
        *,
        host: str,
        identity_param: str,
        classifiers: Sequence[ResponseClassifier],
        headless: bool = True,
        navigation_timeout_ms: int = 30_000,
        grace_period_ms: int = 2_000,
    ):
        self._host = host
        self._identity_param = identity_param
        self._classifiers = tuple(classifiers)
        self._headless = headless
        self._navigation_timeout_ms = navigation_timeout_ms
        self._grace_period_ms = grace_period_ms

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        identity_param: str,
        classifiers: Sequence[ResponseClassifier],
    ) -> "InterceptionSession":
        return cls(
            host=settings.hapana_host,
            identity_param=identity_param,
            classifiers=classifiers,
            headless=settings.headless,
            navigation_timeout_ms=settings.navigation_timeout_seconds * 1000,
            grace_period_ms=settings.grace_period_ms,
        )

    def classify(self, url: str) -> Optional[str]:
        """Return the kind of the first classifier matching ``url``."""
        for classifier in self._classifiers:
            if classifier.url_fragment in url:
                return classifier.kind
        return None

    async def run(self, url: str) -> InterceptionCapture:
        """Load ``url`` and return everything captured from the API host."""
        capture = InterceptionCapture(
            payloads={classifier.kind: [] for classifier in self._classifiers},
        )
        pending: set[asyncio.Task] = set()
        navigation_error: Optional[str] = None

        def on_response(response: Response) -> None:
            response_url = response.url
            if self._host not in response_url:
                return
            capture.observed_urls.append(response_url)

            # The identity in the request URL is the one the API accepts; the
            # one echoed back in response bodies is not used.
            if capture.site_id is None:
                site_id = identity_from_url(response_url, self._identity_param)
                if site_id:
                    capture.site_id = site_id
                    LOGGER.info("interception.identity_found", site_id=site_id, url=response_url)

            kind = self.classify(response_url)
            if kind is None:
                return
            task = asyncio.create_task(self._read_body(response, kind, capture))
            pending.add(task)
            task.add_done_callback(pending.discard)

        LOGGER.info("interception.start", url=url, host=self._host)
        async with async_playwright() as playwright:
            browser = await _launch_browser(playwright, self._headless)
            try:
                context = await browser.new_context()
                page = await context.new_page()
                page.on("response", on_response)

                navigation_error = await self._navigate(page, url)
                await page.wait_for_timeout(self._grace_period_ms)

                if pending:
                    LOGGER.debug("interception.draining", pending=len(pending))
                    await asyncio.wait(set(pending), timeout=self._navigation_timeout_ms / 1000)
            finally:
                await browser.close()
                LOGGER.debug("interception.browser_closed")

        LOGGER.info(
            "interception.complete",
            site_id=capture.site_id,
            observed=len(capture.observed_urls),
            captured={kind: len(items) for kind, items in capture.payloads.items()},
        )

        if not capture.site_id:
            detail = f" Navigation error: {navigation_error}" if navigation_error else ""
            raise DiscoveryFailure(
                f"Could not find a {self._identity_param} on {url}. "
                f"No requests to {self._host} carrying one were detected.{detail}"
            )
        return capture

    async def _navigate(self, page: Page, url: str) -> Optional[str]:
        """Go to ``url`` and wait for the network to settle; errors are logged, not raised."""
        try:
            await page.goto(url, wait_until="networkidle", timeout=self._navigation_timeout_ms)
        except PlaywrightError as exc:
            LOGGER.warning(
                "interception.navigation_failed",
                url=url,
                timeout_ms=self._navigation_timeout_ms,
                error=str(exc),
            )
            return str(exc)
        return None

    async def _read_body(self, response: Response, kind: str, capture: InterceptionCapture) -> None:
        """Parse a classified response as JSON and append it to the accumulator."""
        try:
            body = await response.json()
        except (PlaywrightError, ValueError) as exc:
            # Preflights, redirects and non-JSON bodies land here.
            LOGGER.debug("interception.body_skipped", kind=kind, url=response.url, error=str(exc))
            return
        capture.payloads.setdefault(kind, []).append(body)
        LOGGER.info("interception.captured", kind=kind, url=response.url)


async def _launch_browser(playwright: Playwright, headless: bool) -> Browser:
    """Launch Chromium with sensible defaults."""
    LOGGER.info("interception.browser_launch", headless=headless)
    return await playwright.chromium.launch(
        headless=headless,
        args=[
            "--disable-dev-shm-usage",
            "--no-sandbox",
        ],
    )
