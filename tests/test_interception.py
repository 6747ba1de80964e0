"""Tests for the Playwright interception session."""

from __future__ import annotations

import pytest
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from bft_agent.errors import DiscoveryFailure
from bft_agent.interception import InterceptionSession, ResponseClassifier, identity_from_url

from conftest import HAPANA_BASE, FakeResponse

CLASSIFIERS = (
    ResponseClassifier("settings", "/site/settings"),
    ResponseClassifier("sessions", "/site/sessions"),
    ResponseClassifier("packages", "/site/packages"),
)


def make_session(**overrides) -> InterceptionSession:
    options = dict(
        host="widgetapi.hapana.com",
        identity_param="siteID",
        classifiers=CLASSIFIERS,
        navigation_timeout_ms=30_000,
        grace_period_ms=2_000,
    )
    options.update(overrides)
    return InterceptionSession(**options)


def test_identity_from_url_reads_query_parameter():
    assert identity_from_url(f"{HAPANA_BASE}/settings?siteID=abc123&x=1", "siteID") == "abc123"
    assert identity_from_url(f"{HAPANA_BASE}/settings?siteID=", "siteID") is None
    assert identity_from_url(f"{HAPANA_BASE}/settings", "siteID") is None


def test_classify_uses_first_matching_fragment():
    session = make_session()
    assert session.classify(f"{HAPANA_BASE}/sessions?pageIndex=1") == "sessions"
    assert session.classify(f"{HAPANA_BASE}/packages?siteID=a") == "packages"
    assert session.classify(f"{HAPANA_BASE}/widget/config") is None


async def test_captures_identity_and_payloads(fake_browser):
    harness = fake_browser(
        [
            FakeResponse(f"{HAPANA_BASE}/settings?siteID=abc123", {"siteName": "Braybrook"}),
            FakeResponse(f"{HAPANA_BASE}/sessions?siteID=zzz&pageIndex=1", {"success": True, "data": []}),
            FakeResponse(f"{HAPANA_BASE}/packages?siteID=abc123", {"success": True, "data": [{"name": "A"}]}),
        ]
    )

    capture = await make_session().run("https://www.bodyfittraining.au/club/braybrook")

    assert capture.site_id == "abc123"
    assert capture.of_kind("settings") == [{"siteName": "Braybrook"}]
    assert capture.of_kind("sessions") == [{"success": True, "data": []}]
    assert capture.of_kind("packages")[0]["data"][0]["name"] == "A"
    assert len(capture.observed_urls) == 3
    assert harness.browser.closed is True


async def test_observer_is_attached_before_navigation_with_timeouts(fake_browser):
    harness = fake_browser([FakeResponse(f"{HAPANA_BASE}/settings?siteID=abc123", {})])

    await make_session().run("https://example.test/club/x")

    assert harness.page.goto_calls == [
        {"url": "https://example.test/club/x", "wait_until": "networkidle", "timeout": 30_000}
    ]
    assert harness.page.waits == [2_000]
    assert harness.playwright.chromium.launch_kwargs["headless"] is True


async def test_ignores_other_hosts_and_unreadable_bodies(fake_browser):
    fake_browser(
        [
            FakeResponse("https://cdn.example.com/app.js?siteID=wrong", "js"),
            FakeResponse(f"{HAPANA_BASE}/sessions?siteID=abc123", ValueError("not json")),
            FakeResponse(f"{HAPANA_BASE}/packages?siteID=abc123", {"success": True, "data": []}),
        ]
    )

    capture = await make_session().run("https://example.test/club/x")

    assert capture.site_id == "abc123"
    assert capture.of_kind("sessions") == []
    assert capture.of_kind("packages") == [{"success": True, "data": []}]
    assert all("cdn.example.com" not in url for url in capture.observed_urls)


async def test_identity_taken_from_first_request_that_carries_it(fake_browser):
    fake_browser(
        [
            FakeResponse(f"{HAPANA_BASE}/widget/bootstrap", {}),
            FakeResponse(f"{HAPANA_BASE}/settings?siteID=first", {"siteID": "from-body"}),
            FakeResponse(f"{HAPANA_BASE}/packages?siteID=second", {"success": True, "data": []}),
        ]
    )

    capture = await make_session().run("https://example.test/club/x")

    assert capture.site_id == "first"


async def test_no_matching_requests_raises_and_closes_browser(fake_browser):
    harness = fake_browser([FakeResponse("https://cdn.example.com/app.js", "js")])

    with pytest.raises(DiscoveryFailure):
        await make_session().run("https://example.test/club/x")

    assert harness.browser.closed is True


async def test_navigation_timeout_without_identity_raises_and_closes_browser(fake_browser):
    harness = fake_browser([], goto_error=PlaywrightTimeoutError("Timeout 30000ms exceeded"))

    with pytest.raises(DiscoveryFailure) as excinfo:
        await make_session().run("https://example.test/club/x")

    assert "Timeout 30000ms exceeded" in str(excinfo.value)
    assert harness.browser.closed is True
    assert harness.page.waits == [2_000]


async def test_navigation_timeout_still_returns_captured_identity(fake_browser):
    harness = fake_browser(
        [FakeResponse(f"{HAPANA_BASE}/settings?siteID=abc123", {"siteName": "Braybrook"})],
        goto_error=PlaywrightTimeoutError("Timeout 30000ms exceeded"),
    )

    capture = await make_session().run("https://example.test/club/x")

    assert capture.site_id == "abc123"
    assert capture.of_kind("settings") == [{"siteName": "Braybrook"}]
    assert harness.browser.closed is True


async def test_unexpected_error_still_closes_browser(fake_browser):
    harness = fake_browser([], page_error=RuntimeError("context crashed"))

    with pytest.raises(RuntimeError, match="context crashed"):
        await make_session().run("https://example.test/club/x")

    assert harness.browser.closed is True
