"""Shared fakes: Playwright, the record store and the Hapana HTTP API."""

from __future__ import annotations

import asyncio
import itertools
from typing import Any, Callable, Dict, List, Optional
from urllib.parse import parse_qs

import httpx
import pytest

from bft_agent import interception
from bft_agent.config import Settings

HAPANA_BASE = "https://widgetapi.hapana.com/v2/wAPI/site"
CLUB_URL = "https://www.bodyfittraining.au/club/braybrook"


# ---------------------------------------------------------------------------
# Sample Hapana payloads
# ---------------------------------------------------------------------------


def make_session(
    session_id: str,
    name: str,
    date: str,
    *,
    template: Optional[str] = None,
    start: str = "06:00",
    address: str = "",
    status: str = "open",
) -> Dict[str, Any]:
    return {
        "sessionID": session_id,
        "sessionName": name,
        "sessionDate": date,
        "startTime": start,
        "endTime": "06:45",
        "duration": "45 min",
        "sessionType": "class",
        "instructor": "Sam",
        "instructorData": [{"instructorID": "i1", "instructorName": "Sam", "instructorProfile": ""}],
        "capacity": 20,
        "reserved": 5,
        "remaining": 15,
        "waitlistCapacity": 5,
        "waitlistReserved": 0,
        "waitlistRemaining": 5,
        "sessionStatus": status,
        "address": address,
        "sessionLocationType": "inPerson",
        "timezone": "Australia/Melbourne",
        "sessionImage": "",
        "sessionTemplate": name if template is None else template,
        "sessionTemplateID": f"tpl-{name}",
    }


def make_package(name: str, amount: float, *, intro: bool = False, cycle: Optional[str] = None) -> Dict[str, Any]:
    return {
        "packageID": f"pkg-{name}",
        "name": name,
        "type": "sessionPackage",
        "category": "Intro Offers" if intro else "Memberships",
        "description": f"{name} description",
        "amount": amount,
        "billingCycle": cycle,
        "introOffer": intro,
        "validPurchase": True,
        "sortOrder": 1,
    }


SETTINGS_PAYLOAD = {
    "corporateID": "corp1",
    "siteID": "body-site-id",
    "widgetID": "w1",
    "siteName": "Braybrook",
    "currencySymbol": "$",
    "currencyCode": "AUD",
    "timezone": "Australia/Melbourne",
    "themeConfig": {"primaryColor": "#000"},
}


@pytest.fixture
def settings() -> Settings:
    return Settings(
        hapana_base_url=HAPANA_BASE,
        grace_period_ms=10,
        navigation_timeout_seconds=1,
        sessions_page_size=2,
        detail_concurrency=2,
    )


# ---------------------------------------------------------------------------
# Record store
# ---------------------------------------------------------------------------


class FakeRecordStore:
    """In-memory store that records every call made against it."""

    def __init__(self, records: Optional[Dict[str, List[Dict[str, Any]]]] = None, fail_names: tuple = ()):
        self.records: Dict[str, List[Dict[str, Any]]] = {model: list(items) for model, items in (records or {}).items()}
        self.calls: List[tuple] = []
        self.fail_names = set(fail_names)
        self._ids = itertools.count(1)

    def calls_for(self, model: str, verb: Optional[str] = None) -> List[tuple]:
        return [call for call in self.calls if call[1] == model and (verb is None or call[0] == verb)]

    async def list(self, model, *, filter=None, limit=20, page=1):
        self.calls.append(("list", model, dict(filter or {})))
        await asyncio.sleep(0)
        matches = [
            record
            for record in self.records.get(model, [])
            if all(record.get(key) == value for key, value in (filter or {}).items())
        ]
        start = (page - 1) * limit
        return [dict(record) for record in matches[start : start + limit]]

    async def create(self, model, fields):
        self.calls.append(("create", model, dict(fields)))
        await asyncio.sleep(0)
        if fields.get("name") in self.fail_names:
            raise RuntimeError(f"store rejected {fields['name']}")
        record = {"id": f"{model}-{next(self._ids)}", **fields}
        self.records.setdefault(model, []).append(record)
        return record

    async def update(self, model, record_id, fields):
        self.calls.append(("update", model, dict(fields)))
        await asyncio.sleep(0)
        if fields.get("name") in self.fail_names:
            raise RuntimeError(f"store rejected {fields['name']}")
        for record in self.records.get(model, []):
            if record["id"] == record_id:
                record.update(fields)
                return record
        raise KeyError(record_id)


@pytest.fixture
def store() -> FakeRecordStore:
    return FakeRecordStore()


# ---------------------------------------------------------------------------
# Hapana HTTP API
# ---------------------------------------------------------------------------


class HapanaStub:
    """Routes requests by the last path segment to per-endpoint handlers."""

    def __init__(self) -> None:
        self.requests: List[httpx.Request] = []
        self.routes: Dict[str, Callable[[httpx.Request, Dict[str, str]], httpx.Response]] = {}

    def route(self, endpoint: str, handler: Callable[[httpx.Request, Dict[str, str]], httpx.Response]) -> None:
        self.routes[endpoint] = handler

    def json(self, endpoint: str, payload: Any, status_code: int = 200) -> None:
        self.routes[endpoint] = lambda request, params: httpx.Response(status_code, json=payload)

    def requests_to(self, endpoint: str) -> List[httpx.Request]:
        return [request for request in self.requests if request.url.path.rsplit("/", 1)[-1] == endpoint]

    def transport(self) -> httpx.MockTransport:
        def handler(request: httpx.Request) -> httpx.Response:
            self.requests.append(request)
            endpoint = request.url.path.rsplit("/", 1)[-1]
            params = {key: values[0] for key, values in parse_qs(request.url.query.decode()).items()}
            route = self.routes.get(endpoint)
            if route is None:
                return httpx.Response(404, json={"success": False})
            return route(request, params)

        return httpx.MockTransport(handler)


def sessions_route(pages: List[Dict[str, Any]]) -> Callable[[httpx.Request, Dict[str, str]], httpx.Response]:
    """Serve ``pages[pageIndex - 1]``; a page may be an ``httpx.Response`` to force a status."""

    def handler(request: httpx.Request, params: Dict[str, str]) -> httpx.Response:
        index = int(params["pageIndex"]) - 1
        if index >= len(pages):
            return httpx.Response(500, json={"error": "page out of range"})
        page = pages[index]
        if isinstance(page, httpx.Response):
            return page
        return httpx.Response(200, json=page)

    return handler


def sessions_page(records: List[Dict[str, Any]], page_index: int, pages: int, *, success: bool = True) -> Dict[str, Any]:
    return {
        "success": success,
        "pagination": {"totalRecords": pages * 2, "pageSize": 2, "pageIndex": page_index, "noOfPages": pages},
        "data": records,
    }


@pytest.fixture
def hapana() -> HapanaStub:
    return HapanaStub()


# ---------------------------------------------------------------------------
# Playwright
# ---------------------------------------------------------------------------


class FakeResponse:
    def __init__(self, url: str, body: Any = None):
        self.url = url
        self._body = body

    async def json(self) -> Any:
        await asyncio.sleep(0)
        if isinstance(self._body, Exception):
            raise self._body
        return self._body


class FakePage:
    def __init__(self, responses: List[FakeResponse], goto_error: Optional[Exception] = None):
        self._responses = responses
        self._goto_error = goto_error
        self.handlers: Dict[str, List[Callable]] = {}
        self.goto_calls: List[Dict[str, Any]] = []
        self.waits: List[int] = []

    def on(self, event: str, handler: Callable) -> None:
        self.handlers.setdefault(event, []).append(handler)

    async def goto(self, url: str, wait_until: str = "load", timeout: Optional[float] = None) -> None:
        self.goto_calls.append({"url": url, "wait_until": wait_until, "timeout": timeout})
        for response in self._responses:
            for handler in self.handlers.get("response", []):
                handler(response)
            await asyncio.sleep(0)
        if self._goto_error is not None:
            raise self._goto_error

    async def wait_for_timeout(self, timeout: float) -> None:
        self.waits.append(timeout)
        await asyncio.sleep(0)


class FakeContext:
    def __init__(self, page: FakePage, page_error: Optional[Exception] = None):
        self._page = page
        self._page_error = page_error

    async def new_page(self) -> FakePage:
        if self._page_error is not None:
            raise self._page_error
        return self._page


class FakeBrowser:
    def __init__(self, context: FakeContext):
        self._context = context
        self.closed = False

    async def new_context(self) -> FakeContext:
        return self._context

    async def close(self) -> None:
        self.closed = True


class FakeChromium:
    def __init__(self, browser: FakeBrowser):
        self._browser = browser
        self.launch_kwargs: Dict[str, Any] = {}

    async def launch(self, **kwargs: Any) -> FakeBrowser:
        self.launch_kwargs = kwargs
        return self._browser


class FakePlaywright:
    def __init__(self, browser: FakeBrowser):
        self.chromium = FakeChromium(browser)
        self.stopped = False

    async def __aenter__(self) -> "FakePlaywright":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self.stopped = True


class BrowserHarness:
    def __init__(self, page: FakePage, browser: FakeBrowser, playwright: FakePlaywright):
        self.page = page
        self.browser = browser
        self.playwright = playwright


@pytest.fixture
def fake_browser(monkeypatch) -> Callable[..., BrowserHarness]:
    """Install a fake ``async_playwright`` serving the given responses."""

    def install(
        responses: List[FakeResponse],
        *,
        goto_error: Optional[Exception] = None,
        page_error: Optional[Exception] = None,
    ) -> BrowserHarness:
        page = FakePage(responses, goto_error=goto_error)
        browser = FakeBrowser(FakeContext(page, page_error=page_error))
        playwright = FakePlaywright(browser)
        monkeypatch.setattr(interception, "async_playwright", lambda: playwright)
        return BrowserHarness(page, browser, playwright)

    return install
