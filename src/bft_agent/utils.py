"""Utility helpers for dates, URLs and vendor text."""

from __future__ import annotations

import re
from datetime import date, timedelta
from typing import Optional

import structlog
from bs4 import BeautifulSoup
from dateutil import parser as date_parser

LOGGER = structlog.get_logger(__name__)

CLUB_PATH_RE = re.compile(r"/club/([^/]+)/?$")


def parse_club_name(url: str) -> str:
    """
    Return the club slug from a BFT club URL.

    ``https://www.bodyfittraining.au/club/braybrook/`` gives ``braybrook``; any
    other shape gives an empty string.
    """
    match = CLUB_PATH_RE.search((url or "").split("?", 1)[0].split("#", 1)[0])
    return match.group(1) if match else ""


def date_range(days_ahead: int = 14, today: Optional[date] = None) -> tuple[str, str]:
    """Return ``(start, end)`` ISO dates covering today through ``days_ahead``."""
    start = today or date.today()
    end = start + timedelta(days=days_ahead)
    return start.isoformat(), end.isoformat()


def to_iso_date(text: str) -> str:
    """Normalise a vendor date to ``YYYY-MM-DD``, leaving unparseable input untouched."""
    cleaned = (text or "").strip()
    if not cleaned:
        return cleaned
    try:
        return date_parser.isoparse(cleaned).date().isoformat()
    except (ValueError, OverflowError):
        pass
    try:
        return date_parser.parse(cleaned, dayfirst=True).date().isoformat()
    except (ValueError, OverflowError) as exc:
        LOGGER.debug("utils.date_unparsed", value=cleaned, error=str(exc))
        return cleaned


def normalise_whitespace(text: str) -> str:
    """Collapse repeated whitespace into single spaces."""
    return re.sub(r"\s+", " ", text or "").strip()


def html_to_text(markup: str) -> str:
    """Reduce a vendor HTML fragment to plain text."""
    if not markup:
        return ""
    if "<" not in markup:
        return normalise_whitespace(markup)
    soup = BeautifulSoup(markup, "html.parser")
    return normalise_whitespace(soup.get_text(" "))


def format_amount(amount: float) -> str:
    """Render a price amount without a trailing ``.0`` for whole numbers."""
    value = float(amount)
    if value.is_integer():
        return str(int(value))
    return repr(value)
