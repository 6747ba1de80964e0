"""Idempotent create-or-update of canonical records into the host store."""

from __future__ import annotations

import asyncio
import weakref
from dataclasses import dataclass
from typing import Any, Dict, List, Tuple

import structlog

from .errors import SyncItemFailure
from .models import ScrapedData, SyncResult
from .store import RecordStore
from .utils import parse_club_name

LOGGER = structlog.get_logger(__name__)

BUSINESS_DETAILS_MODEL = "business_details"
PACKAGE_MODEL = "package"
CLASS_MODEL = "class"

_INSTALLATION_LOCKS: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()


def installation_lock(key: str) -> asyncio.Lock:
    """Return the lock serializing syncs for one installation."""
    lock = _INSTALLATION_LOCKS.get(key)
    if lock is None:
        lock = asyncio.Lock()
        _INSTALLATION_LOCKS[key] = lock
    return lock


@dataclass(frozen=True)
class SyncOptions:
    sync_packages: bool = True
    sync_classes: bool = True
    sync_business_details: bool = True


class SyncEngine:
    """
    Reconciles scraped data with the store by natural key.

    Packages and classes are matched on ``name``; business details is a
    singleton. Records are created or updated, never deleted. The store has no
    uniqueness constraint, so runs for the same installation are serialized.
    """

    def __init__(self, store: RecordStore):
        self._store = store

    async def sync(self, url: str, data: ScrapedData, options: SyncOptions = SyncOptions()) -> SyncResult:
        async with installation_lock(url):
            return await self._sync(url, data, options)

    async def _sync(self, url: str, data: ScrapedData, options: SyncOptions) -> SyncResult:
        result = SyncResult(scraped_data=data)

        if options.sync_business_details:
            result.business_details_updated = await self._sync_business_details(url, data)

        if options.sync_packages:
            items = [
                {
                    "name": package.name,
                    "description": package.description,
                    "price": package.price,
                    "type": package.type,
                }
                for package in data.packages
            ]
            result.packages_created, result.packages_updated = await self._sync_named(PACKAGE_MODEL, items)
            LOGGER.info("sync.packages", created=result.packages_created, updated=result.packages_updated)

        if options.sync_classes:
            items = [
                {
                    "name": cls.name,
                    "description": cls.description,
                    "duration": cls.duration,
                    "category": cls.category,
                }
                for cls in data.classes
            ]
            result.classes_created, result.classes_updated = await self._sync_named(CLASS_MODEL, items)
            LOGGER.info("sync.classes", created=result.classes_created, updated=result.classes_updated)

        return result

    async def _sync_business_details(self, url: str, data: ScrapedData) -> bool:
        details = data.business_details
        fields = {
            "name": details.name,
            "club_id": parse_club_name(url),
            "address": details.address,
            "phone": details.phone,
            "email": details.email,
            "website_url": details.website_url,
        }
        try:
            existing = await self._store.list(BUSINESS_DETAILS_MODEL, page=1, limit=1)
            if existing:
                await self._store.update(BUSINESS_DETAILS_MODEL, str(existing[0]["id"]), fields)
            else:
                await self._store.create(BUSINESS_DETAILS_MODEL, fields)
        except Exception as exc:  # noqa: BLE001
            failure = SyncItemFailure(BUSINESS_DETAILS_MODEL, details.name, str(exc))
            LOGGER.exception("sync.business_details.failed", error=str(failure))
            return False
        LOGGER.info("sync.business_details", name=details.name)
        return True

    async def _sync_named(self, model: str, items: List[Dict[str, Any]]) -> Tuple[int, int]:
        created = 0
        updated = 0
        for fields in items:
            try:
                was_created = await self._upsert_by_name(model, fields)
            except SyncItemFailure as exc:
                LOGGER.error("sync.item.failed", model=exc.model, name=exc.name, error=str(exc))
                continue
            if was_created:
                created += 1
            else:
                updated += 1
        return created, updated

    async def _upsert_by_name(self, model: str, fields: Dict[str, Any]) -> bool:
        """Update the record named ``fields['name']`` or create it; True when created."""
        name = fields["name"]
        try:
            existing = await self._store.list(model, filter={"name": name}, limit=1)
            if existing:
                await self._store.update(model, str(existing[0]["id"]), fields)
                return False
            await self._store.create(model, fields)
            return True
        except Exception as exc:  # noqa: BLE001
            raise SyncItemFailure(model, name, f"Failed to sync {model} {name!r}: {exc}") from exc
