"""Tool handlers invoked by the host platform, with structured responses."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional, Type

import httpx
import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .config import Settings
from .errors import ConfigurationError
from .lifecycle import live_schedule, refresh
from .store import RecordStore
from .sync import BUSINESS_DETAILS_MODEL, PACKAGE_MODEL, SyncOptions

LOGGER = structlog.get_logger(__name__)


class ToolMeta(BaseModel):
    success: bool
    message: str
    tool_name: str


class ToolResponse(BaseModel):
    output: Optional[Any] = None
    billing: Dict[str, int] = Field(default_factory=lambda: {"credits": 0})
    meta: ToolMeta


def success_response(tool_name: str, data: Any, message: Optional[str] = None) -> ToolResponse:
    return ToolResponse(output=data, meta=ToolMeta(success=True, message=message or "OK", tool_name=tool_name))


def error_response(tool_name: str, error: str) -> ToolResponse:
    return ToolResponse(output=None, meta=ToolMeta(success=False, message=error, tool_name=tool_name))


@dataclass
class ToolContext:
    """What a handler gets besides its input: host env, store and process settings."""

    env: Mapping[str, str]
    store: Optional[RecordStore] = None
    settings: Settings = field(default_factory=Settings)
    transport: Optional[httpx.AsyncBaseTransport] = None

    @property
    def record_store(self) -> RecordStore:
        """The store, for handlers that read or write records; live reads never need one."""
        if self.store is None:
            raise ConfigurationError("store_base_url", "BFT_AGENT_STORE_BASE_URL is not set")
        return self.store


Handler = Callable[[Any, ToolContext], Awaitable[ToolResponse]]


@dataclass(frozen=True)
class ToolDefinition:
    name: str
    label: str
    description: str
    input_model: Type[BaseModel]
    handler: Handler

    async def invoke(self, payload: Optional[Mapping[str, Any]], context: ToolContext) -> ToolResponse:
        """Validate input and run the handler; failures come back as error responses."""
        try:
            parsed = self.input_model.model_validate(dict(payload or {}))
        except ValidationError as exc:
            return error_response(self.name, f"Invalid input: {exc}")
        try:
            return await self.handler(parsed, context)
        except Exception as exc:  # noqa: BLE001
            LOGGER.exception("tool.failed", tool=self.name, error=str(exc))
            return error_response(self.name, str(exc) or f"{self.label} failed")


TOOL_REGISTRY: Dict[str, ToolDefinition] = {}


def tool(name: str, label: str, description: str, input_model: Type[BaseModel]) -> Callable[[Handler], Handler]:
    def register(handler: Handler) -> Handler:
        TOOL_REGISTRY[name] = ToolDefinition(name, label, description, input_model, handler)
        return handler

    return register


class EmptyInput(BaseModel):
    pass


class GetScheduleInput(BaseModel):
    days_ahead: Optional[int] = Field(default=None, ge=0, le=60, alias="daysAhead")

    model_config = ConfigDict(populate_by_name=True)


class UpdateBusinessDetailsInput(BaseModel):
    name: Optional[str] = None
    club_id: Optional[str] = None
    address: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    website_url: Optional[str] = None


def _record_summary(record: Mapping[str, Any], keys: tuple[str, ...]) -> Dict[str, Any]:
    summary: Dict[str, Any] = {"id": str(record.get("id", ""))}
    for key in keys:
        summary[key] = record.get(key) or None
    summary["name"] = record.get("name") or ""
    return summary


@tool(
    "get_schedule",
    "Get Schedule",
    "Returns the live class schedule from BFT (always fresh from the Hapana API)",
    GetScheduleInput,
)
async def get_schedule(data: GetScheduleInput, ctx: ToolContext) -> ToolResponse:
    schedule = await live_schedule(
        ctx.env,
        ctx.settings,
        days_ahead=data.days_ahead,
        transport=ctx.transport,
    )
    total = sum(len(entries) for entries in schedule.values())
    return success_response(
        "get_schedule",
        {"schedule": {day: [entry.model_dump() for entry in entries] for day, entries in schedule.items()}},
        f"Found {total} sessions across {len(schedule)} days",
    )


@tool("get_packages", "Get Packages", "Returns all membership packages from the Packages model", EmptyInput)
async def get_packages(data: EmptyInput, ctx: ToolContext) -> ToolResponse:
    records = await ctx.record_store.list(PACKAGE_MODEL, page=1, limit=100)
    packages = [
        _record_summary(record, ("description", "price", "type"))
        for record in records
        if record.get("type") == "package"
    ]
    return success_response("get_packages", {"packages": packages}, f"Found {len(packages)} package(s)")


@tool("get_intro_offer", "Get Intro Offer", "Returns the intro offer from the Packages model", EmptyInput)
async def get_intro_offer(data: EmptyInput, ctx: ToolContext) -> ToolResponse:
    records = await ctx.record_store.list(PACKAGE_MODEL, page=1, limit=100)
    intro = next((record for record in records if record.get("type") == "intro_offer"), None)
    if intro is None:
        return success_response("get_intro_offer", {"intro_offer": None}, "No intro offer found")
    return success_response(
        "get_intro_offer",
        {"intro_offer": _record_summary(intro, ("description", "price", "type"))},
        "Intro offer retrieved successfully",
    )


@tool(
    "get_business_details",
    "Get Business Details",
    "Returns business contact information from the BusinessDetails model",
    EmptyInput,
)
async def get_business_details(data: EmptyInput, ctx: ToolContext) -> ToolResponse:
    records = await ctx.record_store.list(BUSINESS_DETAILS_MODEL, page=1, limit=1)
    if not records:
        return error_response(
            "get_business_details",
            "Business details not found. Please run refresh_data first.",
        )
    details = _record_summary(records[0], ("club_id", "address", "phone", "email", "website_url"))
    return success_response(
        "get_business_details",
        {"business_details": details},
        "Business details retrieved successfully",
    )


@tool(
    "refresh_data",
    "Refresh Data",
    "Re-fetches the club data from Hapana and updates Packages, Classes and BusinessDetails",
    EmptyInput,
)
async def refresh_data(data: EmptyInput, ctx: ToolContext) -> ToolResponse:
    result = await refresh(ctx.env, ctx.record_store, ctx.settings, transport=ctx.transport)
    output = {
        "success": True,
        "message": "Data refreshed successfully",
        "packages_created": result.packages_created,
        "packages_updated": result.packages_updated,
        "classes_created": result.classes_created,
        "classes_updated": result.classes_updated,
        "business_details_updated": result.business_details_updated,
    }
    details = "business details updated" if result.business_details_updated else "business details not updated"
    return success_response(
        "refresh_data",
        output,
        f"Refreshed data: {result.packages_created} packages created, "
        f"{result.packages_updated} packages updated, {result.classes_created} classes created, "
        f"{result.classes_updated} classes updated, {details}",
    )


@tool("sync_packages", "Sync Packages", "Re-fetches the club data and updates only the Packages model", EmptyInput)
async def sync_packages(data: EmptyInput, ctx: ToolContext) -> ToolResponse:
    options = SyncOptions(sync_packages=True, sync_classes=False, sync_business_details=False)
    result = await refresh(ctx.env, ctx.record_store, ctx.settings, options, transport=ctx.transport)
    return success_response(
        "sync_packages",
        {
            "success": True,
            "message": "Packages synced successfully",
            "packages_created": result.packages_created,
            "packages_updated": result.packages_updated,
        },
        f"Synced packages: {result.packages_created} created, {result.packages_updated} updated",
    )


@tool("sync_classes", "Sync Classes", "Re-fetches the club data and updates only the Classes model", EmptyInput)
async def sync_classes(data: EmptyInput, ctx: ToolContext) -> ToolResponse:
    options = SyncOptions(sync_packages=False, sync_classes=True, sync_business_details=False)
    result = await refresh(ctx.env, ctx.record_store, ctx.settings, options, transport=ctx.transport)
    return success_response(
        "sync_classes",
        {
            "success": True,
            "message": "Classes synced successfully",
            "classes_created": result.classes_created,
            "classes_updated": result.classes_updated,
        },
        f"Synced classes: {result.classes_created} created, {result.classes_updated} updated",
    )


@tool(
    "update_business_details",
    "Update Business Details",
    "Updates business contact information in the BusinessDetails model",
    UpdateBusinessDetailsInput,
)
async def update_business_details(data: UpdateBusinessDetailsInput, ctx: ToolContext) -> ToolResponse:
    records = await ctx.record_store.list(BUSINESS_DETAILS_MODEL, page=1, limit=1)

    if not records:
        await ctx.record_store.create(
            BUSINESS_DETAILS_MODEL,
            {
                "name": data.name or "",
                "club_id": data.club_id or None,
                "address": data.address or None,
                "phone": data.phone or None,
                "email": data.email or None,
                "website_url": data.website_url or None,
            },
        )
        message = "Business details created successfully"
    else:
        changes: Dict[str, Optional[str]] = {}
        for key, value in data.model_dump(exclude_unset=True).items():
            changes[key] = value if key == "name" else (value or None)
        await ctx.record_store.update(BUSINESS_DETAILS_MODEL, str(records[0]["id"]), changes)
        message = "Business details updated successfully"

    return success_response("update_business_details", {"success": True, "message": message}, message)


async def invoke_tool(
    name: str,
    payload: Optional[Mapping[str, Any]],
    context: ToolContext,
) -> ToolResponse:
    definition = TOOL_REGISTRY.get(name)
    if definition is None:
        return error_response(name, f"Unknown tool: {name}")
    LOGGER.info("tool.invoke", tool=name)
    return await definition.invoke(payload, context)
