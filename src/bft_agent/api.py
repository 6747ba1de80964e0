"""FastAPI application exposing the install hook and tools to the host platform."""

from __future__ import annotations

import logging
import sys
from typing import Any, AsyncIterator, Dict, Optional

import structlog
from fastapi import Depends, FastAPI, HTTPException
from pydantic import BaseModel, Field

from .config import Settings
from .errors import ConfigurationError, DiscoveryFailure, UpstreamError
from .lifecycle import install
from .store import HttpRecordStore, RecordStore
from .tools import TOOL_REGISTRY, ToolContext, ToolResponse, invoke_tool


def configure_logging(level: int = logging.INFO) -> None:
    """Configure structlog + stdlib logging."""
    logging.basicConfig(
        level=level,
        format="%(message)s",
        stream=sys.stdout,
    )
    structlog.configure(
        processors=[
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.add_log_level,
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


configure_logging()
LOGGER = structlog.get_logger(__name__)

app = FastAPI(title="BFT Agent", version="0.1.0")


class InstallRequest(BaseModel):
    env: Dict[str, str] = Field(default_factory=dict)


class InstallResponse(BaseModel):
    env: Dict[str, str]


class ToolRequest(BaseModel):
    env: Dict[str, str] = Field(default_factory=dict)
    input: Dict[str, Any] = Field(default_factory=dict)


def get_settings() -> Settings:
    return Settings()


async def get_optional_store(settings: Settings = Depends(get_settings)) -> AsyncIterator[Optional[RecordStore]]:
    """Yield the configured store, or None when no store URL is set."""
    if not settings.store_base_url:
        yield None
        return
    async with HttpRecordStore.from_settings(settings) as store:
        yield store


def get_store(store: Optional[RecordStore] = Depends(get_optional_store)) -> RecordStore:
    if store is None:
        raise HTTPException(status_code=500, detail="BFT_AGENT_STORE_BASE_URL is not set")
    return store


@app.post("/install", response_model=InstallResponse)
async def install_hook(
    request: InstallRequest,
    settings: Settings = Depends(get_settings),
    store: RecordStore = Depends(get_store),
) -> InstallResponse:
    """Discover the site identity and return the env the host should persist."""
    LOGGER.info("api.install")
    try:
        result = await install(request.env, store, settings)
    except ConfigurationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except (DiscoveryFailure, UpstreamError) as exc:
        LOGGER.error("api.install_failed", error=str(exc))
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    return InstallResponse(env=result.env)


@app.post("/tools/{tool_name}", response_model=ToolResponse)
async def run_tool(
    tool_name: str,
    request: ToolRequest,
    settings: Settings = Depends(get_settings),
    store: Optional[RecordStore] = Depends(get_optional_store),
) -> ToolResponse:
    if tool_name not in TOOL_REGISTRY:
        raise HTTPException(status_code=404, detail=f"Unknown tool: {tool_name}")
    context = ToolContext(env=request.env, store=store, settings=settings)
    return await invoke_tool(tool_name, request.input, context)
