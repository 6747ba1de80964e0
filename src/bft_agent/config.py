"""Configuration objects for the BFT agent."""

from __future__ import annotations

from typing import Mapping, Optional
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

from .errors import ConfigurationError
from .utils import parse_club_name


class Settings(BaseSettings):
    """Process-wide runtime configuration sourced from environment variables."""

    hapana_base_url: str = Field("https://widgetapi.hapana.com/v2/wAPI/site")
    hapana_host: str = Field("widgetapi.hapana.com")
    headless: bool = Field(True)
    navigation_timeout_seconds: int = Field(30)
    grace_period_ms: int = Field(2000)
    http_timeout_seconds: float = Field(30.0)
    sessions_page_size: int = Field(20)
    days_ahead: int = Field(14)
    detail_concurrency: int = Field(4)
    brand_prefix: str = Field("BFT")
    store_base_url: Optional[str] = Field(None)
    store_token: Optional[SecretStr] = Field(None)

    model_config = SettingsConfigDict(
        env_prefix="BFT_AGENT_",
        env_file=(".env",),
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )


class InstallationEnv(BaseModel):
    """Per-installation values handed over by the host platform."""

    bft_url: Optional[str] = Field(default=None, alias="BFT_URL")
    hapana_site_id: Optional[str] = Field(default=None, alias="HAPANA_SITE_ID")

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    @classmethod
    def from_mapping(cls, env: Optional[Mapping[str, str]]) -> "InstallationEnv":
        return cls.model_validate(dict(env or {}))

    def require_url(self) -> str:
        """Return the club URL or raise if it is missing or malformed."""
        url = (self.bft_url or "").strip()
        if not url:
            raise ConfigurationError("BFT_URL", "BFT_URL is not set. Please re-install the app.")

        parsed = urlparse(url)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ConfigurationError(
                "BFT_URL",
                f"Invalid BFT_URL: {url}. Please enter a valid URL "
                "(e.g., https://www.bodyfittraining.au/club/braybrook)",
            )
        if not parse_club_name(url):
            raise ConfigurationError(
                "BFT_URL",
                f"Could not parse club name from URL: {url}. URL should be in format: "
                "https://www.bodyfittraining.au/club/{club-name}",
            )
        return url

    def require_site_id(self) -> str:
        """Return the discovered site identity or raise if install never completed."""
        site_id = (self.hapana_site_id or "").strip()
        if not site_id:
            raise ConfigurationError(
                "HAPANA_SITE_ID",
                "HAPANA_SITE_ID is not set. Please re-install the app.",
            )
        return site_id

    def as_env(self) -> dict[str, str]:
        values = {"BFT_URL": self.bft_url, "HAPANA_SITE_ID": self.hapana_site_id}
        return {key: value for key, value in values.items() if value}
