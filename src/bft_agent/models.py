"""Pydantic models for Hapana payloads and the canonical BFT records."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


class VendorModel(BaseModel):
    """Base for Hapana payloads: camelCase aliases, unknown keys ignored."""

    # Hapana sends some ids and durations as numbers.
    model_config = ConfigDict(populate_by_name=True, extra="ignore", coerce_numbers_to_str=True)

    @model_validator(mode="before")
    @classmethod
    def drop_nulls(cls, value: Any) -> Any:
        """Let field defaults apply where Hapana sends explicit nulls."""
        if isinstance(value, dict):
            return {key: item for key, item in value.items() if item is not None}
        return value


# ---------------------------------------------------------------------------
# Hapana payloads
# ---------------------------------------------------------------------------


class ThemeConfig(VendorModel):
    background_color: str = Field(default="", alias="backgroundColor")
    primary_color: str = Field(default="", alias="primaryColor")
    primary_text_color: str = Field(default="", alias="primaryTextColor")
    secondary_color: str = Field(default="", alias="secondaryColor")
    secondary_text_color: str = Field(default="", alias="secondaryTextColor")


class SiteSettings(VendorModel):
    """Response of ``/site/settings``."""

    corporate_id: str = Field(default="", alias="corporateID")
    site_id: str = Field(default="", alias="siteID")
    widget_id: str = Field(default="", alias="widgetID")
    site_name: str = Field(default="", alias="siteName")
    currency_symbol: str = Field(default="$", alias="currencySymbol")
    currency_code: str = Field(default="", alias="currencyCode")
    timezone: Optional[str] = None
    date_format: Optional[str] = Field(default=None, alias="dateFormat")
    days_to_display: Optional[int] = Field(default=None, alias="daysToDisplay")
    display_session_size: bool = Field(default=False, alias="displaySessionSize")
    signup_allowed: bool = Field(default=False, alias="signupAllowed")
    theme_config: Optional[ThemeConfig] = Field(default=None, alias="themeConfig")


class Instructor(VendorModel):
    instructor_id: str = Field(default="", alias="instructorID")
    instructor_name: str = Field(default="", alias="instructorName")
    instructor_profile: str = Field(default="", alias="instructorProfile")


class SessionOccurrence(VendorModel):
    """One scheduled class from ``/site/sessions``."""

    session_id: str = Field(default="", alias="sessionID")
    session_name: str = Field(default="", alias="sessionName")
    session_date: str = Field(default="", alias="sessionDate")
    start_time: str = Field(default="", alias="startTime")
    end_time: str = Field(default="", alias="endTime")
    duration: str = ""
    session_type: str = Field(default="", alias="sessionType")
    instructor: str = ""
    instructor_data: List[Instructor] = Field(default_factory=list, alias="instructorData")
    capacity: int = 0
    reserved: int = 0
    remaining: int = 0
    waitlist_capacity: int = Field(default=0, alias="waitlistCapacity")
    waitlist_reserved: int = Field(default=0, alias="waitlistReserved")
    waitlist_remaining: int = Field(default=0, alias="waitlistRemaining")
    # open | full | waitlist | complete | closed
    session_status: str = Field(default="open", alias="sessionStatus")
    address: str = ""
    session_location_type: str = Field(default="", alias="sessionLocationType")
    timezone: str = ""
    session_image: str = Field(default="", alias="sessionImage")
    session_template: str = Field(default="", alias="sessionTemplate")
    session_template_id: str = Field(default="", alias="sessionTemplateID")


class Pagination(VendorModel):
    total_records: int = Field(default=0, alias="totalRecords")
    page_size: int = Field(default=20, alias="pageSize")
    page_index: int = Field(default=1, alias="pageIndex")
    no_of_pages: int = Field(default=1, alias="noOfPages")


class PackageOffering(VendorModel):
    """One membership, pass or intro offer from ``/site/packages``."""

    package_id: str = Field(default="", alias="packageID")
    name: str = ""
    type: str = ""
    category: str = ""
    description: str = ""
    amount: float = 0
    billing_cycle: Optional[str] = Field(default=None, alias="billingCycle")
    earliest_cancel: Optional[str] = Field(default=None, alias="earliestCancel")
    expiration_period: Optional[str] = Field(default=None, alias="expirationPeriod")
    intro_offer: bool = Field(default=False, alias="introOffer")
    valid_purchase: bool = Field(default=True, alias="validPurchase")
    sort_order: Optional[int] = Field(default=None, alias="sortOrder")
    session_type: Optional[str] = Field(default=None, alias="sessionType")
    cms_access: bool = Field(default=False, alias="cmsAccess")
    secondary_recurring_fees: Optional[float] = Field(default=None, alias="secondaryRecurringFees")


class SessionsPage(BaseModel):
    """Sessions collected across every fetched page plus the pagination block of page one."""

    sessions: List[SessionOccurrence] = Field(default_factory=list)
    pagination: Pagination = Field(default_factory=Pagination)


class DiscoveryResult(BaseModel):
    """Everything captured from a single club page load."""

    site_id: str
    settings: Optional[SiteSettings] = None
    sessions: List[SessionOccurrence] = Field(default_factory=list)
    packages: List[PackageOffering] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Canonical records
# ---------------------------------------------------------------------------

PackageType = Literal["package", "intro_offer"]


class BusinessDetails(BaseModel):
    name: str
    address: str = ""
    phone: str = ""
    email: str = ""
    website_url: str = ""
    timezone: Optional[str] = None
    currency: Optional[str] = None


class Package(BaseModel):
    name: str
    description: str = ""
    price: str = ""
    type: PackageType = "package"


class ClassType(BaseModel):
    name: str
    description: str = ""
    duration: Optional[str] = None
    category: Optional[str] = None


class ScheduleEntry(BaseModel):
    session_id: str
    session_name: str
    date: str
    start_time: str
    end_time: str
    duration: str
    instructor: str
    capacity: int
    reserved: int
    remaining: int
    status: str
    address: str
    session_template: str


Schedule = Dict[str, List[ScheduleEntry]]


class ScrapedData(BaseModel):
    business_details: BusinessDetails
    packages: List[Package] = Field(default_factory=list)
    classes: List[ClassType] = Field(default_factory=list)
    schedule: Schedule = Field(default_factory=dict)


class SyncResult(BaseModel):
    packages_created: int = 0
    packages_updated: int = 0
    classes_created: int = 0
    classes_updated: int = 0
    business_details_updated: bool = False
    scraped_data: Optional[ScrapedData] = None


@dataclass
class UniqueClass:
    """First occurrence of a class template, kept for description lookups."""

    name: str
    template: str
    duration: str
    image: str
    session_id: str
    session_date: str

    @property
    def fallback_description(self) -> str:
        return self.template if self.template != self.name else ""


@dataclass
class InterceptionCapture:
    """Raw material accumulated while the club page loaded."""

    site_id: Optional[str] = None
    payloads: Dict[str, List[Any]] = field(default_factory=dict)
    observed_urls: List[str] = field(default_factory=list)

    def of_kind(self, kind: str) -> List[Any]:
        return self.payloads.get(kind, [])
