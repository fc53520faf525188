from __future__ import annotations

from collections.abc import Mapping
from datetime import UTC, datetime
from enum import StrEnum
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, field_validator


class CustomerTier(StrEnum):
    VIP = "vip"
    PREMIUM = "premium"
    PLUS = "plus"
    STANDARD = "standard"


class BusinessImpact(StrEnum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


def parse_timestamp(value: Any) -> datetime | None:
    if isinstance(value, datetime):
        return value.replace(tzinfo=UTC) if value.tzinfo is None else value.astimezone(UTC)
    if isinstance(value, bool):
        return None
    if isinstance(value, int | float):
        try:
            return datetime.fromtimestamp(value, UTC)
        except (OverflowError, OSError, ValueError):
            return None
    if isinstance(value, str) and value.strip():
        try:
            parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except ValueError:
            return None
        return parsed.replace(tzinfo=UTC) if parsed.tzinfo is None else parsed.astimezone(UTC)
    return None


class TaskSchedulingData(BaseModel):
    """Typed view over the scheduling keys of a task's data bag.

    Values that cannot be interpreted fall back to their defaults instead of
    failing validation. Keys that are not scheduling metadata end up in
    ``notes``.
    """

    model_config = ConfigDict(extra="ignore")

    urgent: bool = False
    priority_flag: str | None = None
    deadline: datetime | None = None
    customer_tier: CustomerTier = CustomerTier.STANDARD
    business_impact: BusinessImpact | None = None
    max_delay_minutes: int | None = None
    preempt_allowed: bool = False
    inserted_at: datetime | None = None
    hazardous: bool = False
    cold_storage: bool = False
    requires_quality_check: bool = False
    zone: str | None = None
    notes: dict[str, Any] = Field(default_factory=dict)

    @field_validator(
        "urgent",
        "preempt_allowed",
        "hazardous",
        "cold_storage",
        "requires_quality_check",
        mode="before",
    )
    @classmethod
    def _explicit_flag(cls, value: Any) -> bool:
        return value is True

    @field_validator("deadline", "inserted_at", mode="before")
    @classmethod
    def _lenient_timestamp(cls, value: Any) -> datetime | None:
        return parse_timestamp(value)

    @field_validator("customer_tier", mode="before")
    @classmethod
    def _lenient_tier(cls, value: Any) -> CustomerTier:
        if isinstance(value, str) and value.strip().lower() in CustomerTier._value2member_map_:
            return CustomerTier(value.strip().lower())
        return CustomerTier.STANDARD

    @field_validator("business_impact", mode="before")
    @classmethod
    def _lenient_impact(cls, value: Any) -> BusinessImpact | None:
        if isinstance(value, str) and value.strip().lower() in BusinessImpact._value2member_map_:
            return BusinessImpact(value.strip().lower())
        return None

    @field_validator("max_delay_minutes", mode="before")
    @classmethod
    def _lenient_minutes(cls, value: Any) -> int | None:
        if isinstance(value, bool) or not isinstance(value, int):
            return None
        return value

    @field_validator("priority_flag", "zone", mode="before")
    @classmethod
    def _lenient_text(cls, value: Any) -> str | None:
        return value if isinstance(value, str) and value else None

    @classmethod
    def from_data(cls, data: Mapping[str, Any] | None) -> TaskSchedulingData:
        raw = dict(data or {})
        known = {key for key in cls.model_fields if key != "notes"}
        payload: dict[str, Any] = {key: raw[key] for key in known if key in raw}
        payload["notes"] = {key: value for key, value in raw.items() if key not in known}
        return cls.model_validate(payload)


class _DetailsBase(BaseModel):
    model_config = ConfigDict(extra="ignore")

    items: list[dict[str, Any]] = Field(default_factory=list)


class InboundDetails(_DetailsBase):
    kind: Literal["inbound"] = "inbound"
    purchase_order_id: str | None = None
    supplier_name: str | None = None
    receiving_dock: str | None = None
    expected_arrival_date: str | None = None


class OutboundDetails(_DetailsBase):
    kind: Literal["outbound"] = "outbound"
    sales_order_id: str | None = None
    picking_zone: str | None = None
    shipping_method: str | None = None
    shipping_carrier: str | None = None
    required_delivery_date: str | None = None


class QualityDetails(_DetailsBase):
    kind: Literal["quality"] = "quality"
    inspection_type: str | None = None
    trigger_reason: str | None = None
    related_order_id: str | None = None
    inspection_location: str | None = None
    sampling_method: str | None = None


class CountDetails(_DetailsBase):
    kind: Literal["count"] = "count"
    count_plan_id: int | None = None
    zone_type: str | None = None
    location_codes: list[str] = Field(default_factory=list)


class TransferDetails(_DetailsBase):
    kind: Literal["transfer"] = "transfer"
    from_location: str | None = None
    to_location: str | None = None


TaskDetails = Annotated[
    InboundDetails | OutboundDetails | QualityDetails | CountDetails | TransferDetails,
    Field(discriminator="kind"),
]

_DETAILS_ADAPTER: TypeAdapter[TaskDetails] = TypeAdapter(TaskDetails)

DETAILS_BY_KIND: dict[str, type[_DetailsBase]] = {
    "inbound": InboundDetails,
    "outbound": OutboundDetails,
    "quality": QualityDetails,
    "count": CountDetails,
    "transfer": TransferDetails,
}


def parse_task_details(kind: str, data: Mapping[str, Any] | None) -> TaskDetails:
    raw = dict(data or {})
    raw["kind"] = kind
    try:
        return _DETAILS_ADAPTER.validate_python(raw)
    except ValidationError:
        return _DETAILS_ADAPTER.validate_python({"kind": kind})


def details_to_data(details: _DetailsBase) -> dict[str, Any]:
    return details.model_dump(mode="json", exclude={"kind"}, exclude_none=True)
