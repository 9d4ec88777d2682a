"""Cron, work-order and integration types."""

from __future__ import annotations

import re
from datetime import datetime, time, timezone
from enum import Enum
from typing import Annotated, Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import AfterValidator, BaseModel, ConfigDict, Field, model_validator

_ZIP_RE = re.compile(r"^\d{5}(-\d{4})?$")


class CronStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"


class IntegrationStatus(str, Enum):
    CONNECTED = "Connected"
    NOT_CONNECTED = "Not Connected"


class RunState(str, Enum):
    """Outcome of one dispatcher run of one cron."""

    SKIPPED = "skipped"
    FETCHING = "fetching"
    SUBMITTING = "submitting"
    COMPLETED = "completed"
    FAILED = "failed"


class SubmitResult(str, Enum):
    SUBMITTED = "submitted"
    ALREADY_TAKEN = "already_taken"


# ── Field helpers (shared by CronTask / CronCreate / CronPatch) ──


def as_utc(value: datetime) -> datetime:
    """Naive datetimes are taken as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _check_zip(value: str) -> str:
    value = value.strip()
    if not _ZIP_RE.match(value):
        raise ValueError(f"Invalid ZIP code: {value!r}")
    return value


def _check_timezone(value: str) -> str:
    try:
        ZoneInfo(value)
    except (ZoneInfoNotFoundError, ValueError):
        raise ValueError(f"Unknown timezone: {value!r}")
    return value


def _check_time_of_day(value: time) -> time:
    if value.tzinfo is not None:
        raise ValueError(f"Working window time must not carry a UTC offset: {value.isoformat()}")
    return value


def _as_local_time(value: time) -> time:
    return value.replace(tzinfo=None)


def _check_types(value: list[int]) -> list[int]:
    if not value:
        raise ValueError("At least one type of work order is required")
    return list(dict.fromkeys(value))


UtcDatetime = Annotated[datetime, AfterValidator(as_utc)]
ZipCode = Annotated[str, AfterValidator(_check_zip)]
TimezoneName = Annotated[str, AfterValidator(_check_timezone)]
TypeIds = Annotated[list[int], AfterValidator(_check_types)]
TimeOfDay = Annotated[time, AfterValidator(_check_time_of_day)]
LocalTime = Annotated[time, AfterValidator(_as_local_time)]


# ════════════════════════════════════════════════════════════
# CRON
# ════════════════════════════════════════════════════════════


class CronTask(BaseModel):
    """Cron definition + run state: mirrors the SQLite crons table."""

    cron_id: int
    user_id: str
    center_zip: str
    driving_radius: float
    cron_start_at: UtcDatetime
    cron_end_at: UtcDatetime
    working_window_start_at: LocalTime
    working_window_end_at: LocalTime
    timezone: str | None = None  # None = scheduler.timezone
    types_of_work_order: list[int] = Field(default_factory=list)
    requested_wo_ids: list[int] = Field(default_factory=list)
    total_requested: int = 0
    status: CronStatus = CronStatus.ACTIVE
    deleted: bool = False
    created_at: str | None = None
    updated_at: str | None = None
    last_run_at: str | None = None

    def with_requested(self, wo_ids: list[int]) -> CronTask:
        """Return a copy with ``wo_ids`` appended to the requested set.

        Ids already present are ignored; ``total_requested`` tracks the set size.
        """
        merged = list(dict.fromkeys([*self.requested_wo_ids, *wo_ids]))
        return self.model_copy(
            update={"requested_wo_ids": merged, "total_requested": len(merged)}
        )


class CronCreate(BaseModel):
    """Validated input for a new cron."""

    model_config = ConfigDict(extra="forbid")

    center_zip: ZipCode
    driving_radius: float = Field(gt=0)
    cron_start_at: UtcDatetime
    cron_end_at: UtcDatetime
    working_window_start_at: TimeOfDay
    working_window_end_at: TimeOfDay
    timezone: TimezoneName | None = None
    types_of_work_order: TypeIds
    status: CronStatus = CronStatus.ACTIVE

    @model_validator(mode="after")
    def _check_range(self) -> CronCreate:
        if self.cron_end_at <= self.cron_start_at:
            raise ValueError("cron_end_at must be after cron_start_at")
        return self


class CronPatch(BaseModel):
    """Partial update. Only fields explicitly set are applied.

    Run state (requested_wo_ids, total_requested) and the deleted flag are
    not patchable here.
    """

    model_config = ConfigDict(extra="forbid")

    center_zip: ZipCode | None = None
    driving_radius: float | None = Field(default=None, gt=0)
    cron_start_at: UtcDatetime | None = None
    cron_end_at: UtcDatetime | None = None
    working_window_start_at: TimeOfDay | None = None
    working_window_end_at: TimeOfDay | None = None
    timezone: TimezoneName | None = None
    types_of_work_order: TypeIds | None = None
    status: CronStatus | None = None

    @model_validator(mode="after")
    def _no_nulls(self) -> CronPatch:
        for name in self.model_fields_set:
            if name != "timezone" and getattr(self, name) is None:
                raise ValueError(f"{name} cannot be null")
        return self

    def changes(self) -> dict[str, Any]:
        return self.model_dump(exclude_unset=True)


# ════════════════════════════════════════════════════════════
# MARKETPLACE
# ════════════════════════════════════════════════════════════


class WorkOrder(BaseModel):
    """A candidate work order listed by the marketplace."""

    id: int
    type_id: int | None = None
    distance: float | None = None  # miles from the query ZIP
    title: str = ""
    zip: str | None = None

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> WorkOrder:
        """Build from a Field Nation work-order payload.

        Accepts both ``types_of_work`` (list, primary flagged) and the older
        single ``type_of_work`` object.
        """
        type_id = None
        types = data.get("types_of_work") or []
        if types:
            primary = next((t for t in types if t.get("isPrimary")), types[0])
            type_id = primary.get("id")
        elif isinstance(data.get("type_of_work"), dict):
            type_id = data["type_of_work"].get("id")

        location = data.get("location") or {}
        address = location.get("address") or {}
        return cls(
            id=int(data["id"]),
            type_id=type_id,
            distance=location.get("distance"),
            title=data.get("title") or "",
            zip=address.get("zip") or location.get("zip"),
        )


class WorkOrderQuery(BaseModel):
    """Server-side filter for listing candidates."""

    zip: str
    radius: float
    type_ids: list[int] = Field(default_factory=list)


class TokenPair(BaseModel):
    access_token: str
    refresh_token: str
    fn_user_id: int | None = None


# ════════════════════════════════════════════════════════════
# INTEGRATION
# ════════════════════════════════════════════════════════════


class Integration(BaseModel):
    """Per-user Field Nation account link: mirrors the integrations table."""

    user_id: str
    fn_user_id: int | None = None
    fn_username: str | None = None
    access_token: str | None = None
    refresh_token: str | None = None
    integration_status: IntegrationStatus = IntegrationStatus.NOT_CONNECTED
    last_connected_at: datetime | None = None

    @property
    def connected(self) -> bool:
        return self.integration_status == IntegrationStatus.CONNECTED

    def last_connected_ago(self, now: datetime | None = None) -> str:
        """Human-readable age of the last connect, e.g. ``"3 days ago"``."""
        if self.last_connected_at is None:
            return ""
        now = as_utc(now or datetime.now(timezone.utc))
        days = (now - as_utc(self.last_connected_at)).days
        return f"{days} {'days' if days > 1 else 'day'} ago"

    def public(self, include_tokens: bool = False) -> dict[str, Any]:
        """Serializable view. Tokens only for privileged callers."""
        exclude = None if include_tokens else {"access_token", "refresh_token"}
        data = self.model_dump(mode="json", exclude=exclude)
        data["last_connected_ago"] = self.last_connected_ago()
        return data


# ════════════════════════════════════════════════════════════
# DISPATCH RESULT
# ════════════════════════════════════════════════════════════


class TaskRunResult(BaseModel):
    """What happened to one cron in one dispatcher run."""

    cron_id: int
    state: RunState
    reason: str | None = None
    fetched: int = 0
    submitted: list[int] = Field(default_factory=list)
    already_taken: list[int] = Field(default_factory=list)
    failed: list[int] = Field(default_factory=list)
    error: str | None = None
    duration_ms: int = 0
