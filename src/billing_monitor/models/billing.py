"""
Billing value types produced by a Cost Explorer fetch.

Snapshots are immutable and produced wholesale by one fetch. Aggregates are
always derived from the current snapshot set and never stored.
"""

import calendar
from collections.abc import Iterable
from datetime import date, datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


SERVICE_NAME_PREFIXES = ("Amazon ", "AWS ")


def percent_change(current: float, previous: float) -> float | None:
    """Month-over-month change in percent, None when previous <= 0."""
    if previous <= 0:
        return None
    return (current - previous) / previous * 100


class ServiceCost(BaseModel):
    """Cost for a single AWS service in the current month."""

    model_config = ConfigDict(frozen=True)

    service_name: str
    cost: float
    percentage: float

    @property
    def short_name(self) -> str:
        """Service name without a leading "Amazon " or "AWS " prefix."""
        for prefix in SERVICE_NAME_PREFIXES:
            if self.service_name.startswith(prefix):
                return self.service_name[len(prefix) :]
        return self.service_name

    @classmethod
    def breakdown(cls, costs: Iterable[tuple[str, float]], total: float) -> tuple["ServiceCost", ...]:
        """
        Build the per-service breakdown for one snapshot.

        Entries with non-positive cost are dropped before normalization, the
        rest are sorted by cost descending. Percentages are taken against the
        snapshot total; if the positive service costs add up to more than that
        total, their own sum is used so the percentages never exceed 100.

        Args:
            costs: (service name, cost) pairs
            total: Month-to-date total of the snapshot

        Returns:
            Tuple of ServiceCost sorted by cost descending
        """
        positive = [(name, cost) for name, cost in costs if cost > 0]
        denominator = max(total, sum(cost for _, cost in positive))

        services = [
            cls(
                service_name=name,
                cost=cost,
                percentage=(cost / denominator * 100) if denominator > 0 else 0.0,
            )
            for name, cost in positive
        ]
        services.sort(key=lambda service: service.cost, reverse=True)
        return tuple(services)


class DailyCost(BaseModel):
    """Cost for a single day."""

    model_config = ConfigDict(frozen=True)

    date: date
    cost: float


class MonthlyCost(BaseModel):
    """Cost for one calendar month."""

    model_config = ConfigDict(frozen=True)

    month: str = Field(..., pattern=r"^\d{4}-\d{2}$")  # YYYY-MM
    cost: float
    is_complete: bool = True

    def _month_start(self) -> date | None:
        try:
            return datetime.strptime(self.month, "%Y-%m").date()
        except ValueError:
            return None

    @property
    def display_month(self) -> str:
        """Month formatted as "Mar 2024"."""
        start = self._month_start()
        return f"{calendar.month_abbr[start.month]} {start.year}" if start else self.month

    @property
    def short_month(self) -> str:
        """Month formatted as "Mar"."""
        start = self._month_start()
        return calendar.month_abbr[start.month] if start else self.month


class BillingSnapshot(BaseModel):
    """Billing data for one account, as returned by a single fetch."""

    model_config = ConfigDict(frozen=True)

    account_id: str
    account_name: str
    month_to_date_cost: float
    last_month_cost: float
    forecasted_month_cost: float | None = None
    daily_average_cost: float = 0.0
    cost_by_service: tuple[ServiceCost, ...] = ()
    daily_costs: tuple[DailyCost, ...] = ()
    monthly_costs: tuple[MonthlyCost, ...] = ()
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    currency: str = "USD"

    @field_validator("currency")
    @classmethod
    def validate_currency(cls, v: str) -> str:
        """Validate and normalize currency code."""
        if not v or not v.strip():
            raise ValueError("Currency must be specified")
        return v.upper().strip()

    @field_validator("cost_by_service")
    @classmethod
    def sort_services(cls, v: tuple[ServiceCost, ...]) -> tuple[ServiceCost, ...]:
        return tuple(sorted(v, key=lambda service: service.cost, reverse=True))

    @field_validator("daily_costs")
    @classmethod
    def sort_daily(cls, v: tuple[DailyCost, ...]) -> tuple[DailyCost, ...]:
        return tuple(sorted(v, key=lambda day: day.date))

    @field_validator("monthly_costs")
    @classmethod
    def sort_monthly(cls, v: tuple[MonthlyCost, ...]) -> tuple[MonthlyCost, ...]:
        return tuple(sorted(v, key=lambda month: month.month))

    @property
    def month_over_month_change(self) -> float | None:
        """Change from last month in percent."""
        return percent_change(self.month_to_date_cost, self.last_month_cost)

    @property
    def projected_month_total(self) -> float | None:
        """Month-to-date cost plus the forecast for the rest of the month."""
        if self.forecasted_month_cost is None:
            return None
        return self.month_to_date_cost + self.forecasted_month_cost

    @property
    def days_remaining_in_month(self) -> int:
        today = date.today()
        return calendar.monthrange(today.year, today.month)[1] - today.day

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return self.model_dump(mode="json")


class AggregatedBilling(BaseModel):
    """Totals across a set of account snapshots."""

    model_config = ConfigDict(frozen=True)

    total_month_to_date: float = 0.0
    total_last_month: float = 0.0
    total_forecast: float | None = None
    snapshots: tuple[BillingSnapshot, ...] = ()
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def from_snapshots(cls, snapshots: Iterable[BillingSnapshot]) -> "AggregatedBilling":
        snapshots = tuple(snapshots)
        forecasts = [
            snapshot.forecasted_month_cost
            for snapshot in snapshots
            if snapshot.forecasted_month_cost is not None
        ]

        values: dict[str, Any] = {
            "total_month_to_date": sum(snapshot.month_to_date_cost for snapshot in snapshots),
            "total_last_month": sum(snapshot.last_month_cost for snapshot in snapshots),
            "total_forecast": sum(forecasts) if forecasts else None,
            "snapshots": snapshots,
        }
        if snapshots:
            values["updated_at"] = max(snapshot.updated_at for snapshot in snapshots)
        return cls(**values)

    @property
    def month_over_month_change(self) -> float | None:
        return percent_change(self.total_month_to_date, self.total_last_month)
