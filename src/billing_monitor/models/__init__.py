"""Account, credential and billing value types."""

from .account import DEFAULT_REGION, Account, AccountColor, Credentials
from .billing import (
    AggregatedBilling,
    BillingSnapshot,
    DailyCost,
    MonthlyCost,
    ServiceCost,
    percent_change,
)

__all__ = [
    "DEFAULT_REGION",
    "Account",
    "AccountColor",
    "Credentials",
    "AggregatedBilling",
    "BillingSnapshot",
    "DailyCost",
    "MonthlyCost",
    "ServiceCost",
    "percent_change",
]
