"""Billing state, refresh orchestration and account persistence."""

from .accounts import AccountRepository
from .billing_store import BillingStore, RefreshFrequency
