"""
AWS Cost Explorer integration: error types and request signing.

The API client lives in billing_monitor.providers.aws.
"""

from .base import (
    APIError,
    BillingError,
    CredentialsNotFound,
    InvalidResponse,
    NotConfigured,
    ProviderError,
)
from .signer import RequestSigner
