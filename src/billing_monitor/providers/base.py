"""
Error types shared by the AWS cost-data acquisition layer.

Every error raised while resolving credentials or talking to Cost Explorer
derives from BillingError, so the refresh orchestrator can isolate failures
per account with a single except clause.
"""


class BillingError(Exception):
    """Base exception for billing data acquisition errors."""

    pass


class CredentialsNotFound(BillingError):
    """The credential provider returned no usable access key pair."""

    def __init__(self, message: str = "AWS credentials not found. Please configure AWS CLI."):
        super().__init__(message)


class ProviderError(BillingError):
    """The credential provider invocation itself failed."""

    def __init__(self, message: str):
        super().__init__(f"AWS CLI error: {message}")
        self.detail = message


class APIError(BillingError):
    """Cost Explorer returned a non-success response or could not be reached."""

    def __init__(self, message: str, status_code: int | None = None, body: str | None = None):
        super().__init__(message)
        self.status_code = status_code
        self.body = body

    @classmethod
    def from_response(cls, status_code: int, body: str) -> "APIError":
        """Build an APIError from an HTTP status and raw body text."""
        return cls(f"AWS API error: HTTP {status_code}: {body}", status_code=status_code, body=body)


class InvalidResponse(BillingError):
    """The response body was not the JSON shape Cost Explorer documents."""

    def __init__(self, message: str = "Invalid response from AWS"):
        super().__init__(message)


class NotConfigured(BillingError):
    """The account has no usable profile, region or credential source."""

    def __init__(self, message: str = "AWS account not configured"):
        super().__init__(message)
