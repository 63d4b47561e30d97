"""Credential providers and the credential cache."""

from .auth import (
    AWSCLICredentialProvider,
    Boto3CredentialProvider,
    CredentialProvider,
    create_credential_provider,
)
from .cache import CachedCredentialEntry, CredentialCache
