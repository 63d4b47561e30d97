"""
AWS credential providers.

A credential provider turns an optional profile name into raw credential
material. Two sources are supported: the AWS CLI (``aws configure
export-credentials``), which handles SSO and credential_process profiles the
same way the shell does, and a boto3 session.
"""

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Any

from pydantic import ValidationError

from ..models.account import Credentials
from ..providers.base import CredentialsNotFound, NotConfigured, ProviderError

try:
    import boto3
    from botocore.exceptions import BotoCoreError, ProfileNotFound

    AWS_AVAILABLE = True
except ImportError:
    AWS_AVAILABLE = False

logger = logging.getLogger(__name__)

# Temporary credentials that don't report an expiration are assumed to live this long
DEFAULT_TEMPORARY_LIFETIME = timedelta(hours=1)

ENV_KEYS = {
    "AWS_ACCESS_KEY_ID": "AccessKeyId",
    "AWS_SECRET_ACCESS_KEY": "SecretAccessKey",
    "AWS_SESSION_TOKEN": "SessionToken",
    "AWS_CREDENTIAL_EXPIRATION": "Expiration",
}


def build_credentials(
    access_key_id: str | None,
    secret_access_key: str | None,
    session_token: str | None = None,
    expiration: Any = None,
    temporary_lifetime: timedelta = DEFAULT_TEMPORARY_LIFETIME,
) -> Credentials | None:
    """
    Build Credentials from raw provider values.

    Returns None when no access key / secret key pair is present. An empty or
    blank session token is treated as no token.
    """
    if not access_key_id or not secret_access_key:
        return None

    session_token = (session_token or "").strip() or None
    if session_token and not expiration:
        expiration = datetime.now(timezone.utc) + temporary_lifetime

    try:
        return Credentials(
            access_key_id=access_key_id,
            secret_access_key=secret_access_key,
            session_token=session_token,
            expiration=expiration or None,
        )
    except ValidationError as e:
        raise ProviderError(f"Unusable credential values: {e.error_count()} invalid field(s)")


def parse_credential_output(output: str) -> dict[str, str]:
    """
    Parse ``aws configure export-credentials`` output.

    Accepts both the ``process`` format (JSON) and the ``env`` format
    (``export AWS_ACCESS_KEY_ID=...`` lines), returning process-format keys.
    """
    stripped = output.strip()
    if stripped.startswith("{"):
        try:
            data = json.loads(stripped)
        except json.JSONDecodeError as e:
            raise ProviderError(f"Could not parse credential output: {e}")
        return {key: value for key, value in data.items() if isinstance(value, str)}

    values: dict[str, str] = {}
    for line in stripped.splitlines():
        key, sep, value = line.partition("=")
        if not sep:
            continue
        key = key.strip()
        if key.startswith("export "):
            key = key[len("export ") :].strip()
        if key in ENV_KEYS:
            values[ENV_KEYS[key]] = value.strip().strip("\"'")
    return values


class CredentialProvider(ABC):
    """Abstract source of raw AWS credential material."""

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Return the provider name."""
        pass

    @abstractmethod
    async def resolve(self, profile: str | None) -> Credentials | None:
        """
        Resolve credentials for a profile.

        Args:
            profile: Profile name, None for the default identity

        Returns:
            Credentials, or None if the source has no key pair

        Raises:
            ProviderError: If the provider invocation failed
            NotConfigured: If the source or profile is not set up
        """
        pass

    @abstractmethod
    async def list_profiles(self) -> list[str]:
        """List known profile names."""
        pass


class AWSCLICredentialProvider(CredentialProvider):
    """Credential provider backed by the AWS CLI."""

    def __init__(self, cli_path: str = "aws", temporary_lifetime: timedelta = DEFAULT_TEMPORARY_LIFETIME):
        self.cli_path = cli_path
        self.temporary_lifetime = temporary_lifetime

    @property
    def provider_name(self) -> str:
        return "cli"

    async def _run(self, *args: str) -> str:
        """Run an AWS CLI command and return its standard output."""
        try:
            process = await asyncio.create_subprocess_exec(
                self.cli_path,
                *args,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError:
            raise NotConfigured(f"AWS CLI not found at '{self.cli_path}'")

        stdout, stderr = await process.communicate()
        output = stdout.decode("utf-8", errors="replace")

        if process.returncode != 0:
            message = stderr.decode("utf-8", errors="replace").strip() or output.strip()
            raise ProviderError(message or f"exit status {process.returncode}")
        return output

    async def resolve(self, profile: str | None) -> Credentials | None:
        args = ["configure", "export-credentials", "--format", "process"]
        if profile:
            args.extend(["--profile", profile])

        logger.debug(f"🔵 AWS: Exporting credentials for profile '{profile or 'default'}' via CLI")
        values = parse_credential_output(await self._run(*args))

        return build_credentials(
            values.get("AccessKeyId"),
            values.get("SecretAccessKey"),
            values.get("SessionToken"),
            values.get("Expiration"),
            self.temporary_lifetime,
        )

    async def list_profiles(self) -> list[str]:
        try:
            output = await self._run("configure", "list-profiles")
        except (ProviderError, NotConfigured) as e:
            logger.error(f"Failed to list profiles: {e}")
            return []
        return [line.strip() for line in output.splitlines() if line.strip()]


class Boto3CredentialProvider(CredentialProvider):
    """Credential provider backed by a boto3 session."""

    def __init__(self, temporary_lifetime: timedelta = DEFAULT_TEMPORARY_LIFETIME):
        if not AWS_AVAILABLE:
            raise NotConfigured("AWS SDK (boto3) not available")
        self.temporary_lifetime = temporary_lifetime

    @property
    def provider_name(self) -> str:
        return "boto3"

    def _load(self, profile: str | None) -> Credentials | None:
        try:
            session = boto3.Session(profile_name=profile)
            credentials = session.get_credentials()
        except ProfileNotFound as e:
            raise NotConfigured(str(e))
        except BotoCoreError as e:
            raise ProviderError(str(e))

        if credentials is None:
            return None

        frozen = credentials.get_frozen_credentials()
        return build_credentials(
            frozen.access_key,
            frozen.secret_key,
            frozen.token,
            temporary_lifetime=self.temporary_lifetime,
        )

    async def resolve(self, profile: str | None) -> Credentials | None:
        logger.debug(f"🔵 AWS: Loading credentials for profile '{profile or 'default'}' via boto3")
        return await asyncio.to_thread(self._load, profile)

    async def list_profiles(self) -> list[str]:
        return await asyncio.to_thread(lambda: list(boto3.Session().available_profiles))


_PROVIDERS: dict[str, type[CredentialProvider]] = {
    "cli": AWSCLICredentialProvider,
    "boto3": Boto3CredentialProvider,
}


def create_credential_provider(name: str, **kwargs: Any) -> CredentialProvider:
    """
    Create a credential provider by name.

    Args:
        name: Provider name (cli, boto3)
        **kwargs: Provider constructor arguments

    Raises:
        ValueError: If the provider is unknown
    """
    name = name.lower()
    if name not in _PROVIDERS:
        available = ", ".join(_PROVIDERS)
        raise ValueError(f"Unknown credential provider '{name}'. Available providers: {available}")
    return _PROVIDERS[name](**kwargs)


def ensure_credentials(credentials: Credentials | None) -> Credentials:
    """Raise CredentialsNotFound if a provider returned no key pair."""
    if credentials is None:
        raise CredentialsNotFound()
    return credentials
