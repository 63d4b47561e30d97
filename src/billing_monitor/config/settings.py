"""
Configuration management for AWS billing monitoring.

Uses dynaconf for layered configuration: packaged YAML defaults, a per-user
settings file, a local override file and environment variables.
"""

import logging
from datetime import timedelta
from pathlib import Path
from typing import Any, Dict, List, Optional

from dynaconf import Dynaconf, ValidationError, Validator

logger = logging.getLogger(__name__)

PACKAGE_CONFIG = Path(__file__).parent / "config.yaml"
USER_CONFIG_DIR = Path.home() / ".config" / "aws-billing-monitor"
USER_CONFIG = USER_CONFIG_DIR / "config.yaml"

REFRESH_FREQUENCIES = ["manual", "1min", "2min", "5min", "15min", "1hour"]
CREDENTIAL_PROVIDERS = ["cli", "boto3"]


def create_settings(extra_files: Optional[List[str]] = None) -> Dynaconf:
    """
    Build the dynaconf settings object.

    Args:
        extra_files: Additional settings files, loaded last (highest file priority)
    """
    settings_files = [
        str(PACKAGE_CONFIG),  # Packaged defaults
        str(USER_CONFIG),  # Per-user settings
        str(Path.cwd() / "config.local.yaml"),  # Local overrides (git-ignored)
    ]
    settings_files.extend(str(Path(path).expanduser()) for path in extra_files or [])

    return Dynaconf(
        envvar_prefix="BILLINGMON",
        settings_files=settings_files,
        environments=False,
        load_dotenv=True,
        merge_enabled=True,
        envvar_separator="__",  # BILLINGMON_REFRESH__FREQUENCY=manual
    )


def _validators() -> List[Validator]:
    return [
        Validator("refresh.frequency", is_in=REFRESH_FREQUENCIES),
        Validator("refresh.max_concurrent_accounts", gte=1),
        Validator("credentials.provider", is_in=CREDENTIAL_PROVIDERS),
        Validator("credentials.session_ttl_minutes", gt=0),
        Validator("credentials.permanent_ttl_hours", gt=0),
        Validator("cost_explorer.endpoint", must_exist=True),
        Validator("cost_explorer.timeout", gt=0),
    ]


class BillingConfig:
    """Configuration wrapper for billing monitor settings."""

    def __init__(self, settings: Optional[Dynaconf] = None):
        self.settings = settings if settings is not None else create_settings()
        self.settings.validators.register(*_validators())
        self._validate_config()

    def _validate_config(self):
        """Validate the configuration on initialization."""
        try:
            self.validate()
        except ValidationError as e:
            # Stay usable; callers that need strict settings call validate()
            logger.warning(f"Configuration validation warning: {e}")

    def validate(self):
        """
        Validate all settings.

        Raises:
            dynaconf.ValidationError: If a setting is missing or out of range
        """
        self.settings.validators.validate()

    @property
    def refresh(self) -> Dict[str, Any]:
        return self.settings.get("refresh", {})

    @property
    def credentials(self) -> Dict[str, Any]:
        return self.settings.get("credentials", {})

    @property
    def cost_explorer(self) -> Dict[str, Any]:
        return self.settings.get("cost_explorer", {})

    @property
    def refresh_frequency(self) -> str:
        return str(self.settings.get("refresh.frequency", "5min"))

    @property
    def max_concurrent_accounts(self) -> int:
        return int(self.settings.get("refresh.max_concurrent_accounts", 8))

    @property
    def credential_provider(self) -> str:
        return str(self.settings.get("credentials.provider", "cli"))

    @property
    def cli_path(self) -> str:
        return str(self.settings.get("credentials.cli_path", "aws"))

    @property
    def session_ttl(self) -> timedelta:
        return timedelta(minutes=float(self.settings.get("credentials.session_ttl_minutes", 50)))

    @property
    def permanent_ttl(self) -> timedelta:
        return timedelta(hours=float(self.settings.get("credentials.permanent_ttl_hours", 24)))

    @property
    def endpoint(self) -> str:
        return str(self.settings.get("cost_explorer.endpoint", "https://ce.{region}.amazonaws.com/"))

    @property
    def timeout(self) -> float:
        return float(self.settings.get("cost_explorer.timeout", 30))

    @property
    def currency(self) -> str:
        return str(self.settings.get("cost_explorer.currency", "USD"))

    @property
    def accounts_file(self) -> Path:
        path = self.settings.get("accounts.file") or str(USER_CONFIG_DIR / "accounts.json")
        return Path(path).expanduser()

    def override(self, values: Dict[str, Any]):
        """Override settings, e.g. from CLI options. Keys are dotted paths."""
        for path, value in values.items():
            if value is not None:
                self.settings.set(path, value)

        # Re-validate after overrides
        self._validate_config()


_config: Optional[BillingConfig] = None


def get_config() -> BillingConfig:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = BillingConfig()
    return _config


def reload_config(extra_files: Optional[List[str]] = None) -> BillingConfig:
    """Rebuild configuration from files and the environment."""
    global _config
    _config = BillingConfig(create_settings(extra_files))
    return _config
