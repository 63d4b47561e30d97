"""Configuration management."""

from .settings import BillingConfig, create_settings, get_config, reload_config
