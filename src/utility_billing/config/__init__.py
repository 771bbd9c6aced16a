"""Configuration management for Utility Billing."""

from utility_billing.config.schema import AppConfig
from utility_billing.config.manager import ConfigManager

__all__ = ["AppConfig", "ConfigManager"]
