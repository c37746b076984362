"""Configuration loading and validation."""

from .models import (
    ApplicationConfig,
    BudgetConfig,
    ComplianceConfig,
    DeploymentConfig,
    MonitoringConfig,
    StartupWait,
    FREE_TIER_REGIONS,
    REQUIRED_APIS,
)
from .parser import Config, ConfigValidationError

__all__ = [
    "ApplicationConfig",
    "BudgetConfig",
    "ComplianceConfig",
    "Config",
    "ConfigValidationError",
    "DeploymentConfig",
    "MonitoringConfig",
    "StartupWait",
    "FREE_TIER_REGIONS",
    "REQUIRED_APIS",
]
