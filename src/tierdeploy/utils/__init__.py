"""Utility modules for logging, error handling and the gcloud CLI."""

from tierdeploy.utils.errors import (
    ErrorCategory,
    ErrorSeverity,
    ErrorContext,
    DeploymentError,
    PrerequisiteError,
    ComplianceError,
    ReconciliationError,
    StateError,
    MissingStateError,
    ConfigurationError,
    RemoteCommandError,
    HealthCheckError,
    BestEffortWarning,
    ErrorHandler,
    error_handler
)
from tierdeploy.utils.gcloud import GCloudClient, GCloudCommandError
from tierdeploy.utils.logging import get_logger, setup_logging, LogContext
from tierdeploy.utils.remote import CommandOutcome, RemoteExecutor

__all__ = [
    # Errors
    'ErrorCategory',
    'ErrorSeverity',
    'ErrorContext',
    'DeploymentError',
    'PrerequisiteError',
    'ComplianceError',
    'ReconciliationError',
    'StateError',
    'MissingStateError',
    'ConfigurationError',
    'RemoteCommandError',
    'HealthCheckError',
    'BestEffortWarning',
    'ErrorHandler',
    'error_handler',

    # gcloud
    'GCloudClient',
    'GCloudCommandError',
    'CommandOutcome',
    'RemoteExecutor',

    # Logging
    'get_logger',
    'setup_logging',
    'LogContext',
]
