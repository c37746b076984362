"""Deployment state records and their file-backed store."""

from .manager import StateStore, parse_env_file
from .models import (
    CredentialRecord,
    DeploymentRecord,
    DeploymentState,
    InstanceRecord,
    MonitoringRecord,
    PreflightRecord,
    StateRecord,
    RECORD_TYPES,
)

__all__ = [
    "StateStore",
    "parse_env_file",
    "CredentialRecord",
    "DeploymentRecord",
    "DeploymentState",
    "InstanceRecord",
    "MonitoringRecord",
    "PreflightRecord",
    "StateRecord",
    "RECORD_TYPES",
]
