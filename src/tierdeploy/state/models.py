"""Typed deployment state records."""

from typing import Any, Dict, List, Optional, Type, get_origin
from pydantic import BaseModel, Field, model_validator

from tierdeploy.utils.errors import MissingStateError


class StateRecord(BaseModel):
    """Base for records persisted as flat ``KEY="value"`` files.

    List fields are stored comma-separated and empty values read back as
    None, so files stay editable by hand.
    """

    @model_validator(mode="before")
    @classmethod
    def parse_flat_values(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        parsed = dict(data)
        for name, field in cls.model_fields.items():
            if name not in parsed or not isinstance(parsed[name], str):
                continue
            value = parsed[name]
            if get_origin(field.annotation) is list:
                parsed[name] = [item.strip() for item in value.split(",") if item.strip()]
            elif value == "":
                parsed[name] = None
        return parsed

    def to_env(self) -> Dict[str, str]:
        """Render the record as upper-case keys and string values."""
        rendered = {}
        for name, value in self.model_dump().items():
            if value is None:
                value = ""
            elif isinstance(value, list):
                value = ",".join(str(item) for item in value)
            rendered[name.upper()] = str(value)
        return rendered

    @classmethod
    def from_env(cls, values: Dict[str, str]) -> "StateRecord":
        """Build a record from parsed file values, ignoring unknown keys."""
        known = {name.upper(): name for name in cls.model_fields}
        return cls(**{known[key]: value for key, value in values.items() if key in known})


class PreflightRecord(StateRecord):
    """Written by phase 1."""

    validated_at: str
    billing_account: Optional[str] = None
    enabled_apis: List[str] = Field(default_factory=list)
    budget_name: Optional[str] = None


class InstanceRecord(StateRecord):
    """Written by phase 2."""

    instance_name: str
    zone: str
    machine_type: str
    internal_ip: Optional[str] = None
    external_ip: Optional[str] = None
    service_account: Optional[str] = None


class CredentialRecord(StateRecord):
    """Written by phase 3. References the secret, never its value."""

    api_key_secret_name: str
    api_key_secret_version: Optional[str] = None
    service_account_email: Optional[str] = None


class DeploymentRecord(StateRecord):
    """Written by phase 4."""

    deployed_at: str
    instance_name: str
    external_ip: Optional[str] = None
    environment: str
    project_id: str
    api_key_secret_name: str
    http_url: Optional[str] = None
    https_url: Optional[str] = None
    health_url: Optional[str] = None


class MonitoringRecord(StateRecord):
    """Written by phase 5."""

    log_metrics: List[str] = Field(default_factory=list)
    uptime_check: Optional[str] = None
    alert_policies: List[str] = Field(default_factory=list)
    dashboard: Optional[str] = None
    ops_agent_installed: bool = False


RECORD_TYPES: Dict[str, Type[StateRecord]] = {
    "preflight": PreflightRecord,
    "instance": InstanceRecord,
    "credential": CredentialRecord,
    "deployment": DeploymentRecord,
    "monitoring": MonitoringRecord,
}

SENSITIVE_RECORDS = {"credential"}


class DeploymentState(BaseModel):
    """Snapshot of every record persisted for one environment."""

    preflight: Optional[PreflightRecord] = None
    instance: Optional[InstanceRecord] = None
    credential: Optional[CredentialRecord] = None
    deployment: Optional[DeploymentRecord] = None
    monitoring: Optional[MonitoringRecord] = None

    def has(self, key: str) -> bool:
        """Check whether a record is present."""
        return getattr(self, key, None) is not None

    def missing(self, keys) -> List[str]:
        """Return the keys that have no record, in the given order."""
        return [key for key in keys if not self.has(key)]

    def require(self, key: str, required_by: Optional[str] = None) -> StateRecord:
        """Return a record or raise MissingStateError."""
        record = getattr(self, key, None)
        if record is None:
            raise MissingStateError(key, required_by=required_by)
        return record
