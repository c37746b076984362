"""Pydantic models for configuration schema."""

import ipaddress
from typing import List, Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

FREE_TIER_REGIONS = ['us-central1', 'us-east1', 'us-west1']

REQUIRED_APIS = [
    'compute.googleapis.com',
    'logging.googleapis.com',
    'monitoring.googleapis.com',
    'secretmanager.googleapis.com',
    'cloudbilling.googleapis.com',
]


class FrozenModel(BaseModel):
    """Base for immutable configuration sections."""

    model_config = ConfigDict(frozen=True, extra='forbid')


class ComplianceConfig(FrozenModel):
    """Free-tier guard limits."""

    allowed_regions: List[str] = Field(default_factory=lambda: list(FREE_TIER_REGIONS))
    minimal_machine_type: str = 'e2-micro'
    standard_disk_type: str = 'pd-standard'
    storage_ceiling_gb: int = Field(30, gt=0)


class BudgetConfig(FrozenModel):
    """Billing budget created in phase 1."""

    enabled: bool = True
    amount_usd: float = Field(1.0, gt=0)
    thresholds: List[float] = Field(default_factory=lambda: [0.5, 0.9, 1.0])

    @field_validator('thresholds')
    @classmethod
    def validate_thresholds(cls, v: List[float]) -> List[float]:
        """Thresholds are fractions of the budget amount."""
        for value in v:
            if not 0 < value <= 1.5:
                raise ValueError(f"Threshold {value} must be in (0, 1.5]")
        return v


class MonitoringConfig(FrozenModel):
    """Monitoring artifacts created in phase 5."""

    enabled: bool = True
    notification_email: Optional[str] = None
    memory_threshold_percent: int = Field(90, ge=1, le=100)


class ApplicationConfig(FrozenModel):
    """The deployed proxy application."""

    service_name: str = Field('proxy-router', pattern=r'^[a-z][a-z0-9-]*$')
    port: int = Field(3456, ge=1, le=65535)
    health_path: str = '/health'
    package_path: Optional[str] = Field(
        None, description="Local tarball uploaded and installed in phase 4"
    )
    user: str = 'proxyapp'
    install_dir: str = '/opt/proxy-router'


class StartupWait(FrozenModel):
    """Polling of the startup-complete marker after instance creation."""

    attempts: int = Field(60, ge=0)
    interval_seconds: float = Field(30, ge=0)


class DeploymentConfig(FrozenModel):
    """Complete configuration for one environment."""

    environment: str = Field(..., pattern=r'^[a-z][a-z0-9-]*$')
    project_id: str = Field(..., min_length=1)
    region: str = 'us-central1'
    zone: str = 'us-central1-a'
    machine_type: str = 'e2-micro'
    disk_size_gb: int = Field(30, gt=0)
    disk_type: str = 'pd-standard'
    image_family: str = 'ubuntu-2004-lts'
    image_project: str = 'ubuntu-os-cloud'
    subnet_range: str = '10.0.1.0/24'
    internal_ip: str = '10.0.1.10'
    allow_override: bool = Field(
        False, description="Downgrade overridable compliance failures to warnings"
    )

    compliance: ComplianceConfig = Field(default_factory=ComplianceConfig)
    budget: BudgetConfig = Field(default_factory=BudgetConfig)
    monitoring: MonitoringConfig = Field(default_factory=MonitoringConfig)
    application: ApplicationConfig = Field(default_factory=ApplicationConfig)
    startup_wait: StartupWait = Field(default_factory=StartupWait)

    state_dir: str = '.tierdeploy/state'

    @field_validator('subnet_range')
    @classmethod
    def validate_subnet_range(cls, v: str) -> str:
        """Validate CIDR format."""
        try:
            ipaddress.ip_network(v)
        except ValueError as e:
            raise ValueError(f"Invalid subnet range {v}: {e}")
        return v

    @model_validator(mode='after')
    def validate_placement(self):
        """The zone must be in the region and the internal IP in the subnet."""
        if not self.zone.startswith(f"{self.region}-"):
            raise ValueError(f"Zone {self.zone} is not in region {self.region}")
        if ipaddress.ip_address(self.internal_ip) not in ipaddress.ip_network(self.subnet_range):
            raise ValueError(f"Internal IP {self.internal_ip} is outside {self.subnet_range}")
        return self

    @property
    def resource_prefix(self) -> str:
        """Prefix shared by every resource name of this deployment."""
        from tierdeploy.provisioners.naming import resource_prefix

        return resource_prefix(self.project_id, self.application.service_name)

    def with_override(self, allow_override: bool) -> "DeploymentConfig":
        """Return a copy with the compliance override set."""
        return self.model_copy(update={'allow_override': allow_override})
