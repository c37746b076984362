"""Free-tier compliance rules."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

from tierdeploy.config.models import DeploymentConfig
from tierdeploy.provisioners.base import ResourceKind
from tierdeploy.provisioners.compute import short_name
from tierdeploy.provisioners.naming import resource_name


class Severity(Enum):
    """HARD failures abort the run; WARN failures are reported only."""
    HARD = "hard"
    WARN = "warn"


@dataclass
class LiveState:
    """Read-only snapshot of the project taken before any mutation."""
    instances: List[Dict[str, Any]] = field(default_factory=list)
    disks: List[Dict[str, Any]] = field(default_factory=list)
    static_addresses: List[Dict[str, Any]] = field(default_factory=list)
    billing_account: Optional[str] = None
    compute_api_enabled: bool = True


@dataclass
class RuleResult:
    """Outcome of one rule; recomputed every run and never persisted."""
    rule_id: str
    passed: bool
    severity: Severity
    message: str
    overridden: bool = False

    @property
    def is_blocking(self) -> bool:
        return not self.passed and self.severity == Severity.HARD


Check = Callable[[DeploymentConfig, LiveState], Tuple[bool, str]]


@dataclass
class ComplianceRule:
    """A named check over the configuration and the live project."""
    rule_id: str
    severity: Severity
    check: Check
    overridable: bool = False

    def evaluate(self, config: DeploymentConfig, live: LiveState) -> RuleResult:
        passed, message = self.check(config, live)
        if not passed and self.overridable and config.allow_override:
            return RuleResult(self.rule_id, False, Severity.WARN, f"{message} (overridden)", True)
        return RuleResult(self.rule_id, passed, self.severity, message)


def _own_instance(config: DeploymentConfig) -> str:
    return resource_name(ResourceKind.INSTANCE, config.resource_prefix)


def _own_disk(config: DeploymentConfig) -> str:
    return resource_name(ResourceKind.DISK, config.resource_prefix)


def check_region(config: DeploymentConfig, live: LiveState) -> Tuple[bool, str]:
    allowed = config.compliance.allowed_regions
    if config.region in allowed:
        return True, f"Region {config.region} is free-tier eligible"
    return False, f"Region {config.region} is not one of {', '.join(allowed)}"


def check_machine_type(config: DeploymentConfig, live: LiveState) -> Tuple[bool, str]:
    minimal = config.compliance.minimal_machine_type
    if config.machine_type == minimal:
        return True, f"Machine type {minimal} is the free-tier type"
    return False, f"Machine type {config.machine_type} is not the free-tier type {minimal}"


def check_existing_instances(config: DeploymentConfig, live: LiveState) -> Tuple[bool, str]:
    """Only one free-tier instance per billing account; ours does not count."""
    minimal = config.compliance.minimal_machine_type
    own = _own_instance(config)
    others = [
        i.get("name") for i in live.instances
        if short_name(i.get("machineType")) == minimal and i.get("name") != own
    ]
    if not others:
        return True, f"No other {minimal} instances found"
    return False, f"{len(others)} other {minimal} instance(s) already exist: {', '.join(others)}"


def check_storage(config: DeploymentConfig, live: LiveState) -> Tuple[bool, str]:
    """Existing standard storage plus the requested disk must fit the ceiling."""
    standard = config.compliance.standard_disk_type
    ceiling = config.compliance.storage_ceiling_gb
    own = _own_disk(config)
    existing = sum(
        int(d.get("sizeGb", 0)) for d in live.disks
        if short_name(d.get("type")) == standard and d.get("name") != own
    )
    total = existing + config.disk_size_gb
    if total <= ceiling:
        return True, f"{total}GB of {ceiling}GB standard storage would be in use"
    return False, (
        f"{existing}GB existing + {config.disk_size_gb}GB requested exceeds "
        f"the {ceiling}GB standard storage allowance"
    )


def check_static_addresses(config: DeploymentConfig, live: LiveState) -> Tuple[bool, str]:
    if not live.static_addresses:
        return True, "No reserved static addresses"
    names = ", ".join(a.get("name", "?") for a in live.static_addresses)
    return False, f"Reserved static addresses are billed when unused: {names}"


def check_compute_api(config: DeploymentConfig, live: LiveState) -> Tuple[bool, str]:
    if live.compute_api_enabled:
        return True, "Compute Engine API is enabled"
    return False, "Compute Engine API is disabled; phase 1 enables it, no instances or disks can exist yet"


def check_billing(config: DeploymentConfig, live: LiveState) -> Tuple[bool, str]:
    if live.billing_account:
        return True, f"Billing account {live.billing_account} is linked"
    return False, "No billing account is linked; budget alerts cannot be created"


DEFAULT_RULES = [
    ComplianceRule("region-allowed", Severity.HARD, check_region),
    ComplianceRule("machine-type-minimal", Severity.HARD, check_machine_type, overridable=True),
    ComplianceRule("existing-minimal-instances", Severity.HARD, check_existing_instances,
                   overridable=True),
    ComplianceRule("storage-ceiling", Severity.HARD, check_storage),
    ComplianceRule("static-addresses", Severity.WARN, check_static_addresses),
    ComplianceRule("billing-linked", Severity.WARN, check_billing),
    ComplianceRule("compute-api-enabled", Severity.WARN, check_compute_api),
]
