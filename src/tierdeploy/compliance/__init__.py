"""Free-tier compliance rules and guard."""

from tierdeploy.compliance.guard import ComplianceGuard, collect_live_state
from tierdeploy.compliance.rules import (
    DEFAULT_RULES,
    ComplianceRule,
    LiveState,
    RuleResult,
    Severity,
)

__all__ = [
    "ComplianceGuard",
    "collect_live_state",
    "DEFAULT_RULES",
    "ComplianceRule",
    "LiveState",
    "RuleResult",
    "Severity",
]
