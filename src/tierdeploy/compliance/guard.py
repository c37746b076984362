"""Compliance guard run before any mutating phase."""

from typing import List, Optional

from tierdeploy.compliance.rules import DEFAULT_RULES, ComplianceRule, LiveState, RuleResult
from tierdeploy.config.models import DeploymentConfig
from tierdeploy.utils.errors import ComplianceError, ErrorContext
from tierdeploy.utils.gcloud import GCloudClient, GCloudCommandError
from tierdeploy.utils.logging import get_logger

logger = get_logger(__name__)

SERVICE_DISABLED = "SERVICE_DISABLED"


def collect_live_state(client: GCloudClient) -> LiveState:
    """Query the project for everything the rules look at.

    Only list/describe calls are made. An unreadable billing link is
    reported as unlinked, which the billing rule turns into a warning.
    A disabled Compute Engine API means no instances, disks or addresses
    can exist, so the lists are empty and phase 1 can still enable it.
    """
    try:
        instances = client.list("compute instances")
        disks = client.list("compute disks")
        addresses = client.list("compute addresses", filter_expr="addressType=EXTERNAL")
        compute_api_enabled = True
    except GCloudCommandError as e:
        if SERVICE_DISABLED not in e.stderr:
            raise
        logger.warning(f"Compute Engine API is disabled: {e.summary()}")
        instances, disks, addresses = [], [], []
        compute_api_enabled = False

    try:
        billing_account = client.billing_account()
    except GCloudCommandError as e:
        logger.debug(f"Billing account lookup failed: {e.summary()}")
        billing_account = None

    return LiveState(
        instances=instances,
        disks=disks,
        static_addresses=addresses,
        billing_account=billing_account,
        compute_api_enabled=compute_api_enabled,
    )


class ComplianceGuard:
    """Evaluates free-tier rules and blocks on HARD failures."""

    def __init__(self, rules: Optional[List[ComplianceRule]] = None):
        self.rules = rules if rules is not None else list(DEFAULT_RULES)
        self.logger = get_logger(__name__)

    def evaluate(self, config: DeploymentConfig, live: LiveState) -> List[RuleResult]:
        """Evaluate every rule. Pure: no cloud calls, no side effects.

        Args:
            config: Deployment configuration
            live: Snapshot from collect_live_state()

        Returns:
            One RuleResult per rule, in rule order
        """
        return [rule.evaluate(config, live) for rule in self.rules]

    def enforce(self, results: List[RuleResult]) -> None:
        """Log every result and raise if any HARD rule failed.

        Raises:
            ComplianceError: Listing each blocking rule
        """
        for result in results:
            if result.passed:
                self.logger.info(f"✓ {result.rule_id}: {result.message}")
            elif result.is_blocking:
                self.logger.error(f"✗ {result.rule_id}: {result.message}")
            else:
                self.logger.warning(f"! {result.rule_id}: {result.message}")

        failures = [r for r in results if r.is_blocking]
        if failures:
            raise ComplianceError(
                f"{len(failures)} free-tier compliance rule(s) failed: "
                + "; ".join(f"{r.rule_id}: {r.message}" for r in failures),
                failures=failures,
                context=ErrorContext(operation="compliance"),
                suggestions=[
                    "Adjust region, machine type or disk size in the environment config",
                    "Remove conflicting resources from the project",
                    "Use --force to downgrade overridable rules to warnings",
                ],
            )
