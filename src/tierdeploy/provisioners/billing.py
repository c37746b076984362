"""Billing budget descriptor."""

from typing import List, Optional

from tierdeploy.provisioners.base import BaseProvisioner, ResourceDescriptor, ResourceKind, Scope
from tierdeploy.provisioners.naming import resource_name


class BudgetProvisioner(BaseProvisioner):
    """A small budget with alert thresholds on the linked billing account."""

    GROUP = "billing budgets"

    @property
    def display_name(self) -> str:
        return resource_name(ResourceKind.BUDGET, self.config.resource_prefix)

    def budget(self, billing_account: Optional[str]) -> ResourceDescriptor:
        """Budget scoped to this project.

        Args:
            billing_account: Billing account id; budgets live on the account
        """
        display_name = self.display_name
        account_flags = {"billing-account": billing_account}
        budget = self.config.budget

        def lookup():
            if not billing_account:
                return None
            return self.client.find_by_display_name(self.GROUP, display_name, account_flags)

        def create():
            if not billing_account:
                raise ValueError("No billing account is linked to the project")
            return self.client.create(self.GROUP, None, {
                **account_flags,
                "display-name": display_name,
                "budget-amount": f"{budget.amount_usd:g}USD",
                "threshold-rule": [f"percent={t:g}" for t in budget.thresholds],
                "filter-projects": f"projects/{self.project}",
            })

        return ResourceDescriptor(
            kind=ResourceKind.BUDGET,
            name=display_name,
            scope=Scope.GLOBAL,
            lookup=lookup,
            create_action=create,
            delete_action=lambda live: self.client.delete(self.GROUP, live["name"], account_flags),
            required=False,
        )

    def descriptors(self, billing_account: Optional[str] = None, **kwargs) -> List[ResourceDescriptor]:
        return [self.budget(billing_account)]
