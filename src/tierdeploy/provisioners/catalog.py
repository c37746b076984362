"""All provisioners of one deployment, wired to a single client and config."""

from typing import List, Optional

from tierdeploy.provisioners.base import ResourceDescriptor
from tierdeploy.provisioners.billing import BudgetProvisioner
from tierdeploy.provisioners.compute import ComputeProvisioner
from tierdeploy.provisioners.iam import ServiceAccountProvisioner
from tierdeploy.provisioners.monitoring import MonitoringProvisioner
from tierdeploy.provisioners.network import NetworkProvisioner
from tierdeploy.provisioners.secret_manager import SecretManagerStore


class ResourceCatalog:
    """Entry point for building descriptors of every managed resource."""

    def __init__(self, client, config):
        self.client = client
        self.config = config
        self.network = NetworkProvisioner(client, config)
        self.iam = ServiceAccountProvisioner(client, config)
        self.compute = ComputeProvisioner(client, config)
        self.secrets = SecretManagerStore(client, config)
        self.monitoring = MonitoringProvisioner(client, config)
        self.billing = BudgetProvisioner(client, config)

    def cleanup_order(self, billing_account: Optional[str] = None) -> List[ResourceDescriptor]:
        """Every managed resource, dependents before their dependencies."""
        return [
            self.compute.instance(),
            self.compute.disk(),
            *self.network.firewall_rules(),
            self.network.subnet(),
            self.network.network(),
            self.iam.service_account(),
            self.secrets.secret(),
            *self.monitoring.alert_policies(),
            self.monitoring.uptime_check(),
            self.monitoring.dashboard(),
            *self.monitoring.log_metrics(),
            self.billing.budget(billing_account),
        ]
