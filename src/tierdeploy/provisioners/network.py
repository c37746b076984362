"""Network, subnet and firewall rule descriptors."""

from typing import List

from tierdeploy.provisioners.base import BaseProvisioner, ResourceDescriptor, ResourceKind, Scope
from tierdeploy.provisioners.naming import resource_name

# (qualifier, tcp port)
FIREWALL_RULES = [
    ("http", 80),
    ("https", 443),
    ("ssh", 22),
]


class NetworkProvisioner(BaseProvisioner):
    """Builds the custom-mode network the instance lives in."""

    @property
    def network_name(self) -> str:
        return resource_name(ResourceKind.NETWORK, self.config.resource_prefix)

    @property
    def subnet_name(self) -> str:
        return resource_name(ResourceKind.SUBNET, self.config.resource_prefix)

    def network_tags(self) -> List[str]:
        """Instance tags targeted by the firewall rules."""
        service = self.config.application.service_name
        return [f"{service}-{qualifier}" for qualifier, _ in FIREWALL_RULES]

    def network(self) -> ResourceDescriptor:
        name = self.network_name
        group = "compute networks"
        return ResourceDescriptor(
            kind=ResourceKind.NETWORK,
            name=name,
            scope=Scope.GLOBAL,
            lookup=lambda: self.client.describe(group, name),
            create_action=lambda: self.client.create(group, name, {
                "subnet-mode": "custom",
                "description": f"Network for {self.config.application.service_name}",
            }),
            delete_action=lambda live: self.client.delete(group, name),
        )

    def subnet(self) -> ResourceDescriptor:
        name = self.subnet_name
        group = "compute networks subnets"
        scope_flags = {"region": self.config.region}
        return ResourceDescriptor(
            kind=ResourceKind.SUBNET,
            name=name,
            scope=Scope.REGION,
            location=self.config.region,
            lookup=lambda: self.client.describe(group, name, scope_flags),
            create_action=lambda: self.client.create(group, name, {
                "network": self.network_name,
                "range": self.config.subnet_range,
                **scope_flags,
            }),
            delete_action=lambda live: self.client.delete(group, name, scope_flags),
        )

    def firewall_rule(self, qualifier: str, port: int) -> ResourceDescriptor:
        name = resource_name(ResourceKind.FIREWALL_RULE, self.config.resource_prefix, qualifier)
        group = "compute firewall-rules"
        tag = f"{self.config.application.service_name}-{qualifier}"
        return ResourceDescriptor(
            kind=ResourceKind.FIREWALL_RULE,
            name=name,
            scope=Scope.GLOBAL,
            lookup=lambda: self.client.describe(group, name),
            create_action=lambda: self.client.create(group, name, {
                "network": self.network_name,
                "direction": "INGRESS",
                "allow": f"tcp:{port}",
                "source-ranges": "0.0.0.0/0",
                "target-tags": tag,
            }),
            delete_action=lambda live: self.client.delete(group, name),
        )

    def firewall_rules(self) -> List[ResourceDescriptor]:
        return [self.firewall_rule(qualifier, port) for qualifier, port in FIREWALL_RULES]

    def descriptors(self, **kwargs) -> List[ResourceDescriptor]:
        return [self.network(), self.subnet(), *self.firewall_rules()]
