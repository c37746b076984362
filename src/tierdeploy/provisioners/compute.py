"""Boot disk and instance descriptors."""

import os
import tempfile
from typing import Any, Callable, Dict, List, Optional, Tuple

from tierdeploy.provisioners.base import BaseProvisioner, ResourceDescriptor, ResourceKind, Scope
from tierdeploy.provisioners.naming import resource_name
from tierdeploy.utils.logging import get_logger


def instance_addresses(attributes: Dict[str, Any]) -> Tuple[Optional[str], Optional[str]]:
    """Extract the (internal, external) addresses from instance attributes."""
    interfaces = attributes.get("networkInterfaces") or []
    if not interfaces:
        return None, None
    primary = interfaces[0]
    access_configs = primary.get("accessConfigs") or []
    external = access_configs[0].get("natIP") if access_configs else None
    return primary.get("networkIP"), external


def short_name(url_or_name: Optional[str]) -> Optional[str]:
    """Strip a resource URL down to its last path segment."""
    if not url_or_name:
        return url_or_name
    return url_or_name.rstrip("/").split("/")[-1]


class ComputeProvisioner(BaseProvisioner):
    """Builds the boot disk and the single instance."""

    def __init__(self, client, config):
        super().__init__(client, config)
        self.logger = get_logger(__name__)

    @property
    def disk_name(self) -> str:
        return resource_name(ResourceKind.DISK, self.config.resource_prefix)

    @property
    def instance_name(self) -> str:
        return resource_name(ResourceKind.INSTANCE, self.config.resource_prefix)

    @property
    def zone_flags(self) -> Dict[str, str]:
        return {"zone": self.config.zone}

    def disk(self) -> ResourceDescriptor:
        """The boot disk, created from the image family."""
        name = self.disk_name
        group = "compute disks"
        return ResourceDescriptor(
            kind=ResourceKind.DISK,
            name=name,
            scope=Scope.ZONE,
            location=self.config.zone,
            lookup=lambda: self.client.describe(group, name, self.zone_flags),
            create_action=lambda: self.client.create(group, name, {
                "size": f"{self.config.disk_size_gb}GB",
                "type": self.config.disk_type,
                "image-family": self.config.image_family,
                "image-project": self.config.image_project,
                **self.zone_flags,
            }),
            delete_action=lambda live: self.client.delete(group, name, self.zone_flags),
        )

    def instance(
        self,
        subnet: Optional[str] = None,
        service_account_email: Optional[str] = None,
        tags: Optional[List[str]] = None,
        startup_script: Optional[Callable[[], str]] = None
    ) -> ResourceDescriptor:
        """The instance, booting from the disk descriptor's disk.

        Args:
            subnet: Subnet the primary interface attaches to
            service_account_email: Identity the instance runs as
            tags: Network tags matched by firewall rules
            startup_script: Renders the startup script at create time

        Returns:
            Descriptor for the instance
        """
        name = self.instance_name
        group = "compute instances"

        def create() -> Dict[str, Any]:
            flags = {
                "machine-type": self.config.machine_type,
                "subnet": subnet,
                "private-network-ip": self.config.internal_ip,
                "disk": f"name={self.disk_name},boot=yes,auto-delete=yes",
                "service-account": service_account_email,
                "scopes": "cloud-platform" if service_account_email else None,
                "tags": ",".join(tags) if tags else None,
                **self.zone_flags,
            }
            if startup_script is None:
                return self.client.create(group, name, flags)

            with tempfile.NamedTemporaryFile("w", suffix=".sh", delete=False) as f:
                f.write(startup_script())
                script_path = f.name
            try:
                flags["metadata-from-file"] = f"startup-script={script_path}"
                return self.client.create(group, name, flags)
            finally:
                os.unlink(script_path)

        return ResourceDescriptor(
            kind=ResourceKind.INSTANCE,
            name=name,
            scope=Scope.ZONE,
            location=self.config.zone,
            lookup=lambda: self.client.describe(group, name, self.zone_flags),
            create_action=create,
            delete_action=lambda live: self.client.delete(group, name, self.zone_flags),
        )

    def start_instance(self) -> None:
        """Start the instance if it was stopped."""
        self.logger.info(f"Starting instance {self.instance_name}")
        self.client.call(["compute", "instances", "start", self.instance_name], self.zone_flags)

    def describe_instance(self) -> Optional[Dict[str, Any]]:
        return self.client.describe("compute instances", self.instance_name, self.zone_flags)

    def descriptors(self, **kwargs) -> List[ResourceDescriptor]:
        return [self.disk(), self.instance(**kwargs)]
