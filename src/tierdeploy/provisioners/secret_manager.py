"""API key secret stored in Secret Manager."""

import secrets
from typing import Any, Dict, List, Optional

from tierdeploy.provisioners.base import BaseProvisioner, ResourceDescriptor, ResourceKind, Scope
from tierdeploy.provisioners.naming import resource_name
from tierdeploy.utils.gcloud import GCloudCommandError
from tierdeploy.utils.logging import get_logger

ACCESSOR_ROLE = "roles/secretmanager.secretAccessor"


def generate_api_key() -> str:
    """A 256-bit random key, hex encoded."""
    return secrets.token_hex(32)


class SecretManagerStore(BaseProvisioner):
    """Creates, reads and grants access to the API key secret."""

    GROUP = "secrets"

    def __init__(self, client, config):
        super().__init__(client, config)
        self.logger = get_logger(__name__)

    @property
    def secret_name(self) -> str:
        return resource_name(ResourceKind.SECRET, self.config.resource_prefix)

    def create_with_key(self) -> Dict[str, Any]:
        """Create the secret with a freshly generated first version."""
        attributes = self.client.create(self.GROUP, self.secret_name, {
            "replication-policy": "automatic",
            "data-file": "-",
        }, input_text=generate_api_key())
        attributes.setdefault("latestVersion", "1")
        return attributes

    def access_latest(self) -> Optional[str]:
        """Return the latest secret value, or None if no version is readable."""
        try:
            value = self.client.call(
                ["secrets", "versions", "access", "latest"],
                {"secret": self.secret_name},
                parse_json=False,
            )
        except GCloudCommandError as e:
            if e.is_not_found() or "FAILED_PRECONDITION" in e.stderr:
                return None
            raise
        return value.strip() or None

    def add_version(self, payload: Optional[str] = None) -> Dict[str, Any]:
        """Add a new secret version, generating a key when none is given."""
        result = self.client.call(
            ["secrets", "versions", "add", self.secret_name],
            {"data-file": "-"},
            input_text=payload or generate_api_key(),
        )
        return result or {}

    def grant_accessor(self, service_account_email: str) -> None:
        """Allow the instance service account to read the secret."""
        self.client.call(
            ["secrets", "add-iam-policy-binding", self.secret_name],
            {"member": f"serviceAccount:{service_account_email}", "role": ACCESSOR_ROLE},
        )

    def secret(self) -> ResourceDescriptor:
        name = self.secret_name
        return ResourceDescriptor(
            kind=ResourceKind.SECRET,
            name=name,
            scope=Scope.GLOBAL,
            lookup=lambda: self.client.describe(self.GROUP, name),
            create_action=self.create_with_key,
            delete_action=lambda live: self.client.delete(self.GROUP, name),
        )

    def descriptors(self, **kwargs) -> List[ResourceDescriptor]:
        return [self.secret()]
