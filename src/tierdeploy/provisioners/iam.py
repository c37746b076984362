"""Service account descriptor and project role bindings."""

from typing import List

from tierdeploy.provisioners.base import BaseProvisioner, ResourceDescriptor, ResourceKind, Scope
from tierdeploy.provisioners.naming import resource_name
from tierdeploy.utils.errors import ErrorCategory, ErrorContext, BestEffortWarning, error_handler
from tierdeploy.utils.gcloud import GCloudCommandError
from tierdeploy.utils.logging import get_logger

SERVICE_ACCOUNT_ROLES = [
    "roles/logging.logWriter",
    "roles/monitoring.metricWriter",
    "roles/secretmanager.secretAccessor",
]


class ServiceAccountProvisioner(BaseProvisioner):
    """The identity the instance runs as."""

    def __init__(self, client, config):
        super().__init__(client, config)
        self.logger = get_logger(__name__)

    @property
    def account_id(self) -> str:
        return resource_name(ResourceKind.SERVICE_ACCOUNT, self.config.resource_prefix)

    @property
    def email(self) -> str:
        return f"{self.account_id}@{self.project}.iam.gserviceaccount.com"

    def service_account(self) -> ResourceDescriptor:
        group = "iam service-accounts"
        email = self.email
        return ResourceDescriptor(
            kind=ResourceKind.SERVICE_ACCOUNT,
            name=self.account_id,
            scope=Scope.GLOBAL,
            lookup=lambda: self.client.describe(group, email),
            create_action=lambda: self.client.create(group, self.account_id, {
                "display-name": f"{self.config.application.service_name} instance",
            }),
            delete_action=lambda live: self.client.delete(group, email),
        )

    def grant_roles(self) -> List[BestEffortWarning]:
        """Bind the instance roles to the service account.

        Bindings are additive and idempotent on the server side. A failed
        binding is returned as a warning rather than raised.

        Returns:
            Warnings for the bindings that failed
        """
        warnings = []
        member = f"serviceAccount:{self.email}"
        for role in SERVICE_ACCOUNT_ROLES:
            try:
                self.client.add_project_role(member, role)
                self.logger.info(f"Granted {role} to {self.email}")
            except (GCloudCommandError, FileNotFoundError) as e:
                error = error_handler.handle_exception(
                    e, ErrorContext(resource_id=self.email, operation=f"grant {role}")
                )
                warnings.append(BestEffortWarning(
                    f"Could not grant {role}: {error.message}",
                    category=ErrorCategory.RECONCILIATION,
                    cause=e,
                ))
        return warnings

    def descriptors(self, **kwargs) -> List[ResourceDescriptor]:
        return [self.service_account()]
