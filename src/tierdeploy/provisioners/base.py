"""Resource descriptors, the reconciler and the base provisioner."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from tierdeploy.utils.errors import (
    DeploymentError,
    ErrorContext,
    ReconciliationError,
    error_handler,
)
from tierdeploy.utils.logging import LogContext, get_logger

logger = get_logger(__name__)


class ResourceKind(Enum):
    """Kinds of cloud resources the deployment manages."""
    NETWORK = "network"
    SUBNET = "subnet"
    FIREWALL_RULE = "firewall-rule"
    SERVICE_ACCOUNT = "service-account"
    DISK = "disk"
    INSTANCE = "instance"
    SECRET = "secret"
    ALERT_POLICY = "alert-policy"
    DASHBOARD = "dashboard"
    LOG_METRIC = "log-metric"
    BUDGET = "budget"
    UPTIME_CHECK = "uptime-check"


class Scope(Enum):
    """Where a resource lives."""
    GLOBAL = "global"
    REGION = "region"
    ZONE = "zone"


@dataclass
class ResourceDescriptor:
    """How to look up, create and delete one named resource.

    Descriptors hold no state of their own; they are rebuilt every run.
    ``delete_action`` receives the live attributes returned by the lookup,
    since some resources are deleted by a server-assigned id.
    """
    kind: ResourceKind
    name: str
    scope: Scope
    lookup: Callable[[], Optional[Dict[str, Any]]]
    create_action: Callable[[], Dict[str, Any]]
    delete_action: Callable[[Dict[str, Any]], None]
    location: Optional[str] = None
    required: bool = True

    @property
    def identifier(self) -> str:
        """Stable label used in logs and reports."""
        return f"{self.kind.value}/{self.name}"

    def exists(self) -> Optional[Dict[str, Any]]:
        """Run the read-only existence lookup."""
        return self.lookup()


class ReconcileStatus(Enum):
    """Outcome of reconciling one descriptor."""
    CREATED = "created"
    ALREADY_EXISTS = "already-exists"
    FAILED = "failed"


@dataclass
class ReconcileOutcome:
    """Result of reconciling a single resource."""

    descriptor: ResourceDescriptor
    status: ReconcileStatus
    attributes: Dict[str, Any] = field(default_factory=dict)
    reason: Optional[str] = None
    error: Optional[DeploymentError] = None

    def is_success(self) -> bool:
        return self.status != ReconcileStatus.FAILED

    def raise_for_failure(self, phase: Optional[str] = None) -> None:
        """Convert a failed outcome into a ReconciliationError."""
        if self.is_success():
            return
        raise ReconciliationError(
            f"Failed to reconcile {self.descriptor.identifier}: {self.reason}",
            context=ErrorContext(
                resource_id=self.descriptor.name,
                resource_type=self.descriptor.kind.value,
                operation="create",
                phase=phase,
            ),
            cause=self.error,
            suggestions=self.error.suggestions if self.error else None,
        )


class ResourceReconciler:
    """Brings named resources into existence, never twice."""

    def __init__(self):
        self.logger = get_logger(__name__)

    def reconcile(self, descriptor: ResourceDescriptor) -> ReconcileOutcome:
        """Ensure one resource exists.

        The existence lookup always runs first. A present resource is never
        touched; an absent one is created exactly once with no retry and no
        update of existing attributes.

        Args:
            descriptor: The resource to reconcile

        Returns:
            ReconcileOutcome carrying the live or newly created attributes
        """
        with LogContext(self.logger, resource_id=descriptor.name,
                        resource_type=descriptor.kind.value):
            context = ErrorContext(
                resource_id=descriptor.name,
                resource_type=descriptor.kind.value,
            )

            try:
                live = descriptor.exists()
            except Exception as e:
                context.operation = "lookup"
                return self._failed(descriptor, e, context)

            if live is not None:
                self.logger.info(f"{descriptor.kind.value} already exists")
                return ReconcileOutcome(descriptor, ReconcileStatus.ALREADY_EXISTS, live)

            self.logger.info(f"Creating {descriptor.kind.value}")
            try:
                attributes = descriptor.create_action()
            except Exception as e:
                context.operation = "create"
                return self._failed(descriptor, e, context)

            self.logger.info(f"Created {descriptor.kind.value}")
            return ReconcileOutcome(descriptor, ReconcileStatus.CREATED, attributes or {})

    def _failed(self, descriptor: ResourceDescriptor, error: Exception,
                context: ErrorContext) -> ReconcileOutcome:
        deployment_error = error_handler.handle_exception(error, context)
        self.logger.error(f"{context.operation} failed: {deployment_error.message}")
        return ReconcileOutcome(
            descriptor,
            ReconcileStatus.FAILED,
            reason=deployment_error.message,
            error=deployment_error,
        )


class BaseProvisioner(ABC):
    """Base class for the provisioners that build descriptors."""

    def __init__(self, client, config):
        """Initialize provisioner.

        Args:
            client: GCloudClient used by the lookup/create/delete actions
            config: DeploymentConfig naming and sizing the resources
        """
        self.client = client
        self.config = config

    @property
    def project(self) -> str:
        return self.config.project_id

    @abstractmethod
    def descriptors(self, **kwargs) -> List[ResourceDescriptor]:
        """Build the descriptors this provisioner is responsible for."""
        pass
