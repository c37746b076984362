"""Best-effort teardown of every managed resource."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, Optional

from tierdeploy.provisioners.base import ResourceDescriptor
from tierdeploy.provisioners.catalog import ResourceCatalog
from tierdeploy.state.manager import StateStore
from tierdeploy.state.models import InstanceRecord, PreflightRecord
from tierdeploy.utils.errors import (
    BestEffortWarning,
    ErrorContext,
    DeploymentError,
    error_handler,
)
from tierdeploy.utils.gcloud import GCloudClient, GCloudCommandError
from tierdeploy.utils.logging import LogContext, get_logger
from tierdeploy.utils.remote import RemoteExecutor

logger = get_logger(__name__)


class CleanupMode(Enum):
    """Whether cleanup only reports or actually deletes."""
    DRY_RUN = "dry-run"
    EXECUTE = "execute"


class CleanupAction(Enum):
    """What happened to one resource."""
    WOULD_DELETE = "would-delete"
    DELETED = "deleted"
    ABSENT = "absent"
    FAILED = "failed"


@dataclass
class CleanupItem:
    """One resource or local file considered by the engine."""
    identifier: str
    action: CleanupAction
    detail: Optional[str] = None


@dataclass
class CleanupReport:
    """Result of a cleanup run."""
    mode: CleanupMode
    items: List[CleanupItem] = field(default_factory=list)
    warnings: List[BestEffortWarning] = field(default_factory=list)
    remaining: List[str] = field(default_factory=list)

    def with_action(self, action: CleanupAction) -> List[CleanupItem]:
        return [item for item in self.items if item.action == action]

    @property
    def deleted(self) -> List[str]:
        return [item.identifier for item in self.with_action(CleanupAction.DELETED)]

    @property
    def would_delete(self) -> List[str]:
        return [item.identifier for item in self.with_action(CleanupAction.WOULD_DELETE)]

    def is_clean(self) -> bool:
        """Nothing left behind after an execute run."""
        return not self.remaining


class CleanupEngine:
    """Deletes resources in reverse dependency order and never aborts."""

    def __init__(
        self,
        config,
        client: GCloudClient,
        store: StateStore,
        catalog: Optional[ResourceCatalog] = None,
        remote_factory: Optional[Callable[[str, str], RemoteExecutor]] = None
    ):
        """Initialize the engine.

        Args:
            config: DeploymentConfig of the environment being torn down
            client: gcloud client for lookups and deletes
            store: State store whose files are removed last
            catalog: Descriptor source (defaults to one built from config)
            remote_factory: Builds the executor used to stop services
        """
        self.config = config
        self.client = client
        self.store = store
        self.catalog = catalog or ResourceCatalog(client, config)
        self.remote_factory = remote_factory or (
            lambda instance, zone: RemoteExecutor(client, instance, zone)
        )
        self.logger = get_logger(__name__)

    def cleanup(self, mode: CleanupMode = CleanupMode.EXECUTE) -> CleanupReport:
        """Tear down the deployment.

        Args:
            mode: DRY_RUN lists what would be deleted; EXECUTE deletes

        Returns:
            CleanupReport with per-resource actions, warnings and leftovers
        """
        report = CleanupReport(mode=mode)
        descriptors = self.catalog.cleanup_order(self._billing_account(report))

        if mode == CleanupMode.EXECUTE:
            self._stop_services(report)

        for descriptor in descriptors:
            self._cleanup_resource(descriptor, mode, report)

        self._cleanup_local_files(mode, report)

        if mode == CleanupMode.EXECUTE:
            self._verify(descriptors, report)

        self.logger.info(
            f"Cleanup ({mode.value}) finished: {len(report.deleted)} deleted, "
            f"{len(report.would_delete)} would be deleted, {len(report.warnings)} warning(s), "
            f"{len(report.remaining)} remaining"
        )
        return report

    def _warn(self, report: CleanupReport, message: str, error: Optional[Exception] = None,
              identifier: Optional[str] = None) -> None:
        detail = message
        if error is not None:
            wrapped = error_handler.handle_exception(
                error, ErrorContext(resource_id=identifier, operation="cleanup")
            )
            detail = f"{message}: {wrapped.message}"
        warning = BestEffortWarning(detail, cause=error,
                                    context=ErrorContext(resource_id=identifier))
        report.warnings.append(warning)
        self.logger.warning(detail)

    def _billing_account(self, report: CleanupReport) -> Optional[str]:
        if self.store.exists("preflight"):
            try:
                preflight = self.store.read("preflight")
                if isinstance(preflight, PreflightRecord) and preflight.billing_account:
                    return preflight.billing_account
            except DeploymentError as e:
                self._warn(report, f"Ignoring unreadable preflight state: {e.message}")
        try:
            return self.client.billing_account()
        except (GCloudCommandError, FileNotFoundError) as e:
            self._warn(report, "Could not read billing account; budget not checked", e)
            return None

    def _stop_services(self, report: CleanupReport) -> None:
        """Stop the application before the instance goes away."""
        if not self.store.exists("instance"):
            return
        try:
            instance = self.store.read("instance")
        except DeploymentError as e:
            self._warn(report, f"Ignoring unreadable instance state: {e.message}")
            return
        if not isinstance(instance, InstanceRecord):
            return

        remote = self.remote_factory(instance.instance_name, instance.zone)
        service = self.config.application.service_name
        outcome = remote.run("stop services", f"sudo systemctl stop {service} caddy")
        if not outcome.success:
            self._warn(report, f"Could not stop services: {outcome.error}",
                       identifier=instance.instance_name)

    def _cleanup_resource(self, descriptor: ResourceDescriptor, mode: CleanupMode,
                          report: CleanupReport) -> None:
        identifier = descriptor.identifier
        with LogContext(self.logger, resource_id=descriptor.name,
                        resource_type=descriptor.kind.value):
            try:
                live = descriptor.exists()
            except Exception as e:
                self._warn(report, f"Could not check {identifier}", e, descriptor.name)
                report.items.append(CleanupItem(identifier, CleanupAction.FAILED, str(e)))
                return

            if live is None:
                report.items.append(CleanupItem(identifier, CleanupAction.ABSENT))
                return

            if mode == CleanupMode.DRY_RUN:
                self.logger.info(f"Would delete {identifier}")
                report.items.append(CleanupItem(identifier, CleanupAction.WOULD_DELETE))
                return

            try:
                descriptor.delete_action(live)
            except Exception as e:
                self._warn(report, f"Failed to delete {identifier}", e, descriptor.name)
                report.items.append(CleanupItem(identifier, CleanupAction.FAILED, str(e)))
                return

            self.logger.info(f"Deleted {identifier}")
            report.items.append(CleanupItem(identifier, CleanupAction.DELETED))

    def _cleanup_local_files(self, mode: CleanupMode, report: CleanupReport) -> None:
        for path in self.store.local_files():
            identifier = f"local/{path.name}"
            if mode == CleanupMode.DRY_RUN:
                report.items.append(CleanupItem(identifier, CleanupAction.WOULD_DELETE, str(path)))
                continue
            try:
                self.store.delete(path)
            except OSError as e:
                self._warn(report, f"Failed to delete {path}", e, identifier)
                report.items.append(CleanupItem(identifier, CleanupAction.FAILED, str(e)))
                continue
            report.items.append(CleanupItem(identifier, CleanupAction.DELETED, str(path)))

    def _verify(self, descriptors: List[ResourceDescriptor], report: CleanupReport) -> None:
        """Look up everything again and record what still exists."""
        for descriptor in descriptors:
            try:
                if descriptor.exists() is not None:
                    report.remaining.append(descriptor.identifier)
            except Exception as e:
                self._warn(report, f"Could not verify {descriptor.identifier}", e, descriptor.name)
        report.remaining.extend(f"local/{p.name}" for p in self.store.local_files())

        if report.remaining:
            self.logger.warning(f"Still present after cleanup: {', '.join(report.remaining)}")
        else:
            self.logger.info("Verification passed: no managed resources remain")
