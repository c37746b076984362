"""Phase orchestrator: validation, ordering, preconditions and fail-fast."""

import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Callable, Iterable, List, Optional

from tierdeploy.compliance.guard import ComplianceGuard, collect_live_state
from tierdeploy.compliance.rules import RuleResult
from tierdeploy.config.models import DeploymentConfig
from tierdeploy.orchestrator.cleanup import CleanupEngine, CleanupMode, CleanupReport
from tierdeploy.orchestrator.phases import (
    PHASES,
    HttpFactory,
    Phase,
    PhaseContext,
    RemoteFactory,
    default_http_client,
    producer_of,
)
from tierdeploy.provisioners.base import ReconcileOutcome, ResourceReconciler
from tierdeploy.provisioners.catalog import ResourceCatalog
from tierdeploy.provisioners.compute import instance_addresses
from tierdeploy.state.manager import StateStore
from tierdeploy.utils.errors import (
    BestEffortWarning,
    ConfigurationError,
    DeploymentError,
    ErrorContext,
    MissingStateError,
    PrerequisiteError,
    StateError,
    error_handler,
)
from tierdeploy.utils.gcloud import GCloudClient, GCloudCommandError
from tierdeploy.utils.logging import LogContext, get_logger
from tierdeploy.utils.remote import RemoteExecutor

logger = get_logger(__name__)


class RunMode(Enum):
    """What a run does after validation."""
    DEPLOY = "deploy"
    CLEANUP = "cleanup"
    VALIDATE_ONLY = "validate-only"


class RunStatus(Enum):
    """Orchestrator states."""
    IDLE = "idle"
    VALIDATING = "validating"
    RUNNING = "running"
    COMPLETED = "completed"
    ABORTED = "aborted"


class PhaseStatus(Enum):
    """Status of one phase within a run."""
    SUCCESS = "success"
    FAILED = "failed"


@dataclass
class PhaseResult:
    """Result of executing one phase."""

    ordinal: int
    name: str
    label: str
    status: PhaseStatus
    outcomes: List[ReconcileOutcome] = field(default_factory=list)
    warnings: List[BestEffortWarning] = field(default_factory=list)
    error: Optional[DeploymentError] = None
    duration: float = 0.0  # seconds

    def is_success(self) -> bool:
        return self.status == PhaseStatus.SUCCESS


@dataclass
class RunResult:
    """Complete result of one orchestrator run."""

    mode: RunMode
    status: RunStatus = RunStatus.IDLE
    transitions: List[str] = field(default_factory=list)
    compliance: List[RuleResult] = field(default_factory=list)
    phase_results: List[PhaseResult] = field(default_factory=list)
    cleanup_report: Optional[CleanupReport] = None
    error: Optional[DeploymentError] = None
    final_address: Optional[str] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None

    def __post_init__(self):
        self.transitions.append(self.status.value)

    def transition(self, status: RunStatus, detail: Optional[str] = None) -> None:
        self.status = status
        self.transitions.append(f"{status.value}({detail})" if detail else status.value)

    def is_success(self) -> bool:
        return self.status == RunStatus.COMPLETED

    @property
    def warnings(self) -> List[BestEffortWarning]:
        collected = [w for r in self.phase_results for w in r.warnings]
        if self.cleanup_report:
            collected.extend(self.cleanup_report.warnings)
        return collected

    @property
    def duration(self) -> float:
        if self.start_time and self.end_time:
            return (self.end_time - self.start_time).total_seconds()
        return 0.0


class PhaseOrchestrator:
    """Runs selected phases in order, guarded by compliance checks."""

    def __init__(
        self,
        config: DeploymentConfig,
        client: GCloudClient,
        store: Optional[StateStore] = None,
        guard: Optional[ComplianceGuard] = None,
        phases: Optional[List[Phase]] = None,
        catalog: Optional[ResourceCatalog] = None,
        remote_factory: Optional[RemoteFactory] = None,
        http_factory: HttpFactory = default_http_client,
        sleep: Callable[[float], None] = time.sleep
    ):
        """Initialize the orchestrator.

        Args:
            config: Validated configuration, shared by every component
            client: gcloud client
            store: State store (defaults to config.state_dir/environment)
            guard: Compliance guard (defaults to the free-tier rules)
            phases: Phase list (defaults to the six standard phases)
            catalog: Descriptor source
            remote_factory: Builds RemoteExecutor instances for SSH steps
            http_factory: Builds the HTTP client used by health checks
            sleep: Used between startup polls
        """
        self.config = config
        self.client = client
        self.store = store or StateStore(config.state_dir, config.environment)
        self.guard = guard or ComplianceGuard()
        self.phases = sorted(phases or PHASES, key=lambda p: p.ordinal)
        self.catalog = catalog or ResourceCatalog(client, config)
        self.remote_factory = remote_factory or (
            lambda instance, zone: RemoteExecutor(client, instance, zone)
        )
        self.http_factory = http_factory
        self.sleep = sleep
        self.reconciler = ResourceReconciler()
        self.logger = get_logger(__name__)

    def select_phases(self, selected: Optional[Iterable[int]] = None) -> List[Phase]:
        """Resolve phase numbers to phases, ascending and de-duplicated.

        Raises:
            ConfigurationError: If a number does not name a phase
        """
        by_ordinal = {phase.ordinal: phase for phase in self.phases}
        if selected is None:
            return list(self.phases)

        numbers = sorted(set(selected))
        unknown = [n for n in numbers if n not in by_ordinal]
        if unknown:
            raise ConfigurationError(
                f"Unknown phase number(s): {', '.join(str(n) for n in unknown)}",
                suggestions=[f"Valid phases are {min(by_ordinal)}-{max(by_ordinal)}"],
            )
        if not numbers:
            raise ConfigurationError("No phases selected")
        return [by_ordinal[n] for n in numbers]

    def run(
        self,
        selected_phases: Optional[Iterable[int]] = None,
        mode: RunMode = RunMode.DEPLOY,
        cleanup_mode: CleanupMode = CleanupMode.EXECUTE
    ) -> RunResult:
        """Run the orchestrator.

        Args:
            selected_phases: Phase numbers to run (all when None); order is ignored
            mode: deploy, cleanup or validate-only
            cleanup_mode: Dry-run or execute, for cleanup mode

        Returns:
            RunResult ending COMPLETED or ABORTED with the error attached
        """
        result = RunResult(mode=mode, start_time=datetime.now())
        try:
            phases = self.select_phases(selected_phases) if mode == RunMode.DEPLOY else []

            result.transition(RunStatus.VALIDATING)
            self.check_prerequisites()

            if mode == RunMode.CLEANUP:
                engine = CleanupEngine(self.config, self.client, self.store,
                                       self.catalog, self.remote_factory)
                result.cleanup_report = engine.cleanup(cleanup_mode)
                result.transition(RunStatus.COMPLETED)
                return result

            if mode == RunMode.VALIDATE_ONLY or any(p.mutating for p in phases):
                result.compliance = self.guard.evaluate(
                    self.config, collect_live_state(self.client)
                )
                self.guard.enforce(result.compliance)

            if mode == RunMode.VALIDATE_ONLY:
                result.transition(RunStatus.COMPLETED)
                return result

            for phase in phases:
                result.transition(RunStatus.RUNNING, str(phase.ordinal))
                phase_result = self.run_phase(phase)
                result.phase_results.append(phase_result)
                if not phase_result.is_success():
                    raise phase_result.error

            result.final_address = self.final_address()
            result.transition(RunStatus.COMPLETED)
        except DeploymentError as e:
            result.error = e
            result.transition(RunStatus.ABORTED, e.message)
            error_handler.log_error(e)
        except GCloudCommandError as e:
            # Raised while collecting live state for the guard
            result.error = error_handler.handle_exception(
                e, ErrorContext(operation="compliance")
            )
            result.transition(RunStatus.ABORTED, result.error.message)
            error_handler.log_error(result.error)
        finally:
            result.end_time = datetime.now()
        return result

    def check_prerequisites(self) -> None:
        """gcloud on PATH, an authenticated account and a project.

        Raises:
            PrerequisiteError: On the first missing prerequisite
        """
        if not self.client.installed():
            raise PrerequisiteError(
                "gcloud CLI not found",
                suggestions=["Install the Google Cloud SDK: https://cloud.google.com/sdk/docs/install"],
            )
        try:
            account = self.client.active_account()
        except GCloudCommandError as e:
            raise PrerequisiteError("Could not query gcloud authentication", cause=e)
        if not account:
            raise PrerequisiteError(
                "No authenticated gcloud account",
                suggestions=["Run: gcloud auth login"],
            )
        if not self.config.project_id:
            raise PrerequisiteError(
                "No project configured",
                suggestions=["Run: gcloud config set project <project-id>"],
            )
        self.logger.info(f"Authenticated as {account}, project {self.config.project_id}")

    def check_preconditions(self, phase: Phase) -> None:
        """Every key the phase requires must already be persisted.

        Raises:
            MissingStateError: Naming the first missing key and its producer
        """
        state = self.store.load()
        for key in phase.requires:
            if not state.has(key):
                raise MissingStateError(
                    key,
                    required_by=phase.name,
                    produced_by=producer_of(key, self.phases),
                    context=ErrorContext(phase=phase.name),
                )

    def verify_postconditions(self, phase: Phase) -> None:
        missing = self.store.load().missing(phase.produces)
        if missing:
            raise StateError(
                f"Phase '{phase.name}' finished without writing: {', '.join(missing)}",
                context=ErrorContext(phase=phase.name),
            )

    def run_phase(self, phase: Phase) -> PhaseResult:
        """Run one phase and convert any failure into a failed PhaseResult."""
        start = time.time()
        ctx = PhaseContext(
            config=self.config,
            client=self.client,
            store=self.store,
            catalog=self.catalog,
            reconciler=self.reconciler,
            remote_factory=self.remote_factory,
            http_factory=self.http_factory,
            sleep=self.sleep,
            phase_name=phase.name,
        )

        with LogContext(self.logger, phase=phase.name):
            self.logger.info(f"Phase {phase.ordinal}: {phase.label}")
            try:
                self.check_preconditions(phase)
                ctx.state = self.store.load()
                phase.execute(ctx)
                self.verify_postconditions(phase)
            except Exception as e:
                error = error_handler.handle_exception(e, ErrorContext(phase=phase.name))
                if error.context.phase is None:
                    error.context.phase = phase.name
                self.logger.error(f"Phase {phase.ordinal} ({phase.name}) failed: {error.message}")
                return PhaseResult(
                    phase.ordinal, phase.name, phase.label, PhaseStatus.FAILED,
                    ctx.outcomes, ctx.warnings, error, time.time() - start,
                )

            self.logger.info(f"Phase {phase.ordinal} ({phase.name}) completed")
            return PhaseResult(
                phase.ordinal, phase.name, phase.label, PhaseStatus.SUCCESS,
                ctx.outcomes, ctx.warnings, None, time.time() - start,
            )

    def final_address(self) -> Optional[str]:
        """Best-effort lookup of the public HTTPS address."""
        try:
            attributes = self.catalog.compute.describe_instance()
        except (GCloudCommandError, FileNotFoundError) as e:
            self.logger.info(f"External address unavailable: {e}")
            return None
        _, external_ip = instance_addresses(attributes or {})
        if not external_ip:
            self.logger.info("External address unavailable; check the instance in the console")
            return None
        return f"https://{external_ip}"
