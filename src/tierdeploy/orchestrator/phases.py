"""The six deployment phases.

Each phase declares the state keys it requires and produces. Phases turn
failed required reconciliations and remote steps into exceptions; the
orchestrator catches them at the phase boundary.
"""

import os
import tempfile
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, List, Optional, Tuple

import httpx

from tierdeploy.config.models import REQUIRED_APIS, DeploymentConfig
from tierdeploy.orchestrator.artifacts import (
    FAIL2BAN_JAIL,
    STARTUP_MARKER,
    render_app_config,
    render_caddyfile,
    render_logrotate,
    render_service_unit,
    render_startup_script,
)
from tierdeploy.provisioners.base import (
    ReconcileOutcome,
    ReconcileStatus,
    ResourceDescriptor,
    ResourceReconciler,
)
from tierdeploy.provisioners.catalog import ResourceCatalog
from tierdeploy.provisioners.compute import instance_addresses, short_name
from tierdeploy.state.manager import StateStore
from tierdeploy.state.models import (
    CredentialRecord,
    DeploymentRecord,
    DeploymentState,
    InstanceRecord,
    MonitoringRecord,
    PreflightRecord,
)
from tierdeploy.utils.errors import (
    BestEffortWarning,
    ErrorCategory,
    ErrorContext,
    HealthCheckError,
    error_handler,
)
from tierdeploy.utils.gcloud import GCloudClient, GCloudCommandError
from tierdeploy.utils.logging import get_logger
from tierdeploy.utils.remote import CommandOutcome, RemoteExecutor

RemoteFactory = Callable[[str, str], RemoteExecutor]
HttpFactory = Callable[[], httpx.Client]

REMOTE_STAGING = "/tmp/tierdeploy"


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def default_http_client() -> httpx.Client:
    # The proxy serves a self-signed certificate
    return httpx.Client(verify=False, timeout=10.0, follow_redirects=False)


@dataclass
class PhaseContext:
    """Everything a phase body may touch, built once per run."""

    config: DeploymentConfig
    client: GCloudClient
    store: StateStore
    catalog: ResourceCatalog
    reconciler: ResourceReconciler
    remote_factory: RemoteFactory
    http_factory: HttpFactory = default_http_client
    sleep: Callable[[float], None] = time.sleep
    state: DeploymentState = field(default_factory=DeploymentState)
    phase_name: Optional[str] = None
    outcomes: List[ReconcileOutcome] = field(default_factory=list)
    warnings: List[BestEffortWarning] = field(default_factory=list)

    def __post_init__(self):
        self.logger = get_logger(__name__)

    def ensure(self, descriptor: ResourceDescriptor) -> ReconcileOutcome:
        """Reconcile one descriptor; abort on required failures, warn otherwise."""
        outcome = self.reconciler.reconcile(descriptor)
        self.outcomes.append(outcome)
        if not outcome.is_success():
            if descriptor.required:
                outcome.raise_for_failure(self.phase_name)
            self.warn(f"Skipped optional {descriptor.identifier}: {outcome.reason}",
                      category=ErrorCategory.RECONCILIATION)
        return outcome

    def warn(self, message: str, cause: Optional[Exception] = None,
             category: ErrorCategory = ErrorCategory.UNKNOWN) -> BestEffortWarning:
        warning = BestEffortWarning(
            message, category=category, cause=cause,
            context=ErrorContext(phase=self.phase_name),
        )
        self.warnings.append(warning)
        self.logger.warning(message)
        return warning

    def best_effort(self, description: str, action: Callable[[], object]) -> bool:
        """Run a gcloud action whose failure is only a warning."""
        try:
            action()
            return True
        except (GCloudCommandError, FileNotFoundError) as e:
            error = error_handler.handle_exception(e, ErrorContext(operation=description))
            self.warn(f"{description} failed: {error.message}", cause=e)
            return False

    def remote(self, instance: InstanceRecord) -> RemoteExecutor:
        return self.remote_factory(instance.instance_name, instance.zone)

    def upload_text(self, remote: RemoteExecutor, description: str, content: str,
                    remote_name: str) -> CommandOutcome:
        """Upload rendered content into the remote staging directory."""
        with tempfile.NamedTemporaryFile("w", delete=False) as f:
            f.write(content)
            local_path = f.name
        try:
            return remote.upload(description, local_path, f"{REMOTE_STAGING}/{remote_name}")
        finally:
            os.unlink(local_path)

    def run_steps(self, remote: RemoteExecutor, steps: List[Tuple[str, str]]) -> None:
        """Run remote steps in order; the first failure aborts the phase."""
        for description, command in steps:
            remote.run(description, command).raise_for_failure()


class Phase(ABC):
    """One resumable step of the deployment."""

    ordinal: int = 0
    name: str = ""
    label: str = ""
    requires: Tuple[str, ...] = ()
    produces: Tuple[str, ...] = ()
    mutating: bool = True

    @abstractmethod
    def execute(self, ctx: PhaseContext) -> None:
        """Run the phase body and write the produced state records."""
        pass

    def __repr__(self) -> str:
        return f"<Phase {self.ordinal} {self.name}>"


class PredeployPhase(Phase):
    """Enable APIs and set up the billing budget."""

    ordinal = 1
    name = "predeploy"
    label = "Pre-deployment checks"
    produces = ("preflight",)

    def execute(self, ctx: PhaseContext) -> None:
        enabled = set(ctx.client.enabled_services())
        for api in REQUIRED_APIS:
            if api in enabled:
                continue
            ctx.logger.info(f"Enabling {api}")
            ctx.client.enable_service(api)
            enabled.add(api)

        billing_account = None
        try:
            billing_account = ctx.client.billing_account()
        except GCloudCommandError as e:
            ctx.warn(f"Could not read the billing account: {e.summary()}", cause=e)

        budget_name = None
        if ctx.config.budget.enabled:
            if billing_account:
                outcome = ctx.ensure(ctx.catalog.billing.budget(billing_account))
                if outcome.is_success():
                    budget_name = outcome.descriptor.name
            else:
                ctx.warn("No billing account linked; budget not created")

        ctx.store.write(self.name, "preflight", PreflightRecord(
            validated_at=_now(),
            billing_account=billing_account,
            enabled_apis=sorted(a for a in enabled if a in REQUIRED_APIS),
            budget_name=budget_name,
        ))


class InfrastructurePhase(Phase):
    """Network, firewall, service account, disk and the instance."""

    ordinal = 2
    name = "infrastructure"
    label = "Infrastructure"
    produces = ("instance",)

    def execute(self, ctx: PhaseContext) -> None:
        network = ctx.catalog.network
        ctx.ensure(network.network())
        ctx.ensure(network.subnet())
        for rule in network.firewall_rules():
            ctx.ensure(rule)

        iam = ctx.catalog.iam
        ctx.ensure(iam.service_account())
        for warning in iam.grant_roles():
            ctx.warnings.append(warning)
            ctx.logger.warning(warning.message)

        compute = ctx.catalog.compute
        ctx.ensure(compute.disk())
        outcome = ctx.ensure(compute.instance(
            subnet=network.subnet_name,
            service_account_email=iam.email,
            tags=network.network_tags(),
            startup_script=lambda: render_startup_script(ctx.config),
        ))

        attributes = outcome.attributes
        if outcome.status == ReconcileStatus.ALREADY_EXISTS and attributes.get("status") != "RUNNING":
            compute.start_instance()
            attributes = compute.describe_instance() or attributes

        internal_ip, external_ip = instance_addresses(attributes)
        if external_ip is None:
            attributes = compute.describe_instance() or attributes
            internal_ip, external_ip = instance_addresses(attributes)

        record = InstanceRecord(
            instance_name=compute.instance_name,
            zone=ctx.config.zone,
            machine_type=short_name(attributes.get("machineType")) or ctx.config.machine_type,
            internal_ip=internal_ip,
            external_ip=external_ip,
            service_account=iam.email,
        )
        self.wait_for_startup(ctx, record)
        ctx.store.write(self.name, "instance", record)

    def wait_for_startup(self, ctx: PhaseContext, instance: InstanceRecord) -> bool:
        """Poll for the startup marker; a timeout is only a warning."""
        wait = ctx.config.startup_wait
        remote = ctx.remote(instance)
        for attempt in range(1, wait.attempts + 1):
            outcome = remote.run(
                f"check startup ({attempt}/{wait.attempts})",
                f"test -f {STARTUP_MARKER} && echo ready",
            )
            if outcome.success and "ready" in outcome.output:
                ctx.logger.info("Instance startup script finished")
                return True
            if attempt < wait.attempts:
                ctx.sleep(wait.interval_seconds)
        ctx.warn("Startup script did not finish in time; later phases may fail")
        return False


class SecurityPhase(Phase):
    """API key secret, reverse proxy, service unit and host hardening."""

    ordinal = 3
    name = "security"
    label = "Security configuration"
    requires = ("instance",)
    produces = ("credential",)

    def execute(self, ctx: PhaseContext) -> None:
        instance = ctx.state.require("instance", self.name)
        store = ctx.catalog.secrets
        outcome = ctx.ensure(store.secret())

        version = "1" if outcome.status == ReconcileStatus.CREATED else "latest"
        if outcome.status == ReconcileStatus.ALREADY_EXISTS and store.access_latest() is None:
            ctx.logger.info("Secret has no readable version; adding a new key")
            added = store.add_version()
            version = short_name(added.get("name")) or "latest"

        ctx.best_effort(
            "Granting secret access to the service account",
            lambda: store.grant_accessor(instance.service_account or ctx.catalog.iam.email),
        )

        app = ctx.config.application
        remote = ctx.remote(instance)
        remote.run("prepare staging directory", f"mkdir -p {REMOTE_STAGING}").raise_for_failure()
        ctx.upload_text(remote, "upload Caddyfile", render_caddyfile(ctx.config),
                        "Caddyfile").raise_for_failure()
        ctx.upload_text(remote, "upload service unit",
                        render_service_unit(ctx.config, store.secret_name),
                        f"{app.service_name}.service").raise_for_failure()
        ctx.upload_text(remote, "upload fail2ban jail", FAIL2BAN_JAIL,
                        "jail.local").raise_for_failure()

        ctx.run_steps(remote, [
            ("create application user",
             f"id -u {app.user} >/dev/null 2>&1 || sudo useradd --system --create-home {app.user}"),
            ("create application directories",
             f"sudo mkdir -p {app.install_dir} /var/log/{app.service_name} && "
             f"sudo chown -R {app.user}:{app.user} {app.install_dir} /var/log/{app.service_name}"),
            ("install Caddyfile",
             f"sudo install -m 644 {REMOTE_STAGING}/Caddyfile /etc/caddy/Caddyfile"),
            ("install service unit",
             f"sudo install -m 644 {REMOTE_STAGING}/{app.service_name}.service "
             f"/etc/systemd/system/{app.service_name}.service && sudo systemctl daemon-reload"),
            ("configure fail2ban",
             f"sudo install -m 644 {REMOTE_STAGING}/jail.local /etc/fail2ban/jail.local && "
             "sudo systemctl enable --now fail2ban && sudo systemctl restart fail2ban"),
            ("enable services",
             f"sudo systemctl enable caddy {app.service_name}"),
        ])

        ctx.store.write(self.name, "credential", CredentialRecord(
            api_key_secret_name=store.secret_name,
            api_key_secret_version=version,
            service_account_email=instance.service_account or ctx.catalog.iam.email,
        ))


class ApplicationPhase(Phase):
    """Install the application and start the services."""

    ordinal = 4
    name = "application"
    label = "Application deployment"
    requires = ("instance", "credential")
    produces = ("deployment",)

    def execute(self, ctx: PhaseContext) -> None:
        instance = ctx.state.require("instance", self.name)
        credential = ctx.state.require("credential", self.name)
        app = ctx.config.application
        remote = ctx.remote(instance)

        remote.run("prepare staging directory", f"mkdir -p {REMOTE_STAGING}").raise_for_failure()
        if app.package_path:
            remote.upload("upload application package", app.package_path,
                          f"{REMOTE_STAGING}/app.tar.gz").raise_for_failure()
            remote.run(
                "install application package",
                f"sudo tar -xzf {REMOTE_STAGING}/app.tar.gz -C {app.install_dir} && "
                f"sudo chown -R {app.user}:{app.user} {app.install_dir}",
            ).raise_for_failure()

        ctx.upload_text(remote, "upload application config",
                        render_app_config(ctx.config, credential.api_key_secret_name),
                        "config.json").raise_for_failure()

        ctx.run_steps(remote, [
            ("install application config",
             f"sudo install -m 640 -o {app.user} -g {app.user} "
             f"{REMOTE_STAGING}/config.json {app.install_dir}/config.json"),
            ("restart application", f"sudo systemctl restart {app.service_name}"),
            ("restart reverse proxy", "sudo systemctl restart caddy"),
        ])

        health = remote.run(
            "local health check",
            f"curl -sf http://localhost:{app.port}{app.health_path}",
        )
        if not health.success:
            ctx.warn("Local health check failed; the service may still be starting")

        ip = instance.external_ip
        ctx.store.write(self.name, "deployment", DeploymentRecord(
            deployed_at=_now(),
            instance_name=instance.instance_name,
            external_ip=ip,
            environment=ctx.config.environment,
            project_id=ctx.config.project_id,
            api_key_secret_name=credential.api_key_secret_name,
            http_url=f"http://{ip}" if ip else None,
            https_url=f"https://{ip}" if ip else None,
            health_url=f"https://{ip}{app.health_path}" if ip else None,
        ))


class MonitoringPhase(Phase):
    """Ops agent, log rotation and Cloud Monitoring artifacts."""

    ordinal = 5
    name = "monitoring"
    label = "Monitoring setup"
    requires = ("instance", "deployment")
    produces = ("monitoring",)

    OPS_AGENT_INSTALL = (
        "curl -sSO https://dl.google.com/cloudagents/add-google-cloud-ops-agent-repo.sh && "
        "sudo bash add-google-cloud-ops-agent-repo.sh --also-install"
    )

    def execute(self, ctx: PhaseContext) -> None:
        instance = ctx.state.require("instance", self.name)
        ctx.state.require("deployment", self.name)
        remote = ctx.remote(instance)

        remote.run(
            "install ops agent",
            f"systemctl is-active --quiet google-cloud-ops-agent || ({self.OPS_AGENT_INSTALL})",
        ).raise_for_failure()

        remote.run("prepare staging directory", f"mkdir -p {REMOTE_STAGING}").raise_for_failure()
        rotate = ctx.upload_text(remote, "upload logrotate config",
                                 render_logrotate(ctx.config), "logrotate")
        if rotate.success:
            rotate = remote.run(
                "install logrotate config",
                f"sudo install -m 644 {REMOTE_STAGING}/logrotate "
                f"/etc/logrotate.d/{ctx.config.application.service_name}",
            )
        if not rotate.success:
            ctx.warn(f"Log rotation not configured: {rotate.error}")

        record = MonitoringRecord(ops_agent_installed=True)
        if not ctx.config.monitoring.enabled:
            ctx.logger.info("Monitoring artifacts disabled in configuration")
            ctx.store.write(self.name, "monitoring", record)
            return

        monitoring = ctx.catalog.monitoring
        channel = None
        try:
            channel = monitoring.ensure_notification_channel()
        except (GCloudCommandError, FileNotFoundError) as e:
            ctx.warn(f"Notification channel not created: {e}", cause=e)

        for descriptor in monitoring.log_metrics():
            if ctx.ensure(descriptor).is_success():
                record.log_metrics.append(descriptor.name)

        if instance.external_ip:
            uptime = monitoring.uptime_check(instance.external_ip)
            if ctx.ensure(uptime).is_success():
                record.uptime_check = uptime.name
        else:
            ctx.warn("No external IP recorded; uptime check skipped")

        for descriptor in monitoring.alert_policies(channel):
            if ctx.ensure(descriptor).is_success():
                record.alert_policies.append(descriptor.name)

        dashboard = monitoring.dashboard()
        if ctx.ensure(dashboard).is_success():
            record.dashboard = dashboard.name

        ctx.store.write(self.name, "monitoring", record)


@dataclass
class CheckResult:
    """One line of the health report."""
    name: str
    critical: bool
    passed: bool
    detail: str = ""


class HealthcheckPhase(Phase):
    """Validate the running deployment and write a report."""

    ordinal = 6
    name = "healthcheck"
    label = "Health validation"
    requires = ("instance", "credential", "deployment")
    mutating = False

    def execute(self, ctx: PhaseContext) -> None:
        instance = ctx.state.require("instance", self.name)
        ctx.state.require("credential", self.name)
        deployment = ctx.state.require("deployment", self.name)
        app = ctx.config.application
        remote = ctx.remote(instance)

        checks: List[CheckResult] = []

        status = remote.run("service status", f"systemctl is-active {app.service_name} caddy")
        checks.append(CheckResult("service status", True, status.success,
                                  (status.output or status.error or "").strip()))

        local = remote.run("local health",
                           f"curl -sf http://localhost:{app.port}{app.health_path}")
        checks.append(CheckResult("local health", True, local.success,
                                  (local.output or local.error or "").strip()[:200]))

        if deployment.external_ip:
            checks.extend(self.external_checks(ctx, deployment.external_ip))
        else:
            checks.append(CheckResult("external access", False, False, "no external IP recorded"))

        report = self.render_report(ctx, deployment, checks)
        path = ctx.store.write_report(report)
        ctx.logger.info(f"Health report written to {path}")

        failed = [c for c in checks if not c.passed]
        for check in failed:
            if not check.critical:
                ctx.warn(f"Check '{check.name}' failed: {check.detail}",
                         category=ErrorCategory.HEALTH)

        critical = [c.name for c in failed if c.critical]
        if critical:
            raise HealthCheckError(
                f"{len(critical)} critical health check(s) failed: {', '.join(critical)}",
                failed_checks=critical,
                context=ErrorContext(phase=self.name, resource_id=instance.instance_name),
                suggestions=[
                    f"See the report at {path}",
                    f"Check service logs: sudo journalctl -u {app.service_name}",
                ],
            )

    def external_checks(self, ctx: PhaseContext, ip: str) -> List[CheckResult]:
        """Check the public endpoints; failures here never abort."""
        health_path = ctx.config.application.health_path
        results = []
        api_key = None
        try:
            api_key = ctx.catalog.secrets.access_latest()
        except (GCloudCommandError, FileNotFoundError) as e:
            ctx.logger.debug(f"Could not read API key for auth check: {e}")

        with ctx.http_factory() as http:
            def http_check(name: str, expect: Callable[[httpx.Response], bool], method: str,
                           url: str, headers: Optional[dict] = None) -> CheckResult:
                try:
                    response = http.request(method, url, headers=headers)
                except httpx.HTTPError as e:
                    return CheckResult(name, False, False, f"{type(e).__name__}: {e}")
                return CheckResult(name, False, expect(response), f"HTTP {response.status_code}")

            results.append(http_check(
                "external http redirect",
                lambda r: r.status_code in (200, 301, 302, 307, 308),
                "GET", f"http://{ip}/",
            ))
            results.append(http_check(
                "external https health",
                lambda r: r.status_code == 200,
                "GET", f"https://{ip}{health_path}",
            ))
            results.append(http_check(
                "api rejects missing key",
                lambda r: r.status_code in (401, 403),
                "POST", f"https://{ip}/v1/messages",
            ))
            if api_key:
                results.append(http_check(
                    "api accepts key",
                    lambda r: r.status_code < 500 and r.status_code not in (401, 403),
                    "POST", f"https://{ip}/v1/messages",
                    headers={"x-api-key": api_key},
                ))
            else:
                results.append(CheckResult("api accepts key", False, False, "API key unavailable"))
        return results

    def render_report(self, ctx: PhaseContext, deployment: DeploymentRecord,
                      checks: List[CheckResult]) -> str:
        passed = sum(1 for c in checks if c.passed)
        lines = [
            "Health Check Report",
            f"Generated: {_now()}",
            f"Environment: {ctx.config.environment}",
            f"Project: {ctx.config.project_id}",
            f"Instance: {deployment.instance_name}",
            f"External IP: {deployment.external_ip or 'unknown'}",
            "",
        ]
        for check in checks:
            mark = "PASS" if check.passed else ("FAIL" if check.critical else "WARN")
            lines.append(f"[{mark}] {check.name}: {check.detail}")
        lines += ["", f"Summary: {passed}/{len(checks)} checks passed"]
        return "\n".join(lines) + "\n"


PHASES: List[Phase] = [
    PredeployPhase(),
    InfrastructurePhase(),
    SecurityPhase(),
    ApplicationPhase(),
    MonitoringPhase(),
    HealthcheckPhase(),
]


def producer_of(key: str, phases: Optional[List[Phase]] = None) -> Optional[str]:
    """Name of the phase that produces a state key."""
    for phase in phases or PHASES:
        if key in phase.produces:
            return phase.name
    return None
