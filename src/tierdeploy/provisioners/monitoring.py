"""Cloud Monitoring and Logging descriptors.

Alert policies, dashboards and uptime checks have server-assigned ids, so
they are found by display name and deleted by the ``name`` their lookup
returns. All of them are optional: a failure becomes a warning.
"""

import json
from typing import Any, Dict, List, Optional

from tierdeploy.provisioners.base import BaseProvisioner, ResourceDescriptor, ResourceKind, Scope
from tierdeploy.provisioners.naming import resource_name
from tierdeploy.utils.logging import get_logger

# qualifier -> (description, log filter template)
LOG_METRICS = {
    "errors": (
        "Error log entries from the proxy service",
        'resource.type="gce_instance" AND severity>=ERROR AND logName:"{service}"',
    ),
    "requests": (
        "Requests handled by the reverse proxy",
        'resource.type="gce_instance" AND logName:"caddy"',
    ),
}

ALERT_QUALIFIERS = ["instance-down", "high-memory"]


class MonitoringProvisioner(BaseProvisioner):
    """Builds log metrics, uptime check, alert policies and dashboard."""

    POLICIES = "alpha monitoring policies"
    DASHBOARDS = "monitoring dashboards"
    UPTIME = "monitoring uptime"
    CHANNELS = "beta monitoring channels"
    METRICS = "logging metrics"

    def __init__(self, client, config):
        super().__init__(client, config)
        self.logger = get_logger(__name__)

    def _name(self, kind: ResourceKind, qualifier: Optional[str] = None) -> str:
        return resource_name(kind, self.config.resource_prefix, qualifier)

    def _by_display_name(self, kind: ResourceKind, group: str, display_name: str,
                         create, verb: str = "list") -> ResourceDescriptor:
        return ResourceDescriptor(
            kind=kind,
            name=display_name,
            scope=Scope.GLOBAL,
            lookup=lambda: self.client.find_by_display_name(group, display_name, verb=verb),
            create_action=create,
            delete_action=lambda live: self.client.delete(group, live["name"]),
            required=False,
        )

    def log_metric(self, qualifier: str) -> ResourceDescriptor:
        name = self._name(ResourceKind.LOG_METRIC, qualifier)
        description, log_filter = LOG_METRICS[qualifier]
        log_filter = log_filter.format(service=self.config.application.service_name)
        return ResourceDescriptor(
            kind=ResourceKind.LOG_METRIC,
            name=name,
            scope=Scope.GLOBAL,
            lookup=lambda: self.client.describe(self.METRICS, name),
            create_action=lambda: self.client.create(self.METRICS, name, {
                "description": description,
                "log-filter": log_filter,
            }),
            delete_action=lambda live: self.client.delete(self.METRICS, name),
            required=False,
        )

    def log_metrics(self) -> List[ResourceDescriptor]:
        return [self.log_metric(qualifier) for qualifier in LOG_METRICS]

    def uptime_check(self, host: Optional[str] = None) -> ResourceDescriptor:
        """HTTPS check against the health endpoint of ``host``."""
        display_name = self._name(ResourceKind.UPTIME_CHECK)

        def create() -> Dict[str, Any]:
            if not host:
                raise ValueError("Uptime check needs the instance external IP")
            result = self.client.call(["monitoring", "uptime", "create", display_name], {
                "resource-type": "uptime-url",
                "resource-labels": f"host={host},project_id={self.project}",
                "path": self.config.application.health_path,
                "port": 443,
                "protocol": "https",
                "period": 5,
            })
            return result or {"displayName": display_name}

        return self._by_display_name(
            ResourceKind.UPTIME_CHECK, self.UPTIME, display_name, create, verb="list-configs"
        )

    def alert_policy_body(self, qualifier: str, display_name: str,
                          channel: Optional[str]) -> Dict[str, Any]:
        """JSON body for one of the alert policies."""
        instance = resource_name(ResourceKind.INSTANCE, self.config.resource_prefix)
        if qualifier == "instance-down":
            condition = {
                "displayName": "Instance not reporting uptime",
                "conditionAbsent": {
                    "filter": (
                        'metric.type="compute.googleapis.com/instance/uptime" AND '
                        f'resource.type="gce_instance" AND metric.labels.instance_name="{instance}"'
                    ),
                    "duration": "300s",
                },
            }
        else:
            condition = {
                "displayName": "Memory usage above threshold",
                "conditionThreshold": {
                    "filter": (
                        'metric.type="agent.googleapis.com/memory/percent_used" AND '
                        'resource.type="gce_instance" AND metric.labels.state="used"'
                    ),
                    "comparison": "COMPARISON_GT",
                    "thresholdValue": self.config.monitoring.memory_threshold_percent,
                    "duration": "300s",
                },
            }
        return {
            "displayName": display_name,
            "combiner": "OR",
            "conditions": [condition],
            "notificationChannels": [channel] if channel else [],
        }

    def alert_policy(self, qualifier: str, channel: Optional[str] = None) -> ResourceDescriptor:
        display_name = self._name(ResourceKind.ALERT_POLICY, qualifier)
        body = self.alert_policy_body(qualifier, display_name, channel)
        return self._by_display_name(
            ResourceKind.ALERT_POLICY, self.POLICIES, display_name,
            lambda: self.client.create(self.POLICIES, None, {"policy": json.dumps(body)}),
        )

    def alert_policies(self, channel: Optional[str] = None) -> List[ResourceDescriptor]:
        return [self.alert_policy(qualifier, channel) for qualifier in ALERT_QUALIFIERS]

    def dashboard_body(self, display_name: str) -> Dict[str, Any]:
        def tile(title: str, metric: str) -> Dict[str, Any]:
            return {
                "title": title,
                "xyChart": {
                    "dataSets": [{
                        "timeSeriesQuery": {
                            "timeSeriesFilter": {
                                "filter": f'metric.type="{metric}" AND resource.type="gce_instance"',
                            },
                        },
                    }],
                },
            }

        return {
            "displayName": display_name,
            "gridLayout": {
                "columns": "2",
                "widgets": [
                    tile("CPU utilization", "compute.googleapis.com/instance/cpu/utilization"),
                    tile("Memory used", "agent.googleapis.com/memory/percent_used"),
                    tile("Network received", "compute.googleapis.com/instance/network/received_bytes_count"),
                    tile("Disk used", "agent.googleapis.com/disk/percent_used"),
                ],
            },
        }

    def dashboard(self) -> ResourceDescriptor:
        display_name = self._name(ResourceKind.DASHBOARD)
        body = self.dashboard_body(display_name)
        return self._by_display_name(
            ResourceKind.DASHBOARD, self.DASHBOARDS, display_name,
            lambda: self.client.create(self.DASHBOARDS, None, {"config": json.dumps(body)}),
        )

    def ensure_notification_channel(self) -> Optional[str]:
        """Find or create the e-mail channel; never deleted since it may be shared.

        Returns:
            Channel resource name, or None when no e-mail is configured
        """
        email = self.config.monitoring.notification_email
        if not email:
            return None
        display_name = f"{self.config.application.service_name} alerts ({email})"
        existing = self.client.find_by_display_name(self.CHANNELS, display_name)
        if existing:
            return existing.get("name")
        created = self.client.create(self.CHANNELS, None, {
            "display-name": display_name,
            "type": "email",
            "channel-labels": f"email_address={email}",
        })
        self.logger.info(f"Created notification channel for {email}")
        return created.get("name")

    def descriptors(self, host: Optional[str] = None, channel: Optional[str] = None,
                    **kwargs) -> List[ResourceDescriptor]:
        return [
            *self.log_metrics(),
            self.uptime_check(host),
            *self.alert_policies(channel),
            self.dashboard(),
        ]
