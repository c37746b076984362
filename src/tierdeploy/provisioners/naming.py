"""Deterministic resource names."""

import hashlib
import re
from typing import Optional

from tierdeploy.provisioners.base import ResourceKind

MAX_NAME_LENGTH = 63
MAX_SERVICE_ACCOUNT_LENGTH = 30

SUFFIXES = {
    ResourceKind.NETWORK: "vpc",
    ResourceKind.SUBNET: "subnet",
    ResourceKind.FIREWALL_RULE: "allow",
    ResourceKind.SERVICE_ACCOUNT: "sa",
    ResourceKind.DISK: "disk",
    ResourceKind.INSTANCE: "vm",
    ResourceKind.SECRET: "api-key",
    ResourceKind.ALERT_POLICY: "alert",
    ResourceKind.DASHBOARD: "dashboard",
    ResourceKind.LOG_METRIC: "metric",
    ResourceKind.BUDGET: "budget",
    ResourceKind.UPTIME_CHECK: "uptime",
}


def _sanitize(value: str) -> str:
    value = re.sub(r"[^a-z0-9-]", "-", value.lower())
    return re.sub(r"-{2,}", "-", value).strip("-")


def resource_prefix(project_id: str, service_name: str) -> str:
    """Prefix shared by all resources of one deployment."""
    return _sanitize(f"{project_id}-{service_name}")


def shorten(name: str, limit: int) -> str:
    """Shorten a name to ``limit`` characters with a stable hash suffix.

    Args:
        name: Sanitized name
        limit: Maximum length

    Returns:
        ``name`` unchanged if it fits, else ``<head>-<8 hex chars>``
    """
    if len(name) <= limit:
        return name
    digest = hashlib.sha1(name.encode()).hexdigest()[:8]
    head = name[: limit - len(digest) - 1].rstrip("-")
    return f"{head}-{digest}"


def resource_name(kind: ResourceKind, prefix: str, qualifier: Optional[str] = None) -> str:
    """Derive the name of a resource.

    The same inputs always produce the same name, which is what makes
    existence checks on re-runs find resources created earlier.

    Args:
        kind: Resource kind
        prefix: Deployment prefix from resource_prefix()
        qualifier: Distinguishes several resources of one kind (e.g. ``http``)

    Returns:
        A lower-case name within the kind's length limit
    """
    parts = [prefix, SUFFIXES[kind]]
    if qualifier:
        parts.append(qualifier)
    name = _sanitize("-".join(parts))
    limit = MAX_SERVICE_ACCOUNT_LENGTH if kind == ResourceKind.SERVICE_ACCOUNT else MAX_NAME_LENGTH
    name = shorten(name, limit)
    # Resource ids must start with a letter
    if not name[0].isalpha():
        name = shorten(f"r-{name}", limit)
    return name
