"""Shared fixtures: an in-memory gcloud and a test configuration."""

import json
from typing import Any, Dict, List, Optional, Sequence, Tuple

import httpx
import pytest

from tierdeploy.config.models import DeploymentConfig, StartupWait
from tierdeploy.state.manager import StateStore
from tierdeploy.utils.gcloud import GCloudClient, GCloudCommandError, build_flags

PROJECT = "test-project"
EXTERNAL_IP = "203.0.113.10"

VERBS = ("describe", "list-configs", "list", "create", "delete")

DISPLAY_NAME_GROUPS = {
    "alpha monitoring policies",
    "monitoring dashboards",
    "monitoring uptime",
    "beta monitoring channels",
    "billing budgets",
}


class FakeGCloud(GCloudClient):
    """In-memory stand-in for the gcloud CLI.

    Only ``call`` is replaced, so the real describe/list/create/delete
    helpers run on top of it. Resources are stored per command group.
    """

    def __init__(self, project: str = PROJECT):
        super().__init__(project)
        self.resources: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self.created: List[Tuple[str, str]] = []
        self.deleted: List[Tuple[str, str]] = []
        self.create_failures: Dict[str, str] = {}
        self.delete_failures: Dict[str, str] = {}
        self.ssh_failures: Dict[str, str] = {}
        self.ssh_commands: List[str] = []
        self.uploads: List[str] = []
        self.role_bindings: List[Tuple[str, str]] = []
        self.enabled: List[str] = []
        self.disabled_services: List[str] = []
        self.billing: Optional[str] = "ABCDEF-012345-6789AB"
        self.account: Optional[str] = "tester@example.com"
        self.is_installed = True
        self._counter = 0

    # Test helpers

    def add(self, group: str, name: str, **attributes) -> Dict[str, Any]:
        attributes.setdefault("name", name)
        self.resources.setdefault(group, {})[name] = attributes
        return attributes

    def names(self, group: str) -> List[str]:
        return sorted(self.resources.get(group, {}))

    def created_in(self, group: str) -> List[str]:
        return [name for g, name in self.created if g == group]

    def all_resources(self) -> List[Tuple[str, str]]:
        return [(g, n) for g, items in self.resources.items() for n in items]

    # GCloudClient surface

    def installed(self) -> bool:
        return self.is_installed

    def _error(self, argv: Sequence[str], stderr: str) -> GCloudCommandError:
        return GCloudCommandError(["gcloud", *argv], 1, stderr)

    def call(self, args, flags=None, parse_json=True, input_text=None, with_project=True):
        args = list(args)
        flags = dict(flags or {})
        argv = [*args, *build_flags(flags)]

        if args[0] == "compute" and "compute.googleapis.com" in self.disabled_services:
            raise self._error(argv, "ERROR: (gcloud.compute) SERVICE_DISABLED: Compute Engine API "
                                    "has not been used in project test-project or it is disabled")

        if args[:2] == ["auth", "list"]:
            return f"{self.account}\n" if self.account else ""
        if args[:3] == ["config", "get-value", "project"]:
            return f"{self.project}\n"
        if args[:3] == ["billing", "projects", "describe"]:
            if self.billing:
                return {"billingEnabled": True, "billingAccountName": f"billingAccounts/{self.billing}"}
            return {"billingEnabled": False}
        if args[:2] == ["services", "list"]:
            return [{"config": {"name": api}} for api in self.enabled]
        if args[:2] == ["services", "enable"]:
            self.enabled.append(args[2])
            if args[2] in self.disabled_services:
                self.disabled_services.remove(args[2])
            return ""
        if args[:2] == ["projects", "add-iam-policy-binding"]:
            self.role_bindings.append((flags["member"], flags["role"]))
            return {}
        if args[:2] == ["compute", "ssh"]:
            return self._ssh(argv, flags["command"])
        if args[:2] == ["compute", "scp"]:
            self.uploads.append(args[3])
            return ""
        if args[:3] == ["compute", "instances", "start"]:
            self.resources["compute instances"][args[3]]["status"] = "RUNNING"
            return ""
        if args[:4] == ["secrets", "versions", "access", "latest"]:
            secret = self.resources.get("secrets", {}).get(flags["secret"])
            if secret is None or not secret.get("versions"):
                raise self._error(argv, "ERROR: NOT_FOUND: Secret version was not found")
            return secret["versions"][-1]
        if args[:3] == ["secrets", "versions", "add"]:
            secret = self.resources["secrets"][args[3]]
            secret["versions"].append(input_text)
            return {"name": f"projects/{self.project}/secrets/{args[3]}/versions/{len(secret['versions'])}"}
        if args[:2] == ["secrets", "add-iam-policy-binding"]:
            self.role_bindings.append((flags["member"], flags["role"]))
            return {}

        for index, word in enumerate(args):
            if word in VERBS:
                group = " ".join(args[:index])
                name = args[index + 1] if len(args) > index + 1 else None
                return getattr(self, f"_{word.replace('-', '_')}")(argv, group, name, flags, input_text)
        raise AssertionError(f"Unhandled gcloud command: {argv}")

    def _ssh(self, argv, command: str) -> str:
        self.ssh_commands.append(command)
        for marker, stderr in self.ssh_failures.items():
            if marker in command:
                raise self._error(argv, stderr)
        if "startup-complete" in command:
            return "ready\n"
        if "systemctl is-active" in command:
            return "active\nactive\n"
        if "curl" in command:
            return '{"status":"ok"}'
        return ""

    def _describe(self, argv, group, name, flags, input_text):
        item = self.resources.get(group, {}).get(name)
        if item is None:
            raise self._error(argv, f"ERROR: (gcloud) The resource '{name}' was not found")
        return item

    def _list(self, argv, group, name, flags, input_text):
        return list(self.resources.get(group, {}).values())

    _list_configs = _list

    def _display_name(self, group, name, flags) -> str:
        if "display-name" in flags:
            return flags["display-name"]
        for key in ("policy", "config"):
            if key in flags:
                return json.loads(flags[key])["displayName"]
        return name

    def _create(self, argv, group, name, flags, input_text):
        label = self._display_name(group, name, flags) if group in DISPLAY_NAME_GROUPS else name
        if label in self.create_failures:
            raise self._error(argv, self.create_failures[label])

        attributes: Dict[str, Any] = {k: v for k, v in flags.items() if not isinstance(v, bool)}
        if group in DISPLAY_NAME_GROUPS:
            self._counter += 1
            key = f"projects/{self.project}/{group.split()[-1]}/{self._counter}"
            attributes.update(name=key, displayName=label)
        elif group == "iam service-accounts":
            key = f"{name}@{self.project}.iam.gserviceaccount.com"
            attributes.update(name=key, email=key)
        else:
            key = name
            attributes["name"] = name

        if group == "compute instances":
            attributes.update(
                status="RUNNING",
                machineType=f"https://compute/zones/{flags['zone']}/machineTypes/{flags['machine-type']}",
                networkInterfaces=[{
                    "networkIP": flags.get("private-network-ip"),
                    "accessConfigs": [{"natIP": EXTERNAL_IP}],
                }],
            )
        elif group == "compute disks":
            attributes.update(
                sizeGb=flags["size"].rstrip("GB"),
                type=f"https://compute/zones/{flags['zone']}/diskTypes/{flags['type']}",
            )
        elif group == "secrets":
            attributes["versions"] = [input_text] if input_text else []

        self.resources.setdefault(group, {})[key] = attributes
        self.created.append((group, label))
        return [attributes] if group == "compute instances" else attributes

    def _delete(self, argv, group, name, flags, input_text):
        if name in self.delete_failures:
            raise self._error(argv, self.delete_failures[name])
        if name not in self.resources.get(group, {}):
            raise self._error(argv, f"ERROR: NOT_FOUND: {name} was not found")
        del self.resources[group][name]
        self.deleted.append((group, name))
        return None


def healthy_transport() -> httpx.MockTransport:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.scheme == "http":
            return httpx.Response(301, headers={"location": f"https://{request.url.host}/"})
        if request.url.path == "/health":
            return httpx.Response(200, json={"status": "ok"})
        if request.headers.get("x-api-key"):
            return httpx.Response(200, json={"ok": True})
        return httpx.Response(401)

    return httpx.MockTransport(handler)


@pytest.fixture
def fake_gcloud():
    return FakeGCloud()


@pytest.fixture
def config(tmp_path):
    return DeploymentConfig(
        environment="test",
        project_id=PROJECT,
        state_dir=str(tmp_path / "state"),
        startup_wait=StartupWait(attempts=2, interval_seconds=0),
    )


@pytest.fixture
def store(config):
    return StateStore(config.state_dir, config.environment)


@pytest.fixture
def http_factory():
    return lambda: httpx.Client(transport=healthy_transport())
