"""Thin wrapper around the gcloud CLI."""

import json
import shlex
import shutil
import subprocess
from typing import Any, Dict, List, Optional, Sequence, Union

from tierdeploy.utils.logging import get_logger

logger = get_logger(__name__)

Flags = Dict[str, Union[str, int, bool, List[str], None]]

NOT_FOUND_MARKERS = ('NOT_FOUND', 'was not found')


class GCloudCommandError(Exception):
    """A gcloud invocation exited with a non-zero status."""

    def __init__(self, args: Sequence[str], returncode: int, stderr: str):
        self.args_list = list(args)
        self.returncode = returncode
        self.stderr = stderr or ''
        super().__init__(f"{self.command_line} exited with {returncode}: {self.summary()}")

    @property
    def command_line(self) -> str:
        """Shell-quoted command line."""
        return ' '.join(shlex.quote(part) for part in self.args_list)

    def summary(self) -> str:
        """Return the most informative line of stderr."""
        lines = [line.strip() for line in self.stderr.splitlines() if line.strip()]
        for line in lines:
            if line.startswith('ERROR:'):
                return line
        return lines[-1] if lines else 'no error output'

    def is_not_found(self) -> bool:
        """Whether gcloud reported the resource as absent."""
        return any(marker in self.stderr for marker in NOT_FOUND_MARKERS)


def build_flags(flags: Optional[Flags]) -> List[str]:
    """Render a flag mapping as gcloud arguments.

    ``True`` renders a bare switch, ``None`` and ``False`` are skipped and a
    list repeats the flag once per element.

    Args:
        flags: Mapping of flag name (without dashes) to value

    Returns:
        List of ``--name=value`` arguments
    """
    rendered = []
    for name, value in (flags or {}).items():
        if value is None or value is False:
            continue
        if value is True:
            rendered.append(f"--{name}")
        elif isinstance(value, (list, tuple)):
            rendered.extend(f"--{name}={item}" for item in value)
        else:
            rendered.append(f"--{name}={value}")
    return rendered


class GCloudClient:
    """Runs gcloud commands against one project and parses their JSON output."""

    def __init__(self, project: Optional[str], gcloud_bin: str = 'gcloud'):
        """Initialize the client.

        Args:
            project: Project id passed as --project to every command
            gcloud_bin: Name or path of the gcloud executable
        """
        self.project = project
        self.gcloud_bin = gcloud_bin
        self.logger = get_logger(__name__)

    def installed(self) -> bool:
        """Check whether the gcloud executable is on PATH."""
        return shutil.which(self.gcloud_bin) is not None

    def call(
        self,
        args: Sequence[str],
        flags: Optional[Flags] = None,
        parse_json: bool = True,
        input_text: Optional[str] = None,
        with_project: bool = True
    ) -> Any:
        """Run one gcloud command.

        Args:
            args: Command words after ``gcloud`` (e.g. ``['compute', 'networks', 'list']``)
            flags: Extra flags for the command
            parse_json: Request JSON output and parse it
            input_text: Text passed on stdin (used for secret payloads)
            with_project: Append --project

        Returns:
            Parsed JSON (None for empty output) or the raw stdout string

        Raises:
            GCloudCommandError: If gcloud exits non-zero
        """
        argv = [self.gcloud_bin, *args, *build_flags(flags)]
        if with_project and self.project:
            argv.append(f"--project={self.project}")
        if parse_json:
            argv.append('--format=json')

        self.logger.debug(f"Running: {' '.join(shlex.quote(a) for a in argv)}")
        completed = subprocess.run(
            argv,
            input=input_text,
            capture_output=True,
            text=True,
            check=False,
        )
        if completed.returncode != 0:
            raise GCloudCommandError(argv, completed.returncode, completed.stderr)

        if not parse_json:
            return completed.stdout
        output = completed.stdout.strip()
        return json.loads(output) if output else None

    def describe(self, group: str, name: str, flags: Optional[Flags] = None) -> Optional[Dict[str, Any]]:
        """Describe one resource.

        Args:
            group: Command group, e.g. ``"compute networks"``
            name: Resource name
            flags: Scope flags such as zone or region

        Returns:
            The resource attributes, or None when it does not exist
        """
        try:
            return self.call([*group.split(), 'describe', name], flags)
        except GCloudCommandError as e:
            if e.is_not_found():
                return None
            raise

    def list(
        self,
        group: str,
        flags: Optional[Flags] = None,
        filter_expr: Optional[str] = None,
        verb: str = 'list'
    ) -> List[Dict[str, Any]]:
        """List resources of one group, optionally filtered server-side."""
        merged = dict(flags or {})
        if filter_expr:
            merged['filter'] = filter_expr
        result = self.call([*group.split(), verb], merged)
        return result or []

    def find_by_display_name(
        self,
        group: str,
        display_name: str,
        flags: Optional[Flags] = None,
        verb: str = 'list'
    ) -> Optional[Dict[str, Any]]:
        """Find a resource identified only by its display name.

        Filtering happens client-side; display names are not unique keys
        for gcloud so the first match wins.
        """
        for item in self.list(group, flags, verb=verb):
            if item.get('displayName') == display_name:
                return item
        return None

    def create(self, group: str, name: Optional[str], flags: Optional[Flags] = None,
               input_text: Optional[str] = None) -> Dict[str, Any]:
        """Create a resource and return its attributes."""
        args = [*group.split(), 'create']
        if name:
            args.append(name)
        result = self.call(args, flags, input_text=input_text)
        if isinstance(result, list):
            return result[0] if result else {}
        return result or {}

    def delete(self, group: str, name: str, flags: Optional[Flags] = None) -> None:
        """Delete a resource without prompting."""
        merged = dict(flags or {})
        merged['quiet'] = True
        self.call([*group.split(), 'delete', name], merged)

    def active_account(self) -> Optional[str]:
        """Return the authenticated account, if any."""
        output = self.call(
            ['auth', 'list'],
            {'filter': 'status:ACTIVE', 'format': 'value(account)'},
            parse_json=False,
            with_project=False,
        )
        accounts = [line.strip() for line in output.splitlines() if line.strip()]
        return accounts[0] if accounts else None

    def configured_project(self) -> Optional[str]:
        """Return the project set in the local gcloud configuration."""
        output = self.call(['config', 'get-value', 'project'], parse_json=False, with_project=False)
        value = output.strip()
        return value or None

    def billing_account(self) -> Optional[str]:
        """Return the billing account linked to the project, if any."""
        info = self.call(['billing', 'projects', 'describe', self.project], with_project=False) or {}
        if not info.get('billingEnabled'):
            return None
        name = info.get('billingAccountName') or ''
        return name.split('/')[-1] or None

    def enabled_services(self) -> List[str]:
        """Return the names of the APIs enabled on the project."""
        services = self.list('services', {'enabled': True})
        return [s.get('config', {}).get('name', s.get('name', '')) for s in services]

    def enable_service(self, service: str) -> None:
        """Enable one API on the project."""
        self.call(['services', 'enable', service], parse_json=False)

    def add_project_role(self, member: str, role: str) -> None:
        """Bind a role to a member on the project IAM policy."""
        self.call(
            ['projects', 'add-iam-policy-binding', self.project],
            {'member': member, 'role': role, 'condition': 'None'},
            with_project=False,
        )

    def ssh(self, instance: str, zone: str, command: str) -> str:
        """Run a shell command on an instance and return its stdout."""
        return self.call(
            ['compute', 'ssh', instance],
            {'zone': zone, 'command': command, 'quiet': True},
            parse_json=False,
        )

    def scp(self, local_path: str, instance: str, remote_path: str, zone: str) -> None:
        """Copy a local file to an instance."""
        self.call(
            ['compute', 'scp', local_path, f"{instance}:{remote_path}"],
            {'zone': zone, 'quiet': True},
            parse_json=False,
        )
