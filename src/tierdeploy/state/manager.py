"""File-backed store for deployment state records."""

import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional

from pydantic import ValidationError

from tierdeploy.state.models import (
    RECORD_TYPES,
    SENSITIVE_RECORDS,
    DeploymentState,
    StateRecord,
)
from tierdeploy.utils.errors import MissingStateError, StateError
from tierdeploy.utils.logging import get_logger

HEALTH_REPORT_NAME = "health-report.txt"


def _quote(value: str) -> str:
    return '"' + value.replace("\\", "\\\\").replace('"', '\\"') + '"'


def _unquote(value: str) -> str:
    value = value.strip()
    if len(value) >= 2 and value[0] == value[-1] and value[0] in ('"', "'"):
        inner = value[1:-1]
        if value[0] == '"':
            inner = inner.replace('\\"', '"').replace("\\\\", "\\")
        return inner
    return value


def parse_env_file(text: str) -> Dict[str, str]:
    """Parse ``KEY=value`` lines, skipping blanks and comments."""
    values = {}
    for line in text.splitlines():
        line = line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        if line.startswith("export "):
            line = line[len("export "):]
        key, _, value = line.partition("=")
        values[key.strip()] = _unquote(value)
    return values


class StateStore:
    """Persists one flat file per state category for an environment."""

    def __init__(self, state_dir: str, environment: str):
        """
        Initialize StateStore.

        Args:
            state_dir: Root directory for state files
            environment: Environment name; each environment has its own directory
        """
        self.root = Path(state_dir) / environment
        self.environment = environment
        self.logger = get_logger(__name__)

    def path(self, key: str) -> Path:
        """Path of the file holding one record."""
        return self.root / f"{key}.env"

    @property
    def report_path(self) -> Path:
        """Path of the phase 6 health report."""
        return self.root / HEALTH_REPORT_NAME

    def exists(self, key: str) -> bool:
        return self.path(key).exists()

    def write(self, phase: str, key: str, record: StateRecord) -> Path:
        """
        Write a record atomically.

        Args:
            phase: Name of the phase producing the record
            key: State category
            record: Record matching the category's type

        Returns:
            Path of the written file

        Raises:
            StateError: If the key is unknown, the record has the wrong type
                or the file cannot be written
        """
        expected = RECORD_TYPES.get(key)
        if expected is None:
            raise StateError(f"Unknown state key '{key}'")
        if not isinstance(record, expected):
            raise StateError(
                f"State key '{key}' expects {expected.__name__}, got {type(record).__name__}"
            )

        self.root.mkdir(parents=True, exist_ok=True)
        target = self.path(key)
        temp_path = target.with_suffix(".tmp")

        lines = [
            f"# Written by phase {phase} at {datetime.now(timezone.utc).isoformat()}",
        ]
        lines.extend(f"{name}={_quote(value)}" for name, value in record.to_env().items())

        try:
            if key in SENSITIVE_RECORDS:
                fd = os.open(str(temp_path), os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
                os.fchmod(fd, 0o600)
                with os.fdopen(fd, "w") as f:
                    f.write("\n".join(lines) + "\n")
            else:
                with open(temp_path, "w") as f:
                    f.write("\n".join(lines) + "\n")

            # Atomic rename
            temp_path.replace(target)
        except OSError as e:
            raise StateError(f"Failed to write state file {target}: {e}", cause=e)

        self.logger.debug(f"State '{key}' written by {phase} to {target}")
        return target

    def read(
        self,
        key: str,
        required_by: Optional[str] = None,
        produced_by: Optional[str] = None
    ) -> StateRecord:
        """
        Read one record.

        Raises:
            MissingStateError: If the record has never been written
            StateError: If the file cannot be parsed into the record type
        """
        record_type = RECORD_TYPES.get(key)
        if record_type is None:
            raise StateError(f"Unknown state key '{key}'")

        target = self.path(key)
        if not target.exists():
            raise MissingStateError(key, required_by=required_by, produced_by=produced_by)

        try:
            values = parse_env_file(target.read_text())
            return record_type.from_env(values)
        except (OSError, ValidationError) as e:
            raise StateError(f"State file {target} is invalid: {e}", cause=e)

    def load(self) -> DeploymentState:
        """Read every record that exists into one DeploymentState."""
        records = {key: self.read(key) for key in RECORD_TYPES if self.exists(key)}
        return DeploymentState(**records)

    def write_report(self, content: str) -> Path:
        """Write the health report next to the state files."""
        self.root.mkdir(parents=True, exist_ok=True)
        temp_path = self.report_path.with_suffix(".tmp")
        temp_path.write_text(content)
        temp_path.replace(self.report_path)
        return self.report_path

    def local_files(self) -> List[Path]:
        """Every file the store has written that still exists."""
        paths = [self.path(key) for key in RECORD_TYPES] + [self.report_path]
        return [p for p in paths if p.exists()]

    def delete(self, path: Path) -> None:
        """Delete one state file."""
        path.unlink()
        self.logger.debug(f"Deleted state file {path}")
