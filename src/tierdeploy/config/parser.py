"""YAML configuration parser for tierdeploy environments."""

from pathlib import Path
from typing import Callable, Dict, List, Optional

import yaml
from pydantic import ValidationError

from tierdeploy.config.models import DeploymentConfig
from tierdeploy.utils.logging import get_logger

logger = get_logger(__name__)


class ConfigValidationError(Exception):
    """Exception raised when configuration validation fails."""

    def __init__(self, message: str, errors: Optional[List[Dict]] = None):
        self.message = message
        self.errors = errors or []
        super().__init__(self.message)

    def __str__(self) -> str:
        """Format validation errors for display."""
        if not self.errors:
            return self.message

        error_lines = [self.message, ""]
        for error in self.errors:
            location = " -> ".join(str(loc) for loc in error.get("loc", []))
            msg = error.get("msg", "Unknown error")
            error_lines.append(f"  • {location}: {msg}")

        return "\n".join(error_lines)


class Config:
    """Loads the configuration of one environment from ``<config_dir>/<env>.yaml``."""

    def __init__(self, environment: str, config_dir: str = "config"):
        """Initialize configuration loader.

        Args:
            environment: Environment name (selects the YAML file)
            config_dir: Directory holding one YAML file per environment
        """
        self.environment = environment
        self.config_path = Path(config_dir) / f"{environment}.yaml"
        self.data: Dict = {}

    def load(
        self,
        project_fallback: Optional[Callable[[], Optional[str]]] = None,
        overrides: Optional[Dict] = None
    ) -> DeploymentConfig:
        """Load and validate the environment configuration.

        A missing file is not an error; defaults apply. The project id falls
        back to ``project_fallback`` (the gcloud configured project) when the
        file does not set one.

        Args:
            project_fallback: Called when no project_id is configured
            overrides: Values that take precedence over the file

        Returns:
            Validated, immutable DeploymentConfig

        Raises:
            ConfigValidationError: If the YAML or its values are invalid
        """
        if self.config_path.exists():
            try:
                with open(self.config_path, "r") as f:
                    self.data = yaml.safe_load(f) or {}
            except yaml.YAMLError as e:
                raise ConfigValidationError(f"Failed to parse YAML: {e}")
            if not isinstance(self.data, dict):
                raise ConfigValidationError(
                    f"{self.config_path} must contain a mapping at the top level"
                )
        else:
            logger.warning(f"Configuration file {self.config_path} not found, using defaults")
            self.data = {}

        data = dict(self.data)
        data.update(overrides or {})
        data["environment"] = self.environment

        if not data.get("project_id") and project_fallback is not None:
            data["project_id"] = project_fallback()
        if not data.get("project_id"):
            raise ConfigValidationError(
                "Configuration validation failed with 1 error(s)",
                [{"loc": ["project_id"], "msg": "No project configured; set project_id or run "
                                                "'gcloud config set project <id>'"}],
            )

        try:
            return DeploymentConfig(**data)
        except ValidationError as e:
            errors = [{"loc": list(err["loc"]), "msg": err["msg"]} for err in e.errors()]
            raise ConfigValidationError(
                f"Configuration validation failed with {len(errors)} error(s)", errors
            )
