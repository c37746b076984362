"""Tests for environment configuration loading."""

import pytest
import yaml

from tierdeploy.config.models import DeploymentConfig
from tierdeploy.config.parser import Config, ConfigValidationError


def write_config(tmp_path, environment, data):
    path = tmp_path / f"{environment}.yaml"
    path.write_text(yaml.safe_dump(data))
    return path


def test_missing_file_uses_defaults(tmp_path):
    config = Config("staging", str(tmp_path)).load(project_fallback=lambda: "fallback-project")

    assert config.environment == "staging"
    assert config.project_id == "fallback-project"
    assert config.machine_type == "e2-micro"
    assert config.disk_size_gb == 30
    assert config.resource_prefix == "fallback-project-proxy-router"


def test_file_values_override_defaults(tmp_path):
    write_config(tmp_path, "production", {
        "project_id": "my-project",
        "region": "us-east1",
        "zone": "us-east1-b",
        "disk_size_gb": 20,
        "application": {"service_name": "edge-proxy", "port": 8080},
        "monitoring": {"notification_email": "ops@example.com"},
    })

    config = Config("production", str(tmp_path)).load(project_fallback=lambda: "ignored")

    assert config.project_id == "my-project"
    assert config.zone == "us-east1-b"
    assert config.application.port == 8080
    assert config.resource_prefix == "my-project-edge-proxy"
    assert config.monitoring.notification_email == "ops@example.com"


def test_zone_must_belong_to_region(tmp_path):
    write_config(tmp_path, "bad", {"project_id": "p", "region": "us-west1", "zone": "us-central1-a"})

    with pytest.raises(ConfigValidationError) as info:
        Config("bad", str(tmp_path)).load()

    assert "Zone us-central1-a is not in region us-west1" in str(info.value)


def test_unknown_keys_are_rejected(tmp_path):
    write_config(tmp_path, "typo", {"project_id": "p", "machine_typo": "e2-small"})

    with pytest.raises(ConfigValidationError) as info:
        Config("typo", str(tmp_path)).load()

    assert "machine_typo" in str(info.value)


def test_project_is_required(tmp_path):
    with pytest.raises(ConfigValidationError):
        Config("dev", str(tmp_path)).load(project_fallback=lambda: None)


def test_internal_ip_must_be_in_subnet():
    with pytest.raises(ValueError):
        DeploymentConfig(environment="dev", project_id="p", internal_ip="192.168.0.5")


def test_config_is_immutable():
    config = DeploymentConfig(environment="dev", project_id="p")

    with pytest.raises(Exception):
        config.region = "us-east1"
    assert config.with_override(True).allow_override
    assert not config.allow_override
