"""Tests for the command line interface."""

import logging
import sys

import pytest
import yaml
from click.testing import CliRunner

from tierdeploy.cli.main import cli
from tierdeploy.state.manager import StateStore
from tierdeploy.state.models import InstanceRecord

from conftest import FakeGCloud

cli_module = sys.modules["tierdeploy.cli.main"]


@pytest.fixture(autouse=True)
def restore_logging():
    root = logging.getLogger()
    handlers = list(root.handlers)
    yield
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers[:] = handlers


@pytest.fixture
def fake(monkeypatch):
    client = FakeGCloud()
    monkeypatch.setattr(cli_module, "GCloudClient", lambda *args, **kwargs: client)
    return client


@pytest.fixture
def invoke(tmp_path, fake):
    config_dir = tmp_path / "config"
    config_dir.mkdir()

    def run(args, config=None, **kwargs):
        data = {"project_id": "test-project", "state_dir": str(tmp_path / "state")}
        data.update(config or {})
        (config_dir / "test.yaml").write_text(yaml.safe_dump(data))
        return CliRunner().invoke(
            cli,
            ["--log-dir", str(tmp_path / "logs"), "--config-dir", str(config_dir), *args],
            obj={},
            **kwargs,
        )
    return run


def test_validate_passes(invoke, fake, tmp_path):
    result = invoke(["validate", "-e", "test"])

    assert result.exit_code == 0, result.output
    assert "Validation passed" in result.output
    assert fake.created == []
    assert list((tmp_path / "logs").glob("deployment-*.log"))


def test_deploy_blocked_by_compliance(invoke, fake):
    result = invoke(["deploy", "-e", "test"], {"region": "europe-west1", "zone": "europe-west1-b"})

    assert result.exit_code == 1
    assert fake.created == []


def test_deploy_rejects_malformed_phases(invoke, fake):
    result = invoke(["deploy", "-e", "test", "-p", "one,two"])

    assert result.exit_code == 2
    assert fake.created == []


def test_deploy_unknown_phase(invoke, fake):
    result = invoke(["deploy", "-e", "test", "-p", "9"])

    assert result.exit_code == 1
    assert fake.created == []


def test_invalid_config_exits(invoke):
    result = invoke(["validate", "-e", "test"], {"zone": "us-east1-b"})

    assert result.exit_code == 1


def test_status_shows_records(invoke, tmp_path):
    StateStore(str(tmp_path / "state"), "test").write(
        "infrastructure", "instance",
        InstanceRecord(instance_name="vm", zone="us-central1-a", machine_type="e2-micro"),
    )

    result = invoke(["status", "-e", "test"])

    assert result.exit_code == 0, result.output
    assert "not written" in result.output


def test_cleanup_dry_run(invoke, fake):
    fake.add("compute networks", "test-project-proxy-router-vpc")

    result = invoke(["cleanup", "-e", "test", "--dry-run"])

    assert result.exit_code == 0, result.output
    assert fake.deleted == []
    assert fake.names("compute networks") == ["test-project-proxy-router-vpc"]


def test_cleanup_requires_confirmation(invoke, fake):
    fake.add("compute networks", "test-project-proxy-router-vpc")

    result = invoke(["cleanup", "-e", "test"], input="n\n")

    assert result.exit_code == 1
    assert fake.deleted == []
