"""Tests for the file-backed state store."""

import os
import stat

import pytest

from tierdeploy.state.manager import StateStore, parse_env_file
from tierdeploy.state.models import (
    CredentialRecord,
    InstanceRecord,
    MonitoringRecord,
    PreflightRecord,
)
from tierdeploy.utils.errors import MissingStateError, StateError


def instance_record(**overrides):
    values = dict(
        instance_name="p-svc-vm",
        zone="us-central1-a",
        machine_type="e2-micro",
        internal_ip="10.0.1.10",
        external_ip="203.0.113.10",
    )
    values.update(overrides)
    return InstanceRecord(**values)


def test_write_then_read(store):
    store.write("infrastructure", "instance", instance_record())

    record = store.read("instance")

    assert record == instance_record()
    assert record.service_account is None


def test_files_are_flat_and_hand_editable(store):
    path = store.write("infrastructure", "instance", instance_record())
    text = path.read_text()

    assert text.startswith("# Written by phase infrastructure")
    assert 'EXTERNAL_IP="203.0.113.10"' in text

    path.write_text(text.replace("203.0.113.10", "198.51.100.7") + "UNRELATED=1\n")
    assert store.read("instance").external_ip == "198.51.100.7"


def test_lists_are_comma_separated(store):
    store.write("monitoring", "monitoring", MonitoringRecord(log_metrics=["a", "b"]))

    assert 'LOG_METRICS="a,b"' in store.path("monitoring").read_text()
    assert store.read("monitoring").log_metrics == ["a", "b"]


def test_missing_record_names_the_key(store):
    with pytest.raises(MissingStateError) as info:
        store.read("credential", required_by="application", produced_by="security")

    assert info.value.key == "credential"
    assert "security" in info.value.suggestions[0]


def test_credential_file_is_owner_only(store):
    path = store.write("security", "credential", CredentialRecord(api_key_secret_name="p-svc-api-key"))

    assert stat.S_IMODE(os.stat(path).st_mode) == 0o600


def test_wrong_record_type_is_rejected(store):
    with pytest.raises(StateError):
        store.write("predeploy", "instance", PreflightRecord(validated_at="now"))
    with pytest.raises(StateError):
        store.write("predeploy", "unknown", PreflightRecord(validated_at="now"))


def test_invalid_file_raises_state_error(store):
    store.write("infrastructure", "instance", instance_record())
    store.path("instance").write_text('ZONE="us-central1-a"\n')

    with pytest.raises(StateError):
        store.read("instance")


def test_no_temp_files_left_behind(store):
    store.write("predeploy", "preflight", PreflightRecord(validated_at="now", enabled_apis=["x"]))
    store.write("predeploy", "preflight", PreflightRecord(validated_at="later"))

    assert sorted(p.name for p in store.root.iterdir()) == ["preflight.env"]
    assert store.read("preflight").validated_at == "later"


def test_environments_are_isolated(tmp_path):
    staging = StateStore(str(tmp_path), "staging")
    production = StateStore(str(tmp_path), "production")
    staging.write("infrastructure", "instance", instance_record())

    assert staging.load().has("instance")
    assert not production.load().has("instance")


def test_load_and_local_files(store):
    assert store.local_files() == []
    store.write("infrastructure", "instance", instance_record())
    store.write_report("ok\n")

    state = store.load()

    assert state.missing(["preflight", "instance"]) == ["preflight"]
    assert [p.name for p in store.local_files()] == ["instance.env", "health-report.txt"]


def test_parse_env_file_handles_exports_and_quotes():
    values = parse_env_file('# comment\nexport A="x \\"y\\""\nB=\'single\'\nC=plain\n\nnot a pair\n')

    assert values == {"A": 'x "y"', "B": "single", "C": "plain"}
