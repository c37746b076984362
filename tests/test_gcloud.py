"""Tests for the gcloud CLI wrapper."""

import subprocess

import pytest

from tierdeploy.utils import gcloud
from tierdeploy.utils.errors import ErrorCategory, error_handler
from tierdeploy.utils.gcloud import GCloudClient, GCloudCommandError, build_flags


class Recorder:
    """Replaces subprocess.run and answers with canned results."""

    def __init__(self, returncode=0, stdout="", stderr=""):
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr
        self.calls = []

    def __call__(self, argv, **kwargs):
        self.calls.append((argv, kwargs))
        return subprocess.CompletedProcess(argv, self.returncode, self.stdout, self.stderr)


@pytest.fixture
def run(monkeypatch):
    def install(**kwargs):
        recorder = Recorder(**kwargs)
        monkeypatch.setattr(gcloud.subprocess, "run", recorder)
        return recorder
    return install


def test_build_flags():
    assert build_flags({
        "zone": "us-central1-a",
        "quiet": True,
        "skipped": None,
        "off": False,
        "tags": ["a", "b"],
        "port": 443,
    }) == ["--zone=us-central1-a", "--quiet", "--tags=a", "--tags=b", "--port=443"]


def test_call_adds_project_and_json_format(run):
    recorder = run(stdout='{"name": "net"}')

    result = GCloudClient("proj").call(["compute", "networks", "describe", "net"])

    argv, kwargs = recorder.calls[0]
    assert argv == ["gcloud", "compute", "networks", "describe", "net",
                    "--project=proj", "--format=json"]
    assert kwargs["check"] is False
    assert result == {"name": "net"}


def test_describe_returns_none_when_absent(run):
    run(returncode=1, stderr="ERROR: (gcloud.compute.networks.describe) "
                             "The resource 'projects/p/global/networks/x' was not found")

    assert GCloudClient("p").describe("compute networks", "x") is None


def test_other_errors_propagate(run):
    run(returncode=1, stderr="WARNING: noise\nERROR: PERMISSION_DENIED: denied\n")

    with pytest.raises(GCloudCommandError) as info:
        GCloudClient("p").describe("compute networks", "x")

    assert info.value.summary() == "ERROR: PERMISSION_DENIED: denied"
    error = error_handler.handle_exception(info.value)
    assert error.category == ErrorCategory.PERMISSION
    assert "gcloud compute networks describe x" in error.context.command


def test_create_unwraps_single_item_lists(run):
    recorder = run(stdout='[{"name": "vm", "status": "RUNNING"}]')

    created = GCloudClient("p").create("compute instances", "vm", {"zone": "z"}, input_text="x")

    assert created == {"name": "vm", "status": "RUNNING"}
    assert recorder.calls[0][1]["input"] == "x"


def test_delete_is_quiet(run):
    recorder = run()

    GCloudClient("p").delete("compute disks", "d", {"zone": "z"})

    assert "--quiet" in recorder.calls[0][0]


def test_billing_account(run):
    run(stdout='{"billingEnabled": true, "billingAccountName": "billingAccounts/ABC-123"}')
    assert GCloudClient("p").billing_account() == "ABC-123"

    run(stdout='{"billingEnabled": false}')
    assert GCloudClient("p").billing_account() is None


def test_find_by_display_name(run):
    run(stdout='[{"name": "a/1", "displayName": "other"}, {"name": "a/2", "displayName": "mine"}]')

    found = GCloudClient("p").find_by_display_name("monitoring dashboards", "mine")

    assert found["name"] == "a/2"
