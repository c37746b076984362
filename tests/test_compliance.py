"""Tests for the free-tier compliance guard."""

import pytest

from tierdeploy.compliance.guard import ComplianceGuard, collect_live_state
from tierdeploy.compliance.rules import LiveState, Severity
from tierdeploy.utils.errors import ComplianceError
from tierdeploy.utils.gcloud import GCloudCommandError


def results_by_id(results):
    return {r.rule_id: r for r in results}


def disk(name, size, disk_type="pd-standard"):
    return {"name": name, "sizeGb": str(size),
            "type": f"https://compute/zones/us-central1-a/diskTypes/{disk_type}"}


def instance(name, machine_type="e2-micro"):
    return {"name": name,
            "machineType": f"https://compute/zones/us-central1-a/machineTypes/{machine_type}"}


def test_clean_project_passes(config):
    results = ComplianceGuard().evaluate(config, LiveState(billing_account="ABC"))

    assert all(r.passed for r in results)
    ComplianceGuard().enforce(results)


def test_disallowed_region_is_the_only_hard_failure(config):
    config = config.model_copy(update={"region": "europe-west1", "zone": "europe-west1-b"})

    results = ComplianceGuard().evaluate(config, LiveState(billing_account="ABC"))

    blocking = [r.rule_id for r in results if r.is_blocking]
    assert blocking == ["region-allowed"]
    with pytest.raises(ComplianceError) as info:
        ComplianceGuard().enforce(results)
    assert [f.rule_id for f in info.value.failures] == ["region-allowed"]


@pytest.mark.parametrize("existing,requested,passes", [
    (0, 30, True),
    (1, 30, False),
    (20, 10, True),
    (21, 10, False),
])
def test_storage_ceiling_boundary(config, existing, requested, passes):
    config = config.model_copy(update={"disk_size_gb": requested})
    live = LiveState(disks=[disk("other-disk", existing), disk("ssd", 100, "pd-ssd")])

    result = results_by_id(ComplianceGuard().evaluate(config, live))["storage-ceiling"]

    assert result.passed is passes


def test_own_resources_do_not_count(config):
    live = LiveState(
        instances=[instance("test-project-proxy-router-vm")],
        disks=[disk("test-project-proxy-router-disk", 30)],
    )

    results = results_by_id(ComplianceGuard().evaluate(config, live))

    assert results["existing-minimal-instances"].passed
    assert results["storage-ceiling"].passed


def test_other_minimal_instance_blocks(config):
    live = LiveState(instances=[instance("someone-else"), instance("big", "e2-standard-4")])

    result = results_by_id(ComplianceGuard().evaluate(config, live))["existing-minimal-instances"]

    assert result.is_blocking
    assert "someone-else" in result.message


def test_override_downgrades_overridable_rules(config):
    config = config.model_copy(update={"machine_type": "e2-small"}).with_override(True)

    results = results_by_id(ComplianceGuard().evaluate(config, LiveState()))

    machine = results["machine-type-minimal"]
    assert not machine.passed
    assert machine.severity == Severity.WARN
    assert machine.overridden
    assert not any(r.is_blocking for r in results.values())


def test_override_never_covers_region(config):
    config = config.model_copy(update={"region": "asia-east1", "zone": "asia-east1-a"})

    result = results_by_id(
        ComplianceGuard().evaluate(config.with_override(True), LiveState())
    )["region-allowed"]

    assert result.is_blocking


def test_warnings_do_not_block(config):
    live = LiveState(static_addresses=[{"name": "reserved"}], billing_account=None)

    results = results_by_id(ComplianceGuard().evaluate(config, live))

    assert results["static-addresses"].severity == Severity.WARN
    assert not results["billing-linked"].passed
    ComplianceGuard().enforce(list(results.values()))


def test_collect_live_state_reads_the_project(fake_gcloud):
    fake_gcloud.add("compute instances", **instance("a"))
    fake_gcloud.add("compute disks", **disk("d", 10))

    live = collect_live_state(fake_gcloud)

    assert [i["name"] for i in live.instances] == ["a"]
    assert [d["name"] for d in live.disks] == ["d"]
    assert live.billing_account == "ABCDEF-012345-6789AB"
    assert fake_gcloud.created == []


def test_disabled_compute_api_reads_as_empty_project(fake_gcloud, config):
    fake_gcloud.disabled_services.append("compute.googleapis.com")

    live = collect_live_state(fake_gcloud)
    results = results_by_id(ComplianceGuard().evaluate(config, live))

    assert live.instances == [] and live.disks == [] and live.static_addresses == []
    assert not live.compute_api_enabled
    assert results["compute-api-enabled"].severity == Severity.WARN
    assert not results["compute-api-enabled"].passed
    assert not any(r.is_blocking for r in results.values())


def test_other_list_failures_propagate(fake_gcloud):
    original = fake_gcloud.call

    def call(args, *rest, **kwargs):
        if list(args[:2]) == ["compute", "instances"]:
            raise GCloudCommandError(["gcloud", *args], 1, "ERROR: PERMISSION_DENIED")
        return original(args, *rest, **kwargs)

    fake_gcloud.call = call

    with pytest.raises(GCloudCommandError):
        collect_live_state(fake_gcloud)
