"""Tests for the idempotent resource reconciler."""

from tierdeploy.provisioners.base import (
    ReconcileStatus,
    ResourceDescriptor,
    ResourceKind,
    ResourceReconciler,
    Scope,
)
from tierdeploy.provisioners.catalog import ResourceCatalog
from tierdeploy.utils.errors import ErrorCategory, ReconciliationError

import pytest


def make_descriptor(live, calls, create_error=None):
    def create():
        calls.append("create")
        if create_error:
            raise create_error
        live["value"] = {"name": "thing", "created": True}
        return live["value"]

    return ResourceDescriptor(
        kind=ResourceKind.NETWORK,
        name="thing",
        scope=Scope.GLOBAL,
        lookup=lambda: live.get("value"),
        create_action=create,
        delete_action=lambda attrs: live.pop("value"),
    )


def test_absent_resource_is_created_once():
    live, calls = {}, []
    reconciler = ResourceReconciler()

    first = reconciler.reconcile(make_descriptor(live, calls))
    second = reconciler.reconcile(make_descriptor(live, calls))

    assert first.status == ReconcileStatus.CREATED
    assert second.status == ReconcileStatus.ALREADY_EXISTS
    assert second.attributes == {"name": "thing", "created": True}
    assert calls == ["create"]


def test_create_failure_is_reported_without_retry():
    live, calls = {}, []
    outcome = ResourceReconciler().reconcile(
        make_descriptor(live, calls, create_error=RuntimeError("boom"))
    )

    assert outcome.status == ReconcileStatus.FAILED
    assert "boom" in outcome.reason
    assert calls == ["create"]
    with pytest.raises(ReconciliationError):
        outcome.raise_for_failure("infrastructure")


def test_lookup_failure_never_creates():
    calls = []

    def broken_lookup():
        raise RuntimeError("lookup exploded")

    descriptor = ResourceDescriptor(
        kind=ResourceKind.DISK, name="d", scope=Scope.ZONE,
        lookup=broken_lookup,
        create_action=lambda: calls.append("create") or {},
        delete_action=lambda attrs: None,
    )
    outcome = ResourceReconciler().reconcile(descriptor)

    assert outcome.status == ReconcileStatus.FAILED
    assert calls == []


def test_gcloud_errors_are_categorized(fake_gcloud, config):
    catalog = ResourceCatalog(fake_gcloud, config)
    network = catalog.network.network()
    fake_gcloud.create_failures[network.name] = "ERROR: PERMISSION_DENIED: compute.networks.create"

    outcome = ResourceReconciler().reconcile(network)

    assert outcome.status == ReconcileStatus.FAILED
    assert outcome.error.category == ErrorCategory.PERMISSION
    assert outcome.error.suggestions


def test_existing_cloud_resource_is_not_recreated(fake_gcloud, config):
    catalog = ResourceCatalog(fake_gcloud, config)
    fake_gcloud.add("compute networks", catalog.network.network_name, subnetMode="CUSTOM")

    outcome = ResourceReconciler().reconcile(catalog.network.network())

    assert outcome.status == ReconcileStatus.ALREADY_EXISTS
    assert outcome.attributes["subnetMode"] == "CUSTOM"
    assert fake_gcloud.created == []
