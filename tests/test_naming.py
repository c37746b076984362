"""Tests for deterministic resource naming."""

import pytest

from tierdeploy.provisioners.base import ResourceKind
from tierdeploy.provisioners.naming import resource_name, resource_prefix, shorten


def test_names_are_deterministic():
    prefix = resource_prefix("my-project", "proxy-router")
    assert resource_name(ResourceKind.NETWORK, prefix) == "my-project-proxy-router-vpc"
    assert resource_name(ResourceKind.NETWORK, prefix) == resource_name(ResourceKind.NETWORK, prefix)


@pytest.mark.parametrize("kind,qualifier,expected", [
    (ResourceKind.SUBNET, None, "p-svc-subnet"),
    (ResourceKind.FIREWALL_RULE, "https", "p-svc-allow-https"),
    (ResourceKind.INSTANCE, None, "p-svc-vm"),
    (ResourceKind.DISK, None, "p-svc-disk"),
    (ResourceKind.SECRET, None, "p-svc-api-key"),
    (ResourceKind.ALERT_POLICY, "instance-down", "p-svc-alert-instance-down"),
])
def test_suffixes(kind, qualifier, expected):
    assert resource_name(kind, "p-svc", qualifier) == expected


def test_prefix_is_sanitized():
    assert resource_prefix("My_Project", "Proxy Router") == "my-project-proxy-router"


def test_service_account_ids_fit_thirty_characters():
    prefix = resource_prefix("a-rather-long-project-identifier", "proxy-router")
    name = resource_name(ResourceKind.SERVICE_ACCOUNT, prefix)

    assert len(name) <= 30
    assert name == resource_name(ResourceKind.SERVICE_ACCOUNT, prefix)
    assert name[0].isalpha()


def test_long_names_keep_distinct_hash_suffixes():
    long_a = shorten("x" * 80 + "a", 63)
    long_b = shorten("x" * 80 + "b", 63)

    assert len(long_a) == 63
    assert long_a != long_b


def test_names_starting_with_digit_get_letter_prefix():
    assert resource_name(ResourceKind.NETWORK, "123-svc")[0].isalpha()
