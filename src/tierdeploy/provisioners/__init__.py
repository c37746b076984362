"""Resource provisioners and the idempotent reconciler."""

from tierdeploy.provisioners.base import (
    BaseProvisioner,
    ReconcileOutcome,
    ReconcileStatus,
    ResourceDescriptor,
    ResourceKind,
    ResourceReconciler,
    Scope,
)
from tierdeploy.provisioners.billing import BudgetProvisioner
from tierdeploy.provisioners.catalog import ResourceCatalog
from tierdeploy.provisioners.compute import ComputeProvisioner, instance_addresses
from tierdeploy.provisioners.iam import ServiceAccountProvisioner
from tierdeploy.provisioners.monitoring import MonitoringProvisioner
from tierdeploy.provisioners.naming import resource_name, resource_prefix
from tierdeploy.provisioners.network import NetworkProvisioner
from tierdeploy.provisioners.secret_manager import SecretManagerStore

__all__ = [
    'BaseProvisioner',
    'ReconcileOutcome',
    'ReconcileStatus',
    'ResourceDescriptor',
    'ResourceKind',
    'ResourceReconciler',
    'Scope',
    'BudgetProvisioner',
    'ResourceCatalog',
    'ComputeProvisioner',
    'instance_addresses',
    'ServiceAccountProvisioner',
    'MonitoringProvisioner',
    'resource_name',
    'resource_prefix',
    'NetworkProvisioner',
    'SecretManagerStore',
]
