"""
Database providers.

``get_provider`` resolves the configured provider name to an instance; the
rest of the operator only talks to the ``DatabaseProvider`` contract.
"""
from typing import Optional

from rds_operator.config.kubernetes import KubernetesClientSet
from rds_operator.config.settings import Settings
from rds_operator.exceptions import ProviderNotFoundError
from rds_operator.k8s.kube import KubeAccessor
from rds_operator.providers.base import DatabaseProvider
from rds_operator.services.dependents import DependentResourceReconciler

PROVIDER_NAMES = ("aws", "local")


def get_provider(
    name: str,
    client_set: KubernetesClientSet,
    settings: Settings,
    dependents: Optional[DependentResourceReconciler] = None,
) -> DatabaseProvider:
    """
    Build the provider called ``name``.

    Raises:
        ProviderNotFoundError: If ``name`` is not a known provider
    """
    kube = KubeAccessor(client_set.core_api)
    dependents = dependents or DependentResourceReconciler(kube)

    if name == "aws":
        from rds_operator.providers.rds import RDSProvider

        return RDSProvider(kube, dependents, settings)
    if name == "local":
        from rds_operator.providers.local import LocalProvider

        return LocalProvider(client_set.custom_api, kube, dependents, settings)
    raise ProviderNotFoundError(name)


__all__ = ["DatabaseProvider", "PROVIDER_NAMES", "get_provider"]
