"""
Provider contract.

A provider allocates and releases the backing database and publishes the
endpoint record pointing at it. Exactly one provider is active per process.
"""
from typing import Any, Dict, Optional, Protocol, runtime_checkable

from rds_operator.k8s.kube import KubeAccessor
from rds_operator.models.database import Database, DBEndpoint
from rds_operator.services.dependents import DependentResourceReconciler


@runtime_checkable
class DatabaseProvider(Protocol):
    """Capabilities the reconciliation engine needs from a backend."""

    name: str

    async def create_database(self, db: Database) -> DBEndpoint:
        """Allocate (or find) the backing database and return where it listens."""
        ...

    async def delete_database(self, db: Database) -> None:
        """Release the backing database; an absent backend is not an error."""
        ...

    async def create_service(
        self, namespace: str, endpoint: DBEndpoint, internal_name: str, owner: Database
    ) -> Dict[str, Any]:
        ...

    async def delete_service(self, namespace: str, name: str) -> None:
        ...

    async def get_secret(self, namespace: str, name: str, key: str) -> str:
        ...


class KubernetesServiceMixin:
    """
    Endpoint-record and secret half of the provider contract.

    Providers mix this in and set ``origin``; the endpoint record is labelled
    ``app=<database name>`` and annotated ``origin=<origin>``.
    """

    origin: str = ""
    kube: KubeAccessor
    dependents: DependentResourceReconciler

    async def create_service(
        self, namespace: str, endpoint: DBEndpoint, internal_name: str, owner: Database
    ) -> Dict[str, Any]:
        return await self.dependents.ensure_service(
            namespace,
            endpoint,
            internal_name,
            owner,
            labels={"app": owner.name},
            annotations={"origin": self.origin},
        )

    async def delete_service(self, namespace: str, name: str) -> None:
        await self.dependents.delete_service(namespace, name)

    async def get_secret(self, namespace: str, name: str, key: str) -> str:
        return await self.kube.get_secret(namespace, name, key)

    async def _password(self, db: Database) -> Optional[str]:
        ref = db.spec.password
        if not ref.name or not ref.key:
            return None
        return await self.get_secret(db.namespace, ref.name, ref.key)
