"""
Dependent-resource reconciler.

Publishes the two objects a provisioned Database owns:

- the endpoint record, an ``ExternalName`` Service named after the Database
  that redirects in-cluster traffic to the provider's hostname;
- the configuration record, a ConfigMap named after the Database holding
  ``host`` and ``port``, labelled and owned like the endpoint record.

Both are "get, branch on not-found, create-else-update". Objects are never
deleted and recreated, so their uid is stable across reconciliations, and
nothing is cached: every call re-reads live state.
"""
import copy
from typing import Any, Dict, List, Optional

from rds_operator.config.logging import get_logger
from rds_operator.exceptions import ConflictError, KubernetesError
from rds_operator.k8s.kube import KubeAccessor
from rds_operator.models.database import Database, DBEndpoint

logger = get_logger(__name__)

PORT_NAMES = {
    "postgres": "pgsql",
    "aurora-postgresql": "pgsql",
    "mysql": "mysql",
    "aurora-mysql": "mysql",
    "mariadb": "mysql",
    "mongodb": "mongodb",
    "oracle-se2": "oracle",
    "sqlserver-ex": "mssql",
}

# Fields the API server allocates for ClusterIP services; an ExternalName service must not carry them.
CLUSTER_IP_FIELDS = ("clusterIP", "clusterIPs", "ipFamilies", "ipFamilyPolicy", "internalTrafficPolicy")


def port_name(engine: str) -> str:
    return PORT_NAMES.get(engine.lower(), "db")


def merge_owner_references(current: Optional[List[Dict[str, Any]]], required: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Keep existing owner links and (re-)assert the required ones, matched by uid."""
    merged = [dict(ref) for ref in current or []]
    for ref in required:
        for index, existing in enumerate(merged):
            if existing.get("uid") == ref.get("uid"):
                merged[index] = {**existing, **ref}
                break
        else:
            merged.append(dict(ref))
    return merged


def merge_metadata(meta: Dict[str, Any], wanted: Dict[str, Any], map_fields) -> None:
    """Overlay the wanted labels/annotations and owner links onto live metadata in place."""
    for field in map_fields:
        if wanted.get(field):
            meta[field] = {**(meta.get(field) or {}), **wanted[field]}
    if wanted.get("ownerReferences"):
        meta["ownerReferences"] = merge_owner_references(meta.get("ownerReferences"), wanted["ownerReferences"])


class DependentResourceReconciler:
    """Idempotent create-or-update of the endpoint record and the configuration record."""

    def __init__(self, kube: KubeAccessor):
        self.kube = kube

    def build_service(
        self,
        namespace: str,
        endpoint: DBEndpoint,
        internal_name: str,
        owner: Database,
        labels: Optional[Dict[str, str]] = None,
        annotations: Optional[Dict[str, str]] = None,
    ) -> Dict[str, Any]:
        """Desired endpoint record for ``endpoint``."""
        return {
            "apiVersion": "v1",
            "kind": "Service",
            "metadata": {
                "name": internal_name,
                "namespace": namespace,
                "labels": dict(labels or {}),
                "annotations": dict(annotations or {}),
                "ownerReferences": [owner.owner_reference()],
            },
            "spec": {
                "type": "ExternalName",
                "externalName": endpoint.hostname,
                "ports": [
                    {
                        "name": port_name(owner.spec.engine),
                        "port": endpoint.port,
                        "targetPort": endpoint.port,
                        "protocol": "TCP",
                    }
                ],
            },
        }

    def _apply_service(self, existing: Dict[str, Any], desired: Dict[str, Any]) -> Dict[str, Any]:
        body = copy.deepcopy(existing)
        meta = body.setdefault("metadata", {})
        wanted = desired["metadata"]
        merge_metadata(meta, wanted, ("labels", "annotations"))

        spec = body.setdefault("spec", {})
        if spec.get("type") != "ExternalName":
            for field in CLUSTER_IP_FIELDS:
                spec.pop(field, None)
        spec["type"] = "ExternalName"
        spec["externalName"] = desired["spec"]["externalName"]
        spec["ports"] = desired["spec"]["ports"]
        return body

    async def ensure_service(
        self,
        namespace: str,
        endpoint: DBEndpoint,
        internal_name: str,
        owner: Database,
        labels: Optional[Dict[str, str]] = None,
        annotations: Optional[Dict[str, str]] = None,
    ) -> Dict[str, Any]:
        """
        Create or update the endpoint record.

        Returns:
            The live Service object
        """
        desired = self.build_service(namespace, endpoint, internal_name, owner, labels, annotations)
        logger.info(
            "ensuring_service",
            service=internal_name,
            namespace=namespace,
            hostname=endpoint.hostname,
            port=endpoint.port,
        )

        existing = await self.kube.get_service(namespace, internal_name)
        if existing is None:
            try:
                return await self.kube.create_service(namespace, desired)
            except ConflictError:
                # Created between our read and write; fall through to update.
                existing = await self.kube.get_service(namespace, internal_name)
                if existing is None:
                    raise KubernetesError(f"service {internal_name} reported as existing but cannot be read")

        updated = self._apply_service(existing, desired)
        if updated == existing:
            logger.info("service_unchanged", service=internal_name, namespace=namespace)
            return existing
        return await self.kube.replace_service(namespace, internal_name, updated)

    async def delete_service(self, namespace: str, name: str) -> bool:
        """Delete the endpoint record; False when it was already absent."""
        return await self.kube.delete_service(namespace, name)

    def build_config_map(self, owner: Database, service: Dict[str, Any]) -> Dict[str, Any]:
        """Desired configuration record derived from the endpoint record."""
        service_meta = service.get("metadata") or {}
        return {
            "apiVersion": "v1",
            "kind": "ConfigMap",
            "metadata": {
                "name": owner.name,
                "namespace": owner.namespace,
                "labels": dict(service_meta.get("labels") or {}),
                "ownerReferences": [dict(ref) for ref in service_meta.get("ownerReferences") or []],
            },
            "data": connection_data(service),
        }

    def _apply_config_map(self, existing: Dict[str, Any], desired: Dict[str, Any]) -> Dict[str, Any]:
        body = copy.deepcopy(existing)
        meta = body.setdefault("metadata", {})
        wanted = desired["metadata"]
        merge_metadata(meta, wanted, ("labels",))
        body["data"] = {**(body.get("data") or {}), **desired["data"]}
        return body

    async def ensure_config_map(self, owner: Database, service: Dict[str, Any]) -> Dict[str, Any]:
        """
        Create or update the configuration record for ``owner``.

        Returns:
            The live ConfigMap object
        """
        name, namespace = owner.name, owner.namespace
        desired = self.build_config_map(owner, service)
        logger.info("ensuring_config_map", config_map=name, namespace=namespace, data=desired["data"])

        existing = await self.kube.get_config_map(namespace, name)
        if existing is None:
            try:
                return await self.kube.create_config_map(namespace, desired)
            except ConflictError:
                existing = await self.kube.get_config_map(namespace, name)
                if existing is None:
                    raise KubernetesError(f"config map {name} reported as existing but cannot be read")

        updated = self._apply_config_map(existing, desired)
        if updated == existing:
            logger.info("config_map_unchanged", config_map=name, namespace=namespace)
            return existing
        return await self.kube.replace_config_map(namespace, name, updated)


def connection_data(service: Dict[str, Any]) -> Dict[str, str]:
    """``host``/``port`` of an endpoint record."""
    spec = service.get("spec") or {}
    ports = spec.get("ports") or []
    if not spec.get("externalName") or not ports:
        raise KubernetesError(
            f"service {(service.get('metadata') or {}).get('name')} has no external name or port"
        )
    return {"host": spec["externalName"], "port": str(ports[0]["port"])}
