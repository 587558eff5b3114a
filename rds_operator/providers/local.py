"""
Local provider: in-cluster databases through KubeDB.

A Database becomes a KubeDB custom resource named ``<name><suffix>`` in the
same namespace. KubeDB runs the database and creates the ``<resource>-auth``
secret, which is patched with the requested credentials. The endpoint is
the DNS name of the service KubeDB publishes for the resource.
"""
import asyncio
import time
from typing import Any, Dict

from kubernetes_asyncio import client
from kubernetes_asyncio.client import ApiException

from rds_operator.config.logging import get_logger
from rds_operator.config.settings import Settings
from rds_operator.exceptions import NotFoundError, ProviderError
from rds_operator.k8s.kube import KubeAccessor
from rds_operator.models.database import Database, DBEndpoint
from rds_operator.providers.base import KubernetesServiceMixin
from rds_operator.services.dependents import DependentResourceReconciler

logger = get_logger(__name__)

KUBEDB_GROUP = "kubedb.com"

KINDS = {
    "postgres": "Postgres",
    "mysql": "MySQL",
    "mariadb": "MariaDB",
    "mongodb": "MongoDB",
}

PLURALS = {
    "postgres": "postgreses",
    "mysql": "mysqls",
    "mariadb": "mariadbs",
    "mongodb": "mongodbs",
}

DEFAULT_PORTS = {
    "postgres": 5432,
    "mysql": 3306,
    "mariadb": 3306,
    "mongodb": 27017,
}

# Engines whose admin user name is fixed by KubeDB.
FIXED_USERNAMES = {"mariadb": "root"}

SIZE_RESOURCES = {
    "micro": {"cpu": "500m", "memory": "1Gi"},
    "small": {"cpu": "1", "memory": "2Gi"},
    "medium": {"cpu": "2", "memory": "4Gi"},
    "large": {"cpu": "2", "memory": "8Gi"},
    "xlarge": {"cpu": "4", "memory": "16Gi"},
    "2xlarge": {"cpu": "8", "memory": "32Gi"},
}

HA_REPLICAS = 3


def resources_for_class(db_class: str) -> Dict[str, str]:
    """CPU/memory for an instance class such as ``db.t3.medium`` (size is the last dotted part)."""
    size = db_class.rsplit(".", 1)[-1].lower()
    return dict(SIZE_RESOURCES.get(size, SIZE_RESOURCES["small"]))


def is_ready(status: Dict[str, Any]) -> bool:
    phase = (status.get("phase") or "").lower()
    if phase == "ready":
        return True
    for condition in status.get("conditions") or []:
        if condition.get("type") == "Ready" and condition.get("status") == "True":
            return True
    return False


class LocalProvider(KubernetesServiceMixin):
    """Provisions databases inside the cluster as KubeDB resources."""

    name = "local"
    origin = "local"

    def __init__(
        self,
        custom_api: client.CustomObjectsApi,
        kube: KubeAccessor,
        dependents: DependentResourceReconciler,
        settings: Settings,
    ):
        self.custom_api = custom_api
        self.kube = kube
        self.dependents = dependents
        self.settings = settings

    def resource_name(self, db: Database) -> str:
        return f"{db.name}{self.settings.local_resource_suffix}"

    def _engine(self, db: Database) -> str:
        engine = db.spec.engine.lower()
        if engine not in KINDS:
            raise ProviderError(
                f"engine {db.spec.engine!r} is not supported by the local provider "
                f"(supported: {', '.join(sorted(KINDS))})"
            )
        return engine

    def build_spec(self, engine: str, db: Database) -> Dict[str, Any]:
        """KubeDB ``spec`` for ``db``."""
        name = self.resource_name(db)
        resources = resources_for_class(db.spec.db_class)
        ha = db.spec.multi_az
        spec: Dict[str, Any] = {
            "version": self.settings.local_engine_versions.get(engine, ""),
            "replicas": HA_REPLICAS if ha else 1,
            "storage": {
                "accessModes": ["ReadWriteOnce"],
                "resources": {"requests": {"storage": f"{db.spec.size}Gi"}},
            },
            "podTemplate": {
                "spec": {
                    "containers": [
                        {
                            "name": engine,
                            "resources": {"requests": resources, "limits": resources},
                        }
                    ]
                }
            },
            "terminationPolicy": "DoNotTerminate" if db.spec.delete_protection else "WipeOut",
        }
        if ha:
            if engine == "postgres":
                spec["standbyMode"] = "Hot"
                spec["streamingMode"] = "Asynchronous"
            elif engine in ("mysql", "mariadb"):
                spec["topology"] = {"mode": "GroupReplication", "group": {"name": f"{name}-group"}}
            elif engine == "mongodb":
                spec["replicaSet"] = {"name": f"{name}-replicaset"}
        return spec

    def build_resource(self, engine: str, db: Database) -> Dict[str, Any]:
        return {
            "apiVersion": f"{KUBEDB_GROUP}/{self.settings.local_kubedb_version}",
            "kind": KINDS[engine],
            "metadata": {
                "name": self.resource_name(db),
                "namespace": db.namespace,
                "labels": {"app": db.name},
                "ownerReferences": [db.owner_reference()],
            },
            "spec": self.build_spec(engine, db),
        }

    def _api_args(self, engine: str, namespace: str) -> Dict[str, str]:
        return {
            "group": KUBEDB_GROUP,
            "version": self.settings.local_kubedb_version,
            "namespace": namespace,
            "plural": PLURALS[engine],
        }

    async def _get(self, engine: str, db: Database):
        try:
            return await self.custom_api.get_namespaced_custom_object(
                name=self.resource_name(db), **self._api_args(engine, db.namespace)
            )
        except ApiException as e:
            if e.status == 404:
                return None
            raise ProviderError(f"read of {KINDS[engine]} {self.resource_name(db)} failed: {e.reason}")

    async def create_database(self, db: Database) -> DBEndpoint:
        engine = self._engine(db)
        name = self.resource_name(db)

        if await self._get(engine, db) is None:
            body = self.build_resource(engine, db)
            logger.info("creating_kubedb_resource", engine=engine, name=name, namespace=db.namespace)
            try:
                await self.custom_api.create_namespaced_custom_object(
                    body=body, **self._api_args(engine, db.namespace)
                )
            except ApiException as e:
                if e.status != 409:
                    logger.error("kubedb_resource_creation_failed", name=name, status=e.status, error=e.reason)
                    raise ProviderError(f"create of {KINDS[engine]} {name} failed: {e.reason}")
        else:
            logger.info("kubedb_resource_exists", engine=engine, name=name, namespace=db.namespace)

        # Applied on both branches: a resumed create must still set the requested credentials.
        await self._patch_credentials(engine, db)
        await self._wait_ready(engine, db)
        return DBEndpoint(
            hostname=f"{name}.{db.namespace}.svc.cluster.local",
            port=DEFAULT_PORTS[engine],
        )

    async def _patch_credentials(self, engine: str, db: Database) -> None:
        """Wait for KubeDB's auth secret, then overwrite it with the requested credentials."""
        values = {}
        username = db.spec.username
        fixed = FIXED_USERNAMES.get(engine)
        if fixed and username and username != fixed:
            logger.warning("username_override_ignored", engine=engine, requested=username, username=fixed)
        elif username:
            values["username"] = username
        password = await self._password(db)
        if password:
            values["password"] = password
        if not values:
            return

        secret_name = f"{self.resource_name(db)}-auth"
        deadline = time.monotonic() + self.settings.local_ready_timeout_seconds
        while True:
            try:
                await self.kube.patch_secret_data(db.namespace, secret_name, values)
                return
            except NotFoundError:
                if time.monotonic() >= deadline:
                    raise ProviderError(f"auth secret {secret_name} was not created by KubeDB")
                await asyncio.sleep(self.settings.local_poll_interval_seconds)

    async def _wait_ready(self, engine: str, db: Database) -> None:
        name = self.resource_name(db)
        timeout = self.settings.local_ready_timeout_seconds
        deadline = time.monotonic() + timeout
        while True:
            resource = await self._get(engine, db)
            status = (resource or {}).get("status") or {}
            if is_ready(status):
                logger.info("kubedb_resource_ready", name=name, namespace=db.namespace)
                return
            if time.monotonic() >= deadline:
                raise ProviderError(
                    f"{KINDS[engine]} {name} not ready after {timeout}s (phase: {status.get('phase', 'unknown')})"
                )
            logger.debug("kubedb_resource_not_ready", name=name, phase=status.get("phase"))
            await asyncio.sleep(self.settings.local_poll_interval_seconds)

    async def delete_database(self, db: Database) -> None:
        engine = self._engine(db)
        name = self.resource_name(db)
        logger.info("deleting_kubedb_resource", engine=engine, name=name, namespace=db.namespace)
        try:
            await self.custom_api.delete_namespaced_custom_object(
                name=name, **self._api_args(engine, db.namespace)
            )
        except ApiException as e:
            if e.status == 404:
                logger.info("kubedb_resource_already_deleted", name=name)
                return
            raise ProviderError(f"delete of {KINDS[engine]} {name} failed: {e.reason}")
