"""
Pytest configuration and fixtures.

In-memory stand-ins for the Database store, the Kubernetes accessor and a
provider, so the engine and dependent-resource logic run without a cluster.
"""
import base64
import copy
import itertools
from typing import Any, AsyncGenerator, Dict, List, Optional, Tuple

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from rds_operator.exceptions import ConflictError, CredentialError, KubernetesError, NotFoundError
from rds_operator.models.database import Database, DatabaseStatus, DBEndpoint, database_api_version
from rds_operator.providers.base import KubernetesServiceMixin
from rds_operator.services.dependents import DependentResourceReconciler
from rds_operator.services.reconciler import ReconciliationEngine

_uids = itertools.count(1)


def make_database(
    name: str = "db1",
    namespace: str = "default",
    status: Optional[Dict[str, Any]] = None,
    generation: int = 1,
    **spec: Any,
) -> Dict[str, Any]:
    """Raw Database object as the API server would return it."""
    body = {
        "username": "postgres",
        "password": {"name": f"{name}-password", "key": "password"},
        "dbName": name,
        "engine": "postgres",
        "class": "db.t3.micro",
        "size": 10,
    }
    body.update(spec)
    obj = {
        "apiVersion": database_api_version(),
        "kind": "Database",
        "metadata": {
            "name": name,
            "namespace": namespace,
            "uid": f"uid-{name}-{next(_uids)}",
            "resourceVersion": "1",
            "generation": generation,
        },
        "spec": body,
    }
    if status is not None:
        obj["status"] = status
    return obj


class FakeDatabaseStore:
    """Dict-backed replacement for DatabaseClient."""

    def __init__(self):
        self.objects: Dict[Tuple[str, str], Dict[str, Any]] = {}
        self.history: Dict[str, List[str]] = {}
        self.fail_status_updates = False
        self.list_calls = 0
        self._version = itertools.count(2)

    def add(self, obj: Dict[str, Any]) -> Database:
        meta = obj["metadata"]
        self.objects[(meta["namespace"], meta["name"])] = copy.deepcopy(obj)
        return Database.from_k8s(obj)

    def remove(self, namespace: str, name: str) -> None:
        self.objects.pop((namespace, name), None)

    async def get_raw(self, namespace: str, name: str) -> Dict[str, Any]:
        try:
            return copy.deepcopy(self.objects[(namespace, name)])
        except KeyError:
            raise NotFoundError("Database", name, namespace)

    async def get(self, namespace: str, name: str) -> Database:
        return Database.from_k8s(await self.get_raw(namespace, name))

    async def list(self, namespace: Optional[str] = None):
        self.list_calls += 1
        items = [
            copy.deepcopy(obj)
            for (ns, _), obj in sorted(self.objects.items())
            if namespace is None or ns == namespace
        ]
        return items, str(next(self._version))

    async def update_status(self, namespace: str, name: str, status: DatabaseStatus) -> Database:
        if self.fail_status_updates:
            raise KubernetesError("status write refused")
        current = await self.get_raw(namespace, name)
        current["status"] = status.to_k8s()
        current["metadata"]["resourceVersion"] = str(next(self._version))
        self.objects[(namespace, name)] = current
        self.history.setdefault(f"{namespace}/{name}", []).append(status.state.value)
        return Database.from_k8s(current)

    def status_of(self, namespace: str, name: str) -> Dict[str, Any]:
        return self.objects[(namespace, name)].get("status") or {}


class FakeKube:
    """Dict-backed replacement for KubeAccessor."""

    def __init__(self):
        self.secrets: Dict[Tuple[str, str], Dict[str, str]] = {}
        self.services: Dict[Tuple[str, str], Dict[str, Any]] = {}
        self.config_maps: Dict[Tuple[str, str], Dict[str, Any]] = {}
        self.writes: List[Tuple[str, str]] = []
        self.fail_service_delete = False

    def add_secret(self, namespace: str, name: str, data: Dict[str, str]) -> None:
        self.secrets[(namespace, name)] = {k: base64.b64encode(v.encode()).decode() for k, v in data.items()}

    def _stored(self, store, namespace: str, body: Dict[str, Any], kind: str) -> Dict[str, Any]:
        obj = copy.deepcopy(body)
        meta = obj.setdefault("metadata", {})
        meta.setdefault("uid", f"uid-{kind}-{next(_uids)}")
        meta["namespace"] = namespace
        store[(namespace, meta["name"])] = obj
        self.writes.append((kind, meta["name"]))
        return copy.deepcopy(obj)

    async def get_secret(self, namespace: str, name: str, key: str) -> str:
        data = self.secrets.get((namespace, name))
        if data is None:
            raise NotFoundError("Secret", name, namespace)
        if key not in data:
            raise CredentialError(f"unable to fetch secret {name}: key '{key}' not present")
        return base64.b64decode(data[key]).decode()

    async def patch_secret_data(self, namespace: str, name: str, values: Dict[str, str]) -> None:
        if (namespace, name) not in self.secrets:
            raise NotFoundError("Secret", name, namespace)
        for k, v in values.items():
            self.secrets[(namespace, name)][k] = base64.b64encode(v.encode()).decode()

    async def get_service(self, namespace: str, name: str):
        obj = self.services.get((namespace, name))
        return copy.deepcopy(obj) if obj else None

    async def create_service(self, namespace: str, body: Dict[str, Any]):
        if (namespace, body["metadata"]["name"]) in self.services:
            raise ConflictError(f"service {body['metadata']['name']} already exists")
        return self._stored(self.services, namespace, body, "service")

    async def replace_service(self, namespace: str, name: str, body: Dict[str, Any]):
        return self._stored(self.services, namespace, body, "service")

    async def delete_service(self, namespace: str, name: str) -> bool:
        if self.fail_service_delete:
            raise KubernetesError(f"delete of service {name} failed in namespace {namespace}")
        return self.services.pop((namespace, name), None) is not None

    async def get_config_map(self, namespace: str, name: str):
        obj = self.config_maps.get((namespace, name))
        return copy.deepcopy(obj) if obj else None

    async def create_config_map(self, namespace: str, body: Dict[str, Any]):
        if (namespace, body["metadata"]["name"]) in self.config_maps:
            raise ConflictError(f"config map {body['metadata']['name']} already exists")
        return self._stored(self.config_maps, namespace, body, "config_map")

    async def replace_config_map(self, namespace: str, name: str, body: Dict[str, Any]):
        return self._stored(self.config_maps, namespace, body, "config_map")


class FakeProvider(KubernetesServiceMixin):
    """Provider that hands out fixed endpoints and fails on request."""

    name = "fake"
    origin = "fake"

    def __init__(self, kube: FakeKube, dependents: DependentResourceReconciler):
        self.kube = kube
        self.dependents = dependents
        self.endpoints: Dict[str, DBEndpoint] = {}
        self.create_errors: Dict[str, Exception] = {}
        self.delete_errors: Dict[str, Exception] = {}
        self.allocated: Dict[str, int] = {}
        self.create_calls: List[str] = []
        self.deleted: List[str] = []

    async def create_database(self, db: Database) -> DBEndpoint:
        self.create_calls.append(db.name)
        if db.name in self.create_errors:
            raise self.create_errors[db.name]
        await self._password(db)
        # Keyed on the name: a second call reuses the first allocation.
        self.allocated.setdefault(db.name, len(self.allocated) + 1)
        return self.endpoints.get(db.name) or DBEndpoint(hostname=f"{db.name}.example.internal", port=5432)

    async def delete_database(self, db: Database) -> None:
        if db.name in self.delete_errors:
            raise self.delete_errors[db.name]
        self.allocated.pop(db.name, None)
        self.deleted.append(db.name)


@pytest.fixture
def store() -> FakeDatabaseStore:
    return FakeDatabaseStore()


@pytest.fixture
def kube() -> FakeKube:
    kube = FakeKube()
    for name in ("db1", "db2"):
        kube.add_secret("default", f"{name}-password", {"password": "s3cret"})
    return kube


@pytest.fixture
def dependents(kube) -> DependentResourceReconciler:
    return DependentResourceReconciler(kube)


@pytest.fixture
def provider(kube, dependents) -> FakeProvider:
    return FakeProvider(kube, dependents)


@pytest.fixture
def engine(store, provider, dependents) -> ReconciliationEngine:
    return ReconciliationEngine(store, provider, dependents)


@pytest_asyncio.fixture
async def test_client() -> AsyncGenerator[AsyncClient, None]:
    """Create test client (the lifespan, and with it the controller, is not started)."""
    from rds_operator.main import app

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client

