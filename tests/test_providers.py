"""
Tests for provider selection and the AWS and local providers.
"""
from types import SimpleNamespace

import boto3
import pytest
from botocore.stub import Stubber
from kubernetes_asyncio.client import ApiException

from conftest import make_database
from rds_operator.config.settings import settings
from rds_operator.exceptions import ProviderError, ProviderNotFoundError
from rds_operator.models.database import Database, DBEndpoint
from rds_operator.providers import get_provider
from rds_operator.providers.local import LocalProvider, resources_for_class
from rds_operator.providers.rds import RDSProvider


@pytest.fixture
def client_set():
    return SimpleNamespace(core_api=object(), custom_api=object())


def test_get_provider_by_name(client_set):
    assert get_provider("aws", client_set, settings).name == "aws"
    assert get_provider("local", client_set, settings).name == "local"


def test_get_provider_unknown(client_set):
    with pytest.raises(ProviderNotFoundError, match="unable to find provider for azure"):
        get_provider("azure", client_set, settings)


# AWS


@pytest.fixture
def rds_client():
    return boto3.client(
        "rds",
        region_name="us-east-1",
        aws_access_key_id="testing",
        aws_secret_access_key="testing",
    )


@pytest.fixture
def rds_settings():
    return settings.model_copy(
        update={
            "rds_waiter_delay_seconds": 1,
            "rds_waiter_max_attempts": 2,
            "rds_subnet_group_name": "operator-subnets",
            "rds_security_group_ids": ["sg-123"],
        }
    )


@pytest.fixture
def rds_provider(kube, dependents, rds_settings, rds_client):
    return RDSProvider(kube, dependents, rds_settings, rds_client=rds_client)


def instance(status="available", address="db1-default.abc.us-east-1.rds.amazonaws.com"):
    found = {"DBInstanceIdentifier": "db1-default", "DBInstanceStatus": status}
    if address:
        found["Endpoint"] = {"Address": address, "Port": 5432}
    return {"DBInstances": [found]}


def test_create_params(rds_provider):
    db = Database.from_k8s(make_database("db1", iops=0, storageType="gp3", multiAZ=True))

    params = rds_provider.build_create_params(db, "s3cret")

    assert params["DBInstanceIdentifier"] == "db1-default"
    assert params["Engine"] == "postgres"
    assert params["DBInstanceClass"] == "db.t3.micro"
    assert params["AllocatedStorage"] == 10
    assert params["MasterUsername"] == "postgres"
    assert params["MasterUserPassword"] == "s3cret"
    assert params["MultiAZ"] is True
    assert params["StorageType"] == "gp3"
    assert params["DBSubnetGroupName"] == "operator-subnets"
    assert params["VpcSecurityGroupIds"] == ["sg-123"]
    assert "Iops" not in params

    with_iops = rds_provider.build_create_params(Database.from_k8s(make_database("db1", iops=3000)), "s3cret")
    assert with_iops["Iops"] == 3000


@pytest.mark.asyncio
async def test_rds_create_new_instance(rds_provider, rds_client):
    db = Database.from_k8s(make_database("db1"))
    with Stubber(rds_client) as stubber:
        stubber.add_client_error(
            "describe_db_instances",
            service_error_code="DBInstanceNotFound",
            http_status_code=404,
            expected_params={"DBInstanceIdentifier": "db1-default"},
        )
        stubber.add_response(
            "create_db_instance",
            {"DBInstance": {"DBInstanceIdentifier": "db1-default", "DBInstanceStatus": "creating"}},
            rds_provider.build_create_params(db, "s3cret"),
        )
        stubber.add_response("describe_db_instances", instance(), {"DBInstanceIdentifier": "db1-default"})
        stubber.add_response("describe_db_instances", instance(), {"DBInstanceIdentifier": "db1-default"})

        endpoint = await rds_provider.create_database(db)

        stubber.assert_no_pending_responses()

    assert endpoint.hostname == "db1-default.abc.us-east-1.rds.amazonaws.com"
    assert endpoint.port == 5432


@pytest.mark.asyncio
async def test_rds_create_reuses_existing_instance(rds_provider, rds_client):
    db = Database.from_k8s(make_database("db1"))
    with Stubber(rds_client) as stubber:
        stubber.add_response("describe_db_instances", instance(), {"DBInstanceIdentifier": "db1-default"})

        endpoint = await rds_provider.create_database(db)

        stubber.assert_no_pending_responses()

    assert endpoint.hostname.startswith("db1-default.")


@pytest.mark.asyncio
async def test_rds_create_failure(rds_provider, rds_client):
    db = Database.from_k8s(make_database("db1"))
    with Stubber(rds_client) as stubber:
        stubber.add_client_error("describe_db_instances", service_error_code="DBInstanceNotFound", http_status_code=404)
        stubber.add_client_error(
            "create_db_instance",
            service_error_code="InstanceQuotaExceeded",
            service_message="quota exceeded",
            http_status_code=400,
        )

        with pytest.raises(ProviderError, match="quota exceeded"):
            await rds_provider.create_database(db)


@pytest.mark.asyncio
async def test_rds_delete(rds_provider, rds_client):
    db = Database.from_k8s(make_database("db1"))
    with Stubber(rds_client) as stubber:
        stubber.add_response(
            "delete_db_instance",
            {"DBInstance": {"DBInstanceIdentifier": "db1-default", "DBInstanceStatus": "deleting"}},
            {"DBInstanceIdentifier": "db1-default", "SkipFinalSnapshot": True},
        )
        stubber.add_client_error("delete_db_instance", service_error_code="DBInstanceNotFound", http_status_code=404)
        stubber.add_client_error(
            "delete_db_instance", service_error_code="InvalidDBInstanceState", http_status_code=400
        )

        await rds_provider.delete_database(db)
        await rds_provider.delete_database(db)
        with pytest.raises(ProviderError):
            await rds_provider.delete_database(db)


@pytest.mark.asyncio
async def test_rds_create_service_marks_origin(rds_provider, kube):
    db = Database.from_k8s(make_database("db1"))

    service = await rds_provider.create_service("default", DBEndpoint(hostname="h.example.com", port=5432), "db1", db)

    assert service["metadata"]["annotations"] == {"origin": "rds"}
    assert service["metadata"]["labels"] == {"app": "db1"}


# Local


class FakeCustomObjects:
    def __init__(self, phase="Ready"):
        self.objects = {}
        self.phase = phase

    async def get_namespaced_custom_object(self, group, version, namespace, plural, name):
        try:
            obj = dict(self.objects[(plural, namespace, name)])
        except KeyError:
            raise ApiException(status=404, reason="Not Found")
        obj["status"] = {"phase": self.phase}
        return obj

    async def create_namespaced_custom_object(self, group, version, namespace, plural, body):
        self.objects[(plural, namespace, body["metadata"]["name"])] = body
        return body

    async def delete_namespaced_custom_object(self, group, version, namespace, plural, name):
        if self.objects.pop((plural, namespace, name), None) is None:
            raise ApiException(status=404, reason="Not Found")


@pytest.fixture
def local_settings():
    return settings.model_copy(update={"local_ready_timeout_seconds": 10, "local_poll_interval_seconds": 0.01})


@pytest.mark.asyncio
async def test_local_create(kube, dependents, local_settings):
    custom = FakeCustomObjects()
    kube.add_secret("default", "db1-local-auth", {"username": "generated", "password": "generated"})
    provider = LocalProvider(custom, kube, dependents, local_settings)
    db = Database.from_k8s(make_database("db1", multiAZ=True))

    endpoint = await provider.create_database(db)

    assert endpoint.hostname == "db1-local.default.svc.cluster.local"
    assert endpoint.port == 5432
    body = custom.objects[("postgreses", "default", "db1-local")]
    assert body["kind"] == "Postgres"
    assert body["spec"]["replicas"] == 3
    assert body["spec"]["storage"]["resources"]["requests"]["storage"] == "10Gi"
    assert body["metadata"]["ownerReferences"][0]["uid"] == db.metadata.uid
    assert await kube.get_secret("default", "db1-local-auth", "password") == "s3cret"
    assert await kube.get_secret("default", "db1-local-auth", "username") == "postgres"


@pytest.mark.asyncio
async def test_local_create_resumes_with_existing_resource(kube, dependents, local_settings):
    """A run that stopped after creating the KubeDB resource still gets the requested credentials."""
    custom = FakeCustomObjects()
    provider = LocalProvider(custom, kube, dependents, local_settings)
    db = Database.from_k8s(make_database("db1"))
    custom.objects[("postgreses", "default", "db1-local")] = provider.build_resource("postgres", db)
    kube.add_secret("default", "db1-local-auth", {"username": "postgres", "password": "generated"})

    endpoint = await provider.create_database(db)

    assert endpoint.hostname == "db1-local.default.svc.cluster.local"
    assert await kube.get_secret("default", "db1-local-auth", "password") == "s3cret"


@pytest.mark.asyncio
async def test_local_create_times_out_when_not_ready(kube, dependents, local_settings):
    custom = FakeCustomObjects(phase="Provisioning")
    kube.add_secret("default", "db1-local-auth", {})
    provider = LocalProvider(
        custom, kube, dependents, local_settings.model_copy(update={"local_ready_timeout_seconds": 0})
    )

    with pytest.raises(ProviderError, match="not ready"):
        await provider.create_database(Database.from_k8s(make_database("db1")))


@pytest.mark.asyncio
async def test_local_unsupported_engine(kube, dependents, local_settings):
    provider = LocalProvider(FakeCustomObjects(), kube, dependents, local_settings)

    with pytest.raises(ProviderError, match="not supported"):
        await provider.create_database(Database.from_k8s(make_database("db1", engine="oracle-se2")))


@pytest.mark.asyncio
async def test_local_delete_absent_is_success(kube, dependents, local_settings):
    provider = LocalProvider(FakeCustomObjects(), kube, dependents, local_settings)

    await provider.delete_database(Database.from_k8s(make_database("db1")))


def test_resources_for_class():
    assert resources_for_class("db.t3.micro") == {"cpu": "500m", "memory": "1Gi"}
    assert resources_for_class("db.m5.2xlarge") == {"cpu": "8", "memory": "32Gi"}
    assert resources_for_class("custom") == {"cpu": "1", "memory": "2Gi"}
