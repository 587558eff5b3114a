"""
One-time registration of the Database CustomResourceDefinition.

Creating an already registered CRD is not an error; a freshly created one
is polled until the API server reports it Established.
"""
import asyncio
import time
from typing import Any, Dict

from kubernetes_asyncio.client import ApiException

from rds_operator.config.kubernetes import KubernetesClientSet
from rds_operator.config.logging import get_logger
from rds_operator.exceptions import KubernetesError
from rds_operator.models.database import DATABASE_KIND, DATABASE_PLURAL, DATABASE_SHORT_NAMES

logger = get_logger(__name__)


def crd_name(group: str) -> str:
    return f"{DATABASE_PLURAL}.{group}"


def build_crd(group: str, version: str) -> Dict[str, Any]:
    """Build the CRD manifest with a structural schema and a status subresource."""
    string = {"type": "string"}
    boolean = {"type": "boolean"}
    integer = {"type": "integer", "format": "int64"}
    spec_schema = {
        "type": "object",
        "required": ["engine", "class", "size", "password"],
        "properties": {
            "username": string,
            "password": {
                "type": "object",
                "required": ["name", "key"],
                "properties": {"name": string, "key": string},
            },
            "dbName": string,
            "engine": string,
            "class": string,
            "size": {**integer, "minimum": 1},
            "multiAZ": boolean,
            "publiclyAccessible": boolean,
            "storageEncrypted": boolean,
            "storageType": string,
            "iops": {**integer, "minimum": 0},
            "backupRetentionPeriod": {**integer, "minimum": 0, "maximum": 35},
            "deleteProtection": boolean,
        },
    }
    status_schema = {
        "type": "object",
        "properties": {
            "state": {
                "type": "string",
                "enum": ["Creating", "CreatingService", "CreatingConfigMap", "Completed", "Failed"],
            },
            "message": string,
            "dbConnectionConfig": string,
            "dbCredentials": string,
        },
    }
    return {
        "apiVersion": "apiextensions.k8s.io/v1",
        "kind": "CustomResourceDefinition",
        "metadata": {"name": crd_name(group)},
        "spec": {
            "group": group,
            "scope": "Namespaced",
            "names": {
                "plural": DATABASE_PLURAL,
                "singular": DATABASE_KIND.lower(),
                "kind": DATABASE_KIND,
                "shortNames": DATABASE_SHORT_NAMES,
            },
            "versions": [
                {
                    "name": version,
                    "served": True,
                    "storage": True,
                    "subresources": {"status": {}},
                    "schema": {
                        "openAPIV3Schema": {
                            "type": "object",
                            "properties": {"spec": spec_schema, "status": status_schema},
                        }
                    },
                    "additionalPrinterColumns": [
                        {"name": "Engine", "type": "string", "jsonPath": ".spec.engine"},
                        {"name": "Class", "type": "string", "jsonPath": ".spec.class"},
                        {"name": "State", "type": "string", "jsonPath": ".status.state"},
                        {"name": "Age", "type": "date", "jsonPath": ".metadata.creationTimestamp"},
                    ],
                }
            ],
        },
    }


def _is_established(crd: Dict[str, Any]) -> bool:
    conditions = (crd.get("status") or {}).get("conditions") or []
    return any(c.get("type") == "Established" and c.get("status") == "True" for c in conditions)


async def ensure_crd(
    client_set: KubernetesClientSet,
    group: str,
    version: str,
    timeout_seconds: int = 60,
    poll_interval: float = 1.0,
) -> None:
    """
    Register the Database CRD unless it already exists.

    Raises:
        KubernetesError: If creation fails or the CRD is not Established in time
    """
    api = client_set.apiext_api
    name = crd_name(group)
    logger.info("ensuring_crd", crd=name)

    try:
        await api.create_custom_resource_definition(body=build_crd(group, version))
    except ApiException as e:
        if e.status == 409:
            logger.info("crd_found", crd=name)
            return
        logger.error("crd_creation_failed", crd=name, error=e.reason, status=e.status)
        raise KubernetesError(f"Failed to create CRD {name}: {e.reason}")

    logger.info("crd_created_waiting_for_establishment", crd=name)
    deadline = time.monotonic() + timeout_seconds
    while True:
        try:
            crd = await api.read_custom_resource_definition(name=name)
            crd = api.api_client.sanitize_for_serialization(crd)
            if _is_established(crd):
                logger.info("crd_available", crd=name)
                return
        except ApiException as e:
            logger.debug("crd_not_available_yet", crd=name, status=e.status)
        if time.monotonic() >= deadline:
            raise KubernetesError(f"CRD {name} not established after {timeout_seconds}s")
        await asyncio.sleep(poll_interval)
