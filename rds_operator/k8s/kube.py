"""
Accessor for plain namespaced Kubernetes objects.

Reads secrets and creates, replaces and deletes the services and config
maps the operator publishes. No business logic lives here: callers pass
complete desired objects and get camelCase dicts back.
"""
import base64
from typing import Any, Dict, Optional

from kubernetes_asyncio import client
from kubernetes_asyncio.client import ApiException

from rds_operator.config.logging import get_logger
from rds_operator.exceptions import ConflictError, CredentialError, KubernetesError, NotFoundError
from rds_operator.utils.retry import retry_on_k8s_error

logger = get_logger(__name__)


def translate_api_exception(e: ApiException, resource: str, name: str, namespace: str) -> Exception:
    """Map an API error onto the operator's exception taxonomy."""
    if e.status == 404:
        return NotFoundError(resource, name, namespace)
    if e.status == 409:
        return ConflictError(
            f"{resource} '{name}' in namespace '{namespace}' conflicts: {e.reason}",
            details={"resource": resource, "name": name, "namespace": namespace},
        )
    return KubernetesError(
        f"{resource} '{name}' in namespace '{namespace}': {e.reason}",
        details={"status": e.status, "resource": resource, "name": name},
    )


class KubeAccessor:
    """Secrets, services and config maps through the CoreV1 API."""

    def __init__(self, core_api: client.CoreV1Api):
        self.core_api = core_api

    def _to_dict(self, obj: Any) -> Optional[Dict[str, Any]]:
        if obj is None or isinstance(obj, dict):
            return obj
        return self.core_api.api_client.sanitize_for_serialization(obj)

    # Secrets

    @retry_on_k8s_error(max_retries=3)
    async def _read_secret(self, namespace: str, name: str):
        return await self.core_api.read_namespaced_secret(name=name, namespace=namespace)

    async def get_secret(self, namespace: str, name: str, key: str) -> str:
        """
        Read one field of a secret.

        Raises:
            NotFoundError: If the secret does not exist
            CredentialError: If the secret has no such key
        """
        try:
            secret = self._to_dict(await self._read_secret(namespace, name))
        except ApiException as e:
            raise translate_api_exception(e, "Secret", name, namespace)

        data = secret.get("data") or {}
        if key not in data:
            raise CredentialError(
                f"unable to fetch secret {name}: key '{key}' not present",
                details={"secret": name, "namespace": namespace, "key": key},
            )
        return base64.b64decode(data[key]).decode("utf-8")

    async def patch_secret_data(self, namespace: str, name: str, values: Dict[str, str]) -> None:
        """Merge plain-text ``values`` into a secret's data."""
        data = {k: base64.b64encode(v.encode()).decode() for k, v in values.items()}
        try:
            await self.core_api.patch_namespaced_secret(name=name, namespace=namespace, body={"data": data})
        except ApiException as e:
            raise translate_api_exception(e, "Secret", name, namespace)
        logger.info("secret_patched", secret=name, namespace=namespace, keys=sorted(values))

    # Services

    @retry_on_k8s_error(max_retries=3)
    async def _read_service(self, namespace: str, name: str):
        return await self.core_api.read_namespaced_service(name=name, namespace=namespace)

    async def get_service(self, namespace: str, name: str) -> Optional[Dict[str, Any]]:
        """Return the service, or None when it does not exist."""
        try:
            return self._to_dict(await self._read_service(namespace, name))
        except ApiException as e:
            if e.status == 404:
                return None
            raise translate_api_exception(e, "Service", name, namespace)

    async def create_service(self, namespace: str, body: Dict[str, Any]) -> Dict[str, Any]:
        name = body["metadata"]["name"]
        try:
            result = await self.core_api.create_namespaced_service(namespace=namespace, body=body)
        except ApiException as e:
            raise translate_api_exception(e, "Service", name, namespace)
        logger.info("service_created", service=name, namespace=namespace)
        return self._to_dict(result)

    async def replace_service(self, namespace: str, name: str, body: Dict[str, Any]) -> Dict[str, Any]:
        try:
            result = await self.core_api.replace_namespaced_service(name=name, namespace=namespace, body=body)
        except ApiException as e:
            raise translate_api_exception(e, "Service", name, namespace)
        logger.info("service_updated", service=name, namespace=namespace)
        return self._to_dict(result)

    async def delete_service(self, namespace: str, name: str) -> bool:
        """Delete a service; returns False when it was already gone."""
        try:
            await self.core_api.delete_namespaced_service(name=name, namespace=namespace)
        except ApiException as e:
            if e.status == 404:
                logger.info("service_already_deleted", service=name, namespace=namespace)
                return False
            raise KubernetesError(
                f"delete of service {name} failed in namespace {namespace}: {e.reason}",
                details={"status": e.status, "service": name, "namespace": namespace},
            )
        logger.info("service_deleted", service=name, namespace=namespace)
        return True

    # Config maps

    @retry_on_k8s_error(max_retries=3)
    async def _read_config_map(self, namespace: str, name: str):
        return await self.core_api.read_namespaced_config_map(name=name, namespace=namespace)

    async def get_config_map(self, namespace: str, name: str) -> Optional[Dict[str, Any]]:
        """Return the config map, or None when it does not exist."""
        try:
            return self._to_dict(await self._read_config_map(namespace, name))
        except ApiException as e:
            if e.status == 404:
                return None
            raise translate_api_exception(e, "ConfigMap", name, namespace)

    async def create_config_map(self, namespace: str, body: Dict[str, Any]) -> Dict[str, Any]:
        name = body["metadata"]["name"]
        try:
            result = await self.core_api.create_namespaced_config_map(namespace=namespace, body=body)
        except ApiException as e:
            raise translate_api_exception(e, "ConfigMap", name, namespace)
        logger.info("config_map_created", config_map=name, namespace=namespace)
        return self._to_dict(result)

    async def replace_config_map(self, namespace: str, name: str, body: Dict[str, Any]) -> Dict[str, Any]:
        try:
            result = await self.core_api.replace_namespaced_config_map(name=name, namespace=namespace, body=body)
        except ApiException as e:
            raise translate_api_exception(e, "ConfigMap", name, namespace)
        logger.info("config_map_updated", config_map=name, namespace=namespace)
        return self._to_dict(result)
