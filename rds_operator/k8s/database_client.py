"""
Resource store for Database custom resources.

CRUD, list and watch over ``databases.<group>`` plus the optimistic
get-modify-update of a resource's status through the status subresource.
"""
from typing import Any, AsyncIterator, Dict, List, NamedTuple, Optional, Tuple

from kubernetes_asyncio import client, watch
from kubernetes_asyncio.client import ApiException
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from rds_operator.config.logging import get_logger
from rds_operator.exceptions import ConflictError, KubernetesError, WatchExpiredError
from rds_operator.k8s.kube import translate_api_exception
from rds_operator.models.database import DATABASE_PLURAL, Database, DatabaseStatus
from rds_operator.utils.retry import retry_on_k8s_error

logger = get_logger(__name__)

RESOURCE = "Database"


class WatchEvent(NamedTuple):
    """One notification from the watch: ADDED, MODIFIED or DELETED and the raw object."""

    type: str
    object: Dict[str, Any]


class DatabaseClient:
    """
    Client for Database resources.

    Every call takes the namespace explicitly; ``list`` and ``watch`` cover
    all namespaces when ``namespace`` is None.
    """

    def __init__(
        self,
        custom_api: client.CustomObjectsApi,
        group: str,
        version: str,
        plural: str = DATABASE_PLURAL,
    ):
        self.custom_api = custom_api
        self.group = group
        self.version = version
        self.plural = plural

    @retry_on_k8s_error(max_retries=3)
    async def _get(self, namespace: str, name: str) -> Dict[str, Any]:
        return await self.custom_api.get_namespaced_custom_object(
            group=self.group,
            version=self.version,
            namespace=namespace,
            plural=self.plural,
            name=name,
        )

    async def get_raw(self, namespace: str, name: str) -> Dict[str, Any]:
        """Fetch the stored object as a dict, preserving every field."""
        try:
            return await self._get(namespace, name)
        except ApiException as e:
            raise translate_api_exception(e, RESOURCE, name, namespace)

    async def get(self, namespace: str, name: str) -> Database:
        return Database.from_k8s(await self.get_raw(namespace, name))

    @retry_on_k8s_error(max_retries=3)
    async def _list(self, namespace: Optional[str]) -> Dict[str, Any]:
        if namespace:
            return await self.custom_api.list_namespaced_custom_object(
                group=self.group, version=self.version, namespace=namespace, plural=self.plural,
            )
        return await self.custom_api.list_cluster_custom_object(
            group=self.group, version=self.version, plural=self.plural,
        )

    async def list(self, namespace: Optional[str] = None) -> Tuple[List[Dict[str, Any]], str]:
        """
        List Database objects.

        Returns:
            The raw objects and the list's resourceVersion to start a watch from
        """
        try:
            result = await self._list(namespace)
        except ApiException as e:
            raise translate_api_exception(e, RESOURCE, "*", namespace or "*")
        items = result.get("items") or []
        resource_version = (result.get("metadata") or {}).get("resourceVersion", "")
        return items, resource_version

    async def create(self, db: Database) -> Database:
        try:
            result = await self.custom_api.create_namespaced_custom_object(
                group=self.group,
                version=self.version,
                namespace=db.namespace,
                plural=self.plural,
                body=db.to_k8s(),
            )
        except ApiException as e:
            raise translate_api_exception(e, RESOURCE, db.name, db.namespace)
        return Database.from_k8s(result)

    async def update(self, db: Database) -> Database:
        try:
            result = await self.custom_api.replace_namespaced_custom_object(
                group=self.group,
                version=self.version,
                namespace=db.namespace,
                plural=self.plural,
                name=db.name,
                body=db.to_k8s(),
            )
        except ApiException as e:
            raise translate_api_exception(e, RESOURCE, db.name, db.namespace)
        return Database.from_k8s(result)

    async def delete(self, namespace: str, name: str) -> None:
        try:
            await self.custom_api.delete_namespaced_custom_object(
                group=self.group,
                version=self.version,
                namespace=namespace,
                plural=self.plural,
                name=name,
            )
        except ApiException as e:
            raise translate_api_exception(e, RESOURCE, name, namespace)

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.2, min=0.2, max=2),
        retry=retry_if_exception_type(ConflictError),
        reraise=True,
    )
    async def update_status(self, namespace: str, name: str, status: DatabaseStatus) -> Database:
        """
        Overwrite the status of the current object.

        Re-fetches the object, replaces only ``status`` and writes it back with
        the fetched resourceVersion; a conflicting concurrent write re-runs the
        whole get-modify-update.

        Raises:
            NotFoundError: If the Database no longer exists
            ConflictError: If every attempt lost the resourceVersion race
        """
        current = await self.get_raw(namespace, name)
        current["status"] = status.to_k8s()
        try:
            result = await self.custom_api.replace_namespaced_custom_object_status(
                group=self.group,
                version=self.version,
                namespace=namespace,
                plural=self.plural,
                name=name,
                body=current,
            )
        except ApiException as e:
            raise translate_api_exception(e, RESOURCE, name, namespace)
        return Database.from_k8s(result)

    async def watch(
        self,
        namespace: Optional[str] = None,
        resource_version: Optional[str] = None,
        timeout_seconds: int = 300,
    ) -> AsyncIterator[WatchEvent]:
        """
        Stream Database notifications starting after ``resource_version``.

        The stream ends when the server closes the watch.

        Raises:
            WatchExpiredError: If ``resource_version`` is too old (relist required)
        """
        kwargs: Dict[str, Any] = {"timeout_seconds": timeout_seconds}
        if resource_version:
            kwargs["resource_version"] = resource_version
        if namespace:
            func = self.custom_api.list_namespaced_custom_object
            args = (self.group, self.version, namespace, self.plural)
        else:
            func = self.custom_api.list_cluster_custom_object
            args = (self.group, self.version, self.plural)

        async with watch.Watch() as w:
            try:
                async for event in w.stream(func, *args, **kwargs):
                    event_type = event.get("type")
                    obj = event.get("object") or {}
                    if event_type == "ERROR":
                        code = obj.get("code") if isinstance(obj, dict) else None
                        if code == 410:
                            raise WatchExpiredError(obj.get("message", "resource version expired"))
                        logger.warning("database_watch_error_event", error=obj)
                        raise KubernetesError(f"watch error: {obj}")
                    if event_type == "BOOKMARK":
                        continue
                    yield WatchEvent(type=event_type, object=obj)
            except ApiException as e:
                if e.status == 410:
                    raise WatchExpiredError(e.reason or "resource version expired")
                raise translate_api_exception(e, RESOURCE, "*", namespace or "*")
