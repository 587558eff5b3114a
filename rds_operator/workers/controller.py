"""
Database controller.

Turns the Database resource stream into reconciliation work:

- lists all Databases, then watches from the list's resourceVersion;
- relists when the watch expires and periodically (resync);
- classifies every observation as add, update or delete against the set
  of keys it already knows, and enqueues the matching engine call on the
  keyed work queue.

Dispatch rules:
- add: create path (the engine skips Completed resources)
- update: create path only when the status is empty, or when it is Failed
  and the spec generation changed since the last create was dispatched
- delete: delete path
"""
import asyncio
from typing import Any, Dict, List, Optional, Set

from pydantic import ValidationError

from rds_operator.config.kubernetes import KubernetesClientSet
from rds_operator.config.logging import get_logger, resource_context
from rds_operator.config.settings import Settings
from rds_operator.core.work_queue import KeyedWorkQueue
from rds_operator.exceptions import NotFoundError, WatchExpiredError
from rds_operator.k8s.database_client import DatabaseClient, WatchEvent
from rds_operator.k8s.kube import KubeAccessor
from rds_operator.models.database import DATABASE_PLURAL, Database, DatabaseState
from rds_operator.providers import get_provider
from rds_operator.services import metrics
from rds_operator.services.dependents import DependentResourceReconciler
from rds_operator.services.reconciler import ReconciliationEngine

logger = get_logger(__name__)

WATCH_ERROR_BACKOFF_SECONDS = 5


class DatabaseController:
    """
    Watches Database resources and feeds the reconciliation engine.

    Runs two loops: the list/watch loop and the periodic resync loop.
    ``synced`` turns True once the first list has been processed.
    """

    def __init__(
        self,
        store: DatabaseClient,
        engine: ReconciliationEngine,
        namespace: Optional[str] = None,
        resync_interval: int = 120,
        watch_timeout: int = 300,
        queue: Optional[KeyedWorkQueue] = None,
    ):
        self.store = store
        self.engine = engine
        self.namespace = namespace
        self.resync_interval = resync_interval
        self.watch_timeout = watch_timeout
        self.queue = queue or KeyedWorkQueue(max_workers=1)
        self.running = False
        self.synced = False
        self.known: Dict[str, Database] = {}
        self.dispatched_generation: Dict[str, int] = {}
        self._resource_version: Optional[str] = None
        self._tasks: List[asyncio.Task] = []

    # Dispatch

    def on_add(self, db: Database) -> None:
        self.known[db.key] = db
        self._enqueue_create(db, "add")

    def on_update(self, old: Optional[Database], new: Database) -> None:
        self.known[new.key] = new
        if not self.should_create_on_update(new):
            return
        if self.queue.pending_count(new.key) or self.queue.is_active(new.key):
            logger.debug("database_update_coalesced", database=new.name, namespace=new.namespace)
            return
        self._enqueue_create(new, "update")

    def on_delete(self, db: Database) -> None:
        self.known.pop(db.key, None)
        self.dispatched_generation.pop(db.key, None)
        logger.info("database_deleted_event", database=db.name, namespace=db.namespace)
        self.queue.add(db.key, lambda: self._run_delete(db), "delete")

    def should_create_on_update(self, db: Database) -> bool:
        state = db.status.state
        if state is None:
            return True
        if state == DatabaseState.FAILED:
            return self.dispatched_generation.get(db.key) != db.metadata.generation
        return False

    def _enqueue_create(self, db: Database, reason: str) -> None:
        self.dispatched_generation[db.key] = db.metadata.generation
        logger.info(
            "database_create_enqueued",
            database=db.name,
            namespace=db.namespace,
            reason=reason,
            state=db.status.state.value if db.status.state else None,
        )
        self.queue.add(db.key, lambda: self._run_create(db), reason)

    async def _run_create(self, db: Database) -> None:
        # Work on the live object; queued snapshots may be stale.
        with resource_context(db.key, operation="create"):
            try:
                current = await self.store.get(db.namespace, db.name)
            except NotFoundError:
                logger.info("database_gone_before_create", database=db.name, namespace=db.namespace)
                return
            await self.engine.handle_create(current)

    async def _run_delete(self, db: Database) -> None:
        with resource_context(db.key, operation="delete"):
            await self.engine.handle_delete(db)

    def parse(self, obj: Dict[str, Any]) -> Optional[Database]:
        """Model one Database object, or log and return None when it does not validate."""
        try:
            return Database.from_k8s(obj)
        except ValidationError as e:
            meta = obj.get("metadata") or {}
            logger.error(
                "database_object_invalid",
                database=meta.get("name"),
                namespace=meta.get("namespace"),
                errors=e.errors(include_url=False),
            )
            metrics.invalid_objects_total.inc()
            return None

    def handle_event(self, event: WatchEvent) -> None:
        """Classify one watch notification."""
        db = self.parse(event.object)
        if db is None:
            if event.type == "DELETED":
                meta = event.object.get("metadata") or {}
                key = f"{meta.get('namespace')}/{meta.get('name')}"
                known = self.known.get(key)
                if known is not None:
                    self.on_delete(known)
            return
        if event.type == "DELETED":
            self.on_delete(db)
            return
        old = self.known.get(db.key)
        if old is None:
            self.on_add(db)
        else:
            self.on_update(old, db)

    async def relist(self) -> str:
        """
        Reconcile the known set against a fresh list.

        Returns:
            The list's resourceVersion
        """
        items, resource_version = await self.store.list(self.namespace)
        metrics.relist_total.inc()
        current = {}
        invalid: Set[str] = set()
        for item in items:
            db = self.parse(item)
            if db is None:
                meta = item.get("metadata") or {}
                invalid.add(f"{meta.get('namespace')}/{meta.get('name')}")
                continue
            current[db.key] = db

        for key, db in current.items():
            old = self.known.get(key)
            if old is None:
                self.on_add(db)
            else:
                self.on_update(old, db)
        # Objects that still exist but no longer validate are left alone, not deleted.
        for key in list(self.known):
            if key not in current and key not in invalid:
                self.on_delete(self.known[key])

        self.synced = True
        logger.info(
            "database_relist_completed",
            count=len(current),
            invalid=len(invalid),
            resource_version=resource_version,
        )
        return resource_version

    # Loops

    async def _watch_loop(self) -> None:
        while self.running:
            try:
                if self._resource_version is None:
                    self._resource_version = await self.relist()
                async for event in self.store.watch(
                    self.namespace, self._resource_version, self.watch_timeout
                ):
                    self.handle_event(event)
                    version = (event.object.get("metadata") or {}).get("resourceVersion")
                    if version:
                        self._resource_version = version
                logger.debug("database_watch_closed", resource_version=self._resource_version)
            except asyncio.CancelledError:
                raise
            except WatchExpiredError as e:
                logger.info("database_watch_expired", error=e.message)
                metrics.watch_restarts_total.labels(reason="expired").inc()
                self._resource_version = None
            except Exception as e:
                logger.error("database_watch_failed", error=str(e), exc_info=True)
                metrics.watch_restarts_total.labels(reason="error").inc()
                self._resource_version = None
                await asyncio.sleep(WATCH_ERROR_BACKOFF_SECONDS)

    async def _resync_loop(self) -> None:
        while self.running:
            await asyncio.sleep(self.resync_interval)
            try:
                await self.relist()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error("database_resync_failed", error=str(e), exc_info=True)

    async def start(self) -> None:
        """Start the work queue and both loops."""
        if self.running:
            return
        self.running = True
        self.queue.start()
        self._tasks = [
            asyncio.create_task(self._watch_loop(), name="database-watch"),
            asyncio.create_task(self._resync_loop(), name="database-resync"),
        ]
        logger.info(
            "database_controller_started",
            namespace=self.namespace or "*",
            resync_interval_seconds=self.resync_interval,
            workers=self.queue.max_workers,
        )

    async def stop(self) -> None:
        """Stop watching and wait for the workers to finish."""
        logger.info("stopping_database_controller")
        self.running = False
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        await self.queue.stop()
        logger.info("database_controller_stopped")

    def status(self) -> Dict[str, Any]:
        return {
            "running": self.running,
            "synced": self.synced,
            "known_databases": len(self.known),
            "pending_reconciles": self.queue.pending_count(),
        }


def create_controller(settings: Settings, client_set: KubernetesClientSet) -> DatabaseController:
    """Wire the store, provider, engine and queue from settings."""
    store = DatabaseClient(
        client_set.custom_api,
        group=settings.crd_group,
        version=settings.crd_version,
        plural=DATABASE_PLURAL,
    )
    dependents = DependentResourceReconciler(KubeAccessor(client_set.core_api))
    provider = get_provider(settings.provider, client_set, settings, dependents=dependents)
    engine = ReconciliationEngine(store, provider, dependents)
    logger.info("provider_selected", provider=provider.name)
    return DatabaseController(
        store,
        engine,
        namespace=settings.watch_namespace,
        resync_interval=settings.resync_interval_seconds,
        watch_timeout=settings.watch_timeout_seconds,
        queue=KeyedWorkQueue(max_workers=settings.max_concurrent_reconciles),
    )
