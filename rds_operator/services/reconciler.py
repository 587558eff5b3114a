"""
Reconciliation engine for Database resources.

Drives one Database through the status state machine:

    (none) -> Creating -> CreatingService -> CreatingConfigMap -> Completed

and from any of the in-progress states to Failed.

Each step's status is persisted before the step runs, so an observer (and
a restarted operator) always sees where provisioning stands. Any error
stops the walk and is written to the status as ``Failed``.
"""
import time
from dataclasses import dataclass
from typing import Any

from rds_operator.config.logging import get_logger
from rds_operator.core.state_machine import DatabaseStateMachine
from rds_operator.exceptions import InvalidSpecError, NotFoundError, StatusUpdateError
from rds_operator.k8s.database_client import DatabaseClient
from rds_operator.models.database import Database, DatabaseState, DatabaseStatus
from rds_operator.providers.base import DatabaseProvider
from rds_operator.services import metrics
from rds_operator.services.dependents import DependentResourceReconciler

logger = get_logger(__name__)

STEP_MESSAGES = {
    DatabaseState.CREATING: "Provisioning database",
    DatabaseState.CREATING_SERVICE: "Creating service for the database endpoint",
    DatabaseState.CREATING_CONFIG_MAP: "Creating config map with connection details",
    DatabaseState.COMPLETED: "Database is available",
}


@dataclass
class DeletionResult:
    """Outcome of the two independent deletion steps."""

    database_deleted: bool
    service_deleted: bool


class ReconciliationEngine:
    """
    Create and delete paths for Database resources.

    Safe to call repeatedly for the same resource: a Completed Database is
    left alone, the provider reuses an existing backend and the dependent
    objects are updated in place.
    """

    def __init__(
        self,
        store: DatabaseClient,
        provider: DatabaseProvider,
        dependents: DependentResourceReconciler,
    ):
        self.store = store
        self.provider = provider
        self.dependents = dependents

    async def update_status(self, db: Database, status: DatabaseStatus) -> Database:
        """
        Persist ``status`` as the Database's status.

        Raises:
            NotFoundError: If the Database no longer exists
            StatusUpdateError: If the write keeps conflicting
        """
        if status.state is not None and DatabaseStateMachine.requires_message(status.state) and not status.message:
            status = status.model_copy(update={"message": STEP_MESSAGES.get(status.state, status.state.value)})
        try:
            updated = await self.store.update_status(db.namespace, db.name, status)
        except NotFoundError:
            raise
        except Exception as e:
            raise StatusUpdateError(
                f"unable to update status of database {db.key}: {getattr(e, 'message', str(e))}",
                details={"database": db.key, "state": status.state.value if status.state else None},
            ) from e

        db.status = status
        if updated.metadata.resource_version:
            db.metadata.resource_version = updated.metadata.resource_version
        metrics.status_transitions_total.labels(state=status.state.value if status.state else "none").inc()
        logger.info(
            "database_status_updated",
            database=db.name,
            namespace=db.namespace,
            state=status.state.value if status.state else None,
            message=status.message,
        )
        return db

    async def _advance(self, db: Database, to_state: DatabaseState, **fields: Any) -> None:
        DatabaseStateMachine.validate_transition(db.status.state, to_state, db.key)
        await self.update_status(
            db, DatabaseStatus(state=to_state, message=STEP_MESSAGES[to_state], **fields)
        )

    async def _call_provider(self, operation: str, coro):
        try:
            result = await coro
        except Exception:
            metrics.provider_operation_total.labels(
                provider=self.provider.name, operation=operation, result="error"
            ).inc()
            raise
        metrics.provider_operation_total.labels(
            provider=self.provider.name, operation=operation, result="success"
        ).inc()
        return result

    async def handle_create(self, db: Database) -> Database:
        """
        Provision ``db`` and publish its connection details.

        Never raises for provisioning errors; they end up in the status.
        """
        if not DatabaseStateMachine.can_start(db.status.state):
            logger.info("database_already_completed", database=db.name, namespace=db.namespace)
            return db

        logger.info(
            "database_reconcile_started",
            database=db.name,
            namespace=db.namespace,
            engine=db.spec.engine,
            provider=self.provider.name,
            previous_state=db.status.state.value if db.status.state else None,
        )
        started = time.monotonic()
        # Resume and retry both restart the walk from the beginning.
        db.status = DatabaseStatus()

        try:
            await self._advance(db, DatabaseState.CREATING)

            problems = db.spec.problems()
            if problems:
                raise InvalidSpecError(db.name, problems)

            endpoint = await self._call_provider("create_database", self.provider.create_database(db))
            logger.info(
                "database_endpoint_ready",
                database=db.name,
                namespace=db.namespace,
                hostname=endpoint.hostname,
                port=endpoint.port,
            )

            await self._advance(db, DatabaseState.CREATING_SERVICE)
            service = await self._call_provider(
                "create_service",
                self.provider.create_service(db.namespace, endpoint, db.name, db),
            )

            await self._advance(db, DatabaseState.CREATING_CONFIG_MAP)
            config_map = await self.dependents.ensure_config_map(db, service)

            await self._advance(
                db,
                DatabaseState.COMPLETED,
                db_connection_config=config_map["metadata"]["name"],
                db_credentials=db.spec.password.name,
            )
        except Exception as e:
            self._record(started, "error")
            await self._fail(db, e)
            return db

        self._record(started, "success")
        logger.info("database_reconcile_completed", database=db.name, namespace=db.namespace)
        return db

    async def _fail(self, db: Database, error: Exception) -> None:
        message = getattr(error, "message", None) or str(error) or error.__class__.__name__
        logger.error(
            "database_reconcile_failed",
            database=db.name,
            namespace=db.namespace,
            state=db.status.state.value if db.status.state else None,
            error=message,
            exc_info=True,
        )
        try:
            await self.update_status(db, DatabaseStatus(state=DatabaseState.FAILED, message=message))
        except Exception as status_error:
            logger.error(
                "database_failed_status_not_written",
                database=db.name,
                namespace=db.namespace,
                error=str(status_error),
            )

    def _record(self, started: float, result: str) -> None:
        metrics.reconcile_total.labels(operation="create", result=result).inc()
        metrics.reconcile_duration_seconds.labels(operation="create").observe(time.monotonic() - started)

    async def handle_delete(self, db: Database) -> DeletionResult:
        """
        Release the backend and remove the endpoint record.

        Both steps always run; each failure is logged on its own. The
        configuration record is removed by garbage collection through its
        owner reference.
        """
        logger.info("database_delete_started", database=db.name, namespace=db.namespace)
        result = DeletionResult(database_deleted=False, service_deleted=False)

        try:
            await self._call_provider("delete_database", self.provider.delete_database(db))
            result.database_deleted = True
        except Exception as e:
            logger.error(
                "database_delete_failed",
                database=db.name,
                namespace=db.namespace,
                error=getattr(e, "message", str(e)),
            )

        try:
            await self._call_provider("delete_service", self.provider.delete_service(db.namespace, db.name))
            result.service_deleted = True
        except Exception as e:
            logger.error(
                "service_delete_failed",
                service=db.name,
                namespace=db.namespace,
                error=getattr(e, "message", str(e)),
            )

        outcome = "success" if result.database_deleted and result.service_deleted else "error"
        metrics.reconcile_total.labels(operation="delete", result=outcome).inc()
        logger.info(
            "database_delete_finished",
            database=db.name,
            namespace=db.namespace,
            database_deleted=result.database_deleted,
            service_deleted=result.service_deleted,
        )
        return result

