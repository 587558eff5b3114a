"""
AWS RDS provider.

Each Database maps to one RDS instance identified by ``<name>-<namespace>``.
Creation is describe-first, so a redelivered event reuses the instance
instead of allocating a second one. boto3 is blocking; every call runs in a
worker thread.
"""
import asyncio
from typing import Any, Dict, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError, WaiterError

from rds_operator.config.logging import get_logger
from rds_operator.config.settings import Settings
from rds_operator.exceptions import ProviderError
from rds_operator.k8s.kube import KubeAccessor
from rds_operator.models.database import Database, DBEndpoint
from rds_operator.providers.base import KubernetesServiceMixin
from rds_operator.services.dependents import DependentResourceReconciler

logger = get_logger(__name__)


def _error_code(e: ClientError) -> str:
    return e.response.get("Error", {}).get("Code", "")


class RDSProvider(KubernetesServiceMixin):
    """Provisions databases as Amazon RDS instances."""

    name = "aws"
    origin = "rds"

    def __init__(
        self,
        kube: KubeAccessor,
        dependents: DependentResourceReconciler,
        settings: Settings,
        rds_client: Optional[Any] = None,
    ):
        self.kube = kube
        self.dependents = dependents
        self.settings = settings
        self._client = rds_client

    @property
    def client(self):
        if self._client is None:
            self._client = boto3.client("rds", region_name=self.settings.aws_region)
        return self._client

    @staticmethod
    def instance_identifier(db: Database) -> str:
        return f"{db.name}-{db.namespace}"

    def build_create_params(self, db: Database, password: Optional[str]) -> Dict[str, Any]:
        """Arguments of ``create_db_instance`` for ``db``."""
        spec = db.spec
        params: Dict[str, Any] = {
            "DBInstanceIdentifier": self.instance_identifier(db),
            "DBInstanceClass": spec.db_class,
            "Engine": spec.engine,
            "AllocatedStorage": spec.size,
            "MultiAZ": spec.multi_az,
            "PubliclyAccessible": spec.publicly_accessible,
            "StorageEncrypted": spec.storage_encrypted,
            "BackupRetentionPeriod": spec.backup_retention_period,
            "DeletionProtection": spec.delete_protection,
            "Tags": [
                {"Key": "DBInstanceIdentifier", "Value": self.instance_identifier(db)},
                {"Key": "kubernetes-namespace", "Value": db.namespace},
                {"Key": "kubernetes-database", "Value": db.name},
            ],
        }
        if spec.username:
            params["MasterUsername"] = spec.username
        if password:
            params["MasterUserPassword"] = password
        if spec.db_name:
            params["DBName"] = spec.db_name
        if spec.storage_type:
            params["StorageType"] = spec.storage_type
        if spec.iops > 0:
            params["Iops"] = spec.iops
        if self.settings.rds_subnet_group_name:
            params["DBSubnetGroupName"] = self.settings.rds_subnet_group_name
        if self.settings.rds_security_group_ids:
            params["VpcSecurityGroupIds"] = list(self.settings.rds_security_group_ids)
        return params

    async def _describe(self, identifier: str) -> Optional[Dict[str, Any]]:
        try:
            result = await asyncio.to_thread(
                self.client.describe_db_instances, DBInstanceIdentifier=identifier
            )
        except ClientError as e:
            if _error_code(e) == "DBInstanceNotFound":
                return None
            raise ProviderError(f"describe of RDS instance {identifier} failed: {e}")
        except BotoCoreError as e:
            raise ProviderError(f"describe of RDS instance {identifier} failed: {e}")
        instances = result.get("DBInstances") or []
        return instances[0] if instances else None

    async def _wait_available(self, identifier: str) -> None:
        waiter = self.client.get_waiter("db_instance_available")
        logger.info("waiting_for_rds_instance", instance=identifier)
        try:
            await asyncio.to_thread(
                waiter.wait,
                DBInstanceIdentifier=identifier,
                WaiterConfig={
                    "Delay": self.settings.rds_waiter_delay_seconds,
                    "MaxAttempts": self.settings.rds_waiter_max_attempts,
                },
            )
        except WaiterError as e:
            raise ProviderError(f"RDS instance {identifier} did not become available: {e}")

    async def create_database(self, db: Database) -> DBEndpoint:
        identifier = self.instance_identifier(db)
        instance = await self._describe(identifier)

        if instance is None:
            password = await self._password(db)
            params = self.build_create_params(db, password)
            logger.info(
                "creating_rds_instance",
                instance=identifier,
                engine=db.spec.engine,
                instance_class=db.spec.db_class,
                size_gb=db.spec.size,
            )
            try:
                await asyncio.to_thread(self.client.create_db_instance, **params)
            except (ClientError, BotoCoreError) as e:
                raise ProviderError(f"create of RDS instance {identifier} failed: {e}")
        else:
            logger.info(
                "rds_instance_exists",
                instance=identifier,
                status=instance.get("DBInstanceStatus"),
            )

        if instance is None or not (instance.get("Endpoint") or {}).get("Address"):
            await self._wait_available(identifier)
            instance = await self._describe(identifier)
            if instance is None:
                raise ProviderError(f"RDS instance {identifier} disappeared while waiting for it")

        endpoint = instance.get("Endpoint") or {}
        if not endpoint.get("Address"):
            raise ProviderError(f"RDS instance {identifier} has no endpoint")
        logger.info("rds_instance_available", instance=identifier, hostname=endpoint["Address"])
        return DBEndpoint(hostname=endpoint["Address"], port=int(endpoint["Port"]))

    async def delete_database(self, db: Database) -> None:
        identifier = self.instance_identifier(db)
        logger.info("deleting_rds_instance", instance=identifier)
        try:
            await asyncio.to_thread(
                self.client.delete_db_instance,
                DBInstanceIdentifier=identifier,
                SkipFinalSnapshot=True,
            )
        except ClientError as e:
            if _error_code(e) == "DBInstanceNotFound":
                logger.info("rds_instance_already_deleted", instance=identifier)
                return
            raise ProviderError(f"delete of RDS instance {identifier} failed: {e}")
        except BotoCoreError as e:
            raise ProviderError(f"delete of RDS instance {identifier} failed: {e}")
        logger.info("rds_instance_deletion_started", instance=identifier)
