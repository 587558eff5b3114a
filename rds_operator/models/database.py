"""
Pydantic models for the Database custom resource.

Field aliases mirror the JSON field names stored in the cluster so that
objects delivered by the API server round-trip through these models.
"""
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from rds_operator.config.settings import settings

DATABASE_KIND = "Database"
DATABASE_PLURAL = "databases"
DATABASE_SHORT_NAMES = ["db"]


def database_api_version() -> str:
    """apiVersion of the Database resource for the configured group."""
    return f"{settings.crd_group}/{settings.crd_version}"


class DatabaseState(str, Enum):
    """Status states of a Database resource."""

    CREATING = "Creating"
    CREATING_SERVICE = "CreatingService"
    CREATING_CONFIG_MAP = "CreatingConfigMap"
    COMPLETED = "Completed"
    FAILED = "Failed"


# States written by earlier releases of the operator
LEGACY_STATES = {
    "Created": DatabaseState.COMPLETED.value,
}


class PasswordSecret(BaseModel):
    """Reference to the key of a Secret holding the master password."""

    name: str = ""
    key: str = ""


class DatabaseSpec(BaseModel):
    """Desired state of a database instance."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    username: str = ""
    password: PasswordSecret = Field(default_factory=PasswordSecret)
    db_name: str = Field(default="", alias="dbName")
    engine: str = Field(default="", description="Engine identifier, e.g. 'postgres'")
    db_class: str = Field(default="", alias="class", description="Instance class, e.g. 'db.t3.micro'")
    size: int = Field(default=0, description="Allocated storage in GB")
    multi_az: bool = Field(default=False, alias="multiAZ")
    publicly_accessible: bool = Field(default=False, alias="publiclyAccessible")
    storage_encrypted: bool = Field(default=False, alias="storageEncrypted")
    storage_type: str = Field(default="", alias="storageType")
    iops: int = 0
    backup_retention_period: int = Field(
        default=0, alias="backupRetentionPeriod", description="Between 0 and 35, zero disables backups"
    )
    delete_protection: bool = Field(default=False, alias="deleteProtection")

    def problems(self) -> List[str]:
        """Return what prevents this spec from being provisioned."""
        found = []
        if not self.engine:
            found.append("engine is required")
        if not self.db_class:
            found.append("class is required")
        if self.size <= 0:
            found.append("size must be a positive number of GB")
        if not self.password.name or not self.password.key:
            found.append("password must reference a secret name and key")
        if not 0 <= self.backup_retention_period <= 35:
            found.append("backupRetentionPeriod must be between 0 and 35")
        if self.iops < 0:
            found.append("iops must not be negative")
        return found


class DatabaseStatus(BaseModel):
    """Observed state written by the reconciliation engine."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    state: Optional[DatabaseState] = None
    message: str = ""
    db_connection_config: str = Field(default="", alias="dbConnectionConfig")
    db_credentials: str = Field(default="", alias="dbCredentials")

    @field_validator("state", mode="before")
    @classmethod
    def map_legacy_state(cls, v):
        if v == "":
            return None
        return LEGACY_STATES.get(v, v)

    def to_k8s(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")


class ObjectMeta(BaseModel):
    """The subset of Kubernetes object metadata the operator relies on."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    name: str
    namespace: str = "default"
    uid: str = ""
    resource_version: Optional[str] = Field(default=None, alias="resourceVersion")
    generation: int = 0
    labels: Dict[str, str] = Field(default_factory=dict)
    annotations: Dict[str, str] = Field(default_factory=dict)


class Database(BaseModel):
    """A Database custom resource."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    api_version: str = Field(default_factory=database_api_version, alias="apiVersion")
    kind: str = DATABASE_KIND
    metadata: ObjectMeta
    spec: DatabaseSpec = Field(default_factory=DatabaseSpec)
    status: DatabaseStatus = Field(default_factory=DatabaseStatus)

    @classmethod
    def from_k8s(cls, obj: Dict[str, Any]) -> "Database":
        """Build a Database from an API server payload (``status`` may be absent or null)."""
        data = dict(obj)
        if not data.get("status"):
            data.pop("status", None)
        return cls.model_validate(data)

    def to_k8s(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")

    @property
    def name(self) -> str:
        return self.metadata.name

    @property
    def namespace(self) -> str:
        return self.metadata.namespace

    @property
    def key(self) -> str:
        """Work queue key: ``namespace/name``."""
        return f"{self.metadata.namespace}/{self.metadata.name}"

    def owner_reference(self) -> Dict[str, Any]:
        """Owner link placed on dependent objects for garbage collection."""
        return {
            "apiVersion": self.api_version,
            "kind": self.kind,
            "name": self.metadata.name,
            "uid": self.metadata.uid,
        }


class DBEndpoint(BaseModel):
    """Hostname and port of a provisioned database instance."""

    hostname: str
    port: int
