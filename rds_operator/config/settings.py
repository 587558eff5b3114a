"""
Operator configuration using Pydantic Settings.
Loads configuration from environment variables with validation.
"""
from typing import List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Main operator settings with environment variable loading."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = Field(default="k8s-rds-operator", description="Application name")
    app_version: str = Field(default="0.4.0", description="Application version")
    environment: str = Field(default="development", description="Environment (development/testing/staging/production)")
    log_level: str = Field(default="INFO", description="Logging level")

    # Probe / metrics server
    host: str = Field(default="0.0.0.0", description="Probe server host")
    port: int = Field(default=8080, ge=1, le=65535, description="Probe server port")

    # Provider selection (one backend per process)
    provider: str = Field(default="aws", description="Database provider (aws/local)")

    # Kubernetes
    kubeconfig_path: Optional[str] = Field(
        default=None, description="Path to kubeconfig file (None for in-cluster or ~/.kube/config)"
    )
    k8s_in_cluster: bool = Field(default=False, description="Force in-cluster configuration")
    watch_namespace: Optional[str] = Field(
        default=None, description="Namespace to watch (None watches all namespaces)"
    )

    # Custom resource
    ensure_crd: bool = Field(default=True, description="Register the Database CRD on startup")
    crd_group: str = Field(default="aws.pmacik.dev", description="API group of the Database CRD")
    crd_version: str = Field(default="v1alpha1", description="API version of the Database CRD")
    crd_ready_timeout_seconds: int = Field(default=60, ge=1, description="Wait for CRD to become Established")

    # Controller
    resync_interval_seconds: int = Field(
        default=120, ge=10, le=3600, description="Full relist interval in seconds"
    )
    watch_timeout_seconds: int = Field(
        default=300, ge=30, le=3600, description="Server-side timeout of a single watch call"
    )
    max_concurrent_reconciles: int = Field(
        default=4, ge=1, le=64, description="Distinct databases reconciled in parallel"
    )

    # AWS RDS provider
    aws_region: Optional[str] = Field(default=None, description="AWS region (falls back to the boto3 chain)")
    rds_subnet_group_name: Optional[str] = Field(default=None, description="DB subnet group for new instances")
    rds_security_group_ids: List[str] = Field(
        default_factory=list, description="VPC security group IDs for new instances"
    )
    rds_waiter_delay_seconds: int = Field(default=30, ge=1, description="Poll delay while waiting for RDS")
    rds_waiter_max_attempts: int = Field(default=60, ge=1, description="Poll attempts while waiting for RDS")

    # Local (KubeDB) provider
    local_resource_suffix: str = Field(default="-local", description="Suffix of the in-cluster database resource")
    local_kubedb_version: str = Field(default="v1alpha2", description="KubeDB API version")
    local_engine_versions: dict = Field(
        default_factory=lambda: {
            "postgres": "16.1",
            "mysql": "8.0.35",
            "mariadb": "10.11.2",
            "mongodb": "6.0.12",
        },
        description="Database version used per engine",
    )
    local_ready_timeout_seconds: int = Field(default=600, ge=10, description="Wait for the database to be Ready")
    local_poll_interval_seconds: float = Field(default=5.0, gt=0, description="Readiness poll interval")

    # Sentry
    sentry_dsn: Optional[str] = Field(default=None, description="Sentry DSN for error tracking")
    sentry_traces_sample_rate: float = Field(
        default=0.1, ge=0.0, le=1.0, description="Sentry traces sample rate"
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"Log level must be one of {valid_levels}")
        return v.upper()

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Validate environment."""
        valid_envs = ["development", "testing", "staging", "production"]
        if v.lower() not in valid_envs:
            raise ValueError(f"Environment must be one of {valid_envs}")
        return v.lower()

    @field_validator("provider")
    @classmethod
    def validate_provider(cls, v: str) -> str:
        return v.lower()

    @field_validator("watch_namespace")
    @classmethod
    def empty_namespace_means_all(cls, v: Optional[str]) -> Optional[str]:
        return v or None

    @property
    def is_production(self) -> bool:
        """Check if running in production."""
        return self.environment == "production"


# Global settings instance
settings = Settings()
