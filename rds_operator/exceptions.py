"""
Custom exceptions for the k8s-rds operator.

This module defines all custom exceptions used throughout the operator
for consistent error handling and reporting. The reconciliation engine
surfaces ``message`` through the Database status.
"""
from typing import Optional, Dict, Any, List


class OperatorException(Exception):
    """
    Base exception for all operator errors.

    All custom exceptions should inherit from this base class.
    """

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class NotFoundError(OperatorException):
    """
    Raised when a requested Kubernetes object is not found.

    Used for missing Database resources, services, config maps and secrets.
    """

    def __init__(self, resource: str, name: str, namespace: Optional[str] = None,
                 details: Optional[Dict[str, Any]] = None):
        location = f" in namespace '{namespace}'" if namespace else ""
        message = f"{resource} '{name}' not found{location}"
        super().__init__(
            message=message,
            details=details or {"resource": resource, "name": name, "namespace": namespace},
        )


class ConflictError(OperatorException):
    """
    Raised when a write conflicts with the stored object.

    Used for already-existing objects and stale resourceVersions.
    """


class KubernetesError(OperatorException):
    """
    Raised when Kubernetes API operations fail.

    Used for K8s API errors, connection issues, etc.
    """

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message=f"Kubernetes error: {message}", details=details)


class WatchExpiredError(KubernetesError):
    """Raised when a watch resourceVersion is too old (HTTP 410) and a relist is needed."""


class InvalidSpecError(OperatorException):
    """
    Raised when a Database spec cannot be provisioned as declared.

    Used for missing engine/class/size or an incomplete credentials reference.
    """

    def __init__(self, name: str, problems: List[str]):
        super().__init__(
            message=f"invalid spec for database {name}: {'; '.join(problems)}",
            details={"name": name, "problems": problems},
        )


class ProviderError(OperatorException):
    """
    Raised when a provider fails to allocate or deallocate a database.

    The engine treats the message as opaque text for the status.
    """


class ProviderNotFoundError(OperatorException):
    """Raised when the configured provider name is unknown."""

    def __init__(self, provider: str, details: Optional[Dict[str, Any]] = None):
        message = f"unable to find provider for {provider}"
        super().__init__(message=message, details=details or {"provider": provider})


class CredentialError(OperatorException):
    """Raised when the database credentials cannot be resolved."""


class StatusUpdateError(OperatorException):
    """Raised when the Database status cannot be persisted."""


__all__ = [
    "OperatorException",
    "NotFoundError",
    "ConflictError",
    "KubernetesError",
    "WatchExpiredError",
    "InvalidSpecError",
    "ProviderError",
    "ProviderNotFoundError",
    "CredentialError",
    "StatusUpdateError",
]
